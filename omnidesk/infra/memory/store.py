"""In-process storage backend.

Implements the same repository interfaces as the Postgres backend over plain
dicts. Entities are the ORM classes used transiently, without a session. The
unit of work is a no-op: writes are visible immediately and never rolled back.
Slot locks are ``asyncio.Lock`` objects, and repository reads yield to the
event loop so concurrent tasks really interleave.
"""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any
from uuid import UUID, uuid4

from omnidesk.domain.enums import (
    Channel,
    ConversationPriority,
    ConversationStatus,
    EscalationEventKind,
    MessageSender,
    MessageType,
    TicketSource,
    TicketStatus,
)
from omnidesk.infra.db.models import (
    ChatSession,
    Conversation,
    Message,
    Ticket,
    TicketEscalationEvent,
    utcnow,
)
from omnidesk.infra.storage import (
    ConversationQuery,
    Storage,
    StorageCapabilities,
    TicketQuery,
)

_SETTLED_TICKET_STATUSES = (TicketStatus.RESOLVED, TicketStatus.CLOSED)
_CONVERSATION_PRIORITY_WEIGHT = {
    ConversationPriority.URGENT: 3,
    ConversationPriority.HIGH: 2,
    ConversationPriority.NORMAL: 1,
    ConversationPriority.LOW: 0,
}


async def _checkpoint() -> None:
    await asyncio.sleep(0)


def _contains(value: str | None, term: str) -> bool:
    return value is not None and term in value.lower()


@dataclass(slots=True)
class InMemoryDatabase:
    conversations: dict[UUID, Conversation] = field(default_factory=dict)
    messages: dict[UUID, Message] = field(default_factory=dict)
    tickets: dict[UUID, Ticket] = field(default_factory=dict)
    ticket_counters: dict[tuple[str, date], int] = field(default_factory=dict)
    escalation_events: list[TicketEscalationEvent] = field(default_factory=list)
    chat_sessions: dict[str, ChatSession] = field(default_factory=dict)
    slot_locks: dict[tuple[str, str, Channel], asyncio.Lock] = field(default_factory=dict)
    slot_lock_holders: dict[tuple[str, str, Channel], int] = field(default_factory=dict)

    def messages_for(self, conversation_id: UUID) -> list[Message]:
        return [
            message
            for message in self.messages.values()
            if message.conversation_id == conversation_id
        ]


class InMemorySession:
    async def commit(self) -> None:
        return None

    async def rollback(self) -> None:
        return None

    @asynccontextmanager
    async def begin_nested(self) -> AsyncIterator[None]:
        yield


class InMemoryConversationRepository:
    def __init__(self, database: InMemoryDatabase) -> None:
        self.database = database

    async def get_by_id(self, conversation_id: UUID) -> Conversation | None:
        await _checkpoint()
        return self.database.conversations.get(conversation_id)

    @asynccontextmanager
    async def slot_lock(
        self, business_id: str, customer_id: str, channel: Channel
    ) -> AsyncIterator[None]:
        key = (business_id, customer_id, channel)
        lock = self.database.slot_locks.setdefault(key, asyncio.Lock())
        holders = self.database.slot_lock_holders
        holders[key] = holders.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            holders[key] -= 1
            if not holders[key]:
                del holders[key]
                del self.database.slot_locks[key]

    async def get_open_for_slot(
        self, business_id: str, customer_id: str, channel: Channel
    ) -> Conversation | None:
        await _checkpoint()
        candidates = [
            conversation
            for conversation in self.database.conversations.values()
            if conversation.business_id == business_id
            and conversation.customer_id == customer_id
            and conversation.channel == channel
            and conversation.status != ConversationStatus.CLOSED
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda conversation: conversation.created_at)

    async def create(
        self,
        business_id: str,
        customer_id: str,
        channel: Channel,
        customer_name: str | None = None,
    ) -> Conversation:
        now = utcnow()
        conversation = Conversation(
            id=uuid4(),
            business_id=business_id,
            customer_id=customer_id,
            customer_name=customer_name,
            channel=channel,
            status=ConversationStatus.ACTIVE,
            priority=ConversationPriority.NORMAL,
            is_ai_handling=True,
            assigned_to=None,
            tags=[],
            last_message_at=now,
            created_at=now,
            updated_at=now,
        )
        self.database.conversations[conversation.id] = conversation
        return conversation

    async def touch(
        self, conversation: Conversation, last_message_at: datetime | None = None
    ) -> None:
        conversation.updated_at = utcnow()
        if last_message_at is not None:
            conversation.last_message_at = last_message_at

    async def read_ai_handling(self, conversation_id: UUID) -> bool | None:
        await _checkpoint()
        conversation = self.database.conversations.get(conversation_id)
        return None if conversation is None else conversation.is_ai_handling

    def _matches(self, conversation: Conversation, query: ConversationQuery) -> bool:
        if query.business_id is not None and conversation.business_id != query.business_id:
            return False
        if query.customer_id is not None and conversation.customer_id != query.customer_id:
            return False
        if query.status is not None and conversation.status != query.status:
            return False
        if query.priority is not None and conversation.priority != query.priority:
            return False
        if query.channel is not None and conversation.channel != query.channel:
            return False
        if query.assigned_to is not None and conversation.assigned_to != query.assigned_to:
            return False
        if query.created_from is not None and conversation.created_at < query.created_from:
            return False
        if query.created_to is not None and conversation.created_at > query.created_to:
            return False
        messages = self.database.messages_for(conversation.id)
        if query.search:
            term = query.search.strip().lower()
            if not (
                _contains(conversation.customer_name, term)
                or _contains(conversation.customer_id, term)
                or any(_contains(message.content, term) for message in messages)
            ):
                return False
        if query.unread_only and not any(
            message.sender == MessageSender.CUSTOMER and not message.is_read
            for message in messages
        ):
            return False
        return True

    def _filtered(self, query: ConversationQuery) -> list[Conversation]:
        return [
            conversation
            for conversation in self.database.conversations.values()
            if self._matches(conversation, query)
        ]

    async def search(self, query: ConversationQuery) -> tuple[list[Conversation], int]:
        await _checkpoint()
        matching = self._filtered(query)
        matching.sort(key=lambda conversation: conversation.created_at, reverse=True)
        if query.sort_by == "priority":
            matching.sort(
                key=lambda conversation: _CONVERSATION_PRIORITY_WEIGHT[conversation.priority],
                reverse=query.descending,
            )
        else:
            matching.sort(
                key=lambda conversation: getattr(conversation, query.sort_by),
                reverse=query.descending,
            )
        end = None if query.limit is None else query.offset + query.limit
        return matching[query.offset:end], len(matching)

    async def count_by(self, field: str, query: ConversationQuery) -> dict[str, int]:
        counts: dict[str, int] = {}
        for conversation in self._filtered(query):
            key = getattr(conversation, field).value
            counts[key] = counts.get(key, 0) + 1
        return counts

    async def average_resolution_minutes(self, query: ConversationQuery) -> float:
        durations = [
            (conversation.updated_at - conversation.created_at).total_seconds()
            for conversation in self._filtered(query)
            if conversation.status == ConversationStatus.RESOLVED
        ]
        if not durations:
            return 0.0
        return round(sum(durations) / len(durations) / 60, 1)

    async def delete(self, conversation: Conversation) -> None:
        for message in self.database.messages_for(conversation.id):
            del self.database.messages[message.id]
        for ticket in self.database.tickets.values():
            if ticket.parent_conversation_id == conversation.id:
                ticket.parent_conversation_id = None
        self.database.conversations.pop(conversation.id, None)


class InMemoryMessageRepository:
    def __init__(self, database: InMemoryDatabase) -> None:
        self.database = database

    async def create(
        self,
        conversation_id: UUID,
        sender: MessageSender,
        content: str,
        message_type: MessageType = MessageType.TEXT,
        sender_name: str | None = None,
        provider_message_id: str | None = None,
        channel_data: dict[str, Any] | None = None,
        is_read: bool = False,
    ) -> Message:
        if provider_message_id is not None and any(
            message.provider_message_id == provider_message_id
            for message in self.database.messages_for(conversation_id)
        ):
            raise ValueError(
                f"Duplicate provider message id '{provider_message_id}' "
                f"for conversation '{conversation_id}'"
            )
        message = Message(
            id=uuid4(),
            conversation_id=conversation_id,
            sender=sender,
            sender_name=sender_name,
            message_type=message_type,
            content=content,
            provider_message_id=provider_message_id,
            channel_data=channel_data,
            is_read=is_read,
            delivery_failed=False,
            created_at=utcnow(),
        )
        self.database.messages[message.id] = message
        return message

    async def exists_for_provider_id(
        self, conversation_id: UUID, provider_message_id: str
    ) -> bool:
        await _checkpoint()
        return any(
            message.provider_message_id == provider_message_id
            for message in self.database.messages_for(conversation_id)
        )

    async def list_by_conversation(
        self, conversation_id: UUID, limit: int | None = None, offset: int = 0
    ) -> list[Message]:
        messages = self.database.messages_for(conversation_id)
        end = None if limit is None else offset + limit
        return messages[offset:end]

    async def count_by_conversation(self, conversation_id: UUID) -> int:
        return len(self.database.messages_for(conversation_id))

    async def latest_by_conversations(
        self, conversation_ids: list[UUID]
    ) -> dict[UUID, Message]:
        wanted = set(conversation_ids)
        latest: dict[UUID, Message] = {}
        for message in self.database.messages.values():
            if message.conversation_id in wanted:
                latest[message.conversation_id] = message
        return latest

    async def unread_counts(self, conversation_ids: list[UUID]) -> dict[UUID, int]:
        wanted = set(conversation_ids)
        counts: dict[UUID, int] = {}
        for message in self.database.messages.values():
            if (
                message.conversation_id in wanted
                and message.sender == MessageSender.CUSTOMER
                and not message.is_read
            ):
                counts[message.conversation_id] = counts.get(message.conversation_id, 0) + 1
        return counts

    async def count_unread(self, query: ConversationQuery) -> int:
        conversations = InMemoryConversationRepository(self.database)._filtered(query)
        counts = await self.unread_counts([conversation.id for conversation in conversations])
        return sum(counts.values())

    async def mark_read(
        self, conversation_id: UUID, sender: MessageSender | None = None
    ) -> int:
        updated = 0
        for message in self.database.messages_for(conversation_id):
            if message.is_read or (sender is not None and message.sender != sender):
                continue
            message.is_read = True
            updated += 1
        return updated

    async def mark_delivery_failed(self, message: Message) -> None:
        message.delivery_failed = True

    async def delete_by_conversation(self, conversation_id: UUID) -> int:
        doomed = self.database.messages_for(conversation_id)
        for message in doomed:
            del self.database.messages[message.id]
        return len(doomed)


class InMemoryTicketRepository:
    def __init__(self, database: InMemoryDatabase) -> None:
        self.database = database

    async def get_by_id(self, ticket_id: UUID) -> Ticket | None:
        await _checkpoint()
        return self.database.tickets.get(ticket_id)

    async def get_for_update(self, ticket_id: UUID) -> Ticket | None:
        return await self.get_by_id(ticket_id)

    async def get_by_number(self, business_id: str, ticket_number: str) -> Ticket | None:
        for ticket in self.database.tickets.values():
            if ticket.business_id == business_id and ticket.ticket_number == ticket_number:
                return ticket
        return None

    async def next_sequence(self, business_id: str, day: date) -> int:
        key = (business_id, day)
        value = self.database.ticket_counters.get(key, 0) + 1
        self.database.ticket_counters[key] = value
        return value

    async def create(self, **fields: Any) -> Ticket:
        now = utcnow()
        fields.setdefault("id", uuid4())
        fields.setdefault("status", TicketStatus.OPEN)
        fields.setdefault("source", TicketSource.API)
        fields.setdefault("escalation_level", 0)
        fields.setdefault("created_at", now)
        fields.setdefault("updated_at", fields["created_at"])
        for optional in (
            "customer_name",
            "customer_email",
            "assigned_to",
            "parent_conversation_id",
            "metadata_json",
            "resolved_at",
        ):
            fields.setdefault(optional, None)
        ticket = Ticket(**fields)
        self.database.tickets[ticket.id] = ticket
        return ticket

    async def touch(self, ticket: Ticket, at: datetime) -> None:
        ticket.updated_at = at

    def _matches(self, ticket: Ticket, query: TicketQuery) -> bool:
        if query.business_id is not None and ticket.business_id != query.business_id:
            return False
        if query.status is not None and ticket.status != query.status:
            return False
        if query.priority is not None and ticket.priority != query.priority:
            return False
        if query.category is not None and ticket.category != query.category:
            return False
        if query.assigned_to is not None and ticket.assigned_to != query.assigned_to:
            return False
        if query.escalated is True and ticket.escalation_level <= 0:
            return False
        if query.escalated is False and ticket.escalation_level != 0:
            return False
        if query.open_only and ticket.status in _SETTLED_TICKET_STATUSES:
            return False
        if query.search:
            term = query.search.strip().lower()
            if not any(
                _contains(value, term)
                for value in (
                    ticket.title,
                    ticket.description,
                    ticket.ticket_number,
                    ticket.customer_name,
                )
            ):
                return False
        return True

    async def search(self, query: TicketQuery) -> tuple[list[Ticket], int]:
        await _checkpoint()
        matching = [
            ticket for ticket in self.database.tickets.values() if self._matches(ticket, query)
        ]
        matching.sort(key=lambda ticket: ticket.created_at, reverse=True)
        matching.sort(key=lambda ticket: ticket.priority.rank)
        end = None if query.limit is None else query.offset + query.limit
        return matching[query.offset:end], len(matching)

    async def list_linked(
        self, conversation_id: UUID, business_id: str, customer_id: str
    ) -> list[Ticket]:
        linked = [
            ticket
            for ticket in self.database.tickets.values()
            if ticket.business_id == business_id
            and (
                ticket.parent_conversation_id == conversation_id
                or ticket.customer_id == customer_id
            )
        ]
        return sorted(linked, key=lambda ticket: ticket.created_at, reverse=True)

    def _scoped(self, business_id: str, assigned_to: str | None) -> list[Ticket]:
        return [
            ticket
            for ticket in self.database.tickets.values()
            if ticket.business_id == business_id
            and (assigned_to is None or ticket.assigned_to == assigned_to)
        ]

    async def count_by_status(
        self, business_id: str, assigned_to: str | None = None
    ) -> dict[TicketStatus, int]:
        counts: dict[TicketStatus, int] = {}
        for ticket in self._scoped(business_id, assigned_to):
            counts[ticket.status] = counts.get(ticket.status, 0) + 1
        return counts

    async def count_overdue(
        self, business_id: str, now: datetime, assigned_to: str | None = None
    ) -> int:
        return sum(
            1
            for ticket in self._scoped(business_id, assigned_to)
            if ticket.sla_deadline < now and ticket.status not in _SETTLED_TICKET_STATUSES
        )

    async def average_resolution_hours(
        self, business_id: str, assigned_to: str | None = None
    ) -> float | None:
        durations = [
            (ticket.resolved_at - ticket.created_at).total_seconds()
            for ticket in self._scoped(business_id, assigned_to)
            if ticket.status in _SETTLED_TICKET_STATUSES and ticket.resolved_at is not None
        ]
        if not durations:
            return None
        return sum(durations) / len(durations) / 3600

    async def add_escalation_event(
        self,
        ticket_id: UUID,
        kind: EscalationEventKind,
        note: str,
        actor_id: str | None,
        actor_name: str | None,
        reassigned_to: str | None,
        at: datetime,
    ) -> TicketEscalationEvent:
        event = TicketEscalationEvent(
            id=uuid4(),
            ticket_id=ticket_id,
            kind=kind,
            note=note,
            actor_id=actor_id,
            actor_name=actor_name,
            reassigned_to=reassigned_to,
            created_at=at,
        )
        self.database.escalation_events.append(event)
        return event

    async def list_escalation_events(self, ticket_id: UUID) -> list[TicketEscalationEvent]:
        return [
            event for event in self.database.escalation_events if event.ticket_id == ticket_id
        ]

    async def delete(self, ticket: Ticket) -> None:
        self.database.tickets.pop(ticket.id, None)
        self.database.escalation_events = [
            event for event in self.database.escalation_events if event.ticket_id != ticket.id
        ]


class InMemoryChatSessionRepository:
    def __init__(self, database: InMemoryDatabase) -> None:
        self.database = database

    async def get(self, session_id: str) -> ChatSession | None:
        return self.database.chat_sessions.get(session_id)

    async def add(self, chat_session: ChatSession) -> ChatSession:
        self.database.chat_sessions[chat_session.id] = chat_session
        return chat_session

    def _active(self) -> list[ChatSession]:
        return [
            chat_session
            for chat_session in self.database.chat_sessions.values()
            if chat_session.is_active
        ]

    async def list_active(self, limit: int | None = None) -> list[ChatSession]:
        active = sorted(
            self._active(), key=lambda chat_session: chat_session.last_activity, reverse=True
        )
        return active if limit is None else active[:limit]

    async def list_for_customer(self, customer_id: str) -> list[ChatSession]:
        return sorted(
            (
                chat_session
                for chat_session in self.database.chat_sessions.values()
                if chat_session.customer_id == customer_id
            ),
            key=lambda chat_session: chat_session.last_activity,
            reverse=True,
        )

    async def list_idle_since(self, cutoff: datetime) -> list[ChatSession]:
        return [
            chat_session
            for chat_session in self._active()
            if chat_session.last_activity < cutoff
        ]

    async def count_active(self) -> int:
        return len(self._active())

    async def oldest_active(self, limit: int) -> list[ChatSession]:
        return sorted(self._active(), key=lambda chat_session: chat_session.last_activity)[
            :limit
        ]

    async def delete(self, chat_session: ChatSession) -> None:
        self.database.chat_sessions.pop(chat_session.id, None)


class InMemoryStorageProvider:
    def __init__(self, capabilities: StorageCapabilities | None = None) -> None:
        self.database = InMemoryDatabase()
        self.capabilities = capabilities or StorageCapabilities()

    @asynccontextmanager
    async def unit(self) -> AsyncIterator[Storage]:
        yield Storage(
            session=InMemorySession(),
            conversations=InMemoryConversationRepository(self.database),
            messages=InMemoryMessageRepository(self.database),
            tickets=InMemoryTicketRepository(self.database),
            chat_sessions=InMemoryChatSessionRepository(self.database),
            capabilities=self.capabilities,
        )

    async def ping(self) -> None:
        return None

    async def close(self) -> None:
        return None
