"""Persistence interfaces shared by the Postgres and in-memory backends.

Services never talk to a database session directly. They receive a ``Storage``
bundle (repositories plus the unit of work that commits them) from a
``StorageProvider``. Contended operations are repository primitives so each
backend can enforce them atomically:

* ``ConversationStore.slot_lock`` serializes find-or-create per customer slot.
* ``TicketStore.next_sequence`` is an atomic per-business-per-day counter.
* ``TicketStore.get_for_update`` reads a ticket under a row lock.
"""

from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Protocol
from uuid import UUID

from omnidesk.domain.enums import (
    Channel,
    ConversationPriority,
    ConversationStatus,
    EscalationEventKind,
    MessageSender,
    MessageType,
    TicketCategory,
    TicketPriority,
    TicketStatus,
)
from omnidesk.infra.db.models import (
    ChatSession,
    Conversation,
    Message,
    Ticket,
    TicketEscalationEvent,
)

CONVERSATION_SORT_FIELDS = ("created_at", "updated_at", "last_message_at", "priority")


@dataclass(frozen=True, slots=True)
class StorageCapabilities:
    escalation_history: bool = True


@dataclass(slots=True)
class ConversationQuery:
    business_id: str | None = None
    customer_id: str | None = None
    status: ConversationStatus | None = None
    priority: ConversationPriority | None = None
    channel: Channel | None = None
    assigned_to: str | None = None
    created_from: datetime | None = None
    created_to: datetime | None = None
    search: str | None = None
    unread_only: bool = False
    sort_by: str = "last_message_at"
    descending: bool = True
    limit: int | None = 50
    offset: int = 0


@dataclass(slots=True)
class TicketQuery:
    business_id: str | None = None
    status: TicketStatus | None = None
    priority: TicketPriority | None = None
    category: TicketCategory | None = None
    escalated: bool | None = None
    assigned_to: str | None = None
    search: str | None = None
    open_only: bool = False
    limit: int | None = 100
    offset: int = 0


class UnitOfWork(Protocol):
    async def commit(self) -> None: ...

    async def rollback(self) -> None: ...

    def begin_nested(self) -> AbstractAsyncContextManager[Any]: ...


class ConversationStore(Protocol):
    async def get_by_id(self, conversation_id: UUID) -> Conversation | None: ...

    def slot_lock(
        self, business_id: str, customer_id: str, channel: Channel
    ) -> AbstractAsyncContextManager[None]: ...

    async def get_open_for_slot(
        self, business_id: str, customer_id: str, channel: Channel
    ) -> Conversation | None: ...

    async def create(
        self,
        business_id: str,
        customer_id: str,
        channel: Channel,
        customer_name: str | None = None,
    ) -> Conversation: ...

    async def touch(
        self, conversation: Conversation, last_message_at: datetime | None = None
    ) -> None: ...

    async def read_ai_handling(self, conversation_id: UUID) -> bool | None: ...

    async def search(self, query: ConversationQuery) -> tuple[list[Conversation], int]: ...

    async def count_by(self, field: str, query: ConversationQuery) -> dict[str, int]: ...

    async def average_resolution_minutes(self, query: ConversationQuery) -> float: ...

    async def delete(self, conversation: Conversation) -> None: ...


class MessageStore(Protocol):
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
    ) -> Message: ...

    async def exists_for_provider_id(
        self, conversation_id: UUID, provider_message_id: str
    ) -> bool: ...

    async def list_by_conversation(
        self, conversation_id: UUID, limit: int | None = None, offset: int = 0
    ) -> list[Message]: ...

    async def count_by_conversation(self, conversation_id: UUID) -> int: ...

    async def latest_by_conversations(
        self, conversation_ids: list[UUID]
    ) -> dict[UUID, Message]: ...

    async def unread_counts(self, conversation_ids: list[UUID]) -> dict[UUID, int]: ...

    async def count_unread(self, query: ConversationQuery) -> int: ...

    async def mark_read(
        self, conversation_id: UUID, sender: MessageSender | None = None
    ) -> int: ...

    async def mark_delivery_failed(self, message: Message) -> None: ...

    async def delete_by_conversation(self, conversation_id: UUID) -> int: ...


class TicketStore(Protocol):
    async def get_by_id(self, ticket_id: UUID) -> Ticket | None: ...

    async def get_for_update(self, ticket_id: UUID) -> Ticket | None: ...

    async def get_by_number(self, business_id: str, ticket_number: str) -> Ticket | None: ...

    async def next_sequence(self, business_id: str, day: date) -> int: ...

    async def create(self, **fields: Any) -> Ticket: ...

    async def touch(self, ticket: Ticket, at: datetime) -> None: ...

    async def search(self, query: TicketQuery) -> tuple[list[Ticket], int]: ...

    async def list_linked(
        self, conversation_id: UUID, business_id: str, customer_id: str
    ) -> list[Ticket]: ...

    async def count_by_status(
        self, business_id: str, assigned_to: str | None = None
    ) -> dict[TicketStatus, int]: ...

    async def count_overdue(
        self, business_id: str, now: datetime, assigned_to: str | None = None
    ) -> int: ...

    async def average_resolution_hours(
        self, business_id: str, assigned_to: str | None = None
    ) -> float | None: ...

    async def add_escalation_event(
        self,
        ticket_id: UUID,
        kind: EscalationEventKind,
        note: str,
        actor_id: str | None,
        actor_name: str | None,
        reassigned_to: str | None,
        at: datetime,
    ) -> TicketEscalationEvent: ...

    async def list_escalation_events(self, ticket_id: UUID) -> list[TicketEscalationEvent]: ...

    async def delete(self, ticket: Ticket) -> None: ...


class ChatSessionStore(Protocol):
    async def get(self, session_id: str) -> ChatSession | None: ...

    async def add(self, chat_session: ChatSession) -> ChatSession: ...

    async def list_active(self, limit: int | None = None) -> list[ChatSession]: ...

    async def list_for_customer(self, customer_id: str) -> list[ChatSession]: ...

    async def list_idle_since(self, cutoff: datetime) -> list[ChatSession]: ...

    async def count_active(self) -> int: ...

    async def oldest_active(self, limit: int) -> list[ChatSession]: ...

    async def delete(self, chat_session: ChatSession) -> None: ...


@dataclass(slots=True)
class Storage:
    session: UnitOfWork
    conversations: ConversationStore
    messages: MessageStore
    tickets: TicketStore
    chat_sessions: ChatSessionStore
    capabilities: StorageCapabilities


class StorageProvider(Protocol):
    capabilities: StorageCapabilities

    def unit(self) -> AbstractAsyncContextManager[Storage]: ...

    async def ping(self) -> None: ...

    async def close(self) -> None: ...
