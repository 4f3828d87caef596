from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import date, datetime
from typing import Any
from uuid import UUID

from sqlalchemy import (
    ColumnElement,
    Select,
    and_,
    case,
    delete,
    exists,
    func,
    or_,
    select,
    text,
    update,
)
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from omnidesk.domain.enums import (
    Channel,
    ConversationPriority,
    ConversationStatus,
    EscalationEventKind,
    MessageSender,
    MessageType,
    TicketPriority,
    TicketStatus,
)
from omnidesk.infra.db.models import (
    ChatSession,
    Conversation,
    Message,
    Ticket,
    TicketCounter,
    TicketEscalationEvent,
    utcnow,
)
from omnidesk.infra.storage import ConversationQuery, TicketQuery

_SETTLED_TICKET_STATUSES = (TicketStatus.RESOLVED, TicketStatus.CLOSED)

_CONVERSATION_PRIORITY_WEIGHT = case(
    {
        ConversationPriority.URGENT: 3,
        ConversationPriority.HIGH: 2,
        ConversationPriority.NORMAL: 1,
        ConversationPriority.LOW: 0,
    },
    value=Conversation.priority,
)

_TICKET_PRIORITY_RANK = case(
    {priority: priority.rank for priority in TicketPriority},
    value=Ticket.priority,
)


def _unread_customer_messages(conversation_id_column) -> ColumnElement[bool]:
    return exists(
        select(Message.id).where(
            Message.conversation_id == conversation_id_column,
            Message.sender == MessageSender.CUSTOMER,
            Message.is_read.is_(False),
        )
    )


def _conversation_conditions(query: ConversationQuery) -> list[ColumnElement[bool]]:
    conditions: list[ColumnElement[bool]] = []
    if query.business_id is not None:
        conditions.append(Conversation.business_id == query.business_id)
    if query.customer_id is not None:
        conditions.append(Conversation.customer_id == query.customer_id)
    if query.status is not None:
        conditions.append(Conversation.status == query.status)
    if query.priority is not None:
        conditions.append(Conversation.priority == query.priority)
    if query.channel is not None:
        conditions.append(Conversation.channel == query.channel)
    if query.assigned_to is not None:
        conditions.append(Conversation.assigned_to == query.assigned_to)
    if query.created_from is not None:
        conditions.append(Conversation.created_at >= query.created_from)
    if query.created_to is not None:
        conditions.append(Conversation.created_at <= query.created_to)
    if query.search:
        pattern = f"%{query.search.strip()}%"
        conditions.append(
            or_(
                Conversation.customer_name.ilike(pattern),
                Conversation.customer_id.ilike(pattern),
                exists(
                    select(Message.id).where(
                        Message.conversation_id == Conversation.id,
                        Message.content.ilike(pattern),
                    )
                ),
            )
        )
    if query.unread_only:
        conditions.append(_unread_customer_messages(Conversation.id))
    return conditions


class ConversationRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_by_id(self, conversation_id: UUID) -> Conversation | None:
        return await self.session.get(Conversation, conversation_id)

    @asynccontextmanager
    async def slot_lock(
        self, business_id: str, customer_id: str, channel: Channel
    ) -> AsyncIterator[None]:
        """Take a transaction-scoped advisory lock on the customer slot.

        The lock is released when the surrounding transaction commits or rolls
        back, so callers must finish their writes inside the block.
        """
        await self.session.execute(
            text("SELECT pg_advisory_xact_lock(hashtextextended(:slot_key, 0))"),
            {"slot_key": f"conversation-slot:{business_id}:{customer_id}:{channel.value}"},
        )
        yield

    async def get_open_for_slot(
        self, business_id: str, customer_id: str, channel: Channel
    ) -> Conversation | None:
        stmt: Select[tuple[Conversation]] = (
            select(Conversation)
            .where(
                Conversation.business_id == business_id,
                Conversation.customer_id == customer_id,
                Conversation.channel == channel,
                Conversation.status != ConversationStatus.CLOSED,
            )
            .order_by(Conversation.created_at.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def create(
        self,
        business_id: str,
        customer_id: str,
        channel: Channel,
        customer_name: str | None = None,
    ) -> Conversation:
        now = utcnow()
        conversation = Conversation(
            business_id=business_id,
            customer_id=customer_id,
            customer_name=customer_name,
            channel=channel,
            status=ConversationStatus.ACTIVE,
            priority=ConversationPriority.NORMAL,
            is_ai_handling=True,
            tags=[],
            last_message_at=now,
            created_at=now,
            updated_at=now,
        )
        self.session.add(conversation)
        await self.session.flush()
        return conversation

    async def touch(
        self, conversation: Conversation, last_message_at: datetime | None = None
    ) -> None:
        conversation.updated_at = utcnow()
        if last_message_at is not None:
            conversation.last_message_at = last_message_at
        await self.session.flush()

    async def read_ai_handling(self, conversation_id: UUID) -> bool | None:
        # Column select bypasses the identity map and reads the committed value.
        stmt: Select[tuple[bool]] = select(Conversation.is_ai_handling).where(
            Conversation.id == conversation_id
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def search(self, query: ConversationQuery) -> tuple[list[Conversation], int]:
        conditions = _conversation_conditions(query)

        count_stmt: Select[tuple[int]] = select(func.count(Conversation.id)).where(*conditions)
        total = int((await self.session.execute(count_stmt)).scalar_one() or 0)

        sort_column = (
            _CONVERSATION_PRIORITY_WEIGHT
            if query.sort_by == "priority"
            else getattr(Conversation, query.sort_by, Conversation.last_message_at)
        )
        order = sort_column.desc() if query.descending else sort_column.asc()
        stmt: Select[tuple[Conversation]] = (
            select(Conversation)
            .where(*conditions)
            .order_by(order, Conversation.created_at.desc())
            .offset(query.offset)
        )
        if query.limit is not None:
            stmt = stmt.limit(query.limit)
        result = await self.session.execute(stmt)
        return list(result.scalars().all()), total

    async def count_by(self, field: str, query: ConversationQuery) -> dict[str, int]:
        column = {
            "status": Conversation.status,
            "channel": Conversation.channel,
            "priority": Conversation.priority,
        }[field]
        stmt = (
            select(column, func.count(Conversation.id))
            .where(*_conversation_conditions(query))
            .group_by(column)
        )
        result = await self.session.execute(stmt)
        return {value.value: int(count) for value, count in result.all()}

    async def average_resolution_minutes(self, query: ConversationQuery) -> float:
        stmt = select(
            func.avg(func.extract("epoch", Conversation.updated_at - Conversation.created_at))
        ).where(
            *_conversation_conditions(query),
            Conversation.status == ConversationStatus.RESOLVED,
        )
        seconds = (await self.session.execute(stmt)).scalar_one_or_none()
        if seconds is None:
            return 0.0
        return round(float(seconds) / 60, 1)

    async def delete(self, conversation: Conversation) -> None:
        await self.session.execute(
            delete(Conversation).where(Conversation.id == conversation.id)
        )
        self.session.expunge(conversation)


class MessageRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

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
        message = Message(
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
        self.session.add(message)
        await self.session.flush()
        return message

    async def exists_for_provider_id(
        self, conversation_id: UUID, provider_message_id: str
    ) -> bool:
        stmt: Select[tuple[UUID]] = (
            select(Message.id)
            .where(
                Message.conversation_id == conversation_id,
                Message.provider_message_id == provider_message_id,
            )
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def list_by_conversation(
        self, conversation_id: UUID, limit: int | None = None, offset: int = 0
    ) -> list[Message]:
        stmt: Select[tuple[Message]] = (
            select(Message)
            .where(Message.conversation_id == conversation_id)
            .order_by(Message.created_at.asc(), Message.id.asc())
            .offset(offset)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def count_by_conversation(self, conversation_id: UUID) -> int:
        stmt: Select[tuple[int]] = select(func.count(Message.id)).where(
            Message.conversation_id == conversation_id
        )
        result = await self.session.execute(stmt)
        return int(result.scalar_one() or 0)

    async def latest_by_conversations(
        self, conversation_ids: list[UUID]
    ) -> dict[UUID, Message]:
        if not conversation_ids:
            return {}
        stmt: Select[tuple[Message]] = (
            select(Message)
            .where(Message.conversation_id.in_(conversation_ids))
            .order_by(Message.conversation_id, Message.created_at.desc(), Message.id.desc())
            .distinct(Message.conversation_id)
        )
        result = await self.session.execute(stmt)
        return {message.conversation_id: message for message in result.scalars().all()}

    async def unread_counts(self, conversation_ids: list[UUID]) -> dict[UUID, int]:
        if not conversation_ids:
            return {}
        stmt = (
            select(Message.conversation_id, func.count(Message.id))
            .where(
                Message.conversation_id.in_(conversation_ids),
                Message.sender == MessageSender.CUSTOMER,
                Message.is_read.is_(False),
            )
            .group_by(Message.conversation_id)
        )
        result = await self.session.execute(stmt)
        return {conversation_id: int(count) for conversation_id, count in result.all()}

    async def count_unread(self, query: ConversationQuery) -> int:
        stmt: Select[tuple[int]] = (
            select(func.count(Message.id))
            .join(Conversation, Conversation.id == Message.conversation_id)
            .where(
                *_conversation_conditions(query),
                Message.sender == MessageSender.CUSTOMER,
                Message.is_read.is_(False),
            )
        )
        result = await self.session.execute(stmt)
        return int(result.scalar_one() or 0)

    async def mark_read(
        self, conversation_id: UUID, sender: MessageSender | None = None
    ) -> int:
        conditions = [Message.conversation_id == conversation_id, Message.is_read.is_(False)]
        if sender is not None:
            conditions.append(Message.sender == sender)
        result = await self.session.execute(
            update(Message).where(and_(*conditions)).values(is_read=True)
        )
        return int(result.rowcount or 0)

    async def mark_delivery_failed(self, message: Message) -> None:
        message.delivery_failed = True
        await self.session.flush()

    async def delete_by_conversation(self, conversation_id: UUID) -> int:
        result = await self.session.execute(
            delete(Message).where(Message.conversation_id == conversation_id)
        )
        return int(result.rowcount or 0)


class TicketRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_by_id(self, ticket_id: UUID) -> Ticket | None:
        return await self.session.get(Ticket, ticket_id)

    async def get_for_update(self, ticket_id: UUID) -> Ticket | None:
        stmt: Select[tuple[Ticket]] = (
            select(Ticket)
            .where(Ticket.id == ticket_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_number(self, business_id: str, ticket_number: str) -> Ticket | None:
        stmt: Select[tuple[Ticket]] = select(Ticket).where(
            Ticket.business_id == business_id,
            Ticket.ticket_number == ticket_number,
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def next_sequence(self, business_id: str, day: date) -> int:
        # The counter row stays locked until the ticket insert commits, so
        # concurrent creators queue here and never see the same value.
        stmt = (
            pg_insert(TicketCounter)
            .values(business_id=business_id, day=day, current_value=1)
            .on_conflict_do_update(
                index_elements=[TicketCounter.business_id, TicketCounter.day],
                set_={"current_value": TicketCounter.current_value + 1},
            )
            .returning(TicketCounter.current_value)
        )
        value = (await self.session.execute(stmt)).scalar_one_or_none()
        if value is None:
            raise RuntimeError("Failed to allocate ticket sequence")
        return int(value)

    async def create(self, **fields: Any) -> Ticket:
        ticket = Ticket(**fields)
        self.session.add(ticket)
        await self.session.flush()
        return ticket

    async def touch(self, ticket: Ticket, at: datetime) -> None:
        ticket.updated_at = at
        await self.session.flush()

    async def search(self, query: TicketQuery) -> tuple[list[Ticket], int]:
        conditions: list[ColumnElement[bool]] = []
        if query.business_id is not None:
            conditions.append(Ticket.business_id == query.business_id)
        if query.status is not None:
            conditions.append(Ticket.status == query.status)
        if query.priority is not None:
            conditions.append(Ticket.priority == query.priority)
        if query.category is not None:
            conditions.append(Ticket.category == query.category)
        if query.assigned_to is not None:
            conditions.append(Ticket.assigned_to == query.assigned_to)
        if query.escalated is True:
            conditions.append(Ticket.escalation_level > 0)
        elif query.escalated is False:
            conditions.append(Ticket.escalation_level == 0)
        if query.open_only:
            conditions.append(Ticket.status.not_in(_SETTLED_TICKET_STATUSES))
        if query.search:
            pattern = f"%{query.search.strip()}%"
            conditions.append(
                or_(
                    Ticket.title.ilike(pattern),
                    Ticket.description.ilike(pattern),
                    Ticket.ticket_number.ilike(pattern),
                    Ticket.customer_name.ilike(pattern),
                )
            )

        count_stmt: Select[tuple[int]] = select(func.count(Ticket.id)).where(*conditions)
        total = int((await self.session.execute(count_stmt)).scalar_one() or 0)

        stmt: Select[tuple[Ticket]] = (
            select(Ticket)
            .where(*conditions)
            .order_by(_TICKET_PRIORITY_RANK.asc(), Ticket.created_at.desc())
            .offset(query.offset)
        )
        if query.limit is not None:
            stmt = stmt.limit(query.limit)
        result = await self.session.execute(stmt)
        return list(result.scalars().all()), total

    async def list_linked(
        self, conversation_id: UUID, business_id: str, customer_id: str
    ) -> list[Ticket]:
        stmt: Select[tuple[Ticket]] = (
            select(Ticket)
            .where(
                Ticket.business_id == business_id,
                or_(
                    Ticket.parent_conversation_id == conversation_id,
                    Ticket.customer_id == customer_id,
                ),
            )
            .order_by(Ticket.created_at.desc())
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def count_by_status(
        self, business_id: str, assigned_to: str | None = None
    ) -> dict[TicketStatus, int]:
        stmt = (
            select(Ticket.status, func.count(Ticket.id))
            .where(Ticket.business_id == business_id)
            .group_by(Ticket.status)
        )
        if assigned_to is not None:
            stmt = stmt.where(Ticket.assigned_to == assigned_to)
        result = await self.session.execute(stmt)
        return {status: int(count) for status, count in result.all()}

    async def count_overdue(
        self, business_id: str, now: datetime, assigned_to: str | None = None
    ) -> int:
        stmt: Select[tuple[int]] = select(func.count(Ticket.id)).where(
            Ticket.business_id == business_id,
            Ticket.sla_deadline < now,
            Ticket.status.not_in(_SETTLED_TICKET_STATUSES),
        )
        if assigned_to is not None:
            stmt = stmt.where(Ticket.assigned_to == assigned_to)
        result = await self.session.execute(stmt)
        return int(result.scalar_one() or 0)

    async def average_resolution_hours(
        self, business_id: str, assigned_to: str | None = None
    ) -> float | None:
        stmt = select(
            func.avg(func.extract("epoch", Ticket.resolved_at - Ticket.created_at))
        ).where(
            Ticket.business_id == business_id,
            Ticket.status.in_(_SETTLED_TICKET_STATUSES),
            Ticket.resolved_at.is_not(None),
        )
        if assigned_to is not None:
            stmt = stmt.where(Ticket.assigned_to == assigned_to)
        seconds = (await self.session.execute(stmt)).scalar_one_or_none()
        if seconds is None:
            return None
        return float(seconds) / 3600

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
            ticket_id=ticket_id,
            kind=kind,
            note=note,
            actor_id=actor_id,
            actor_name=actor_name,
            reassigned_to=reassigned_to,
            created_at=at,
        )
        self.session.add(event)
        await self.session.flush()
        return event

    async def list_escalation_events(self, ticket_id: UUID) -> list[TicketEscalationEvent]:
        stmt: Select[tuple[TicketEscalationEvent]] = (
            select(TicketEscalationEvent)
            .where(TicketEscalationEvent.ticket_id == ticket_id)
            .order_by(TicketEscalationEvent.created_at.asc())
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def delete(self, ticket: Ticket) -> None:
        await self.session.execute(delete(Ticket).where(Ticket.id == ticket.id))
        self.session.expunge(ticket)


class ChatSessionRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, session_id: str) -> ChatSession | None:
        return await self.session.get(ChatSession, session_id)

    async def add(self, chat_session: ChatSession) -> ChatSession:
        self.session.add(chat_session)
        await self.session.flush()
        return chat_session

    async def list_active(self, limit: int | None = None) -> list[ChatSession]:
        stmt: Select[tuple[ChatSession]] = (
            select(ChatSession)
            .where(ChatSession.is_active.is_(True))
            .order_by(ChatSession.last_activity.desc())
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def list_for_customer(self, customer_id: str) -> list[ChatSession]:
        stmt: Select[tuple[ChatSession]] = (
            select(ChatSession)
            .where(ChatSession.customer_id == customer_id)
            .order_by(ChatSession.last_activity.desc())
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def list_idle_since(self, cutoff: datetime) -> list[ChatSession]:
        stmt: Select[tuple[ChatSession]] = select(ChatSession).where(
            ChatSession.is_active.is_(True),
            ChatSession.last_activity < cutoff,
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def count_active(self) -> int:
        stmt: Select[tuple[int]] = select(func.count(ChatSession.id)).where(
            ChatSession.is_active.is_(True)
        )
        result = await self.session.execute(stmt)
        return int(result.scalar_one() or 0)

    async def oldest_active(self, limit: int) -> list[ChatSession]:
        stmt: Select[tuple[ChatSession]] = (
            select(ChatSession)
            .where(ChatSession.is_active.is_(True))
            .order_by(ChatSession.last_activity.asc())
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def delete(self, chat_session: ChatSession) -> None:
        await self.session.delete(chat_session)
        await self.session.flush()
