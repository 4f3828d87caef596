import logging
from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID

from omnidesk.domain.enums import (
    Channel,
    ConversationPriority,
    ConversationStatus,
    MessageSender,
    MessageType,
)
from omnidesk.infra.db.models import Conversation, Message
from omnidesk.infra.storage import CONVERSATION_SORT_FIELDS, ConversationQuery, Storage
from omnidesk.integrations.delivery import MessageSender as OutboundSender
from omnidesk.services.delivery import DeliveryService, RetryPolicy
from omnidesk.services.errors import (
    ConversationNotFoundError,
    ConversationSlotTakenError,
    ValidationError,
)
from omnidesk.services.handoff import HandoffController
from omnidesk.services.session_registry import SessionRegistry
from omnidesk.services.ticket_service import TicketManager, TicketSnapshot

logger = logging.getLogger(__name__)

PREVIEW_LENGTH = 120
AGENT_MESSAGE_SENDERS = (MessageSender.HUMAN_AGENT, MessageSender.SYSTEM)


@dataclass(slots=True)
class ConversationFilters:
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
    limit: int = 50
    offset: int = 0


@dataclass(slots=True)
class ConversationSummary:
    conversation: Conversation
    last_message: Message | None
    unread_count: int

    @property
    def preview(self) -> str | None:
        if self.last_message is None:
            return None
        return self.last_message.content[:PREVIEW_LENGTH]


@dataclass(slots=True)
class ConversationPage:
    items: list[ConversationSummary]
    total: int
    limit: int
    offset: int

    @property
    def has_more(self) -> bool:
        return self.offset + len(self.items) < self.total


@dataclass(slots=True)
class ConversationDetail:
    conversation: Conversation
    messages: list[Message]
    total_messages: int
    unread_count: int


@dataclass(slots=True)
class InboxStats:
    total_conversations: int
    by_status: dict[str, int] = field(default_factory=dict)
    unread_messages: int = 0
    average_response_minutes: float = 0.0
    channel_distribution: dict[str, int] = field(default_factory=dict)
    priority_distribution: dict[str, int] = field(default_factory=dict)

    @property
    def active(self) -> int:
        return self.by_status.get(ConversationStatus.ACTIVE.value, 0)

    @property
    def escalated(self) -> int:
        return self.by_status.get(ConversationStatus.ESCALATED.value, 0)

    @property
    def resolved(self) -> int:
        return self.by_status.get(ConversationStatus.RESOLVED.value, 0)


@dataclass(slots=True)
class AgentMessageResult:
    conversation: Conversation
    message: Message
    delivered: bool


class InboxService:
    def __init__(
        self,
        storage: Storage,
        sender: OutboundSender,
        retry_policy: RetryPolicy | None = None,
        session_registry: SessionRegistry | None = None,
        ticket_manager: TicketManager | None = None,
    ) -> None:
        self.session = storage.session
        self.conversations = storage.conversations
        self.messages = storage.messages
        self.tickets = storage.tickets
        self.delivery = DeliveryService(storage, sender, retry_policy)
        self.handoff = HandoffController(storage)
        self.sessions = session_registry or SessionRegistry(storage)
        self.ticket_manager = ticket_manager or TicketManager(storage)

    async def list_conversations(
        self, business_id: str, filters: ConversationFilters
    ) -> ConversationPage:
        if filters.sort_by not in CONVERSATION_SORT_FIELDS:
            raise ValidationError(
                f"sort_by must be one of: {', '.join(CONVERSATION_SORT_FIELDS)}",
                field="sort_by",
            )
        query = ConversationQuery(
            business_id=business_id,
            status=filters.status,
            priority=filters.priority,
            channel=filters.channel,
            assigned_to=filters.assigned_to,
            created_from=filters.created_from,
            created_to=filters.created_to,
            search=filters.search,
            unread_only=filters.unread_only,
            sort_by=filters.sort_by,
            descending=filters.descending,
            limit=filters.limit,
            offset=filters.offset,
        )
        conversations, total = await self.conversations.search(query)
        return ConversationPage(
            items=await self._summarize(conversations),
            total=total,
            limit=filters.limit,
            offset=filters.offset,
        )

    async def search(self, business_id: str, term: str, limit: int = 20) -> list[ConversationSummary]:
        cleaned = term.strip()
        if len(cleaned) < 2:
            raise ValidationError("Search query must be at least 2 characters", field="q")
        conversations, _ = await self.conversations.search(
            ConversationQuery(business_id=business_id, search=cleaned, limit=limit)
        )
        return await self._summarize(conversations)

    async def get_detail(
        self,
        conversation_id: UUID,
        limit: int | None = 100,
        offset: int = 0,
        mark_read: bool = False,
    ) -> ConversationDetail:
        conversation = await self._get_conversation_or_raise(conversation_id)
        if mark_read:
            await self.messages.mark_read(conversation.id, MessageSender.CUSTOMER)
            await self.session.commit()

        messages = await self.messages.list_by_conversation(conversation.id, limit, offset)
        unread = await self.messages.unread_counts([conversation.id])
        return ConversationDetail(
            conversation=conversation,
            messages=messages,
            total_messages=await self.messages.count_by_conversation(conversation.id),
            unread_count=unread.get(conversation.id, 0),
        )

    async def stats(self, business_id: str) -> InboxStats:
        query = ConversationQuery(business_id=business_id, limit=None)
        by_status = await self.conversations.count_by("status", query)
        return InboxStats(
            total_conversations=sum(by_status.values()),
            by_status=by_status,
            unread_messages=await self.messages.count_unread(query),
            average_response_minutes=await self.conversations.average_resolution_minutes(query),
            channel_distribution=await self.conversations.count_by("channel", query),
            priority_distribution=await self.conversations.count_by("priority", query),
        )

    async def mark_read(
        self, conversation_id: UUID, sender: MessageSender | None = None
    ) -> int:
        conversation = await self._get_conversation_or_raise(conversation_id)
        updated = await self.messages.mark_read(conversation.id, sender)
        await self.session.commit()
        return updated

    async def assign(self, conversation_id: UUID, assignee: str | None) -> Conversation:
        conversation = await self._get_conversation_or_raise(conversation_id)
        conversation.assigned_to = (assignee or "").strip() or None
        await self.conversations.touch(conversation)
        await self.session.commit()
        logger.info("Conversation %s assigned to %s", conversation.id, conversation.assigned_to)
        return conversation

    async def update_status(
        self, conversation_id: UUID, status: ConversationStatus
    ) -> Conversation:
        conversation = await self._get_conversation_or_raise(conversation_id)
        if conversation.status == status:
            return conversation

        if conversation.status == ConversationStatus.CLOSED:
            # Reopening competes with inbound routing for the customer slot.
            async with self.conversations.slot_lock(
                conversation.business_id, conversation.customer_id, conversation.channel
            ):
                open_conversation = await self.conversations.get_open_for_slot(
                    conversation.business_id, conversation.customer_id, conversation.channel
                )
                if open_conversation is not None:
                    raise ConversationSlotTakenError(conversation.id, open_conversation.id)
                conversation.status = status
                await self.conversations.touch(conversation)
                await self.session.commit()
            return conversation

        conversation.status = status
        await self.conversations.touch(conversation)
        await self.session.commit()
        return conversation

    async def update_priority(
        self, conversation_id: UUID, priority: ConversationPriority
    ) -> Conversation:
        conversation = await self._get_conversation_or_raise(conversation_id)
        conversation.priority = priority
        await self.conversations.touch(conversation)
        await self.session.commit()
        return conversation

    async def add_tags(self, conversation_id: UUID, tags: list[str]) -> Conversation:
        cleaned = [tag.strip() for tag in tags if tag and tag.strip()]
        if not cleaned:
            raise ValidationError("Tags must be a non-empty array", field="tags")

        conversation = await self._get_conversation_or_raise(conversation_id)
        merged = list(conversation.tags or [])
        for tag in cleaned:
            if tag not in merged:
                merged.append(tag)
        conversation.tags = merged
        await self.conversations.touch(conversation)
        await self.session.commit()
        return conversation

    async def remove_tag(self, conversation_id: UUID, tag: str) -> Conversation:
        conversation = await self._get_conversation_or_raise(conversation_id)
        conversation.tags = [existing for existing in conversation.tags or [] if existing != tag]
        await self.conversations.touch(conversation)
        await self.session.commit()
        return conversation

    async def add_note(
        self, conversation_id: UUID, content: str, author: str | None = None
    ) -> Message:
        cleaned = content.strip()
        if not cleaned:
            raise ValidationError("Note content is required", field="content")

        conversation = await self._get_conversation_or_raise(conversation_id)
        note = await self.messages.create(
            conversation_id=conversation.id,
            sender=MessageSender.SYSTEM,
            sender_name=author or "Agent",
            message_type=MessageType.SYSTEM,
            content=cleaned,
            channel_data={"internal_note": True},
            is_read=True,
        )
        await self.conversations.touch(conversation)
        await self.session.commit()
        return note

    async def send_agent_message(
        self,
        conversation_id: UUID,
        content: str,
        sender: MessageSender = MessageSender.HUMAN_AGENT,
        sender_name: str | None = None,
        message_type: MessageType = MessageType.TEXT,
        product_data: dict | None = None,
    ) -> AgentMessageResult:
        cleaned = content.strip()
        if not cleaned:
            raise ValidationError("Message content is required", field="content")
        if sender not in AGENT_MESSAGE_SENDERS:
            raise ValidationError("Invalid sender type", field="sender")

        conversation = await self._get_conversation_or_raise(conversation_id)
        message = await self.messages.create(
            conversation_id=conversation.id,
            sender=sender,
            sender_name=sender_name or "Agent",
            message_type=message_type,
            content=cleaned,
            channel_data={
                "human_agent": sender == MessageSender.HUMAN_AGENT,
                "sent_from_inbox": True,
                "product_data": product_data,
            },
            is_read=True,
        )
        await self.conversations.touch(conversation, last_message_at=message.created_at)
        await self.session.commit()

        delivery = await self.delivery.deliver(conversation, message)
        return AgentMessageResult(
            conversation=conversation, message=message, delivered=delivery is not None
        )

    async def conversation_tickets(self, conversation_id: UUID) -> list[TicketSnapshot]:
        conversation = await self._get_conversation_or_raise(conversation_id)
        tickets = await self.tickets.list_linked(
            conversation.id, conversation.business_id, conversation.customer_id
        )
        return [self.ticket_manager.snapshot(ticket) for ticket in tickets]

    async def clear_messages(self, conversation_id: UUID) -> int:
        conversation = await self._get_conversation_or_raise(conversation_id)
        deleted = await self.messages.delete_by_conversation(conversation.id)
        await self.conversations.touch(conversation)
        await self.session.commit()
        return deleted

    async def reset(self, conversation_id: UUID, actor: str | None = None) -> Conversation:
        conversation = await self._get_conversation_or_raise(conversation_id)
        if conversation.status == ConversationStatus.CLOSED:
            raise ValidationError("Closed conversations cannot be reset", field="status")

        deleted = await self.messages.delete_by_conversation(conversation.id)
        conversation.status = ConversationStatus.ACTIVE
        conversation = await self.handoff.set_handling(conversation.id, True, actor=actor)
        await self.sessions.close_if_open(str(conversation.id))
        logger.info(
            "Conversation %s reset (%d messages removed, handed back to AI)",
            conversation.id,
            deleted,
        )
        return conversation

    async def delete(self, conversation_id: UUID) -> None:
        conversation = await self._get_conversation_or_raise(conversation_id)
        await self.sessions.close_if_open(str(conversation.id))
        await self.conversations.delete(conversation)
        await self.session.commit()
        logger.info("Conversation %s deleted", conversation_id)

    async def _summarize(self, conversations: list[Conversation]) -> list[ConversationSummary]:
        ids = [conversation.id for conversation in conversations]
        latest = await self.messages.latest_by_conversations(ids)
        unread = await self.messages.unread_counts(ids)
        return [
            ConversationSummary(
                conversation=conversation,
                last_message=latest.get(conversation.id),
                unread_count=unread.get(conversation.id, 0),
            )
            for conversation in conversations
        ]

    async def _get_conversation_or_raise(self, conversation_id: UUID) -> Conversation:
        conversation = await self.conversations.get_by_id(conversation_id)
        if conversation is None:
            raise ConversationNotFoundError(conversation_id)
        return conversation
