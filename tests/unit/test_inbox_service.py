from datetime import UTC, datetime
from uuid import uuid4

import pytest

from omnidesk.domain.enums import (
    Channel,
    ConversationPriority,
    ConversationStatus,
    MessageSender,
)
from omnidesk.domain.events import InboundEvent
from omnidesk.infra.memory.store import InMemoryStorageProvider
from omnidesk.integrations.delivery import DeliveryResult
from omnidesk.services.conversation_router import ConversationRouter
from omnidesk.services.delivery import RetryPolicy
from omnidesk.services.errors import (
    ConversationNotFoundError,
    ConversationSlotTakenError,
    DownstreamUnavailableError,
    ValidationError,
)
from omnidesk.services.handoff import HandoffController
from omnidesk.services.inbox_service import ConversationFilters, InboxService
from omnidesk.services.session_registry import SessionRegistry
from omnidesk.services.ticket_service import TicketDraft, TicketManager


class RecordingSender:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.sent: list[str] = []

    async def send_message(self, channel: Channel, recipient_id: str, content: str):
        if self.fail:
            raise DownstreamUnavailableError("whatsapp delivery", "timeout")
        self.sent.append(content)
        return DeliveryResult(delivery_id="out-1")


async def _inbound(provider, content, message_id, customer_id="cust-1", name="Sam"):
    event = InboundEvent(
        channel=Channel.WHATSAPP,
        customer_id=customer_id,
        provider_message_id=message_id,
        content=content,
        timestamp=datetime.now(UTC),
        customer_name=name,
    )
    async with provider.unit() as storage:
        routed = await ConversationRouter(storage).route_inbound("biz-1", event)
    return routed.conversation


def _inbox(storage, sender=None) -> InboxService:
    return InboxService(
        storage, sender or RecordingSender(), RetryPolicy(retries=1, backoff_seconds=())
    )


@pytest.mark.asyncio
async def test_list_includes_preview_and_unread_counts(provider: InMemoryStorageProvider) -> None:
    first = await _inbound(provider, "hello", "m-1")
    await _inbound(provider, "x" * 200, "m-2")
    await _inbound(provider, "hi from another customer", "m-3", customer_id="cust-2", name="Ana")

    async with provider.unit() as storage:
        page = await _inbox(storage).list_conversations("biz-1", ConversationFilters())

    assert page.total == 2
    summary = next(item for item in page.items if item.conversation.id == first.id)
    assert summary.unread_count == 2
    assert summary.preview == "x" * 120


@pytest.mark.asyncio
async def test_list_rejects_unknown_sort_field(provider: InMemoryStorageProvider) -> None:
    async with provider.unit() as storage:
        with pytest.raises(ValidationError):
            await _inbox(storage).list_conversations(
                "biz-1", ConversationFilters(sort_by="customer_email")
            )


@pytest.mark.asyncio
async def test_filters_and_search(provider: InMemoryStorageProvider) -> None:
    first = await _inbound(provider, "my parcel is late", "m-1")
    await _inbound(provider, "thanks", "m-2", customer_id="cust-2", name="Ana")

    async with provider.unit() as storage:
        inbox = _inbox(storage)
        await inbox.update_priority(first.id, ConversationPriority.URGENT)
        urgent = await inbox.list_conversations(
            "biz-1", ConversationFilters(priority=ConversationPriority.URGENT)
        )
        found = await inbox.search("biz-1", "PARCEL")
        by_name = await inbox.search("biz-1", "ana")
        with pytest.raises(ValidationError):
            await inbox.search("biz-1", " a ")

    assert [item.conversation.id for item in urgent.items] == [first.id]
    assert [item.conversation.id for item in found] == [first.id]
    assert [item.conversation.customer_name for item in by_name] == ["Ana"]


@pytest.mark.asyncio
async def test_detail_marks_customer_messages_read(provider: InMemoryStorageProvider) -> None:
    conversation = await _inbound(provider, "hello", "m-1")
    await _inbound(provider, "anyone?", "m-2")

    async with provider.unit() as storage:
        inbox = _inbox(storage)
        unread = await inbox.get_detail(conversation.id)
        read = await inbox.get_detail(conversation.id, mark_read=True)
        paged = await inbox.get_detail(conversation.id, limit=1, offset=1)

    assert unread.unread_count == 2
    assert read.unread_count == 0
    assert read.total_messages == 2
    assert [message.content for message in paged.messages] == ["anyone?"]


@pytest.mark.asyncio
async def test_stats(provider: InMemoryStorageProvider) -> None:
    first = await _inbound(provider, "hello", "m-1")
    await _inbound(provider, "hey", "m-2", customer_id="cust-2")

    async with provider.unit() as storage:
        inbox = _inbox(storage)
        await inbox.update_status(first.id, ConversationStatus.ESCALATED)
        stats = await inbox.stats("biz-1")

    assert stats.total_conversations == 2
    assert stats.active == 1
    assert stats.escalated == 1
    assert stats.unread_messages == 2
    assert stats.channel_distribution == {"whatsapp": 2}


@pytest.mark.asyncio
async def test_reopening_closed_conversation_respects_open_slot(
    provider: InMemoryStorageProvider,
) -> None:
    first = await _inbound(provider, "hello", "m-1")
    async with provider.unit() as storage:
        await _inbox(storage).update_status(first.id, ConversationStatus.CLOSED)

    second = await _inbound(provider, "hello again", "m-2")
    assert second.id != first.id

    async with provider.unit() as storage:
        inbox = _inbox(storage)
        with pytest.raises(ConversationSlotTakenError):
            await inbox.update_status(first.id, ConversationStatus.ACTIVE)

        await inbox.update_status(second.id, ConversationStatus.CLOSED)
        reopened = await inbox.update_status(first.id, ConversationStatus.ACTIVE)

    assert reopened.status == ConversationStatus.ACTIVE


@pytest.mark.asyncio
async def test_tags_assignment_and_notes(provider: InMemoryStorageProvider) -> None:
    conversation = await _inbound(provider, "hello", "m-1")

    async with provider.unit() as storage:
        inbox = _inbox(storage)
        await inbox.add_tags(conversation.id, ["vip", " refund ", "vip"])
        await inbox.add_tags(conversation.id, ["refund", "late"])
        tagged = await inbox.remove_tag(conversation.id, "late")
        with pytest.raises(ValidationError):
            await inbox.add_tags(conversation.id, ["  "])

        assigned = await inbox.assign(conversation.id, " agent-7 ")
        note = await inbox.add_note(conversation.id, "Called the courier", author="Kim")

    assert tagged.tags == ["vip", "refund"]
    assert assigned.assigned_to == "agent-7"
    assert note.sender == MessageSender.SYSTEM
    assert note.channel_data == {"internal_note": True}


@pytest.mark.asyncio
async def test_agent_message_is_delivered(provider: InMemoryStorageProvider) -> None:
    conversation = await _inbound(provider, "hello", "m-1")
    sender = RecordingSender()

    async with provider.unit() as storage:
        result = await _inbox(storage, sender).send_agent_message(
            conversation.id, "On it!", sender_name="Kim"
        )

    assert result.delivered
    assert sender.sent == ["On it!"]
    assert result.message.sender == MessageSender.HUMAN_AGENT
    assert result.message.channel_data["sent_from_inbox"] is True
    assert result.conversation.last_message_at == result.message.created_at


@pytest.mark.asyncio
async def test_agent_message_delivery_failure_keeps_message(
    provider: InMemoryStorageProvider,
) -> None:
    conversation = await _inbound(provider, "hello", "m-1")

    async with provider.unit() as storage:
        result = await _inbox(storage, RecordingSender(fail=True)).send_agent_message(
            conversation.id, "On it!"
        )

    assert not result.delivered
    assert result.message.delivery_failed
    assert result.message.id in provider.database.messages


@pytest.mark.asyncio
async def test_agent_message_rejects_customer_sender(provider: InMemoryStorageProvider) -> None:
    conversation = await _inbound(provider, "hello", "m-1")

    async with provider.unit() as storage:
        with pytest.raises(ValidationError):
            await _inbox(storage).send_agent_message(
                conversation.id, "spoofed", sender=MessageSender.CUSTOMER
            )


@pytest.mark.asyncio
async def test_conversation_tickets(provider: InMemoryStorageProvider) -> None:
    conversation = await _inbound(provider, "hello", "m-1")
    async with provider.unit() as storage:
        await TicketManager(storage).create(
            TicketDraft(
                business_id="biz-1",
                customer_id="cust-1",
                title="Late parcel",
                description="details",
                priority="normal",
                category="shipping",
            )
        )
        snapshots = await _inbox(storage).conversation_tickets(conversation.id)

    assert [snapshot.ticket.title for snapshot in snapshots] == ["Late parcel"]


@pytest.mark.asyncio
async def test_reset_clears_messages_and_returns_to_ai(provider: InMemoryStorageProvider) -> None:
    conversation = await _inbound(provider, "hello", "m-1")
    session_id = str(conversation.id)

    async with provider.unit() as storage:
        await SessionRegistry(storage).record_turn(session_id, "cust-1", "hello", "hi")
        await HandoffController(storage).set_handling(conversation.id, False, actor="agent-7")
        conversation.status = ConversationStatus.ESCALATED

        reset = await _inbox(storage).reset(conversation.id, actor="agent-7")
        ai_handling = await HandoffController(storage).should_invoke_ai(conversation.id)

    assert reset.status == ConversationStatus.ACTIVE
    assert ai_handling
    assert provider.database.messages == {}
    assert not provider.database.chat_sessions[session_id].is_active


@pytest.mark.asyncio
async def test_closed_conversation_cannot_be_reset(provider: InMemoryStorageProvider) -> None:
    conversation = await _inbound(provider, "hello", "m-1")
    conversation.status = ConversationStatus.CLOSED

    async with provider.unit() as storage:
        with pytest.raises(ValidationError):
            await _inbox(storage).reset(conversation.id)


@pytest.mark.asyncio
async def test_clear_and_delete(provider: InMemoryStorageProvider) -> None:
    conversation = await _inbound(provider, "hello", "m-1")
    await _inbound(provider, "again", "m-2")

    async with provider.unit() as storage:
        inbox = _inbox(storage)
        assert await inbox.clear_messages(conversation.id) == 2
        await inbox.delete(conversation.id)
        with pytest.raises(ConversationNotFoundError):
            await inbox.get_detail(conversation.id)
        with pytest.raises(ConversationNotFoundError):
            await inbox.mark_read(uuid4())

    assert provider.database.conversations == {}
