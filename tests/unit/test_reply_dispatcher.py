import asyncio
from datetime import UTC, datetime
from uuid import uuid4

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from omnidesk.domain.enums import (
    Channel,
    DispatchOutcome,
    MessageSender,
    MessageType,
    TicketCategory,
    TicketSource,
)
from omnidesk.domain.events import InboundEvent
from omnidesk.domain.triggers import KeywordTriggerDetector
from omnidesk.infra.memory.store import (
    InMemoryChatSessionRepository,
    InMemoryStorageProvider,
    InMemoryTicketRepository,
)
from omnidesk.integrations.ai import GeneratedReply, ReplyContext
from omnidesk.integrations.delivery import DeliveryResult
from omnidesk.services.conversation_router import ConversationRouter
from omnidesk.services.delivery import RetryPolicy
from omnidesk.services.errors import ConversationNotFoundError, DownstreamUnavailableError
from omnidesk.services.handoff import HandoffController
from omnidesk.services.reply_dispatcher import ReplyDispatcher

FALLBACK = "We'll get back to you shortly."


class StubReplyGenerator:
    def __init__(self, text: str = "Happy to help!", error: Exception | None = None, delay=0.0):
        self.text = text
        self.error = error
        self.delay = delay
        self.contexts: list[ReplyContext] = []

    async def generate_reply(self, context: ReplyContext) -> GeneratedReply:
        self.contexts.append(context)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return GeneratedReply(text=self.text, tools_used=["search_products"], topic="orders")


class FlakySender:
    def __init__(self, failures: int = 0) -> None:
        self.failures = failures
        self.calls: list[tuple[Channel, str, str]] = []

    async def send_message(self, channel: Channel, recipient_id: str, content: str):
        self.calls.append((channel, recipient_id, content))
        if len(self.calls) <= self.failures:
            raise DownstreamUnavailableError("instagram delivery", "503 Service Unavailable")
        return DeliveryResult(delivery_id=f"out-{len(self.calls)}")


def _event(content: str = "Where is my order?", message_id: str = "m-1") -> InboundEvent:
    return InboundEvent(
        channel=Channel.INSTAGRAM,
        customer_id="cust-1",
        provider_message_id=message_id,
        content=content,
        timestamp=datetime.now(UTC),
    )


async def _dispatch(provider, event, generator, sender=None, **options):
    async with provider.unit() as storage:
        routed = await ConversationRouter(storage).route_inbound("biz-1", event)
        dispatcher = ReplyDispatcher(
            storage,
            generator,
            sender or FlakySender(),
            retry_policy=RetryPolicy(retries=2, backoff_seconds=()),
            fallback_reply=FALLBACK,
            **options,
        )
        result = await dispatcher.dispatch(routed.conversation, event)
    return routed.conversation, result


def _ai_messages(provider: InMemoryStorageProvider):
    return [
        message
        for message in provider.database.messages.values()
        if message.sender == MessageSender.AI_AGENT
    ]


@pytest.mark.asyncio
async def test_ai_reply_is_stored_and_delivered(provider: InMemoryStorageProvider) -> None:
    generator = StubReplyGenerator()
    sender = FlakySender()

    conversation, result = await _dispatch(provider, _event(), generator, sender)

    assert result.outcome == DispatchOutcome.REPLIED
    assert result.delivered
    assert result.tools_used == ["search_products"]
    assert result.message.content == "Happy to help!"
    assert result.message.sender_name == "AI Assistant"
    assert sender.calls == [(Channel.INSTAGRAM, "cust-1", "Happy to help!")]
    assert generator.contexts[0].text == "Where is my order?"
    assert generator.contexts[0].history[-1] == {
        "role": "customer",
        "content": "Where is my order?",
    }
    assert conversation.last_message_at == result.message.created_at


@pytest.mark.asyncio
async def test_turn_is_recorded_in_session(provider: InMemoryStorageProvider) -> None:
    conversation, _ = await _dispatch(provider, _event(), StubReplyGenerator())

    chat_session = provider.database.chat_sessions[str(conversation.id)]
    assert chat_session.context["current_topic"] == "orders"
    assert chat_session.context["conversation_flow"][0]["user"] == "Where is my order?"


@pytest.mark.asyncio
async def test_human_handled_conversation_skips_ai(provider: InMemoryStorageProvider) -> None:
    async with provider.unit() as storage:
        routed = await ConversationRouter(storage).route_inbound("biz-1", _event())
        await HandoffController(storage).set_handling(routed.conversation.id, False, "agent-1")

    generator = StubReplyGenerator()
    sender = FlakySender()
    _, result = await _dispatch(provider, _event(message_id="m-2"), generator, sender)

    assert result.outcome == DispatchOutcome.SKIPPED
    assert generator.contexts == []
    assert sender.calls == []
    assert _ai_messages(provider) == []


@pytest.mark.asyncio
async def test_generator_failure_sends_fallback(provider: InMemoryStorageProvider) -> None:
    generator = StubReplyGenerator(error=DownstreamUnavailableError("AI service", "boom"))

    _, result = await _dispatch(provider, _event(), generator)

    assert result.outcome == DispatchOutcome.DEGRADED
    assert result.message.content == FALLBACK
    assert result.delivered


@pytest.mark.asyncio
async def test_generator_timeout_sends_fallback(provider: InMemoryStorageProvider) -> None:
    generator = StubReplyGenerator(delay=1.0)

    _, result = await _dispatch(provider, _event(), generator, reply_timeout=0.01)

    assert result.outcome == DispatchOutcome.DEGRADED
    assert result.message.content == FALLBACK


@pytest.mark.asyncio
async def test_delivery_is_retried(provider: InMemoryStorageProvider) -> None:
    sender = FlakySender(failures=2)

    _, result = await _dispatch(provider, _event(), StubReplyGenerator(), sender)

    assert result.delivered
    assert len(sender.calls) == 3
    assert not result.message.delivery_failed


@pytest.mark.asyncio
async def test_exhausted_delivery_flags_message(provider: InMemoryStorageProvider) -> None:
    sender = FlakySender(failures=10)

    _, result = await _dispatch(provider, _event(), StubReplyGenerator(), sender)

    assert not result.delivered
    assert len(sender.calls) == 3
    assert result.message.delivery_failed
    assert _ai_messages(provider) == [result.message]


@pytest.mark.asyncio
async def test_trigger_creates_ticket_instead_of_ai_reply(
    provider: InMemoryStorageProvider,
) -> None:
    generator = StubReplyGenerator()

    conversation, result = await _dispatch(
        provider,
        _event("My blender arrived broken"),
        generator,
        trigger_detector=KeywordTriggerDetector(),
    )

    assert generator.contexts == []
    assert result.outcome == DispatchOutcome.REPLIED
    assert result.tools_used == ["create_ticket"]
    assert result.ticket.category == TicketCategory.PRODUCT_ISSUE
    assert result.ticket.source == TicketSource.AI_CHAT
    assert result.ticket.parent_conversation_id == conversation.id
    assert result.ticket.ticket_number in result.message.content
    assert result.message.channel_data["ticket_number"] == result.ticket.ticket_number


@pytest.mark.asyncio
async def test_non_text_messages_never_trigger_tickets(provider: InMemoryStorageProvider) -> None:
    event = InboundEvent(
        channel=Channel.INSTAGRAM,
        customer_id="cust-1",
        provider_message_id="m-sticker",
        content="refund",
        timestamp=datetime.now(UTC),
        message_type=MessageType.STICKER,
    )

    _, result = await _dispatch(
        provider, event, StubReplyGenerator(), trigger_detector=KeywordTriggerDetector()
    )

    assert result.ticket is None
    assert provider.database.tickets == {}


@pytest.mark.asyncio
async def test_trigger_ticket_storage_failure_falls_through_to_ai(
    provider: InMemoryStorageProvider, monkeypatch: pytest.MonkeyPatch
) -> None:
    async def failing_next_sequence(self, business_id, day):
        raise OperationalError("INSERT INTO ticket_counters", {}, Exception("server closed"))

    monkeypatch.setattr(InMemoryTicketRepository, "next_sequence", failing_next_sequence)
    generator = StubReplyGenerator()
    sender = FlakySender()

    _, result = await _dispatch(
        provider,
        _event("I want a refund"),
        generator,
        sender,
        trigger_detector=KeywordTriggerDetector(),
    )

    assert result.ticket is None
    assert result.outcome == DispatchOutcome.REPLIED
    assert generator.contexts[0].text == "I want a refund"
    assert sender.calls == [(Channel.INSTAGRAM, "cust-1", "Happy to help!")]
    assert provider.database.tickets == {}


@pytest.mark.asyncio
async def test_session_bookkeeping_failure_still_delivers_reply(
    provider: InMemoryStorageProvider, monkeypatch: pytest.MonkeyPatch
) -> None:
    async def failing_add(self, chat_session):
        raise IntegrityError("INSERT INTO chat_sessions", {}, Exception("duplicate key"))

    monkeypatch.setattr(InMemoryChatSessionRepository, "add", failing_add)
    sender = FlakySender()

    _, result = await _dispatch(provider, _event(), StubReplyGenerator(), sender)

    assert result.delivered
    assert sender.calls == [(Channel.INSTAGRAM, "cust-1", "Happy to help!")]
    [message] = _ai_messages(provider)
    assert not message.delivery_failed
    assert provider.database.chat_sessions == {}


@pytest.mark.asyncio
async def test_takeover_during_generation_discards_reply(
    provider: InMemoryStorageProvider,
) -> None:
    class TakeoverGenerator(StubReplyGenerator):
        async def generate_reply(self, context: ReplyContext) -> GeneratedReply:
            async with provider.unit() as storage:
                await HandoffController(storage).set_handling(
                    context.conversation_id, False, "agent-1"
                )
            return await super().generate_reply(context)

    sender = FlakySender()

    _, result = await _dispatch(provider, _event(), TakeoverGenerator(), sender)

    assert result.outcome == DispatchOutcome.SKIPPED
    assert result.message is None
    assert sender.calls == []
    assert _ai_messages(provider) == []


@pytest.mark.asyncio
async def test_handoff_on_unknown_conversation(provider: InMemoryStorageProvider) -> None:
    async with provider.unit() as storage:
        with pytest.raises(ConversationNotFoundError):
            await HandoffController(storage).should_invoke_ai(uuid4())
