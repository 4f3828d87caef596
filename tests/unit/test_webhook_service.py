from contextlib import asynccontextmanager
from uuid import uuid4

import pytest

from omnidesk.domain.enums import Channel, DispatchOutcome, MessageSender
from omnidesk.infra.memory.store import InMemoryStorageProvider
from omnidesk.integrations.ai import GeneratedReply, ReplyContext
from omnidesk.integrations.delivery import DeliveryResult
from omnidesk.services.delivery import RetryPolicy
from omnidesk.services.errors import PersistenceError
from omnidesk.services.webhook_service import InboundPipeline, PendingTurn, ReplyCollaborators


class EchoReplyGenerator:
    async def generate_reply(self, context: ReplyContext) -> GeneratedReply:
        return GeneratedReply(text=f"You said: {context.text}")


class RecordingSender:
    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []

    async def send_message(self, channel: Channel, recipient_id: str, content: str):
        self.sent.append((recipient_id, content))
        return DeliveryResult(delivery_id="out-1")


class BrokenStorageProvider:
    @asynccontextmanager
    async def unit(self):
        raise PersistenceError("open unit", "connection refused")
        yield

    async def ping(self) -> None:
        return None

    async def close(self) -> None:
        return None


def _instagram_payload(*messages: tuple[str, str, str]) -> dict:
    return {
        "object": "instagram",
        "entry": [
            {
                "id": "ig-business",
                "messaging": [
                    {
                        "sender": {"id": sender_id},
                        "timestamp": 1760000000000,
                        "message": {"mid": mid, "text": text},
                    }
                    for sender_id, mid, text in messages
                ],
            }
        ],
    }


def _pipeline(provider, sender=None) -> InboundPipeline:
    return InboundPipeline(
        provider,
        ReplyCollaborators(
            reply_generator=EchoReplyGenerator(),
            sender=sender or RecordingSender(),
            retry_policy=RetryPolicy(retries=0, backoff_seconds=()),
        ),
    )


@pytest.mark.asyncio
async def test_ingest_persists_before_any_reply(provider: InMemoryStorageProvider) -> None:
    sender = RecordingSender()
    pipeline = _pipeline(provider, sender)

    result = await pipeline.ingest(
        "biz-1",
        Channel.INSTAGRAM,
        _instagram_payload(("user-1", "m-1", "hi"), ("user-2", "m-2", "hello")),
    )

    assert result.received == 2
    assert result.stored == 2
    assert len(result.pending_turns) == 2
    assert len(provider.database.messages) == 2
    assert sender.sent == []


@pytest.mark.asyncio
async def test_replayed_webhook_counts_duplicates(provider: InMemoryStorageProvider) -> None:
    pipeline = _pipeline(provider)
    payload = _instagram_payload(("user-1", "m-1", "hi"))

    await pipeline.ingest("biz-1", Channel.INSTAGRAM, payload)
    replay = await pipeline.ingest("biz-1", Channel.INSTAGRAM, payload)

    assert replay.duplicates == 1
    assert replay.stored == 0
    assert replay.pending_turns == []
    assert len(provider.database.messages) == 1


@pytest.mark.asyncio
async def test_malformed_payload_is_reported(provider: InMemoryStorageProvider) -> None:
    result = await _pipeline(provider).ingest(
        "biz-1", Channel.FACEBOOK, {"object": "page", "entry": "oops"}
    )

    assert result.malformed
    assert result.received == 0


class ExplodingAdapter:
    def parse(self, payload):
        return payload["entry"][0].get("messaging")


@pytest.mark.asyncio
async def test_parser_crash_is_treated_as_malformed(
    provider: InMemoryStorageProvider, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr(
        "omnidesk.services.webhook_service.get_adapter", lambda channel: ExplodingAdapter()
    )

    result = await _pipeline(provider).ingest(
        "biz-1", Channel.FACEBOOK, {"object": "page", "entry": ["not-an-entry"]}
    )

    assert result.malformed
    assert result.received == 0
    assert provider.database.conversations == {}


@pytest.mark.asyncio
async def test_persistence_failure_is_counted() -> None:
    result = await _pipeline(BrokenStorageProvider()).ingest(
        "biz-1", Channel.INSTAGRAM, _instagram_payload(("user-1", "m-1", "hi"))
    )

    assert result.received == 1
    assert result.failed == 1
    assert result.stored == 0


@pytest.mark.asyncio
async def test_process_turns_replies_per_event(provider: InMemoryStorageProvider) -> None:
    sender = RecordingSender()
    pipeline = _pipeline(provider, sender)
    ingested = await pipeline.ingest(
        "biz-1",
        Channel.INSTAGRAM,
        _instagram_payload(("user-1", "m-1", "hi"), ("user-1", "m-2", "are you there?")),
    )

    results = await pipeline.process_turns(ingested.pending_turns)

    assert [result.outcome for result in results] == [DispatchOutcome.REPLIED] * 2
    assert sender.sent == [
        ("user-1", "You said: hi"),
        ("user-1", "You said: are you there?"),
    ]
    ai_messages = [
        message
        for message in provider.database.messages.values()
        if message.sender == MessageSender.AI_AGENT
    ]
    assert len(ai_messages) == 2
    assert len(provider.database.conversations) == 1


@pytest.mark.asyncio
async def test_turn_for_deleted_conversation_is_dropped(provider: InMemoryStorageProvider) -> None:
    pipeline = _pipeline(provider)
    ingested = await pipeline.ingest(
        "biz-1", Channel.INSTAGRAM, _instagram_payload(("user-1", "m-1", "hi"))
    )
    [turn] = ingested.pending_turns

    provider.database.conversations.clear()

    assert await pipeline.process_turn(turn) is None
    assert await pipeline.process_turn(PendingTurn(uuid4(), turn.event)) is None
