import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any
from uuid import UUID

from omnidesk.channels import get_adapter
from omnidesk.core.config import DEFAULT_AI_FALLBACK_REPLY
from omnidesk.domain.enums import Channel
from omnidesk.domain.events import InboundEvent
from omnidesk.domain.exceptions import MalformedPayloadError
from omnidesk.domain.sla import SlaPolicy
from omnidesk.domain.triggers import NoopTriggerDetector, TriggerDetector
from omnidesk.infra.storage import Storage, StorageProvider
from omnidesk.integrations.ai import ReplyGenerator
from omnidesk.integrations.delivery import MessageSender as OutboundSender
from omnidesk.services.conversation_router import ConversationRouter
from omnidesk.services.delivery import RetryPolicy
from omnidesk.services.errors import PersistenceError
from omnidesk.services.reply_dispatcher import DispatchResult, ReplyDispatcher
from omnidesk.services.session_registry import SessionLimits, SessionRegistry
from omnidesk.services.ticket_service import TicketManager

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ReplyCollaborators:
    """Long-lived objects a reply turn needs, built once at startup."""

    reply_generator: ReplyGenerator
    sender: OutboundSender
    trigger_detector: TriggerDetector = field(default_factory=NoopTriggerDetector)
    sla_policy: SlaPolicy = field(default_factory=SlaPolicy.default)
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)
    session_limits: SessionLimits = field(default_factory=SessionLimits)
    reply_timeout: float = 30.0
    fallback_reply: str = DEFAULT_AI_FALLBACK_REPLY

    def dispatcher(self, storage: Storage) -> ReplyDispatcher:
        return ReplyDispatcher(
            storage,
            reply_generator=self.reply_generator,
            sender=self.sender,
            trigger_detector=self.trigger_detector,
            ticket_manager=TicketManager(storage, sla_policy=self.sla_policy),
            session_registry=SessionRegistry(storage, self.session_limits),
            retry_policy=self.retry_policy,
            reply_timeout=self.reply_timeout,
            fallback_reply=self.fallback_reply,
        )


@dataclass(frozen=True, slots=True)
class PendingTurn:
    conversation_id: UUID
    event: InboundEvent


@dataclass(slots=True)
class IngestResult:
    received: int = 0
    stored: int = 0
    duplicates: int = 0
    failed: int = 0
    malformed: bool = False
    pending_turns: list[PendingTurn] = field(default_factory=list)


class InboundPipeline:
    """Webhook ingestion split into an acknowledged half and a deferred half.

    ``ingest`` persists every inbound message before the webhook is
    acknowledged. ``process_turns`` runs afterwards (as a background task) and
    opens a fresh storage unit per turn, re-reading the conversation there.
    """

    def __init__(self, provider: StorageProvider, collaborators: ReplyCollaborators) -> None:
        self.provider = provider
        self.collaborators = collaborators

    async def ingest(
        self, business_id: str, channel: Channel, payload: Mapping[str, Any]
    ) -> IngestResult:
        result = IngestResult()
        try:
            events = get_adapter(channel).parse(payload)
        except MalformedPayloadError as exc:
            logger.error("Rejected %s webhook for business %s: %s", channel.value, business_id, exc)
            result.malformed = True
            return result
        except (AttributeError, KeyError, TypeError, ValueError, OverflowError):
            logger.exception(
                "Unreadable %s webhook for business %s", channel.value, business_id
            )
            result.malformed = True
            return result

        result.received = len(events)
        for event in events:
            try:
                async with self.provider.unit() as storage:
                    routed = await ConversationRouter(storage).route_inbound(business_id, event)
            except PersistenceError as exc:
                result.failed += 1
                logger.error(
                    "Inbound %s message %s from %s was not stored: %s",
                    channel.value,
                    event.provider_message_id,
                    event.customer_id,
                    exc,
                )
                continue

            if routed.duplicate:
                result.duplicates += 1
                continue
            result.stored += 1
            result.pending_turns.append(PendingTurn(routed.conversation.id, event))
        return result

    async def process_turns(self, turns: list[PendingTurn]) -> list[DispatchResult]:
        results: list[DispatchResult] = []
        for turn in turns:
            dispatched = await self.process_turn(turn)
            if dispatched is not None:
                results.append(dispatched)
        return results

    async def process_turn(self, turn: PendingTurn) -> DispatchResult | None:
        try:
            async with self.provider.unit() as storage:
                conversation = await storage.conversations.get_by_id(turn.conversation_id)
                if conversation is None:
                    logger.warning(
                        "Conversation %s disappeared before its reply turn", turn.conversation_id
                    )
                    return None
                return await self.collaborators.dispatcher(storage).dispatch(
                    conversation, turn.event
                )
        except Exception:
            logger.exception(
                "Reply turn for conversation %s (message %s) failed",
                turn.conversation_id,
                turn.event.provider_message_id,
            )
            return None
