import asyncio
import logging
from dataclasses import dataclass, field

from sqlalchemy.exc import SQLAlchemyError

from omnidesk.core.config import DEFAULT_AI_FALLBACK_REPLY
from omnidesk.domain.enums import DispatchOutcome, MessageSender, MessageType
from omnidesk.domain.events import InboundEvent
from omnidesk.domain.triggers import NoopTriggerDetector, TriggerDetector
from omnidesk.infra.db.models import Conversation, Message, Ticket
from omnidesk.infra.storage import Storage
from omnidesk.integrations.ai import GeneratedReply, ReplyContext, ReplyGenerator
from omnidesk.integrations.delivery import MessageSender as OutboundSender
from omnidesk.services.delivery import DeliveryService, RetryPolicy
from omnidesk.services.errors import ConflictError, ValidationError
from omnidesk.services.handoff import HandoffController
from omnidesk.services.session_registry import SessionRegistry
from omnidesk.services.ticket_service import TicketManager

logger = logging.getLogger(__name__)

AI_SENDER_NAME = "AI Assistant"
HISTORY_WINDOW = 10


@dataclass(slots=True)
class DispatchResult:
    outcome: DispatchOutcome
    message: Message | None = None
    ticket: Ticket | None = None
    tools_used: list[str] = field(default_factory=list)
    delivered: bool = False


class ReplyDispatcher:
    """Runs the AI side of one inbound turn.

    Every turn checks the handoff flag, answers either with a trigger-created
    ticket confirmation or the AI collaborator's reply, persists that reply as
    an ``AI_AGENT`` message, and hands it to delivery. The handoff flag is
    read again after the reply is produced, so a human takeover that lands
    while the AI is thinking discards the reply.
    """

    def __init__(
        self,
        storage: Storage,
        reply_generator: ReplyGenerator,
        sender: OutboundSender,
        trigger_detector: TriggerDetector | None = None,
        ticket_manager: TicketManager | None = None,
        session_registry: SessionRegistry | None = None,
        retry_policy: RetryPolicy | None = None,
        reply_timeout: float = 30.0,
        fallback_reply: str = DEFAULT_AI_FALLBACK_REPLY,
    ) -> None:
        self.session = storage.session
        self.conversations = storage.conversations
        self.messages = storage.messages
        self.reply_generator = reply_generator
        self.trigger_detector = trigger_detector or NoopTriggerDetector()
        self.handoff = HandoffController(storage)
        self.tickets = ticket_manager or TicketManager(storage)
        self.sessions = session_registry or SessionRegistry(storage)
        self.delivery = DeliveryService(storage, sender, retry_policy)
        self.reply_timeout = reply_timeout
        self.fallback_reply = fallback_reply

    async def dispatch(self, conversation: Conversation, event: InboundEvent) -> DispatchResult:
        if not await self.handoff.should_invoke_ai(conversation.id):
            logger.debug("Conversation %s is human-handled; AI skipped", conversation.id)
            return DispatchResult(outcome=DispatchOutcome.SKIPPED)

        ticket = await self._create_trigger_ticket(conversation, event)
        if ticket is not None:
            reply = GeneratedReply(
                text=self.tickets.confirmation_text(ticket),
                tools_used=["create_ticket"],
                topic=ticket.category.value,
            )
            outcome = DispatchOutcome.REPLIED
        else:
            reply, outcome = await self._generate(conversation, event)

        if not await self.handoff.should_invoke_ai(conversation.id):
            logger.info(
                "Human took over conversation %s while the AI was replying; reply discarded",
                conversation.id,
            )
            return DispatchResult(outcome=DispatchOutcome.SKIPPED, ticket=ticket)

        message = await self.messages.create(
            conversation_id=conversation.id,
            sender=MessageSender.AI_AGENT,
            sender_name=AI_SENDER_NAME,
            message_type=MessageType.TEXT,
            content=reply.text,
            channel_data={
                "outcome": outcome.value,
                "tools_used": reply.tools_used,
                "ticket_number": ticket.ticket_number if ticket is not None else None,
            },
            is_read=True,
        )
        await self.conversations.touch(conversation, last_message_at=message.created_at)
        await self.session.commit()

        delivery = await self.delivery.deliver(conversation, message)
        await self._record_session_turn(conversation, event, reply)
        return DispatchResult(
            outcome=outcome,
            message=message,
            ticket=ticket,
            tools_used=reply.tools_used,
            delivered=delivery is not None,
        )

    async def _create_trigger_ticket(
        self, conversation: Conversation, event: InboundEvent
    ) -> Ticket | None:
        if event.message_type != MessageType.TEXT:
            return None
        match = self.trigger_detector.detect(event.content)
        if match is None:
            return None
        try:
            async with self.session.begin_nested():
                return await self.tickets.create_from_trigger(
                    conversation, event.content, match
                )
        except (ValidationError, ConflictError) as exc:
            logger.warning(
                "Trigger %r matched in conversation %s but ticket creation failed: %s",
                match.trigger,
                conversation.id,
                exc,
            )
        except SQLAlchemyError:
            logger.exception(
                "Trigger %r matched in conversation %s but the ticket was not stored",
                match.trigger,
                conversation.id,
            )
        return None

    async def _record_session_turn(
        self, conversation: Conversation, event: InboundEvent, reply: GeneratedReply
    ) -> None:
        try:
            async with self.session.begin_nested():
                await self.sessions.record_turn(
                    session_id=str(conversation.id),
                    customer_id=conversation.customer_id,
                    customer_name=conversation.customer_name,
                    conversation_id=conversation.id,
                    user_text=event.content,
                    reply_text=reply.text,
                    topic=reply.topic,
                    mentioned_products=reply.mentioned_products,
                )
        except SQLAlchemyError:
            logger.exception(
                "Session context for conversation %s was not updated", conversation.id
            )

    async def _generate(
        self, conversation: Conversation, event: InboundEvent
    ) -> tuple[GeneratedReply, DispatchOutcome]:
        history = await self.messages.list_by_conversation(conversation.id)
        context = ReplyContext(
            conversation_id=conversation.id,
            business_id=conversation.business_id,
            customer_id=conversation.customer_id,
            channel=conversation.channel,
            text=event.content,
            images=[
                {"url": attachment.url, **attachment.payload}
                for attachment in event.image_attachments
            ],
            history=[
                {"role": message.sender.value, "content": message.content}
                for message in history[-HISTORY_WINDOW:]
            ],
            session_context=await self.sessions.get_context(str(conversation.id)),
        )
        try:
            reply = await asyncio.wait_for(
                self.reply_generator.generate_reply(context), timeout=self.reply_timeout
            )
        except TimeoutError:
            logger.warning(
                "AI reply for conversation %s timed out after %.0fs; sending fallback",
                conversation.id,
                self.reply_timeout,
            )
            return GeneratedReply(text=self.fallback_reply), DispatchOutcome.DEGRADED
        except Exception:
            logger.warning(
                "AI reply for conversation %s failed; sending fallback",
                conversation.id,
                exc_info=True,
            )
            return GeneratedReply(text=self.fallback_reply), DispatchOutcome.DEGRADED
        return reply, DispatchOutcome.REPLIED
