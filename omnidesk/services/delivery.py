import logging
from dataclasses import dataclass

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_chain,
    wait_fixed,
    wait_none,
)

from omnidesk.core.config import Settings
from omnidesk.infra.db.models import Conversation, Message
from omnidesk.infra.storage import Storage
from omnidesk.integrations.delivery import DeliveryResult, MessageSender
from omnidesk.services.errors import DownstreamUnavailableError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    retries: int = 2
    backoff_seconds: tuple[float, ...] = (0.5, 2.0)

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(
            retries=max(settings.delivery_retry_attempts, 0),
            backoff_seconds=tuple(settings.delivery_retry_backoff),
        )

    def build_retrying(self, on_retry) -> AsyncRetrying:
        if self.backoff_seconds:
            wait = wait_chain(*(wait_fixed(seconds) for seconds in self.backoff_seconds))
        else:
            wait = wait_none()
        return AsyncRetrying(
            stop=stop_after_attempt(self.retries + 1),
            wait=wait,
            retry=retry_if_exception_type(DownstreamUnavailableError),
            before_sleep=on_retry,
            reraise=True,
        )


class DeliveryService:
    """Pushes a persisted outbound message to the customer's channel.

    Failures are retried per ``RetryPolicy``. When retries run out the message
    stays stored and is flagged ``delivery_failed`` so a human can follow up.
    """

    def __init__(
        self,
        storage: Storage,
        sender: MessageSender,
        policy: RetryPolicy | None = None,
    ) -> None:
        self.session = storage.session
        self.messages = storage.messages
        self.sender = sender
        self.policy = policy or RetryPolicy()

    async def deliver(
        self, conversation: Conversation, message: Message
    ) -> DeliveryResult | None:
        def log_retry(retry_state: RetryCallState) -> None:
            exc = retry_state.outcome.exception() if retry_state.outcome else None
            logger.warning(
                "Delivery attempt %d of message %s failed: %s; retrying",
                retry_state.attempt_number,
                message.id,
                exc,
            )

        try:
            async for attempt in self.policy.build_retrying(log_retry):
                with attempt:
                    result = await self.sender.send_message(
                        conversation.channel, conversation.customer_id, message.content
                    )
        except DownstreamUnavailableError:
            logger.exception(
                "Giving up on delivery of message %s to %s customer %s after %d attempts",
                message.id,
                conversation.channel.value,
                conversation.customer_id,
                self.policy.retries + 1,
            )
            await self.messages.mark_delivery_failed(message)
            await self.session.commit()
            return None

        logger.debug("Message %s delivered as %s", message.id, result.delivery_id)
        return result
