import logging
from dataclasses import dataclass

from omnidesk.domain.enums import ConversationStatus, MessageSender
from omnidesk.domain.events import InboundEvent
from omnidesk.infra.db.models import Conversation, Message
from omnidesk.infra.storage import Storage

logger = logging.getLogger(__name__)

_REACTIVATED_STATUSES = (ConversationStatus.RESOLVED, ConversationStatus.ARCHIVED)


@dataclass(slots=True)
class RoutedInbound:
    conversation: Conversation
    message: Message | None
    created: bool = False
    duplicate: bool = False


class ConversationRouter:
    """Finds or creates the single open conversation for a customer slot.

    The slot is ``(business_id, customer_id, channel)``. Lookup, dedup check,
    create and append all run while holding the slot lock and are committed
    before the lock is released, so concurrent deliveries for one customer
    resolve to one conversation and one message per provider message id.
    """

    def __init__(self, storage: Storage) -> None:
        self.session = storage.session
        self.conversations = storage.conversations
        self.messages = storage.messages

    async def route_inbound(self, business_id: str, event: InboundEvent) -> RoutedInbound:
        async with self.conversations.slot_lock(business_id, event.customer_id, event.channel):
            conversation = await self.conversations.get_open_for_slot(
                business_id, event.customer_id, event.channel
            )
            created = False
            if conversation is None:
                conversation = await self.conversations.create(
                    business_id=business_id,
                    customer_id=event.customer_id,
                    channel=event.channel,
                    customer_name=event.customer_name,
                )
                created = True
                logger.info(
                    "Opened conversation %s for %s customer %s",
                    conversation.id,
                    event.channel.value,
                    event.customer_id,
                )
            elif await self.messages.exists_for_provider_id(
                conversation.id, event.provider_message_id
            ):
                await self.session.commit()
                logger.info(
                    "Duplicate delivery of %s message %s ignored",
                    event.channel.value,
                    event.provider_message_id,
                )
                return RoutedInbound(conversation=conversation, message=None, duplicate=True)
            else:
                if conversation.status in _REACTIVATED_STATUSES:
                    logger.info(
                        "Reactivating %s conversation %s on new inbound message",
                        conversation.status.value,
                        conversation.id,
                    )
                    conversation.status = ConversationStatus.ACTIVE
                if event.customer_name and not conversation.customer_name:
                    conversation.customer_name = event.customer_name

            message = await self.messages.create(
                conversation_id=conversation.id,
                sender=MessageSender.CUSTOMER,
                sender_name=event.customer_name,
                message_type=event.message_type,
                content=event.content,
                provider_message_id=event.provider_message_id,
                channel_data=event.channel_data(),
            )
            await self.conversations.touch(conversation, last_message_at=message.created_at)
            await self.session.commit()

        return RoutedInbound(conversation=conversation, message=message, created=created)
