import logging
from uuid import UUID

from omnidesk.infra.db.models import Conversation
from omnidesk.infra.storage import Storage
from omnidesk.services.errors import ConversationNotFoundError

logger = logging.getLogger(__name__)


class HandoffController:
    """Owns the ``is_ai_handling`` flag of each conversation."""

    def __init__(self, storage: Storage) -> None:
        self.session = storage.session
        self.conversations = storage.conversations

    async def set_handling(
        self,
        conversation_id: UUID,
        ai_handling: bool,
        actor: str | None = None,
    ) -> Conversation:
        conversation = await self.conversations.get_by_id(conversation_id)
        if conversation is None:
            raise ConversationNotFoundError(conversation_id)

        if conversation.is_ai_handling != ai_handling:
            conversation.is_ai_handling = ai_handling
            logger.info(
                "Conversation %s handed %s%s",
                conversation.id,
                "back to AI" if ai_handling else "to a human agent",
                f" by {actor}" if actor else "",
            )
        await self.conversations.touch(conversation)
        await self.session.commit()
        return conversation

    async def should_invoke_ai(self, conversation_id: UUID) -> bool:
        """Read the flag fresh from storage on every call."""
        ai_handling = await self.conversations.read_ai_handling(conversation_id)
        if ai_handling is None:
            raise ConversationNotFoundError(conversation_id)
        return ai_handling
