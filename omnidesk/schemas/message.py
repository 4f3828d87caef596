from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from omnidesk.domain.enums import MessageSender, MessageType


class AgentMessageRequest(BaseModel):
    content: str = Field(min_length=1, max_length=4000)
    sender: MessageSender = MessageSender.HUMAN_AGENT
    sender_name: str | None = Field(default=None, max_length=255)
    message_type: MessageType = MessageType.TEXT
    product_data: dict | None = None


class NoteRequest(BaseModel):
    content: str = Field(min_length=1, max_length=4000)
    author: str | None = Field(default=None, max_length=255)


class MarkReadRequest(BaseModel):
    sender: MessageSender | None = MessageSender.CUSTOMER


class MessageResponse(BaseModel):
    id: UUID
    conversation_id: UUID
    sender: MessageSender
    sender_name: str | None
    message_type: MessageType
    content: str
    provider_message_id: str | None
    channel_data: dict | None = None
    is_read: bool
    delivery_failed: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
