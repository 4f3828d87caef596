from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from omnidesk.domain.enums import Channel, ConversationPriority, ConversationStatus
from omnidesk.schemas.message import MessageResponse


class ConversationResponse(BaseModel):
    id: UUID
    business_id: str
    customer_id: str
    customer_name: str | None
    channel: Channel
    status: ConversationStatus
    priority: ConversationPriority
    is_ai_handling: bool
    assigned_to: str | None
    tags: list[str] = Field(default_factory=list)
    last_message_at: datetime
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ConversationSummaryResponse(BaseModel):
    conversation: ConversationResponse
    last_message: MessageResponse | None
    preview: str | None
    unread_count: int


class ConversationListResponse(BaseModel):
    items: list[ConversationSummaryResponse]
    total: int
    limit: int
    offset: int
    has_more: bool


class ConversationDetailResponse(BaseModel):
    conversation: ConversationResponse
    messages: list[MessageResponse]
    total_messages: int
    unread_count: int


class InboxStatsResponse(BaseModel):
    total_conversations: int
    active: int
    escalated: int
    resolved: int
    by_status: dict[str, int]
    unread_messages: int
    average_response_minutes: float
    channel_distribution: dict[str, int]
    priority_distribution: dict[str, int]


class AgentMessageResponse(BaseModel):
    conversation: ConversationResponse
    message: MessageResponse
    delivered: bool


class AssignConversationRequest(BaseModel):
    assigned_to: str | None = Field(default=None, max_length=120)


class UpdateConversationStatusRequest(BaseModel):
    status: ConversationStatus


class UpdateConversationPriorityRequest(BaseModel):
    priority: ConversationPriority


class TagsRequest(BaseModel):
    tags: list[str] = Field(min_length=1)


class AiHandlingRequest(BaseModel):
    is_ai_handling: bool
    agent_id: str | None = Field(default=None, max_length=120)


class ClearMessagesResponse(BaseModel):
    conversation_id: UUID
    deleted_messages: int


class MarkReadResponse(BaseModel):
    conversation_id: UUID
    updated: int
