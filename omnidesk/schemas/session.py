from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class ChatSessionResponse(BaseModel):
    id: str
    customer_id: str
    customer_name: str | None
    conversation_id: UUID | None
    is_active: bool
    context: dict[str, Any] = Field(default_factory=dict)
    summary: str | None
    last_activity: datetime
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class SessionContextResponse(BaseModel):
    session_id: str
    context: dict[str, Any]


class SessionDurationResponse(BaseModel):
    minutes: int
    seconds: int
    formatted: str


class SessionSummaryResponse(BaseModel):
    session_id: str
    customer_id: str
    is_active: bool
    topics: list[str]
    products_viewed: list[str]
    context_switches: int
    duration: SessionDurationResponse
    summary: str
    conversation_flow: list[dict[str, Any]] = Field(default_factory=list)


class CloseSessionRequest(BaseModel):
    final_data: dict[str, Any] | None = None
