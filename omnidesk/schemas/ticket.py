from datetime import datetime
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from omnidesk.domain.enums import (
    EscalationEventKind,
    SlaStatus,
    TicketCategory,
    TicketPriority,
    TicketSource,
    TicketStatus,
)


class CreateTicketRequest(BaseModel):
    business_id: str = Field(min_length=1, max_length=120)
    customer_id: str = Field(min_length=1, max_length=255)
    title: str = Field(min_length=1, max_length=300)
    description: str = Field(min_length=1)
    priority: TicketPriority = TicketPriority.NORMAL
    category: TicketCategory = TicketCategory.GENERAL
    customer_name: str | None = Field(default=None, max_length=255)
    customer_email: str | None = Field(default=None, max_length=255)
    source: TicketSource = TicketSource.API
    parent_conversation_id: UUID | None = None
    assigned_to: str | None = Field(default=None, max_length=120)
    customer_impact: str | None = None
    suggested_action: str | None = None


class UpdateTicketStatusRequest(BaseModel):
    status: TicketStatus


class AssignTicketRequest(BaseModel):
    assigned_to: str | None = Field(default=None, max_length=120)


class EscalateTicketRequest(BaseModel):
    escalation_note: str = Field(min_length=1)
    escalated_by: str | None = Field(default=None, max_length=120)
    escalated_by_name: str | None = Field(default=None, max_length=255)


class CompleteEscalationRequest(BaseModel):
    admin_response: str = Field(min_length=1)
    reassign_to: str = Field(min_length=1, max_length=120)
    admin_id: str | None = Field(default=None, max_length=120)
    admin_name: str | None = Field(default=None, max_length=255)


class TicketResponse(BaseModel):
    id: UUID
    ticket_number: str
    business_id: str
    customer_id: str
    customer_name: str | None
    customer_email: str | None
    title: str
    description: str
    status: TicketStatus
    priority: TicketPriority
    category: TicketCategory
    source: TicketSource
    assigned_to: str | None
    escalation_level: int
    sla_deadline: datetime
    parent_conversation_id: UUID | None
    metadata: dict | None = Field(
        default=None, validation_alias=AliasChoices("metadata_json", "metadata")
    )
    resolved_at: datetime | None
    created_at: datetime
    updated_at: datetime
    sla_status: SlaStatus | None = None
    time_remaining: str | None = None

    model_config = ConfigDict(from_attributes=True)


class TicketListResponse(BaseModel):
    items: list[TicketResponse]
    total: int
    limit: int
    offset: int
    has_more: bool


class TicketStatsResponse(BaseModel):
    total: int
    by_status: dict[str, int]
    overdue: int
    escalated: int
    average_resolution_hours: float | None


class EscalationEventResponse(BaseModel):
    id: UUID
    ticket_id: UUID
    kind: EscalationEventKind
    note: str
    actor_id: str | None
    actor_name: str | None
    reassigned_to: str | None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class SlaReportResponse(BaseModel):
    checked_at: datetime
    total: int
    counts: dict[str, int]
    overdue_ticket_numbers: list[str]


class EscalateOverdueResponse(BaseModel):
    escalated: list[TicketResponse]
