from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from omnidesk.api.deps import get_escalation_scheduler, get_ticket_manager
from omnidesk.api.errors import raise_for_service_error
from omnidesk.domain.enums import SlaStatus, TicketCategory, TicketPriority, TicketStatus
from omnidesk.domain.exceptions import InvalidTicketTransition
from omnidesk.infra.db.models import Ticket
from omnidesk.schemas.common import ApiResponse, DeletedResponse
from omnidesk.schemas.ticket import (
    AssignTicketRequest,
    CompleteEscalationRequest,
    CreateTicketRequest,
    EscalateOverdueResponse,
    EscalateTicketRequest,
    EscalationEventResponse,
    SlaReportResponse,
    TicketListResponse,
    TicketResponse,
    TicketStatsResponse,
    UpdateTicketStatusRequest,
)
from omnidesk.services.errors import ServiceError
from omnidesk.services.escalation_scheduler import EscalationScheduler
from omnidesk.services.ticket_service import TicketDraft, TicketFilters, TicketManager, TicketSnapshot

router = APIRouter()


def _to_ticket_response(snapshot: TicketSnapshot) -> TicketResponse:
    return TicketResponse.model_validate(snapshot.ticket).model_copy(
        update={"sla_status": snapshot.sla_status, "time_remaining": snapshot.time_remaining}
    )


def _respond(manager: TicketManager, ticket: Ticket, message: str | None = None):
    return ApiResponse[TicketResponse](
        data=_to_ticket_response(manager.snapshot(ticket)), message=message
    )


@router.post(
    "",
    response_model=ApiResponse[TicketResponse],
    status_code=status.HTTP_201_CREATED,
)
async def create_ticket(
    payload: CreateTicketRequest,
    manager: TicketManager = Depends(get_ticket_manager),
) -> ApiResponse[TicketResponse]:
    try:
        ticket = await manager.create(TicketDraft(**payload.model_dump()))
    except ServiceError as exc:
        raise_for_service_error(exc)
    return _respond(manager, ticket, message=f"Ticket {ticket.ticket_number} created")


@router.get("/business/{business_id}", response_model=ApiResponse[TicketListResponse])
async def list_tickets(
    business_id: str,
    status_filter: TicketStatus | None = Query(default=None, alias="status"),
    priority: TicketPriority | None = None,
    category: TicketCategory | None = None,
    sla_status: SlaStatus | None = None,
    escalation: str | None = Query(default=None, pattern="^(escalated|not_escalated)$"),
    assigned_to: str | None = None,
    search: str | None = Query(default=None, max_length=200),
    limit: int = Query(default=50, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    manager: TicketManager = Depends(get_ticket_manager),
) -> ApiResponse[TicketListResponse]:
    filters = TicketFilters(
        status=status_filter,
        priority=priority,
        category=category,
        sla_status=sla_status,
        escalated=None if escalation is None else escalation == "escalated",
        assigned_to=assigned_to,
        search=search,
        limit=limit,
        offset=offset,
    )
    page = await manager.list_tickets(business_id, filters)
    return ApiResponse(
        data=TicketListResponse(
            items=[_to_ticket_response(item) for item in page.items],
            total=page.total,
            limit=page.limit,
            offset=page.offset,
            has_more=page.has_more,
        )
    )


@router.get("/business/{business_id}/stats", response_model=ApiResponse[TicketStatsResponse])
async def ticket_stats(
    business_id: str,
    assigned_to: str | None = None,
    manager: TicketManager = Depends(get_ticket_manager),
) -> ApiResponse[TicketStatsResponse]:
    stats = await manager.stats(business_id, assigned_to)
    return ApiResponse(
        data=TicketStatsResponse(
            total=stats.total,
            by_status=stats.by_status,
            overdue=stats.overdue,
            escalated=stats.escalated,
            average_resolution_hours=stats.average_resolution_hours,
        )
    )


@router.get(
    "/business/{business_id}/number/{ticket_number}",
    response_model=ApiResponse[TicketResponse],
)
async def get_ticket_by_number(
    business_id: str,
    ticket_number: str,
    manager: TicketManager = Depends(get_ticket_manager),
) -> ApiResponse[TicketResponse]:
    try:
        snapshot = await manager.get_by_number(business_id, ticket_number)
    except ServiceError as exc:
        raise_for_service_error(exc)
    return ApiResponse(data=_to_ticket_response(snapshot))


@router.get("/business/{business_id}/sla", response_model=ApiResponse[SlaReportResponse])
async def sla_report(
    business_id: str,
    scheduler: EscalationScheduler = Depends(get_escalation_scheduler),
) -> ApiResponse[SlaReportResponse]:
    report = await scheduler.sweep(business_id)
    return ApiResponse(
        data=SlaReportResponse(
            checked_at=report.checked_at,
            total=report.total,
            counts=report.counts,
            overdue_ticket_numbers=report.overdue_ticket_numbers,
        )
    )


@router.post(
    "/business/{business_id}/escalate-overdue",
    response_model=ApiResponse[EscalateOverdueResponse],
)
async def escalate_overdue(
    business_id: str,
    scheduler: EscalationScheduler = Depends(get_escalation_scheduler),
    manager: TicketManager = Depends(get_ticket_manager),
) -> ApiResponse[EscalateOverdueResponse]:
    try:
        escalated = await scheduler.escalate_overdue(business_id)
    except (ServiceError, InvalidTicketTransition) as exc:
        raise_for_service_error(exc)
    return ApiResponse(
        data=EscalateOverdueResponse(
            escalated=[_to_ticket_response(manager.snapshot(ticket)) for ticket in escalated]
        ),
        message=f"{len(escalated)} overdue tickets escalated",
    )


@router.get("/{ticket_id}", response_model=ApiResponse[TicketResponse])
async def get_ticket(
    ticket_id: UUID,
    manager: TicketManager = Depends(get_ticket_manager),
) -> ApiResponse[TicketResponse]:
    try:
        snapshot = await manager.get(ticket_id)
    except ServiceError as exc:
        raise_for_service_error(exc)
    return ApiResponse(data=_to_ticket_response(snapshot))


@router.put("/{ticket_id}/status", response_model=ApiResponse[TicketResponse])
async def update_ticket_status(
    ticket_id: UUID,
    payload: UpdateTicketStatusRequest,
    manager: TicketManager = Depends(get_ticket_manager),
) -> ApiResponse[TicketResponse]:
    try:
        ticket = await manager.update_status(ticket_id, payload.status)
    except (ServiceError, InvalidTicketTransition) as exc:
        raise_for_service_error(exc)
    return _respond(manager, ticket, message="Ticket status updated successfully")


@router.put("/{ticket_id}/assign", response_model=ApiResponse[TicketResponse])
async def assign_ticket(
    ticket_id: UUID,
    payload: AssignTicketRequest,
    manager: TicketManager = Depends(get_ticket_manager),
) -> ApiResponse[TicketResponse]:
    try:
        ticket = await manager.assign(ticket_id, payload.assigned_to)
    except ServiceError as exc:
        raise_for_service_error(exc)
    return _respond(manager, ticket, message="Ticket assigned successfully")


@router.put("/{ticket_id}/escalate", response_model=ApiResponse[TicketResponse])
async def escalate_ticket(
    ticket_id: UUID,
    payload: EscalateTicketRequest,
    manager: TicketManager = Depends(get_ticket_manager),
) -> ApiResponse[TicketResponse]:
    try:
        ticket = await manager.escalate(
            ticket_id,
            note=payload.escalation_note,
            escalated_by=payload.escalated_by,
            escalated_by_name=payload.escalated_by_name,
        )
    except (ServiceError, InvalidTicketTransition) as exc:
        raise_for_service_error(exc)
    return _respond(manager, ticket, message="Ticket escalated to admin successfully")


@router.put("/{ticket_id}/complete-escalation", response_model=ApiResponse[TicketResponse])
async def complete_escalation(
    ticket_id: UUID,
    payload: CompleteEscalationRequest,
    manager: TicketManager = Depends(get_ticket_manager),
) -> ApiResponse[TicketResponse]:
    try:
        ticket = await manager.complete_escalation(
            ticket_id,
            admin_response=payload.admin_response,
            reassign_to=payload.reassign_to,
            admin_id=payload.admin_id,
            admin_name=payload.admin_name,
        )
    except (ServiceError, InvalidTicketTransition) as exc:
        raise_for_service_error(exc)
    return _respond(manager, ticket, message="Escalation completed and ticket reassigned")


@router.get(
    "/{ticket_id}/escalations",
    response_model=ApiResponse[list[EscalationEventResponse]],
)
async def escalation_history(
    ticket_id: UUID,
    manager: TicketManager = Depends(get_ticket_manager),
) -> ApiResponse[list[EscalationEventResponse]]:
    try:
        events = await manager.escalation_history(ticket_id)
    except ServiceError as exc:
        raise_for_service_error(exc)
    return ApiResponse(data=[EscalationEventResponse.model_validate(event) for event in events])


@router.delete("/{ticket_id}", response_model=ApiResponse[DeletedResponse])
async def purge_ticket(
    ticket_id: UUID,
    manager: TicketManager = Depends(get_ticket_manager),
) -> ApiResponse[DeletedResponse]:
    try:
        await manager.purge(ticket_id)
    except ServiceError as exc:
        raise_for_service_error(exc)
    return ApiResponse(data=DeletedResponse(id=str(ticket_id)), message="Ticket deleted")
