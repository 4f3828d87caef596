from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from omnidesk.api.deps import get_handoff_controller, get_inbox_service
from omnidesk.api.errors import raise_for_service_error
from omnidesk.domain.enums import Channel, ConversationPriority, ConversationStatus
from omnidesk.schemas.common import ApiResponse, DeletedResponse
from omnidesk.schemas.conversation import (
    AgentMessageResponse,
    AiHandlingRequest,
    AssignConversationRequest,
    ClearMessagesResponse,
    ConversationDetailResponse,
    ConversationListResponse,
    ConversationResponse,
    ConversationSummaryResponse,
    InboxStatsResponse,
    MarkReadResponse,
    TagsRequest,
    UpdateConversationPriorityRequest,
    UpdateConversationStatusRequest,
)
from omnidesk.schemas.message import AgentMessageRequest, MarkReadRequest, MessageResponse, NoteRequest
from omnidesk.schemas.ticket import TicketResponse
from omnidesk.services.errors import ServiceError
from omnidesk.services.handoff import HandoffController
from omnidesk.services.inbox_service import (
    ConversationDetail,
    ConversationFilters,
    ConversationSummary,
    InboxService,
)

router = APIRouter()


def _to_conversation_response(conversation) -> ConversationResponse:
    return ConversationResponse.model_validate(conversation)


def _to_summary_response(summary: ConversationSummary) -> ConversationSummaryResponse:
    return ConversationSummaryResponse(
        conversation=_to_conversation_response(summary.conversation),
        last_message=(
            MessageResponse.model_validate(summary.last_message)
            if summary.last_message is not None
            else None
        ),
        preview=summary.preview,
        unread_count=summary.unread_count,
    )


def _to_detail_response(detail: ConversationDetail) -> ConversationDetailResponse:
    return ConversationDetailResponse(
        conversation=_to_conversation_response(detail.conversation),
        messages=[MessageResponse.model_validate(message) for message in detail.messages],
        total_messages=detail.total_messages,
        unread_count=detail.unread_count,
    )


@router.get(
    "/businesses/{business_id}/conversations",
    response_model=ApiResponse[ConversationListResponse],
)
async def list_conversations(
    business_id: str,
    status_filter: ConversationStatus | None = Query(default=None, alias="status"),
    priority: ConversationPriority | None = None,
    channel: Channel | None = None,
    assigned_to: str | None = None,
    created_from: datetime | None = None,
    created_to: datetime | None = None,
    search: str | None = Query(default=None, max_length=200),
    unread_only: bool = False,
    sort_by: str = "last_message_at",
    sort_order: str = Query(default="desc", pattern="^(asc|desc)$"),
    limit: int = Query(default=50, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    service: InboxService = Depends(get_inbox_service),
) -> ApiResponse[ConversationListResponse]:
    filters = ConversationFilters(
        status=status_filter,
        priority=priority,
        channel=channel,
        assigned_to=assigned_to,
        created_from=created_from,
        created_to=created_to,
        search=search,
        unread_only=unread_only,
        sort_by=sort_by,
        descending=sort_order == "desc",
        limit=limit,
        offset=offset,
    )
    try:
        page = await service.list_conversations(business_id, filters)
    except ServiceError as exc:
        raise_for_service_error(exc)
    return ApiResponse(
        data=ConversationListResponse(
            items=[_to_summary_response(item) for item in page.items],
            total=page.total,
            limit=page.limit,
            offset=page.offset,
            has_more=page.has_more,
        )
    )


@router.get("/businesses/{business_id}/stats", response_model=ApiResponse[InboxStatsResponse])
async def inbox_stats(
    business_id: str,
    service: InboxService = Depends(get_inbox_service),
) -> ApiResponse[InboxStatsResponse]:
    stats = await service.stats(business_id)
    return ApiResponse(
        data=InboxStatsResponse(
            total_conversations=stats.total_conversations,
            active=stats.active,
            escalated=stats.escalated,
            resolved=stats.resolved,
            by_status=stats.by_status,
            unread_messages=stats.unread_messages,
            average_response_minutes=stats.average_response_minutes,
            channel_distribution=stats.channel_distribution,
            priority_distribution=stats.priority_distribution,
        )
    )


@router.get(
    "/businesses/{business_id}/search",
    response_model=ApiResponse[list[ConversationSummaryResponse]],
)
async def search_conversations(
    business_id: str,
    q: str = Query(max_length=200),
    limit: int = Query(default=20, ge=1, le=50),
    service: InboxService = Depends(get_inbox_service),
) -> ApiResponse[list[ConversationSummaryResponse]]:
    try:
        results = await service.search(business_id, q, limit)
    except ServiceError as exc:
        raise_for_service_error(exc)
    return ApiResponse(data=[_to_summary_response(item) for item in results])


@router.get(
    "/conversations/{conversation_id}",
    response_model=ApiResponse[ConversationDetailResponse],
)
async def get_conversation(
    conversation_id: UUID,
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    mark_as_read: bool = False,
    service: InboxService = Depends(get_inbox_service),
) -> ApiResponse[ConversationDetailResponse]:
    try:
        detail = await service.get_detail(conversation_id, limit, offset, mark_read=mark_as_read)
    except ServiceError as exc:
        raise_for_service_error(exc)
    return ApiResponse(data=_to_detail_response(detail))


@router.put(
    "/conversations/{conversation_id}/assign",
    response_model=ApiResponse[ConversationResponse],
)
async def assign_conversation(
    conversation_id: UUID,
    payload: AssignConversationRequest,
    service: InboxService = Depends(get_inbox_service),
) -> ApiResponse[ConversationResponse]:
    try:
        conversation = await service.assign(conversation_id, payload.assigned_to)
    except ServiceError as exc:
        raise_for_service_error(exc)
    return ApiResponse(data=_to_conversation_response(conversation))


@router.put(
    "/conversations/{conversation_id}/status",
    response_model=ApiResponse[ConversationResponse],
)
async def update_conversation_status(
    conversation_id: UUID,
    payload: UpdateConversationStatusRequest,
    service: InboxService = Depends(get_inbox_service),
) -> ApiResponse[ConversationResponse]:
    try:
        conversation = await service.update_status(conversation_id, payload.status)
    except ServiceError as exc:
        raise_for_service_error(exc)
    return ApiResponse(data=_to_conversation_response(conversation))


@router.put(
    "/conversations/{conversation_id}/priority",
    response_model=ApiResponse[ConversationResponse],
)
async def update_conversation_priority(
    conversation_id: UUID,
    payload: UpdateConversationPriorityRequest,
    service: InboxService = Depends(get_inbox_service),
) -> ApiResponse[ConversationResponse]:
    try:
        conversation = await service.update_priority(conversation_id, payload.priority)
    except ServiceError as exc:
        raise_for_service_error(exc)
    return ApiResponse(data=_to_conversation_response(conversation))


@router.post(
    "/conversations/{conversation_id}/tags",
    response_model=ApiResponse[ConversationResponse],
)
async def add_conversation_tags(
    conversation_id: UUID,
    payload: TagsRequest,
    service: InboxService = Depends(get_inbox_service),
) -> ApiResponse[ConversationResponse]:
    try:
        conversation = await service.add_tags(conversation_id, payload.tags)
    except ServiceError as exc:
        raise_for_service_error(exc)
    return ApiResponse(data=_to_conversation_response(conversation))


@router.delete(
    "/conversations/{conversation_id}/tags/{tag}",
    response_model=ApiResponse[ConversationResponse],
)
async def remove_conversation_tag(
    conversation_id: UUID,
    tag: str,
    service: InboxService = Depends(get_inbox_service),
) -> ApiResponse[ConversationResponse]:
    try:
        conversation = await service.remove_tag(conversation_id, tag)
    except ServiceError as exc:
        raise_for_service_error(exc)
    return ApiResponse(data=_to_conversation_response(conversation))


@router.put(
    "/conversations/{conversation_id}/read",
    response_model=ApiResponse[MarkReadResponse],
)
async def mark_conversation_read(
    conversation_id: UUID,
    payload: MarkReadRequest,
    service: InboxService = Depends(get_inbox_service),
) -> ApiResponse[MarkReadResponse]:
    try:
        updated = await service.mark_read(conversation_id, payload.sender)
    except ServiceError as exc:
        raise_for_service_error(exc)
    return ApiResponse(data=MarkReadResponse(conversation_id=conversation_id, updated=updated))


@router.post(
    "/conversations/{conversation_id}/note",
    response_model=ApiResponse[MessageResponse],
)
async def add_conversation_note(
    conversation_id: UUID,
    payload: NoteRequest,
    service: InboxService = Depends(get_inbox_service),
) -> ApiResponse[MessageResponse]:
    try:
        note = await service.add_note(conversation_id, payload.content, payload.author)
    except ServiceError as exc:
        raise_for_service_error(exc)
    return ApiResponse(data=MessageResponse.model_validate(note))


@router.put(
    "/conversations/{conversation_id}/ai-handling",
    response_model=ApiResponse[ConversationResponse],
)
async def set_ai_handling(
    conversation_id: UUID,
    payload: AiHandlingRequest,
    handoff: HandoffController = Depends(get_handoff_controller),
) -> ApiResponse[ConversationResponse]:
    try:
        conversation = await handoff.set_handling(
            conversation_id, payload.is_ai_handling, actor=payload.agent_id
        )
    except ServiceError as exc:
        raise_for_service_error(exc)
    mode = "AI" if conversation.is_ai_handling else "human agent"
    return ApiResponse(
        data=_to_conversation_response(conversation),
        message=f"Conversation is now handled by {mode}",
    )


@router.post(
    "/conversations/{conversation_id}/send-message",
    response_model=ApiResponse[AgentMessageResponse],
)
async def send_agent_message(
    conversation_id: UUID,
    payload: AgentMessageRequest,
    service: InboxService = Depends(get_inbox_service),
) -> ApiResponse[AgentMessageResponse]:
    try:
        result = await service.send_agent_message(
            conversation_id,
            content=payload.content,
            sender=payload.sender,
            sender_name=payload.sender_name,
            message_type=payload.message_type,
            product_data=payload.product_data,
        )
    except ServiceError as exc:
        raise_for_service_error(exc)
    return ApiResponse(
        data=AgentMessageResponse(
            conversation=_to_conversation_response(result.conversation),
            message=MessageResponse.model_validate(result.message),
            delivered=result.delivered,
        ),
        message=None if result.delivered else "Message saved but delivery to the customer failed",
    )


@router.get(
    "/conversations/{conversation_id}/tickets",
    response_model=ApiResponse[list[TicketResponse]],
)
async def conversation_tickets(
    conversation_id: UUID,
    service: InboxService = Depends(get_inbox_service),
) -> ApiResponse[list[TicketResponse]]:
    try:
        snapshots = await service.conversation_tickets(conversation_id)
    except ServiceError as exc:
        raise_for_service_error(exc)
    return ApiResponse(
        data=[
            TicketResponse.model_validate(snapshot.ticket).model_copy(
                update={
                    "sla_status": snapshot.sla_status,
                    "time_remaining": snapshot.time_remaining,
                }
            )
            for snapshot in snapshots
        ]
    )


@router.delete(
    "/conversations/{conversation_id}/messages",
    response_model=ApiResponse[ClearMessagesResponse],
)
async def clear_conversation_messages(
    conversation_id: UUID,
    service: InboxService = Depends(get_inbox_service),
) -> ApiResponse[ClearMessagesResponse]:
    try:
        deleted = await service.clear_messages(conversation_id)
    except ServiceError as exc:
        raise_for_service_error(exc)
    return ApiResponse(
        data=ClearMessagesResponse(conversation_id=conversation_id, deleted_messages=deleted)
    )


@router.post(
    "/conversations/{conversation_id}/reset",
    response_model=ApiResponse[ConversationResponse],
)
async def reset_conversation(
    conversation_id: UUID,
    service: InboxService = Depends(get_inbox_service),
) -> ApiResponse[ConversationResponse]:
    try:
        conversation = await service.reset(conversation_id)
    except ServiceError as exc:
        raise_for_service_error(exc)
    return ApiResponse(
        data=_to_conversation_response(conversation),
        message="Conversation reset and handed back to AI",
    )


@router.delete(
    "/conversations/{conversation_id}",
    response_model=ApiResponse[DeletedResponse],
)
async def delete_conversation(
    conversation_id: UUID,
    service: InboxService = Depends(get_inbox_service),
) -> ApiResponse[DeletedResponse]:
    try:
        await service.delete(conversation_id)
    except ServiceError as exc:
        raise_for_service_error(exc)
    return ApiResponse(data=DeletedResponse(id=str(conversation_id)), message="Conversation deleted")
