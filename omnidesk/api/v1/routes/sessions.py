from fastapi import APIRouter, Depends, Query

from omnidesk.api.deps import get_session_registry
from omnidesk.api.errors import raise_for_service_error
from omnidesk.schemas.common import ApiResponse, DeletedResponse
from omnidesk.schemas.session import (
    ChatSessionResponse,
    CloseSessionRequest,
    SessionContextResponse,
    SessionDurationResponse,
    SessionSummaryResponse,
)
from omnidesk.services.errors import ServiceError
from omnidesk.services.session_registry import SessionRegistry

router = APIRouter()


@router.get("", response_model=ApiResponse[list[ChatSessionResponse]])
async def list_active_sessions(
    limit: int = Query(default=100, ge=1, le=1000),
    registry: SessionRegistry = Depends(get_session_registry),
) -> ApiResponse[list[ChatSessionResponse]]:
    sessions = await registry.list_active(limit)
    return ApiResponse(data=[ChatSessionResponse.model_validate(item) for item in sessions])


@router.get("/customer/{customer_id}", response_model=ApiResponse[list[ChatSessionResponse]])
async def list_customer_sessions(
    customer_id: str,
    registry: SessionRegistry = Depends(get_session_registry),
) -> ApiResponse[list[ChatSessionResponse]]:
    sessions = await registry.list_for_customer(customer_id)
    return ApiResponse(data=[ChatSessionResponse.model_validate(item) for item in sessions])


@router.get("/{session_id}", response_model=ApiResponse[ChatSessionResponse])
async def get_session(
    session_id: str,
    registry: SessionRegistry = Depends(get_session_registry),
) -> ApiResponse[ChatSessionResponse]:
    try:
        chat_session = await registry.get(session_id)
    except ServiceError as exc:
        raise_for_service_error(exc)
    return ApiResponse(data=ChatSessionResponse.model_validate(chat_session))


@router.get("/{session_id}/context", response_model=ApiResponse[SessionContextResponse])
async def get_session_context(
    session_id: str,
    registry: SessionRegistry = Depends(get_session_registry),
) -> ApiResponse[SessionContextResponse]:
    try:
        chat_session = await registry.get(session_id)
    except ServiceError as exc:
        raise_for_service_error(exc)
    return ApiResponse(
        data=SessionContextResponse(session_id=chat_session.id, context=chat_session.context or {})
    )


@router.get("/{session_id}/summary", response_model=ApiResponse[SessionSummaryResponse])
async def get_session_summary(
    session_id: str,
    registry: SessionRegistry = Depends(get_session_registry),
) -> ApiResponse[SessionSummaryResponse]:
    try:
        summary = await registry.summary(session_id)
    except ServiceError as exc:
        raise_for_service_error(exc)
    return ApiResponse(
        data=SessionSummaryResponse(
            session_id=summary.session_id,
            customer_id=summary.customer_id,
            is_active=summary.is_active,
            topics=summary.topics,
            products_viewed=summary.products_viewed,
            context_switches=summary.context_switches,
            duration=SessionDurationResponse(
                minutes=summary.duration.minutes,
                seconds=summary.duration.seconds,
                formatted=summary.duration.formatted,
            ),
            summary=summary.summary,
            conversation_flow=summary.conversation_flow,
        )
    )


@router.put("/{session_id}/close", response_model=ApiResponse[ChatSessionResponse])
async def close_session(
    session_id: str,
    payload: CloseSessionRequest | None = None,
    registry: SessionRegistry = Depends(get_session_registry),
) -> ApiResponse[ChatSessionResponse]:
    try:
        chat_session = await registry.close(
            session_id, payload.final_data if payload is not None else None
        )
    except ServiceError as exc:
        raise_for_service_error(exc)
    return ApiResponse(
        data=ChatSessionResponse.model_validate(chat_session), message="Session closed"
    )


@router.delete("/{session_id}", response_model=ApiResponse[DeletedResponse])
async def delete_session(
    session_id: str,
    registry: SessionRegistry = Depends(get_session_registry),
) -> ApiResponse[DeletedResponse]:
    try:
        await registry.delete(session_id)
    except ServiceError as exc:
        raise_for_service_error(exc)
    return ApiResponse(data=DeletedResponse(id=session_id), message="Session deleted")
