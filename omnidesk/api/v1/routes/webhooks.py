import json
import logging

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request, status
from fastapi.responses import PlainTextResponse

from omnidesk.api.deps import get_app_settings, get_inbound_pipeline
from omnidesk.channels import get_adapter
from omnidesk.core.config import Settings
from omnidesk.domain.enums import Channel
from omnidesk.services.webhook_service import InboundPipeline

logger = logging.getLogger(__name__)

router = APIRouter()

META_CHANNELS = frozenset({Channel.INSTAGRAM, Channel.FACEBOOK, Channel.WHATSAPP})
INBOUND_CHANNELS = META_CHANNELS | {Channel.WEB_CHAT}


def _require_inbound_channel(channel: Channel) -> Channel:
    if channel not in INBOUND_CHANNELS:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No webhook endpoint for channel '{channel.value}'",
        )
    return channel


@router.get("/{channel}/{business_id}", response_class=PlainTextResponse)
async def verify_webhook(
    channel: Channel,
    business_id: str,
    mode: str | None = Query(default=None, alias="hub.mode"),
    verify_token: str | None = Query(default=None, alias="hub.verify_token"),
    challenge: str | None = Query(default=None, alias="hub.challenge"),
    settings: Settings = Depends(get_app_settings),
) -> PlainTextResponse:
    _require_inbound_channel(channel)
    if mode == "subscribe" and verify_token == settings.verify_token_for(channel):
        logger.info("%s webhook verified for business %s", channel.value, business_id)
        return PlainTextResponse(challenge or "")

    logger.warning("%s webhook verification failed for business %s", channel.value, business_id)
    return PlainTextResponse("Forbidden", status_code=status.HTTP_403_FORBIDDEN)


@router.post("/{channel}/{business_id}")
async def receive_webhook(
    channel: Channel,
    business_id: str,
    request: Request,
    background_tasks: BackgroundTasks,
    pipeline: InboundPipeline = Depends(get_inbound_pipeline),
    settings: Settings = Depends(get_app_settings),
) -> PlainTextResponse:
    _require_inbound_channel(channel)
    body = await request.body()

    if channel in META_CHANNELS and not get_adapter(channel).verify_signature(
        body, request.headers, settings.meta_app_secret
    ):
        logger.warning("Rejected %s webhook for business %s: bad signature", channel.value, business_id)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid signature")

    try:
        payload = json.loads(body)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Request body must be valid JSON"
        ) from exc
    if not isinstance(payload, dict):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Request body must be a JSON object"
        )

    result = await pipeline.ingest(business_id, channel, payload)
    logger.info(
        "%s webhook for business %s: %d events, %d stored, %d duplicates, %d failed",
        channel.value,
        business_id,
        result.received,
        result.stored,
        result.duplicates,
        result.failed,
    )
    if result.pending_turns:
        background_tasks.add_task(pipeline.process_turns, result.pending_turns)
    return PlainTextResponse("EVENT_RECEIVED")
