import logging
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from omnidesk.channels.base import ChannelAdapter, identifier
from omnidesk.domain.enums import Channel, MessageType
from omnidesk.domain.events import Attachment, InboundEvent
from omnidesk.domain.exceptions import MalformedPayloadError

logger = logging.getLogger(__name__)


class WebChatAdapter(ChannelAdapter):
    """Generic JSON shape posted by the embeddable web widget.

    ``{"customer_id", "message_id", "text", "attachments"?, "timestamp"?, "customer_name"?}``
    """

    channel = Channel.WEB_CHAT

    def parse(self, payload: Mapping[str, Any]) -> list[InboundEvent]:
        payload = self._require_mapping(payload, "payload")
        customer_id = identifier(payload.get("customer_id"))
        message_id = identifier(payload.get("message_id"))
        if not customer_id or not message_id:
            logger.warning(
                "Dropping web chat message with missing customer_id or message_id"
            )
            return []

        attachments = tuple(
            Attachment(
                type=str(item.get("type") or "file"),
                url=item.get("url") if isinstance(item.get("url"), str) else None,
                payload={key: value for key, value in item.items() if key not in ("type", "url")},
            )
            for item in self._require_list(payload, "attachments")
            if isinstance(item, Mapping)
        )
        text = payload.get("text")
        text = text.strip() if isinstance(text, str) else ""
        if not text and not attachments:
            logger.warning("Dropping web chat message %s with no body", message_id)
            return []

        customer_name = payload.get("customer_name")
        return [
            InboundEvent(
                channel=self.channel,
                customer_id=customer_id,
                provider_message_id=message_id,
                content=text or "[Media attachment]",
                timestamp=self._parse_timestamp(payload.get("timestamp")),
                message_type=MessageType.TEXT if text else MessageType.MEDIA,
                attachments=attachments,
                customer_name=customer_name if isinstance(customer_name, str) else None,
                raw=dict(payload),
            )
        ]

    def _parse_timestamp(self, value: Any) -> datetime:
        if value is None:
            return datetime.now(UTC)
        try:
            if isinstance(value, (int, float)):
                return datetime.fromtimestamp(value, tz=UTC)
            parsed = datetime.fromisoformat(str(value))
        except (ValueError, OverflowError, OSError) as exc:
            raise MalformedPayloadError(self.channel.value, "invalid timestamp") from exc
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)
