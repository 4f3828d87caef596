"""Base abstractions for inbound channel adapters."""

import hashlib
import hmac
import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from omnidesk.domain.enums import Channel, MessageType
from omnidesk.domain.events import Attachment, InboundEvent
from omnidesk.domain.exceptions import MalformedPayloadError

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Hub-Signature-256"


class ChannelAdapter(ABC):
    """Turns one provider webhook payload into zero or more ``InboundEvent``s.

    ``parse`` raises ``MalformedPayloadError`` when the payload does not have
    the provider's envelope shape at all. Individual entries that are echoes,
    receipts, or lack a sender or body are dropped and logged instead.
    """

    channel: Channel

    @abstractmethod
    def parse(self, payload: Mapping[str, Any]) -> list[InboundEvent]:
        """Convert a webhook payload into normalized inbound events."""

    def verify_signature(
        self, body: bytes, headers: Mapping[str, str], secret: str | None
    ) -> bool:
        if not secret:
            return True
        received = headers.get(SIGNATURE_HEADER) or headers.get(SIGNATURE_HEADER.lower())
        if not received:
            return False
        digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
        return hmac.compare_digest(received, f"sha256={digest}")

    def _require_list(self, container: Mapping[str, Any], key: str) -> list[Any]:
        value = container.get(key, [])
        if not isinstance(value, list):
            raise MalformedPayloadError(self.channel.value, f"'{key}' must be a list")
        return value

    def _require_mapping(self, value: Any, where: str) -> Mapping[str, Any]:
        if not isinstance(value, Mapping):
            raise MalformedPayloadError(self.channel.value, f"{where} must be an object")
        return value


def nested_get(container: Any, *keys: str) -> Any:
    """Follow ``keys`` through nested mappings; ``None`` once a level is not a mapping."""
    value = container
    for key in keys:
        if not isinstance(value, Mapping):
            return None
        value = value.get(key)
    return value


def identifier(value: Any) -> str | None:
    if isinstance(value, bool) or not isinstance(value, (str, int)):
        return None
    return str(value) or None


def timestamp_from_millis(value: Any) -> datetime:
    try:
        return datetime.fromtimestamp(int(value) / 1000, tz=UTC)
    except (TypeError, ValueError, OverflowError, OSError):
        return datetime.now(UTC)


def timestamp_from_seconds(value: Any) -> datetime:
    try:
        return datetime.fromtimestamp(int(value), tz=UTC)
    except (TypeError, ValueError, OverflowError, OSError):
        return datetime.now(UTC)


class MessengerStyleAdapter(ChannelAdapter):
    """Shared parsing for Meta payloads built from ``entry[].messaging[]`` events."""

    expected_object: str

    def parse(self, payload: Mapping[str, Any]) -> list[InboundEvent]:
        payload = self._require_mapping(payload, "payload")
        if payload.get("object") not in (None, self.expected_object):
            raise MalformedPayloadError(
                self.channel.value, f"unexpected object type {payload.get('object')!r}"
            )

        events: list[InboundEvent] = []
        for entry in self._require_list(payload, "entry"):
            entry = self._require_mapping(entry, "entry")
            for messaging_event in self._require_list(entry, "messaging"):
                event = self._parse_messaging_event(
                    self._require_mapping(messaging_event, "messaging event")
                )
                if event is not None:
                    events.append(event)
            events.extend(self._parse_changes(entry))
        return events

    def _parse_changes(self, entry: Mapping[str, Any]) -> list[InboundEvent]:
        return []

    def _parse_messaging_event(
        self, messaging_event: Mapping[str, Any]
    ) -> InboundEvent | None:
        message = messaging_event.get("message")
        if "delivery" in messaging_event or "read" in messaging_event:
            logger.debug("Dropping %s receipt event", self.channel.value)
            return None
        if isinstance(message, Mapping) and message.get("is_echo"):
            logger.debug("Dropping %s echo message %s", self.channel.value, message.get("mid"))
            return None

        sender_id = identifier(nested_get(messaging_event, "sender", "id"))
        if not sender_id or not isinstance(message, Mapping):
            logger.warning(
                "Dropping %s event with missing sender or message (has_sender=%s, has_message=%s)",
                self.channel.value,
                bool(sender_id),
                isinstance(message, Mapping),
            )
            return None

        return self._build_event(
            sender_id=sender_id,
            message=message,
            timestamp=timestamp_from_millis(messaging_event.get("timestamp")),
            raw=dict(messaging_event),
        )

    def _build_event(
        self,
        sender_id: str,
        message: Mapping[str, Any],
        timestamp: datetime,
        raw: dict[str, Any],
    ) -> InboundEvent | None:
        message_id = identifier(message.get("mid")) or identifier(message.get("id"))
        raw_attachments = message.get("attachments")
        attachments = tuple(
            Attachment(
                type=str(item.get("type") or "file"),
                url=nested_get(item, "payload", "url"),
                payload=dict(item["payload"]) if isinstance(item.get("payload"), Mapping) else {},
            )
            for item in (raw_attachments if isinstance(raw_attachments, list) else [])
            if isinstance(item, Mapping)
        )

        text = message.get("text")
        if text and isinstance(text, str):
            content, message_type = text, MessageType.TEXT
        elif attachments:
            content, message_type = "[Media attachment]", MessageType.MEDIA
        elif message.get("sticker_id"):
            content, message_type = "[Sticker]", MessageType.STICKER
        elif message.get("quick_reply"):
            content = str(nested_get(message, "quick_reply", "payload") or "[Quick reply]")
            message_type = MessageType.QUICK_REPLY
        else:
            content, message_type = "", MessageType.TEXT

        if not message_id or not content:
            logger.warning(
                "Dropping %s message from %s with missing id or body",
                self.channel.value,
                sender_id,
            )
            return None

        return InboundEvent(
            channel=self.channel,
            customer_id=sender_id,
            provider_message_id=str(message_id),
            content=content,
            timestamp=timestamp,
            message_type=message_type,
            attachments=attachments,
            raw=raw,
        )
