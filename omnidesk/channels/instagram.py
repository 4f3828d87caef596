import logging
from collections.abc import Mapping
from typing import Any

from omnidesk.channels.base import (
    MessengerStyleAdapter,
    identifier,
    nested_get,
    timestamp_from_millis,
)
from omnidesk.domain.enums import Channel
from omnidesk.domain.events import InboundEvent

logger = logging.getLogger(__name__)


class InstagramAdapter(MessengerStyleAdapter):
    """Instagram messaging webhooks.

    Instagram delivers DMs either as ``entry[].messaging[]`` events or, for
    some subscriptions, as ``entry[].changes[]`` with ``field == "messages"``.
    Both shapes are handled here.
    """

    channel = Channel.INSTAGRAM
    expected_object = "instagram"

    def _parse_changes(self, entry: Mapping[str, Any]) -> list[InboundEvent]:
        events: list[InboundEvent] = []
        for change in self._require_list(entry, "changes"):
            change = self._require_mapping(change, "change")
            if change.get("field") != "messages":
                logger.debug("Ignoring instagram change field %r", change.get("field"))
                continue
            value = self._require_mapping(change.get("value") or {}, "change value")

            if "message" in value or "sender" in value:
                event = self._parse_messaging_event(value)
                if event is not None:
                    events.append(event)
                continue

            for item in self._require_list(value, "messages"):
                item = self._require_mapping(item, "message")
                sender_id = identifier(nested_get(item, "from", "id"))
                if not sender_id:
                    logger.warning("Dropping instagram change message with missing sender")
                    continue
                text = item.get("text")
                message = {
                    "mid": item.get("id"),
                    "text": text.get("body") if isinstance(text, Mapping) else text,
                    "attachments": item.get("attachments") or [],
                }
                event = self._build_event(
                    sender_id=sender_id,
                    message=message,
                    timestamp=timestamp_from_millis(item.get("timestamp")),
                    raw=dict(item),
                )
                if event is not None:
                    events.append(event)
        return events
