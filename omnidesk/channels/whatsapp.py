import logging
from collections.abc import Mapping
from typing import Any

from omnidesk.channels.base import (
    ChannelAdapter,
    identifier,
    nested_get,
    timestamp_from_seconds,
)
from omnidesk.domain.enums import Channel, MessageType
from omnidesk.domain.events import Attachment, InboundEvent
from omnidesk.domain.exceptions import MalformedPayloadError

logger = logging.getLogger(__name__)

_MEDIA_TYPES = frozenset({"image", "audio", "video", "document"})


class WhatsAppAdapter(ChannelAdapter):
    channel = Channel.WHATSAPP

    def parse(self, payload: Mapping[str, Any]) -> list[InboundEvent]:
        payload = self._require_mapping(payload, "payload")
        if payload.get("object") not in (None, "whatsapp_business_account"):
            raise MalformedPayloadError(
                self.channel.value, f"unexpected object type {payload.get('object')!r}"
            )

        events: list[InboundEvent] = []
        for entry in self._require_list(payload, "entry"):
            entry = self._require_mapping(entry, "entry")
            for change in self._require_list(entry, "changes"):
                change = self._require_mapping(change, "change")
                value = self._require_mapping(change.get("value") or {}, "change value")

                statuses = self._require_list(value, "statuses")
                if statuses:
                    logger.debug("Dropping %d whatsapp status receipts", len(statuses))

                contacts: dict[str, Mapping[str, Any]] = {}
                for contact in self._require_list(value, "contacts"):
                    wa_id = identifier(nested_get(contact, "wa_id"))
                    if wa_id:
                        contacts[wa_id] = contact
                for message in self._require_list(value, "messages"):
                    event = self._parse_message(
                        self._require_mapping(message, "message"), contacts
                    )
                    if event is not None:
                        events.append(event)
        return events

    def _parse_message(
        self,
        message: Mapping[str, Any],
        contacts: Mapping[str, Mapping[str, Any]],
    ) -> InboundEvent | None:
        sender_id = identifier(message.get("from"))
        message_id = identifier(message.get("id"))
        if not sender_id or not message_id:
            logger.warning(
                "Dropping whatsapp message with missing sender or id (has_sender=%s)",
                bool(sender_id),
            )
            return None

        message_type = message.get("type")
        attachments: tuple[Attachment, ...] = ()
        if message_type == "text":
            content = nested_get(message, "text", "body")
            kind = MessageType.TEXT
        elif isinstance(message_type, str) and message_type in _MEDIA_TYPES:
            media = message.get(message_type)
            media = dict(media) if isinstance(media, Mapping) else {}
            attachments = (Attachment(type=message_type, url=media.get("link"), payload=media),)
            content = media.get("caption") or "[Media attachment]"
            kind = MessageType.MEDIA
        elif message_type == "sticker":
            content, kind = "[Sticker]", MessageType.STICKER
        elif message_type == "interactive":
            interactive = message.get("interactive")
            reply = nested_get(interactive, "button_reply") or nested_get(
                interactive, "list_reply"
            )
            content = nested_get(reply, "title") or nested_get(reply, "id")
            kind = MessageType.QUICK_REPLY
        elif message_type == "button":
            button = message.get("button")
            content = nested_get(button, "payload") or nested_get(button, "text")
            kind = MessageType.QUICK_REPLY
        else:
            content, kind = None, MessageType.TEXT

        if not content or not isinstance(content, str):
            logger.warning(
                "Dropping whatsapp message %s of type %r with no body", message_id, message_type
            )
            return None

        customer_name = nested_get(contacts.get(sender_id), "profile", "name")
        return InboundEvent(
            channel=self.channel,
            customer_id=sender_id,
            provider_message_id=message_id,
            content=content,
            timestamp=timestamp_from_seconds(message.get("timestamp")),
            message_type=kind,
            attachments=attachments,
            customer_name=customer_name if isinstance(customer_name, str) else None,
            raw=dict(message),
        )
