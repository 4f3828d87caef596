from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from omnidesk.domain.enums import Channel, MessageType


@dataclass(frozen=True, slots=True)
class Attachment:
    type: str
    url: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)

    @property
    def is_image(self) -> bool:
        return self.type == "image"


@dataclass(frozen=True, slots=True)
class InboundEvent:
    """A customer message normalized from a provider webhook."""

    channel: Channel
    customer_id: str
    provider_message_id: str
    content: str
    timestamp: datetime
    message_type: MessageType = MessageType.TEXT
    attachments: tuple[Attachment, ...] = ()
    customer_name: str | None = None
    is_echo: bool = False
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def image_attachments(self) -> list[Attachment]:
        return [attachment for attachment in self.attachments if attachment.is_image]

    def channel_data(self) -> dict[str, Any]:
        return {
            "provider_message_id": self.provider_message_id,
            "provider_timestamp": self.timestamp.isoformat(),
            "attachments": [
                {"type": attachment.type, "url": attachment.url, **attachment.payload}
                for attachment in self.attachments
            ],
            "raw": self.raw,
        }
