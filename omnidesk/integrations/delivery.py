"""Outbound delivery collaborator adapters."""

import logging
from dataclasses import dataclass
from typing import Any, Protocol
from uuid import uuid4

import httpx

from omnidesk.core.config import Settings
from omnidesk.domain.enums import Channel
from omnidesk.services.errors import DownstreamUnavailableError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class DeliveryResult:
    delivery_id: str


class MessageSender(Protocol):
    async def send_message(
        self, channel: Channel, recipient_id: str, content: str
    ) -> DeliveryResult: ...


class GraphApiMessageSender:
    """Sends replies through the Meta Graph API (Instagram, Messenger, WhatsApp).

    Web chat replies are not pushed anywhere: the widget reads them from the
    conversation, so delivery succeeds immediately.
    """

    def __init__(self, client: httpx.AsyncClient, settings: Settings) -> None:
        self.client = client
        self.settings = settings

    async def send_message(
        self, channel: Channel, recipient_id: str, content: str
    ) -> DeliveryResult:
        if channel == Channel.WEB_CHAT:
            return DeliveryResult(delivery_id=f"web-{uuid4().hex}")

        url, body, headers = self._build_request(channel, recipient_id, content)
        try:
            response = await self.client.post(url, json=body, headers=headers)
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise DownstreamUnavailableError(f"{channel.value} delivery", str(exc)) from exc
        return DeliveryResult(delivery_id=self._delivery_id(payload))

    def _build_request(
        self, channel: Channel, recipient_id: str, content: str
    ) -> tuple[str, dict[str, Any], dict[str, str]]:
        version = self.settings.graph_api_version
        if channel == Channel.INSTAGRAM:
            token = self._require(self.settings.instagram_access_token, channel)
            account_id = self._require(self.settings.instagram_account_id, channel)
            return (
                f"{self.settings.instagram_graph_base_url}/{version}/{account_id}/messages",
                {"recipient": {"id": recipient_id}, "message": {"text": content}},
                {"Authorization": f"Bearer {token}"},
            )
        if channel == Channel.FACEBOOK:
            token = self._require(self.settings.facebook_page_access_token, channel)
            return (
                f"{self.settings.graph_api_base_url}/{version}/me/messages",
                {
                    "recipient": {"id": recipient_id},
                    "messaging_type": "RESPONSE",
                    "message": {"text": content},
                },
                {"Authorization": f"Bearer {token}"},
            )
        if channel == Channel.WHATSAPP:
            token = self._require(self.settings.whatsapp_access_token, channel)
            phone_number_id = self._require(self.settings.whatsapp_phone_number_id, channel)
            return (
                f"{self.settings.graph_api_base_url}/{version}/{phone_number_id}/messages",
                {
                    "messaging_product": "whatsapp",
                    "to": recipient_id,
                    "type": "text",
                    "text": {"body": content},
                },
                {"Authorization": f"Bearer {token}"},
            )
        raise DownstreamUnavailableError(
            f"{channel.value} delivery", "no outbound transport for this channel"
        )

    @staticmethod
    def _require(value: str | None, channel: Channel) -> str:
        if not value:
            raise DownstreamUnavailableError(
                f"{channel.value} delivery", "credentials are not configured"
            )
        return value

    @staticmethod
    def _delivery_id(payload: dict[str, Any]) -> str:
        if payload.get("message_id"):
            return str(payload["message_id"])
        messages = payload.get("messages") or []
        if messages and messages[0].get("id"):
            return str(messages[0]["id"])
        return uuid4().hex
