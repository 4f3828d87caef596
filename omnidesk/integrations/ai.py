"""Adapters for the AI reply collaborator.

The service never builds prompts or talks to an LLM itself. It hands a
``ReplyContext`` to a ``ReplyGenerator`` and gets back text plus the names of
any tools the agent used.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol
from uuid import UUID

import httpx

from omnidesk.domain.enums import Channel
from omnidesk.services.errors import DownstreamUnavailableError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ReplyContext:
    conversation_id: UUID
    business_id: str
    customer_id: str
    channel: Channel
    text: str
    images: list[dict[str, Any]] = field(default_factory=list)
    history: list[dict[str, str]] = field(default_factory=list)
    session_context: dict[str, Any] = field(default_factory=dict)

    def as_payload(self) -> dict[str, Any]:
        if self.images:
            message: Any = [{"type": "text", "text": self.text}] + [
                {"type": "image_url", "image_url": {"url": image.get("url")}}
                for image in self.images
            ]
        else:
            message = self.text
        return {
            "session_id": str(self.conversation_id),
            "business_id": self.business_id,
            "customer_id": self.customer_id,
            "channel": self.channel.value,
            "message": message,
            "history": self.history,
            "context": self.session_context,
        }


@dataclass(frozen=True, slots=True)
class GeneratedReply:
    text: str
    tools_used: list[str] = field(default_factory=list)
    topic: str | None = None
    mentioned_products: list[str] = field(default_factory=list)


class ReplyGenerator(Protocol):
    async def generate_reply(self, context: ReplyContext) -> GeneratedReply: ...


class HttpReplyGenerator:
    """Calls an external agent service over HTTP.

    Expects ``{"reply": str, "tools_used"?: [str], "topic"?: str,
    "mentioned_products"?: [str]}`` back.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        url: str,
        api_key: str | None = None,
    ) -> None:
        self.client = client
        self.url = url
        self.api_key = api_key

    async def generate_reply(self, context: ReplyContext) -> GeneratedReply:
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        try:
            response = await self.client.post(self.url, json=context.as_payload(), headers=headers)
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise DownstreamUnavailableError("AI service", str(exc)) from exc

        reply = str(body.get("reply") or "").strip()
        if not reply:
            raise DownstreamUnavailableError("AI service", "empty reply")
        return GeneratedReply(
            text=reply,
            tools_used=[str(tool) for tool in body.get("tools_used") or []],
            topic=body.get("topic"),
            mentioned_products=[str(item) for item in body.get("mentioned_products") or []],
        )


class UnconfiguredReplyGenerator:
    async def generate_reply(self, context: ReplyContext) -> GeneratedReply:
        _ = context
        raise DownstreamUnavailableError("AI service", "AI_SERVICE_URL is not configured")
