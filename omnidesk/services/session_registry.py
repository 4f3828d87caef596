"""Per-conversation AI turn context.

A session is created on the first AI turn, updated on every turn, and closed
either explicitly or once it has been idle longer than the configured timeout.
The number of concurrently active sessions is bounded: opening a new session
past the limit closes the least recently active ones.
"""

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID

from omnidesk.core.config import Settings
from omnidesk.infra.db.models import ChatSession
from omnidesk.infra.storage import Storage
from omnidesk.services.errors import SessionNotFoundError

logger = logging.getLogger(__name__)

MAX_FLOW_ENTRIES = 50


def _utcnow() -> datetime:
    return datetime.now(UTC)


def new_context(now: datetime) -> dict[str, Any]:
    return {
        "current_topic": None,
        "previous_topic": None,
        "mentioned_products": [],
        "conversation_flow": [],
        "context_switches": 0,
        "session_start": now.isoformat(),
    }


def discussed_topics(context: dict[str, Any]) -> list[str]:
    topics: list[str] = []
    if context.get("current_topic"):
        topics.append(context["current_topic"])
    previous = context.get("previous_topic")
    if previous and previous not in topics:
        topics.append(previous)
    for entry in context.get("conversation_flow") or []:
        topic = entry.get("topic")
        if topic and topic not in topics:
            topics.append(topic)
    return topics


def summarize(context: dict[str, Any]) -> str:
    summary = "Customer session"
    topics = discussed_topics(context)
    if topics:
        summary += f" discussed: {', '.join(topics)}"
    products = context.get("mentioned_products") or []
    if products:
        summary += f". Viewed {len(products)} product(s)"
    switches = context.get("context_switches") or 0
    if switches:
        summary += f". Changed topics {switches} time(s)"
    return summary


@dataclass(frozen=True, slots=True)
class SessionLimits:
    idle_timeout: timedelta = timedelta(minutes=60)
    max_active: int = 10_000

    @classmethod
    def from_settings(cls, settings: Settings) -> "SessionLimits":
        return cls(
            idle_timeout=timedelta(minutes=settings.session_idle_timeout_minutes),
            max_active=settings.session_registry_max_size,
        )


@dataclass(slots=True)
class SessionDuration:
    minutes: int
    seconds: int

    @property
    def formatted(self) -> str:
        return f"{self.minutes}m {self.seconds}s"


@dataclass(slots=True)
class SessionSummary:
    session_id: str
    customer_id: str
    is_active: bool
    topics: list[str]
    products_viewed: list[str]
    context_switches: int
    duration: SessionDuration
    summary: str
    conversation_flow: list[dict[str, Any]] = field(default_factory=list)


class SessionRegistry:
    def __init__(
        self,
        storage: Storage,
        limits: SessionLimits | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.session = storage.session
        self.chat_sessions = storage.chat_sessions
        self.limits = limits or SessionLimits()
        self.clock = clock or _utcnow

    async def get_context(self, session_id: str) -> dict[str, Any]:
        chat_session = await self.chat_sessions.get(session_id)
        if chat_session is None or not chat_session.is_active:
            return {}
        return dict(chat_session.context or {})

    async def record_turn(
        self,
        session_id: str,
        customer_id: str,
        user_text: str,
        reply_text: str,
        topic: str | None = None,
        mentioned_products: Iterable[str] = (),
        conversation_id: UUID | None = None,
        customer_name: str | None = None,
    ) -> ChatSession:
        now = self.clock()
        chat_session = await self._open(session_id, customer_id, customer_name, conversation_id)

        context = dict(chat_session.context or {})
        if topic and topic != context.get("current_topic"):
            if context.get("current_topic"):
                context["context_switches"] = int(context.get("context_switches") or 0) + 1
            context["previous_topic"] = context.get("current_topic")
            context["current_topic"] = topic

        products = list(context.get("mentioned_products") or [])
        for product in mentioned_products:
            if product not in products:
                products.append(product)
        context["mentioned_products"] = products

        flow = list(context.get("conversation_flow") or [])
        flow.append(
            {
                "timestamp": now.isoformat(),
                "topic": topic,
                "user": user_text[:500],
                "reply": reply_text[:500],
            }
        )
        context["conversation_flow"] = flow[-MAX_FLOW_ENTRIES:]

        chat_session.context = context
        chat_session.last_activity = now
        chat_session.updated_at = now
        await self.session.commit()
        return chat_session

    async def close(
        self, session_id: str, final_data: dict[str, Any] | None = None
    ) -> ChatSession:
        chat_session = await self._get_or_raise(session_id)
        now = self.clock()
        context = {**(chat_session.context or {}), **(final_data or {})}
        context["session_end"] = now.isoformat()
        chat_session.context = context
        chat_session.summary = summarize(context)
        chat_session.is_active = False
        chat_session.updated_at = now
        await self.session.commit()
        logger.info("Session %s closed", session_id)
        return chat_session

    async def close_if_open(self, session_id: str) -> None:
        chat_session = await self.chat_sessions.get(session_id)
        if chat_session is not None and chat_session.is_active:
            await self.close(session_id)

    async def delete(self, session_id: str) -> None:
        chat_session = await self._get_or_raise(session_id)
        await self.chat_sessions.delete(chat_session)
        await self.session.commit()

    async def get(self, session_id: str) -> ChatSession:
        return await self._get_or_raise(session_id)

    async def list_active(self, limit: int | None = None) -> list[ChatSession]:
        return await self.chat_sessions.list_active(limit)

    async def list_for_customer(self, customer_id: str) -> list[ChatSession]:
        return await self.chat_sessions.list_for_customer(customer_id)

    async def summary(self, session_id: str) -> SessionSummary:
        chat_session = await self._get_or_raise(session_id)
        context = dict(chat_session.context or {})
        return SessionSummary(
            session_id=chat_session.id,
            customer_id=chat_session.customer_id,
            is_active=chat_session.is_active,
            topics=discussed_topics(context),
            products_viewed=list(context.get("mentioned_products") or []),
            context_switches=int(context.get("context_switches") or 0),
            duration=self._duration(context),
            summary=chat_session.summary or summarize(context),
            conversation_flow=list(context.get("conversation_flow") or []),
        )

    async def evict_expired(self) -> int:
        cutoff = self.clock() - self.limits.idle_timeout
        idle = await self.chat_sessions.list_idle_since(cutoff)
        for chat_session in idle:
            await self.close(chat_session.id, {"closed_reason": "inactivity"})
        if idle:
            logger.info("Closed %d idle sessions", len(idle))
        return len(idle)

    async def _open(
        self,
        session_id: str,
        customer_id: str,
        customer_name: str | None,
        conversation_id: UUID | None,
    ) -> ChatSession:
        now = self.clock()
        chat_session = await self.chat_sessions.get(session_id)
        if chat_session is not None:
            if not chat_session.is_active:
                chat_session.is_active = True
                chat_session.summary = None
                chat_session.context = new_context(now)
            return chat_session

        await self._enforce_capacity()
        chat_session = await self.chat_sessions.add(
            ChatSession(
                id=session_id,
                customer_id=customer_id,
                customer_name=customer_name,
                conversation_id=conversation_id,
                is_active=True,
                context=new_context(now),
                summary=None,
                last_activity=now,
                created_at=now,
                updated_at=now,
            )
        )
        logger.info("Session %s created for customer %s", session_id, customer_id)
        return chat_session

    async def _enforce_capacity(self) -> None:
        overflow = await self.chat_sessions.count_active() - self.limits.max_active + 1
        if overflow <= 0:
            return
        for chat_session in await self.chat_sessions.oldest_active(overflow):
            await self.close(chat_session.id, {"closed_reason": "capacity"})

    def _duration(self, context: dict[str, Any]) -> SessionDuration:
        start = context.get("session_start")
        if not start:
            return SessionDuration(minutes=0, seconds=0)
        end = context.get("session_end")
        end_time = datetime.fromisoformat(end) if end else self.clock()
        elapsed = max(int((end_time - datetime.fromisoformat(start)).total_seconds()), 0)
        return SessionDuration(minutes=elapsed // 60, seconds=elapsed % 60)

    async def _get_or_raise(self, session_id: str) -> ChatSession:
        chat_session = await self.chat_sessions.get(session_id)
        if chat_session is None:
            raise SessionNotFoundError(session_id)
        return chat_session
