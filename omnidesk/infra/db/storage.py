import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from omnidesk.core.config import Settings
from omnidesk.core.db import (
    close_engine,
    create_schema,
    get_session_factory,
    init_engine,
    table_exists,
)
from omnidesk.infra.db.repositories import (
    ChatSessionRepository,
    ConversationRepository,
    MessageRepository,
    TicketRepository,
)
from omnidesk.infra.storage import Storage, StorageCapabilities
from omnidesk.services.errors import PersistenceError

logger = logging.getLogger(__name__)


class SqlStorageProvider:
    def __init__(
        self,
        engine: AsyncEngine,
        session_factory: async_sessionmaker[AsyncSession],
        capabilities: StorageCapabilities,
    ) -> None:
        self.engine = engine
        self.session_factory = session_factory
        self.capabilities = capabilities

    @classmethod
    async def from_settings(cls, settings: Settings) -> "SqlStorageProvider":
        engine = init_engine(settings)
        if settings.db_auto_create:
            await create_schema(engine)

        capabilities = StorageCapabilities(
            escalation_history=await table_exists(engine, "ticket_escalation_events"),
        )
        if not capabilities.escalation_history:
            logger.warning(
                "ticket_escalation_events table missing; escalation history will only be logged"
            )
        return cls(engine, get_session_factory(), capabilities)

    @asynccontextmanager
    async def unit(self) -> AsyncIterator[Storage]:
        async with self.session_factory() as session:
            storage = Storage(
                session=session,
                conversations=ConversationRepository(session),
                messages=MessageRepository(session),
                tickets=TicketRepository(session),
                chat_sessions=ChatSessionRepository(session),
                capabilities=self.capabilities,
            )
            try:
                yield storage
            except SQLAlchemyError as exc:
                await session.rollback()
                logger.exception("Storage unit failed; transaction rolled back")
                raise PersistenceError("storage unit", str(exc)) from exc
            except BaseException:
                await session.rollback()
                raise

    async def ping(self) -> None:
        async with self.session_factory() as session:
            await session.execute(text("SELECT 1"))

    async def close(self) -> None:
        await close_engine(self.engine)
