from collections.abc import AsyncIterator

from fastapi import Depends, Request

from omnidesk.core.config import Settings, get_settings
from omnidesk.infra.storage import Storage, StorageProvider
from omnidesk.services.escalation_scheduler import EscalationScheduler
from omnidesk.services.handoff import HandoffController
from omnidesk.services.inbox_service import InboxService
from omnidesk.services.session_registry import SessionRegistry
from omnidesk.services.ticket_service import TicketManager
from omnidesk.services.webhook_service import InboundPipeline, ReplyCollaborators


def get_storage_provider(request: Request) -> StorageProvider:
    return request.app.state.storage_provider


def get_collaborators(request: Request) -> ReplyCollaborators:
    return request.app.state.collaborators


def get_app_settings(request: Request) -> Settings:
    return getattr(request.app.state, "settings", None) or get_settings()


async def get_storage(
    provider: StorageProvider = Depends(get_storage_provider),
) -> AsyncIterator[Storage]:
    async with provider.unit() as storage:
        yield storage


async def get_ticket_manager(
    storage: Storage = Depends(get_storage),
    collaborators: ReplyCollaborators = Depends(get_collaborators),
) -> TicketManager:
    return TicketManager(storage, sla_policy=collaborators.sla_policy)


async def get_session_registry(
    storage: Storage = Depends(get_storage),
    collaborators: ReplyCollaborators = Depends(get_collaborators),
) -> SessionRegistry:
    return SessionRegistry(storage, collaborators.session_limits)


async def get_inbox_service(
    storage: Storage = Depends(get_storage),
    collaborators: ReplyCollaborators = Depends(get_collaborators),
) -> InboxService:
    return InboxService(
        storage,
        sender=collaborators.sender,
        retry_policy=collaborators.retry_policy,
        session_registry=SessionRegistry(storage, collaborators.session_limits),
        ticket_manager=TicketManager(storage, sla_policy=collaborators.sla_policy),
    )


async def get_handoff_controller(storage: Storage = Depends(get_storage)) -> HandoffController:
    return HandoffController(storage)


async def get_escalation_scheduler(
    storage: Storage = Depends(get_storage),
    ticket_manager: TicketManager = Depends(get_ticket_manager),
) -> EscalationScheduler:
    return EscalationScheduler(storage, ticket_manager=ticket_manager)


def get_inbound_pipeline(
    provider: StorageProvider = Depends(get_storage_provider),
    collaborators: ReplyCollaborators = Depends(get_collaborators),
) -> InboundPipeline:
    return InboundPipeline(provider, collaborators)
