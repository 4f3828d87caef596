from datetime import UTC, datetime, timedelta

import pytest

from omnidesk.domain.enums import TicketStatus
from omnidesk.infra.memory.store import InMemoryStorageProvider
from omnidesk.services.escalation_scheduler import SYSTEM_ACTOR, EscalationScheduler
from omnidesk.services.ticket_service import TicketDraft, TicketManager

CREATED = datetime(2026, 3, 10, 8, 0, tzinfo=UTC)


async def _seed(provider: InMemoryStorageProvider):
    drafts = [
        ("billing", "urgent"),  # 1h
        ("refund", "high"),  # 4h
        ("technical", "low"),  # 96h
        ("shipping", "normal"),  # 24h
    ]
    async with provider.unit() as storage:
        manager = TicketManager(storage, clock=lambda: CREATED)
        tickets = [
            await manager.create(
                TicketDraft(
                    business_id="biz-1",
                    customer_id="cust-1",
                    title=f"{category} issue",
                    description="details",
                    priority=priority,
                    category=category,
                )
            )
            for category, priority in drafts
        ]
        await manager.update_status(tickets[3].id, TicketStatus.CLOSED)
    return tickets


@pytest.mark.asyncio
async def test_sweep_counts_open_tickets_by_sla_status(provider: InMemoryStorageProvider) -> None:
    tickets = await _seed(provider)
    now = CREATED + timedelta(hours=2, minutes=30)

    async with provider.unit() as storage:
        report = await EscalationScheduler(storage, clock=lambda: now).sweep("biz-1")

    assert report.checked_at == now
    assert report.counts == {"on_time": 1, "soon": 0, "urgent": 1, "overdue": 1}
    assert report.total == 3
    assert report.overdue_ticket_numbers == [tickets[0].ticket_number]


@pytest.mark.asyncio
async def test_sweep_does_not_modify_tickets(provider: InMemoryStorageProvider) -> None:
    tickets = await _seed(provider)
    later = CREATED + timedelta(days=10)

    async with provider.unit() as storage:
        await EscalationScheduler(storage, clock=lambda: later).sweep()

    assert all(ticket.escalation_level == 0 for ticket in tickets)
    assert tickets[0].status == TicketStatus.OPEN


@pytest.mark.asyncio
async def test_escalate_overdue_only_touches_overdue_tickets(
    provider: InMemoryStorageProvider,
) -> None:
    tickets = await _seed(provider)
    now = CREATED + timedelta(hours=5)

    async with provider.unit() as storage:
        scheduler = EscalationScheduler(storage, clock=lambda: now)
        escalated = await scheduler.escalate_overdue("biz-1")
        again = await scheduler.escalate_overdue("biz-1")

    assert {ticket.id for ticket in escalated} == {tickets[0].id, tickets[1].id}
    assert again == []
    assert tickets[2].escalation_level == 0
    assert tickets[3].status == TicketStatus.CLOSED
    assert {event.actor_id for event in provider.database.escalation_events} == {SYSTEM_ACTOR}


class ResolveBeforeEscalateManager(TicketManager):
    """Resolves one ticket right before escalating it, as an agent racing the sweep would."""

    def __init__(self, storage, provider, ticket_id, clock) -> None:
        super().__init__(storage, clock=clock)
        self.provider = provider
        self.ticket_id = ticket_id

    async def escalate(self, ticket_id, **kwargs):
        if ticket_id == self.ticket_id:
            self.provider.database.tickets[ticket_id].status = TicketStatus.RESOLVED
        return await super().escalate(ticket_id, **kwargs)


@pytest.mark.asyncio
async def test_escalate_overdue_skips_ticket_resolved_mid_sweep(
    provider: InMemoryStorageProvider,
) -> None:
    tickets = await _seed(provider)
    now = CREATED + timedelta(hours=5)

    async with provider.unit() as storage:
        manager = ResolveBeforeEscalateManager(storage, provider, tickets[0].id, lambda: now)
        scheduler = EscalationScheduler(storage, ticket_manager=manager, clock=lambda: now)
        escalated = await scheduler.escalate_overdue("biz-1")

    assert [ticket.id for ticket in escalated] == [tickets[1].id]
    assert tickets[0].status == TicketStatus.RESOLVED
    assert tickets[0].escalation_level == 0
