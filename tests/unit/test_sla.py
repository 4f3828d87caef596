from datetime import UTC, datetime, timedelta

import pytest

from omnidesk.domain.enums import SlaStatus, TicketCategory, TicketPriority, TicketStatus
from omnidesk.domain.sla import SlaPolicy, describe_response_window, sla_status, time_remaining
from omnidesk.infra.memory.store import InMemoryStorageProvider
from omnidesk.services.ticket_service import TicketDraft, TicketManager

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=UTC)


def test_default_matrix_lookup() -> None:
    policy = SlaPolicy.default()
    assert policy.hours_for(TicketCategory.REFUND, TicketPriority.URGENT) == 2
    assert policy.hours_for(TicketCategory.BILLING, TicketPriority.URGENT) == 1
    assert policy.hours_for(TicketCategory.TECHNICAL, TicketPriority.LOW) == 96


def test_deadline_is_counted_from_creation() -> None:
    policy = SlaPolicy.default()
    deadline = policy.deadline_for(TicketCategory.SHIPPING, TicketPriority.NORMAL, NOW)
    assert deadline == NOW + timedelta(hours=24)


def test_overrides_merge_into_default_matrix() -> None:
    policy = SlaPolicy.with_overrides({"refund": {"urgent": 1}})
    assert policy.hours_for(TicketCategory.REFUND, TicketPriority.URGENT) == 1
    assert policy.hours_for(TicketCategory.REFUND, TicketPriority.HIGH) == 4
    assert SlaPolicy.default().hours_for(TicketCategory.REFUND, TicketPriority.URGENT) == 2


@pytest.mark.parametrize(
    ("offset", "expected"),
    [
        (timedelta(hours=30), SlaStatus.ON_TIME),
        (timedelta(hours=10), SlaStatus.SOON),
        (timedelta(minutes=90), SlaStatus.URGENT),
        (timedelta(minutes=-1), SlaStatus.OVERDUE),
    ],
)
def test_sla_status_windows(offset: timedelta, expected: SlaStatus) -> None:
    assert sla_status(NOW + offset, TicketStatus.OPEN, NOW) == expected


def test_settled_tickets_are_never_overdue() -> None:
    deadline = NOW - timedelta(hours=5)
    assert sla_status(deadline, TicketStatus.RESOLVED, NOW) == SlaStatus.ON_TIME
    assert sla_status(deadline, TicketStatus.CLOSED, NOW) == SlaStatus.ON_TIME
    assert sla_status(deadline, TicketStatus.ESCALATED, NOW) == SlaStatus.OVERDUE


def test_sla_status_is_deterministic() -> None:
    deadline = NOW + timedelta(hours=3)
    results = {sla_status(deadline, TicketStatus.IN_PROGRESS, NOW) for _ in range(5)}
    assert results == {SlaStatus.SOON}


def test_time_remaining_display() -> None:
    assert time_remaining(NOW + timedelta(hours=1, minutes=30), NOW) == "1h remaining"
    assert time_remaining(NOW + timedelta(hours=50), NOW) == "2d remaining"
    assert time_remaining(NOW - timedelta(hours=3), NOW) == "3h overdue"
    assert time_remaining(None, NOW) is None


def test_response_window_wording() -> None:
    assert describe_response_window(4) == "4 hours"
    assert describe_response_window(48) == "2 business days"


@pytest.mark.asyncio
async def test_urgent_refund_ticket_left_open_goes_overdue(
    provider: InMemoryStorageProvider,
) -> None:
    async with provider.unit() as storage:
        manager = TicketManager(storage, clock=lambda: NOW)
        ticket = await manager.create(
            TicketDraft(
                business_id="biz-1",
                customer_id="cust-1",
                title="Refund for order 1001",
                description="Charged twice",
                priority="urgent",
                category="refund",
            )
        )

    assert ticket.sla_deadline == NOW + timedelta(hours=2)
    assert ticket.status == TicketStatus.OPEN

    snapshot = manager.snapshot(ticket, now=NOW + timedelta(hours=3))
    assert snapshot.sla_status == SlaStatus.OVERDUE
    assert snapshot.time_remaining == "1h overdue"
