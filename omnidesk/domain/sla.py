"""SLA deadline policy and status derivation for tickets.

The matrix maps ``category -> priority -> hours``. Hours are counted from the
moment the ticket is created and the resulting deadline is never recomputed.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta

from omnidesk.domain.enums import SlaStatus, TicketCategory, TicketPriority, TicketStatus

DEFAULT_SLA_HOURS = 48
URGENT_WINDOW = timedelta(hours=2)
SOON_WINDOW = timedelta(hours=24)

DEFAULT_SLA_MATRIX: dict[str, dict[str, int]] = {
    "refund": {"urgent": 2, "high": 4, "normal": 24, "low": 48},
    "return": {"urgent": 4, "high": 8, "normal": 48, "low": 72},
    "technical": {"urgent": 2, "high": 8, "normal": 72, "low": 96},
    "shipping": {"urgent": 2, "high": 4, "normal": 24, "low": 48},
    "billing": {"urgent": 1, "high": 4, "normal": 24, "low": 48},
    "product_issue": {"urgent": 4, "high": 8, "normal": 48, "low": 72},
    "general": {"urgent": 4, "high": 8, "normal": 48, "low": 96},
}


@dataclass(frozen=True, slots=True)
class SlaPolicy:
    matrix: Mapping[str, Mapping[str, int]]
    default_hours: int = DEFAULT_SLA_HOURS

    @classmethod
    def default(cls) -> "SlaPolicy":
        return cls(matrix=DEFAULT_SLA_MATRIX)

    @classmethod
    def with_overrides(
        cls, overrides: Mapping[str, Mapping[str, int]] | None
    ) -> "SlaPolicy":
        matrix = {category: dict(row) for category, row in DEFAULT_SLA_MATRIX.items()}
        for category, row in (overrides or {}).items():
            matrix.setdefault(category, {}).update(row)
        return cls(matrix=matrix)

    def hours_for(self, category: TicketCategory, priority: TicketPriority) -> int:
        row = self.matrix.get(category.value, {})
        return int(row.get(priority.value, self.default_hours))

    def deadline_for(
        self,
        category: TicketCategory,
        priority: TicketPriority,
        created_at: datetime,
    ) -> datetime:
        return created_at + timedelta(hours=self.hours_for(category, priority))


def sla_status(
    sla_deadline: datetime | None,
    status: TicketStatus,
    now: datetime,
) -> SlaStatus:
    if sla_deadline is None:
        return SlaStatus.ON_TIME

    remaining = sla_deadline - now
    if remaining < timedelta(0):
        # The clock stops once a ticket is resolved or closed.
        if status in (TicketStatus.RESOLVED, TicketStatus.CLOSED):
            return SlaStatus.ON_TIME
        return SlaStatus.OVERDUE
    if remaining < URGENT_WINDOW:
        return SlaStatus.URGENT
    if remaining < SOON_WINDOW:
        return SlaStatus.SOON
    return SlaStatus.ON_TIME


def time_remaining(sla_deadline: datetime | None, now: datetime) -> str | None:
    if sla_deadline is None:
        return None

    seconds = (sla_deadline - now).total_seconds()
    hours = int(seconds // 3600)
    if seconds < 0:
        return f"{abs(hours)}h overdue"
    if hours < 24:
        return f"{hours}h remaining"
    return f"{hours // 24}d remaining"


def describe_response_window(sla_hours: int) -> str:
    if sla_hours <= 4:
        return f"{sla_hours} hours"
    return f"{round(sla_hours / 24)} business days"
