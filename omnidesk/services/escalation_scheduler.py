import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime

from omnidesk.domain.enums import SlaStatus
from omnidesk.domain.exceptions import InvalidTicketTransition
from omnidesk.domain.sla import sla_status
from omnidesk.infra.db.models import Ticket
from omnidesk.infra.storage import Storage, StorageProvider, TicketQuery
from omnidesk.services.errors import AlreadyEscalatedError
from omnidesk.services.session_registry import SessionLimits, SessionRegistry
from omnidesk.services.ticket_service import TicketManager

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "sla-scheduler"


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(slots=True)
class SlaReport:
    checked_at: datetime
    counts: dict[str, int] = field(default_factory=dict)
    overdue_ticket_numbers: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return sum(self.counts.values())


class EscalationScheduler:
    """Recomputes SLA status for open tickets.

    ``sweep`` only reads. ``escalate_overdue`` is the one path that changes
    ticket state, and it goes through the normal ``TicketManager.escalate``.
    """

    def __init__(
        self,
        storage: Storage,
        ticket_manager: TicketManager | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.tickets = storage.tickets
        self.clock = clock or _utcnow
        self.ticket_manager = ticket_manager or TicketManager(storage, clock=self.clock)

    async def sweep(self, business_id: str | None = None) -> SlaReport:
        now = self.clock()
        report = SlaReport(checked_at=now, counts={status.value: 0 for status in SlaStatus})
        for ticket in await self._open_tickets(business_id):
            status = sla_status(ticket.sla_deadline, ticket.status, now)
            report.counts[status.value] += 1
            if status == SlaStatus.OVERDUE:
                report.overdue_ticket_numbers.append(ticket.ticket_number)
        if report.overdue_ticket_numbers:
            logger.warning(
                "%d open tickets are past their SLA deadline: %s",
                len(report.overdue_ticket_numbers),
                ", ".join(report.overdue_ticket_numbers),
            )
        return report

    async def escalate_overdue(self, business_id: str | None = None) -> list[Ticket]:
        now = self.clock()
        escalated: list[Ticket] = []
        for ticket in await self._open_tickets(business_id):
            if ticket.escalation_level > 0:
                continue
            if sla_status(ticket.sla_deadline, ticket.status, now) != SlaStatus.OVERDUE:
                continue
            try:
                escalated.append(
                    await self.ticket_manager.escalate(
                        ticket.id,
                        note=f"SLA deadline {ticket.sla_deadline.isoformat()} missed",
                        escalated_by=SYSTEM_ACTOR,
                        escalated_by_name="SLA scheduler",
                    )
                )
            except AlreadyEscalatedError:
                logger.debug("Ticket %s was escalated concurrently", ticket.ticket_number)
            except InvalidTicketTransition:
                logger.debug(
                    "Ticket %s left the escalatable states before the sweep reached it",
                    ticket.ticket_number,
                )
        return escalated

    async def _open_tickets(self, business_id: str | None) -> list[Ticket]:
        tickets, _ = await self.tickets.search(
            TicketQuery(business_id=business_id, open_only=True, limit=None)
        )
        return tickets


async def run_forever(
    provider: StorageProvider,
    interval_seconds: float,
    session_limits: SessionLimits | None = None,
) -> None:
    """Background loop started from the application lifespan.

    Each pass sweeps SLA status and closes AI sessions that went idle.
    """
    logger.info("SLA sweep running every %ss", interval_seconds)
    while True:
        try:
            async with provider.unit() as storage:
                await EscalationScheduler(storage).sweep()
                await SessionRegistry(storage, session_limits).evict_expired()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("SLA sweep failed")
        await asyncio.sleep(interval_seconds)
