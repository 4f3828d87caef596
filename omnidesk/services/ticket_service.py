import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from uuid import UUID

from omnidesk.domain.enums import (
    EscalationEventKind,
    SlaStatus,
    TicketAction,
    TicketCategory,
    TicketPriority,
    TicketSource,
    TicketStatus,
)
from omnidesk.domain.sla import SlaPolicy, describe_response_window, sla_status, time_remaining
from omnidesk.domain.state_machine import TicketLifecycle
from omnidesk.domain.triggers import TriggerMatch
from omnidesk.infra.db.models import Conversation, Ticket, TicketEscalationEvent
from omnidesk.infra.storage import Storage, TicketQuery
from omnidesk.services.errors import (
    AlreadyEscalatedError,
    NotEscalatedError,
    TicketEscalatedError,
    TicketNotFoundError,
    ValidationError,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

_VALID_PRIORITIES = ", ".join(priority.value for priority in TicketPriority)
_VALID_CATEGORIES = ", ".join(category.value for category in TicketCategory)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def parse_priority(value: str | TicketPriority) -> TicketPriority:
    if isinstance(value, TicketPriority):
        return value
    try:
        return TicketPriority(str(value).strip().lower())
    except ValueError as exc:
        raise ValidationError(
            f"Invalid priority. Must be one of: {_VALID_PRIORITIES}", field="priority"
        ) from exc


def parse_category(value: str | TicketCategory) -> TicketCategory:
    if isinstance(value, TicketCategory):
        return value
    try:
        return TicketCategory(str(value).strip().lower())
    except ValueError as exc:
        raise ValidationError(
            f"Invalid category. Must be one of: {_VALID_CATEGORIES}", field="category"
        ) from exc


def format_ticket_number(created_at: datetime, sequence: int) -> str:
    return f"TK-{created_at:%Y%m%d}-{sequence:03d}"


@dataclass(slots=True)
class TicketDraft:
    business_id: str
    customer_id: str
    title: str
    description: str
    priority: str | TicketPriority
    category: str | TicketCategory
    customer_name: str | None = None
    customer_email: str | None = None
    source: TicketSource = TicketSource.API
    parent_conversation_id: UUID | None = None
    assigned_to: str | None = None
    customer_impact: str | None = None
    suggested_action: str | None = None


@dataclass(slots=True)
class TicketFilters:
    status: TicketStatus | None = None
    priority: TicketPriority | None = None
    category: TicketCategory | None = None
    sla_status: SlaStatus | None = None
    escalated: bool | None = None
    assigned_to: str | None = None
    search: str | None = None
    limit: int = 50
    offset: int = 0


@dataclass(slots=True)
class TicketSnapshot:
    ticket: Ticket
    sla_status: SlaStatus
    time_remaining: str | None


@dataclass(slots=True)
class TicketPage:
    items: list[TicketSnapshot]
    total: int
    limit: int
    offset: int

    @property
    def has_more(self) -> bool:
        return self.offset + len(self.items) < self.total


@dataclass(slots=True)
class TicketStats:
    total: int
    by_status: dict[str, int] = field(default_factory=dict)
    overdue: int = 0
    escalated: int = 0
    average_resolution_hours: float | None = None


class TicketManager:
    def __init__(
        self,
        storage: Storage,
        sla_policy: SlaPolicy | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.storage = storage
        self.session = storage.session
        self.tickets = storage.tickets
        self.sla_policy = sla_policy or SlaPolicy.default()
        self.clock = clock or _utcnow

    async def create(self, draft: TicketDraft) -> Ticket:
        priority = parse_priority(draft.priority)
        category = parse_category(draft.category)
        business_id = draft.business_id.strip()
        customer_id = draft.customer_id.strip()
        title = draft.title.strip()
        description = draft.description.strip()
        if not business_id:
            raise ValidationError("business_id is required", field="business_id")
        if not customer_id:
            raise ValidationError("customer_id is required", field="customer_id")
        if not title:
            raise ValidationError("title is required", field="title")
        if not description:
            raise ValidationError("description is required", field="description")

        created_at = self.clock()
        sla_hours = self.sla_policy.hours_for(category, priority)
        sequence = await self.tickets.next_sequence(business_id, created_at.date())

        ticket = await self.tickets.create(
            ticket_number=format_ticket_number(created_at, sequence),
            business_id=business_id,
            customer_id=customer_id,
            customer_name=draft.customer_name,
            customer_email=draft.customer_email,
            title=title,
            description=description,
            status=TicketStatus.OPEN,
            priority=priority,
            category=category,
            source=draft.source,
            assigned_to=draft.assigned_to,
            escalation_level=0,
            sla_deadline=self.sla_policy.deadline_for(category, priority, created_at),
            parent_conversation_id=draft.parent_conversation_id,
            metadata_json={
                "customer_impact": draft.customer_impact or "",
                "suggested_action": draft.suggested_action or "",
                "sla_hours": sla_hours,
            },
            created_at=created_at,
            updated_at=created_at,
        )
        await self.session.commit()
        logger.info(
            "Ticket %s created (business=%s, category=%s, priority=%s, sla=%dh)",
            ticket.ticket_number,
            business_id,
            category.value,
            priority.value,
            sla_hours,
        )
        return ticket

    async def create_from_trigger(
        self, conversation: Conversation, text: str, match: TriggerMatch
    ) -> Ticket:
        label = match.trigger.replace("_", " ").capitalize()
        return await self.create(
            TicketDraft(
                business_id=conversation.business_id,
                customer_id=conversation.customer_id,
                customer_name=conversation.customer_name,
                title=f"{label} Request - {text[:50]}",
                description=(
                    f'Customer requesting {match.trigger}. Original message: "{text}". '
                    f"Conversation ID: {conversation.id}"
                ),
                priority=match.priority,
                category=match.category,
                source=TicketSource.AI_CHAT,
                parent_conversation_id=conversation.id,
                customer_impact=f"Matched '{match.keyword}' in a {conversation.channel.value} message",
                suggested_action=f"Review the {match.category.value} request and contact the customer",
            )
        )

    def confirmation_text(self, ticket: Ticket) -> str:
        sla_hours = (ticket.metadata_json or {}).get("sla_hours") or self.sla_policy.hours_for(
            ticket.category, ticket.priority
        )
        window = describe_response_window(int(sla_hours))
        return (
            "Support Ticket Created\n\n"
            f"Ticket ID: {ticket.ticket_number}\n"
            f"Priority: {ticket.priority.value.upper()}\n"
            f"Category: {ticket.category.value}\n"
            f"Expected Response: Within {window}\n\n"
            f"I've created a support ticket for your {ticket.category.value} request. "
            f"Our specialized team will review your case and respond within {window}.\n\n"
            f"You can reference this ticket using ID: {ticket.ticket_number}"
        )

    def snapshot(self, ticket: Ticket, now: datetime | None = None) -> TicketSnapshot:
        now = now or self.clock()
        return TicketSnapshot(
            ticket=ticket,
            sla_status=sla_status(ticket.sla_deadline, ticket.status, now),
            time_remaining=time_remaining(ticket.sla_deadline, now),
        )

    async def get(self, ticket_id: UUID) -> TicketSnapshot:
        ticket = await self._get_ticket_or_raise(ticket_id)
        return self.snapshot(ticket)

    async def get_by_number(self, business_id: str, ticket_number: str) -> TicketSnapshot:
        ticket = await self.tickets.get_by_number(business_id, ticket_number.strip().upper())
        if ticket is None:
            raise TicketNotFoundError(ticket_number)
        return self.snapshot(ticket)

    async def list_tickets(self, business_id: str, filters: TicketFilters) -> TicketPage:
        query = TicketQuery(
            business_id=business_id,
            status=filters.status,
            priority=filters.priority,
            category=filters.category,
            escalated=filters.escalated,
            assigned_to=filters.assigned_to,
            search=filters.search,
            limit=filters.limit,
            offset=filters.offset,
        )
        now = self.clock()
        if filters.sla_status is None:
            tickets, total = await self.tickets.search(query)
            items = [self.snapshot(ticket, now) for ticket in tickets]
            return TicketPage(items=items, total=total, limit=filters.limit, offset=filters.offset)

        # SLA status is derived, so filter after loading and paginate here.
        query.limit = None
        query.offset = 0
        tickets, _ = await self.tickets.search(query)
        matching = [
            snapshot
            for snapshot in (self.snapshot(ticket, now) for ticket in tickets)
            if snapshot.sla_status == filters.sla_status
        ]
        page = matching[filters.offset : filters.offset + filters.limit]
        return TicketPage(
            items=page, total=len(matching), limit=filters.limit, offset=filters.offset
        )

    async def update_status(self, ticket_id: UUID, target: TicketStatus) -> Ticket:
        ticket = await self._get_ticket_for_update_or_raise(ticket_id)
        if ticket.status == target:
            return ticket

        action = TicketLifecycle.action_for_status(ticket.status, target)
        ticket.status = TicketLifecycle.transition(ticket.status, action)

        now = self.clock()
        if ticket.status == TicketStatus.RESOLVED:
            ticket.resolved_at = now
        elif ticket.status == TicketStatus.CLOSED:
            if ticket.resolved_at is None:
                ticket.resolved_at = now
            ticket.escalation_level = 0
        await self.tickets.touch(ticket, now)
        await self.session.commit()
        logger.info("Ticket %s moved to %s", ticket.ticket_number, ticket.status.value)
        return ticket

    async def assign(self, ticket_id: UUID, assignee: str | None) -> Ticket:
        ticket = await self._get_ticket_for_update_or_raise(ticket_id)
        if ticket.escalation_level > 0:
            raise TicketEscalatedError(ticket.id)
        if TicketLifecycle.is_terminal(ticket.status):
            raise ValidationError("Closed tickets cannot be reassigned", field="assigned_to")

        ticket.assigned_to = (assignee or "").strip() or None
        await self.tickets.touch(ticket, self.clock())
        await self.session.commit()
        return ticket

    async def escalate(
        self,
        ticket_id: UUID,
        note: str,
        escalated_by: str | None = None,
        escalated_by_name: str | None = None,
    ) -> Ticket:
        cleaned_note = note.strip()
        if not cleaned_note:
            raise ValidationError("Escalation note is required", field="escalation_note")

        ticket = await self._get_ticket_for_update_or_raise(ticket_id)
        if ticket.escalation_level > 0:
            raise AlreadyEscalatedError(ticket.id)

        now = self.clock()
        ticket.status = TicketLifecycle.transition(ticket.status, TicketAction.ESCALATE)
        ticket.escalation_level = 1
        ticket.assigned_to = None
        await self.tickets.touch(ticket, now)
        await self._record_escalation_event(
            ticket,
            EscalationEventKind.ESCALATED,
            note=cleaned_note,
            actor_id=escalated_by,
            actor_name=escalated_by_name,
            reassigned_to=None,
            at=now,
        )
        await self.session.commit()
        logger.info("Ticket %s escalated to admin by %s", ticket.ticket_number, escalated_by)
        return ticket

    async def complete_escalation(
        self,
        ticket_id: UUID,
        admin_response: str,
        reassign_to: str,
        admin_id: str | None = None,
        admin_name: str | None = None,
    ) -> Ticket:
        cleaned_response = admin_response.strip()
        cleaned_assignee = reassign_to.strip()
        if not cleaned_response:
            raise ValidationError("Admin response is required", field="admin_response")
        if not cleaned_assignee:
            raise ValidationError("reassign_to is required", field="reassign_to")

        ticket = await self._get_ticket_for_update_or_raise(ticket_id)
        if ticket.escalation_level <= 0:
            raise NotEscalatedError(ticket.id)

        now = self.clock()
        ticket.status = TicketLifecycle.transition(
            ticket.status, TicketAction.COMPLETE_ESCALATION
        )
        ticket.escalation_level = 0
        ticket.assigned_to = cleaned_assignee
        await self.tickets.touch(ticket, now)
        await self._record_escalation_event(
            ticket,
            EscalationEventKind.COMPLETED,
            note=cleaned_response,
            actor_id=admin_id,
            actor_name=admin_name,
            reassigned_to=cleaned_assignee,
            at=now,
        )
        await self.session.commit()
        logger.info(
            "Escalation on ticket %s completed; reassigned to %s",
            ticket.ticket_number,
            cleaned_assignee,
        )
        return ticket

    async def escalation_history(self, ticket_id: UUID) -> list[TicketEscalationEvent]:
        await self._get_ticket_or_raise(ticket_id)
        if not self.storage.capabilities.escalation_history:
            return []
        return await self.tickets.list_escalation_events(ticket_id)

    async def stats(self, business_id: str, assigned_to: str | None = None) -> TicketStats:
        by_status = await self.tickets.count_by_status(business_id, assigned_to)
        overdue = await self.tickets.count_overdue(business_id, self.clock(), assigned_to)
        average = await self.tickets.average_resolution_hours(business_id, assigned_to)
        return TicketStats(
            total=sum(by_status.values()),
            by_status={status.value: by_status.get(status, 0) for status in TicketStatus},
            overdue=overdue,
            escalated=by_status.get(TicketStatus.ESCALATED, 0),
            average_resolution_hours=round(average, 1) if average is not None else None,
        )

    async def purge(self, ticket_id: UUID) -> None:
        ticket = await self._get_ticket_or_raise(ticket_id)
        await self.tickets.delete(ticket)
        await self.session.commit()
        logger.info("Ticket %s purged", ticket.ticket_number)

    async def _record_escalation_event(
        self,
        ticket: Ticket,
        kind: EscalationEventKind,
        note: str,
        actor_id: str | None,
        actor_name: str | None,
        reassigned_to: str | None,
        at: datetime,
    ) -> None:
        if not self.storage.capabilities.escalation_history:
            logger.info(
                "Ticket %s escalation event %s by %s: %s",
                ticket.ticket_number,
                kind.value,
                actor_name or actor_id,
                note,
            )
            return
        await self.tickets.add_escalation_event(
            ticket_id=ticket.id,
            kind=kind,
            note=note,
            actor_id=actor_id,
            actor_name=actor_name,
            reassigned_to=reassigned_to,
            at=at,
        )

    async def _get_ticket_or_raise(self, ticket_id: UUID) -> Ticket:
        ticket = await self.tickets.get_by_id(ticket_id)
        if ticket is None:
            raise TicketNotFoundError(ticket_id)
        return ticket

    async def _get_ticket_for_update_or_raise(self, ticket_id: UUID) -> Ticket:
        ticket = await self.tickets.get_for_update(ticket_id)
        if ticket is None:
            raise TicketNotFoundError(ticket_id)
        return ticket
