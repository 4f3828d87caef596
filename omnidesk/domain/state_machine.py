from omnidesk.domain.enums import TicketAction, TicketStatus
from omnidesk.domain.exceptions import InvalidTicketTransition


class TicketLifecycle:
    """State machine for tickets: open -> in_progress -> resolved/escalated -> closed."""

    _allowed_transitions: dict[tuple[TicketStatus, TicketAction], TicketStatus] = {
        (TicketStatus.OPEN, TicketAction.START_WORK): TicketStatus.IN_PROGRESS,
        (TicketStatus.IN_PROGRESS, TicketAction.RESOLVE): TicketStatus.RESOLVED,
        (TicketStatus.IN_PROGRESS, TicketAction.ESCALATE): TicketStatus.ESCALATED,
        # Escalating an untouched ticket picks it up on the way.
        (TicketStatus.OPEN, TicketAction.ESCALATE): TicketStatus.ESCALATED,
        (TicketStatus.ESCALATED, TicketAction.COMPLETE_ESCALATION): TicketStatus.IN_PROGRESS,
    }

    _action_by_target: dict[TicketStatus, TicketAction] = {
        TicketStatus.IN_PROGRESS: TicketAction.START_WORK,
        TicketStatus.RESOLVED: TicketAction.RESOLVE,
        TicketStatus.ESCALATED: TicketAction.ESCALATE,
        TicketStatus.OPEN: TicketAction.REOPEN,
        TicketStatus.CLOSED: TicketAction.CLOSE,
    }

    @classmethod
    def transition(cls, current: TicketStatus, action: TicketAction) -> TicketStatus:
        if current == TicketStatus.CLOSED:
            if action == TicketAction.CLOSE:
                return TicketStatus.CLOSED
            raise InvalidTicketTransition(current=current, action=action)

        # Administrative close is allowed from every non-terminal state.
        if action == TicketAction.CLOSE:
            return TicketStatus.CLOSED

        next_state = cls._allowed_transitions.get((current, action))
        if not next_state:
            raise InvalidTicketTransition(current=current, action=action)
        return next_state

    @classmethod
    def action_for_status(cls, current: TicketStatus, target: TicketStatus) -> TicketAction:
        """Map a requested status change onto a plain status-update action.

        Escalation and its completion carry extra bookkeeping, so they are not
        reachable through a bare status update.
        """
        if target == TicketStatus.ESCALATED:
            raise InvalidTicketTransition(current=current, action=TicketAction.ESCALATE)
        if current == TicketStatus.ESCALATED and target == TicketStatus.IN_PROGRESS:
            raise InvalidTicketTransition(
                current=current, action=TicketAction.COMPLETE_ESCALATION
            )
        return cls._action_by_target[target]

    @staticmethod
    def is_terminal(status: TicketStatus) -> bool:
        return status == TicketStatus.CLOSED

    @staticmethod
    def is_settled(status: TicketStatus) -> bool:
        return status in (TicketStatus.RESOLVED, TicketStatus.CLOSED)
