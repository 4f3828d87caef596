from omnidesk.domain.enums import TicketAction, TicketStatus


class InvalidTicketTransition(ValueError):
    def __init__(self, current: TicketStatus, action: TicketAction) -> None:
        super().__init__(
            f"Cannot apply action '{action.value}' from state '{current.value}'."
        )
        self.current = current
        self.action = action


class MalformedPayloadError(ValueError):
    def __init__(self, channel: str, reason: str) -> None:
        super().__init__(f"Malformed {channel} webhook payload: {reason}")
        self.channel = channel
        self.reason = reason
