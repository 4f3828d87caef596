from uuid import UUID


class ServiceError(Exception):
    """Base class for errors raised by the service layer."""


class ValidationError(ServiceError, ValueError):
    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class NotFoundError(ServiceError, LookupError):
    pass


class ConversationNotFoundError(NotFoundError):
    def __init__(self, conversation_id: UUID) -> None:
        super().__init__(f"Conversation '{conversation_id}' not found")
        self.conversation_id = conversation_id


class TicketNotFoundError(NotFoundError):
    def __init__(self, ticket_ref: UUID | str) -> None:
        super().__init__(f"Ticket '{ticket_ref}' not found")
        self.ticket_ref = ticket_ref


class SessionNotFoundError(NotFoundError):
    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session '{session_id}' not found")
        self.session_id = session_id


class ConflictError(ServiceError):
    pass


class AlreadyEscalatedError(ConflictError):
    def __init__(self, ticket_id: UUID) -> None:
        super().__init__(f"Ticket '{ticket_id}' is already escalated to admin")
        self.ticket_id = ticket_id


class NotEscalatedError(ConflictError):
    def __init__(self, ticket_id: UUID) -> None:
        super().__init__(f"Ticket '{ticket_id}' is not currently escalated")
        self.ticket_id = ticket_id


class TicketEscalatedError(ConflictError):
    def __init__(self, ticket_id: UUID) -> None:
        super().__init__(
            f"Ticket '{ticket_id}' is escalated and awaits admin pickup. "
            "Complete the escalation to reassign it."
        )
        self.ticket_id = ticket_id


class ConversationSlotTakenError(ConflictError):
    def __init__(self, conversation_id: UUID, open_conversation_id: UUID) -> None:
        super().__init__(
            f"Conversation '{conversation_id}' cannot be reopened: "
            f"conversation '{open_conversation_id}' is already open for this customer and channel"
        )
        self.conversation_id = conversation_id
        self.open_conversation_id = open_conversation_id


class DownstreamUnavailableError(ServiceError):
    def __init__(self, collaborator: str, reason: str) -> None:
        super().__init__(f"{collaborator} unavailable: {reason}")
        self.collaborator = collaborator
        self.reason = reason


class PersistenceError(ServiceError):
    def __init__(self, operation: str, reason: str) -> None:
        super().__init__(f"Persistence failure during {operation}: {reason}")
        self.operation = operation
        self.reason = reason
