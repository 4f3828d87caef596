from enum import Enum


class Channel(str, Enum):
    WEB_CHAT = "web_chat"
    WHATSAPP = "whatsapp"
    INSTAGRAM = "instagram"
    FACEBOOK = "facebook"
    EMAIL = "email"
    SMS = "sms"


class ConversationStatus(str, Enum):
    ACTIVE = "active"
    RESOLVED = "resolved"
    ESCALATED = "escalated"
    CLOSED = "closed"
    ARCHIVED = "archived"


class ConversationPriority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class MessageSender(str, Enum):
    CUSTOMER = "customer"
    AI_AGENT = "ai_agent"
    HUMAN_AGENT = "human_agent"
    SYSTEM = "system"


class MessageType(str, Enum):
    TEXT = "text"
    MEDIA = "media"
    STICKER = "sticker"
    QUICK_REPLY = "quick_reply"
    SYSTEM = "system"
    PRODUCT = "product"


class TicketStatus(str, Enum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    CLOSED = "closed"
    ESCALATED = "escalated"


class TicketPriority(str, Enum):
    URGENT = "urgent"
    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    TicketPriority.URGENT: 0,
    TicketPriority.HIGH: 1,
    TicketPriority.NORMAL: 2,
    TicketPriority.LOW: 3,
}


class TicketCategory(str, Enum):
    REFUND = "refund"
    RETURN = "return"
    TECHNICAL = "technical"
    SHIPPING = "shipping"
    BILLING = "billing"
    PRODUCT_ISSUE = "product_issue"
    GENERAL = "general"


class TicketSource(str, Enum):
    AI_CHAT = "ai_chat"
    AGENT = "agent"
    API = "api"


class TicketAction(str, Enum):
    START_WORK = "start_work"
    RESOLVE = "resolve"
    ESCALATE = "escalate"
    COMPLETE_ESCALATION = "complete_escalation"
    CLOSE = "close"
    REOPEN = "reopen"


class SlaStatus(str, Enum):
    ON_TIME = "on_time"
    SOON = "soon"
    URGENT = "urgent"
    OVERDUE = "overdue"


class EscalationEventKind(str, Enum):
    ESCALATED = "escalated"
    COMPLETED = "completed"


class DispatchOutcome(str, Enum):
    REPLIED = "replied"
    DEGRADED = "degraded"
    SKIPPED = "skipped"
