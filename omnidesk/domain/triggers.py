import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Protocol

from omnidesk.domain.enums import TicketCategory, TicketPriority

# Order matters: the first matching trigger wins.
DEFAULT_TRIGGER_KEYWORDS: dict[str, list[str]] = {
    "refund": ["refund", "money back", "return my money", "want my money", "give me money"],
    "return": ["return this", "send back", "want to return", "return item", "return product"],
    "defective": ["broken", "defective", "not working", "damaged", "faulty", "malfunctioning"],
    "shipping": [
        "delayed",
        "late",
        "lost package",
        "missing order",
        "shipping problem",
        "delivery issue",
    ],
    "billing": ["billing issue", "charged wrong", "payment problem", "wrong charge", "billing error"],
    "escalation": ["manager", "supervisor", "escalate", "this is unacceptable", "speak to manager"],
}

TRIGGER_CATEGORY_MAP: dict[str, TicketCategory] = {
    "defective": TicketCategory.PRODUCT_ISSUE,
    "escalation": TicketCategory.GENERAL,
}

HIGH_PRIORITY_TRIGGERS = frozenset({"refund", "defective", "escalation"})


@dataclass(frozen=True, slots=True)
class TriggerMatch:
    trigger: str
    keyword: str
    category: TicketCategory
    priority: TicketPriority


class TriggerDetector(Protocol):
    def detect(self, text: str) -> TriggerMatch | None: ...


class KeywordTriggerDetector:
    """Matches whole-word keywords against inbound text, case-insensitively."""

    def __init__(self, keywords: Mapping[str, Sequence[str]] | None = None) -> None:
        source = keywords if keywords is not None else DEFAULT_TRIGGER_KEYWORDS
        self._patterns: list[tuple[str, str, re.Pattern[str]]] = []
        for trigger, phrases in source.items():
            for phrase in phrases:
                cleaned = phrase.strip().lower()
                if not cleaned:
                    continue
                pattern = re.compile(rf"\b{re.escape(cleaned)}\b")
                self._patterns.append((trigger, cleaned, pattern))

    def detect(self, text: str) -> TriggerMatch | None:
        normalized = text.strip().lower()
        if not normalized:
            return None

        for trigger, keyword, pattern in self._patterns:
            if pattern.search(normalized):
                return TriggerMatch(
                    trigger=trigger,
                    keyword=keyword,
                    category=self._category_for(trigger),
                    priority=(
                        TicketPriority.HIGH
                        if trigger in HIGH_PRIORITY_TRIGGERS
                        else TicketPriority.NORMAL
                    ),
                )
        return None

    @staticmethod
    def _category_for(trigger: str) -> TicketCategory:
        mapped = TRIGGER_CATEGORY_MAP.get(trigger)
        if mapped is not None:
            return mapped
        try:
            return TicketCategory(trigger)
        except ValueError:
            return TicketCategory.GENERAL


class NoopTriggerDetector:
    def detect(self, text: str) -> TriggerMatch | None:
        _ = text
        return None
