from omnidesk.domain.enums import TicketCategory, TicketPriority
from omnidesk.domain.triggers import KeywordTriggerDetector, NoopTriggerDetector


def test_refund_trigger_is_high_priority() -> None:
    match = KeywordTriggerDetector().detect("I want a REFUND for my order")
    assert match is not None
    assert match.trigger == "refund"
    assert match.category == TicketCategory.REFUND
    assert match.priority == TicketPriority.HIGH


def test_defective_maps_to_product_issue() -> None:
    match = KeywordTriggerDetector().detect("The blender arrived broken")
    assert match is not None
    assert match.category == TicketCategory.PRODUCT_ISSUE
    assert match.priority == TicketPriority.HIGH


def test_shipping_trigger_is_normal_priority() -> None:
    match = KeywordTriggerDetector().detect("my parcel is a lost package apparently")
    assert match is not None
    assert match.category == TicketCategory.SHIPPING
    assert match.priority == TicketPriority.NORMAL


def test_escalation_maps_to_general() -> None:
    match = KeywordTriggerDetector().detect("let me speak to your supervisor")
    assert match is not None
    assert match.category == TicketCategory.GENERAL


def test_keywords_match_whole_words_only() -> None:
    assert KeywordTriggerDetector().detect("what's the latest collection?") is None


def test_custom_keywords_replace_defaults() -> None:
    detector = KeywordTriggerDetector({"billing": ["invoice"]})
    assert detector.detect("I need a refund") is None
    match = detector.detect("my invoice looks off")
    assert match is not None
    assert match.category == TicketCategory.BILLING


def test_noop_detector_never_matches() -> None:
    assert NoopTriggerDetector().detect("refund refund refund") is None
