"""
test_red_flags.py — Deterministic scam-marker matcher.
"""

from safemessage.services.red_flags import RedFlagAnalyzer, find_red_flags


async def test_gift_card_request_is_unsafe():
    analysis = await RedFlagAnalyzer().analyze(
        "+1 555 0100", "Your account will be suspended. Pay with gift cards within 24 hours.", "",
    )
    assert analysis.verdict == "UNSAFE"
    assert analysis.threat_level == "High"
    categories = {f.category for f in analysis.red_flags}
    assert {"urgency", "financial"} <= categories


async def test_only_soft_signals_are_unknown():
    analysis = await RedFlagAnalyzer().analyze("friend", "Urgent: click here to see the photos", "")
    assert analysis.verdict == "UNKNOWN"
    assert analysis.threat_level == "Medium"


async def test_ordinary_message_is_safe():
    analysis = await RedFlagAnalyzer().analyze("mum", "Dinner at 7? Bring the salad bowl.", "family chat")
    assert analysis.verdict == "SAFE"
    assert analysis.red_flags == []


def test_shortened_link_detected():
    flags = find_red_flags("see bit.ly/abc123 for details")
    assert [f.category for f in flags] == ["urls"]


def test_matching_is_case_insensitive():
    assert find_red_flags("FINAL NOTICE from the IRS")


def test_empty_text():
    assert find_red_flags("") == []
