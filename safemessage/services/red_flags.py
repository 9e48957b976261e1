"""
red_flags.py — Deterministic red-flag matcher for scanned messages.

Default analyzer behind POST /api/v1/scan. It looks for well-known scam
markers (false urgency, untraceable payment methods, authority spoofing,
shortened or throwaway-domain links, prize bait) and turns the matches
into a coarse verdict:

    any high-severity match   → UNSAFE  / "High"
    only medium/low matches   → UNKNOWN / "Medium"
    nothing matched           → SAFE    / "Low"

LLM-based analysis plugs in through the same analyze() signature; see
routes/deps.get_analyzer.
"""

import re
from dataclasses import dataclass, field

# (pattern, category, description, severity)
_PATTERNS: list[tuple[str, str, str, str]] = [
    # ── Urgency ──
    (r"within (24|48) ?(hours|hrs)", "urgency", "Creates false time pressure", "high"),
    (r"immediate action", "urgency", "Demands instant response", "high"),
    (r"\bact now\b", "urgency", "Creates false urgency", "high"),
    (r"final notice", "urgency", "Fake final warning", "high"),
    (r"account (will be|has been) (closed|suspended|locked)", "urgency", "Account closure threat", "high"),
    (r"\burgent\b", "urgency", "General urgency signal", "medium"),
    # ── Financial ──
    (r"gift ?cards?", "financial", "Gift card payment request", "high"),
    (r"prepaid card", "financial", "Prepaid card request", "high"),
    (r"wire transfer|western union|moneygram", "financial", "Untraceable money transfer", "high"),
    (r"\b(bitcoin|btc|ethereum|eth|usdt|crypto wallet)\b", "financial", "Cryptocurrency request", "high"),
    (r"(pay a|release|processing) fee", "financial", "Advance fee request", "high"),
    (r"send funds", "financial", "Money sending request", "high"),
    # ── Authority spoofing ──
    (r"\b(irs|ssa|fbi|dea|hmrc)\b", "authority", "Government agency impersonation", "high"),
    (r"social security", "authority", "Social Security impersonation", "high"),
    (r"court order|legal action|law enforcement|police department", "authority", "Legal threat", "high"),
    (r"government grant", "authority", "Fake government grant", "high"),
    # ── Links ──
    (r"\b(bit\.ly|tinyurl\.com|tiny\.cc|t\.co|short\.link)/", "urls", "Shortened link hides destination", "high"),
    (r"https?://[^/\s]*\.(ru|tk|ml|cf|top|xyz|click|download|stream)(/|\b)", "urls", "Throwaway top-level domain", "high"),
    # ── Generic bait ──
    (r"congratulations,? you (have )?won", "generic", "Fake prize notification", "high"),
    (r"you have been selected", "generic", "Fake selection notification", "high"),
    (r"verify your (account|identity|password)", "generic", "Credential harvesting prompt", "medium"),
    (r"click (here|the link|below)", "generic", "Pushes the reader to a link", "low"),
]

_COMPILED = [
    (re.compile(pattern, re.IGNORECASE), category, description, severity)
    for pattern, category, description, severity in _PATTERNS
]


@dataclass(frozen=True)
class RedFlag:
    category: str
    description: str
    severity: str


@dataclass(frozen=True)
class ScanAnalysis:
    verdict: str  # SAFE | UNSAFE | UNKNOWN
    threat_level: str
    red_flags: list[RedFlag] = field(default_factory=list)


def find_red_flags(text: str) -> list[RedFlag]:
    if not text:
        return []
    return [
        RedFlag(category, description, severity)
        for regex, category, description, severity in _COMPILED
        if regex.search(text)
    ]


class RedFlagAnalyzer:
    async def analyze(self, sender: str, body: str, context: str) -> ScanAnalysis:
        flags = find_red_flags("\n".join([sender, body, context]))
        if any(f.severity == "high" for f in flags):
            return ScanAnalysis("UNSAFE", "High", flags)
        if flags:
            return ScanAnalysis("UNKNOWN", "Medium", flags)
        return ScanAnalysis("SAFE", "Low", flags)
