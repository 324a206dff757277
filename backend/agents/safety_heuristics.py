"""Fast deterministic pre-filter for the Safety Monitor.

Most messages are benign, so a model call per message would be slow and
costly. ``run_safety_heuristics`` decides whether the Safety Monitor needs to
escalate at all. The patterns are deliberately broad (they favor escalation);
false positives are cleaned up by the model call, false negatives are
contained by the monitor's fail-safe fallback.

Colloquial expressions ("killing it", "dead tired") override every crisis
pattern: if one matches, nothing escalates.
"""

import re
from dataclasses import dataclass, field

from constants import SignalType

_FLAGS = re.IGNORECASE

CRISIS_PATTERNS: dict[SignalType, list[re.Pattern[str]]] = {
    SignalType.SUICIDAL_IDEATION: [
        re.compile(r"\b(want to die|end (it|my life)|kill myself|suicide|suicidal)\b", _FLAGS),
        re.compile(r"\b(no (point|reason) (to|in) liv(e|ing))\b", _FLAGS),
        re.compile(r"\b(better off (dead|without me))\b", _FLAGS),
        re.compile(r"\b(can'?t (go on|take it|do this) anymore)\b", _FLAGS),
        re.compile(r"\b(don'?t want to (be alive|live|be here|exist|wake up))\b", _FLAGS),
    ],
    SignalType.SELF_HARM: [
        re.compile(r"\b(cut(ting)? myself|hurt(ing)? myself|self[- ]?harm)\b", _FLAGS),
        re.compile(r"\b(burn(ing)? myself|scratch(ing)? myself)\b", _FLAGS),
        re.compile(r"\b(hit(ting)? myself|punch(ing)? myself)\b", _FLAGS),
    ],
    SignalType.ABUSE: [
        re.compile(r"\b((he|she|they|partner|spouse|parent) (hit|hits|beat|beats|hurt|hurts) me)\b", _FLAGS),
        re.compile(r"\b(being (abused|beaten|hit))\b", _FLAGS),
        re.compile(r"\b(domestic (violence|abuse))\b", _FLAGS),
        re.compile(r"\b((physically|sexually|emotionally) (abused|assaulted))\b", _FLAGS),
    ],
    SignalType.SAFETY: [
        re.compile(r"\b(not safe|don'?t feel safe|unsafe)\b", _FLAGS),
        re.compile(r"\b(threatened|threatening me)\b", _FLAGS),
        re.compile(r"\b(scared for my life)\b", _FLAGS),
        re.compile(r"\b(stalk(ed|ing|s) me|being stalked)\b", _FLAGS),
    ],
    SignalType.DISTRESS: [
        re.compile(r"\b(hopeless|no hope|lost all hope)\b", _FLAGS),
        re.compile(r"\b(worthless|no one cares|nobody cares)\b", _FLAGS),
        re.compile(r"\b(can'?t cope|falling apart|breaking down)\b", _FLAGS),
        re.compile(r"\b(desperate|despair)\b", _FLAGS),
    ],
}

COLLOQUIAL_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"\b(killing (it|me)|kill(s|ed)? it|so funny|hilarious|dying (of|from) laughter)\b", _FLAGS),
    re.compile(r"\b(to die for|drop[- ]dead gorgeous)\b", _FLAGS),
    re.compile(r"\b(dead tired|dead serious|deadly serious)\b", _FLAGS),
    re.compile(r"\b(bored to death|scared to death|worried to death)\b", _FLAGS),
    re.compile(r"\b(you'?re killing me|that kills|this kills)\b", _FLAGS),
]


@dataclass
class HeuristicResult:
    """Outcome of the pre-filter.

    Attributes:
        should_escalate: True iff any crisis signal type matched
        signals: Matched signal types, in table order
        matched_phrases: First matched substring per signal type
    """

    should_escalate: bool
    signals: list[SignalType] = field(default_factory=list)
    matched_phrases: list[str] = field(default_factory=list)


def is_colloquial(message: str) -> bool:
    """True if the message contains a colloquial override expression."""
    return any(pattern.search(message) for pattern in COLLOQUIAL_PATTERNS)


def run_safety_heuristics(message: str) -> HeuristicResult:
    """Classify a message with the regex tables.

    Args:
        message: Raw user message

    Returns:
        HeuristicResult; colloquial matches always yield no escalation
    """
    normalized = message.lower()

    if is_colloquial(normalized):
        return HeuristicResult(should_escalate=False)

    signals: list[SignalType] = []
    matched_phrases: list[str] = []
    for signal_type, patterns in CRISIS_PATTERNS.items():
        for pattern in patterns:
            match = pattern.search(normalized)
            if match:
                signals.append(signal_type)
                matched_phrases.append(match.group(0))
                break

    return HeuristicResult(
        should_escalate=bool(signals),
        signals=signals,
        matched_phrases=matched_phrases,
    )
