"""Keyword-based query classification.

Scores a message against three keyword pattern sets (time-sensitive,
app-data, general), applies small context adjustments, and picks the
category with the highest score. Pure and I/O free.
"""

import re
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from ai_router.models import QueryCategory

PARTIAL_MATCH_FACTOR = 0.7
MAX_CONFIDENCE = 0.95
NEUTRAL_CONFIDENCE = 0.5


@dataclass(frozen=True)
class KeywordPattern:
    """A group of keywords sharing one weight."""

    keywords: Tuple[str, ...]
    weight: int
    language: str = "en"


TIME_SENSITIVE_PATTERNS: Sequence[KeywordPattern] = (
    KeywordPattern(
        ("exam date", "form", "registration", "admit card", "result", "latest", "announcement"),
        3,
    ),
    KeywordPattern(("aaya kya", "kab", "kya", "hogyi", "mili", "aayi"), 3, "hi"),
    KeywordPattern(
        ("when", "what time", "schedule", "deadline", "due", "urgent", "asap", "immediately"),
        2,
    ),
    KeywordPattern(("kya time", "kab tak", "kitna time", "jaldi"), 2, "hi"),
)

APP_DATA_PATTERNS: Sequence[KeywordPattern] = (
    KeywordPattern(
        ("mera", "my", "performance", "progress", "weak", "strong", "score", "analysis"), 3
    ),
    KeywordPattern(("kaise chal raha", "marks", "percentage"), 3, "hi"),
    KeywordPattern(("statistics", "analytics", "charts", "graphs", "trends"), 2),
    KeywordPattern(
        ("mera data", "study history", "past performance", "performance history"), 3, "both"
    ),
    KeywordPattern(("compare", "vs", "versus", "better", "improvement"), 2),
)

GENERAL_PATTERNS: Sequence[KeywordPattern] = (
    KeywordPattern(("help", "explain", "how", "what", "why", "where", "which"), 1),
    KeywordPattern(("samjha", "kyu", "kaise", "kahan", "kaun", "kitna"), 1, "hi"),
    KeywordPattern(("study", "learn", "concept", "theory", "practice"), 1),
    KeywordPattern(("padhna", "seekhna", "samajhna", "sikhana"), 1, "hi"),
)

URGENCY_WORDS = ("urgent", "emergency", "quick", "fast", "asap", "jaldi")

_PUNCTUATION = re.compile(r"[^\w\s]")
_WHITESPACE = re.compile(r"\s+")


@dataclass(frozen=True)
class Classification:
    """Result of classifying a single message."""

    category: QueryCategory
    confidence: float
    keywords: List[str] = field(default_factory=list)


def normalize_text(text: str) -> str:
    """Lower-case, strip punctuation, and collapse whitespace."""
    text = _PUNCTUATION.sub(" ", text.lower())
    return _WHITESPACE.sub(" ", text).strip()


def _contains_phrase(tokens: List[str], phrase: List[str]) -> bool:
    size = len(phrase)
    return any(tokens[i : i + size] == phrase for i in range(len(tokens) - size + 1))


def score_patterns(
    tokens: List[str],
    patterns: Sequence[KeywordPattern],
    matched: Optional[List[str]] = None,
) -> float:
    """Score tokenized text against a pattern set.

    A keyword scores its full weight when it appears as a whole word or
    contiguous phrase. A multi-word keyword whose words all appear, but not
    as one phrase, scores PARTIAL_MATCH_FACTOR of its weight.
    """
    score = 0.0
    token_set = set(tokens)
    for pattern in patterns:
        for keyword in pattern.keywords:
            words = keyword.split()
            if _contains_phrase(tokens, words):
                score += pattern.weight
            elif len(words) > 1 and all(w in token_set for w in words):
                score += pattern.weight * PARTIAL_MATCH_FACTOR
            else:
                continue
            if matched is not None and keyword not in matched:
                matched.append(keyword)
    return score


def context_adjustments(message: str, chat_type: Optional[str]) -> Tuple[float, float, float]:
    """Return additive (time, app_data, general) adjustments."""
    time_adj = 0.0
    app_adj = 0.0
    general_adj = 0.0

    if chat_type == "study_assistant":
        app_adj += 0.5
    elif chat_type == "general":
        general_adj += 0.3

    if len(message) > 100:
        app_adj += 0.3

    if "?" in message or "？" in message:
        time_adj += 0.2
        general_adj += 0.3

    lowered = message.lower()
    if any(word in lowered for word in URGENCY_WORDS):
        time_adj += 0.5

    return time_adj, app_adj, general_adj


def classify(message: str, chat_type: Optional[str] = None) -> Classification:
    """Classify a message into a query category.

    Ties favor GENERAL, then TIME_SENSITIVE over APP_DATA. Confidence is the
    winning share of the total score, capped at MAX_CONFIDENCE; a message
    with no signal at all is GENERAL at NEUTRAL_CONFIDENCE.
    """
    tokens = normalize_text(message).split()
    keywords: List[str] = []

    time_adj, app_adj, general_adj = context_adjustments(message, chat_type)
    time_score = score_patterns(tokens, TIME_SENSITIVE_PATTERNS, keywords) + time_adj
    app_score = score_patterns(tokens, APP_DATA_PATTERNS, keywords) + app_adj
    general_score = score_patterns(tokens, GENERAL_PATTERNS, keywords) + general_adj

    total = time_score + app_score + general_score
    if total <= 0:
        return Classification(QueryCategory.GENERAL, NEUTRAL_CONFIDENCE, keywords)

    if general_score >= time_score and general_score >= app_score:
        category, winning = QueryCategory.GENERAL, general_score
    elif time_score >= app_score:
        category, winning = QueryCategory.TIME_SENSITIVE, time_score
    else:
        category, winning = QueryCategory.APP_DATA, app_score

    confidence = min(max(winning / total, 0.0), MAX_CONFIDENCE)
    return Classification(category, confidence, keywords)
