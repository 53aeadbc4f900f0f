"""
Natural-language time references to concrete date ranges.

    >>> parse_temporal_query("What did we do yesterday?", now)
    TemporalRange(start_date=..., end_date=..., description='yesterday', confidence=1.0)

`now` is always passed in by the caller. Day, week and month boundaries are
computed in now's timezone; weeks start on Monday.

Patterns are tried in order and the first match wins. Patterns carrying an
explicit number come first so that the generic ones ("recently") cannot
shadow them.
"""

from __future__ import annotations

import datetime as dt
import re
from dataclasses import dataclass
from typing import Callable, Optional

MIN_TEMPORAL_CONFIDENCE = 0.7

# Numbers in queries are clamped to roughly a century of lookback.
MAX_LOOKBACK_DAYS = 36500


@dataclass(frozen=True)
class TemporalRange:
    start_date: dt.datetime
    end_date: dt.datetime
    description: str
    confidence: float

    def __post_init__(self) -> None:
        if self.start_date > self.end_date:
            raise ValueError("start_date must not be after end_date")
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError("confidence must be within [0, 1]")

    def is_actionable(self, min_confidence: float = MIN_TEMPORAL_CONFIDENCE) -> bool:
        return self.confidence >= min_confidence


def start_of_day(value: dt.datetime) -> dt.datetime:
    return value.replace(hour=0, minute=0, second=0, microsecond=0)


def end_of_day(value: dt.datetime) -> dt.datetime:
    return value.replace(hour=23, minute=59, second=59, microsecond=999999)


def _days(match: re.Match) -> int:
    return min(int(match.group(1)), MAX_LOOKBACK_DAYS)


def _yesterday(now: dt.datetime, match: re.Match) -> TemporalRange:
    day = now - dt.timedelta(days=1)
    return TemporalRange(start_of_day(day), end_of_day(day), "yesterday", 1.0)


def _today(now: dt.datetime, match: re.Match) -> TemporalRange:
    return TemporalRange(start_of_day(now), now, "today", 1.0)


def _last_week(now: dt.datetime, match: re.Match) -> TemporalRange:
    reference = now - dt.timedelta(days=7)
    monday = start_of_day(reference - dt.timedelta(days=reference.weekday()))
    sunday = end_of_day(monday + dt.timedelta(days=6))
    return TemporalRange(monday, sunday, "last week", 0.9)


def _this_week(now: dt.datetime, match: re.Match) -> TemporalRange:
    monday = start_of_day(now - dt.timedelta(days=now.weekday()))
    return TemporalRange(monday, now, "this week", 1.0)


def _last_month(now: dt.datetime, match: re.Match) -> TemporalRange:
    first_of_this_month = start_of_day(now.replace(day=1))
    last_of_previous = end_of_day(first_of_this_month - dt.timedelta(days=1))
    first_of_previous = start_of_day(last_of_previous.replace(day=1))
    return TemporalRange(first_of_previous, last_of_previous, "last month", 0.8)


def _this_month(now: dt.datetime, match: re.Match) -> TemporalRange:
    return TemporalRange(start_of_day(now.replace(day=1)), now, "this month", 1.0)


def _recently(now: dt.datetime, match: re.Match) -> TemporalRange:
    return TemporalRange(now - dt.timedelta(days=7), now, "recently (last 7 days)", 0.7)


def _last_n_days(now: dt.datetime, match: re.Match) -> TemporalRange:
    days = _days(match)
    return TemporalRange(now - dt.timedelta(days=days), now, f"last {days} days", 1.0)


def _n_days_ago(now: dt.datetime, match: re.Match) -> TemporalRange:
    days = _days(match)
    day = now - dt.timedelta(days=days)
    return TemporalRange(start_of_day(day), end_of_day(day), f"{days} days ago", 1.0)


def _last_n_weeks(now: dt.datetime, match: re.Match) -> TemporalRange:
    weeks = min(int(match.group(1)), MAX_LOOKBACK_DAYS // 7)
    return TemporalRange(now - dt.timedelta(weeks=weeks), now, f"last {weeks} weeks", 0.9)


Handler = Callable[[dt.datetime, re.Match], TemporalRange]

TEMPORAL_PATTERNS: tuple[tuple[re.Pattern, Handler], ...] = tuple(
    (re.compile(pattern, re.IGNORECASE), handler)
    for pattern, handler in (
        (r"\b(?:last|past) (\d{1,6}) days?\b", _last_n_days),
        (r"\b(\d{1,6}) days? ago\b", _n_days_ago),
        (r"\b(?:last|past) (\d{1,6}) weeks?\b", _last_n_weeks),
        (r"\b(?:yesterday|last night)\b", _yesterday),
        (r"\b(?:today|this morning|this afternoon|this evening)\b", _today),
        (r"\blast week\b", _last_week),
        (r"\bthis week\b", _this_week),
        (r"\blast month\b", _last_month),
        (r"\bthis month\b", _this_month),
        (r"\b(?:recently|lately|past (?:few )?days?)\b", _recently),
    )
)


def parse_temporal_query(query: str, now: dt.datetime) -> Optional[TemporalRange]:
    """
    Return the range referenced by `query`, or None for a non-temporal query.
    """
    if not query:
        return None
    for pattern, handler in TEMPORAL_PATTERNS:
        match = pattern.search(query)
        if match:
            return handler(now, match)
    return None


def has_temporal_keywords(query: str, now: dt.datetime) -> bool:
    return parse_temporal_query(query, now) is not None


def extract_temporal_context(
    query: str, now: dt.datetime
) -> tuple[Optional[TemporalRange], str]:
    """
    Return the parsed range plus the query with temporal phrases removed.

        "What did we do yesterday?" -> (<yesterday>, "What did we do?")
    """
    temporal = parse_temporal_query(query, now)
    if temporal is None:
        return None, query

    cleaned = query
    for pattern, _ in TEMPORAL_PATTERNS:
        cleaned = pattern.sub("", cleaned)
    cleaned = re.sub(r"\s+", " ", cleaned).strip()
    cleaned = re.sub(r"\s+([?.!,;:])", r"\1", cleaned)
    return temporal, cleaned


def _format_date(value: dt.datetime) -> str:
    return f"{value:%b} {value.day}, {value.year}"


def format_temporal_range(temporal: TemporalRange) -> str:
    """
    Human-readable form, e.g. "yesterday (Oct 1, 2025)" or
    "last week (Sep 22, 2025 - Sep 28, 2025)".
    """
    start = _format_date(temporal.start_date)
    end = _format_date(temporal.end_date)
    if start == end:
        return f"{temporal.description} ({start})"
    return f"{temporal.description} ({start} - {end})"


__all__ = [
    "MIN_TEMPORAL_CONFIDENCE",
    "TEMPORAL_PATTERNS",
    "TemporalRange",
    "end_of_day",
    "extract_temporal_context",
    "format_temporal_range",
    "has_temporal_keywords",
    "parse_temporal_query",
    "start_of_day",
]
