import datetime as dt
from zoneinfo import ZoneInfo

import pytest

from sessiongate.temporal import (
    TemporalRange,
    extract_temporal_context,
    format_temporal_range,
    has_temporal_keywords,
    parse_temporal_query,
)

UTC = dt.timezone.utc
# Thursday
NOW = dt.datetime(2025, 10, 2, 14, 30, tzinfo=UTC)


def _day_start(year, month, day, tz=UTC):
    return dt.datetime(year, month, day, tzinfo=tz)


def _day_end(year, month, day, tz=UTC):
    return dt.datetime(year, month, day, 23, 59, 59, 999999, tzinfo=tz)


class TestPatterns:
    def test_yesterday(self):
        result = parse_temporal_query("What did we do yesterday?", NOW)
        assert result == TemporalRange(_day_start(2025, 10, 1), _day_end(2025, 10, 1), "yesterday", 1.0)

    def test_last_night_is_yesterday(self):
        assert parse_temporal_query("what was that thing last night", NOW).description == "yesterday"

    def test_today(self):
        result = parse_temporal_query("anything today?", NOW)
        assert (result.start_date, result.end_date, result.confidence) == (_day_start(2025, 10, 2), NOW, 1.0)

    def test_this_morning_is_today(self):
        assert parse_temporal_query("notes from this morning", NOW).description == "today"

    def test_last_week_is_previous_monday_to_sunday(self):
        result = parse_temporal_query("summarize last week", NOW)
        assert result.start_date == _day_start(2025, 9, 22)
        assert result.end_date == _day_end(2025, 9, 28)
        assert result.confidence == 0.9

    def test_this_week_starts_monday(self):
        result = parse_temporal_query("this week so far", NOW)
        assert (result.start_date, result.end_date) == (_day_start(2025, 9, 29), NOW)

    def test_last_month(self):
        result = parse_temporal_query("what happened last month", NOW)
        assert result.start_date == _day_start(2025, 9, 1)
        assert result.end_date == _day_end(2025, 9, 30)
        assert result.confidence == 0.8

    def test_last_month_across_year_boundary(self):
        now = dt.datetime(2026, 1, 15, 9, 0, tzinfo=UTC)
        result = parse_temporal_query("last month", now)
        assert (result.start_date, result.end_date) == (_day_start(2025, 12, 1), _day_end(2025, 12, 31))

    def test_this_month(self):
        result = parse_temporal_query("this month", NOW)
        assert (result.start_date, result.end_date) == (_day_start(2025, 10, 1), NOW)

    def test_recently(self):
        result = parse_temporal_query("what have we talked about recently", NOW)
        assert result.start_date == NOW - dt.timedelta(days=7)
        assert result.end_date == NOW
        assert result.confidence == 0.7
        assert result.description == "recently (last 7 days)"

    def test_past_few_days_is_recently(self):
        assert parse_temporal_query("in the past few days", NOW).confidence == 0.7

    def test_last_n_days(self):
        result = parse_temporal_query("last 3 days", NOW)
        assert result == TemporalRange(NOW - dt.timedelta(days=3), NOW, "last 3 days", 1.0)

    def test_n_days_ago(self):
        result = parse_temporal_query("5 days ago we talked about taxes", NOW)
        assert result == TemporalRange(_day_start(2025, 9, 27), _day_end(2025, 9, 27), "5 days ago", 1.0)

    def test_last_n_weeks(self):
        result = parse_temporal_query("past 2 weeks", NOW)
        assert result.start_date == NOW - dt.timedelta(days=14)
        assert result.confidence == 0.9

    def test_case_insensitive(self):
        assert parse_temporal_query("YESTERDAY", NOW).description == "yesterday"

    @pytest.mark.parametrize("query", ["", "hello there", "the weekday schedule", "yesterdays"])
    def test_non_temporal(self, query):
        assert parse_temporal_query(query, NOW) is None
        assert not has_temporal_keywords(query, NOW)


class TestPrecedence:
    def test_numeric_pattern_beats_generic(self):
        assert parse_temporal_query("past 3 days, recently", NOW).description == "last 3 days"

    def test_yesterday_beats_last_week(self):
        assert parse_temporal_query("last week and yesterday", NOW).description == "yesterday"

    def test_past_n_days_is_not_recently(self):
        result = parse_temporal_query("the past 10 days", NOW)
        assert result.description == "last 10 days"
        assert result.confidence == 1.0


class TestDeterminism:
    def test_same_input_same_output(self):
        assert parse_temporal_query("last week", NOW) == parse_temporal_query("last week", NOW)

    def test_boundaries_follow_now_timezone(self):
        tz = ZoneInfo("America/New_York")
        now = dt.datetime(2025, 10, 2, 1, 0, tzinfo=tz)
        result = parse_temporal_query("yesterday", now)
        assert result.start_date == _day_start(2025, 10, 1, tz)
        assert result.end_date == _day_end(2025, 10, 1, tz)

    def test_start_never_after_end(self):
        for query in ("today", "yesterday", "last week", "this week", "last month", "this month",
                      "recently", "last 0 days", "0 days ago", "last 1 weeks"):
            result = parse_temporal_query(query, NOW)
            assert result.start_date <= result.end_date


class TestHelpers:
    def test_extract_temporal_context(self):
        temporal, cleaned = extract_temporal_context("What did we do yesterday?", NOW)
        assert temporal.description == "yesterday"
        assert cleaned == "What did we do?"

    def test_extract_without_temporal(self):
        assert extract_temporal_context("just chat", NOW) == (None, "just chat")

    def test_format_single_day(self):
        assert format_temporal_range(parse_temporal_query("yesterday", NOW)) == "yesterday (Oct 1, 2025)"

    def test_format_span(self):
        assert (
            format_temporal_range(parse_temporal_query("last week", NOW))
            == "last week (Sep 22, 2025 - Sep 28, 2025)"
        )

    def test_range_validation(self):
        with pytest.raises(ValueError):
            TemporalRange(NOW, NOW - dt.timedelta(seconds=1), "backwards", 1.0)
        with pytest.raises(ValueError):
            TemporalRange(NOW, NOW, "too sure", 1.5)

    def test_is_actionable(self):
        assert parse_temporal_query("recently", NOW).is_actionable()
        assert not parse_temporal_query("recently", NOW).is_actionable(0.8)
