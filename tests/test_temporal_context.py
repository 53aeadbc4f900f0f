import datetime as dt

import pytest

from sessiongate.services.temporal_context import NO_HISTORY_MESSAGE, build_temporal_prompt
from sessiongate.storage.base import SessionFilter
from tests.utils import OWNER_EMAIL

UTC = dt.timezone.utc
NOW = dt.datetime(2025, 10, 2, 14, 30, tzinfo=UTC)
YESTERDAY_START = dt.datetime(2025, 10, 1, tzinfo=UTC)
YESTERDAY_END = dt.datetime(2025, 10, 1, 23, 59, 59, 999999, tzinfo=UTC)


async def _create_at(store, monkeypatch, when: dt.datetime, first_message: str):
    monkeypatch.setattr("sessiongate.storage.base.utcnow", lambda: when)
    return await store.create_session(OWNER_EMAIL, first_message)


class RecordingLister:
    def __init__(self, store) -> None:
        self.store = store
        self.calls = []

    async def __call__(self, start, end, limit):
        self.calls.append((start, end, limit))
        return await self.store.list_sessions(
            OWNER_EMAIL, SessionFilter(start_date=start, end_date=end, limit=limit)
        )


@pytest.mark.asyncio
async def test_yesterday_sessions_are_summarized(store, monkeypatch):
    await _create_at(store, monkeypatch, dt.datetime(2025, 10, 1, 9, 0, tzinfo=UTC), "Plan the garden")
    await _create_at(store, monkeypatch, dt.datetime(2025, 10, 1, 20, 15, tzinfo=UTC), "Budget review")
    await _create_at(store, monkeypatch, dt.datetime(2025, 9, 27, 12, 0, tzinfo=UTC), "Old topic")
    lister = RecordingLister(store)

    composed = await build_temporal_prompt(
        "What did we do yesterday?", list_sessions=lister, now=NOW, limit=20
    )

    assert lister.calls == [(YESTERDAY_START, YESTERDAY_END, 20)]
    assert not composed.no_history
    assert {s.title for s in composed.sessions} == {"Plan the garden", "Budget review"}
    assert "Plan the garden" in composed.prompt
    assert "Budget review" in composed.prompt
    assert "Old topic" not in composed.prompt
    assert composed.prompt.rstrip().endswith("when relevant.")
    assert "Question: What did we do yesterday?" in composed.prompt


@pytest.mark.asyncio
async def test_no_sessions_in_range_gives_fixed_reply(store, monkeypatch):
    await _create_at(store, monkeypatch, dt.datetime(2025, 9, 20, 12, 0, tzinfo=UTC), "Long ago")
    lister = RecordingLister(store)

    composed = await build_temporal_prompt("What did we do yesterday?", list_sessions=lister, now=NOW)

    assert composed.no_history
    assert composed.sessions == []
    assert composed.reply == NO_HISTORY_MESSAGE.format(period="yesterday (Oct 1, 2025)")
    assert len(lister.calls) == 1


@pytest.mark.asyncio
async def test_non_temporal_query_skips_the_store():
    async def _fail(*_args):
        raise AssertionError("list_sessions must not be called")

    composed = await build_temporal_prompt("Tell me a joke", list_sessions=_fail, now=NOW)
    assert composed.prompt == "Tell me a joke"
    assert composed.temporal is None
    assert not composed.no_history


@pytest.mark.asyncio
async def test_low_confidence_range_is_ignored():
    async def _fail(*_args):
        raise AssertionError("list_sessions must not be called")

    composed = await build_temporal_prompt(
        "what did we discuss recently", list_sessions=_fail, now=NOW, min_confidence=0.8
    )
    assert composed.prompt == "what did we discuss recently"
    assert composed.temporal.confidence == 0.7
