"""Tests for deepening history storage."""

from collections.abc import AsyncGenerator, Callable
from datetime import datetime, timedelta
from pathlib import Path

import pytest
import pytest_asyncio

from cma_analyst.deepening import InMemoryDeepeningHistory, SQLiteDeepeningHistory
from cma_analyst.models import DeepeningFeedback, DeepeningRecord


@pytest_asyncio.fixture
async def sqlite_history() -> AsyncGenerator[SQLiteDeepeningHistory, None]:
    history = SQLiteDeepeningHistory(":memory:")
    await history.initialize()
    yield history
    await history.close()


@pytest.fixture
def make_record(fixed_clock: Callable[[], datetime]) -> Callable[..., DeepeningRecord]:
    def _make(fingerprint: str = "a" * 64, level: int = 1, **overrides: object) -> DeepeningRecord:
        fields: dict[str, object] = {
            "fingerprint": fingerprint,
            "level": level,
            "session_id": f"session-{level}",
            "recorded_at": fixed_clock(),
            "quality_score": 86,
        }
        fields.update(overrides)
        return DeepeningRecord.model_validate(fields)

    return _make


class TestSQLiteDeepeningHistory:
    async def test_latest_is_none_for_unknown_property(
        self, sqlite_history: SQLiteDeepeningHistory
    ) -> None:
        assert await sqlite_history.latest("f" * 64) is None
        assert await sqlite_history.records_for("f" * 64) == []

    async def test_round_trips_every_field(
        self,
        sqlite_history: SQLiteDeepeningHistory,
        make_record: Callable[..., DeepeningRecord],
    ) -> None:
        record = make_record(level_label="level_1", data_gaps=("market_data", "amenities"))
        await sqlite_history.append(record)

        assert await sqlite_history.latest(record.fingerprint) == record

    async def test_records_kept_in_insertion_order(
        self,
        sqlite_history: SQLiteDeepeningHistory,
        make_record: Callable[..., DeepeningRecord],
        fixed_clock: Callable[[], datetime],
    ) -> None:
        first = make_record(level=1)
        second = make_record(level=2, recorded_at=fixed_clock() + timedelta(days=2))
        await sqlite_history.append(first)
        await sqlite_history.append(second)

        records = await sqlite_history.records_for(first.fingerprint)

        assert [r.level for r in records] == [1, 2]
        assert await sqlite_history.latest(first.fingerprint) == second

    async def test_feedback_round_trip(
        self,
        sqlite_history: SQLiteDeepeningHistory,
        fixed_clock: Callable[[], datetime],
    ) -> None:
        older = DeepeningFeedback(fingerprint="a" * 64, rating=2, recorded_at=fixed_clock())
        newer = DeepeningFeedback(
            fingerprint="a" * 64,
            rating=4.5,
            session_id="session-1",
            comments="Much better comparables",
            recorded_at=fixed_clock() + timedelta(hours=1),
        )
        await sqlite_history.append_feedback(older)
        await sqlite_history.append_feedback(newer)

        assert await sqlite_history.latest_feedback("a" * 64) == newer
        assert await sqlite_history.latest_feedback("b" * 64) is None

    async def test_stats(
        self,
        sqlite_history: SQLiteDeepeningHistory,
        make_record: Callable[..., DeepeningRecord],
    ) -> None:
        await sqlite_history.append(make_record("a" * 64, level=1))
        await sqlite_history.append(make_record("a" * 64, level=2))
        await sqlite_history.append(make_record("a" * 64, level=2))
        await sqlite_history.append(make_record("b" * 64, level=1))

        stats = await sqlite_history.stats()

        assert stats.total_properties == 2
        assert stats.average_analyses_per_property == 2.0
        top = stats.most_analyzed[0]
        assert (top.fingerprint, top.analyses, top.current_level) == ("a" * 64, 3, 2)

    async def test_empty_stats(self, sqlite_history: SQLiteDeepeningHistory) -> None:
        stats = await sqlite_history.stats()
        assert stats.total_properties == 0
        assert stats.most_analyzed == ()

    async def test_persists_across_connections(
        self, tmp_path: Path, make_record: Callable[..., DeepeningRecord]
    ) -> None:
        db_path = str(tmp_path / "nested" / "deepening.db")
        record = make_record()

        history = SQLiteDeepeningHistory(db_path)
        await history.initialize()
        await history.append(record)
        await history.close()

        reopened = SQLiteDeepeningHistory(db_path)
        await reopened.initialize()
        try:
            assert await reopened.latest(record.fingerprint) == record
        finally:
            await reopened.close()


class TestInMemoryDeepeningHistory:
    async def test_append_and_latest(self, make_record: Callable[..., DeepeningRecord]) -> None:
        history = InMemoryDeepeningHistory()
        await history.append(make_record(level=1))
        await history.append(make_record(level=3))

        latest = await history.latest("a" * 64)

        assert latest is not None
        assert latest.level == 3
        assert len(await history.records_for("a" * 64)) == 2

    async def test_records_for_returns_copy(
        self, make_record: Callable[..., DeepeningRecord]
    ) -> None:
        history = InMemoryDeepeningHistory()
        await history.append(make_record())

        (await history.records_for("a" * 64)).clear()

        assert len(await history.records_for("a" * 64)) == 1

    async def test_top_properties_limited_to_five(
        self, make_record: Callable[..., DeepeningRecord]
    ) -> None:
        history = InMemoryDeepeningHistory()
        for i in range(7):
            await history.append(make_record(str(i) * 64))

        stats = await history.stats()

        assert stats.total_properties == 7
        assert len(stats.most_analyzed) == 5
