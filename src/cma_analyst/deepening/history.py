"""Append-only storage for deepening records."""

from __future__ import annotations

import asyncio
import json
from collections import defaultdict
from datetime import datetime
from pathlib import Path
from typing import Final, Protocol

import aiosqlite

from cma_analyst.logging import get_logger
from cma_analyst.models import (
    DeepeningFeedback,
    DeepeningRecord,
    DeepeningStats,
    PropertyAnalysisCount,
)

logger = get_logger(__name__)

# Number of properties listed in the "most analysed" stats
TOP_PROPERTIES: Final = 5


class DeepeningHistoryStore(Protocol):
    async def append(self, record: DeepeningRecord) -> None: ...

    async def records_for(self, fingerprint: str) -> list[DeepeningRecord]: ...

    async def latest(self, fingerprint: str) -> DeepeningRecord | None: ...

    async def append_feedback(self, feedback: DeepeningFeedback) -> None: ...

    async def latest_feedback(self, fingerprint: str) -> DeepeningFeedback | None: ...

    async def stats(self) -> DeepeningStats: ...

    async def close(self) -> None: ...


def _build_stats(counts: dict[str, tuple[int, int]]) -> DeepeningStats:
    """Stats from {fingerprint: (analyses, current level)}."""
    if not counts:
        return DeepeningStats()
    total = sum(analyses for analyses, _ in counts.values())
    ranked = sorted(counts.items(), key=lambda item: (-item[1][0], item[0]))[:TOP_PROPERTIES]
    return DeepeningStats(
        total_properties=len(counts),
        average_analyses_per_property=round(total / len(counts), 2),
        most_analyzed=tuple(
            PropertyAnalysisCount(fingerprint=fp, analyses=analyses, current_level=level)
            for fp, (analyses, level) in ranked
        ),
    )


class InMemoryDeepeningHistory:
    """Process-local history, lost on restart."""

    def __init__(self) -> None:
        self._records: dict[str, list[DeepeningRecord]] = defaultdict(list)
        self._feedback: dict[str, list[DeepeningFeedback]] = defaultdict(list)
        self._lock = asyncio.Lock()

    async def append(self, record: DeepeningRecord) -> None:
        async with self._lock:
            self._records[record.fingerprint].append(record)

    async def records_for(self, fingerprint: str) -> list[DeepeningRecord]:
        return list(self._records.get(fingerprint, ()))

    async def latest(self, fingerprint: str) -> DeepeningRecord | None:
        records = self._records.get(fingerprint)
        return records[-1] if records else None

    async def append_feedback(self, feedback: DeepeningFeedback) -> None:
        async with self._lock:
            self._feedback[feedback.fingerprint].append(feedback)

    async def latest_feedback(self, fingerprint: str) -> DeepeningFeedback | None:
        feedback = self._feedback.get(fingerprint)
        return feedback[-1] if feedback else None

    async def stats(self) -> DeepeningStats:
        return _build_stats(
            {fp: (len(records), records[-1].level) for fp, records in self._records.items() if records}
        )

    async def close(self) -> None:
        return None


class SQLiteDeepeningHistory:
    """SQLite-backed history in the ``deepening_records`` table."""

    def __init__(self, db_path: str) -> None:
        """Initialize storage with database path.

        Args:
            db_path: Path to SQLite database file, or ":memory:" for in-memory.
        """
        self.db_path = db_path
        self._conn: aiosqlite.Connection | None = None
        self._ensure_directory()

    def _ensure_directory(self) -> None:
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

    async def _get_connection(self) -> aiosqlite.Connection:
        """Get or create the database connection."""
        if self._conn is None:
            self._conn = await aiosqlite.connect(self.db_path)
            self._conn.row_factory = aiosqlite.Row
            await self._conn.execute("PRAGMA journal_mode=WAL")
            await self._conn.execute("PRAGMA busy_timeout=5000")
        return self._conn

    async def initialize(self) -> None:
        """Initialize the database schema."""
        conn = await self._get_connection()
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS deepening_records (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                fingerprint TEXT NOT NULL,
                level INTEGER NOT NULL,
                session_id TEXT NOT NULL,
                recorded_at TEXT NOT NULL,
                quality_score INTEGER NOT NULL,
                level_label TEXT NOT NULL DEFAULT '',
                data_gaps TEXT NOT NULL DEFAULT '[]'
            )
        """)
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_deepening_fingerprint
            ON deepening_records(fingerprint, id)
        """)
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS deepening_feedback (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                fingerprint TEXT NOT NULL,
                rating REAL NOT NULL,
                session_id TEXT,
                comments TEXT NOT NULL DEFAULT '',
                recorded_at TEXT NOT NULL
            )
        """)
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_deepening_feedback_fingerprint
            ON deepening_feedback(fingerprint, id)
        """)
        await conn.commit()

    async def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            await self._conn.close()
            self._conn = None

    async def append(self, record: DeepeningRecord) -> None:
        conn = await self._get_connection()
        await conn.execute(
            """
            INSERT INTO deepening_records
                (fingerprint, level, session_id, recorded_at, quality_score, level_label, data_gaps)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                record.fingerprint,
                record.level,
                record.session_id,
                record.recorded_at.isoformat(),
                record.quality_score,
                record.level_label,
                json.dumps(list(record.data_gaps)),
            ),
        )
        await conn.commit()
        logger.debug(
            "deepening_record_saved",
            fingerprint=record.fingerprint[:12],
            level=record.level,
        )

    async def records_for(self, fingerprint: str) -> list[DeepeningRecord]:
        conn = await self._get_connection()
        cursor = await conn.execute(
            "SELECT * FROM deepening_records WHERE fingerprint = ? ORDER BY id",
            (fingerprint,),
        )
        rows = await cursor.fetchall()
        return [_row_to_record(row) for row in rows]

    async def latest(self, fingerprint: str) -> DeepeningRecord | None:
        conn = await self._get_connection()
        cursor = await conn.execute(
            "SELECT * FROM deepening_records WHERE fingerprint = ? ORDER BY id DESC LIMIT 1",
            (fingerprint,),
        )
        row = await cursor.fetchone()
        return _row_to_record(row) if row else None

    async def append_feedback(self, feedback: DeepeningFeedback) -> None:
        conn = await self._get_connection()
        await conn.execute(
            """
            INSERT INTO deepening_feedback (fingerprint, rating, session_id, comments, recorded_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                feedback.fingerprint,
                feedback.rating,
                feedback.session_id,
                feedback.comments,
                feedback.recorded_at.isoformat(),
            ),
        )
        await conn.commit()

    async def latest_feedback(self, fingerprint: str) -> DeepeningFeedback | None:
        conn = await self._get_connection()
        cursor = await conn.execute(
            "SELECT * FROM deepening_feedback WHERE fingerprint = ? ORDER BY id DESC LIMIT 1",
            (fingerprint,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return DeepeningFeedback(
            fingerprint=row["fingerprint"],
            rating=row["rating"],
            session_id=row["session_id"],
            comments=row["comments"],
            recorded_at=datetime.fromisoformat(row["recorded_at"]),
        )

    async def stats(self) -> DeepeningStats:
        conn = await self._get_connection()
        cursor = await conn.execute("""
            SELECT fingerprint, COUNT(*) AS analyses, MAX(level) AS current_level
            FROM deepening_records
            GROUP BY fingerprint
        """)
        rows = await cursor.fetchall()
        return _build_stats(
            {row["fingerprint"]: (row["analyses"], row["current_level"]) for row in rows}
        )


def _row_to_record(row: aiosqlite.Row) -> DeepeningRecord:
    return DeepeningRecord(
        fingerprint=row["fingerprint"],
        level=row["level"],
        session_id=row["session_id"],
        recorded_at=datetime.fromisoformat(row["recorded_at"]),
        quality_score=row["quality_score"],
        level_label=row["level_label"],
        data_gaps=tuple(json.loads(row["data_gaps"])),
    )
