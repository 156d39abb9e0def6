"""Progressive deepening of repeat analyses."""

from cma_analyst.deepening.engine import (
    LEVELS,
    MAX_LEVEL,
    ProgressiveDeepeningEngine,
    identify_data_gaps,
)
from cma_analyst.deepening.fingerprint import property_fingerprint
from cma_analyst.deepening.history import (
    DeepeningHistoryStore,
    InMemoryDeepeningHistory,
    SQLiteDeepeningHistory,
)

__all__ = [
    "LEVELS",
    "MAX_LEVEL",
    "DeepeningHistoryStore",
    "InMemoryDeepeningHistory",
    "ProgressiveDeepeningEngine",
    "SQLiteDeepeningHistory",
    "identify_data_gaps",
    "property_fingerprint",
]
