"""Progressive deepening models."""

from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field


class DeepeningLevel(BaseModel):
    model_config = ConfigDict(frozen=True)

    level: int = Field(ge=1, le=4)
    name: str
    description: str
    focus_areas: tuple[str, ...]


class DeepeningRecord(BaseModel):
    """One finished analysis of a property. Records are append-only."""

    model_config = ConfigDict(frozen=True)

    fingerprint: str
    level: int = Field(ge=1, le=4)
    session_id: str
    recorded_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    quality_score: int = Field(ge=0, le=100)
    level_label: str = ""
    data_gaps: tuple[str, ...] = ()


class DeepeningFeedback(BaseModel):
    """A user's overall rating of an analysis, on a 1-5 scale."""

    model_config = ConfigDict(frozen=True, allow_inf_nan=False)

    fingerprint: str
    rating: float = Field(ge=1, le=5)
    session_id: str | None = None
    comments: str = ""
    recorded_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class DeepeningStrategy(BaseModel):
    model_config = ConfigDict(frozen=True)

    fingerprint: str
    current_level: int = Field(ge=1, le=4)
    next_level: int = Field(ge=1, le=4)
    focus_areas: tuple[str, ...] = ()
    additional_queries: tuple[str, ...] = ()
    expected_improvements: tuple[str, ...] = ()

    @property
    def is_upgrade(self) -> bool:
        return self.next_level > self.current_level


class PropertyAnalysisCount(BaseModel):
    model_config = ConfigDict(frozen=True)

    fingerprint: str
    analyses: int
    current_level: int


class DeepeningStats(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_properties: int = 0
    average_analyses_per_property: float = 0.0
    most_analyzed: tuple[PropertyAnalysisCount, ...] = ()
