"""Analysis session state machine."""

import uuid
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, Final

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator

from cma_analyst.errors import SessionStateError
from cma_analyst.models.report import CMAReport

TOTAL_STEPS: Final = 7


def _now() -> datetime:
    return datetime.now(UTC)


class SessionStatus(StrEnum):
    """Lifecycle of an analysis session.

    PENDING -> ANALYZING -> {COMPLETED | DEGRADED | ERROR}. Terminal states are final.
    """

    PENDING = "pending"
    ANALYZING = "analyzing"
    COMPLETED = "completed"
    DEGRADED = "degraded"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL


_TERMINAL: Final = frozenset({SessionStatus.COMPLETED, SessionStatus.DEGRADED, SessionStatus.ERROR})


class StepStatus(StrEnum):
    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"


class StepRecord(BaseModel):
    step_number: int = Field(ge=1, le=TOTAL_STEPS)
    name: str
    status: StepStatus = StepStatus.STARTED
    started_at: datetime = Field(default_factory=_now)
    finished_at: datetime | None = None
    details: dict[str, Any] = Field(default_factory=dict)
    error: str | None = None


class AnalysisSession(BaseModel):
    """Progress and outcome of one analysis run.

    Sessions are single-shot: once terminal, no further transitions are allowed.
    Only the orchestrator mutates a session; readers get copies from the store.
    """

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    status: SessionStatus = SessionStatus.PENDING
    completed_steps: int = Field(default=0, ge=0, le=TOTAL_STEPS)
    total_steps: int = TOTAL_STEPS
    current_step: int = Field(default=0, ge=0, le=TOTAL_STEPS)
    critical_error_count: int = Field(default=0, ge=0)
    steps: list[StepRecord] = Field(default_factory=list)
    report: CMAReport | None = None
    error_message: str | None = None
    suggestion: str | None = None
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)
    finished_at: datetime | None = None

    @model_validator(mode="after")
    def check_invariants(self) -> "AnalysisSession":
        if self.completed_steps > self.total_steps:
            raise ValueError("completed_steps cannot exceed total_steps")
        if self.report is not None and not self.status.is_terminal:
            raise ValueError("report is only attached to a finished session")
        return self

    @computed_field  # type: ignore[prop-decorator]
    @property
    def quality_score(self) -> int:
        return round(self.completed_steps / self.total_steps * 100)

    def touch(self) -> None:
        self.updated_at = _now()

    def begin(self) -> None:
        if self.status is not SessionStatus.PENDING:
            raise SessionStateError(self.id, self.status)
        self.status = SessionStatus.ANALYZING
        self.touch()

    def start_step(self, step_number: int, name: str) -> StepRecord:
        self._require_running()
        record = StepRecord(step_number=step_number, name=name)
        self.steps.append(record)
        self.current_step = step_number
        self.touch()
        return record

    def complete_step(self, record: StepRecord, details: dict[str, Any] | None = None) -> None:
        self._require_running()
        record.status = StepStatus.COMPLETED
        record.finished_at = _now()
        if details:
            record.details.update(details)
        self.completed_steps = min(self.completed_steps + 1, self.total_steps)
        self.touch()

    def fail_step(self, record: StepRecord, error: str) -> None:
        self._require_running()
        record.status = StepStatus.FAILED
        record.finished_at = _now()
        record.error = error
        self.touch()

    def record_critical_error(self) -> None:
        self.critical_error_count += 1
        self.touch()

    def finish(self, report: CMAReport) -> None:
        """Attach the report and move to COMPLETED or DEGRADED."""
        self._require_running()
        if self.quality_score == 100 and self.critical_error_count == 0:
            self.status = SessionStatus.COMPLETED
        else:
            self.status = SessionStatus.DEGRADED
        self.report = report
        self.finished_at = _now()
        self.touch()

    def fail(self, message: str, suggestion: str | None = None) -> None:
        if self.status.is_terminal:
            raise SessionStateError(self.id, self.status)
        self.status = SessionStatus.ERROR
        self.error_message = message
        self.suggestion = suggestion
        self.finished_at = _now()
        self.touch()

    def progress(self) -> dict[str, Any]:
        return {
            "session_id": self.id,
            "completed_steps": self.completed_steps,
            "total_steps": self.total_steps,
            "current_step": self.current_step,
        }

    def _require_running(self) -> None:
        if self.status is not SessionStatus.ANALYZING:
            raise SessionStateError(self.id, self.status)


class AnalysisResult(BaseModel):
    """What a caller gets back from a finished analysis."""

    model_config = ConfigDict(frozen=True)

    session_id: str
    status: SessionStatus
    report: CMAReport
    completed_steps: int
    total_steps: int = TOTAL_STEPS
    quality_score: int = Field(ge=0, le=100)
    critical_errors: int = Field(default=0, ge=0)
