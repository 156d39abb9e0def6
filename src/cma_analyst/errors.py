"""Error taxonomy for the analysis pipeline."""

from __future__ import annotations

RETRY_SUGGESTION = (
    "Please try again. If the issue persists, some external data providers "
    "may be temporarily unavailable."
)


class CMAAnalystError(Exception):
    """Base class for all errors raised by this package."""


class InputValidationError(CMAAnalystError):
    """The property descriptor is missing fields the pipeline cannot do without.

    Raised before any session is created.
    """

    def __init__(self, missing: list[str]) -> None:
        self.missing = missing
        super().__init__(
            "Missing required property information: " + ", ".join(missing)
        )


class StepError(CMAAnalystError):
    """A pipeline step failed. Non-terminal: later steps still run."""

    def __init__(self, step_number: int, step_name: str, message: str) -> None:
        self.step_number = step_number
        self.step_name = step_name
        self.message = message
        super().__init__(f"Step {step_number} ({step_name}) failed: {message}")

    @classmethod
    def from_exception(cls, step_number: int, step_name: str, exc: BaseException) -> StepError:
        if isinstance(exc, TimeoutError):
            message = "step deadline exceeded"
        else:
            message = str(exc) or type(exc).__name__
        error = cls(step_number, step_name, message)
        error.__cause__ = exc
        return error


class CriticalGeocodeFailure(CMAAnalystError):
    """Neither the full address nor the city could be resolved to coordinates."""

    def __init__(self, address: str) -> None:
        self.address = address
        super().__init__(f"Could not geocode '{address}' even at city level")


class SummaryGenerationFailure(CMAAnalystError):
    """The narrative summary provider failed; a templated summary is used instead."""


class AnalysisFailedError(CMAAnalystError):
    """An unexpected exception escaped a step boundary and ended the session."""

    def __init__(
        self, session_id: str, message: str = "Failed to generate property analysis"
    ) -> None:
        self.session_id = session_id
        self.suggestion = RETRY_SUGGESTION
        super().__init__(message)


class AnalysisCancelledError(CMAAnalystError):
    """The caller cancelled the analysis between steps."""

    def __init__(self, session_id: str, completed_steps: int) -> None:
        self.session_id = session_id
        self.completed_steps = completed_steps
        super().__init__(f"Analysis {session_id} cancelled after {completed_steps} steps")


class SessionNotFoundError(CMAAnalystError):
    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(f"Session {session_id} not found")


class SessionStateError(CMAAnalystError):
    """A session was reused after it had already started."""

    def __init__(self, session_id: str, status: str) -> None:
        self.session_id = session_id
        self.status = status
        super().__init__(f"Session {session_id} is {status} and cannot be started again")
