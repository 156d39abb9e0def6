"""Public entry point wiring settings, providers, stores and the pipeline."""

import asyncio
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from cma_analyst.config import Settings
from cma_analyst.deepening import (
    DeepeningHistoryStore,
    ProgressiveDeepeningEngine,
    SQLiteDeepeningHistory,
)
from cma_analyst.errors import CMAAnalystError, SessionNotFoundError
from cma_analyst.logging import get_logger
from cma_analyst.models import (
    AnalysisResult,
    AnalysisSession,
    DeepeningFeedback,
    DeepeningStats,
    PropertyDescriptor,
)
from cma_analyst.pipeline import AnalysisPipeline
from cma_analyst.providers import ClaudePropertyAI, Providers, TavilySearchClient
from cma_analyst.sessions import InMemorySessionStore, SessionStore

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def build_providers(settings: Settings) -> Providers:
    """Providers backed by whichever API keys are configured."""
    providers = Providers()
    if settings.ai_enabled:
        ai = ClaudePropertyAI(
            settings.anthropic_api_key.get_secret_value(),
            model=settings.anthropic_model,
        )
        providers.analyzer = ai
        providers.summarizer = ai
    if settings.search_enabled:
        providers.search = TavilySearchClient(settings.tavily_api_key.get_secret_value())
    logger.info(
        "providers_configured",
        ai_enabled=settings.ai_enabled,
        search_enabled=settings.search_enabled,
    )
    return providers


class AnalysisService:
    """Runs analyses and answers status queries.

    Call ``initialize()`` before use and ``close()`` on shutdown; the latter
    waits for background work (queued analyses, deepening records) first.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        providers: Providers | None = None,
        sessions: SessionStore | None = None,
        history: DeepeningHistoryStore | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.settings = settings if settings is not None else Settings()
        self.providers = providers if providers is not None else build_providers(self.settings)
        self.sessions: SessionStore = (
            sessions
            if sessions is not None
            else InMemorySessionStore(
                ttl_seconds=self.settings.session_ttl_seconds,
                max_entries=self.settings.session_max_entries,
            )
        )
        self.history: DeepeningHistoryStore = (
            history
            if history is not None
            else SQLiteDeepeningHistory(self.settings.deepening_database_path)
        )
        self.deepening = ProgressiveDeepeningEngine(self.history, clock=clock)
        self.pipeline = AnalysisPipeline(
            self.providers,
            self.sessions,
            deepening=self.deepening,
            step_timeout=self.settings.step_timeout_seconds,
            enable_bonus_research=self.settings.enable_bonus_research,
            clock=clock,
        )
        self._queued: set[asyncio.Task[None]] = set()

    async def initialize(self) -> None:
        if isinstance(self.history, SQLiteDeepeningHistory):
            await self.history.initialize()

    async def close(self) -> None:
        """Drain background work and release clients and the history store."""
        if self._queued:
            await asyncio.gather(*list(self._queued), return_exceptions=True)
        await self.pipeline.drain()
        await self.history.close()

        closed: set[int] = set()
        for provider in vars(self.providers).values():
            close = getattr(provider, "close", None)
            if close is None or id(provider) in closed:
                continue
            closed.add(id(provider))
            await close()

    async def analyze(
        self,
        descriptor: PropertyDescriptor,
        *,
        session_id: str | None = None,
        cancel: asyncio.Event | None = None,
    ) -> AnalysisResult:
        """Run the full analysis and return the report with its quality metadata."""
        report, meta = await self.pipeline.run_analysis(
            descriptor, session_id=session_id, cancel=cancel
        )
        return AnalysisResult(
            session_id=meta.session_id,
            status=meta.status,
            report=report,
            completed_steps=meta.completed_steps,
            total_steps=meta.total_steps,
            quality_score=meta.quality_score,
            critical_errors=meta.critical_errors,
        )

    async def get_session_status(self, session_id: str) -> AnalysisSession:
        session = await self.sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    async def create_session(self, descriptor: PropertyDescriptor) -> AnalysisSession:
        """Validate the descriptor and store a PENDING session for it."""
        AnalysisPipeline.validate(descriptor)
        session = AnalysisSession()
        await self.sessions.put(session)
        logger.info("session_created", session_id=session.id)
        return session

    async def submit(self, descriptor: PropertyDescriptor) -> AnalysisSession:
        """Create a session and analyse it in the background.

        The returned session is PENDING; poll ``get_session_status`` for progress.
        """
        session = await self.create_session(descriptor)
        task = asyncio.create_task(self._run_queued(descriptor, session.id), name=session.id)
        self._queued.add(task)
        task.add_done_callback(self._queued.discard)
        return session

    async def _run_queued(self, descriptor: PropertyDescriptor, session_id: str) -> None:
        try:
            await self.analyze(descriptor, session_id=session_id)
        except CMAAnalystError as e:
            # Outcome is already recorded on the session
            logger.info("queued_analysis_ended", error=str(e), error_type=type(e).__name__)

    async def deepening_stats(self) -> DeepeningStats:
        return await self.deepening.get_analysis_stats()

    async def record_feedback(
        self,
        descriptor: PropertyDescriptor,
        rating: float,
        *,
        session_id: str | None = None,
        comments: str = "",
    ) -> DeepeningFeedback | None:
        """Rate a property's latest analysis; None if it was never analysed."""
        return await self.deepening.record_feedback(
            descriptor, rating, session_id=session_id, comments=comments
        )

    async def evict_expired_sessions(self) -> int:
        return await self.sessions.evict_expired()

    def describe(self) -> dict[str, Any]:
        return {
            "ai_enabled": self.settings.ai_enabled,
            "search_enabled": self.settings.search_enabled,
            "bonus_research": self.settings.enable_bonus_research,
            "step_timeout_seconds": self.settings.step_timeout_seconds,
        }
