"""Tests for the analysis service facade."""

from collections.abc import AsyncGenerator, Callable
from datetime import datetime
from typing import Any

import pytest
import pytest_asyncio
from pydantic import SecretStr

from cma_analyst.config import Settings
from cma_analyst.deepening import InMemoryDeepeningHistory
from cma_analyst.errors import InputValidationError, SessionNotFoundError
from cma_analyst.models import PropertyDescriptor, SessionStatus
from cma_analyst.providers import (
    ClaudePropertyAI,
    Providers,
    TavilySearchClient,
    UnconfiguredProvider,
)
from cma_analyst.service import AnalysisService, build_providers
from cma_analyst.sessions import InMemorySessionStore


@pytest_asyncio.fixture
async def make_service(
    make_providers: Callable[..., Providers],
    fixed_clock: Callable[[], datetime],
) -> AsyncGenerator[Callable[..., AnalysisService], None]:
    created: list[AnalysisService] = []

    def _make(provider: Any = None, **kwargs: Any) -> AnalysisService:
        kwargs.setdefault("providers", make_providers(provider) if provider else Providers())
        kwargs.setdefault("history", InMemoryDeepeningHistory())
        kwargs.setdefault("clock", fixed_clock)
        service = AnalysisService(Settings(), **kwargs)
        created.append(service)
        return service

    yield _make
    for service in created:
        await service.close()


class TestAnalyze:
    async def test_full_analysis(
        self,
        make_service: Callable[..., AnalysisService],
        rich_provider: Any,
        marbella_villa: PropertyDescriptor,
    ) -> None:
        service = make_service(rich_provider)
        await service.initialize()

        result = await service.analyze(marbella_villa)

        assert result.status == SessionStatus.COMPLETED
        assert result.quality_score == 100
        assert result.completed_steps == result.total_steps == 7
        assert result.report.property == marbella_villa

        session = await service.get_session_status(result.session_id)
        assert session.status == SessionStatus.COMPLETED
        assert session.report is not None

    async def test_analysis_recorded_for_deepening(
        self,
        make_service: Callable[..., AnalysisService],
        rich_provider: Any,
        marbella_villa: PropertyDescriptor,
    ) -> None:
        service = make_service(rich_provider)
        await service.analyze(marbella_villa)
        await service.pipeline.drain()

        stats = await service.deepening_stats()

        assert stats.total_properties == 1

    async def test_without_providers_degrades(
        self, make_service: Callable[..., AnalysisService], marbella_villa: PropertyDescriptor
    ) -> None:
        result = await make_service().analyze(marbella_villa)

        assert result.status == SessionStatus.DEGRADED
        assert result.critical_errors == 1
        assert result.report.valuation.estimated == 0


class TestSessions:
    async def test_unknown_session(self, make_service: Callable[..., AnalysisService]) -> None:
        with pytest.raises(SessionNotFoundError):
            await make_service().get_session_status("nope")

    async def test_create_session_validates(
        self, make_service: Callable[..., AnalysisService]
    ) -> None:
        store = InMemorySessionStore()
        service = make_service(sessions=store)

        with pytest.raises(InputValidationError) as exc_info:
            await service.create_session(PropertyDescriptor(address="Calle Sol 2"))

        assert exc_info.value.missing == ["city", "province"]
        assert len(store) == 0

    async def test_create_session_is_pending(
        self, make_service: Callable[..., AnalysisService], marbella_villa: PropertyDescriptor
    ) -> None:
        service = make_service()
        session = await service.create_session(marbella_villa)

        stored = await service.get_session_status(session.id)
        assert stored.status == SessionStatus.PENDING

    async def test_analyze_into_created_session(
        self,
        make_service: Callable[..., AnalysisService],
        rich_provider: Any,
        marbella_villa: PropertyDescriptor,
    ) -> None:
        service = make_service(rich_provider)
        session = await service.create_session(marbella_villa)

        result = await service.analyze(marbella_villa, session_id=session.id)

        assert result.session_id == session.id

    async def test_submit_runs_in_background(
        self,
        make_service: Callable[..., AnalysisService],
        rich_provider: Any,
        marbella_villa: PropertyDescriptor,
    ) -> None:
        service = make_service(rich_provider)

        session = await service.submit(marbella_villa)
        assert session.status == SessionStatus.PENDING

        await service.close()

        finished = await service.get_session_status(session.id)
        assert finished.status == SessionStatus.COMPLETED
        assert finished.quality_score == 100

    async def test_evict_expired_sessions(
        self, make_service: Callable[..., AnalysisService], marbella_villa: PropertyDescriptor
    ) -> None:
        now = [0.0]
        store = InMemorySessionStore(ttl_seconds=10, clock=lambda: now[0])
        service = make_service(sessions=store)
        await service.create_session(marbella_villa)

        now[0] = 11.0

        assert await service.evict_expired_sessions() == 1

    def test_empty_injected_store_is_kept(
        self, make_service: Callable[..., AnalysisService]
    ) -> None:
        store = InMemorySessionStore(ttl_seconds=10)
        history = InMemoryDeepeningHistory()

        service = make_service(sessions=store, history=history)

        assert len(store) == 0
        assert service.sessions is store
        assert service.history is history


class ClosingProvider(UnconfiguredProvider):
    def __init__(self) -> None:
        self.closed = 0

    async def close(self) -> None:
        self.closed += 1


class TestLifecycle:
    async def test_close_closes_each_provider_once(
        self, make_service: Callable[..., AnalysisService]
    ) -> None:
        provider = ClosingProvider()
        service = make_service(providers=Providers(analyzer=provider, summarizer=provider))

        await service.close()

        assert provider.closed == 1

    async def test_describe(self, make_service: Callable[..., AnalysisService]) -> None:
        assert make_service().describe() == {
            "ai_enabled": False,
            "search_enabled": False,
            "bonus_research": True,
            "step_timeout_seconds": 120.0,
        }


class TestBuildProviders:
    def test_no_keys_leaves_defaults(self) -> None:
        providers = build_providers(Settings())
        assert isinstance(providers.analyzer, UnconfiguredProvider)
        assert isinstance(providers.search, UnconfiguredProvider)

    async def test_keys_enable_clients(self) -> None:
        settings = Settings(
            anthropic_api_key=SecretStr("sk-test"),
            tavily_api_key=SecretStr("tvly-test"),
        )

        providers = build_providers(settings)

        assert isinstance(providers.analyzer, ClaudePropertyAI)
        assert providers.summarizer is providers.analyzer
        assert isinstance(providers.search, TavilySearchClient)
        assert isinstance(providers.geocoder, UnconfiguredProvider)
