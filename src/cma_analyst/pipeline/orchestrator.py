"""Seven-step analysis pipeline with per-step failure isolation."""

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from itertools import zip_longest
from typing import Any, Final

from cma_analyst.deepening import ProgressiveDeepeningEngine, identify_data_gaps
from cma_analyst.errors import (
    RETRY_SUGGESTION,
    AnalysisCancelledError,
    AnalysisFailedError,
    CriticalGeocodeFailure,
    InputValidationError,
    SessionNotFoundError,
    StepError,
    SummaryGenerationFailure,
)
from cma_analyst.logging import bind_session, clear_session, get_logger
from cma_analyst.models import (
    AnalysisSession,
    CMAReport,
    ComparableResult,
    Coordinates,
    DeepeningStrategy,
    EnrichmentBundle,
    LocationHints,
    NarrativeSummary,
    PropertyDescriptor,
    RentalReport,
    SessionStatus,
    StepStatus,
)
from cma_analyst.pipeline.summary import fallback_summary, rental_report, rental_summary
from cma_analyst.pipeline.trends import derive_market_trends, key_features
from cma_analyst.providers import Providers
from cma_analyst.sessions import SessionStore
from cma_analyst.valuation import ValuationEngine

logger = get_logger(__name__)

STEP_NAMES: Final[dict[int, str]] = {
    1: "LocationDescriptionAnalysis",
    2: "ConditionAndStyleAnalysis",
    3: "GeolocationAndAmenities",
    4: "MarketDataRetrieval",
    5: "ComparableListingsRetrieval",
    6: "FutureDevelopmentsRetrieval",
    7: "SummaryGeneration",
}

REQUIRED_FIELDS: Final = ("address", "city", "province")

# Bonus research gate
BONUS_MIN_QUALITY: Final = 85
BONUS_MIN_COMPLETED_STEPS: Final = 6
BONUS_QUERIES_BASE: Final = 2
BONUS_QUERIES_DEEPENED: Final = 3
BONUS_RESULTS_PER_QUERY: Final = 5

STATIC_RESEARCH_QUERIES: Final = (
    "{city} real estate market trends {year}",
    "{city} property values forecast",
    "{type} properties {city}",
    "neighbourhood analysis {city}",
    "property investment {city}",
    "market report {city}",
    "development plans {city}",
    "real estate outlook {city}",
)

GENERIC_FAILURE_MESSAGE: Final = "Failed to generate property analysis"


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass
class StepOutcome:
    """Result of one pipeline step: an output, or the error that stopped it."""

    step_number: int
    name: str
    status: StepStatus
    output: Any = None
    error: StepError | None = None

    @property
    def ok(self) -> bool:
        return self.status == StepStatus.COMPLETED


@dataclass
class PipelineMeta:
    session_id: str
    status: SessionStatus
    completed_steps: int
    total_steps: int
    quality_score: int
    critical_errors: int
    analysis_level: int = 1
    outcomes: list[StepOutcome] = field(default_factory=list)
    research_queries: list[str] = field(default_factory=list)


@dataclass
class _GeoResult:
    coordinates: Coordinates | None = None
    resolved_by: str | None = None
    critical: CriticalGeocodeFailure | None = None


class AnalysisPipeline:
    """Runs the seven enrichment steps for one property at a time.

    Each step runs behind a boundary that turns any exception (including its
    deadline expiring) into a failed ``StepOutcome``; later steps still run.
    Progress is written to the session store after every step.
    """

    def __init__(
        self,
        providers: Providers,
        sessions: SessionStore,
        *,
        deepening: ProgressiveDeepeningEngine | None = None,
        valuation: ValuationEngine | None = None,
        step_timeout: float = 120.0,
        enable_bonus_research: bool = True,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._providers = providers
        self._sessions = sessions
        self._deepening = deepening
        self._valuation = valuation
        self._step_timeout = step_timeout
        self._enable_bonus_research = enable_bonus_research
        self._clock = clock
        self._background: set[asyncio.Task[None]] = set()

    @staticmethod
    def validate(descriptor: PropertyDescriptor) -> None:
        missing = [name for name in REQUIRED_FIELDS if not getattr(descriptor, name).strip()]
        if missing:
            raise InputValidationError(missing)

    async def run_analysis(
        self,
        descriptor: PropertyDescriptor,
        *,
        session_id: str | None = None,
        cancel: asyncio.Event | None = None,
    ) -> tuple[CMAReport, PipelineMeta]:
        """Analyse a property and return the report with run metadata.

        Args:
            descriptor: The property to analyse.
            session_id: A PENDING session to run under; a new session is
                created when omitted.
            cancel: Checked before each step; once set the session ends as ERROR.

        Raises:
            InputValidationError: address, city or province is blank. No session is created.
            SessionNotFoundError: ``session_id`` does not exist.
            SessionStateError: ``session_id`` is not PENDING.
            AnalysisCancelledError: ``cancel`` was set.
            AnalysisFailedError: an unexpected error escaped a step boundary.
        """
        self.validate(descriptor)
        session = await self._open_session(session_id)
        bind_session(session.id)
        try:
            return await self._run(session, descriptor, cancel)
        except AnalysisCancelledError:
            session.fail("Analysis cancelled", None)
            await self._sessions.put(session)
            logger.warning("analysis_cancelled", completed_steps=session.completed_steps)
            raise
        except Exception as e:
            logger.error(
                "analysis_failed",
                error=str(e),
                error_type=type(e).__name__,
                completed_steps=session.completed_steps,
                exc_info=True,
            )
            if not session.status.is_terminal:
                session.fail(GENERIC_FAILURE_MESSAGE, RETRY_SUGGESTION)
                await self._sessions.put(session)
            raise AnalysisFailedError(session.id, GENERIC_FAILURE_MESSAGE) from e
        finally:
            clear_session()

    async def _open_session(self, session_id: str | None) -> AnalysisSession:
        if session_id is None:
            session = AnalysisSession()
        else:
            existing = await self._sessions.get(session_id)
            if existing is None:
                raise SessionNotFoundError(session_id)
            session = existing
        session.begin()
        await self._sessions.put(session)
        return session

    async def _run(
        self,
        session: AnalysisSession,
        descriptor: PropertyDescriptor,
        cancel: asyncio.Event | None,
    ) -> tuple[CMAReport, PipelineMeta]:
        now = self._clock()
        strategy = await self._strategy_for(descriptor)
        level = strategy.next_level if strategy else 1
        logger.info(
            "analysis_started",
            address=descriptor.full_address,
            property_type=descriptor.property_type,
            analysis_level=level,
        )

        providers = self._providers
        bundle = EnrichmentBundle()
        enhanced = descriptor
        outcomes: list[StepOutcome] = []

        async def step(
            number: int,
            func: Callable[[], Awaitable[tuple[Any, dict[str, Any]]]],
            *,
            deadline: bool = True,
        ) -> StepOutcome:
            self._check_cancelled(session, cancel)
            outcome = await self._run_step(session, number, func, deadline=deadline)
            outcomes.append(outcome)
            return outcome

        # 1. Location hints from listing free text
        async def location_description() -> tuple[LocationHints | None, dict[str, Any]]:
            hints = await providers.analyzer.analyze_location_description(enhanced)
            return hints, {"hints_found": hints is not None}

        outcome = await step(1, location_description)
        if outcome.ok:
            bundle.location_hints = outcome.output

        # 2. Condition and style, filling only what the caller left blank
        async def condition_and_style() -> tuple[PropertyDescriptor, dict[str, Any]]:
            assessment = await providers.analyzer.analyze_condition_and_style(enhanced)
            updates: dict[str, Any] = {}
            if assessment is not None:
                if enhanced.condition is None and assessment.condition:
                    updates["condition"] = assessment.condition
                if enhanced.architectural_style is None and assessment.architectural_style:
                    updates["architectural_style"] = assessment.architectural_style
            return enhanced.model_copy(update=updates), {"fields_inferred": sorted(updates)}

        outcome = await step(2, condition_and_style)
        if outcome.ok:
            enhanced = outcome.output

        # 3. Coordinates, then amenities/mobility/narrative
        async def geolocation() -> tuple[_GeoResult, dict[str, Any]]:
            geo = await self._resolve_coordinates(enhanced, bundle.location_hints)
            details: dict[str, Any] = {"resolved_by": geo.resolved_by}
            if geo.coordinates is None:
                session.record_critical_error()
                details["critical_error"] = str(geo.critical)
                return geo, details

            bundle.coordinates = geo.coordinates
            amenities, mobility = await asyncio.gather(
                providers.amenities.nearby_amenities(geo.coordinates),
                providers.mobility.mobility_data(geo.coordinates, enhanced.full_address),
                return_exceptions=True,
            )
            if isinstance(amenities, BaseException):
                logger.warning(
                    "amenities_failed",
                    error=str(amenities),
                    error_type=type(amenities).__name__,
                )
            else:
                bundle.amenities = list(amenities)
            if isinstance(mobility, BaseException):
                logger.warning(
                    "mobility_failed",
                    error=str(mobility),
                    error_type=type(mobility).__name__,
                )
            else:
                bundle.mobility = mobility

            try:
                bundle.neighborhood_narrative = await providers.narrative.neighborhood_narrative(
                    enhanced.address, enhanced.city, enhanced.province
                ) or ""
            except Exception as e:
                logger.warning("neighborhood_narrative_failed", error=str(e), error_type=type(e).__name__)

            details.update(
                amenities=len(bundle.amenities),
                has_mobility=bundle.mobility is not None,
                narrative_chars=len(bundle.neighborhood_narrative),
            )
            return geo, details

        await step(3, geolocation)

        # 4. Market data
        async def market_data() -> tuple[Any, dict[str, Any]]:
            data = await providers.market.market_data(enhanced)
            bundle.market_data = data
            return data, {"has_market_data": data is not None}

        await step(4, market_data)

        # 5. Comparable listings
        async def comparables() -> tuple[ComparableResult, dict[str, Any]]:
            result = await providers.comparables.comparable_listings(enhanced)
            bundle.comparables = list(result.comparables)
            bundle.comparables_total = result.total_found or len(result.comparables)
            return result, {"comparables": len(bundle.comparables), "total_found": bundle.comparables_total}

        await step(5, comparables)

        # 6. Planned developments
        async def developments() -> tuple[Any, dict[str, Any]]:
            found = await providers.developments.future_developments(enhanced.full_address, enhanced)
            bundle.developments = list(found)
            return found, {"developments": len(bundle.developments)}

        await step(6, developments)

        engine = self._valuation or ValuationEngine(reference_date=now.date())
        valuation = engine.calculate_market_value(
            enhanced,
            bundle.comparables,
            bundle.market_data,
            bundle.amenities,
            bundle.developments,
        )
        logger.info(
            "valuation_calculated",
            estimated=valuation.estimated,
            confidence=valuation.confidence,
        )

        # 7. Narrative summary; always concludes with some summary
        rental: RentalReport | None = rental_report(enhanced, valuation) if enhanced.is_rental else None

        async def summary() -> tuple[NarrativeSummary, dict[str, Any]]:
            if rental is not None:
                return rental_summary(enhanced, bundle, rental), {"source": "rental_report"}
            try:
                async with asyncio.timeout(self._step_timeout):
                    generated = await providers.summarizer.generate_summary(enhanced, bundle, valuation)
                if generated is None:
                    raise SummaryGenerationFailure("summary provider returned no summary")
            except Exception as e:
                if isinstance(e, SummaryGenerationFailure):
                    failure = e
                else:
                    failure = SummaryGenerationFailure(str(e) or type(e).__name__)
                logger.warning("summary_fallback_used", error=str(failure))
                details = {"source": "fallback", "error": str(failure)}
                return fallback_summary(enhanced, bundle, valuation), details
            return generated, {"source": "ai"}

        outcome = await step(7, summary, deadline=False)
        narrative = outcome.output if outcome.ok else fallback_summary(enhanced, bundle, valuation)

        trends = derive_market_trends(
            bundle.market_data,
            bundle.comparables,
            bundle.comparables_total,
            current_year=now.year,
        )
        report = CMAReport(
            property=enhanced,
            summary=narrative,
            key_features=tuple(key_features(enhanced, bundle.amenities)),
            market_trends=trends,
            market_data=bundle.market_data,
            neighborhood_insights=bundle.neighborhood_narrative,
            comparables=tuple(bundle.comparables),
            comparables_total=bundle.comparables_total,
            amenities=tuple(bundle.amenities),
            developments=tuple(bundle.developments),
            mobility=bundle.mobility,
            valuation=valuation,
            asking_price_assessment=None
            if rental is not None
            else engine.assess_asking_price(enhanced.price, valuation, trends.trend),
            rental_report=rental,
            coordinates=bundle.coordinates,
            report_date=now,
        )

        queries: list[str] = []
        if self._should_research(session):
            queries, insights = await self._bonus_research(enhanced, report, strategy, level)
            if insights:
                report = report.model_copy(update={"research_insights": tuple(insights)})

        session.finish(report)
        await self._sessions.put(session)
        logger.info(
            "analysis_complete",
            status=session.status,
            completed_steps=session.completed_steps,
            quality_score=session.quality_score,
            critical_errors=session.critical_error_count,
        )

        self._after_analysis(enhanced, report, bundle, session, level)

        meta = PipelineMeta(
            session_id=session.id,
            status=session.status,
            completed_steps=session.completed_steps,
            total_steps=session.total_steps,
            quality_score=session.quality_score,
            critical_errors=session.critical_error_count,
            analysis_level=level,
            outcomes=outcomes,
            research_queries=queries,
        )
        return report, meta

    async def _run_step(
        self,
        session: AnalysisSession,
        number: int,
        func: Callable[[], Awaitable[tuple[Any, dict[str, Any]]]],
        *,
        deadline: bool = True,
    ) -> StepOutcome:
        name = STEP_NAMES[number]
        record = session.start_step(number, name)
        await self._sessions.put(session)
        logger.debug("step_started", step=number, step_name=name)

        try:
            async with asyncio.timeout(self._step_timeout if deadline else None):
                output, details = await func()
        except Exception as e:
            error = StepError.from_exception(number, name, e)
            logger.warning(
                "step_failed",
                step=number,
                step_name=name,
                error=error.message,
                error_type=type(e).__name__,
            )
            session.fail_step(record, error.message)
            outcome = StepOutcome(number, name, StepStatus.FAILED, error=error)
        else:
            session.complete_step(record, details)
            logger.info("step_completed", step=number, step_name=name, **details)
            outcome = StepOutcome(number, name, StepStatus.COMPLETED, output=output)

        await self._sessions.put(session)
        return outcome

    @staticmethod
    def _check_cancelled(session: AnalysisSession, cancel: asyncio.Event | None) -> None:
        if cancel is not None and cancel.is_set():
            raise AnalysisCancelledError(session.id, session.completed_steps)

    async def _resolve_coordinates(
        self, prop: PropertyDescriptor, hints: LocationHints | None
    ) -> _GeoResult:
        """Geocode the address, falling back to the city when it can't be verified."""
        providers = self._providers
        query = (hints.enhanced_address if hints and hints.enhanced_address else "") or prop.full_address

        coords = await self._geocode(query)
        if coords is not None:
            try:
                verification = await providers.verifier.verify_location(
                    coords, prop.address, prop.city, prop.province
                )
            except Exception as e:
                logger.warning("location_verification_failed", error=str(e), error_type=type(e).__name__)
                verification = None

            if verification is not None and verification.is_valid:
                return _GeoResult(coordinates=coords, resolved_by="address")
            logger.warning(
                "location_verification_rejected",
                reason=verification.reason if verification else "verification error",
            )

        city_coords = await self._geocode(prop.city_address)
        if city_coords is not None:
            logger.info("using_city_level_coordinates", city=prop.city)
            return _GeoResult(coordinates=city_coords, resolved_by="city")

        failure = CriticalGeocodeFailure(prop.full_address)
        logger.error("critical_geocode_failure", address=prop.full_address)
        return _GeoResult(critical=failure)

    async def _geocode(self, address: str) -> Coordinates | None:
        try:
            return await self._providers.geocoder.geocode(address)
        except Exception as e:
            logger.warning("geocode_failed", address=address, error=str(e), error_type=type(e).__name__)
            return None

    async def _strategy_for(self, prop: PropertyDescriptor) -> DeepeningStrategy | None:
        if self._deepening is None:
            return None
        try:
            return await self._deepening.get_deepening_strategy(prop)
        except Exception as e:
            logger.warning("deepening_strategy_failed", error=str(e), exc_info=True)
            return None

    def _should_research(self, session: AnalysisSession) -> bool:
        return (
            self._enable_bonus_research
            and session.quality_score >= BONUS_MIN_QUALITY
            and session.completed_steps >= BONUS_MIN_COMPLETED_STEPS
        )

    async def _bonus_research(
        self,
        prop: PropertyDescriptor,
        report: CMAReport,
        strategy: DeepeningStrategy | None,
        level: int,
    ) -> tuple[list[str], list[str]]:
        """Run a few extra web searches. Never raises."""
        max_queries = BONUS_QUERIES_DEEPENED if level > 1 else BONUS_QUERIES_BASE
        try:
            async with asyncio.timeout(self._step_timeout):
                generated = await self._providers.analyzer.generate_search_queries(prop, report, max_queries)
        except Exception as e:
            logger.warning("search_query_generation_failed", error=str(e), error_type=type(e).__name__)
            generated = []

        if not generated:
            year = self._clock().year
            generated = [
                q.format(city=prop.city, type=prop.property_type, year=year)
                for q in STATIC_RESEARCH_QUERIES
            ]
        deepening_queries = strategy.additional_queries if strategy is not None else ()
        queries = _merge_queries(deepening_queries, generated, max_queries)

        insights: list[str] = []
        for query in queries:
            try:
                async with asyncio.timeout(self._step_timeout):
                    results = await self._providers.search.search_web(query, BONUS_RESULTS_PER_QUERY)
            except Exception as e:
                logger.warning(
                    "research_query_failed",
                    query=query,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                continue
            insights.extend(r.content for r in results if r.content)

        logger.info("bonus_research_complete", queries=len(queries), insights=len(insights))
        return queries, insights

    def _after_analysis(
        self,
        prop: PropertyDescriptor,
        report: CMAReport,
        bundle: EnrichmentBundle,
        session: AnalysisSession,
        level: int,
    ) -> None:
        """Fire-and-forget deepening record and learning update."""
        if self._deepening is not None:
            gaps = identify_data_gaps(report, bundle.amenities, bundle.comparables, bundle.developments)
            self._spawn(
                self._deepening.record_analysis(
                    prop,
                    session.id,
                    session.quality_score,
                    f"level_{level}",
                    gaps,
                    level=level,
                ),
                "deepening_record",
            )
        self._spawn(
            self._providers.learning.record_learning(
                prop, report, list(bundle.comparables), session.id, session.quality_score
            ),
            "learning_update",
        )

    def _spawn(self, coro: Awaitable[Any], label: str) -> None:
        async def runner() -> None:
            try:
                await coro
            except Exception as e:
                logger.warning("background_task_failed", task=label, error=str(e), exc_info=True)

        task = asyncio.create_task(runner(), name=label)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    @property
    def pending_background_tasks(self) -> int:
        return len(self._background)

    async def drain(self) -> None:
        """Wait for outstanding background work."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)


def _merge_queries(
    deepening_queries: Sequence[str], generated: Sequence[str], limit: int
) -> list[str]:
    """Alternate gap-driven and generated queries, gap-driven first."""
    queries: list[str] = []
    for pair in zip_longest(deepening_queries, generated):
        for query in pair:
            if query and query not in queries:
                queries.append(query)
    return queries[:limit]
