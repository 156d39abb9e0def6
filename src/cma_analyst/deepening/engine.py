"""Progressive deepening: each repeat analysis of a property digs further."""

import asyncio
from collections.abc import Callable, Sequence
from datetime import UTC, datetime, timedelta
from typing import Final

from cma_analyst.deepening.fingerprint import property_fingerprint
from cma_analyst.deepening.history import DeepeningHistoryStore
from cma_analyst.logging import get_logger
from cma_analyst.models import (
    Amenity,
    CMAReport,
    Comparable,
    DeepeningFeedback,
    DeepeningLevel,
    DeepeningRecord,
    DeepeningStats,
    DeepeningStrategy,
    Development,
    PropertyDescriptor,
)

logger = get_logger(__name__)

LEVELS: Final[dict[int, DeepeningLevel]] = {
    1: DeepeningLevel(
        level=1,
        name="Standard Comprehensive",
        description="Complete property analysis with all standard sections filled",
        focus_areas=("basic_location", "market_data", "comparables", "amenities", "developments"),
    ),
    2: DeepeningLevel(
        level=2,
        name="Enhanced Market Intelligence",
        description="Enhanced market intelligence with investment timing and risk analysis",
        focus_areas=(
            "market_timing",
            "investment_metrics",
            "risk_assessment",
            "seasonal_patterns",
            "demographic_insights",
        ),
    ),
    3: DeepeningLevel(
        level=3,
        name="Advanced Predictive Analytics",
        description="Advanced predictive analysis with scenario modeling and long-term forecasts",
        focus_areas=(
            "predictive_modeling",
            "scenario_analysis",
            "market_disruption",
            "long_term_trends",
            "comparative_analysis",
        ),
    ),
    4: DeepeningLevel(
        level=4,
        name="Specialized Deep Dive",
        description="Specialized analysis with niche market insights and strategic recommendations",
        focus_areas=(
            "niche_markets",
            "specialized_metrics",
            "competitive_analysis",
            "opportunity_identification",
            "strategic_recommendations",
        ),
    ),
}
MAX_LEVEL: Final = max(LEVELS)

EXPECTED_IMPROVEMENTS: Final[dict[int, tuple[str, ...]]] = {
    1: (),
    2: (
        "Enhanced market timing analysis",
        "Investment metrics and ROI calculations",
        "Risk assessment and mitigation strategies",
        "Seasonal market pattern analysis",
    ),
    3: (
        "Predictive market modeling",
        "Scenario analysis and forecasting",
        "Market disruption impact assessment",
        "Long-term trend analysis",
    ),
    4: (
        "Niche market specialization",
        "Competitive market positioning",
        "Strategic investment recommendations",
        "Opportunity identification and analysis",
    ),
}

# Upgrade rules
UPGRADE_MIN_QUALITY: Final = 80
UPGRADE_MIN_INTERVAL: Final = timedelta(hours=24)
# Last user rating must beat this (1-5 scale); no feedback does not block
UPGRADE_MIN_RATING: Final = 3.5
MAX_ADDITIONAL_QUERIES: Final = 6

# Data gap tag -> focus area that addresses it
GAP_FOCUS_AREAS: Final[dict[str, str]] = {
    "market_data": "market_data",
    "amenities": "amenities",
    "comparables": "comparables",
    "developments": "developments",
    "mobility_data": "basic_location",
    "neighborhood_insights": "demographic_insights",
}

# Focus area -> query templates ({city}, {province}, {type}, {bedrooms}, {year})
FOCUS_QUERIES: Final[dict[str, tuple[str, ...]]] = {
    "market_data": (
        '"{city}" property prices per m2 {year}',
        '"{city}" "{province}" housing market statistics',
    ),
    "comparables": ('"{city}" {type} {bedrooms} bedroom for sale price',),
    "amenities": ('"{city}" schools transport shopping amenities',),
    "developments": ('"{city}" infrastructure development projects',),
    "basic_location": ('"{city}" neighbourhoods guide',),
    "seasonal_patterns": (
        '"{city}" seasonal property market patterns {year}',
        '"{city}" property market seasonal trends',
    ),
    "demographic_insights": (
        '"{city}" demographic trends population growth',
        '"{city}" income levels property buyers',
    ),
    "predictive_modeling": (
        '"{city}" property market forecast {next_year} {year_after}',
        '"{city}" real estate market predictions',
    ),
    "market_disruption": (
        '"{city}" property market disruption factors',
        '"{city}" real estate market risks {year}',
    ),
    "niche_markets": (
        '"{city}" luxury property market trends',
        '"{city}" investment property market analysis',
    ),
}

# Minimum narrative length before neighbourhood insights count as present
MIN_NARRATIVE_CHARS: Final = 100
MIN_AMENITIES: Final = 10
MIN_COMPARABLES: Final = 5


def _utcnow() -> datetime:
    return datetime.now(UTC)


def identify_data_gaps(
    report: CMAReport,
    amenities: Sequence[Amenity],
    comparables: Sequence[Comparable],
    developments: Sequence[Development],
) -> list[str]:
    """Tag the areas where this analysis came back thin."""
    gaps: list[str] = []
    if report.market_data is None:
        gaps.append("market_data")
    if len(amenities) < MIN_AMENITIES:
        gaps.append("amenities")
    if len(comparables) < MIN_COMPARABLES:
        gaps.append("comparables")
    if not developments:
        gaps.append("developments")
    if report.mobility is None or not report.mobility.walking_score:
        gaps.append("mobility_data")
    if len(report.neighborhood_insights) < MIN_NARRATIVE_CHARS:
        gaps.append("neighborhood_insights")
    return gaps


class ProgressiveDeepeningEngine:
    """Decides how deep the next analysis of a property should go.

    Levels never go down for a property. A property moves up one level when
    its last analysis scored above 80, was recorded more than 24 hours ago,
    and the latest user rating (if any) is above 3.5.
    """

    def __init__(
        self,
        history: DeepeningHistoryStore,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._history = history
        self._clock = clock
        self._record_lock = asyncio.Lock()

    async def get_deepening_strategy(self, prop: PropertyDescriptor) -> DeepeningStrategy | None:
        """None for a property never analysed before."""
        fingerprint = property_fingerprint(prop)
        latest = await self._history.latest(fingerprint)
        if latest is None:
            return None

        current = latest.level
        feedback = await self._history.latest_feedback(fingerprint)
        next_level = self._next_level(latest, feedback)
        focus_areas = _merge_focus_areas(latest.data_gaps, LEVELS[next_level].focus_areas)
        strategy = DeepeningStrategy(
            fingerprint=fingerprint,
            current_level=current,
            next_level=next_level,
            focus_areas=focus_areas,
            additional_queries=self._additional_queries(prop, focus_areas),
            expected_improvements=EXPECTED_IMPROVEMENTS[next_level] if next_level > current else (),
        )
        logger.info(
            "deepening_strategy",
            fingerprint=fingerprint[:12],
            current_level=current,
            next_level=next_level,
            queries=len(strategy.additional_queries),
        )
        return strategy

    async def record_analysis(
        self,
        prop: PropertyDescriptor,
        session_id: str,
        quality_score: int,
        level_label: str | None = None,
        data_gaps: Sequence[str] = (),
        *,
        level: int | None = None,
    ) -> DeepeningRecord:
        """Append a record for a finished analysis.

        ``level`` is the depth the analysis ran at; when omitted it is derived
        from the existing history. Either way it never drops below the
        latest recorded level.
        """
        fingerprint = property_fingerprint(prop)
        async with self._record_lock:
            latest = await self._history.latest(fingerprint)
            if level is None:
                if latest is None:
                    level = 1
                else:
                    feedback = await self._history.latest_feedback(fingerprint)
                    level = self._next_level(latest, feedback)
            if latest is not None:
                level = max(level, latest.level)
            level = max(1, min(level, MAX_LEVEL))

            record = DeepeningRecord(
                fingerprint=fingerprint,
                level=level,
                session_id=session_id,
                recorded_at=self._clock(),
                quality_score=quality_score,
                level_label=level_label or f"level_{level}",
                data_gaps=tuple(data_gaps),
            )
            await self._history.append(record)

        logger.info(
            "deepening_analysis_recorded",
            fingerprint=fingerprint[:12],
            session_id=session_id,
            level=level,
            quality_score=quality_score,
            data_gaps=list(data_gaps),
        )
        return record

    async def record_feedback(
        self,
        prop: PropertyDescriptor,
        rating: float,
        *,
        session_id: str | None = None,
        comments: str = "",
    ) -> DeepeningFeedback | None:
        """Store a user's rating of the latest analysis.

        Returns None (nothing stored) for a property never analysed.
        """
        fingerprint = property_fingerprint(prop)
        if await self._history.latest(fingerprint) is None:
            logger.info("deepening_feedback_ignored", fingerprint=fingerprint[:12])
            return None

        feedback = DeepeningFeedback(
            fingerprint=fingerprint,
            rating=rating,
            session_id=session_id,
            comments=comments,
            recorded_at=self._clock(),
        )
        await self._history.append_feedback(feedback)
        logger.info(
            "deepening_feedback_recorded",
            fingerprint=fingerprint[:12],
            session_id=session_id,
            rating=rating,
        )
        return feedback

    def identify_data_gaps(
        self,
        report: CMAReport,
        amenities: Sequence[Amenity],
        comparables: Sequence[Comparable],
        developments: Sequence[Development],
    ) -> list[str]:
        return identify_data_gaps(report, amenities, comparables, developments)

    async def get_analysis_stats(self) -> DeepeningStats:
        return await self._history.stats()

    def _next_level(self, latest: DeepeningRecord, feedback: DeepeningFeedback | None) -> int:
        if latest.level >= MAX_LEVEL:
            return MAX_LEVEL
        elapsed = self._clock() - latest.recorded_at
        liked = feedback is None or feedback.rating > UPGRADE_MIN_RATING
        if latest.quality_score > UPGRADE_MIN_QUALITY and liked and elapsed > UPGRADE_MIN_INTERVAL:
            return latest.level + 1
        return latest.level

    def _additional_queries(
        self, prop: PropertyDescriptor, focus_areas: Sequence[str]
    ) -> tuple[str, ...]:
        year = self._clock().year
        values = {
            "city": prop.city,
            "province": prop.province,
            "type": prop.property_type.lower(),
            "bedrooms": prop.bedrooms,
            "year": year,
            "next_year": year + 1,
            "year_after": year + 2,
        }
        queries: list[str] = []
        for area in focus_areas:
            for template in FOCUS_QUERIES.get(area, ()):
                query = template.format(**values)
                if query not in queries:
                    queries.append(query)
        return tuple(queries[:MAX_ADDITIONAL_QUERIES])


def _merge_focus_areas(gaps: Sequence[str], level_areas: Sequence[str]) -> tuple[str, ...]:
    areas: list[str] = []
    for gap in gaps:
        area = GAP_FOCUS_AREAS.get(gap)
        if area and area not in areas:
            areas.append(area)
    for area in level_areas:
        if area not in areas:
            areas.append(area)
    return tuple(areas)
