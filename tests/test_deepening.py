"""Tests for the progressive deepening engine."""

from collections.abc import Callable
from datetime import datetime, timedelta

import pytest
from pydantic import ValidationError

from cma_analyst.deepening import (
    MAX_LEVEL,
    InMemoryDeepeningHistory,
    ProgressiveDeepeningEngine,
    identify_data_gaps,
    property_fingerprint,
)
from cma_analyst.models import (
    Amenity,
    CMAReport,
    Comparable,
    Development,
    MarketData,
    MarketTrends,
    MobilityData,
    NarrativeSummary,
    PropertyDescriptor,
    ValuationEstimate,
)


class MovableClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock(fixed_clock: Callable[[], datetime]) -> MovableClock:
    return MovableClock(fixed_clock())


@pytest.fixture
def history() -> InMemoryDeepeningHistory:
    return InMemoryDeepeningHistory()


@pytest.fixture
def engine(history: InMemoryDeepeningHistory, clock: MovableClock) -> ProgressiveDeepeningEngine:
    return ProgressiveDeepeningEngine(history, clock=clock)


@pytest.fixture
def prop(make_descriptor: Callable[..., PropertyDescriptor]) -> PropertyDescriptor:
    return make_descriptor()


def make_report(prop: PropertyDescriptor, **overrides: object) -> CMAReport:
    fields: dict[str, object] = {
        "property": prop,
        "summary": NarrativeSummary(),
        "market_trends": MarketTrends(),
        "valuation": ValuationEstimate(low=0, estimated=0, high=0, confidence=20),
    }
    fields.update(overrides)
    return CMAReport.model_validate(fields)


class TestFingerprint:
    def test_ignores_case_and_spacing(self) -> None:
        a = PropertyDescriptor(address="Calle Mar 1", city="Estepona", province="Málaga")
        b = PropertyDescriptor(address=" calle  MAR 1 ", city="ESTEPONA", province="málaga")
        assert property_fingerprint(a) == property_fingerprint(b)

    def test_differs_by_address(self) -> None:
        a = PropertyDescriptor(address="Calle Mar 1", city="Estepona", province="Málaga")
        b = PropertyDescriptor(address="Calle Mar 2", city="Estepona", province="Málaga")
        assert property_fingerprint(a) != property_fingerprint(b)

    def test_ignores_non_location_fields(self) -> None:
        a = PropertyDescriptor(address="Calle Mar 1", city="Estepona", province="Málaga", price=1)
        b = PropertyDescriptor(
            address="Calle Mar 1", city="Estepona", province="Málaga", bedrooms=5
        )
        assert property_fingerprint(a) == property_fingerprint(b)

    def test_is_sha256_hex(self, prop: PropertyDescriptor) -> None:
        fingerprint = property_fingerprint(prop)
        assert len(fingerprint) == 64
        int(fingerprint, 16)


class TestStrategy:
    async def test_new_property_has_no_strategy(
        self, engine: ProgressiveDeepeningEngine, prop: PropertyDescriptor
    ) -> None:
        assert await engine.get_deepening_strategy(prop) is None

    async def test_recent_analysis_stays_at_level(
        self, engine: ProgressiveDeepeningEngine, prop: PropertyDescriptor
    ) -> None:
        await engine.record_analysis(prop, "s1", 95, data_gaps=["market_data"])

        strategy = await engine.get_deepening_strategy(prop)

        assert strategy is not None
        assert (strategy.current_level, strategy.next_level) == (1, 1)
        assert not strategy.is_upgrade
        assert strategy.expected_improvements == ()
        assert strategy.focus_areas[0] == "market_data"
        assert strategy.additional_queries[0] == '"Estepona" property prices per m2 2025'
        assert len(strategy.additional_queries) <= 6

    async def test_upgrades_after_a_day_with_good_score(
        self,
        engine: ProgressiveDeepeningEngine,
        prop: PropertyDescriptor,
        clock: MovableClock,
    ) -> None:
        await engine.record_analysis(prop, "s1", 90)
        clock.advance(hours=25)

        strategy = await engine.get_deepening_strategy(prop)

        assert strategy is not None
        assert (strategy.current_level, strategy.next_level) == (1, 2)
        assert strategy.is_upgrade
        assert "Enhanced market timing analysis" in strategy.expected_improvements
        assert "seasonal_patterns" in strategy.focus_areas
        assert '"Estepona" seasonal property market patterns 2025' in strategy.additional_queries

    async def test_low_score_does_not_upgrade(
        self,
        engine: ProgressiveDeepeningEngine,
        prop: PropertyDescriptor,
        clock: MovableClock,
    ) -> None:
        await engine.record_analysis(prop, "s1", 80)
        clock.advance(days=3)

        strategy = await engine.get_deepening_strategy(prop)

        assert strategy is not None
        assert strategy.next_level == 1

    async def test_exactly_one_day_is_not_enough(
        self,
        engine: ProgressiveDeepeningEngine,
        prop: PropertyDescriptor,
        clock: MovableClock,
    ) -> None:
        await engine.record_analysis(prop, "s1", 100)
        clock.advance(hours=24)

        strategy = await engine.get_deepening_strategy(prop)

        assert strategy is not None
        assert strategy.next_level == 1

    async def test_capped_at_max_level(
        self,
        engine: ProgressiveDeepeningEngine,
        prop: PropertyDescriptor,
        clock: MovableClock,
    ) -> None:
        await engine.record_analysis(prop, "s1", 100, level=MAX_LEVEL)
        clock.advance(days=30)

        strategy = await engine.get_deepening_strategy(prop)

        assert strategy is not None
        assert strategy.current_level == strategy.next_level == MAX_LEVEL
        assert strategy.expected_improvements == ()

    async def test_queries_never_exceed_six(
        self, engine: ProgressiveDeepeningEngine, prop: PropertyDescriptor
    ) -> None:
        gaps = [
            "market_data",
            "amenities",
            "comparables",
            "developments",
            "mobility_data",
            "neighborhood_insights",
        ]
        await engine.record_analysis(prop, "s1", 50, data_gaps=gaps)

        strategy = await engine.get_deepening_strategy(prop)

        assert strategy is not None
        assert len(strategy.additional_queries) == 6
        assert len(set(strategy.additional_queries)) == 6


class TestRecordAnalysis:
    async def test_first_record_is_level_one(
        self,
        engine: ProgressiveDeepeningEngine,
        prop: PropertyDescriptor,
        fixed_clock: Callable[[], datetime],
    ) -> None:
        record = await engine.record_analysis(prop, "s1", 70)

        assert record.level == 1
        assert record.level_label == "level_1"
        assert record.recorded_at == fixed_clock()

    async def test_level_derived_from_history(
        self,
        engine: ProgressiveDeepeningEngine,
        prop: PropertyDescriptor,
        clock: MovableClock,
    ) -> None:
        await engine.record_analysis(prop, "s1", 90)
        clock.advance(days=2)

        record = await engine.record_analysis(prop, "s2", 90)

        assert record.level == 2

    async def test_level_never_decreases(
        self, engine: ProgressiveDeepeningEngine, prop: PropertyDescriptor
    ) -> None:
        await engine.record_analysis(prop, "s1", 90, level=3)

        record = await engine.record_analysis(prop, "s2", 40, level=1)

        assert record.level == 3

    async def test_history_is_append_only(
        self,
        engine: ProgressiveDeepeningEngine,
        history: InMemoryDeepeningHistory,
        prop: PropertyDescriptor,
    ) -> None:
        await engine.record_analysis(prop, "s1", 60)
        await engine.record_analysis(prop, "s2", 70, level_label="level_1_rerun")

        records = await history.records_for(property_fingerprint(prop))

        assert [r.session_id for r in records] == ["s1", "s2"]
        assert records[1].level_label == "level_1_rerun"

    async def test_stats(
        self,
        engine: ProgressiveDeepeningEngine,
        make_descriptor: Callable[..., PropertyDescriptor],
    ) -> None:
        busy = make_descriptor(address="Calle Uno 1")
        quiet = make_descriptor(address="Calle Dos 2")
        await engine.record_analysis(busy, "s1", 60)
        await engine.record_analysis(busy, "s2", 60)
        await engine.record_analysis(quiet, "s3", 60)

        stats = await engine.get_analysis_stats()

        assert stats.total_properties == 2
        assert stats.average_analyses_per_property == 1.5
        assert stats.most_analyzed[0].fingerprint == property_fingerprint(busy)
        assert stats.most_analyzed[0].analyses == 2


class TestFeedback:
    async def test_unanalysed_property_ignored(
        self,
        engine: ProgressiveDeepeningEngine,
        history: InMemoryDeepeningHistory,
        prop: PropertyDescriptor,
    ) -> None:
        assert await engine.record_feedback(prop, 5) is None
        assert await history.latest_feedback(property_fingerprint(prop)) is None

    async def test_feedback_stored(
        self,
        engine: ProgressiveDeepeningEngine,
        history: InMemoryDeepeningHistory,
        prop: PropertyDescriptor,
        fixed_clock: Callable[[], datetime],
    ) -> None:
        await engine.record_analysis(prop, "s1", 90)

        feedback = await engine.record_feedback(prop, 4.5, session_id="s1", comments="Useful")

        assert feedback is not None
        assert feedback.recorded_at == fixed_clock()
        assert await history.latest_feedback(property_fingerprint(prop)) == feedback

    @pytest.mark.parametrize("rating", [1, 3, 3.5])
    async def test_poor_rating_blocks_upgrade(
        self,
        engine: ProgressiveDeepeningEngine,
        prop: PropertyDescriptor,
        clock: MovableClock,
        rating: float,
    ) -> None:
        await engine.record_analysis(prop, "s1", 95)
        await engine.record_feedback(prop, rating)
        clock.advance(days=2)

        strategy = await engine.get_deepening_strategy(prop)
        record = await engine.record_analysis(prop, "s2", 95)

        assert strategy is not None
        assert strategy.next_level == 1
        assert record.level == 1

    async def test_latest_rating_wins(
        self,
        engine: ProgressiveDeepeningEngine,
        prop: PropertyDescriptor,
        clock: MovableClock,
    ) -> None:
        await engine.record_analysis(prop, "s1", 95)
        await engine.record_feedback(prop, 2)
        await engine.record_feedback(prop, 4)
        clock.advance(days=2)

        strategy = await engine.get_deepening_strategy(prop)

        assert strategy is not None
        assert strategy.next_level == 2

    @pytest.mark.parametrize("rating", [0, 5.5, float("nan")])
    async def test_rating_out_of_range(
        self, engine: ProgressiveDeepeningEngine, prop: PropertyDescriptor, rating: float
    ) -> None:
        await engine.record_analysis(prop, "s1", 95)
        with pytest.raises(ValidationError):
            await engine.record_feedback(prop, rating)


class TestDataGaps:
    def test_empty_analysis_has_every_gap(self, prop: PropertyDescriptor) -> None:
        gaps = identify_data_gaps(make_report(prop), [], [], [])
        assert gaps == [
            "market_data",
            "amenities",
            "comparables",
            "developments",
            "mobility_data",
            "neighborhood_insights",
        ]

    def test_rich_analysis_has_no_gaps(
        self,
        prop: PropertyDescriptor,
        amenities: list[Amenity],
        comparables: list[Comparable],
        market_data: MarketData,
    ) -> None:
        report = make_report(
            prop,
            market_data=market_data,
            mobility=MobilityData(walking_score=70),
            neighborhood_insights="x" * 120,
        )
        developments = [Development(title="New school")]

        assert identify_data_gaps(report, amenities, comparables, developments) == []

    def test_zero_walking_score_counts_as_gap(self, prop: PropertyDescriptor) -> None:
        report = make_report(prop, mobility=MobilityData(walking_score=0))
        assert "mobility_data" in identify_data_gaps(report, [], [], [])

    def test_engine_delegates(
        self, engine: ProgressiveDeepeningEngine, prop: PropertyDescriptor
    ) -> None:
        assert engine.identify_data_gaps(make_report(prop), [], [], []) == identify_data_gaps(
            make_report(prop), [], [], []
        )

    @pytest.mark.parametrize(
        ("amenity_count", "comparable_count", "narrative_chars", "expected"),
        [
            (9, 5, 100, ["amenities"]),
            (10, 4, 100, ["comparables"]),
            (10, 5, 99, ["neighborhood_insights"]),
            (10, 5, 100, []),
        ],
    )
    def test_thresholds(
        self,
        prop: PropertyDescriptor,
        make_comparable: Callable[..., Comparable],
        market_data: MarketData,
        amenity_count: int,
        comparable_count: int,
        narrative_chars: int,
        expected: list[str],
    ) -> None:
        report = make_report(
            prop,
            market_data=market_data,
            mobility=MobilityData(walking_score=70),
            neighborhood_insights="x" * narrative_chars,
        )
        amenities = [
            Amenity(name=f"Place {i}", type="shopping", distance=100 + i)
            for i in range(amenity_count)
        ]
        comparables = [make_comparable() for _ in range(comparable_count)]
        developments = [Development(title="New school")]

        assert identify_data_gaps(report, amenities, comparables, developments) == expected
