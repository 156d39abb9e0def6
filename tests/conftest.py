"""Shared pytest fixtures."""

import asyncio
import gc
import os
import sys
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

import pytest
from hypothesis import HealthCheck, settings

from cma_analyst.config import Settings
from cma_analyst.models import (
    Amenity,
    CMAReport,
    Comparable,
    ComparableResult,
    ConditionAssessment,
    Coordinates,
    DataQuality,
    Development,
    DevelopmentImpact,
    EnrichmentBundle,
    LocationHints,
    LocationVerification,
    MarketData,
    MarketTrend,
    MobilityData,
    NarrativeSummary,
    PropertyDescriptor,
    SearchResult,
    ValuationEstimate,
)
from cma_analyst.providers import Providers, UnconfiguredProvider


def pytest_configure(config: pytest.Config) -> None:
    """Force line-buffered stdout when piped."""
    if hasattr(sys.stdout, "reconfigure") and not sys.stdout.isatty():
        sys.stdout.reconfigure(line_buffering=True)
    if hasattr(sys.stderr, "reconfigure") and not sys.stderr.isatty():
        sys.stderr.reconfigure(line_buffering=True)


# Hypothesis settings profiles for different environments
settings.register_profile("fast", max_examples=25)
settings.register_profile(
    "ci",
    max_examples=200,
    suppress_health_check=[HealthCheck.too_slow],
)
settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "fast"))


@pytest.fixture(autouse=True)
def _isolate_settings_from_dotenv(monkeypatch: pytest.MonkeyPatch) -> None:
    """Prevent the local .env file and CMA_ANALYST_* variables from leaking into tests."""
    monkeypatch.setattr(
        Settings,
        "model_config",
        {**Settings.model_config, "env_file": None},
    )
    for name in list(os.environ):
        if name.startswith("CMA_ANALYST_"):
            monkeypatch.delenv(name)


@pytest.fixture(autouse=True)
def _cleanup_aiosqlite_threads():
    """Safety net: stop aiosqlite worker threads a test forgot to close."""
    yield

    from aiosqlite.core import Connection

    leaked = False
    gc.collect()
    for obj in gc.get_objects():
        if isinstance(obj, Connection) and obj._connection is not None:
            leaked = True
            obj.stop()

    if leaked:
        import warnings

        warnings.warn(
            "Test leaked aiosqlite connection(s): close the history store in fixture teardown",
            ResourceWarning,
            stacklevel=1,
        )


# ---------------------------------------------------------------------------
# Reference data
# ---------------------------------------------------------------------------

MARBELLA_COORDS = Coordinates(lat=36.5101, lng=-4.8825)
CITY_COORDS = Coordinates(lat=36.5100, lng=-4.8800)
FIXED_NOW = datetime(2025, 6, 1, 12, 0, tzinfo=UTC)


@pytest.fixture
def fixed_clock() -> Callable[[], datetime]:
    return lambda: FIXED_NOW


@pytest.fixture
def marbella_villa() -> PropertyDescriptor:
    """The reference Marbella villa used across pipeline tests."""
    return PropertyDescriptor(
        address="Calle Ejemplo 1",
        city="Marbella",
        province="Málaga",
        property_type="Villa",
        bedrooms=4,
        bathrooms=3,
        build_area=250,
        plot_area=800,
        price=1_500_000,
    )


@pytest.fixture
def make_descriptor() -> Callable[..., PropertyDescriptor]:
    """Factory for descriptors with sensible Costa del Sol defaults."""

    def _make(**overrides: Any) -> PropertyDescriptor:
        defaults: dict[str, Any] = {
            "address": "Avenida del Mar 12",
            "city": "Estepona",
            "province": "Málaga",
            "property_type": "Apartment",
            "bedrooms": 2,
            "bathrooms": 2,
            "build_area": 100,
            "price": 400_000,
        }
        defaults.update(overrides)
        return PropertyDescriptor(**defaults)

    return _make


@pytest.fixture
def make_comparable() -> Callable[..., Comparable]:
    counter = 0

    def _make(price: int = 400_000, build_area: float = 100, **overrides: Any) -> Comparable:
        nonlocal counter
        counter += 1
        defaults: dict[str, Any] = {
            "address": f"Comparable Street {counter}",
            "price": price,
            "bedrooms": 2,
            "bathrooms": 2,
            "build_area": build_area,
            "property_type": "Apartment",
            "days_on_market": 45,
        }
        defaults.update(overrides)
        return Comparable(**defaults)

    return _make


def sample_comparables() -> list[Comparable]:
    """Five distinct comparables around 4,000 EUR/m²."""
    return [
        Comparable(
            address=f"Calle Real {i}",
            price=380_000 + i * 15_000,
            bedrooms=2,
            bathrooms=2,
            build_area=95 + i * 3,
            days_on_market=40,
        )
        for i in range(5)
    ]


def sample_amenities(count: int = 6) -> list[Amenity]:
    kinds = ["school", "transport", "shopping", "healthcare", "restaurant", "park"]
    return [
        Amenity(name=f"Amenity {i}", type=kinds[i % len(kinds)], distance=100.0 * (i + 1))
        for i in range(count)
    ]


def sample_market_data() -> MarketData:
    return MarketData(
        average_price=420_000,
        median_price=400_000,
        average_price_per_m2=4_100,
        total_comparables=120,
        market_trend=MarketTrend.UP,
        data_quality=DataQuality.HIGH,
        data_source="registry",
    )


# ---------------------------------------------------------------------------
# Fake providers
# ---------------------------------------------------------------------------


class FakeProvider(UnconfiguredProvider):
    """Scriptable provider covering every collaborator interface.

    ``raises`` maps a method name to an exception raised on every call;
    ``delays`` maps a method name to seconds slept before answering.
    Every call is recorded in ``calls`` as ``(method, args)``.
    """

    def __init__(
        self,
        *,
        coordinates: Coordinates | None = MARBELLA_COORDS,
        city_coordinates: Coordinates | None = CITY_COORDS,
        verification: LocationVerification | None = None,
        amenities: list[Amenity] | None = None,
        mobility: MobilityData | None = None,
        market: MarketData | None = None,
        comparables: list[Comparable] | None = None,
        comparables_total: int | None = None,
        developments: list[Development] | None = None,
        narrative: str = "",
        summary: NarrativeSummary | None = None,
        hints: LocationHints | None = None,
        condition: ConditionAssessment | None = None,
        queries: list[str] | None = None,
        search_results: list[SearchResult] | None = None,
        raises: dict[str, BaseException] | None = None,
        delays: dict[str, float] | None = None,
    ) -> None:
        self.coordinates = coordinates
        self.city_coordinates = city_coordinates
        self.verification = verification or LocationVerification(is_valid=True, confidence=90)
        self.amenities = amenities or []
        self.mobility = mobility
        self.market = market
        self.comparables = comparables or []
        self.comparables_total = comparables_total
        self.developments = developments or []
        self.narrative = narrative
        self.summary = summary
        self.hints = hints
        self.condition = condition
        self.queries = queries or []
        self.search_results = search_results or []
        self.raises = raises or {}
        self.delays = delays or {}
        self.calls: list[tuple[str, tuple[Any, ...]]] = []
        self.learning_calls: list[str] = []

    async def _enter(self, method: str, *args: Any) -> None:
        self.calls.append((method, args))
        if method in self.delays:
            await asyncio.sleep(self.delays[method])
        if method in self.raises:
            raise self.raises[method]

    def called(self, method: str) -> list[tuple[Any, ...]]:
        return [args for name, args in self.calls if name == method]

    async def geocode(self, address: str) -> Coordinates | None:
        await self._enter("geocode", address)
        if address.endswith(", Spain"):
            return self.city_coordinates
        return self.coordinates

    async def verify_location(
        self, coordinates: Coordinates, address: str, city: str, province: str
    ) -> LocationVerification:
        await self._enter("verify_location", coordinates, address, city, province)
        return self.verification

    async def nearby_amenities(self, coordinates: Coordinates) -> list[Amenity]:
        await self._enter("nearby_amenities", coordinates)
        return list(self.amenities)

    async def mobility_data(self, coordinates: Coordinates, address: str) -> MobilityData | None:
        await self._enter("mobility_data", coordinates, address)
        return self.mobility

    async def market_data(self, prop: PropertyDescriptor) -> MarketData | None:
        await self._enter("market_data", prop)
        return self.market

    async def comparable_listings(self, prop: PropertyDescriptor) -> ComparableResult:
        await self._enter("comparable_listings", prop)
        total = self.comparables_total
        if total is None:
            total = len(self.comparables)
        return ComparableResult(comparables=tuple(self.comparables), total_found=total)

    async def future_developments(
        self, address: str, prop: PropertyDescriptor
    ) -> list[Development]:
        await self._enter("future_developments", address, prop)
        return list(self.developments)

    async def neighborhood_narrative(self, address: str, city: str, province: str) -> str:
        await self._enter("neighborhood_narrative", address, city, province)
        return self.narrative

    async def generate_summary(
        self,
        prop: PropertyDescriptor,
        bundle: EnrichmentBundle,
        valuation: ValuationEstimate,
    ) -> NarrativeSummary | None:
        await self._enter("generate_summary", prop, bundle, valuation)
        return self.summary

    async def analyze_location_description(self, prop: PropertyDescriptor) -> LocationHints | None:
        await self._enter("analyze_location_description", prop)
        return self.hints

    async def analyze_condition_and_style(
        self, prop: PropertyDescriptor
    ) -> ConditionAssessment | None:
        await self._enter("analyze_condition_and_style", prop)
        return self.condition

    async def generate_search_queries(
        self, prop: PropertyDescriptor, report: CMAReport, max_queries: int
    ) -> list[str]:
        await self._enter("generate_search_queries", prop, report, max_queries)
        return list(self.queries)

    async def search_web(self, query: str, max_results: int = 5) -> list[SearchResult]:
        await self._enter("search_web", query, max_results)
        return list(self.search_results)

    async def record_learning(
        self,
        prop: PropertyDescriptor,
        report: CMAReport,
        comparables: list[Comparable],
        session_id: str,
        quality_score: int,
    ) -> None:
        await self._enter("record_learning", prop, report, comparables, session_id, quality_score)
        self.learning_calls.append(session_id)


def providers_from(fake: FakeProvider) -> Providers:
    """Use one fake for every collaborator slot."""
    return Providers(
        geocoder=fake,
        verifier=fake,
        amenities=fake,
        mobility=fake,
        market=fake,
        comparables=fake,
        developments=fake,
        narrative=fake,
        summarizer=fake,
        analyzer=fake,
        search=fake,
        learning=fake,
    )


@pytest.fixture
def rich_provider() -> FakeProvider:
    """A provider returning realistic data for every call."""
    return FakeProvider(
        amenities=sample_amenities(12),
        mobility=MobilityData(walking_score=78, public_transport_score=60, summary="Walkable"),
        market=sample_market_data(),
        comparables=sample_comparables(),
        comparables_total=42,
        developments=[
            Development(title="New metro line", impact=DevelopmentImpact.POSITIVE),
        ],
        narrative="A quiet residential neighbourhood close to the beach. " * 4,
        summary=NarrativeSummary(executive_summary="AI written summary"),
    )


@pytest.fixture
def make_provider() -> Callable[..., FakeProvider]:
    return FakeProvider


@pytest.fixture
def make_providers() -> Callable[[FakeProvider], Providers]:
    return providers_from


@pytest.fixture
def comparables() -> list[Comparable]:
    return sample_comparables()


@pytest.fixture
def amenities() -> list[Amenity]:
    return sample_amenities(12)


@pytest.fixture
def market_data() -> MarketData:
    return sample_market_data()
