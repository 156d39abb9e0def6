"""Collaborator interfaces consumed by the analysis pipeline."""

from dataclasses import dataclass, field
from typing import Protocol

from cma_analyst.models import (
    Amenity,
    CMAReport,
    Comparable,
    ComparableResult,
    ConditionAssessment,
    Coordinates,
    Development,
    EnrichmentBundle,
    LocationHints,
    LocationVerification,
    MarketData,
    MobilityData,
    NarrativeSummary,
    PropertyDescriptor,
    SearchResult,
    ValuationEstimate,
)
from cma_analyst.providers.unconfigured import UnconfiguredProvider


class Geocoder(Protocol):
    async def geocode(self, address: str) -> Coordinates | None: ...


class LocationVerifier(Protocol):
    async def verify_location(
        self, coordinates: Coordinates, address: str, city: str, province: str
    ) -> LocationVerification: ...


class AmenitiesProvider(Protocol):
    async def nearby_amenities(self, coordinates: Coordinates) -> list[Amenity]: ...


class MobilityProvider(Protocol):
    async def mobility_data(
        self, coordinates: Coordinates, address: str
    ) -> MobilityData | None: ...


class MarketDataProvider(Protocol):
    async def market_data(self, prop: PropertyDescriptor) -> MarketData | None: ...


class ComparablesProvider(Protocol):
    async def comparable_listings(self, prop: PropertyDescriptor) -> ComparableResult: ...


class DevelopmentsProvider(Protocol):
    async def future_developments(
        self, address: str, prop: PropertyDescriptor
    ) -> list[Development]: ...


class NarrativeProvider(Protocol):
    async def neighborhood_narrative(self, address: str, city: str, province: str) -> str: ...


class SummaryGenerator(Protocol):
    async def generate_summary(
        self,
        prop: PropertyDescriptor,
        bundle: EnrichmentBundle,
        valuation: ValuationEstimate,
    ) -> NarrativeSummary | None: ...


class PropertyAnalyzer(Protocol):
    """AI analysis of listing free text."""

    async def analyze_location_description(
        self, prop: PropertyDescriptor
    ) -> LocationHints | None: ...

    async def analyze_condition_and_style(
        self, prop: PropertyDescriptor
    ) -> ConditionAssessment | None: ...

    async def generate_search_queries(
        self, prop: PropertyDescriptor, report: CMAReport, max_queries: int
    ) -> list[str]: ...


class WebSearch(Protocol):
    async def search_web(self, query: str, max_results: int = 5) -> list[SearchResult]: ...


class LearningUpdater(Protocol):
    async def record_learning(
        self,
        prop: PropertyDescriptor,
        report: CMAReport,
        comparables: list[Comparable],
        session_id: str,
        quality_score: int,
    ) -> None: ...


def _unconfigured() -> UnconfiguredProvider:
    return UnconfiguredProvider()


@dataclass
class Providers:
    """The collaborators the pipeline talks to.

    Anything not supplied falls back to an ``UnconfiguredProvider``, which
    returns empty results.
    """

    geocoder: Geocoder = field(default_factory=_unconfigured)
    verifier: LocationVerifier = field(default_factory=_unconfigured)
    amenities: AmenitiesProvider = field(default_factory=_unconfigured)
    mobility: MobilityProvider = field(default_factory=_unconfigured)
    market: MarketDataProvider = field(default_factory=_unconfigured)
    comparables: ComparablesProvider = field(default_factory=_unconfigured)
    developments: DevelopmentsProvider = field(default_factory=_unconfigured)
    narrative: NarrativeProvider = field(default_factory=_unconfigured)
    summarizer: SummaryGenerator = field(default_factory=_unconfigured)
    analyzer: PropertyAnalyzer = field(default_factory=_unconfigured)
    search: WebSearch = field(default_factory=_unconfigured)
    learning: LearningUpdater = field(default_factory=_unconfigured)
