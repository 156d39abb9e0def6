"""Null collaborator used when no real provider is configured."""

from cma_analyst.logging import get_logger
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

logger = get_logger(__name__)


class UnconfiguredProvider:
    """Satisfies every provider interface with empty results."""

    async def geocode(self, address: str) -> Coordinates | None:
        logger.debug("provider_unconfigured", operation="geocode")
        return None

    async def verify_location(
        self, coordinates: Coordinates, address: str, city: str, province: str
    ) -> LocationVerification:
        return LocationVerification(
            is_valid=True, confidence=0, reason="No location verifier configured"
        )

    async def nearby_amenities(self, coordinates: Coordinates) -> list[Amenity]:
        return []

    async def mobility_data(
        self, coordinates: Coordinates, address: str
    ) -> MobilityData | None:
        return None

    async def market_data(self, prop: PropertyDescriptor) -> MarketData | None:
        logger.debug("provider_unconfigured", operation="market_data")
        return None

    async def comparable_listings(self, prop: PropertyDescriptor) -> ComparableResult:
        logger.debug("provider_unconfigured", operation="comparable_listings")
        return ComparableResult()

    async def future_developments(
        self, address: str, prop: PropertyDescriptor
    ) -> list[Development]:
        return []

    async def neighborhood_narrative(self, address: str, city: str, province: str) -> str:
        return ""

    async def generate_summary(
        self,
        prop: PropertyDescriptor,
        bundle: EnrichmentBundle,
        valuation: ValuationEstimate,
    ) -> NarrativeSummary | None:
        return None

    async def analyze_location_description(
        self, prop: PropertyDescriptor
    ) -> LocationHints | None:
        return None

    async def analyze_condition_and_style(
        self, prop: PropertyDescriptor
    ) -> ConditionAssessment | None:
        return None

    async def generate_search_queries(
        self, prop: PropertyDescriptor, report: CMAReport, max_queries: int
    ) -> list[str]:
        return []

    async def search_web(self, query: str, max_results: int = 5) -> list[SearchResult]:
        return []

    async def record_learning(
        self,
        prop: PropertyDescriptor,
        report: CMAReport,
        comparables: list[Comparable],
        session_id: str,
        quality_score: int,
    ) -> None:
        return None
