"""External collaborators and reference adapters."""

from cma_analyst.providers.anthropic_ai import ClaudePropertyAI
from cma_analyst.providers.base import (
    AmenitiesProvider,
    ComparablesProvider,
    DevelopmentsProvider,
    Geocoder,
    LearningUpdater,
    LocationVerifier,
    MarketDataProvider,
    MobilityProvider,
    NarrativeProvider,
    PropertyAnalyzer,
    Providers,
    SummaryGenerator,
    WebSearch,
)
from cma_analyst.providers.tavily import TavilySearchClient
from cma_analyst.providers.unconfigured import UnconfiguredProvider

__all__ = [
    "AmenitiesProvider",
    "ClaudePropertyAI",
    "ComparablesProvider",
    "DevelopmentsProvider",
    "Geocoder",
    "LearningUpdater",
    "LocationVerifier",
    "MarketDataProvider",
    "MobilityProvider",
    "NarrativeProvider",
    "PropertyAnalyzer",
    "Providers",
    "SummaryGenerator",
    "TavilySearchClient",
    "UnconfiguredProvider",
    "WebSearch",
]
