"""Data models for the analysis pipeline."""

from cma_analyst.models.core import (
    Amenity,
    Comparable,
    ComparableResult,
    ConditionAssessment,
    Coordinates,
    DataQuality,
    Development,
    DevelopmentImpact,
    EnrichmentBundle,
    HistoricalPrice,
    LocationHints,
    LocationVerification,
    MarketData,
    MarketTrend,
    MobilityData,
    PropertyDescriptor,
    SearchResult,
)
from cma_analyst.models.deepening import (
    DeepeningFeedback,
    DeepeningLevel,
    DeepeningRecord,
    DeepeningStats,
    DeepeningStrategy,
    PropertyAnalysisCount,
)
from cma_analyst.models.report import (
    Adjustment,
    AskingPriceAssessment,
    CMAReport,
    MarketTrends,
    NarrativeSummary,
    PricingStatus,
    RentalReport,
    Urgency,
    ValuationEstimate,
)
from cma_analyst.models.session import (
    TOTAL_STEPS,
    AnalysisResult,
    AnalysisSession,
    SessionStatus,
    StepRecord,
    StepStatus,
)

__all__ = [
    "TOTAL_STEPS",
    "Adjustment",
    "Amenity",
    "AnalysisResult",
    "AnalysisSession",
    "AskingPriceAssessment",
    "CMAReport",
    "Comparable",
    "ComparableResult",
    "ConditionAssessment",
    "Coordinates",
    "DataQuality",
    "DeepeningFeedback",
    "DeepeningLevel",
    "DeepeningRecord",
    "DeepeningStats",
    "DeepeningStrategy",
    "Development",
    "DevelopmentImpact",
    "EnrichmentBundle",
    "HistoricalPrice",
    "LocationHints",
    "LocationVerification",
    "MarketData",
    "MarketTrend",
    "MarketTrends",
    "MobilityData",
    "NarrativeSummary",
    "PricingStatus",
    "PropertyAnalysisCount",
    "PropertyDescriptor",
    "RentalReport",
    "SearchResult",
    "SessionStatus",
    "StepRecord",
    "StepStatus",
    "Urgency",
    "ValuationEstimate",
]
