"""Valuation and report models."""

from datetime import UTC, datetime
from enum import StrEnum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from cma_analyst.models.core import (
    Amenity,
    Comparable,
    Coordinates,
    DataQuality,
    Development,
    MarketData,
    MarketTrend,
    MobilityData,
    PropertyDescriptor,
)


class Adjustment(BaseModel):
    """One signed adjustment applied to the base valuation."""

    model_config = ConfigDict(frozen=True)

    factor: str
    signed_percent: float = Field(description="e.g. 0.05 for +5%")
    amount: int = Field(default=0, description="Adjustment in EUR against the base value")
    reasoning: str = ""


class ValuationEstimate(BaseModel):
    model_config = ConfigDict(frozen=True)

    low: int = Field(ge=0)
    estimated: int = Field(ge=0)
    high: int = Field(ge=0)
    confidence: int = Field(ge=0, le=100)
    methodology: str = ""
    adjustments: tuple[Adjustment, ...] = ()

    @model_validator(mode="after")
    def check_ordering(self) -> "ValuationEstimate":
        if not self.low <= self.estimated <= self.high:
            raise ValueError(
                f"Valuation range out of order: {self.low} / {self.estimated} / {self.high}"
            )
        return self


class PricingStatus(StrEnum):
    OVERPRICED = "overpriced"
    UNDERPRICED = "underpriced"
    FAIRLY_PRICED = "fairly_priced"


class Urgency(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class AskingPriceAssessment(BaseModel):
    """Verdict on an asking price relative to the valuation estimate."""

    model_config = ConfigDict(frozen=True)

    status: PricingStatus
    difference_percent: float = Field(description="(asking - estimated) / estimated * 100")
    urgency: Urgency
    recommendation: str


class NarrativeSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    executive_summary: str = ""
    investment_recommendation: str = ""
    price_range: str = ""
    value_forecast: str = ""
    pros_and_cons: str = ""
    market_comparison: str = ""
    amenities_summary: str = ""
    location_overview: str = ""
    lifestyle_assessment: str = ""
    property_condition: str = ""
    architectural_analysis: str = ""
    market_timing: str = ""
    walkability_insights: str = ""
    development_impact: str = ""
    comparable_insights: str = ""
    investment_timing: str = ""
    risk_assessment: str = ""


class MarketTrends(BaseModel):
    model_config = ConfigDict(frozen=True)

    average_price: float = Field(default=0, ge=0)
    median_price: float = Field(default=0, ge=0)
    average_price_per_m2: float = Field(default=0, ge=0)
    days_on_market: int = Field(default=0, ge=0)
    trend: MarketTrend = MarketTrend.STABLE
    inventory: int = Field(default=0, ge=0)
    price_change_6m: float = 0.0
    price_change_12m: float = 0.0
    seasonal_trends: str = ""
    data_source: str = "web_research"
    data_quality: DataQuality = DataQuality.LOW


class RentalReport(BaseModel):
    """Yield figures for a property offered for rent."""

    model_config = ConfigDict(frozen=True)

    rental_type: Literal["long-term", "short-term"]
    occupancy_rate: float = Field(ge=0, le=1)
    annual_income: int = Field(ge=0)
    annual_costs: int = Field(ge=0)
    gross_yield: float | None = Field(default=None, description="Percent of the asking or estimated price")
    net_yield: float | None = Field(default=None, description="Percent of the asking or estimated price")


class CMAReport(BaseModel):
    """The assembled comparative market analysis."""

    model_config = ConfigDict(frozen=True)

    property: PropertyDescriptor
    summary: NarrativeSummary
    key_features: tuple[str, ...] = ()
    market_trends: MarketTrends
    market_data: MarketData | None = None
    neighborhood_insights: str = ""
    comparables: tuple[Comparable, ...] = ()
    comparables_total: int = Field(default=0, ge=0)
    amenities: tuple[Amenity, ...] = ()
    developments: tuple[Development, ...] = ()
    mobility: MobilityData | None = None
    valuation: ValuationEstimate
    asking_price_assessment: AskingPriceAssessment | None = None
    rental_report: RentalReport | None = None
    coordinates: Coordinates | None = None
    research_insights: tuple[str, ...] = ()
    report_date: datetime = Field(default_factory=lambda: datetime.now(UTC))
