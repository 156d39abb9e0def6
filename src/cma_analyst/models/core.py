"""Property descriptor and enrichment data models."""

from datetime import datetime
from enum import StrEnum
from typing import Final, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Property types valued on plot size rather than build area
PLOT_VALUED_TYPES: Final = frozenset({"villa"})

# Upper bounds for submitted figures; larger values are data-entry errors
MAX_AREA_M2: Final = 10_000_000
MAX_PRICE_EUR: Final = 1_000_000_000


class PropertyDescriptor(BaseModel):
    """A property submitted for analysis.

    Immutable as submitted. The pipeline works on an enhanced copy
    (``model_copy(update=...)``) that picks up AI-inferred condition and style.
    """

    model_config = ConfigDict(frozen=True, allow_inf_nan=False)

    address: str = ""
    city: str = ""
    province: str = ""
    property_type: str = "Apartment"
    bedrooms: int = Field(default=0, ge=0)
    bathrooms: int = Field(default=0, ge=0)
    build_area: float | None = Field(
        default=None, ge=0, le=MAX_AREA_M2, description="Built area in m²"
    )
    plot_area: float | None = Field(
        default=None, ge=0, le=MAX_AREA_M2, description="Plot area in m²"
    )
    terrace_area: float | None = Field(
        default=None, ge=0, le=MAX_AREA_M2, description="Terrace area in m²"
    )
    price: int | None = Field(
        default=None, ge=0, le=MAX_PRICE_EUR, description="Asking price in EUR"
    )
    features: tuple[str, ...] = ()
    description: str | None = None
    urbanization: str | None = None
    suburb: str | None = None
    year_built: int | None = Field(default=None, ge=1000, le=2100)
    condition: str | None = None
    architectural_style: str | None = None
    user_context: str | None = None

    # Rental terms
    monthly_price: int | None = Field(default=None, ge=0, le=MAX_PRICE_EUR)
    weekly_price_from: int | None = Field(default=None, ge=0, le=MAX_PRICE_EUR)
    weekly_price_to: int | None = Field(default=None, ge=0, le=MAX_PRICE_EUR)
    is_short_term: bool = False
    is_long_term: bool = False
    community_fees: int | None = Field(default=None, ge=0, description="Monthly community fees")
    property_tax: int | None = Field(default=None, ge=0, description="Annual property tax")
    rental_commission: int | None = Field(default=None, ge=0)

    id: str | None = None
    reference: str | None = None

    @field_validator("address", "city", "province", "property_type")
    @classmethod
    def strip_text(cls, v: str) -> str:
        """Collapse surrounding whitespace on identifying text fields."""
        return " ".join(v.split())

    @property
    def full_address(self) -> str:
        return f"{self.address}, {self.city}, {self.province}"

    @property
    def city_address(self) -> str:
        """City-level query used when the full address can't be trusted."""
        return f"{self.city}, {self.province}, Spain"

    @property
    def is_rental(self) -> bool:
        context = (self.user_context or "").lower()
        return bool(
            self.is_short_term
            or self.is_long_term
            or self.monthly_price
            or self.weekly_price_from
            or "rent" in context
        )

    @property
    def total_area(self) -> float:
        return (self.build_area or 0) + (self.plot_area or 0) + (self.terrace_area or 0)

    def relevant_area(self) -> tuple[float, Literal["plot", "build", "total"]]:
        """Area that best represents this property for pricing.

        Villas are judged on plot size, everything else on build area; falls
        back to the sum of known areas when the preferred one is missing.
        """
        if self.property_type.lower() in PLOT_VALUED_TYPES:
            area, kind = self.plot_area or 0, "plot"
        else:
            area, kind = self.build_area or 0, "build"
        if area:
            return area, kind  # type: ignore[return-value]
        return self.total_area, "total"


class Coordinates(BaseModel):
    model_config = ConfigDict(frozen=True)

    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)


class LocationVerification(BaseModel):
    """Outcome of cross-checking geocoded coordinates against the address."""

    model_config = ConfigDict(frozen=True)

    is_valid: bool
    confidence: int = Field(default=0, ge=0, le=100)
    reason: str = ""
    verified_address: str | None = None


class LocationHints(BaseModel):
    """Finer-grained location details extracted from listing free text."""

    model_config = ConfigDict(frozen=True)

    specific_streets: tuple[str, ...] = ()
    neighbourhoods: tuple[str, ...] = ()
    urbanizations: tuple[str, ...] = ()
    landmarks: tuple[str, ...] = ()
    enhanced_address: str = ""
    search_queries: tuple[str, ...] = ()


class ConditionAssessment(BaseModel):
    model_config = ConfigDict(frozen=True)

    condition: str | None = None
    architectural_style: str | None = None


class Amenity(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    type: str = Field(description="school, transport, shopping, healthcare, ...")
    distance: float = Field(default=0, ge=0, description="Distance in metres")
    rating: float | None = Field(default=None, ge=0, le=5)
    description: str = ""


class MobilityData(BaseModel):
    model_config = ConfigDict(frozen=True)

    walking_score: int = Field(default=0, ge=0, le=100)
    cycling_score: int | None = Field(default=None, ge=0, le=100)
    public_transport_score: int | None = Field(default=None, ge=0, le=100)
    driving_score: int | None = Field(default=None, ge=0, le=100)
    summary: str = ""


class MarketTrend(StrEnum):
    UP = "up"
    DOWN = "down"
    STABLE = "stable"


class DataQuality(StrEnum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class HistoricalPrice(BaseModel):
    model_config = ConfigDict(frozen=True, allow_inf_nan=False)

    year: int
    price: float = Field(ge=0, description="Average price per m² for the year")


class MarketData(BaseModel):
    """Area-level market statistics from the market data provider."""

    model_config = ConfigDict(frozen=True, allow_inf_nan=False)

    average_price: float = Field(default=0, ge=0)
    median_price: float = Field(default=0, ge=0)
    average_price_per_m2: float = Field(default=0, ge=0, le=MAX_PRICE_EUR)
    total_comparables: int = Field(default=0, ge=0)
    market_trend: MarketTrend = MarketTrend.STABLE
    data_quality: DataQuality = DataQuality.LOW
    data_source: str = "web_research"
    historical_data: tuple[HistoricalPrice, ...] = ()
    last_updated: datetime | None = None


class Comparable(BaseModel):
    """A comparable listing returned by the comparables provider."""

    model_config = ConfigDict(frozen=True, allow_inf_nan=False)

    address: str
    price: int = Field(ge=0, le=MAX_PRICE_EUR)
    bedrooms: int = Field(default=0, ge=0)
    bathrooms: int = Field(default=0, ge=0)
    build_area: float = Field(default=0, ge=0, le=MAX_AREA_M2, description="Built area in m²")
    property_type: str = ""
    days_on_market: int = Field(default=0, ge=0)
    features: tuple[str, ...] = ()
    url: str | None = None

    @property
    def price_per_m2(self) -> float | None:
        if self.build_area <= 0:
            return None
        return self.price / self.build_area


class ComparableResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    comparables: tuple[Comparable, ...] = ()
    total_found: int = Field(default=0, ge=0)


class DevelopmentImpact(StrEnum):
    POSITIVE = "positive"
    NEGATIVE = "negative"
    NEUTRAL = "neutral"


class Development(BaseModel):
    """A planned development or urban-planning change near the property."""

    model_config = ConfigDict(frozen=True)

    title: str
    description: str = ""
    type: str = "infrastructure"
    status: str = "planned"
    impact: DevelopmentImpact = DevelopmentImpact.NEUTRAL
    expected_completion: str | None = None


class SearchResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    title: str = ""
    url: str = ""
    content: str = ""
    score: float = 0.0


class EnrichmentBundle(BaseModel):
    """Everything the providers returned for one session."""

    coordinates: Coordinates | None = None
    location_hints: LocationHints | None = None
    amenities: list[Amenity] = Field(default_factory=list)
    mobility: MobilityData | None = None
    market_data: MarketData | None = None
    comparables: list[Comparable] = Field(default_factory=list)
    comparables_total: int = 0
    developments: list[Development] = Field(default_factory=list)
    neighborhood_narrative: str = ""
