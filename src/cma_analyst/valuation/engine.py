"""Valuation aggregation engine.

Turns comparables, market data, amenities and planned developments into a
single ``ValuationEstimate``:

1. BASE VALUE - weighted comparable price per m² times the subject's area,
   falling back to the market-data average, otherwise 0
2. ADJUST - named signed-percentage adjustments, each with its reasoning
3. CONFIDENCE - grows with comparable count, market data and amenity coverage
4. RANGE - widens as confidence drops

The engine is pure: the reference date used for property age is injected,
so identical inputs always give identical output.
"""

import statistics
import unicodedata
from dataclasses import dataclass
from datetime import date
from typing import Final

from cma_analyst.logging import get_logger
from cma_analyst.models import (
    Adjustment,
    Amenity,
    AskingPriceAssessment,
    Comparable,
    DataQuality,
    Development,
    DevelopmentImpact,
    MarketData,
    MarketTrend,
    PricingStatus,
    PropertyDescriptor,
    Urgency,
    ValuationEstimate,
)

logger = get_logger(__name__)

# Comparable data-quality weights by price per m²
EXTREME_HIGH_PPM2: Final = 20_000
VERY_HIGH_PPM2: Final = 15_000
HIGH_PPM2: Final = 12_000
EXTREME_LOW_PPM2: Final = 1_000
DUPLICATE_PRICE_DELTA: Final = 1_000
DUPLICATE_AREA_DELTA: Final = 10
DUPLICATE_WEIGHT: Final = 0.7

CONDITION_IMPACTS: Final[dict[str, float]] = {
    "excellent": 0.15,
    "good": 0.05,
    "fair": 0.0,
    "needs work": -0.10,
    "renovation project": -0.15,
    "rebuild": -0.20,
}
CONDITION_IMPACT_CAP: Final = 0.20

PREMIUM_FEATURES: Final = frozenset(
    {"Private Pool", "Sea Views", "Mountain Views", "Garden", "Security System"}
)
STANDARD_FEATURES: Final = frozenset({"Air Conditioning", "Fitted Kitchen", "Parking", "Terrace"})

TYPE_ADJUSTMENTS: Final[dict[str, float]] = {
    "villa": 0.15,
    "apartment": -0.05,
    "townhouse": 0.05,
    "penthouse": 0.20,
    "duplex": 0.10,
}

# Used when there are no comparables to average against
DEFAULT_BEDROOMS: Final = 3
DEFAULT_BATHROOMS: Final = 2

PREMIUM_AREAS: Final = (
    "puerto banus",
    "nueva andalucia",
    "golden mile",
    "playas del duque",
    "sierra blanca",
    "marina banus",
    "banus",
)
PREMIUM_LOCATION_MULTIPLIER: Final = 0.3
PREMIUM_LOCATION_CAP: Final = 0.05
LOCATION_CAP: Final = 0.10

# The combined adjustment never moves the base value by more than this
TOTAL_ADJUSTMENT_CAP: Final = 0.5

# Maximum plausible price per m² by city and property type
_MAX_PPM2: Final[dict[str, dict[str, int]]] = {
    "marbella": {"apartment": 12000, "villa": 15000, "penthouse": 18000, "townhouse": 13000, "default": 12000},
    "puerto banus": {"apartment": 12000, "villa": 15000, "penthouse": 18000, "townhouse": 13000, "default": 12000},
    "nueva andalucia": {"apartment": 10000, "villa": 13000, "penthouse": 15000, "townhouse": 11000, "default": 10000},
    "san pedro alcantara": {"apartment": 11000, "villa": 14000, "penthouse": 16000, "townhouse": 12000, "default": 11000},
    "benahavis": {"apartment": 10000, "villa": 13000, "penthouse": 15000, "townhouse": 11000, "default": 10000},
    "estepona": {"apartment": 9000, "villa": 12000, "penthouse": 14000, "townhouse": 10000, "default": 9000},
    "fuengirola": {"apartment": 8000, "villa": 11000, "penthouse": 13000, "townhouse": 9000, "default": 8000},
    "benalmadena": {"apartment": 8000, "villa": 11000, "penthouse": 13000, "townhouse": 9000, "default": 8000},
    "torremolinos": {"apartment": 7000, "villa": 10000, "penthouse": 12000, "townhouse": 8000, "default": 7000},
    "mijas": {"apartment": 8000, "villa": 11000, "penthouse": 13000, "townhouse": 9000, "default": 8000},
    "velez malaga": {"apartment": 5000, "villa": 8000, "penthouse": 10000, "townhouse": 6000, "default": 5000},
    "malaga": {"apartment": 6000, "villa": 9000, "penthouse": 11000, "townhouse": 7000, "default": 6000},
    "sevilla": {"apartment": 5000, "villa": 8000, "penthouse": 10000, "townhouse": 6000, "default": 5000},
    "granada": {"apartment": 4000, "villa": 7000, "penthouse": 9000, "townhouse": 5000, "default": 4000},
    "cadiz": {"apartment": 4000, "villa": 7000, "penthouse": 9000, "townhouse": 5000, "default": 4000},
    "almeria": {"apartment": 3500, "villa": 6000, "penthouse": 8000, "townhouse": 4500, "default": 3500},
    "nerja": {"apartment": 6000, "villa": 9000, "penthouse": 11000, "townhouse": 7000, "default": 6000},
    "ronda": {"apartment": 4000, "villa": 7000, "penthouse": 9000, "townhouse": 5000, "default": 4000},
    "algeciras": {"apartment": 3500, "villa": 6000, "penthouse": 8000, "townhouse": 4500, "default": 3500},
}
_FALLBACK_CITY: Final = "marbella"

# Confidence scoring
BASE_CONFIDENCE: Final = 50
MAX_CONFIDENCE: Final = 95
DEGENERATE_CONFIDENCE_CAP: Final = 25

# Range half-width at zero confidence
BASE_RANGE: Final = 0.15

# Asking-price verdict thresholds (percent)
PRICING_THRESHOLD: Final = 10
HIGH_URGENCY_THRESHOLD: Final = 20
LOW_URGENCY_THRESHOLD: Final = 5


def fold(text: str) -> str:
    """Lower-case and strip accents so 'Málaga' matches 'malaga'."""
    decomposed = unicodedata.normalize("NFKD", text)
    return "".join(c for c in decomposed if not unicodedata.combining(c)).lower()


def max_reasonable_price_per_m2(city: str, property_type: str) -> int:
    """Ceiling on price per m² for a city/type; unknown cities use Marbella's table."""
    city_key = fold(city)
    table = next(
        (prices for name, prices in _MAX_PPM2.items() if name in city_key),
        _MAX_PPM2[_FALLBACK_CITY],
    )
    type_key = fold(property_type)
    return next((price for name, price in table.items() if name in type_key), table["default"])


def is_premium_location(city: str, address: str) -> bool:
    haystack = f"{fold(city)} {fold(address)}"
    return any(area in haystack for area in PREMIUM_AREAS)


@dataclass
class ConditionResult:
    condition: str
    impact: float
    reasoning: str


@dataclass
class _WeightedComparable:
    price_per_m2: float
    weight: float
    flags: list[str]


class ValuationEngine:
    """Computes a market value estimate from enrichment data."""

    def __init__(self, reference_date: date | None = None) -> None:
        """Initialize the engine.

        Args:
            reference_date: Date used to age the property (default: today).
        """
        self._reference_date = reference_date or date.today()

    def calculate_market_value(
        self,
        prop: PropertyDescriptor,
        comparables: list[Comparable],
        market_data: MarketData | None,
        amenities: list[Amenity],
        developments: list[Development],
    ) -> ValuationEstimate:
        condition = self.assess_condition(prop)
        area = prop.build_area or prop.total_area
        base_value, base_source = self._base_value(prop, area, comparables, market_data)

        if base_value <= 0:
            logger.info(
                "valuation_degenerate",
                comparables=len(comparables),
                has_market_data=market_data is not None,
                area=area,
            )
            return ValuationEstimate(
                low=0,
                estimated=0,
                high=0,
                confidence=min(
                    self._confidence(comparables, market_data, amenities, condition),
                    DEGENERATE_CONFIDENCE_CAP,
                ),
                methodology=self._degenerate_methodology(comparables, market_data, area),
            )

        adjustments = [
            self._property_adjustment(prop, comparables, condition),
            self._location_adjustment(prop, amenities),
            self._market_trend_adjustment(market_data, comparables),
            self._amenity_adjustment(amenities),
            self._development_adjustment(developments),
        ]
        adjustments = [
            adj.model_copy(update={"amount": round(base_value * adj.signed_percent)})
            for adj in adjustments
        ]
        total = sum(adj.signed_percent for adj in adjustments)
        total = max(-TOTAL_ADJUSTMENT_CAP, min(TOTAL_ADJUSTMENT_CAP, total))
        estimated = round(base_value * (1 + total))

        confidence = self._confidence(comparables, market_data, amenities, condition)
        spread = BASE_RANGE * (100 - confidence) / 100
        low, high = sorted((round(estimated * (1 - spread)), round(estimated * (1 + spread))))

        return ValuationEstimate(
            low=min(low, estimated),
            estimated=estimated,
            high=max(high, estimated),
            confidence=confidence,
            methodology=self._methodology(base_source, comparables, market_data, condition),
            adjustments=tuple(adjustments),
        )

    def assess_condition(self, prop: PropertyDescriptor) -> ConditionResult:
        """Condition from the descriptor, else inferred from age and keywords."""
        if prop.condition and fold(prop.condition) in CONDITION_IMPACTS:
            condition = fold(prop.condition)
            impact = CONDITION_IMPACTS[condition] + 0.02 * _count_features(prop, PREMIUM_FEATURES)
            impact = max(-CONDITION_IMPACT_CAP, min(CONDITION_IMPACT_CAP, impact))
            return ConditionResult(condition, impact, self._condition_reasoning(condition, prop))

        result = ConditionResult("fair", 0.0, "Condition assessment based on property characteristics")
        if prop.year_built:
            age = self._reference_date.year - prop.year_built
            if age < 5:
                result = ConditionResult("excellent", 0.10, "Very recent construction (less than 5 years old)")
            elif age < 15:
                result = ConditionResult("good", 0.05, "Relatively new construction (5-15 years old)")
            elif age < 30:
                result = ConditionResult("fair", 0.0, "Standard age for properties in this area")
            else:
                result = ConditionResult("needs work", -0.10, "Older property likely requiring updates")

        features = " ".join(prop.features).lower()
        description = (prop.description or "").lower()
        if "renovation" in features or "renovation" in description:
            result = ConditionResult("renovation project", -0.15, "Property requires renovation work")
        elif any(word in features for word in ("luxury", "new", "pristine")):
            result = ConditionResult("excellent", 0.15, "Luxury property with premium features")
        elif "well maintained" in features or "updated" in features:
            result = ConditionResult("good", 0.05, "Well-maintained property with updates")
        return result

    def _condition_reasoning(self, condition: str, prop: PropertyDescriptor) -> str:
        age = self._reference_date.year - prop.year_built if prop.year_built else None
        match condition:
            case "excellent" if age:
                return f"Excellent condition for a {age}-year-old property"
            case "excellent":
                return "Excellent condition with premium finishes"
            case "good" if age:
                return f"Good condition for a {age}-year-old property, well-maintained"
            case "good":
                return "Good condition with modern features"
            case "fair" if age:
                return f"Fair condition for a {age}-year-old property"
            case "fair":
                return "Fair condition, typical for the area"
            case "needs work" if age:
                return f"Needs work for a {age}-year-old property, updates required"
            case "needs work":
                return "Property needs updates and improvements"
            case "renovation project":
                return "Renovation project requiring significant work and investment"
            case _:
                return "Major renovation or rebuild required"

    def _base_value(
        self,
        prop: PropertyDescriptor,
        area: float,
        comparables: list[Comparable],
        market_data: MarketData | None,
    ) -> tuple[int, str]:
        if area <= 0:
            return 0, "none"

        weighted = _weight_comparables(comparables)
        if weighted:
            total_weight = sum(w.weight for w in weighted)
            price_per_m2 = sum(w.price_per_m2 * w.weight for w in weighted) / total_weight
            flagged = [w for w in weighted if w.flags]
            if flagged:
                logger.debug(
                    "comparable_quality_issues",
                    flagged=len(flagged),
                    total=len(weighted),
                )

            ceiling = max_reasonable_price_per_m2(prop.city, prop.property_type)
            if price_per_m2 > ceiling:
                reasonable = sorted(w.price_per_m2 for w in weighted if w.price_per_m2 <= ceiling)
                if reasonable:
                    median = reasonable[len(reasonable) // 2]
                    corrected = min(median * 1.2, ceiling)
                else:
                    corrected = ceiling * 0.8
                logger.info(
                    "price_per_m2_capped",
                    weighted=round(price_per_m2),
                    ceiling=ceiling,
                    corrected=round(corrected),
                )
                price_per_m2 = corrected
            return round(price_per_m2 * area), "comparables"

        if market_data is not None and market_data.average_price_per_m2 > 0:
            return round(market_data.average_price_per_m2 * area), "market_data"
        return 0, "none"

    def _property_adjustment(
        self,
        prop: PropertyDescriptor,
        comparables: list[Comparable],
        condition: ConditionResult,
    ) -> Adjustment:
        if comparables:
            avg_bedrooms = statistics.fmean(c.bedrooms for c in comparables)
            avg_bathrooms = statistics.fmean(c.bathrooms for c in comparables)
        else:
            avg_bedrooms, avg_bathrooms = DEFAULT_BEDROOMS, DEFAULT_BATHROOMS

        premium = _count_features(prop, PREMIUM_FEATURES)
        standard = _count_features(prop, STANDARD_FEATURES)
        percent = (
            condition.impact
            + (prop.bedrooms - avg_bedrooms) * 0.05
            + (prop.bathrooms - avg_bathrooms) * 0.03
            + TYPE_ADJUSTMENTS.get(fold(prop.property_type), 0.0)
            + premium * 0.03
            + standard * 0.01
        )
        reasoning = (
            f"Condition {condition.condition} ({condition.reasoning}); "
            f"{prop.bedrooms} bed / {prop.bathrooms} bath vs comparable average "
            f"{avg_bedrooms:.1f} / {avg_bathrooms:.1f}; {prop.property_type}; "
            f"{premium} premium and {standard} standard features"
        )
        return Adjustment(
            factor="Property Features & Condition",
            signed_percent=round(percent, 4),
            reasoning=reasoning,
        )

    def _location_adjustment(self, prop: PropertyDescriptor, amenities: list[Amenity]) -> Adjustment:
        premium = is_premium_location(prop.city, prop.address)
        multiplier = PREMIUM_LOCATION_MULTIPLIER if premium else 1.0
        counts = _count_types(amenities)

        percent = 0.0
        if counts.get("school", 0) >= 3:
            percent += 0.04
        elif counts.get("school", 0) >= 1:
            percent += 0.02
        if counts.get("transport", 0) >= 2:
            percent += 0.03
        elif counts.get("transport", 0) >= 1:
            percent += 0.01
        if counts.get("shopping", 0) >= 5:
            percent += 0.03
        elif counts.get("shopping", 0) >= 2:
            percent += 0.015
        if counts.get("healthcare", 0) >= 2:
            percent += 0.015
        percent = min(percent * multiplier, PREMIUM_LOCATION_CAP if premium else LOCATION_CAP)

        reasoning = (
            f"{counts.get('school', 0)} schools, {counts.get('transport', 0)} transport links, "
            f"{counts.get('shopping', 0)} shops and {counts.get('healthcare', 0)} healthcare "
            "facilities nearby"
        )
        if premium:
            reasoning += "; premium area already priced in, location premium reduced"
        return Adjustment(factor="Location Quality", signed_percent=round(percent, 4), reasoning=reasoning)

    def _market_trend_adjustment(
        self, market_data: MarketData | None, comparables: list[Comparable]
    ) -> Adjustment:
        if market_data is None:
            return Adjustment(
                factor="Market Trends",
                signed_percent=0.0,
                reasoning="No market data available",
            )

        percent = {MarketTrend.UP: 0.05, MarketTrend.DOWN: -0.05}.get(market_data.market_trend, 0.0)
        reasons = [f"Market trend {market_data.market_trend}"]
        avg_dom = statistics.fmean(c.days_on_market for c in comparables) if comparables else 0
        if avg_dom > 0:
            if avg_dom < 30:
                percent += 0.03
                reasons.append(f"fast-selling market ({avg_dom:.0f} days on market)")
            elif avg_dom > 90:
                percent -= 0.03
                reasons.append(f"slow-selling market ({avg_dom:.0f} days on market)")
        return Adjustment(factor="Market Trends", signed_percent=round(percent, 4), reasoning="; ".join(reasons))

    def _amenity_adjustment(self, amenities: list[Amenity]) -> Adjustment:
        count = len(amenities)
        if count >= 15:
            percent, quality = 0.04, "excellent"
        elif count >= 10:
            percent, quality = 0.02, "good"
        elif count >= 5:
            percent, quality = 0.01, "some"
        else:
            percent, quality = 0.0, "limited"
        return Adjustment(
            factor="Amenity Access",
            signed_percent=percent,
            reasoning=f"{quality.capitalize()} amenity access ({count} amenities found)",
        )

    def _development_adjustment(self, developments: list[Development]) -> Adjustment:
        positive = sum(1 for d in developments if d.impact == DevelopmentImpact.POSITIVE)
        negative = sum(1 for d in developments if d.impact == DevelopmentImpact.NEGATIVE)
        return Adjustment(
            factor="Future Developments",
            signed_percent=round(positive * 0.03 - negative * 0.02, 4),
            reasoning=f"{positive} positive and {negative} negative planned developments",
        )

    def _confidence(
        self,
        comparables: list[Comparable],
        market_data: MarketData | None,
        amenities: list[Amenity],
        condition: ConditionResult,
    ) -> int:
        confidence = BASE_CONFIDENCE
        count = len(comparables)
        if count >= 10:
            confidence += 25
        elif count >= 5:
            confidence += 20
        elif count >= 2:
            confidence += 15
        elif count >= 1:
            confidence += 10

        if market_data is not None:
            confidence += {DataQuality.HIGH: 15, DataQuality.MEDIUM: 10}.get(market_data.data_quality, 5)

        if len(amenities) >= 10:
            confidence += 10
        elif len(amenities) >= 5:
            confidence += 5

        if condition.condition != "fair":
            confidence += 5
        return max(0, min(MAX_CONFIDENCE, confidence))

    def _methodology(
        self,
        base_source: str,
        comparables: list[Comparable],
        market_data: MarketData | None,
        condition: ConditionResult,
    ) -> str:
        parts: list[str] = []
        if base_source == "comparables":
            parts.append(f"Valuation based on {len(comparables)} comparable properties")
        else:
            parts.append("Valuation based on area average price per m² (no usable comparables)")
        if market_data is not None:
            parts.append(f"market data analysis ({market_data.data_quality} quality)")
        parts.append(f"condition assessment: {condition.condition} ({condition.reasoning})")
        return (
            " and ".join(parts)
            + ". Includes property-specific adjustments for features, location factors and market trends."
        )

    @staticmethod
    def _degenerate_methodology(
        comparables: list[Comparable], market_data: MarketData | None, area: float
    ) -> str:
        if area <= 0:
            reason = "the property has no recorded area"
        elif comparables:
            reason = "no comparable had a usable build area and no market price per m² was available"
        else:
            reason = "no comparable sales or market price data were available"
        return f"Valuation pending: {reason}. No estimate has been made."

    def assess_asking_price(
        self,
        asking: int | None,
        estimate: ValuationEstimate,
        trend: MarketTrend | None = None,
    ) -> AskingPriceAssessment | None:
        """Compare an asking price with the estimate. None when either is missing."""
        if not asking or estimate.estimated <= 0:
            return None

        diff = (asking - estimate.estimated) / estimate.estimated * 100
        magnitude = abs(diff)
        if diff > PRICING_THRESHOLD:
            status = PricingStatus.OVERPRICED
        elif diff < -PRICING_THRESHOLD:
            status = PricingStatus.UNDERPRICED
        else:
            status = PricingStatus.FAIRLY_PRICED

        if magnitude > HIGH_URGENCY_THRESHOLD:
            urgency = Urgency.HIGH
        elif magnitude < LOW_URGENCY_THRESHOLD:
            urgency = Urgency.LOW
        else:
            urgency = Urgency.MEDIUM

        match status:
            case PricingStatus.OVERPRICED if trend == MarketTrend.DOWN:
                recommendation = (
                    f"Property is {magnitude:.1f}% overpriced in a challenging market. "
                    "A 10-15% price reduction is recommended to remain competitive."
                )
            case PricingStatus.OVERPRICED:
                recommendation = (
                    f"Property is {magnitude:.1f}% above market value. "
                    "Consider adjusting the price to align with market expectations."
                )
            case PricingStatus.UNDERPRICED if trend == MarketTrend.UP:
                recommendation = (
                    f"Property is {magnitude:.1f}% below market value in a rising market, "
                    "which represents strong upside potential."
                )
            case PricingStatus.UNDERPRICED:
                recommendation = (
                    f"Property appears {magnitude:.1f}% undervalued compared to market analysis."
                )
            case _ if trend == MarketTrend.DOWN:
                recommendation = (
                    "Property is fairly priced but market conditions are challenging; "
                    "negotiate for additional discounts."
                )
            case _:
                recommendation = "Property is fairly priced relative to market value."

        return AskingPriceAssessment(
            status=status,
            difference_percent=round(diff, 1),
            urgency=urgency,
            recommendation=recommendation,
        )


def _count_features(prop: PropertyDescriptor, names: frozenset[str]) -> int:
    return sum(1 for f in prop.features if f in names)


def _count_types(amenities: list[Amenity]) -> dict[str, int]:
    counts: dict[str, int] = {}
    for amenity in amenities:
        key = amenity.type.lower()
        counts[key] = counts.get(key, 0) + 1
    return counts


def _weight_comparables(comparables: list[Comparable]) -> list[_WeightedComparable]:
    """Weight comparables by data quality, discounting outliers and likely duplicates."""
    weighted: list[_WeightedComparable] = []
    for comp in comparables:
        ppm2 = comp.price_per_m2
        if ppm2 is None or comp.price <= 0:
            continue

        weight = 1.0
        flags: list[str] = []
        if ppm2 > EXTREME_HIGH_PPM2:
            weight *= 0.3
            flags.append("extremely_high_price")
        elif ppm2 > VERY_HIGH_PPM2:
            weight *= 0.6
            flags.append("very_high_price")
        elif ppm2 > HIGH_PPM2:
            weight *= 0.8
            flags.append("high_price")
        if ppm2 < EXTREME_LOW_PPM2:
            weight *= 0.5
            flags.append("extremely_low_price")

        if any(
            other is not comp
            and abs(other.price - comp.price) < DUPLICATE_PRICE_DELTA
            and abs(other.build_area - comp.build_area) < DUPLICATE_AREA_DELTA
            for other in comparables
        ):
            weight *= DUPLICATE_WEIGHT
            flags.append("potential_duplicate")

        weighted.append(_WeightedComparable(price_per_m2=ppm2, weight=weight, flags=flags))
    return weighted
