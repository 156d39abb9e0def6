"""Market trends and key features for the assembled report."""

import statistics
from collections.abc import Sequence
from typing import Final

from cma_analyst.models import (
    Amenity,
    Comparable,
    MarketData,
    MarketTrend,
    MarketTrends,
    PropertyDescriptor,
)

# Local trend from average comparable days on market
FAST_MARKET_DAYS: Final = 30
SLOW_MARKET_DAYS: Final = 60

# (6-month, 12-month) price change estimates when history is too short
ESTIMATED_PRICE_CHANGES: Final[dict[MarketTrend, tuple[float, float]]] = {
    MarketTrend.UP: (3.2, 8.5),
    MarketTrend.DOWN: (-1.5, -3.2),
    MarketTrend.STABLE: (0.8, 2.1),
}

AREA_LABELS: Final = {"plot": "plot", "build": "build area", "total": "total area"}


def local_trend(days_on_market: int) -> MarketTrend:
    if days_on_market <= 0:
        return MarketTrend.STABLE
    if days_on_market < FAST_MARKET_DAYS:
        return MarketTrend.UP
    if days_on_market > SLOW_MARKET_DAYS:
        return MarketTrend.DOWN
    return MarketTrend.STABLE


def derive_market_trends(
    market_data: MarketData | None,
    comparables: Sequence[Comparable],
    comparables_total: int,
    *,
    current_year: int,
) -> MarketTrends:
    """Build the report's market trends section.

    The trend direction comes from how fast local comparables sell, not the
    regional market data. Price changes come from market-data history when
    at least two years exist, otherwise from fixed estimates for the trend.
    """
    days = round(statistics.fmean(c.days_on_market for c in comparables)) if comparables else 0
    trend = local_trend(days)

    if comparables:
        seasonal = (
            f"Local market shows {trend} trend based on {len(comparables)} properties "
            f"analyzed ({days} days avg)"
        )
    else:
        seasonal = (
            "No comparable properties found for local market trend analysis. "
            "Regional market data may not reflect local conditions."
        )

    history = sorted(market_data.historical_data, key=lambda h: h.year) if market_data else []
    change_6m, change_12m = ESTIMATED_PRICE_CHANGES[trend]
    if len(history) >= 2:
        by_year = {h.year: h.price for h in history}
        current = by_year.get(current_year, history[-1].price)
        current_year_used = current_year if current_year in by_year else history[-1].year
        previous = by_year.get(current_year_used - 1)
        if previous:
            change_12m = round((current - previous) / previous * 100, 2)
        else:
            change_12m = 0.0
        change_6m = round(change_12m / 2, 2)
        if change_12m > 2:
            direction = "strong growth"
        elif change_12m < -2:
            direction = "declining"
        else:
            direction = "stable"
        seasonal = f"Real market data from {len(history)} years shows {direction} trend"
    elif comparables:
        seasonal += " (estimated - historical data will improve accuracy over time)"
    else:
        seasonal += " Limited local data available for accurate trend analysis."

    if market_data is None:
        return MarketTrends(
            days_on_market=days,
            trend=trend,
            price_change_6m=change_6m,
            price_change_12m=change_12m,
            seasonal_trends=seasonal,
        )

    price_per_m2 = round(market_data.average_price_per_m2)
    if price_per_m2 == 0 and history:
        price_per_m2 = round(history[-1].price)
    return MarketTrends(
        average_price=market_data.average_price,
        median_price=market_data.median_price,
        average_price_per_m2=price_per_m2,
        days_on_market=days,
        trend=trend,
        inventory=comparables_total or len(comparables),
        price_change_6m=change_6m,
        price_change_12m=change_12m,
        seasonal_trends=seasonal,
        data_source=market_data.data_source,
        data_quality=market_data.data_quality,
    )


def _area_text(area: float) -> str:
    return f"{area:,.0f} m²" if area > 0 else "area not specified"


def _money(amount: int) -> str:
    return f"€{amount:,}"


def key_features(prop: PropertyDescriptor, amenities: Sequence[Amenity]) -> list[str]:
    area, kind = prop.relevant_area()
    features = [
        f"{_area_text(area)} {AREA_LABELS[kind]}",
        f"{prop.bedrooms} bedrooms and {prop.bathrooms} bathrooms",
    ]
    if prop.build_area:
        features.append(f"{prop.build_area:g} m² build area")
    if prop.plot_area:
        features.append(f"{prop.plot_area:g} m² plot area")
    if prop.terrace_area:
        features.append(f"{prop.terrace_area:g} m² terrace space")
    if prop.condition:
        features.append(f"Condition: {prop.condition}")
    if prop.architectural_style:
        features.append(f"Style: {prop.architectural_style}")

    if prop.is_rental:
        if prop.monthly_price:
            features.append(f"Monthly rent: {_money(prop.monthly_price)}")
        if prop.weekly_price_from:
            weekly = f"Weekly rent: {_money(prop.weekly_price_from)}"
            if prop.weekly_price_to and prop.weekly_price_to != prop.weekly_price_from:
                weekly += f" - {_money(prop.weekly_price_to)}"
            features.append(weekly)
        if prop.community_fees:
            features.append(f"Community fees: {_money(prop.community_fees)}/month")

    features.extend(prop.features[:5])

    nearest = sorted(amenities, key=lambda a: a.distance)[:3]
    if nearest:
        features.append("Located near " + ", ".join(a.name for a in nearest))
    else:
        features.append("Nearby amenities data not available")
    return features
