"""Deterministic summaries: the templated fallback and the rental report."""

import statistics
from typing import Final

from cma_analyst.models import (
    EnrichmentBundle,
    MarketTrend,
    NarrativeSummary,
    PropertyDescriptor,
    RentalReport,
    ValuationEstimate,
)

SHORT_TERM_OCCUPANCY: Final = 0.65
LONG_TERM_OCCUPANCY: Final = 1.0
WEEKS_PER_YEAR: Final = 52


def _lifestyle_band(amenity_count: int) -> str:
    if amenity_count >= 4:
        return "excellent"
    if amenity_count >= 2:
        return "good"
    return "basic"


def fallback_summary(
    prop: PropertyDescriptor,
    bundle: EnrichmentBundle,
    valuation: ValuationEstimate,
) -> NarrativeSummary:
    """Summary built only from data already collected, used when AI generation fails."""
    kind = prop.property_type.lower()
    amenity_count = len(bundle.amenities)
    trend = bundle.market_data.market_trend if bundle.market_data else None
    condition = prop.condition or "fair"
    style = prop.architectural_style or "standard"

    if valuation.estimated > 0:
        price_range = (
            f"Estimated value €{valuation.estimated:,} (range €{valuation.low:,} - "
            f"€{valuation.high:,}) based on {bundle.comparables_total or len(bundle.comparables)} "
            "properties analyzed in the area."
        )
    else:
        price_range = "Insufficient comparable or market data to estimate a price range."

    if bundle.comparables:
        average = round(statistics.fmean(c.price for c in bundle.comparables))
        comparable_insights = (
            f"Analysis of {len(bundle.comparables)} comparable properties shows average "
            f"pricing of €{average:,}."
        )
    else:
        comparable_insights = "Limited comparable data available."

    timing = {MarketTrend.UP: "favorable", MarketTrend.DOWN: "challenging"}.get(trend, "stable")  # type: ignore[arg-type]
    investment_timing = {
        MarketTrend.UP: "Consider acting quickly.",
        MarketTrend.DOWN: "Monitor conditions.",
    }.get(trend, "Neutral timing.")  # type: ignore[arg-type]

    if bundle.mobility is not None:
        walkability = f"Walkability analysis shows a walking score of {bundle.mobility.walking_score}/100."
    else:
        walkability = "Limited mobility data available."

    if bundle.developments:
        development_impact = f"{len(bundle.developments)} future developments planned for the area."
    else:
        development_impact = "No major developments currently planned."

    risk_focus = (
        "maintenance requirements and renovation costs"
        if condition == "needs work"
        else "property-specific details and market conditions"
    )

    return NarrativeSummary(
        executive_summary=(
            f"This {kind} in {prop.city} offers {prop.bedrooms} bedrooms and "
            f"{prop.bathrooms} bathrooms. The property is located in a residential area "
            "with access to local amenities."
        ),
        investment_recommendation=(
            f"Consider this property based on its location and features. Market conditions "
            f"in {prop.city} should be evaluated."
        ),
        price_range=price_range,
        value_forecast=f"Property values in {prop.city} show typical market trends for this type of property.",
        pros_and_cons="Pros: established residential area. Cons: limited market data available.",
        market_comparison=(
            f"Market data available for {prop.city}."
            if bundle.market_data
            else f"Limited market data available for {prop.city}; position analysis may be incomplete."
        ),
        amenities_summary=f"The area offers {amenity_count} nearby amenities.",
        location_overview=(
            f"This property is located in {prop.city}, {prop.province}, a residential area "
            "with established infrastructure."
        ),
        lifestyle_assessment=(
            f"This location offers {_lifestyle_band(amenity_count)} lifestyle convenience with "
            f"access to essential services in {prop.city}, {prop.province}."
        ),
        property_condition=f"Property condition assessment indicates {condition} condition with {style} architectural style.",
        architectural_analysis=f"The {style} architectural style is typical of the {prop.city} market.",
        market_timing=f"Current market timing in {prop.city} appears {timing} based on available data.",
        walkability_insights=walkability,
        development_impact=development_impact,
        comparable_insights=comparable_insights,
        investment_timing=f"Investment timing: {investment_timing}",
        risk_assessment=(
            f"Key considerations include market volatility in {prop.province}. Before "
            f"proceeding, consider gathering additional information about {risk_focus}."
        ),
    )


def rental_report(prop: PropertyDescriptor, valuation: ValuationEstimate) -> RentalReport:
    """Gross and net yield for a rental listing.

    Short-term lets assume 65% occupancy on the weekly rate; long-term lets
    assume full occupancy on the monthly rent. Commission defaults to one
    month's rent. Yields are against the asking price, or the estimate when
    there is none.
    """
    short_term = prop.is_short_term and not prop.is_long_term
    if short_term:
        occupancy = SHORT_TERM_OCCUPANCY
        income = round((prop.weekly_price_from or 0) * WEEKS_PER_YEAR * occupancy)
    else:
        occupancy = LONG_TERM_OCCUPANCY
        income = (prop.monthly_price or 0) * 12

    commission = prop.rental_commission or prop.monthly_price or 0
    costs = (prop.property_tax or 0) + (prop.community_fees or 0) * 12 + commission

    basis = prop.price or valuation.estimated
    gross = round(income / basis * 100, 2) if basis else None
    net = round((income - costs) / basis * 100, 2) if basis else None
    return RentalReport(
        rental_type="short-term" if short_term else "long-term",
        occupancy_rate=occupancy,
        annual_income=income,
        annual_costs=costs,
        gross_yield=gross,
        net_yield=net,
    )


def _yield_text(report: RentalReport) -> str:
    if report.gross_yield is None or report.net_yield is None:
        return "Yield not available: no purchase price or valuation to measure against."
    return f"Gross yield: {report.gross_yield:.2f}%. Net yield (after costs): {report.net_yield:.2f}%."


def rental_summary(
    prop: PropertyDescriptor,
    bundle: EnrichmentBundle,
    report: RentalReport,
) -> NarrativeSummary:
    """Narrative for rental listings, written from the yield figures."""
    location = prop.address.split(",")[0].strip() or prop.city
    kind = prop.property_type.lower()
    amenity_count = len(bundle.amenities)
    comparable_count = len(bundle.comparables)
    trend = bundle.market_data.market_trend if bundle.market_data else MarketTrend.STABLE
    walking = bundle.mobility.walking_score if bundle.mobility else 0
    yields = _yield_text(report)
    features = ", ".join(prop.features) or "N/A"

    if report.rental_type == "short-term":
        headline = (
            f"Short-term rental analysis for {location}: this {kind} has a weekly rate of "
            f"€{prop.weekly_price_from or 0:,} at an assumed {report.occupancy_rate:.0%} occupancy."
        )
        risk = (
            "Risks: seasonality, regulatory changes, guest damage and higher management "
            "costs. Overall risk level: moderate to high."
        )
        recommendation = (
            "Suited to investors seeking higher returns who can manage seasonal fluctuations."
        )
    else:
        headline = (
            f"Long-term rental analysis for {location}: this {kind} has a monthly rent of "
            f"€{prop.monthly_price or 0:,}."
        )
        risk = (
            "Risks: vacancy, tenant default and maintenance costs. Overall risk level: "
            "low to moderate."
        )
        recommendation = "Suited to investors seeking stable income with low management overhead."

    if comparable_count:
        average = round(statistics.fmean(c.price for c in bundle.comparables))
        comparables_text = (
            f"Analysis of {comparable_count} comparable rentals in {location}; average "
            f"listed price €{average:,}."
        )
        market_text = (
            f"Compared with {comparable_count} similar rentals in {location}. The rental "
            f"market in {prop.city} shows {trend} trends."
        )
    else:
        comparables_text = f"No comparable rentals found in {location}."
        market_text = (
            f"No comparable rentals found in {location} for direct comparison. The rental "
            f"market in {prop.city} shows {trend} trends, but local data is limited."
        )

    return NarrativeSummary(
        executive_summary=f"{headline} {yields}",
        investment_recommendation=recommendation,
        price_range=(
            f"Annual income €{report.annual_income:,}; annual costs €{report.annual_costs:,}."
        ),
        value_forecast=yields,
        pros_and_cons=f"Key features for tenants: {features}. Walking score: {walking}/100.",
        market_comparison=market_text,
        amenities_summary=f"The area offers {amenity_count} nearby amenities.",
        location_overview=f"{location}, {prop.city}, {prop.province}.",
        lifestyle_assessment=f"Key features for tenants: {features}.",
        market_timing=market_text,
        walkability_insights=f"Walking score: {walking}/100.",
        development_impact=(
            f"{len(bundle.developments)} future developments planned for the area."
            if bundle.developments
            else "No major developments currently planned."
        ),
        comparable_insights=comparables_text,
        investment_timing=recommendation,
        risk_assessment=risk,
    )
