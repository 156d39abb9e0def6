"""Valuation aggregation."""

from cma_analyst.valuation.engine import (
    ValuationEngine,
    is_premium_location,
    max_reasonable_price_per_m2,
)

__all__ = ["ValuationEngine", "is_premium_location", "max_reasonable_price_per_m2"]
