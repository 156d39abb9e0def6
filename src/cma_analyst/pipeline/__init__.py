"""Analysis pipeline: the seven enrichment steps and report assembly."""

from cma_analyst.pipeline.orchestrator import (
    STEP_NAMES,
    AnalysisPipeline,
    PipelineMeta,
    StepOutcome,
)
from cma_analyst.pipeline.summary import fallback_summary, rental_report, rental_summary
from cma_analyst.pipeline.trends import derive_market_trends, key_features

__all__ = [
    "STEP_NAMES",
    "AnalysisPipeline",
    "PipelineMeta",
    "StepOutcome",
    "derive_market_trends",
    "fallback_summary",
    "key_features",
    "rental_report",
    "rental_summary",
]
