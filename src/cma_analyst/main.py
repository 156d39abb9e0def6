"""Command-line entry point."""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from pydantic import ValidationError

from cma_analyst.config import Settings
from cma_analyst.errors import CMAAnalystError, InputValidationError
from cma_analyst.logging import configure_logging, get_logger
from cma_analyst.models import AnalysisResult, PropertyDescriptor
from cma_analyst.service import AnalysisService

logger = get_logger(__name__)


def load_descriptor(path: Path) -> PropertyDescriptor:
    """Read a property descriptor from a JSON file."""
    return PropertyDescriptor.model_validate_json(path.read_text(encoding="utf-8"))


async def run_analysis(settings: Settings, descriptor: PropertyDescriptor) -> AnalysisResult:
    service = AnalysisService(settings)
    await service.initialize()
    try:
        return await service.analyze(descriptor)
    finally:
        await service.close()


def _print_result(result: AnalysisResult) -> None:
    report = result.report
    valuation = report.valuation
    print(f"Session:        {result.session_id} ({result.status})")
    steps = f"{result.completed_steps}/{result.total_steps} steps"
    print(f"Quality score:  {result.quality_score} ({steps})")
    print(f"Critical errors: {result.critical_errors}")
    if valuation.estimated:
        print(
            f"Estimated value: €{valuation.estimated:,} "
            f"(€{valuation.low:,} - €{valuation.high:,}, confidence {valuation.confidence}%)"
        )
    else:
        print(f"Estimated value: n/a ({valuation.methodology})")
    if report.asking_price_assessment:
        print(f"Asking price:   {report.asking_price_assessment.recommendation}")
    if report.rental_report and report.rental_report.gross_yield is not None:
        print(
            f"Rental yield:   {report.rental_report.gross_yield:.2f}% gross, "
            f"{report.rental_report.net_yield:.2f}% net"
        )
    print()
    print(report.summary.executive_summary)


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="CMA Analyst - comparative market analysis for Spanish property"
    )
    parser.add_argument(
        "command",
        nargs="?",
        choices=["analyze"],
        help="Analyse a property described in a JSON file",
    )
    parser.add_argument("file", nargs="?", type=Path, help="Property descriptor JSON file")
    parser.add_argument(
        "--json",
        action="store_true",
        help="With analyze: print the full result as JSON",
    )
    parser.add_argument(
        "--serve",
        action="store_true",
        help="Start the HTTP API server",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug-level logging for troubleshooting",
    )
    args = parser.parse_args()

    if not args.serve and (args.command != "analyze" or args.file is None):
        parser.error("either 'analyze FILE' or --serve is required")

    try:
        settings = Settings()
    except ValidationError as e:
        print(f"Error: Failed to load settings. {e}")
        print("Settings are read from CMA_ANALYST_* environment variables or a .env file.")
        sys.exit(1)

    configure_logging(
        json_output=settings.json_logs,
        level=logging.DEBUG if args.debug else logging.INFO,
    )

    if args.serve:
        import uvicorn

        from cma_analyst.web.app import create_app

        logger.info("starting_cma_analyst", host=settings.web_host, port=settings.web_port)
        app = create_app(settings)
        uvicorn.run(app, host=settings.web_host, port=settings.web_port, log_level="info")
        return

    try:
        descriptor = load_descriptor(args.file)
    except (OSError, ValidationError) as e:
        print(f"Error: could not read property descriptor from {args.file}: {e}")
        sys.exit(2)

    try:
        result = asyncio.run(run_analysis(settings, descriptor))
    except InputValidationError as e:
        print(f"Error: {e}")
        sys.exit(2)
    except CMAAnalystError as e:
        print(f"Error: {e}")
        suggestion = getattr(e, "suggestion", None)
        if suggestion:
            print(suggestion)
        sys.exit(1)

    if args.json:
        print(json.dumps(result.model_dump(mode="json"), indent=2, ensure_ascii=False))
    else:
        _print_result(result)


if __name__ == "__main__":
    main()
