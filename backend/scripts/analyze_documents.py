#!/usr/bin/env python3
"""DealScope Batch Analysis Runner.

Runs one batch of startup documents through the pipeline:
  1. Compress each document under the extraction size limit
  2. Extract structured data per document (bounded concurrency, retries)
  3. Consolidate into one company profile
  4. Score against the rubric and write the InvestmentReport

Usage:
    # Analyze a deck and a financial model
    python -m scripts.analyze_documents deck.pdf financials.pdf

    # Custom dimension weights (normalized to 100 if needed)
    python -m scripts.analyze_documents deck.pdf --weights team=30,market=30,financials=5

    # Specific provider/model, JSON report to file
    python -m scripts.analyze_documents deck.pdf --provider anthropic --output report.json
"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import json
import mimetypes
import sys
from pathlib import Path

# Add backend to path for imports
_backend = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(_backend))

# Load .env before importing app modules
from dotenv import load_dotenv
load_dotenv(_backend / ".env")

import structlog

structlog.configure(
    processors=[
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer(),
    ]
)

from dealscope.core.config import PipelineConfig, Settings
from dealscope.core.exceptions import AllDocumentsFailedError, DealScopeError
from dealscope.modules.analysis.agents.base import LLMExtractionClient
from dealscope.modules.analysis.agents.orchestrator import PipelineOrchestrator
from dealscope.modules.analysis.schemas import DocumentInput, InvestmentReport

logger = structlog.get_logger()

_EXTRA_MIME_TYPES = {
    ".md": "text/markdown",
    ".txt": "text/plain",
}


def guess_mime_type(path: Path) -> str:
    if path.suffix.lower() in _EXTRA_MIME_TYPES:
        return _EXTRA_MIME_TYPES[path.suffix.lower()]
    mime, _ = mimetypes.guess_type(path.name)
    return mime or "application/octet-stream"


def parse_weights(raw: str | None) -> dict[str, float] | None:
    """Parse "team=30,market=25" into {"team": 30.0, "market": 25.0}."""
    if not raw:
        return None
    weights: dict[str, float] = {}
    for part in raw.split(","):
        if not part.strip():
            continue
        key, sep, value = part.partition("=")
        if not sep:
            raise argparse.ArgumentTypeError(f"Expected dimension=weight, got '{part}'")
        try:
            weights[key.strip()] = float(value)
        except ValueError as e:
            raise argparse.ArgumentTypeError(f"Weight for '{key.strip()}' is not a number") from e
    return weights


def load_documents(paths: list[Path]) -> list[DocumentInput]:
    return [
        DocumentInput(filename=p.name, mime_type=guess_mime_type(p), data=p.read_bytes())
        for p in paths
    ]


def print_report(report: InvestmentReport) -> None:
    print(f"\n{'='*60}")
    print(f"  DEALSCOPE INVESTMENT REPORT")
    print(f"{'='*60}")
    print(f"  Company:       {report.profile.company.name or 'unknown'}")
    print(f"  Overall score: {report.overall_score}/100")
    print(f"  Decision:      {report.decision}{'  (low data)' if report.low_data else ''}")
    print(f"  Confidence:    {report.profile.confidence:.0f}")
    print(f"  Coverage:      {report.metadata.coverage}")
    print(f"  Cost:          ${report.metadata.usage.get('total_cost_usd', 0):.4f}")
    print("-" * 60)
    for dim in report.dimension_scores:
        print(f"  {dim.category:<12} {dim.raw_score:5.1f}  (weight {dim.weight:.1f}%)")
    if report.warnings:
        print("-" * 60)
        for warning in report.warnings:
            print(f"  ! {warning}")
    print(f"{'='*60}\n")


def main() -> None:
    parser = argparse.ArgumentParser(description="DealScope multi-document investment analysis")
    parser.add_argument("files", nargs="+", type=Path,
                        help="Documents to analyze (PDF, images, text)")
    parser.add_argument("--weights", type=parse_weights, default=None,
                        help="Dimension weight overrides, e.g. team=30,market=25")
    parser.add_argument("--provider", type=str, default=None,
                        help="LLM provider (google, anthropic)")
    parser.add_argument("--model", type=str, default=None,
                        help="LLM model name")
    parser.add_argument("--max-concurrency", type=int, default=None,
                        help="Max simultaneous extraction calls")
    parser.add_argument("--oversized-policy", choices=["reject", "truncate", "submit"], default=None,
                        help="What to do with documents still over the size limit")
    parser.add_argument("--output", type=Path, default=None,
                        help="Write the report as JSON to this file")

    args = parser.parse_args()

    missing = [p for p in args.files if not p.is_file()]
    if missing:
        parser.error(f"File not found: {', '.join(str(p) for p in missing)}")

    settings = Settings()
    config = PipelineConfig.from_settings(settings)
    overrides = {}
    if args.max_concurrency:
        overrides["max_concurrency"] = args.max_concurrency
    if args.oversized_policy:
        overrides["oversized_policy"] = args.oversized_policy
    if overrides:
        config = dataclasses.replace(config, **overrides)

    capability = LLMExtractionClient(provider=args.provider, model=args.model, settings=settings)
    orchestrator = PipelineOrchestrator(capability, config)

    try:
        report = asyncio.run(orchestrator.analyze(load_documents(args.files), args.weights))
    except AllDocumentsFailedError as e:
        logger.error("Analysis failed", failures=e.failures)
        sys.exit(2)
    except DealScopeError as e:
        logger.error("Analysis rejected", error=str(e))
        sys.exit(1)

    print_report(report)

    if args.output:
        args.output.parent.mkdir(parents=True, exist_ok=True)
        args.output.write_text(
            json.dumps(report.model_dump(mode="json"), indent=2, ensure_ascii=False),
            encoding="utf-8",
        )
        logger.info("Report written", path=str(args.output))


if __name__ == "__main__":
    main()
