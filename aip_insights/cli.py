"""Run the AIP analyzers against a JSON snapshot export from the command line."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from aip_insights.models.report import AnalysisReport
from aip_insights.services.analysis.base import AnalysisModel
from aip_insights.services.analysis.budget_allocation import BudgetAllocationAnalyzer
from aip_insights.services.analysis.data_validation import DataValidationAnalyzer
from aip_insights.services.analysis.document_intelligence import DocumentIntelligenceAnalyzer
from aip_insights.services.analysis.errors import AnalysisError
from aip_insights.services.analysis.project_prioritization import ProjectPrioritizationAnalyzer
from aip_insights.services.analysis.registry import load_saved_models
from aip_insights.services.analysis.risk_assessment import RiskAssessmentAnalyzer
from aip_insights.services.analysis.snapshots import build_snapshot_provider
from aip_insights.services.analysis.storage import build_model_storage

logger = logging.getLogger("aip_insights.cli")

PROGRAM_ANALYZERS = {
    "budget": BudgetAllocationAnalyzer,
    "validate": DataValidationAnalyzer,
    "prioritize": ProjectPrioritizationAnalyzer,
    "risk": RiskAssessmentAnalyzer,
}


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Heuristic analysis for Annual Investment Programs.")
    parser.add_argument(
        "--snapshots",
        type=Path,
        default=None,
        help="Path to the program snapshot export (defaults to SNAPSHOT_FIXTURE_PATH).",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    budget = subparsers.add_parser("budget", help="Recommend sector allocations for an AIP.")
    budget.add_argument("--aip-id", required=True, help="Investment program identifier.")
    budget.add_argument("--fiscal-year", type=int, default=None, help="Override the target fiscal year.")

    validate = subparsers.add_parser("validate", help="Run data-quality rules over an AIP.")
    validate.add_argument("--aip-id", required=True, help="Investment program identifier.")

    prioritize = subparsers.add_parser("prioritize", help="Rank the projects of an AIP.")
    prioritize.add_argument("--aip-id", required=True, help="Investment program identifier.")

    risk = subparsers.add_parser("risk", help="Assess per-project risks of an AIP.")
    risk.add_argument("--aip-id", required=True, help="Investment program identifier.")

    document = subparsers.add_parser("document", help="Analyse a plain-text document.")
    document.add_argument("--document-id", required=True, help="Document identifier.")
    document.add_argument("--content-file", type=Path, required=True, help="File holding the document text.")
    document.add_argument("--project-id", default=None, help="Owning project, when known.")
    return parser.parse_args(argv)


def build_payload(args: argparse.Namespace) -> dict[str, Any]:
    if args.command == "document":
        try:
            content = args.content_file.read_text(encoding="utf-8")
        except OSError as exc:
            raise AnalysisError(f"Unable to read {args.content_file}: {exc}", code="400_INVALID_INPUT") from exc
        payload: dict[str, Any] = {"documentId": args.document_id, "content": content}
        if args.project_id:
            payload["projectId"] = args.project_id
        return payload
    payload = {"aipId": args.aip_id}
    if args.command == "budget" and args.fiscal_year is not None:
        payload["fiscalYear"] = args.fiscal_year
    return payload


def build_analyzer(args: argparse.Namespace) -> AnalysisModel[AnalysisReport]:
    storage = build_model_storage()
    if args.command == "document":
        return DocumentIntelligenceAnalyzer(storage=storage)
    return PROGRAM_ANALYZERS[args.command](build_snapshot_provider(args.snapshots), storage=storage)


async def run(args: argparse.Namespace) -> AnalysisReport:
    payload = build_payload(args)
    analyzer = build_analyzer(args)
    await load_saved_models([analyzer])
    return await analyzer.predict(payload)


def main(argv: Sequence[str] | None = None) -> int:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s [%(name)s] %(message)s")
    args = parse_args(argv)
    try:
        report = asyncio.run(run(args))
    except AnalysisError as exc:
        logger.error("Analysis failed (%s): %s", exc.code, exc)
        return 1
    json.dump(report.model_dump(mode="json", by_alias=True), sys.stdout, indent=2, ensure_ascii=False)
    sys.stdout.write("\n")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
