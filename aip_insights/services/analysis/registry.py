"""Process-wide analyzer instances shared by the API and the CLI."""

from __future__ import annotations

import logging
from collections.abc import Iterable

from aip_insights.services.analysis.base import AnalysisModel
from aip_insights.services.analysis.budget_allocation import BudgetAllocationAnalyzer
from aip_insights.services.analysis.data_validation import DataValidationAnalyzer
from aip_insights.services.analysis.document_intelligence import DocumentIntelligenceAnalyzer
from aip_insights.services.analysis.errors import MODEL_NOT_FOUND_CODE, ModelStorageError
from aip_insights.services.analysis.project_prioritization import ProjectPrioritizationAnalyzer
from aip_insights.services.analysis.risk_assessment import RiskAssessmentAnalyzer
from aip_insights.services.analysis.snapshots import build_snapshot_provider
from aip_insights.services.analysis.storage import build_model_storage

logger = logging.getLogger(__name__)

_BUDGET_ANALYZER: BudgetAllocationAnalyzer | None = None
_VALIDATION_ANALYZER: DataValidationAnalyzer | None = None
_DOCUMENT_ANALYZER: DocumentIntelligenceAnalyzer | None = None
_PRIORITIZATION_ANALYZER: ProjectPrioritizationAnalyzer | None = None
_RISK_ANALYZER: RiskAssessmentAnalyzer | None = None


def get_budget_allocation_analyzer() -> BudgetAllocationAnalyzer:
    """Singleton accessor used by API routes."""
    global _BUDGET_ANALYZER  # noqa: PLW0603
    if _BUDGET_ANALYZER is None:
        _BUDGET_ANALYZER = BudgetAllocationAnalyzer(
            build_snapshot_provider(), storage=build_model_storage()
        )
    return _BUDGET_ANALYZER


def get_data_validation_analyzer() -> DataValidationAnalyzer:
    global _VALIDATION_ANALYZER  # noqa: PLW0603
    if _VALIDATION_ANALYZER is None:
        _VALIDATION_ANALYZER = DataValidationAnalyzer(
            build_snapshot_provider(), storage=build_model_storage()
        )
    return _VALIDATION_ANALYZER


def get_document_intelligence_analyzer() -> DocumentIntelligenceAnalyzer:
    global _DOCUMENT_ANALYZER  # noqa: PLW0603
    if _DOCUMENT_ANALYZER is None:
        _DOCUMENT_ANALYZER = DocumentIntelligenceAnalyzer(storage=build_model_storage())
    return _DOCUMENT_ANALYZER


def get_project_prioritization_analyzer() -> ProjectPrioritizationAnalyzer:
    global _PRIORITIZATION_ANALYZER  # noqa: PLW0603
    if _PRIORITIZATION_ANALYZER is None:
        _PRIORITIZATION_ANALYZER = ProjectPrioritizationAnalyzer(
            build_snapshot_provider(), storage=build_model_storage()
        )
    return _PRIORITIZATION_ANALYZER


def get_risk_assessment_analyzer() -> RiskAssessmentAnalyzer:
    global _RISK_ANALYZER  # noqa: PLW0603
    if _RISK_ANALYZER is None:
        _RISK_ANALYZER = RiskAssessmentAnalyzer(build_snapshot_provider(), storage=build_model_storage())
    return _RISK_ANALYZER


def all_analyzers() -> list[AnalysisModel]:
    return [
        get_budget_allocation_analyzer(),
        get_data_validation_analyzer(),
        get_document_intelligence_analyzer(),
        get_project_prioritization_analyzer(),
        get_risk_assessment_analyzer(),
    ]


async def load_saved_models(analyzers: Iterable[AnalysisModel] | None = None) -> None:
    """Restore persisted parameters; analyzers without a saved model keep their defaults."""
    for analyzer in all_analyzers() if analyzers is None else analyzers:
        try:
            await analyzer.load_model()
        except ModelStorageError as exc:
            if exc.code != MODEL_NOT_FOUND_CODE:
                raise
            logger.info(
                "analysis.models.defaults",
                extra={"model": analyzer.name, "reason": str(exc)},
            )


def reset_analyzers() -> None:
    """Drop cached analyzers so the next accessor call rebuilds them from settings."""
    global _BUDGET_ANALYZER, _VALIDATION_ANALYZER, _DOCUMENT_ANALYZER  # noqa: PLW0603
    global _PRIORITIZATION_ANALYZER, _RISK_ANALYZER  # noqa: PLW0603
    _BUDGET_ANALYZER = None
    _VALIDATION_ANALYZER = None
    _DOCUMENT_ANALYZER = None
    _PRIORITIZATION_ANALYZER = None
    _RISK_ANALYZER = None
