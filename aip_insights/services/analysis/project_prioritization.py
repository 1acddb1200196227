"""Rank the projects of an AIP by impact, feasibility and cost efficiency.

Each component score lands in [0, 1] and is a weighted blend of proxy
measures read from the project snapshot. Projects scoring 0.7 or more are
high priority and 0.4 or more medium; the rest are low.
"""

from __future__ import annotations

import datetime as dt
import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any, Final

from aip_insights.models.program import InvestmentProgram, Project
from aip_insights.models.report import (
    EvaluationResult,
    ModelVersion,
    ProjectPrioritizationReport,
    ProjectRanking,
    TrainingMetadata,
)
from aip_insights.observability.metrics import metrics
from aip_insights.services.analysis.base import (
    dump_blob,
    fetch_program,
    load_blob,
    log_model_operation,
    require_string,
    source_label,
    utcnow_iso,
)
from aip_insights.services.analysis.errors import (
    MODEL_NOT_FOUND_CODE,
    UNEXPECTED_ERROR_CODE,
    AnalysisError,
    ModelStorageError,
)
from aip_insights.services.analysis.snapshots import SnapshotProvider
from aip_insights.services.analysis.storage import InMemoryModelStorage, ModelStorage

logger = logging.getLogger(__name__)

MODEL_NAME: Final = "project-prioritization-model"
CONFIDENCE: Final = 0.8

DEFAULT_IMPACT_WEIGHTS: Final[Mapping[str, float]] = MappingProxyType(
    {"community_benefit": 0.4, "urgency": 0.3, "strategic_alignment": 0.3}
)
DEFAULT_FEASIBILITY_WEIGHTS: Final[Mapping[str, float]] = MappingProxyType(
    {"technical_complexity": 0.35, "resource_availability": 0.35, "time_constraint": 0.3}
)
DEFAULT_COST_EFFICIENCY_WEIGHTS: Final[Mapping[str, float]] = MappingProxyType(
    {"return_on_investment": 0.4, "budget_utilization": 0.35, "maintenance_cost": 0.25}
)
DEFAULT_OVERALL_WEIGHTS: Final[Mapping[str, float]] = MappingProxyType(
    {"impact": 0.4, "feasibility": 0.35, "cost_efficiency": 0.25}
)

DEFAULT_SECTOR_IMPORTANCE: Final[Mapping[str, float]] = MappingProxyType(
    {
        "Infrastructure": 0.9,
        "Health": 0.95,
        "Education": 0.9,
        "Social Services": 0.85,
        "Environmental": 0.8,
        "Livelihood": 0.85,
        "Agriculture": 0.8,
        "Technology": 0.75,
        "Sports & Culture": 0.7,
    }
)

DEFAULT_COMPLEXITY_FEASIBILITY: Final[Mapping[str, float]] = MappingProxyType(
    {"LOW": 0.9, "MEDIUM": 0.6, "HIGH": 0.3}
)

WEIGHT_TABLES: Final = ("impact_weights", "feasibility_weights", "cost_efficiency_weights", "overall_weights")


@dataclass(frozen=True)
class ProjectPrioritizationConfig:
    """Weight tables and lookup defaults for the ranking heuristic."""

    impact_weights: Mapping[str, float] = field(default_factory=lambda: DEFAULT_IMPACT_WEIGHTS)
    feasibility_weights: Mapping[str, float] = field(default_factory=lambda: DEFAULT_FEASIBILITY_WEIGHTS)
    cost_efficiency_weights: Mapping[str, float] = field(
        default_factory=lambda: DEFAULT_COST_EFFICIENCY_WEIGHTS
    )
    overall_weights: Mapping[str, float] = field(default_factory=lambda: DEFAULT_OVERALL_WEIGHTS)
    sector_importance: Mapping[str, float] = field(default_factory=lambda: DEFAULT_SECTOR_IMPORTANCE)
    complexity_feasibility: Mapping[str, float] = field(
        default_factory=lambda: DEFAULT_COMPLEXITY_FEASIBILITY
    )
    default_sector_importance: float = 0.7
    default_complexity_feasibility: float = 0.6
    high_priority_threshold: float = 0.7
    medium_priority_threshold: float = 0.4
    urgency_horizon_days: int = 90
    beneficiary_scale: int = 1000

    def weight_tables(self) -> dict[str, dict[str, float]]:
        return {name: dict(getattr(self, name)) for name in WEIGHT_TABLES}


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def _blend(components: Mapping[str, float], weights: Mapping[str, float]) -> float:
    return sum(value * weights.get(name, 0.0) for name, value in components.items())


class ProjectPrioritizationAnalyzer:
    """Scores and ranks every project of a target AIP."""

    name = MODEL_NAME

    def __init__(
        self,
        provider: SnapshotProvider,
        *,
        storage: ModelStorage | None = None,
        config: ProjectPrioritizationConfig | None = None,
        today: Callable[[], dt.date] = dt.date.today,
    ) -> None:
        self._provider = provider
        self._storage = storage or InMemoryModelStorage()
        self._config = config or ProjectPrioritizationConfig()
        self._today = today
        self._version = ModelVersion(description="Initial project prioritization model")

    @property
    def config(self) -> ProjectPrioritizationConfig:
        return self._config

    def get_version(self) -> ModelVersion:
        return self._version

    async def predict(self, data: Mapping[str, Any]) -> ProjectPrioritizationReport:
        """Rank the projects of ``data["aipId"]``, highest score first."""
        start = time.perf_counter()
        tags = {"model": self.name}
        program_id = data.get("aipId") if isinstance(data, Mapping) else None
        try:
            program_id = require_string(data, "aipId", "program_id")
            program = await fetch_program(self._provider, program_id)
            rankings = self.rank_projects(program)
            report = ProjectPrioritizationReport(
                confidence=CONFIDENCE,
                timestamp=utcnow_iso(),
                source=source_label(self.name, self._version),
                project_rankings=rankings,
                recommended_focus=self.recommend_focus(rankings),
                execution_time_ms=(time.perf_counter() - start) * 1000,
            )
        except AnalysisError as exc:
            metrics.increment("analysis.errors", tags={**tags, "code": exc.code})
            log_model_operation(
                "ProjectPrioritizationModel",
                "prediction_error",
                {"error": str(exc), "code": exc.code, "aipId": program_id},
            )
            raise
        except Exception as exc:
            metrics.increment("analysis.errors", tags={**tags, "code": UNEXPECTED_ERROR_CODE})
            log_model_operation(
                "ProjectPrioritizationModel",
                "prediction_error",
                {
                    "error": str(exc),
                    "code": UNEXPECTED_ERROR_CODE,
                    "errorType": type(exc).__name__,
                    "aipId": program_id,
                },
            )
            raise

        metrics.increment("analysis.success", tags=tags)
        metrics.timing("analysis.latency_ms", report.execution_time_ms, tags=tags)
        log_model_operation(
            "ProjectPrioritizationModel",
            "predict",
            {
                "aipId": program_id,
                "executionTimeMs": report.execution_time_ms,
                "projectCount": len(rankings),
            },
        )
        return report

    def rank_projects(self, program: InvestmentProgram) -> list[ProjectRanking]:
        cfg = self._config
        rankings = []
        for project in program.projects:
            impact = self.calculate_impact_score(project)
            feasibility = self.calculate_feasibility_score(project)
            cost_efficiency = self.calculate_cost_efficiency_score(project, program.total_amount)
            score = _blend(
                {"impact": impact, "feasibility": feasibility, "cost_efficiency": cost_efficiency},
                cfg.overall_weights,
            )
            if score >= cfg.high_priority_threshold:
                level = "high"
            elif score >= cfg.medium_priority_threshold:
                level = "medium"
            else:
                level = "low"
            rankings.append(
                ProjectRanking(
                    project_id=project.id,
                    score=score,
                    priority_level=level,
                    impact_score=impact,
                    feasibility_score=feasibility,
                    cost_efficiency_score=cost_efficiency,
                )
            )
        rankings.sort(key=lambda item: item.score, reverse=True)
        return rankings

    def calculate_impact_score(self, project: Project) -> float:
        cfg = self._config
        if project.beneficiaries:
            community_benefit = min(project.beneficiaries / cfg.beneficiary_scale, 1.0)
        else:
            community_benefit = 0.5

        today = self._today()
        starts_in = max(0, ((project.start_date or today) - today).days)
        urgency = max(0.0, 1 - starts_in / cfg.urgency_horizon_days)

        strategic_alignment = cfg.sector_importance.get(project.sector or "", cfg.default_sector_importance)
        return _blend(
            {
                "community_benefit": community_benefit,
                "urgency": urgency,
                "strategic_alignment": strategic_alignment,
            },
            cfg.impact_weights,
        )

    def calculate_feasibility_score(self, project: Project) -> float:
        cfg = self._config
        technical_complexity = cfg.complexity_feasibility.get(
            (project.complexity or "").upper(), cfg.default_complexity_feasibility
        )

        allocated = project.total_cost
        if allocated > 0:
            resource_availability = _clamp((allocated - project.total_expenses) / allocated)
        else:
            resource_availability = 0.5

        time_constraint = 0.5
        if project.end_date:
            today = self._today()
            remaining_days = max(0, (project.end_date - today).days)
            if project.start_date:
                total_days = max(1, (project.end_date - project.start_date).days)
            else:
                total_days = cfg.urgency_horizon_days
            expected_progress = 1 - remaining_days / total_days
            time_constraint = _clamp(1 - (expected_progress - project.progress / 100))

        return _blend(
            {
                "technical_complexity": technical_complexity,
                "resource_availability": resource_availability,
                "time_constraint": time_constraint,
            },
            cfg.feasibility_weights,
        )

    def calculate_cost_efficiency_score(self, project: Project, total_budget: float) -> float:
        cost = project.total_cost or 1
        if project.expected_return:
            return_on_investment = min(project.expected_return / cost, 1.0)
        else:
            return_on_investment = 0.6

        budget_ratio = project.total_cost / max(1.0, total_budget)
        budget_utilization = 1 - min(budget_ratio * 2, 1.0)

        if project.maintenance_cost:
            maintenance = 1 - min(project.maintenance_cost / cost, 1.0)
        else:
            maintenance = 0.7

        return _blend(
            {
                "return_on_investment": return_on_investment,
                "budget_utilization": budget_utilization,
                "maintenance_cost": maintenance,
            },
            self._config.cost_efficiency_weights,
        )

    @staticmethod
    def recommend_focus(rankings: list[ProjectRanking]) -> list[str]:
        focus: list[str] = []
        high = [r for r in rankings if r.priority_level == "high"]
        if high:
            focus.append(f"Prioritize {len(high)} high-impact projects")
        stuck = [r for r in rankings if r.impact_score > 0.7 and r.feasibility_score < 0.4]
        if stuck:
            focus.append(f"Address feasibility issues in {len(stuck)} high-impact projects")
        costly = [r for r in rankings if r.score > 0.6 and r.cost_efficiency_score < 0.4]
        if costly:
            focus.append(f"Review budget allocations for {len(costly)} otherwise promising projects")
        quick_wins = [r for r in rankings if r.feasibility_score > 0.7 and r.impact_score > 0.5]
        if quick_wins:
            focus.append(f"Fast-track {len(quick_wins)} high-feasibility projects for quick wins")
        return focus

    async def train(self, data: Mapping[str, Any] | None = None) -> TrainingMetadata:
        """Placeholder: weights are fixed configuration, nothing is learned."""
        started = utcnow_iso()
        log_model_operation("ProjectPrioritizationModel", "training_skipped", {"reason": "not implemented"})
        return TrainingMetadata(
            start_time=started,
            end_time=utcnow_iso(),
            samples_processed=0,
            version=self._version,
        )

    async def evaluate(self, data: Mapping[str, Any] | None = None) -> EvaluationResult:
        return EvaluationResult(accuracy=CONFIDENCE)

    async def save_model(self, key: str | None = None) -> None:
        storage_key = key or f"{self.name}.json"
        payload = {"version": self._version.model_dump(), **self._config.weight_tables()}
        self._storage.put(storage_key, dump_blob(payload))
        log_model_operation(
            "ProjectPrioritizationModel", "model_saved", {"key": storage_key, "version": self._version.label}
        )

    async def load_model(self, key: str | None = None) -> None:
        storage_key = key or f"{self.name}.json"
        blob = self._storage.get(storage_key)
        if blob is None:
            log_model_operation("ProjectPrioritizationModel", "load_model_error", {"key": storage_key})
            raise ModelStorageError(f"No saved model at {storage_key}", code=MODEL_NOT_FOUND_CODE)
        try:
            payload = load_blob(blob)
            version = ModelVersion.model_validate(payload["version"])
            tables = {
                name: MappingProxyType({str(k): float(v) for k, v in payload[name].items()})
                for name in WEIGHT_TABLES
            }
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            log_model_operation(
                "ProjectPrioritizationModel", "load_model_error", {"key": storage_key, "error": str(exc)}
            )
            raise ModelStorageError(f"Saved model at {storage_key} is malformed: {exc}") from exc
        self._version = version
        self._config = replace(self._config, **tables)
        log_model_operation(
            "ProjectPrioritizationModel", "model_loaded", {"key": storage_key, "version": version.label}
        )
