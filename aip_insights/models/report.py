"""Report payloads emitted by the heuristic analyzers."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, confloat
from pydantic.alias_generators import to_camel

Severity = Literal["high", "medium", "low"]


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class ReportModel(BaseModel):
    """Immutable value object serialized with camelCase keys for API consumers."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )


class ModelVersion(ReportModel):
    major: int = 1
    minor: int = 0
    patch: int = 0
    timestamp: str = Field(default_factory=_utcnow_iso)
    description: str = ""

    @property
    def label(self) -> str:
        return f"{self.major}.{self.minor}.{self.patch}"


class TrainingMetadata(ReportModel):
    start_time: str
    end_time: str
    samples_processed: int = 0
    convergence_metrics: dict[str, float] = Field(default_factory=dict)
    version: ModelVersion


class EvaluationResult(ReportModel):
    accuracy: float
    metrics: dict[str, float] = Field(default_factory=dict)


class AnalysisReport(ReportModel):
    """Fields shared by every analyzer report."""

    confidence: confloat(ge=0, le=1)  # type: ignore[valid-type]
    timestamp: str = Field(default_factory=_utcnow_iso)
    source: str
    execution_time_ms: float = 0.0


# Budget allocation


class SectorAllocation(ReportModel):
    sector: str
    recommended_percentage: float
    recommended_amount: float
    reasoning: str


class BudgetAllocationReport(AnalysisReport):
    sector_allocations: list[SectorAllocation]
    overall_recommendation: str


# Data validation


class ValidationIssue(ReportModel):
    field: str
    severity: Severity
    message: str
    suggestion: str | None = None


class EntityValidationResult(ReportModel):
    entity_type: Literal["AIP", "Project", "Expense", "Milestone"]
    entity_id: str
    is_valid: bool
    issues: list[ValidationIssue] = Field(default_factory=list)


class ValidationSummary(ReportModel):
    total_entities: int
    valid_entities: int
    percent_valid: float
    critical_issue_count: int


class DataValidationReport(AnalysisReport):
    validation_results: list[EntityValidationResult]
    summary: ValidationSummary


# Document intelligence


class ExtractedEntity(ReportModel):
    entity: str
    type: str
    confidence: float
    value: str


class KeyPhrase(ReportModel):
    phrase: str
    importance: float


class TopicScore(ReportModel):
    topic: str
    relevance: float


class DocumentAnalysis(ReportModel):
    document_id: str
    document_type: str
    extracted_entities: list[ExtractedEntity]
    key_phrases: list[KeyPhrase]
    summary: str
    topics: list[TopicScore]
    sentiment_score: float


class DocumentRecommendations(ReportModel):
    classification: str
    tags: list[str]
    related_documents: list[str] = Field(default_factory=list)
    action_items: list[str]


class DocumentIntelligenceReport(AnalysisReport):
    document_analysis: DocumentAnalysis
    recommendations: DocumentRecommendations


# Project prioritization


class ProjectRanking(ReportModel):
    project_id: str
    score: float
    priority_level: Severity
    impact_score: float
    feasibility_score: float
    cost_efficiency_score: float


class ProjectPrioritizationReport(AnalysisReport):
    project_rankings: list[ProjectRanking]
    recommended_focus: list[str]


# Risk assessment


class RiskFactor(ReportModel):
    factor: str
    category: Literal["implementation", "financial", "outcome"]
    severity: Severity
    probability: float
    impact: float


class ProjectRisk(ReportModel):
    project_id: str
    overall_risk_score: float
    risk_factors: list[RiskFactor]
    mitigation_suggestions: list[str]


class RiskAssessmentReport(AnalysisReport):
    project_risks: list[ProjectRisk]
