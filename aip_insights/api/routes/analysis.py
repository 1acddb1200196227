"""API endpoints exposing the AIP analyzers."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from aip_insights.models.report import AnalysisReport, DocumentIntelligenceReport
from aip_insights.services.analysis.base import AnalysisModel
from aip_insights.services.analysis.budget_allocation import BudgetAllocationAnalyzer
from aip_insights.services.analysis.data_validation import DataValidationAnalyzer
from aip_insights.services.analysis.document_intelligence import DocumentIntelligenceAnalyzer
from aip_insights.services.analysis.errors import AnalysisError
from aip_insights.services.analysis.project_prioritization import ProjectPrioritizationAnalyzer
from aip_insights.services.analysis.registry import (
    get_budget_allocation_analyzer,
    get_data_validation_analyzer,
    get_document_intelligence_analyzer,
    get_project_prioritization_analyzer,
    get_risk_assessment_analyzer,
)
from aip_insights.services.analysis.risk_assessment import RiskAssessmentAnalyzer

router = APIRouter()
logger = logging.getLogger(__name__)

BUDGET_ALLOCATION = "budget-allocation"
DATA_VALIDATION = "data-validation"
PROJECT_PRIORITIZATION = "project-prioritization"
RISK_ASSESSMENT = "risk-assessment"
DOCUMENT_INTELLIGENCE = "document-intelligence"


class DocumentIntelligenceRequest(BaseModel):
    """Request payload for analysing one document."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    document_id: str = Field(description="Identifier of the stored document.")
    content: str = Field(description="Plain-text document body.")
    project_id: str | None = Field(default=None, description="Owning project, when known.")


@router.get("/ai/models")
async def list_models(
    budget: BudgetAllocationAnalyzer = Depends(get_budget_allocation_analyzer),
    validation: DataValidationAnalyzer = Depends(get_data_validation_analyzer),
    documents: DocumentIntelligenceAnalyzer = Depends(get_document_intelligence_analyzer),
    prioritization: ProjectPrioritizationAnalyzer = Depends(get_project_prioritization_analyzer),
    risk: RiskAssessmentAnalyzer = Depends(get_risk_assessment_analyzer),
) -> dict[str, Any]:
    """List the available analyzers with their current versions."""
    return {
        "models": [
            {
                "type": model_type,
                "name": analyzer.name,
                "version": analyzer.get_version().model_dump(mode="json", by_alias=True),
            }
            for model_type, analyzer in (
                (BUDGET_ALLOCATION, budget),
                (DATA_VALIDATION, validation),
                (DOCUMENT_INTELLIGENCE, documents),
                (PROJECT_PRIORITIZATION, prioritization),
                (RISK_ASSESSMENT, risk),
            )
        ]
    }


@router.get("/ai/models/{model_type}")
async def run_model(
    model_type: str,
    aip_id: str | None = Query(None, alias="aipId", description="Investment program to analyse."),
    fiscal_year: int | None = Query(None, alias="fiscalYear", description="Override the target year."),
    budget: BudgetAllocationAnalyzer = Depends(get_budget_allocation_analyzer),
    validation: DataValidationAnalyzer = Depends(get_data_validation_analyzer),
    prioritization: ProjectPrioritizationAnalyzer = Depends(get_project_prioritization_analyzer),
    risk: RiskAssessmentAnalyzer = Depends(get_risk_assessment_analyzer),
) -> dict[str, Any]:
    """Run a program-level analyzer against one AIP snapshot."""
    payload: dict[str, Any] = {"aipId": aip_id}
    if model_type == BUDGET_ALLOCATION:
        if fiscal_year is not None:
            payload["fiscalYear"] = fiscal_year
        analyzer: AnalysisModel[AnalysisReport] = budget
    elif model_type == DATA_VALIDATION:
        analyzer = validation
    elif model_type == PROJECT_PRIORITIZATION:
        analyzer = prioritization
    elif model_type == RISK_ASSESSMENT:
        analyzer = risk
    else:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Unknown model type: {model_type}")

    try:
        prediction = await analyzer.predict(payload)
    except AnalysisError as exc:
        logger.error(
            "analysis.api_error",
            extra={"model_type": model_type, "aip_id": aip_id, "code": exc.code},
        )
        raise HTTPException(status_code=_map_error_code(exc.code), detail=str(exc)) from exc

    return {
        "model": model_type,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "prediction": prediction.model_dump(mode="json", by_alias=True),
    }


@router.post("/ai/document-intelligence", response_model=DocumentIntelligenceReport)
async def analyse_document(
    payload: DocumentIntelligenceRequest,
    analyzer: DocumentIntelligenceAnalyzer = Depends(get_document_intelligence_analyzer),
) -> DocumentIntelligenceReport:
    """Classify a document and extract its entities, phrases and topics."""
    try:
        return await analyzer.predict(payload.model_dump(by_alias=True))
    except AnalysisError as exc:
        logger.error(
            "analysis.api_error",
            extra={"document_id": payload.document_id, "code": exc.code},
        )
        raise HTTPException(status_code=_map_error_code(exc.code), detail=str(exc)) from exc


def _map_error_code(code: str) -> int:
    if code.startswith("404"):
        return status.HTTP_404_NOT_FOUND
    if code.startswith("400"):
        return status.HTTP_400_BAD_REQUEST
    if code == "502_UPSTREAM_FETCH":
        return status.HTTP_502_BAD_GATEWAY
    return status.HTTP_500_INTERNAL_SERVER_ERROR
