"""Common contract and helpers shared by the heuristic analyzers."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any, Protocol, TypeVar

from aip_insights.models.program import InvestmentProgram
from aip_insights.models.report import (
    AnalysisReport,
    EvaluationResult,
    ModelVersion,
    TrainingMetadata,
)
from aip_insights.services.analysis.errors import (
    AnalysisError,
    InvalidInputError,
    NotFoundError,
    UpstreamFetchError,
)
from aip_insights.services.analysis.snapshots import SnapshotProvider

logger = logging.getLogger("aip_insights.analysis")

ReportT = TypeVar("ReportT", bound=AnalysisReport, covariant=True)


class AnalysisModel(Protocol[ReportT]):
    """Capability shared by every analyzer; each implements it independently."""

    name: str

    async def predict(self, data: Mapping[str, Any]) -> ReportT:
        ...

    async def train(self, data: Mapping[str, Any] | None = None) -> TrainingMetadata:
        ...

    async def evaluate(self, data: Mapping[str, Any] | None = None) -> EvaluationResult:
        ...

    def get_version(self) -> ModelVersion:
        ...

    async def save_model(self, key: str | None = None) -> None:
        ...

    async def load_model(self, key: str | None = None) -> None:
        ...


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def log_model_operation(model: str, operation: str, details: Mapping[str, Any]) -> None:
    """Emit a structured log line for a model operation."""
    payload = {"model": model, "operation": operation, **details}
    if operation.endswith("_error"):
        logger.error("analysis.%s", operation, extra={"analysis": payload})
    else:
        logger.info("analysis.%s", operation, extra={"analysis": payload})


def source_label(name: str, version: ModelVersion) -> str:
    return f"{name}-v{version.label}"


def bump_minor(version: ModelVersion, description: str) -> ModelVersion:
    return version.model_copy(
        update={
            "minor": version.minor + 1,
            "timestamp": utcnow_iso(),
            "description": description,
        }
    )


def require_string(data: Mapping[str, Any] | None, *keys: str) -> str:
    """Return the first non-empty string found under ``keys`` or raise InvalidInputError."""
    if not isinstance(data, Mapping):
        raise InvalidInputError("Input data must be a mapping.")
    for key in keys:
        value = data.get(key)
        if value is None:
            continue
        if not isinstance(value, str) or not value.strip():
            raise InvalidInputError(f"{keys[0]} must be a non-empty string.")
        return value
    raise InvalidInputError(f"{keys[0]} is required.")


def optional_string(data: Mapping[str, Any], *keys: str) -> str | None:
    for key in keys:
        value = data.get(key)
        if value is None or value == "":
            continue
        if not isinstance(value, str):
            raise InvalidInputError(f"{keys[0]} must be a string when provided.")
        return value
    return None


async def fetch_program(provider: SnapshotProvider, program_id: str) -> InvestmentProgram:
    """Resolve a program snapshot, translating collaborator failures into UpstreamFetchError."""
    try:
        program = await provider.get_program(program_id)
    except AnalysisError:
        raise
    except Exception as exc:
        raise UpstreamFetchError(f"Failed to fetch AIP {program_id}: {exc}") from exc
    if program is None:
        raise NotFoundError(f"AIP not found: {program_id}")
    return program


def dump_blob(payload: Mapping[str, Any]) -> str:
    return json.dumps(payload, indent=2, sort_keys=True, ensure_ascii=False)


def load_blob(blob: str) -> dict[str, Any]:
    payload = json.loads(blob)
    if not isinstance(payload, dict):
        raise ValueError("Model blob must be a JSON object.")
    return payload
