"""Snapshot providers supplying the program graph to the analyzers."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from pathlib import Path
from typing import Any, Protocol

from pydantic import ValidationError

from aip_insights.config import settings
from aip_insights.models.program import InvestmentProgram
from aip_insights.services.analysis.errors import UpstreamFetchError

logger = logging.getLogger(__name__)


class SnapshotProvider(Protocol):
    """Data-access contract owned by the data layer."""

    async def get_program(self, program_id: str) -> InvestmentProgram | None:
        ...

    async def list_completed_programs(
        self, *, before_year: int, limit: int
    ) -> list[InvestmentProgram]:
        ...


def _select_completed(
    programs: Iterable[InvestmentProgram], *, before_year: int, limit: int
) -> list[InvestmentProgram]:
    eligible = [
        program
        for program in programs
        if program.is_completed
        and program.fiscal_year is not None
        and program.fiscal_year.year < before_year
    ]
    ordered = sorted(eligible, key=lambda program: program.fiscal_year.year, reverse=True)  # type: ignore[union-attr]
    return ordered[: max(0, limit)]


class InMemorySnapshotProvider(SnapshotProvider):
    """Serves snapshots from a list held in memory."""

    def __init__(self, programs: Iterable[InvestmentProgram] = ()) -> None:
        self._programs: dict[str, InvestmentProgram] = {program.id: program for program in programs}

    def add(self, program: InvestmentProgram) -> None:
        self._programs[program.id] = program

    async def get_program(self, program_id: str) -> InvestmentProgram | None:
        return self._programs.get(program_id)

    async def list_completed_programs(
        self, *, before_year: int, limit: int
    ) -> list[InvestmentProgram]:
        return _select_completed(self._programs.values(), before_year=before_year, limit=limit)


class JsonSnapshotProvider(SnapshotProvider):
    """Reads a JSON export of programs, either a list or ``{"programs": [...]}``."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path).expanduser()

    @property
    def path(self) -> Path:
        return self._path

    async def get_program(self, program_id: str) -> InvestmentProgram | None:
        for program in self._load():
            if program.id == program_id:
                return program
        return None

    async def list_completed_programs(
        self, *, before_year: int, limit: int
    ) -> list[InvestmentProgram]:
        return _select_completed(self._load(), before_year=before_year, limit=limit)

    def _load(self) -> list[InvestmentProgram]:
        if not self._path.exists():
            raise UpstreamFetchError(f"Snapshot export not found at {self._path}")
        try:
            payload: Any = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise UpstreamFetchError(f"Unable to read snapshot export {self._path}: {exc}") from exc
        records = payload.get("programs", []) if isinstance(payload, dict) else payload
        if not isinstance(records, list):
            raise UpstreamFetchError(f"Snapshot export {self._path} must contain a list of programs.")
        try:
            return [InvestmentProgram.model_validate(record) for record in records]
        except ValidationError as exc:
            logger.error("snapshots.schema_invalid", extra={"path": str(self._path)})
            raise UpstreamFetchError(f"Snapshot export {self._path} failed validation: {exc}") from exc


def build_snapshot_provider(path: str | Path | None = None) -> SnapshotProvider:
    """Instantiate the JSON-backed provider configured by SNAPSHOT_FIXTURE_PATH."""
    resolved = Path(path or settings.snapshot_fixture_path)
    logger.info("snapshots.provider.initialized", extra={"backend": "json", "path": str(resolved)})
    return JsonSnapshotProvider(resolved)
