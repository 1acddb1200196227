"""Test helpers for building AIP snapshots."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Sequence

from aip_insights.models.program import InvestmentProgram


def expense(expense_id: str, amount: float, **overrides: Any) -> dict[str, Any]:
    payload = {
        "id": expense_id,
        "amount": amount,
        "date": "2025-03-15",
        "description": f"Expense {expense_id}",
    }
    payload.update(overrides)
    return payload


def milestone(milestone_id: str, **overrides: Any) -> dict[str, Any]:
    payload = {
        "id": milestone_id,
        "name": f"Milestone {milestone_id}",
        "dueDate": "2025-06-30",
        "status": "PENDING",
        "completedAt": None,
    }
    payload.update(overrides)
    return payload


def project(project_id: str, *, sector: str, total_cost: float, **overrides: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "id": project_id,
        "name": f"Project {project_id}",
        "sector": sector,
        "totalCost": total_cost,
        "startDate": "2025-01-15",
        "endDate": "2025-11-30",
        "progress": 50,
        "expenses": [],
        "milestones": [milestone(f"{project_id}-m1")],
    }
    payload.update(overrides)
    return payload


def program(
    program_id: str,
    *,
    total_amount: float,
    projects: Sequence[dict[str, Any]],
    year: int = 2025,
    status: str = "APPROVED",
    **overrides: Any,
) -> InvestmentProgram:
    payload: dict[str, Any] = {
        "id": program_id,
        "name": f"AIP {program_id}",
        "totalAmount": total_amount,
        "status": status,
        "fiscalYear": {"year": year},
        "projects": list(projects),
    }
    payload.update(overrides)
    return InvestmentProgram.model_validate(payload)


def scenario_program(*, road_cost: float = 60000) -> InvestmentProgram:
    """P1: two projects, 90% of the budget allocated, feeding program without dates."""
    return program(
        "P1",
        total_amount=100000,
        projects=[
            project(
                "road-repair",
                name="Road Repair",
                sector="Infrastructure",
                total_cost=road_cost,
                expenses=[expense("road-e1", 30000)],
            ),
            project(
                "feeding-program",
                name="Feeding Program",
                sector="Health",
                total_cost=30000,
                startDate=None,
                endDate=None,
                expenses=[expense("feeding-e1", 28000)],
            ),
        ],
    )


def write_snapshot_export(tmp_path: Path, programs: Sequence[InvestmentProgram]) -> Path:
    """Persist programs in the JSON export layout read by JsonSnapshotProvider."""
    path = tmp_path / "snapshots" / "aip_snapshots.json"
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = {
        "programs": [item.model_dump(mode="json", by_alias=True) for item in programs],
    }
    path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
    return path
