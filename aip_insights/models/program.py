"""Read-only snapshot of an Annual Investment Program and its children."""

from __future__ import annotations

import datetime as dt
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

COMPLETED_STATUS = "COMPLETED"


def _coerce_date(value: Any) -> Any:
    """Accept ISO datetimes from the data layer and keep only the calendar date."""
    if isinstance(value, dt.datetime):
        return value.date()
    if isinstance(value, str) and "T" in value:
        return dt.datetime.fromisoformat(value.replace("Z", "+00:00")).date()
    if value == "":
        return None
    return value


OptionalDate = Annotated[dt.date | None, BeforeValidator(_coerce_date)]


class SnapshotModel(BaseModel):
    """Immutable base accepting both camelCase and snake_case keys."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        allow_inf_nan=False,
    )


class Expense(SnapshotModel):
    id: str
    amount: float = 0.0
    date: OptionalDate = None
    description: str | None = None


class Milestone(SnapshotModel):
    id: str
    name: str = ""
    due_date: OptionalDate = None
    status: str = "PENDING"
    completed_at: OptionalDate = None
    order: int | None = None


class Project(SnapshotModel):
    id: str
    name: str = ""
    sector: str | None = None
    total_cost: float = 0.0
    start_date: OptionalDate = None
    end_date: OptionalDate = None
    progress: float = Field(default=0.0, ge=0, le=100)
    description: str | None = None
    complexity: str | None = None
    beneficiaries: int | None = None
    expected_return: float | None = None
    maintenance_cost: float | None = None
    expenses: tuple[Expense, ...] = ()
    milestones: tuple[Milestone, ...] = ()

    @property
    def total_expenses(self) -> float:
        return sum(expense.amount for expense in self.expenses)


class FiscalYear(SnapshotModel):
    """Fiscal year bounds; explicit dates override the calendar year."""

    year: int
    start_date: OptionalDate = None
    end_date: OptionalDate = None

    @property
    def bounds(self) -> tuple[dt.date, dt.date]:
        start = self.start_date or dt.date(self.year, 1, 1)
        end = self.end_date or dt.date(self.year, 12, 31)
        return start, end


class InvestmentProgram(SnapshotModel):
    id: str
    name: str = ""
    total_amount: float = 0.0
    status: str = "DRAFT"
    fiscal_year: FiscalYear | None = None
    projects: tuple[Project, ...] = ()

    @field_validator("fiscal_year", mode="before")
    @classmethod
    def _coerce_fiscal_year(cls, value: Any) -> Any:
        if isinstance(value, int) or (isinstance(value, str) and value.strip().isdigit()):
            return {"year": int(value)}
        return value

    @property
    def is_completed(self) -> bool:
        return self.status.upper() == COMPLETED_STATUS
