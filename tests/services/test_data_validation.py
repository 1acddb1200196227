import asyncio

import pytest

from aip_insights.models.program import Milestone
from aip_insights.services.analysis.data_validation import (
    DataValidationAnalyzer,
    summarize,
    validate_milestone,
    validate_program,
    validate_project,
)
from aip_insights.services.analysis.errors import InvalidInputError, NotFoundError
from aip_insights.services.analysis.snapshots import InMemorySnapshotProvider
from aip_insights.services.analysis.storage import InMemoryModelStorage
from tests.utils import expense, milestone, program, project, scenario_program


def _analyzer(*programs, **kwargs) -> DataValidationAnalyzer:
    return DataValidationAnalyzer(InMemorySnapshotProvider(programs), **kwargs)


def _result(report, entity_id):
    return next(result for result in report.validation_results if result.entity_id == entity_id)


def _single_project_program(expense_total: float):
    return program(
        "single",
        total_amount=10000,
        projects=[
            project(
                "solo",
                sector="Health",
                total_cost=10000,
                expenses=[expense("solo-e1", expense_total)],
            )
        ],
    )


def test_scenario_program_is_valid_at_exactly_ninety_percent(stub_metrics):
    analyzer = _analyzer(scenario_program())

    report = asyncio.run(analyzer.predict({"aipId": "P1"}))

    program_result = _result(report, "P1")
    assert program_result.entity_type == "AIP"
    assert program_result.is_valid is True
    assert program_result.issues == []

    feeding = _result(report, "feeding-program")
    assert feeding.is_valid is True
    assert [(issue.field, issue.severity) for issue in feeding.issues] == [("dates", "medium")]
    assert stub_metrics.gauge_calls[-1] == {
        "metric": "analysis.validation.critical_issues",
        "value": 0,
        "tags": {"model": "data-validation-model"},
    }


def test_underallocation_below_ninety_percent_is_flagged():
    issues = validate_program(scenario_program(road_cost=59990))

    assert [(issue.field, issue.severity) for issue in issues] == [("totalAmount", "medium")]
    assert issues[0].message == "More than 10% of AIP budget is unallocated to projects"


def test_overrun_beyond_five_percent_is_high():
    overrun = program(
        "over",
        total_amount=100000,
        projects=[project("big", sector="Health", total_cost=105001)],
    )

    issues = validate_program(overrun)

    assert [(issue.field, issue.severity) for issue in issues] == [("totalAmount", "high")]


def test_expenses_at_ten_percent_over_budget_do_not_fire():
    target = _single_project_program(11000)

    issues = validate_project(target.projects[0], target)

    assert not any(issue.field == "expenses" for issue in issues)


def test_expenses_beyond_ten_percent_over_budget_are_high():
    target = _single_project_program(11100)

    issues = validate_project(target.projects[0], target)

    overspend = [issue for issue in issues if issue.field == "expenses"]
    assert len(overspend) == 1
    assert overspend[0].severity == "high"
    assert overspend[0].message == "Total expenses exceed project budget by more than 10%"


def test_completed_milestone_without_completion_date_yields_single_issue():
    target = _single_project_program(5000)
    item = Milestone.model_validate(milestone("done", status="COMPLETED", completedAt=None))

    issues = validate_milestone(item, target.projects[0])

    assert [(issue.field, issue.severity) for issue in issues] == [("completedAt", "medium")]


def test_completion_date_on_pending_milestone_flags_status():
    target = _single_project_program(5000)
    item = Milestone.model_validate(milestone("early", status="PENDING", completedAt="2025-05-01"))

    issues = validate_milestone(item, target.projects[0])

    assert [(issue.field, issue.severity) for issue in issues] == [("status", "medium")]


def test_project_rules_cover_dates_and_empty_collections():
    target = program(
        "rules",
        total_amount=1000,
        projects=[
            project(
                "backwards",
                sector=" ",
                total_cost=0,
                startDate="2025-06-01",
                endDate="2025-02-01",
                milestones=[],
            )
        ],
    )

    issues = validate_project(target.projects[0], target)

    assert [(issue.field, issue.severity) for issue in issues] == [
        ("totalCost", "high"),
        ("sector", "medium"),
        ("endDate", "high"),
        ("expenses", "low"),
        ("milestones", "medium"),
    ]


def test_expense_outside_project_window_and_missing_description():
    target = program(
        "expenses",
        total_amount=1000,
        projects=[
            project(
                "window",
                sector="Health",
                total_cost=1000,
                expenses=[expense("late", 100, date="2026-01-10", description="")],
            )
        ],
    )

    report = asyncio.run(_analyzer(target).predict({"aipId": "expenses"}))

    late = _result(report, "late")
    assert late.entity_type == "Expense"
    assert [(issue.field, issue.severity) for issue in late.issues] == [
        ("date", "medium"),
        ("description", "low"),
    ]


def test_single_sector_diversification_needs_more_than_three_projects():
    three = program(
        "three",
        total_amount=3000,
        projects=[project(f"p{i}", sector="Health", total_cost=1000) for i in range(3)],
    )
    four = program(
        "four",
        total_amount=4000,
        projects=[project(f"p{i}", sector="Health", total_cost=1000) for i in range(4)],
    )

    assert validate_program(three) == []
    assert [(issue.field, issue.severity) for issue in validate_program(four)] == [
        ("projects.sector", "low")
    ]


def test_program_without_projects_or_fiscal_year():
    empty = program("empty", total_amount=0, projects=[], fiscalYear=None, name="")

    issues = validate_program(empty)

    assert [(issue.field, issue.severity) for issue in issues] == [
        ("name", "high"),
        ("totalAmount", "high"),
        ("fiscalYear", "high"),
        ("projects", "medium"),
    ]


def test_summary_counts_critical_issues():
    target = program(
        "summary",
        total_amount=1000,
        projects=[project("free", sector="Health", total_cost=0)],
    )

    report = asyncio.run(_analyzer(target).predict({"aipId": "summary"}))

    assert report.summary.total_entities == 3
    assert report.summary.valid_entities == 2
    assert report.summary.critical_issue_count == 1
    assert report.summary.percent_valid == pytest.approx(200 / 3)
    assert summarize([]).percent_valid == 0.0


def test_predict_is_idempotent_on_unchanged_snapshot():
    analyzer = _analyzer(scenario_program())

    first = asyncio.run(analyzer.predict({"aipId": "P1"}))
    second = asyncio.run(analyzer.predict({"aipId": "P1"}))

    dump = lambda report: [item.model_dump_json(by_alias=True) for item in report.validation_results]  # noqa: E731
    assert dump(first) == dump(second)


def test_results_follow_snapshot_traversal_order():
    report = asyncio.run(_analyzer(scenario_program()).predict({"aipId": "P1"}))

    assert [(result.entity_type, result.entity_id) for result in report.validation_results] == [
        ("AIP", "P1"),
        ("Project", "road-repair"),
        ("Expense", "road-e1"),
        ("Milestone", "road-repair-m1"),
        ("Project", "feeding-program"),
        ("Expense", "feeding-e1"),
        ("Milestone", "feeding-program-m1"),
    ]


def test_predict_errors_propagate():
    analyzer = _analyzer(scenario_program())

    with pytest.raises(InvalidInputError):
        asyncio.run(analyzer.predict({"aipId": None}))
    with pytest.raises(NotFoundError):
        asyncio.run(analyzer.predict({"aipId": "unknown"}))


def test_train_bumps_minor_version_and_persists():
    storage = InMemoryModelStorage()
    analyzer = _analyzer(storage=storage)

    metadata = asyncio.run(analyzer.train())

    assert metadata.version.label == "1.1.0"
    assert metadata.convergence_metrics == {"rule_count": 20}
    restored = _analyzer(storage=storage)
    asyncio.run(restored.load_model())
    assert restored.get_version() == analyzer.get_version()


def test_load_model_keeps_defaults_when_nothing_stored():
    analyzer = _analyzer()

    asyncio.run(analyzer.load_model())

    assert analyzer.get_version().label == "1.0.0"


def test_unexpected_errors_are_counted_and_reraised(stub_metrics, caplog):
    class WrongTypeProvider:
        async def get_program(self, program_id):
            return ["not", "a", "program"]

        async def list_completed_programs(self, *, before_year, limit):
            return []

    analyzer = DataValidationAnalyzer(WrongTypeProvider())

    with caplog.at_level("ERROR", logger="aip_insights.analysis"):
        with pytest.raises(AttributeError):
            asyncio.run(analyzer.predict({"aipId": "P1"}))

    assert stub_metrics.increment_calls[-1]["tags"] == {
        "model": "data-validation-model",
        "code": "500_UNEXPECTED",
    }
    record = next(r for r in caplog.records if r.getMessage() == "analysis.prediction_error")
    assert record.analysis["model"] == "DataValidationModel"
    assert record.analysis["code"] == "500_UNEXPECTED"
