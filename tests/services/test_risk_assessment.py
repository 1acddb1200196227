import asyncio

import pytest

from aip_insights.models.program import Project
from aip_insights.services.analysis.errors import InvalidInputError, ModelStorageError
from aip_insights.services.analysis.risk_assessment import (
    RiskAssessmentAnalyzer,
    RiskAssessmentConfig,
    has_short_timeline,
)
from aip_insights.services.analysis.snapshots import InMemorySnapshotProvider
from aip_insights.services.analysis.storage import InMemoryModelStorage
from tests.utils import expense, milestone, program, project

WELL_DESCRIPTION = (
    "Water well rehabilitation for the barangay with a monitored outcome framework, "
    "household result tracking and a community maintenance plan."
)


def _bridge():
    return project(
        "bridge",
        sector="Infrastructure",
        total_cost=800000,
        description="New bridge construction with engineering and system integration.",
        expenses=[expense("bridge-e1", 600000)],
        milestones=[
            milestone("bridge-m1", name="Start works", dueDate="2025-02-01"),
            milestone("bridge-m2", name="Complete works", dueDate="2025-04-01"),
        ],
    )


def _risk_program():
    return program(
        "RA",
        total_amount=900000,
        projects=[
            _bridge(),
            project("well", sector="Health", total_cost=50000, description=WELL_DESCRIPTION),
        ],
    )


def _analyzer(*programs, **kwargs) -> RiskAssessmentAnalyzer:
    return RiskAssessmentAnalyzer(InMemorySnapshotProvider(programs), **kwargs)


def _factors(project_risk):
    return {factor.factor: factor for factor in project_risk.risk_factors}


def test_rushed_large_construction_project_profile(stub_metrics):
    report = asyncio.run(_analyzer(_risk_program()).predict({"aipId": "RA"}))

    bridge = report.project_risks[0]
    factors = _factors(bridge)
    assert bridge.project_id == "bridge"
    assert len(bridge.risk_factors) == 13
    assert factors["resourceShortage"].probability == pytest.approx(0.7)
    assert factors["resourceShortage"].severity == "high"
    assert factors["technicalComplexity"].probability == pytest.approx(0.55)
    assert factors["technicalComplexity"].severity == "medium"
    assert factors["timeConstraints"].probability == pytest.approx(0.7)
    assert factors["budgetOverrun"].probability == pytest.approx(0.75)
    assert factors["budgetOverrun"].category == "financial"
    assert factors["cashFlowIssues"].severity == "low"
    assert factors["scopeCreep"].probability == pytest.approx(0.725)
    assert factors["impactShortfall"].probability == pytest.approx(0.75)
    assert bridge.overall_risk_score == pytest.approx(0.35225625)
    assert report.confidence == 0.78
    assert report.source == "risk-assessment-model-v1.0.0"
    assert stub_metrics.gauge_calls[-1]["metric"] == "analysis.risk.elevated_projects"


def test_mitigations_cover_top_three_high_severity_risks():
    bridge = asyncio.run(_analyzer(_risk_program()).predict({"aipId": "RA"})).project_risks[0]

    assert len(bridge.mitigation_suggestions) == 6
    assert set(bridge.mitigation_suggestions) == {
        "Implement strict budget monitoring with regular reporting",
        "Include appropriate contingency in budget planning",
        "Define clear, measurable success criteria at project start",
        "Implement monitoring and evaluation framework",
        "Develop a detailed resource allocation plan before project start",
        "Identify backup resource options and establish contingency agreements",
    }


def test_small_project_with_clear_outcomes():
    well = asyncio.run(_analyzer(_risk_program()).predict({"aipId": "RA"})).project_risks[1]
    factors = _factors(well)

    assert factors["timeConstraints"].probability == pytest.approx(0.3)
    assert factors["timeConstraints"].severity == "low"
    assert factors["resourceShortage"].probability == pytest.approx(0.5)
    assert factors["resourceShortage"].severity == "medium"
    assert factors["impactShortfall"].probability == pytest.approx(0.45)


def test_short_timeline_needs_start_and_completion_milestones():
    assert has_short_timeline(Project.model_validate(_bridge())) is True

    single = Project.model_validate(project("solo", sector="Health", total_cost=1000))
    assert has_short_timeline(single) is False

    ordered = Project.model_validate(
        project(
            "ordered",
            sector="Health",
            total_cost=1000,
            milestones=[
                milestone("o1", order=1, dueDate="2025-01-01"),
                milestone("o2", order=2, dueDate="2025-09-01"),
            ],
        )
    )
    assert has_short_timeline(ordered) is False


def test_reporting_floor_filters_factors():
    config = RiskAssessmentConfig(reporting_floor=0.65)

    bridge = asyncio.run(_analyzer(_risk_program(), config=config).predict({"aipId": "RA"})).project_risks[0]

    assert set(_factors(bridge)) == {
        "resourceShortage",
        "timeConstraints",
        "budgetOverrun",
        "scopeCreep",
        "impactShortfall",
    }


def test_invalid_input_is_rejected(stub_metrics):
    with pytest.raises(InvalidInputError):
        asyncio.run(_analyzer().predict({"aipId": 42}))

    assert stub_metrics.increment_calls[-1]["tags"]["code"] == "400_INVALID_INPUT"


def test_train_and_evaluate_are_placeholders():
    analyzer = _analyzer()

    assert asyncio.run(analyzer.train()).samples_processed == 0
    result = asyncio.run(analyzer.evaluate())
    assert result.accuracy == 0.79
    assert result.metrics["financial_risk_accuracy"] == 0.82


def test_save_and_load_round_trip_restores_thresholds():
    storage = InMemoryModelStorage()
    config = RiskAssessmentConfig(low_threshold=0.2, medium_threshold=0.5)
    asyncio.run(_analyzer(storage=storage, config=config).save_model("risk.json"))

    restored = _analyzer(storage=storage)
    asyncio.run(restored.load_model("risk.json"))

    assert restored.config.low_threshold == 0.2
    assert restored.config.medium_threshold == 0.5
    assert restored.config.severity_for(0.55) == "high"


def test_load_model_without_saved_blob_raises():
    with pytest.raises(ModelStorageError) as excinfo:
        asyncio.run(_analyzer().load_model())

    assert excinfo.value.code == "404_MODEL_NOT_FOUND"
