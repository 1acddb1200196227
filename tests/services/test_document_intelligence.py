import asyncio

import pytest

from aip_insights.services.analysis.document_intelligence import (
    DEFAULT_DOCUMENT_TYPE_PATTERNS,
    DEFAULT_IMPORTANT_PHRASE_INDICATORS,
    DEFAULT_TOPIC_KEYWORDS,
    DocumentIntelligenceAnalyzer,
    DocumentPatternConfig,
)
from aip_insights.services.analysis.errors import InvalidInputError, ModelStorageError
from aip_insights.services.analysis.storage import InMemoryModelStorage, LocalFileModelStorage

PROPOSAL = (
    "Project Proposal for Barangay San Isidro. "
    "This proposed plan covers road repair and drainage improvement. "
    "Expected outcomes are safer roads for the community. "
    "Total budget is ₱1,250,000 released on March 15, 2025 by the Department of Public Works."
)


def _predict(content: str, analyzer: DocumentIntelligenceAnalyzer | None = None, **extra):
    analyzer = analyzer or DocumentIntelligenceAnalyzer()
    return asyncio.run(analyzer.predict({"documentId": "doc-1", "content": content, **extra}))


def test_proposal_document_analysis(stub_metrics):
    report = _predict(PROPOSAL, projectId="proj-9")
    analysis = report.document_analysis

    assert analysis.document_id == "doc-1"
    assert analysis.document_type == "proposal"
    assert analysis.summary == "Project Proposal for Barangay San Isidro."
    assert [topic.topic for topic in analysis.topics] == ["infrastructure", "social"]
    assert analysis.topics[0].relevance == pytest.approx(0.4513, abs=1e-4)
    assert analysis.sentiment_score == 0.5
    assert report.confidence == 0.82
    assert report.source == "document-intelligence-model-v1.0.0"
    assert report.execution_time_ms >= 0
    assert stub_metrics.increment_calls[-1]["metric"] == "analysis.success"


def test_entities_are_extracted_with_confidence_and_normalized_amounts():
    entities = _predict(PROPOSAL).document_analysis.extracted_entities
    by_type = {}
    for entity in entities:
        by_type.setdefault(entity.type, []).append(entity)

    assert [(e.entity, e.value, e.confidence) for e in by_type["amount"]] == [
        ("₱1,250,000", "1250000", 0.85)
    ]
    assert [(e.entity, e.confidence) for e in by_type["date"]] == [("March 15, 2025", 0.8)]
    assert [(e.entity, e.confidence) for e in by_type["organization"]] == [
        ("Department of Public Works", 0.8)
    ]
    assert [e.entity for e in by_type["location"]] == ["Barangay San Isidro"]
    assert "Barangay San Isidro" in [e.entity for e in by_type["name"]]


def test_peso_amount_variants_are_normalized():
    analyzer = DocumentIntelligenceAnalyzer()

    amounts = [
        (entity.entity, entity.value, entity.confidence)
        for entity in analyzer.extract_entities("Paid PHP 5,000.00 and 250 pesos for supplies.")
        if entity.type == "amount"
    ]

    assert amounts == [("PHP 5,000.00", "5000.00", 0.7), ("250 pesos", "250", 0.7)]


def test_key_phrases_rank_indicator_sentences():
    phrases = _predict(PROPOSAL).document_analysis.key_phrases

    assert phrases[0].phrase.startswith("Total budget is")
    assert phrases[0].importance == pytest.approx(0.85)
    assert any(
        phrase.importance == 0.8 and phrase.phrase == "Expected outcomes are safer roads for the community"
        for phrase in phrases
    )
    assert [phrase.importance for phrase in phrases] == sorted(
        (phrase.importance for phrase in phrases), reverse=True
    )


def test_key_phrases_are_capped_at_ten():
    content = " ".join(f"Sentence number {index} mentions Barangay Hall." for index in range(15))

    phrases = DocumentIntelligenceAnalyzer().identify_key_phrases(content)

    assert len(phrases) == 10


def test_recommendations_follow_document_type_and_topics():
    recommendations = _predict(PROPOSAL).recommendations

    assert recommendations.classification == "Proposal"
    assert recommendations.tags == ["Proposal", "Infrastructure", "Social"]
    assert recommendations.related_documents == []
    assert recommendations.action_items == [
        "Review proposal objectives and scope",
        "Verify budget requirements align with available resources",
        "Check timeline feasibility",
    ]


def test_short_content_falls_back_to_generic_results():
    report = _predict("Short. Tiny!")

    assert report.document_analysis.document_type == "other"
    assert report.document_analysis.summary == "No meaningful content found to summarize."
    assert report.document_analysis.key_phrases == []
    assert report.document_analysis.topics == []
    assert report.recommendations.tags == ["Other"]
    assert report.recommendations.action_items == [
        "Review document for completeness",
        "Identify key action points",
        "Determine appropriate next steps",
    ]


@pytest.mark.parametrize(
    ("content", "expected"),
    [
        ("The committee met on Tuesday to review the schedule.", 0.5),
        ("The program was a success with excellent growth. One concern remains.", 0.75),
        ("Every delay is a risk and a loss.", 0.0),
    ],
)
def test_sentiment_score(content, expected):
    assert DocumentIntelligenceAnalyzer().calculate_sentiment(content) == expected


def test_injected_pattern_tables_drive_classification():
    config = DocumentPatternConfig(document_type_patterns={"memo": ("memo", "memorandum")})
    report = _predict("This memo covers the weekly schedule.", DocumentIntelligenceAnalyzer(config=config))

    assert report.document_analysis.document_type == "memo"
    assert report.recommendations.classification == "Memo"
    assert report.recommendations.action_items[0] == "Review document for completeness"


@pytest.mark.parametrize(
    "payload",
    [
        {"documentId": "doc-1"},
        {"content": "Budget report for the quarter."},
        {"documentId": "doc-1", "content": "   "},
        {"documentId": 7, "content": "Budget report for the quarter."},
        {"documentId": "doc-1", "content": "Budget report.", "projectId": 12},
    ],
)
def test_predict_rejects_malformed_input(payload, stub_metrics):
    with pytest.raises(InvalidInputError):
        asyncio.run(DocumentIntelligenceAnalyzer().predict(payload))

    assert stub_metrics.increment_calls[-1]["tags"]["code"] == "400_INVALID_INPUT"


def test_prediction_errors_are_logged_with_document_id(caplog):
    with caplog.at_level("ERROR", logger="aip_insights.analysis"):
        with pytest.raises(InvalidInputError):
            asyncio.run(DocumentIntelligenceAnalyzer().predict({"documentId": "doc-42", "content": ""}))

    record = next(r for r in caplog.records if r.getMessage() == "analysis.prediction_error")
    assert record.analysis["documentId"] == "doc-42"
    assert record.analysis["model"] == "DocumentIntelligenceModel"


def test_save_and_load_round_trip_restores_version_and_tables():
    storage = InMemoryModelStorage()
    config = DocumentPatternConfig(topic_keywords={"water": ("well", "pump", "pipeline")})
    trained = DocumentIntelligenceAnalyzer(storage=storage, config=config)
    asyncio.run(trained.train())

    restored = DocumentIntelligenceAnalyzer(storage=storage)
    asyncio.run(restored.load_model())

    assert restored.get_version() == trained.get_version()
    assert restored.get_version().label == "1.1.0"
    assert dict(restored.config.topic_keywords) == {"water": ("well", "pump", "pipeline")}
    assert dict(restored.config.document_type_patterns) == dict(DEFAULT_DOCUMENT_TYPE_PATTERNS)
    assert restored.config.important_phrase_indicators == DEFAULT_IMPORTANT_PHRASE_INDICATORS


def test_round_trip_through_file_storage(tmp_path):
    storage = LocalFileModelStorage(tmp_path)
    asyncio.run(DocumentIntelligenceAnalyzer(storage=storage).save_model("doc-model.json"))

    restored = DocumentIntelligenceAnalyzer(storage=storage)
    asyncio.run(restored.load_model("doc-model.json"))

    assert (tmp_path / "doc-model.json").exists()
    assert dict(restored.config.topic_keywords) == dict(DEFAULT_TOPIC_KEYWORDS)


def test_load_model_without_saved_blob_raises():
    with pytest.raises(ModelStorageError) as excinfo:
        asyncio.run(DocumentIntelligenceAnalyzer().load_model())

    assert excinfo.value.code == "404_MODEL_NOT_FOUND"


def test_evaluate_returns_static_metrics():
    result = asyncio.run(DocumentIntelligenceAnalyzer().evaluate())

    assert result.accuracy == 0.82
    assert result.metrics["entity_extraction_accuracy"] == 0.85


def test_unexpected_errors_are_counted_and_reraised(stub_metrics, caplog):
    broken = DocumentPatternConfig(document_type_patterns={"memo": None})

    with caplog.at_level("ERROR", logger="aip_insights.analysis"):
        with pytest.raises(TypeError):
            _predict("This memo covers the weekly schedule.", DocumentIntelligenceAnalyzer(config=broken))

    assert stub_metrics.increment_calls[-1]["tags"]["code"] == "500_UNEXPECTED"
    record = next(r for r in caplog.records if r.getMessage() == "analysis.prediction_error")
    assert record.analysis["errorType"] == "TypeError"
    assert record.analysis["documentId"] == "doc-1"
