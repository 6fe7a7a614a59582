import pytest

from app.models.record import CombinedRecord, TransformedRecord
from app.models.risk import RiskCategory
from app.services.risk import RiskScorer, categorize


def _combined(identifier="alice", **sources) -> CombinedRecord:
    record = CombinedRecord(identifier=identifier)
    for name, fields in sources.items():
        record.add_source(name, fields)
    return record


@pytest.mark.parametrize(
    "score,expected",
    [
        (0.0, RiskCategory.NONE),
        (0.000001, RiskCategory.LOW),
        (0.32, RiskCategory.LOW),
        (0.33, RiskCategory.MEDIUM),
        (0.749999, RiskCategory.MEDIUM),
        (0.75, RiskCategory.HIGH),
        (1.0, RiskCategory.HIGH),
    ],
)
def test_category_boundaries(score, expected):
    assert categorize(score) is expected


def test_empty_record_scores_none_without_evidence():
    assessment = RiskScorer().score("alice", combined=_combined(social={"followers": 10}))

    assert assessment.score == 0.0
    assert assessment.category is RiskCategory.NONE
    assert assessment.evidence == []


def test_scoring_is_deterministic():
    combined = _combined(social={"flagged": True}, web={"threat_level": "medium"})
    scorer = RiskScorer()

    assert scorer.score("alice", combined=combined) == scorer.score("alice", combined=combined)


def test_independent_signals_combine_with_noisy_or():
    transformed = TransformedRecord(identifier="alice", features={"a": 0.5, "b": 0.5})

    assessment = RiskScorer().score("alice", transformed=transformed)

    assert assessment.score == 0.75
    assert assessment.category is RiskCategory.HIGH
    assert [s.name for s in assessment.evidence] == ["a", "b"]
    assert all(s.source == "transform" for s in assessment.evidence)


@pytest.mark.parametrize(
    "field,value,expected",
    [
        ("risk_score", 0.4, 0.4),
        ("risk", 1.7, 1.0),
        ("threat_level", "HIGH", 0.9),
        ("threat_level", "unknown", 0.0),
        ("criminal_records", ["a", "b"], 0.8),
        ("criminal_records", 5, 1.0),
        ("flagged", True, 0.6),
        ("flagged", "yes", 0.0),
        ("watchlist_match", True, 1.0),
        ("risk_score", "abc", 0.0),
        ("followers", 0.9, 0.0),
    ],
)
def test_signal_strength(field, value, expected):
    assert RiskScorer.signal_strength(field, value) == pytest.approx(expected)


def test_watchlist_match_is_high_risk():
    assessment = RiskScorer().score("alice", combined=_combined(records={"watchlist_match": True}))

    assert assessment.score == 1.0
    assert assessment.category is RiskCategory.HIGH
    assert assessment.evidence[0].source == "records"
    assert assessment.evidence[0].name == "watchlist_match"


def test_malformed_values_are_ignored():
    combined = _combined(social={"risk_score": "n/a", "criminal_records": float("nan"), "flagged": None})

    assessment = RiskScorer().score("alice", combined=combined)

    assert assessment.category is RiskCategory.NONE


def test_same_signal_from_both_records_counts_once():
    combined = _combined(social={"risk_score": 0.5})
    transformed = TransformedRecord(identifier="alice", features={"social.risk_score": 0.5})

    assessment = RiskScorer().score("alice", combined=combined, transformed=transformed)

    assert assessment.score == 0.5
    assert len(assessment.evidence) == 1


def test_non_finite_features_are_ignored():
    transformed = TransformedRecord(identifier="alice", features={"x": float("nan"), "y": 0.2})

    assessment = RiskScorer().score("alice", transformed=transformed)

    assert assessment.score == 0.2
    assert [s.name for s in assessment.evidence] == ["y"]


def test_evidence_is_sorted_by_source_then_name():
    combined = _combined(web={"flagged": True}, social={"threat_level": "low", "flagged": True})

    assessment = RiskScorer().score("alice", combined=combined)

    assert [(s.source, s.name) for s in assessment.evidence] == [
        ("social", "flagged"),
        ("social", "threat_level"),
        ("web", "flagged"),
    ]


def test_score_is_rounded():
    transformed = TransformedRecord(identifier="alice", features={"a": 0.1, "b": 0.1, "c": 0.1})

    assessment = RiskScorer().score("alice", transformed=transformed)

    assert assessment.score == 0.271


def test_score_for_selects_the_configured_input():
    combined = _combined(social={"watchlist_match": True})
    transformed = TransformedRecord(identifier="alice", features={"model": 0.1})
    scorer = RiskScorer()

    assert scorer.score_for("combined", combined, transformed).score == 1.0
    assert scorer.score_for("transformed", combined, transformed).score == 0.1
    both = scorer.score_for("both", combined, transformed)
    assert {(s.source, s.name) for s in both.evidence} == {("social", "watchlist_match"), ("transform", "model")}
