"""Tests for batch summary statistics."""

from code_threat_scoring.classifier import CATEGORIES
from code_threat_scoring.models import ClassifierOutput, FileOutcome, ScanResult
from code_threat_scoring.stats import pattern_recommendations, score_histogram, summarize

from conftest import make_finding


def _outcome(path: str, score: int, findings=()) -> FileOutcome:
    result = ScanResult(
        fingerprint=path,
        file_path=path,
        findings=tuple(findings),
        classifier_output=ClassifierOutput.neutral(CATEGORIES),
        quantum_threats=(),
        security_score=score,
        recommendations=(),
        compliance={},
        processing_time_ms=1.0,
        feature_version="test",
    )
    return FileOutcome(file_path=path, status="success", result=result)


def _error(path: str) -> FileOutcome:
    return FileOutcome(file_path=path, status="error", error="boom")


class TestSummarize:
    def test_reduces_over_successes_only(self):
        outcomes = [
            _outcome("a.js", 75, [make_finding("SQL_INJECTION", "critical")]),
            _outcome("b.js", 90, [make_finding("INSECURE_HTTP_URL", "low")] * 2),
            _error("c.js"),
            _outcome("d.js", 100),
        ]
        s = summarize(outcomes)
        assert s.total_files == 4
        assert s.scanned_files == 3
        assert s.total_findings == 3
        assert s.critical_findings == 1
        assert s.average_security_score == 88.3

    def test_all_failed(self):
        s = summarize([_error("a.js"), _error("b.js")])
        assert s.total_files == 2
        assert s.scanned_files == 0
        assert s.average_security_score == 0.0

    def test_empty(self):
        assert summarize([]).total_files == 0


class TestHistogram:
    def test_buckets(self):
        outcomes = [_outcome(str(i), s) for i, s in enumerate([0, 25, 26, 50, 80, 81, 100])]
        outcomes.append(_error("x"))
        assert score_histogram(outcomes) == {"0-25": 2, "26-50": 2, "51-80": 1, "81-100": 2}


class TestPatternRecommendations:
    def test_rules_seen_in_several_files(self):
        sql = make_finding("SQL_INJECTION", "critical")
        http = make_finding("INSECURE_HTTP_URL", "low")
        outcomes = [
            _outcome("a.js", 50, [sql, sql, http]),
            _outcome("b.js", 50, [sql]),
            _outcome("c.js", 50, [sql, http]),
            _outcome("d.js", 50, [make_finding("XSS_VULNERABILITY", "high")]),
            _error("e.js"),
        ]
        recs = pattern_recommendations(outcomes)
        assert [(r.rule_name, r.occurrences) for r in recs] == [
            ("SQL_INJECTION", 3),
            ("INSECURE_HTTP_URL", 2),
        ]
        assert recs[0].recommendation == (
            "SQL_INJECTION appears in 3 files - consider implementing a project-wide fix"
        )
        assert recs[0].to_dict()["type"] == "pattern"

    def test_single_file_gives_nothing(self):
        sql = make_finding()
        assert pattern_recommendations([_outcome("a.js", 50, [sql, sql])]) == []
