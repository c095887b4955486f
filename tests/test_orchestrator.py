"""Tests for the scan engine."""

import dataclasses
import hashlib
import subprocess
import sys
import threading
import time
from unittest.mock import Mock, patch

import pytest
from sqlalchemy import select

from code_threat_scoring.cache import MemoryScanCache
from code_threat_scoring.classifier import CATEGORIES, HeuristicClassifier, NullClassifier, ThreatClassifier
from code_threat_scoring.errors import InputError, IntelUnavailable, PersistenceFailure, ScanFailed
from code_threat_scoring.features import FEATURE_VERSION
from code_threat_scoring.models import ClassifierOutput, FeatureVector, ThreatIntel
from code_threat_scoring.orchestrator import CANCELLED_MESSAGE, ScanEngine, ScanState
from code_threat_scoring.store import SqlScanStore, batch_scans

from conftest import HEADERS_OK, SQL_SAMPLE, TEST_PROFILE

RSA_TWICE = HEADERS_OK + "const a = sign('RSA', key);\nconst b = verify('RSA', key);\n"


def _with_settings(profile, **settings):
    return dataclasses.replace(profile, settings=dataclasses.replace(profile.settings, **settings))


class SlowClassifier(ThreatClassifier):
    def classify(self, anomaly_vector, classification_vector):
        time.sleep(0.5)
        return ClassifierOutput.neutral(self.categories)


class FailingClassifier(ThreatClassifier):
    def classify(self, anomaly_vector, classification_vector):
        raise RuntimeError("model crashed")


class OutOfRangeClassifier(ThreatClassifier):
    def classify(self, anomaly_vector, classification_vector):
        neutral = ClassifierOutput.neutral(self.categories)
        return dataclasses.replace(neutral, anomaly_score=3.0)


class FlakyClassifier(NullClassifier):
    """Fails the first call, then behaves."""

    def __init__(self):
        self.calls = 0

    def classify(self, anomaly_vector, classification_vector):
        self.calls += 1
        if self.calls == 1:
            raise RuntimeError("warming up")
        return super().classify(anomaly_vector, classification_vector)


class BlockingClassifier(ThreatClassifier):
    def __init__(self):
        self.release = threading.Event()

    def classify(self, anomaly_vector, classification_vector):
        self.release.wait()
        return ClassifierOutput.neutral(self.categories)


class TrackingClassifier(NullClassifier):
    def __init__(self):
        self.loaded = 0
        self.closed = 0

    def load(self):
        self.loaded += 1

    def close(self):
        self.closed += 1


class CancelAfter:
    """Event stand-in that reports cancellation after ``n`` checks."""

    def __init__(self, n):
        self.n = n
        self.calls = 0

    def is_set(self):
        self.calls += 1
        return self.calls > self.n


class TestSingleScan:
    def test_empty_input(self, engine):
        result = engine.scan("")
        assert result.security_score == 100
        assert result.findings == ()
        assert result.quantum_threats == ()
        assert result.recommendations == ()

    def test_empty_input_with_heuristic_classifier(self, default_profile):
        with ScanEngine(profile=default_profile) as eng:
            assert isinstance(eng.classifier, HeuristicClassifier)
            assert eng.scan("").security_score == 100

    def test_sql_injection_example(self, engine):
        result = engine.scan(SQL_SAMPLE, file_path="db.js")
        sql = [f for f in result.findings if f.rule_name == "SQL_INJECTION"]
        assert len(sql) == 1
        assert sql[0].severity_tier == "critical"
        # -25 for the injection, -8 for the missing security headers
        assert result.security_score == 67
        assert result.file_path == "db.js"
        assert result.feature_version == FEATURE_VERSION

    def test_rsa_used_twice(self, engine):
        result = engine.scan(RSA_TWICE)
        assert [(t.algorithm_name, t.risk_tier, t.occurrence_count) for t in result.quantum_threats] == [
            ("RSA", "high", 2),
        ]
        # Two WEAK_QUANTUM_CRYPTO findings (-50) and one quantum penalty (-10)
        assert result.count_by_tier()["critical"] == 2
        assert result.security_score == 40

    def test_compliance_per_profile_framework(self, engine):
        result = engine.scan(SQL_SAMPLE)
        assert list(result.compliance) == ["OWASP", "NIST", "ISO27001", "PCI-DSS"]
        assert result.compliance["OWASP"].per_control_pass["A03_Injection"] is False

    def test_fingerprint_is_sha256_of_utf8(self, engine):
        text = "const café = 1;"
        result = engine.scan(text)
        assert result.fingerprint == hashlib.sha256(text.encode("utf-8")).hexdigest()
        assert engine.scan(text.encode("utf-8")).fingerprint == result.fingerprint

    def test_invalid_utf8_degrades(self, engine):
        result = engine.scan(b"eval(x)\xff\xfe", file_path="blob.js", force_rescan=True)
        assert any("not valid UTF-8" in w for w in result.warnings)
        assert result.fingerprint == hashlib.sha256(b"eval(x)\xff\xfe").hexdigest()

    @pytest.mark.parametrize("bad", [None, 42])
    def test_input_error(self, engine, bad):
        with pytest.raises(InputError):
            engine.scan(bad)

    @pytest.mark.parametrize("text", [
        "",
        SQL_SAMPLE * 40,
        RSA_TWICE,
        "\x00\x01\x02" * 500,
        "eval(atob(x)); exec(`${cmd}`); Math.random(); http://example.com/ ../../etc" * 30,
    ])
    def test_score_always_in_range(self, default_profile, text):
        with ScanEngine(profile=default_profile) as eng:
            assert 0 <= eng.scan(text).security_score <= 100


class TestCaching:
    def test_second_scan_is_cache_hit(self, engine):
        first = engine.scan(SQL_SAMPLE)
        second = engine.scan(SQL_SAMPLE)
        assert first.from_cache is False
        assert second.from_cache is True

        def comparable(result):
            d = result.to_dict()
            del d["processingTimeMs"], d["fromCache"]
            return d

        assert comparable(first) == comparable(second)

    def test_force_rescan_skips_cache(self, engine):
        engine.scan(SQL_SAMPLE)
        assert engine.scan(SQL_SAMPLE, force_rescan=True).from_cache is False

    def test_stale_feature_version_is_ignored(self, default_profile):
        cache = MemoryScanCache()
        with ScanEngine(profile=default_profile, classifier=NullClassifier(), cache=cache) as eng:
            result = eng.scan(SQL_SAMPLE)
            cache.put(result.fingerprint, dataclasses.replace(result, feature_version="anomaly-v0"), 60)
            assert eng.scan(SQL_SAMPLE).from_cache is False

    @pytest.mark.parametrize("source,ttl", [
        (HEADERS_OK, 3600),
        (SQL_SAMPLE, 1800),
    ])
    def test_ttl_depends_on_score(self, default_profile, source, ttl):
        cache = Mock()
        cache.get.return_value = None
        with ScanEngine(profile=default_profile, classifier=NullClassifier(), cache=cache) as eng:
            eng.scan(source)
        cache.put.assert_called_once()
        assert cache.put.call_args.args[2] == ttl

    def test_broken_cache_does_not_fail_scan(self, default_profile):
        cache = Mock()
        cache.get.side_effect = ConnectionError("cache down")
        cache.put.side_effect = ConnectionError("cache down")
        with ScanEngine(profile=default_profile, classifier=NullClassifier(), cache=cache) as eng:
            assert eng.scan(SQL_SAMPLE).security_score == 67


class TestStates:
    def test_full_pipeline_states(self, engine):
        seen = []
        engine.scan(SQL_SAMPLE, file_path="a.js", on_state=lambda path, state: seen.append((path, state)))
        assert seen == [
            ("a.js", ScanState.PENDING),
            ("a.js", ScanState.MATCHING),
            ("a.js", ScanState.CLASSIFYING),
            ("a.js", ScanState.QUANTUM_ASSESSING),
            ("a.js", ScanState.SCORING),
            ("a.js", ScanState.COMPLETE),
        ]

    def test_cache_hit_skips_intermediate_states(self, engine):
        engine.scan(SQL_SAMPLE)
        seen = []
        engine.scan(SQL_SAMPLE, on_state=lambda path, state: seen.append(state))
        assert seen == [ScanState.PENDING, ScanState.COMPLETE]

    def test_extractor_contract_violation_fails_scan(self, engine):
        bad = FeatureVector(kind="anomaly", version="anomaly-v1", values=(2.0,) * 100)
        seen = []
        with patch("code_threat_scoring.orchestrator.extract_features", return_value=bad):
            with pytest.raises(ScanFailed) as exc_info:
                engine.scan("const x = 1;", on_state=lambda path, state: seen.append(state))
        assert exc_info.value.state == "classifying"
        assert seen[-1] == ScanState.FAILED


class TestDegradation:
    def test_classifier_timeout(self, default_profile):
        profile = _with_settings(default_profile, classifier_timeout=0.05)
        with ScanEngine(profile=profile, classifier=SlowClassifier()) as eng:
            result = eng.scan(SQL_SAMPLE)
        assert result.classifier_output == ClassifierOutput.neutral(CATEGORIES)
        assert any("timed out" in w for w in result.warnings)
        assert result.security_score == 67

    def test_classifier_exception(self, default_profile):
        with ScanEngine(profile=default_profile, classifier=FailingClassifier()) as eng:
            result = eng.scan(SQL_SAMPLE)
        assert result.classifier_output.anomaly_score == 0.0
        assert any("model crashed" in w for w in result.warnings)

    def test_classifier_contract_violation(self, default_profile):
        with ScanEngine(profile=default_profile, classifier=OutOfRangeClassifier()) as eng:
            result = eng.scan(SQL_SAMPLE)
        assert result.classifier_output.anomaly_score == 0.0
        assert any("anomaly_score" in w for w in result.warnings)

    def test_intel_enrichment(self, default_profile):
        intel = Mock()
        intel.fetch.return_value = ThreatIntel(active_cves=("CVE-2024-0001",))
        with ScanEngine(profile=default_profile, classifier=NullClassifier(), intel=intel) as eng:
            result = eng.scan(SQL_SAMPLE)
        assert result.threat_intelligence.active_cves == ("CVE-2024-0001",)

    def test_intel_failure(self, default_profile):
        intel = Mock()
        intel.fetch.side_effect = IntelUnavailable("feed down")
        with ScanEngine(profile=default_profile, classifier=NullClassifier(), intel=intel) as eng:
            result = eng.scan(SQL_SAMPLE)
        assert result.threat_intelligence == ThreatIntel.empty()
        assert "feed down" in result.warnings
        assert result.security_score == 67

    def test_no_intel_configured(self, engine):
        assert engine.scan(SQL_SAMPLE).threat_intelligence is None

    def test_persistence_failure(self, default_profile):
        store = Mock()
        store.save_scan.side_effect = PersistenceFailure("database is locked")
        with ScanEngine(profile=default_profile, classifier=NullClassifier(), store=store) as eng:
            result = eng.scan(SQL_SAMPLE)
        assert result.security_score == 67
        assert "database is locked" in result.warnings

    def test_fallback_result_not_cached(self, default_profile):
        cache = MemoryScanCache()
        with ScanEngine(profile=default_profile, classifier=FailingClassifier(), cache=cache) as eng:
            eng.scan(SQL_SAMPLE)
            assert len(cache) == 0
            assert eng.scan(SQL_SAMPLE).from_cache is False

    def test_healthy_result_cached_after_recovery(self, default_profile):
        clf = FlakyClassifier()
        with ScanEngine(profile=default_profile, classifier=clf) as eng:
            assert eng.scan(SQL_SAMPLE).warnings
            assert eng.scan(SQL_SAMPLE).warnings == ()
            assert eng.scan(SQL_SAMPLE).from_cache is True

    def test_hung_classifier_does_not_starve_workers(self, default_profile):
        profile = _with_settings(default_profile, classifier_timeout=0.05, batch_concurrency=1)
        clf = BlockingClassifier()
        try:
            with ScanEngine(profile=profile, classifier=clf) as eng:
                first = eng.scan("const a = 1;")
                second = eng.scan("const b = 2;")
        finally:
            clf.release.set()
        assert any("timed out" in w for w in first.warnings)
        assert any("No classifier worker free" in w for w in second.warnings)
        assert second.security_score == 92

    def test_hung_classifier_does_not_block_exit(self):
        script = (
            "import threading\n"
            "from code_threat_scoring.classifier import ThreatClassifier\n"
            "from code_threat_scoring.orchestrator import ScanEngine\n"
            "class Hang(ThreatClassifier):\n"
            "    def classify(self, a, c):\n"
            "        threading.Event().wait()\n"
            f"with ScanEngine.from_config({TEST_PROFILE!r}, classifier=Hang()) as eng:\n"
            "    eng.settings.classifier_timeout = 0.1\n"
            "    print(eng.scan('x = 1').warnings[0])\n"
        )
        result = subprocess.run(
            [sys.executable, "-c", script], capture_output=True, text=True, timeout=60
        )
        assert result.returncode == 0, result.stderr
        assert "timed out" in result.stdout


class TestBatch:
    def test_one_failing_file(self, engine):
        files = [("a.js", SQL_SAMPLE), ("b.js", None), ("c.js", HEADERS_OK)]
        batch = engine.scan_batch(files)
        assert batch.summary.total_files == 3
        assert batch.summary.scanned_files == 2
        errors = [o for o in batch.per_file if not o.ok]
        assert [o.file_path for o in errors] == ["b.js"]
        assert [o.file_path for o in batch.per_file] == ["a.js", "b.js", "c.js"]

    def test_summary(self, engine):
        batch = engine.scan_batch([("a.js", SQL_SAMPLE), ("b.js", HEADERS_OK)])
        s = batch.summary
        assert s.total_findings == 2
        assert s.critical_findings == 1
        assert s.average_security_score == 83.5

    def test_pattern_recommendations(self, engine):
        files = [(f"f{i}.js", SQL_SAMPLE + f"// {i}\n") for i in range(3)]
        batch = engine.scan_batch(files)
        by_rule = {r.rule_name: r.occurrences for r in batch.recommendations}
        assert by_rule["SQL_INJECTION"] == 3

    def test_many_files_in_groups(self, engine):
        files = [(f"f{i}.js", f"const v{i} = {i};\n") for i in range(12)]
        batch = engine.scan_batch(files)
        assert batch.summary.scanned_files == 12
        assert [o.file_path for o in batch.per_file] == [f"f{i}.js" for i in range(12)]

    def test_cancelled_before_start(self, engine):
        event = threading.Event()
        event.set()
        batch = engine.scan_batch([("a.js", SQL_SAMPLE), ("b.js", HEADERS_OK)], cancel_event=event)
        assert batch.cancelled is True
        assert batch.summary.scanned_files == 0
        assert all(o.error == CANCELLED_MESSAGE for o in batch.per_file)

    def test_cancel_stops_dispatch_but_keeps_in_flight(self, default_profile):
        profile = _with_settings(default_profile, batch_concurrency=2)
        files = [(f"f{i}.js", f"const v{i} = {i};\n") for i in range(5)]
        with ScanEngine(profile=profile, classifier=NullClassifier()) as eng:
            batch = eng.scan_batch(files, cancel_event=CancelAfter(3))
        assert batch.cancelled is True
        assert [o.status for o in batch.per_file] == ["success", "success", "success", "error", "error"]
        assert batch.summary.scanned_files == 3
        assert batch.per_file[3].error == CANCELLED_MESSAGE

    def test_batch_saved(self, default_profile):
        store = Mock()
        with ScanEngine(profile=default_profile, classifier=NullClassifier(), store=store) as eng:
            batch = eng.scan_batch([("a.js", SQL_SAMPLE)])
        store.save_batch.assert_called_once_with(batch)
        assert store.save_scan.call_count == 1

    def test_batch_persistence_failure(self, default_profile):
        store = Mock()
        store.save_batch.side_effect = PersistenceFailure("disk full")
        with ScanEngine(profile=default_profile, classifier=NullClassifier(), store=store) as eng:
            batch = eng.scan_batch([("a.js", SQL_SAMPLE)])
        assert batch.summary.scanned_files == 1

    def test_batch_stored_in_database(self, default_profile, caplog):
        store = SqlScanStore("sqlite://")
        with ScanEngine(profile=default_profile, classifier=NullClassifier(), store=store) as eng:
            eng.scan_batch([("a.js", SQL_SAMPLE), ("b.js", HEADERS_OK)])
        with store.engine.connect() as conn:
            row = conn.execute(select(batch_scans)).one()
        assert row.total_files == 2
        assert row.average_security_score == 83.5
        assert "Could not store batch" not in caplog.text

    def test_empty_batch(self, engine):
        batch = engine.scan_batch([])
        assert batch.summary.total_files == 0
        assert batch.per_file == ()


class TestStandaloneAssessments:
    def test_quantum_named_algorithm(self, engine):
        [assessment] = engine.assess_quantum(RSA_TWICE, "RSA")
        assert assessment.quantum_vulnerable
        assert assessment.occurrence_count == 2

    def test_quantum_all_detected(self, engine):
        assessments = engine.assess_quantum("ECDSA sign; crypto.createHash('md5')")
        assert [a.algorithm for a in assessments] == ["ECDSA", "MD5"]

    def test_quantum_requires_code(self, engine):
        with pytest.raises(InputError):
            engine.assess_quantum(None, "RSA")

    def test_compliance(self, engine):
        findings = engine.scan(SQL_SAMPLE).findings
        report = engine.assess_compliance(findings, "owasp")
        assert report.framework == "OWASP Top 10"
        assert report.per_control_pass["A03_Injection"] is False

    @pytest.mark.parametrize("framework", ["", "SOC2"])
    def test_compliance_bad_framework(self, engine, framework):
        with pytest.raises(InputError):
            engine.assess_compliance([], framework)


class TestLifecycle:
    def test_from_config(self):
        with ScanEngine.from_config(TEST_PROFILE) as eng:
            assert isinstance(eng.classifier, NullClassifier)
            assert eng.frameworks == ["OWASP", "PCI-DSS"]
            result = eng.scan("select * from t where id = ${id}")
        # critical, missing helmet
        assert result.security_score == 67
        assert list(result.compliance) == ["OWASP", "PCI-DSS"]

    def test_classifier_loaded_once_and_closed(self, default_profile):
        clf = TrackingClassifier()
        eng = ScanEngine(profile=default_profile, classifier=clf)
        eng.scan("a")
        eng.scan("b")
        eng.close()
        eng.close()
        assert clf.loaded == 1
        assert clf.closed == 1
