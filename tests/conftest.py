"""Shared fixtures."""

import pytest

from code_threat_scoring.cache import MemoryScanCache
from code_threat_scoring.classifier import NullClassifier
from code_threat_scoring.config import load_default_profile, load_profile
from code_threat_scoring.models import Finding, Rule
from code_threat_scoring.orchestrator import ScanEngine
from code_threat_scoring.patterns import PatternSpec

FIXTURES_DIR = "tests/fixtures"
TEST_PROFILE = f"{FIXTURES_DIR}/test_profile.yaml"

SQL_SAMPLE = "const rows = db.query(`SELECT * FROM users WHERE id = ${id}`);\n"
HEADERS_OK = "app.use(helmet());\n"


def make_rule(name, pattern, tier="high", polarity="presence-forbidden", **kwargs) -> Rule:
    if isinstance(pattern, str):
        pattern = PatternSpec.regex(pattern)
    return Rule(
        id=f"T-{name}",
        name=name,
        pattern=pattern,
        description=f"{name} detected",
        cwe_id=kwargs.pop("cwe_id", "CWE-000"),
        severity_score=kwargs.pop("severity_score", 5.0),
        tier=tier,
        polarity=polarity,
        **kwargs,
    )


def make_finding(rule_name="SQL_INJECTION", tier="critical", line=1, quantum=False) -> Finding:
    return Finding(
        rule_name=rule_name,
        severity_tier=tier,
        cwe_id="CWE-89",
        score=9.8,
        quantum_threat=quantum,
        line=line,
        evidence="evidence",
    )


@pytest.fixture(scope="session")
def default_profile():
    return load_default_profile()


@pytest.fixture
def test_profile():
    return load_profile(TEST_PROFILE)


@pytest.fixture
def engine(default_profile):
    """Default-profile engine with a neutral classifier and a fresh cache."""
    eng = ScanEngine(profile=default_profile, classifier=NullClassifier(), cache=MemoryScanCache())
    yield eng
    eng.close()
