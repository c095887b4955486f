"""YAML scan profile loading and validation."""

import importlib.resources
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from .compliance import canonical_framework
from .errors import InputError
from .models import POLARITIES, RISK_TIERS, SEVERITY_TIERS, Remediation, Rule
from .patterns import PatternSpec, parse_pattern

DEFAULT_CLASSIFIER = "code_threat_scoring.classifier:HeuristicClassifier"


@dataclass
class EngineSettings:
    """Tunables for the scan orchestrator."""

    batch_concurrency: int = 5
    evidence_max_length: int = 100
    cache_ttl_clean: int = 3600
    cache_ttl_risky: int = 1800
    cache_clean_threshold: int = 80
    classifier_timeout: float = 2.0
    intel_timeout: float = 10.0
    intel_url: str | None = None
    classifier: str = DEFAULT_CLASSIFIER
    anomaly_recommendation_threshold: float = 0.7


@dataclass
class QuantumAlgorithm:
    """One entry of the quantum-vulnerability mapping."""

    name: str
    pattern: PatternSpec
    risk_tier: str  # "high", "medium" or "low"
    alternatives: list[str] = field(default_factory=list)
    break_window: str | None = None
    aliases: list[str] = field(default_factory=list)


@dataclass
class ScanProfile:
    """Complete scan profile loaded from YAML."""

    settings: EngineSettings = field(default_factory=EngineSettings)
    rules: list[Rule] = field(default_factory=list)
    quantum: list[QuantumAlgorithm] = field(default_factory=list)
    frameworks: list[str] = field(default_factory=list)


def load_profile(path: str | Path) -> ScanProfile:
    """Load a scan profile from a YAML file."""
    path = Path(path)
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
    return _build_profile(data or {})


def load_default_profile() -> ScanProfile:
    """Load the bundled default scan profile."""
    pkg = importlib.resources.files("code_threat_scoring") / "profiles" / "default.yaml"
    text = pkg.read_text(encoding="utf-8")
    data = yaml.safe_load(text)
    return _build_profile(data)


def _build_profile(data: dict) -> ScanProfile:
    """Build a ScanProfile from parsed YAML data."""
    settings = _parse_settings(data.get("engine", {}))

    rules = []
    rules_data = data.get("rules", {})
    unknown_tiers = set(rules_data) - set(SEVERITY_TIERS)
    if unknown_tiers:
        raise ValueError(
            f"Unknown severity tiers in rules: {sorted(unknown_tiers)}. "
            f"Must be one of: {SEVERITY_TIERS}"
        )
    for tier in SEVERITY_TIERS:
        for r in rules_data.get(tier) or []:
            rules.append(_parse_rule(r, tier))

    quantum = [_parse_quantum(q) for q in data.get("quantum", [])]

    frameworks = []
    for name in data.get("compliance", {}).get("frameworks", []):
        try:
            frameworks.append(canonical_framework(name))
        except InputError as e:
            raise ValueError(str(e)) from e

    profile = ScanProfile(
        settings=settings,
        rules=rules,
        quantum=quantum,
        frameworks=frameworks,
    )
    _validate_profile(profile)
    return profile


def _parse_settings(data: dict) -> EngineSettings:
    """Parse the engine settings block, falling back to defaults."""
    defaults = EngineSettings()
    return EngineSettings(
        batch_concurrency=int(data.get("batch_concurrency", defaults.batch_concurrency)),
        evidence_max_length=int(data.get("evidence_max_length", defaults.evidence_max_length)),
        cache_ttl_clean=int(data.get("cache_ttl_clean", defaults.cache_ttl_clean)),
        cache_ttl_risky=int(data.get("cache_ttl_risky", defaults.cache_ttl_risky)),
        cache_clean_threshold=int(data.get("cache_clean_threshold", defaults.cache_clean_threshold)),
        classifier_timeout=float(data.get("classifier_timeout", defaults.classifier_timeout)),
        intel_timeout=float(data.get("intel_timeout", defaults.intel_timeout)),
        intel_url=data.get("intel_url", defaults.intel_url),
        classifier=data.get("classifier", defaults.classifier),
        anomaly_recommendation_threshold=float(
            data.get("anomaly_recommendation_threshold", defaults.anomaly_recommendation_threshold)
        ),
    )


def _parse_rule(data: dict, tier: str) -> Rule:
    """Parse a single rule from YAML data."""
    required = {"id", "name", "pattern", "cwe", "severity"}
    missing = required - set(data.keys())
    if missing:
        raise ValueError(f"Rule missing required fields: {missing}")

    remediation = None
    if data.get("remediation"):
        rem = data["remediation"]
        remediation = Remediation(
            title=rem["title"],
            description=rem.get("description", ""),
            example=rem.get("example", ""),
        )

    return Rule(
        id=data["id"],
        name=data["name"],
        pattern=parse_pattern(data["pattern"]),
        description=data.get("description", ""),
        cwe_id=data["cwe"],
        severity_score=float(data["severity"]),
        tier=tier,
        quantum_threat=bool(data.get("quantum_threat", False)),
        polarity=data.get("polarity", "presence-forbidden"),
        remediation=remediation,
    )


def _parse_quantum(data: dict) -> QuantumAlgorithm:
    """Parse a single quantum-vulnerable algorithm entry."""
    required = {"algorithm", "pattern", "risk"}
    missing = required - set(data.keys())
    if missing:
        raise ValueError(f"Quantum entry missing required fields: {missing}")

    return QuantumAlgorithm(
        name=data["algorithm"],
        pattern=parse_pattern(data["pattern"]),
        risk_tier=data["risk"],
        alternatives=list(data.get("alternatives", [])),
        break_window=data.get("break_window"),
        aliases=list(data.get("aliases", [])),
    )


def _validate_profile(profile: ScanProfile) -> None:
    """Validate a scan profile for correctness."""
    s = profile.settings
    if s.batch_concurrency < 1:
        raise ValueError(f"batch_concurrency must be positive, got {s.batch_concurrency}")
    if s.evidence_max_length < 1:
        raise ValueError(f"evidence_max_length must be positive, got {s.evidence_max_length}")
    if s.classifier_timeout <= 0 or s.intel_timeout <= 0:
        raise ValueError("classifier_timeout and intel_timeout must be positive")

    seen_names = set()
    for r in profile.rules:
        if r.name in seen_names:
            raise ValueError(f"Duplicate rule name: {r.name!r}")
        seen_names.add(r.name)

        if r.polarity not in POLARITIES:
            raise ValueError(
                f"Rule {r.name!r} has invalid polarity {r.polarity!r}. "
                f"Must be one of: {POLARITIES}"
            )
        if not 0.0 <= r.severity_score <= 10.0:
            raise ValueError(
                f"Rule {r.name!r} has severity {r.severity_score} outside [0, 10]"
            )

    seen_algorithms = set()
    for q in profile.quantum:
        if q.name in seen_algorithms:
            raise ValueError(f"Duplicate quantum algorithm: {q.name!r}")
        seen_algorithms.add(q.name)

        if q.risk_tier not in RISK_TIERS:
            raise ValueError(
                f"Quantum algorithm {q.name!r} has invalid risk {q.risk_tier!r}. "
                f"Must be one of: {RISK_TIERS}"
            )
