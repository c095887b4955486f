"""Data models for code-threat-scoring."""

from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Mapping

from .patterns import PatternSpec

SEVERITY_TIERS = ("critical", "high", "medium", "low")
POLARITIES = ("presence-forbidden", "presence-required")
RISK_TIERS = ("high", "medium", "low")
PRIORITIES = ("immediate", "high", "medium", "low")

NOT_APPLICABLE = "N/A"


def _frozen_mapping(instance, name: str) -> None:
    """Replace a mapping field with a read-only copy."""
    object.__setattr__(instance, name, MappingProxyType(dict(getattr(instance, name))))


@dataclass(frozen=True)
class Remediation:
    """Canned remediation text attached to a rule."""

    title: str
    description: str
    example: str = ""


@dataclass(frozen=True)
class Rule:
    """A single vulnerability rule from the catalog."""

    id: str
    name: str
    pattern: PatternSpec
    description: str
    cwe_id: str
    severity_score: float
    tier: str  # one of SEVERITY_TIERS
    quantum_threat: bool = False
    polarity: str = "presence-forbidden"
    remediation: Remediation | None = None

    @property
    def presence_required(self) -> bool:
        return self.polarity == "presence-required"


@dataclass(frozen=True)
class Finding:
    """A single rule violation (or missing required control) in scanned source."""

    rule_name: str
    severity_tier: str
    cwe_id: str
    score: float
    quantum_threat: bool
    line: int | str  # 1-based, or NOT_APPLICABLE
    evidence: str
    description: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "ruleName": self.rule_name,
            "severityTier": self.severity_tier,
            "cweId": self.cwe_id,
            "score": self.score,
            "quantumThreat": self.quantum_threat,
            "line": self.line,
            "evidence": self.evidence,
            "description": self.description,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Finding":
        """Build a finding from its JSON shape.

        Accepts the legacy ``type``/``severity``/``cwe`` keys as well.
        """
        rule_name = data.get("ruleName", data.get("type"))
        tier = data.get("severityTier", data.get("severity"))
        if not rule_name or tier not in SEVERITY_TIERS:
            raise ValueError(f"Invalid finding record: {data!r}")
        return cls(
            rule_name=rule_name,
            severity_tier=tier,
            cwe_id=data.get("cweId", data.get("cwe", "")),
            score=float(data.get("score", 0.0)),
            quantum_threat=bool(data.get("quantumThreat", False)),
            line=data.get("line", NOT_APPLICABLE),
            evidence=data.get("evidence", ""),
            description=data.get("description", ""),
        )


@dataclass(frozen=True)
class FeatureVector:
    """Fixed-length, versioned numeric features derived from source text."""

    kind: str  # "anomaly" or "classification"
    version: str
    values: tuple[float, ...]

    def __len__(self) -> int:
        return len(self.values)


@dataclass(frozen=True)
class ClassifierOutput:
    """Anomaly score and threat-category distribution for one scan."""

    anomaly_score: float
    category_distribution: Mapping[str, float]
    confidence: float

    def __post_init__(self) -> None:
        _frozen_mapping(self, "category_distribution")

    @property
    def top_category(self) -> str:
        if not self.category_distribution:
            return "unknown"
        return max(self.category_distribution, key=self.category_distribution.get)

    @classmethod
    def neutral(cls, categories: tuple[str, ...]) -> "ClassifierOutput":
        """Zero anomaly score and a uniform distribution over ``categories``."""
        share = 1.0 / len(categories)
        return cls(
            anomaly_score=0.0,
            category_distribution={c: share for c in categories},
            confidence=share,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "anomalyScore": self.anomaly_score,
            "categoryDistribution": dict(self.category_distribution),
            "confidence": self.confidence,
            "topCategory": self.top_category,
        }


@dataclass(frozen=True)
class QuantumThreat:
    """A quantum-vulnerable algorithm detected in source."""

    algorithm_name: str
    risk_tier: str
    occurrence_count: int
    recommended_alternatives: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "algorithmName": self.algorithm_name,
            "riskTier": self.risk_tier,
            "occurrenceCount": self.occurrence_count,
            "recommendedAlternatives": list(self.recommended_alternatives),
        }


@dataclass(frozen=True)
class QuantumAssessment:
    """Standalone assessment of a single named algorithm."""

    algorithm: str
    quantum_vulnerable: bool
    risk_tier: str | None
    occurrence_count: int
    estimated_break_window: str | None
    alternatives: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "algorithm": self.algorithm,
            "quantumVulnerable": self.quantum_vulnerable,
            "riskTier": self.risk_tier,
            "occurrenceCount": self.occurrence_count,
            "estimatedBreakWindow": self.estimated_break_window,
            "alternatives": list(self.alternatives),
        }


@dataclass(frozen=True)
class Recommendation:
    """Remediation advice, deduplicated by (priority, title) within a scan."""

    priority: str  # one of PRIORITIES
    title: str
    description: str
    related_rule_names: frozenset[str] = frozenset()
    example: str = ""
    category: str = ""

    @property
    def key(self) -> tuple[str, str]:
        return (self.priority, self.title)

    def to_dict(self) -> dict[str, Any]:
        return {
            "priority": self.priority,
            "title": self.title,
            "description": self.description,
            "relatedRuleNames": sorted(self.related_rule_names),
            "example": self.example,
            "category": self.category,
        }


@dataclass(frozen=True)
class ComplianceReport:
    """Per-framework pass/fail summary derived from findings."""

    framework: str
    score: float
    per_control_pass: Mapping[str, bool]
    status: str  # "compliant", "partial" or "non-compliant"

    def __post_init__(self) -> None:
        _frozen_mapping(self, "per_control_pass")

    def to_dict(self) -> dict[str, Any]:
        return {
            "framework": self.framework,
            "score": self.score,
            "perControlPass": dict(self.per_control_pass),
            "status": self.status,
        }


@dataclass(frozen=True)
class ThreatIntel:
    """Enrichment data from the external threat-intelligence feed."""

    active_cves: tuple[str, ...] = ()
    emerging_threats: tuple[str, ...] = ()
    quantum_threats: tuple[str, ...] = ()
    last_updated: str | None = None

    @classmethod
    def empty(cls) -> "ThreatIntel":
        return cls()

    def to_dict(self) -> dict[str, Any]:
        return {
            "activeCVEs": list(self.active_cves),
            "emergingThreats": list(self.emerging_threats),
            "quantumThreats": list(self.quantum_threats),
            "lastUpdated": self.last_updated,
        }


@dataclass(frozen=True)
class ScanResult:
    """Aggregate result of one single-file scan. Cached under ``fingerprint``."""

    fingerprint: str
    file_path: str
    findings: tuple[Finding, ...]
    classifier_output: ClassifierOutput
    quantum_threats: tuple[QuantumThreat, ...]
    security_score: int
    recommendations: tuple[Recommendation, ...]
    compliance: Mapping[str, ComplianceReport]
    processing_time_ms: float
    feature_version: str
    from_cache: bool = False
    threat_intelligence: ThreatIntel | None = None
    warnings: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        _frozen_mapping(self, "compliance")

    def count_by_tier(self) -> dict[str, int]:
        counts = {tier: 0 for tier in SEVERITY_TIERS}
        for f in self.findings:
            counts[f.severity_tier] += 1
        return counts

    def to_dict(self) -> dict[str, Any]:
        return {
            "fingerprint": self.fingerprint,
            "filePath": self.file_path,
            "findings": [f.to_dict() for f in self.findings],
            "classifierOutput": self.classifier_output.to_dict(),
            "quantumThreats": [t.to_dict() for t in self.quantum_threats],
            "securityScore": self.security_score,
            "recommendations": [r.to_dict() for r in self.recommendations],
            "compliance": {name: r.to_dict() for name, r in self.compliance.items()},
            "processingTimeMs": round(self.processing_time_ms, 3),
            "featureVersion": self.feature_version,
            "fromCache": self.from_cache,
            "threatIntelligence": (
                self.threat_intelligence.to_dict() if self.threat_intelligence else None
            ),
            "warnings": list(self.warnings),
        }


@dataclass(frozen=True)
class ScanReport:
    """Headline counts for a single scan."""

    total_findings: int
    critical_count: int
    high_count: int
    medium_count: int
    low_count: int
    security_score: int
    quantum_threats: int

    @classmethod
    def from_result(cls, result: ScanResult) -> "ScanReport":
        counts = result.count_by_tier()
        return cls(
            total_findings=len(result.findings),
            critical_count=counts["critical"],
            high_count=counts["high"],
            medium_count=counts["medium"],
            low_count=counts["low"],
            security_score=result.security_score,
            quantum_threats=len(result.quantum_threats),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalFindings": self.total_findings,
            "criticalCount": self.critical_count,
            "highCount": self.high_count,
            "mediumCount": self.medium_count,
            "lowCount": self.low_count,
            "securityScore": self.security_score,
            "quantumThreats": self.quantum_threats,
        }


@dataclass(frozen=True)
class FileOutcome:
    """Outcome of one file in a batch: a result or an error message."""

    file_path: str
    status: str  # "success" or "error"
    result: ScanResult | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == "success"

    def to_dict(self) -> dict[str, Any]:
        record: dict[str, Any] = {"file": self.file_path, "status": self.status}
        if self.result is not None:
            record["result"] = self.result.to_dict()
        if self.error is not None:
            record["error"] = self.error
        return record


@dataclass(frozen=True)
class BatchSummary:
    """Counts reduced over the successful outcomes of a batch."""

    total_files: int
    scanned_files: int
    total_findings: int
    critical_findings: int
    average_security_score: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalFiles": self.total_files,
            "scannedFiles": self.scanned_files,
            "totalFindings": self.total_findings,
            "criticalFindings": self.critical_findings,
            "averageSecurityScore": self.average_security_score,
        }


@dataclass(frozen=True)
class PatternRecommendation:
    """A rule that fired across several files of one batch."""

    rule_name: str
    occurrences: int
    recommendation: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": "pattern",
            "vulnerability": self.rule_name,
            "occurrences": self.occurrences,
            "recommendation": self.recommendation,
        }


@dataclass(frozen=True)
class BatchResult:
    """Summary plus per-file outcomes of a batch scan."""

    summary: BatchSummary
    per_file: tuple[FileOutcome, ...]
    recommendations: tuple[PatternRecommendation, ...] = ()
    cancelled: bool = False
    processing_time_ms: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "summary": self.summary.to_dict(),
            "results": [o.to_dict() for o in self.per_file],
            "recommendations": [r.to_dict() for r in self.recommendations],
            "cancelled": self.cancelled,
            "processingTimeMs": round(self.processing_time_ms, 3),
        }
