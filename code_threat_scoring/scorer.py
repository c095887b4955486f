"""Aggregate findings, classifier output and quantum threats into a score."""

import math
from typing import Sequence

from .catalog import RuleCatalog
from .models import SEVERITY_TIERS, ClassifierOutput, Finding, QuantumThreat, Recommendation
from .quantum import migration_recommendation

BASE_SCORE = 100.0
TIER_DEDUCTIONS = {"critical": 25, "high": 15, "medium": 8, "low": 3}
ANOMALY_WEIGHT = 20
QUANTUM_DEDUCTIONS = {"high": 10, "medium": 5}

TIER_PRIORITY = {"critical": "immediate", "high": "high", "medium": "medium", "low": "low"}


class SecurityScorer:
    """Compute the 0-100 security score and the recommendation list."""

    def __init__(self, catalog: RuleCatalog | None = None, anomaly_threshold: float = 0.7) -> None:
        self.catalog = catalog
        self.anomaly_threshold = anomaly_threshold

    def score(
        self,
        findings: Sequence[Finding],
        classifier_output: ClassifierOutput,
        quantum_threats: Sequence[QuantumThreat],
    ) -> tuple[int, list[Recommendation]]:
        return (
            self.security_score(findings, classifier_output, quantum_threats),
            self.recommend(findings, classifier_output, quantum_threats),
        )

    def security_score(
        self,
        findings: Sequence[Finding],
        classifier_output: ClassifierOutput,
        quantum_threats: Sequence[QuantumThreat],
    ) -> int:
        """Deduct from a base of 100.

        Findings are deducted tier by tier (critical first) so the result does
        not depend on discovery order. The floor is applied after each step.
        """
        score = BASE_SCORE
        for tier in SEVERITY_TIERS:
            for f in findings:
                if f.severity_tier == tier:
                    score = max(0.0, score - TIER_DEDUCTIONS[tier])

        score = max(0.0, score - classifier_output.anomaly_score * ANOMALY_WEIGHT)

        for risk in ("high", "medium"):
            for threat in quantum_threats:
                if threat.risk_tier == risk:
                    score = max(0.0, score - QUANTUM_DEDUCTIONS[risk])

        return self._clamp(_round_half_up(score))

    def recommend(
        self,
        findings: Sequence[Finding],
        classifier_output: ClassifierOutput,
        quantum_threats: Sequence[QuantumThreat],
    ) -> list[Recommendation]:
        """One entry per distinct finding type, classifier and algorithm.

        Entries sharing (priority, title) are merged.
        """
        candidates: list[Recommendation] = []

        seen_rules: dict[str, Finding] = {}
        for f in _tier_ordered(findings):
            seen_rules.setdefault(f.rule_name, f)
        for rule_name, f in seen_rules.items():
            candidates.append(self._finding_recommendation(rule_name, f))

        if classifier_output.anomaly_score > self.anomaly_threshold:
            candidates.append(Recommendation(
                priority="medium",
                title="Code Pattern Analysis",
                description=(
                    "The threat classifier detected unusual patterns that may indicate "
                    f"security risks (top category: {classifier_output.top_category})"
                ),
                example="Schedule a manual code review and security audit",
                category="ai",
            ))

        seen_algorithms = set()
        for threat in quantum_threats:
            if threat.algorithm_name not in seen_algorithms:
                seen_algorithms.add(threat.algorithm_name)
                candidates.append(migration_recommendation(threat))

        return _dedupe(candidates)

    def _finding_recommendation(self, rule_name: str, finding: Finding) -> Recommendation:
        rule = self.catalog.get(rule_name) if self.catalog is not None else None
        priority = TIER_PRIORITY.get(finding.severity_tier, "low")
        if rule is not None and rule.remediation is not None:
            rem = rule.remediation
            return Recommendation(
                priority=priority,
                title=rem.title,
                description=rem.description,
                related_rule_names=frozenset({rule_name}),
                example=rem.example,
                category=finding.cwe_id,
            )
        return Recommendation(
            priority=priority,
            title=f"Fix {rule_name}",
            description=finding.description or "Review code for security best practices",
            related_rule_names=frozenset({rule_name}),
            category=finding.cwe_id,
        )

    @staticmethod
    def _clamp(value: int) -> int:
        return min(100, max(0, value))


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _tier_ordered(findings: Sequence[Finding]) -> list[Finding]:
    rank = {tier: i for i, tier in enumerate(SEVERITY_TIERS)}
    return sorted(findings, key=lambda f: (rank.get(f.severity_tier, len(rank)), f.rule_name))


def _dedupe(recommendations: list[Recommendation]) -> list[Recommendation]:
    merged: dict[tuple[str, str], Recommendation] = {}
    for rec in recommendations:
        existing = merged.get(rec.key)
        if existing is None:
            merged[rec.key] = rec
        else:
            merged[rec.key] = Recommendation(
                priority=existing.priority,
                title=existing.title,
                description=existing.description,
                related_rule_names=existing.related_rule_names | rec.related_rule_names,
                example=existing.example,
                category=existing.category,
            )
    return list(merged.values())
