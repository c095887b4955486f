"""Detect quantum-vulnerable cryptographic primitives."""

from typing import Iterable

from .config import QuantumAlgorithm
from .models import QuantumAssessment, QuantumThreat, Recommendation


class QuantumAssessor:
    """Map detected algorithms to their risk tier and migration candidates."""

    def __init__(self, algorithms: Iterable[QuantumAlgorithm]) -> None:
        self.algorithms = tuple(algorithms)
        self._lookup: dict[str, QuantumAlgorithm] = {}
        for algo in self.algorithms:
            for name in (algo.name, *algo.aliases):
                self._lookup[_normalize(name)] = algo

    def assess(self, source: str) -> list[QuantumThreat]:
        """One threat per algorithm with at least one match, in catalog order."""
        if not source:
            return []
        threats = []
        for algo in self.algorithms:
            count = algo.pattern.count(source)
            if count:
                threats.append(QuantumThreat(
                    algorithm_name=algo.name,
                    risk_tier=algo.risk_tier,
                    occurrence_count=count,
                    recommended_alternatives=tuple(algo.alternatives),
                ))
        return threats

    def get(self, name: str) -> QuantumAlgorithm | None:
        return self._lookup.get(_normalize(name))

    def assess_algorithm(self, source: str, algorithm: str) -> QuantumAssessment:
        """Assess a single named algorithm, counting its uses in ``source``."""
        algo = self.get(algorithm)
        if algo is None:
            return QuantumAssessment(
                algorithm=algorithm,
                quantum_vulnerable=False,
                risk_tier=None,
                occurrence_count=0,
                estimated_break_window=None,
            )
        return QuantumAssessment(
            algorithm=algo.name,
            quantum_vulnerable=True,
            risk_tier=algo.risk_tier,
            occurrence_count=algo.pattern.count(source) if source else 0,
            estimated_break_window=algo.break_window,
            alternatives=tuple(algo.alternatives),
        )


def _normalize(name: str) -> str:
    return "".join(ch for ch in name.upper() if ch.isalnum())


def migration_recommendation(threat: QuantumThreat) -> Recommendation:
    """Migration advice for one detected algorithm."""
    alternatives = ", ".join(threat.recommended_alternatives) or "a post-quantum alternative"
    priority = "high" if threat.risk_tier == "high" else threat.risk_tier
    return Recommendation(
        priority=priority,
        title=f"Migrate {threat.algorithm_name} to Quantum-Resistant Cryptography",
        description=(
            f"{threat.algorithm_name} is used {threat.occurrence_count} time(s) and is "
            f"vulnerable to quantum attacks. Replace it with {alternatives}."
        ),
        category="quantum",
    )


def assessment_recommendations(assessment: QuantumAssessment) -> list[Recommendation]:
    """Recommendations for the standalone quantum assessment."""
    if not assessment.quantum_vulnerable:
        return []
    window = assessment.estimated_break_window or "an unknown date"
    return [Recommendation(
        priority="high" if assessment.risk_tier == "high" else "medium",
        title="Migrate to Post-Quantum Cryptography",
        description=f"{assessment.algorithm} will be vulnerable to quantum attacks by {window}",
        example=", ".join(assessment.alternatives),
        category="quantum",
    )]
