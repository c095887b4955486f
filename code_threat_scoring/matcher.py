"""Apply catalog rules to source text and emit raw findings."""

import bisect
import logging

from .catalog import RuleCatalog
from .models import NOT_APPLICABLE, Finding, Rule

logger = logging.getLogger(__name__)

EVIDENCE_MAX_LEN = 100
MISSING_EVIDENCE = "Missing security implementation"


class PatternMatcher:
    """Scan source text against every rule in a catalog."""

    def __init__(self, catalog: RuleCatalog, evidence_max_length: int = EVIDENCE_MAX_LEN) -> None:
        self.catalog = catalog
        self.evidence_max_length = evidence_max_length

    def scan(self, source: str) -> list[Finding]:
        if not source or not source.strip():
            return []

        newlines = [i for i, ch in enumerate(source) if ch == "\n"]
        findings: list[Finding] = []
        for rule in self.catalog:
            try:
                findings.extend(self._apply(rule, source, newlines))
            except Exception as e:
                # A broken rule degrades to "no findings" for that rule only
                logger.warning("Rule %s failed to match: %s", rule.name, e)
        return findings

    def _apply(self, rule: Rule, source: str, newlines: list[int]) -> list[Finding]:
        if rule.presence_required:
            if rule.pattern.found_in(source):
                return []
            return [self._finding(rule, NOT_APPLICABLE, MISSING_EVIDENCE)]

        findings = []
        for start, _end, matched in rule.pattern.finditer(source):
            line_number = bisect.bisect_left(newlines, start) + 1
            findings.append(self._finding(rule, line_number, matched[:self.evidence_max_length]))
        return findings

    @staticmethod
    def _finding(rule: Rule, line: int | str, evidence: str) -> Finding:
        return Finding(
            rule_name=rule.name,
            severity_tier=rule.tier,
            cwe_id=rule.cwe_id,
            score=rule.severity_score,
            quantum_threat=rule.quantum_threat,
            line=line,
            evidence=evidence,
            description=rule.description,
        )
