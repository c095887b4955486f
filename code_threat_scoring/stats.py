"""Summary statistics for batch scans."""

import statistics
from collections import Counter
from typing import Sequence

from .models import BatchSummary, FileOutcome, PatternRecommendation

SCORE_BUCKETS = ["0-25", "26-50", "51-80", "81-100"]


def summarize(outcomes: Sequence[FileOutcome]) -> BatchSummary:
    """Reduce over the successful outcomes of a batch."""
    results = [o.result for o in outcomes if o.ok and o.result is not None]
    if not results:
        return BatchSummary(
            total_files=len(outcomes),
            scanned_files=0,
            total_findings=0,
            critical_findings=0,
            average_security_score=0.0,
        )

    return BatchSummary(
        total_files=len(outcomes),
        scanned_files=len(results),
        total_findings=sum(len(r.findings) for r in results),
        critical_findings=sum(
            1 for r in results for f in r.findings if f.severity_tier == "critical"
        ),
        average_security_score=round(statistics.mean(r.security_score for r in results), 1),
    )


def score_histogram(outcomes: Sequence[FileOutcome]) -> dict[str, int]:
    """Bucket the security scores of successful outcomes."""
    buckets = {b: 0 for b in SCORE_BUCKETS}
    for o in outcomes:
        if not o.ok or o.result is None:
            continue
        score = o.result.security_score
        if score <= 25:
            buckets["0-25"] += 1
        elif score <= 50:
            buckets["26-50"] += 1
        elif score <= 80:
            buckets["51-80"] += 1
        else:
            buckets["81-100"] += 1
    return buckets


def pattern_recommendations(outcomes: Sequence[FileOutcome]) -> list[PatternRecommendation]:
    """Flag rules that fire in more than one file of the batch."""
    files_per_rule: Counter[str] = Counter()
    for o in outcomes:
        if not o.ok or o.result is None:
            continue
        for rule_name in {f.rule_name for f in o.result.findings}:
            files_per_rule[rule_name] += 1

    return [
        PatternRecommendation(
            rule_name=rule_name,
            occurrences=count,
            recommendation=(
                f"{rule_name} appears in {count} files - consider implementing a project-wide fix"
            ),
        )
        for rule_name, count in sorted(files_per_rule.items(), key=lambda kv: (-kv[1], kv[0]))
        if count > 1
    ]
