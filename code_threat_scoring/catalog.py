"""The Rule Catalog: an immutable, tier-ordered set of vulnerability rules."""

from typing import Iterable, Iterator

from .models import SEVERITY_TIERS, Rule


class RuleCatalog:
    """Rules grouped by severity tier, identified by name.

    Iteration order is critical, high, medium, low, keeping catalog order
    inside a tier.
    """

    def __init__(self, rules: Iterable[Rule]) -> None:
        by_tier: dict[str, list[Rule]] = {tier: [] for tier in SEVERITY_TIERS}
        by_name: dict[str, Rule] = {}
        for rule in rules:
            if rule.tier not in by_tier:
                raise ValueError(f"Rule {rule.name!r} has unknown tier {rule.tier!r}")
            if rule.name in by_name:
                raise ValueError(f"Duplicate rule name: {rule.name!r}")
            by_tier[rule.tier].append(rule)
            by_name[rule.name] = rule
        self._by_tier = {tier: tuple(rs) for tier, rs in by_tier.items()}
        self._by_name = by_name
        self._ordered = tuple(r for tier in SEVERITY_TIERS for r in self._by_tier[tier])

    @classmethod
    def from_profile(cls, profile) -> "RuleCatalog":
        return cls(profile.rules)

    def __iter__(self) -> Iterator[Rule]:
        return iter(self._ordered)

    def __len__(self) -> int:
        return len(self._ordered)

    def __contains__(self, name: object) -> bool:
        return name in self._by_name

    def get(self, name: str) -> Rule | None:
        return self._by_name.get(name)

    def by_tier(self, tier: str) -> tuple[Rule, ...]:
        if tier not in self._by_tier:
            raise ValueError(f"Unknown tier {tier!r}. Must be one of: {SEVERITY_TIERS}")
        return self._by_tier[tier]

    def names(self) -> list[str]:
        return [r.name for r in self._ordered]
