"""Pattern specifications: the tagged variant behind every catalog rule.

A pattern is one of:

- ``literal``: case-insensitive substring.
- ``regex``: Python regular expression, compiled case-insensitive.
- ``any``: structural union of child patterns. Matches from all children are
  merged leftmost-first, longest-first, so the union is still a sequence of
  non-overlapping matches.
"""

import re
from dataclasses import dataclass, field
from typing import Iterator

VALID_KINDS = {"literal", "regex", "any"}

Match = tuple[int, int, str]  # (start, end, matched text)


@dataclass(frozen=True)
class PatternSpec:
    """A declarative matcher loaded from the rule catalog."""

    kind: str
    value: str | None = None
    children: tuple["PatternSpec", ...] = ()
    _compiled: re.Pattern[str] | None = field(default=None, repr=False, compare=False)

    def __post_init__(self) -> None:
        if self.kind not in VALID_KINDS:
            raise ValueError(f"Unknown pattern kind {self.kind!r}. Must be one of: {VALID_KINDS}")
        if self.kind == "any":
            if not self.children:
                raise ValueError("'any' pattern requires at least one child pattern")
            return
        if not self.value:
            raise ValueError(f"{self.kind!r} pattern requires a non-empty 'value'")
        source = re.escape(self.value) if self.kind == "literal" else self.value
        try:
            compiled = re.compile(source, re.IGNORECASE)
        except re.error as e:
            raise ValueError(f"Invalid regex {self.value!r}: {e}") from e
        object.__setattr__(self, "_compiled", compiled)

    @classmethod
    def literal(cls, value: str) -> "PatternSpec":
        return cls(kind="literal", value=value)

    @classmethod
    def regex(cls, value: str) -> "PatternSpec":
        return cls(kind="regex", value=value)

    @classmethod
    def any_of(cls, *children: "PatternSpec") -> "PatternSpec":
        return cls(kind="any", children=tuple(children))

    def finditer(self, text: str) -> Iterator[Match]:
        """Yield non-overlapping matches in order of position."""
        if self.kind == "any":
            yield from self._union(text)
            return
        for m in self._compiled.finditer(text):
            # Empty matches carry no evidence
            if m.end() > m.start():
                yield (m.start(), m.end(), m.group(0))

    def count(self, text: str) -> int:
        return sum(1 for _ in self.finditer(text))

    def found_in(self, text: str) -> bool:
        return next(self.finditer(text), None) is not None

    def _union(self, text: str) -> Iterator[Match]:
        candidates = [m for child in self.children for m in child.finditer(text)]
        candidates.sort(key=lambda m: (m[0], -(m[1] - m[0])))
        last_end = -1
        for start, end, matched in candidates:
            if start >= last_end:
                yield (start, end, matched)
                last_end = end


def parse_pattern(data) -> PatternSpec:
    """Recursively build a PatternSpec from YAML data.

    A bare string is shorthand for a regex pattern.
    """
    if isinstance(data, str):
        return PatternSpec.regex(data)
    if not isinstance(data, dict):
        raise ValueError(f"Pattern must be a string or mapping: {data!r}")

    kind = data.get("kind")
    if not kind:
        raise ValueError(f"Pattern missing 'kind': {data}")

    if kind == "any":
        inner = data.get("patterns")
        if not inner:
            raise ValueError("'any' pattern requires a 'patterns' list")
        return PatternSpec.any_of(*(parse_pattern(p) for p in inner))

    return PatternSpec(kind=kind, value=data.get("value"))
