"""Deterministic feature extraction for the threat classifier.

Two vector kinds exist, each with its own length and version tag. Any
change to an extraction scheme must bump its version: cached results carry
``FEATURE_VERSION`` and are ignored once it no longer matches.

Every entry is clamped into [0, 1]. Extraction is pure: no I/O, no
randomness.
"""

import math
import re
from collections import Counter

from .models import FeatureVector

ANOMALY = "anomaly"
CLASSIFICATION = "classification"

ANOMALY_VECTOR_LENGTH = 100
CLASSIFICATION_VECTOR_LENGTH = 50

ANOMALY_VERSION = "anomaly-v1"
CLASSIFICATION_VERSION = "classification-v1"
FEATURE_VERSION = f"{ANOMALY_VERSION}+{CLASSIFICATION_VERSION}"

CHAR_ALPHABET = "abcdefghijklmnopqrstuvwxyz0123456789{}[]()"
KEYWORDS = ("password", "secret", "token", "crypto", "hash")


def _rx(pattern: str, flags: int = re.IGNORECASE) -> re.Pattern[str]:
    return re.compile(pattern, flags)


# (pattern, divisor) pairs; density = count / divisor
_ANOMALY_MARKERS = [
    (_rx(r"function", 0), 100),
    (_rx(r"require\(|\bimport\s", 0), 50),
    (_rx(r"\$\{", 0), 100),
    (_rx(r"\beval\(", 0), 1),
]

_KEYWORD_PATTERNS = [_rx(re.escape(k)) for k in KEYWORDS]

_ANOMALY_EXTRA = [
    (_rx(r"\b(exec|spawn|system|popen)\b"), 10),
    (_rx(r"\b(select|insert|update|delete)\b"), 100),
    (_rx(r"atob\(|btoa\(|base64"), 10),
    (_rx(r"\\x[0-9a-f]{2}"), 50),
]

_CLASSIFICATION_MARKERS = [
    # Vulnerability indicators
    (_rx(r"sql|query|select|insert|update|delete"), 100),
    (_rx(r"exec|system|spawn|child_process|subprocess"), 10),
    (_rx(r"innerHTML|document\.write|eval"), 10),
    (_rx(r"readFile|writeFile|fs\.|open\("), 20),
    (_rx(r"http|https|fetch|axios|requests\."), 30),
    # Security controls
    (_rx(r"helmet|cors|rate[\s_-]?limit"), 5),
    (_rx(r"bcrypt|scrypt|argon2"), 5),
    (_rx(r"sanitize|escape|validate"), 10),
    (_rx(r"jwt|oauth|auth"), 10),
    (_rx(r"https|ssl|tls"), 10),
    # Code quality
    (_rx(r"try\s*\{|\btry:", 0), 20),
    (_rx(r"/\*\*|//|#\s", 0), 50),
]

_MODERN_DECL = _rx(r"\b(const|let)\b", 0)
_LEGACY_DECL = _rx(r"\bvar\b", 0)

_STRUCTURAL_MARKERS = [
    (_rx(r"'", 0), 200),
    (_rx(r'"', 0), 200),
    (_rx(r"`", 0), 50),
    (_rx(r"[=+\-*/<>]", 0), 500),
    (_rx(r";", 0), 200),
    (_rx(r"[{}]", 0), 200),
    (_rx(r"(['\"])[^\n]{0,500}?\1", 0), 100),
    (_rx(r"\b\d+(\.\d+)?\b", 0), 100),
    (_rx(r"https?://"), 10),
    (_rx(r"[A-Za-z0-9+/]{40,}={0,2}", 0), 10),
    (_rx(r"\\x[0-9a-f]{2}|\\u[0-9a-f]{4}"), 10),
]


def _clamp(value: float) -> float:
    if value != value or value < 0.0:  # NaN or negative
        return 0.0
    return 1.0 if value > 1.0 else value


def _density(pattern: re.Pattern[str], text: str, divisor: float) -> float:
    return _clamp(len(pattern.findall(text)) / divisor)


def _shannon_entropy(text: str) -> float:
    """Shannon entropy in bits per character."""
    if not text:
        return 0.0
    length = len(text)
    return -sum((n / length) * math.log2(n / length) for n in Counter(text).values())


def _line_stats(text: str) -> tuple[int, float, int]:
    lines = text.split("\n") if text else []
    if not lines:
        return 0, 0.0, 0
    lengths = [len(line) for line in lines]
    return len(lines), sum(lengths) / len(lengths), max(lengths)


def _max_nesting(text: str) -> int:
    depth = deepest = 0
    for ch in text:
        if ch in "{[(":
            depth += 1
            deepest = max(deepest, depth)
        elif ch in "}])" and depth > 0:
            depth -= 1
    return deepest


def extract_anomaly_features(text: str) -> FeatureVector:
    features = [0.0] * ANOMALY_VECTOR_LENGTH
    if text:
        length = len(text)
        lowered = text.lower()
        features[0] = _clamp(length / 10000)
        for i, (pattern, divisor) in enumerate(_ANOMALY_MARKERS, start=1):
            features[i] = _density(pattern, text, divisor)
        for i, pattern in enumerate(_KEYWORD_PATTERNS, start=5):
            features[i] = _density(pattern, text, 10)
        counts = Counter(lowered)
        for i, ch in enumerate(CHAR_ALPHABET, start=10):
            features[i] = _clamp(counts[ch] / length)

        base = 10 + len(CHAR_ALPHABET)
        n_lines, mean_len, max_len = _line_stats(text)
        features[base] = _clamp(n_lines / 1000)
        features[base + 1] = _clamp(mean_len / 200)
        features[base + 2] = _clamp(max_len / 1000)
        features[base + 3] = _clamp(_shannon_entropy(text) / 8)
        for i, (pattern, divisor) in enumerate(_ANOMALY_EXTRA, start=base + 4):
            features[i] = _density(pattern, text, divisor)
    return FeatureVector(kind=ANOMALY, version=ANOMALY_VERSION, values=tuple(features))


def extract_classification_features(text: str) -> FeatureVector:
    features = [0.0] * CLASSIFICATION_VECTOR_LENGTH
    if text:
        length = len(text)
        for i, (pattern, divisor) in enumerate(_CLASSIFICATION_MARKERS):
            features[i] = _density(pattern, text, divisor)

        modern = len(_MODERN_DECL.findall(text))
        legacy = len(_LEGACY_DECL.findall(text))
        features[12] = modern / (modern + legacy) if modern + legacy else 0.0

        n_lines, mean_len, max_len = _line_stats(text)
        features[13] = _clamp(n_lines / 1000)
        features[14] = _clamp(mean_len / 200)
        features[15] = _clamp(max_len / 1000)
        features[16] = _clamp(sum(ch.isspace() for ch in text) / length)
        features[17] = _clamp(sum(not ch.isalnum() and not ch.isspace() for ch in text) / length)
        features[18] = _clamp(sum(ch.isupper() for ch in text) / length)
        features[19] = _clamp(sum(ch.isdigit() for ch in text) / length)
        features[20] = _clamp(_shannon_entropy(text) / 8)
        features[21] = _clamp(_max_nesting(text) / 20)
        for i, (pattern, divisor) in enumerate(_STRUCTURAL_MARKERS, start=22):
            features[i] = _density(pattern, text, divisor)
    return FeatureVector(
        kind=CLASSIFICATION, version=CLASSIFICATION_VERSION, values=tuple(features)
    )


EXTRACTORS = {
    ANOMALY: (extract_anomaly_features, ANOMALY_VECTOR_LENGTH),
    CLASSIFICATION: (extract_classification_features, CLASSIFICATION_VECTOR_LENGTH),
}


def extract_features(text: str | bytes, kind: str) -> FeatureVector:
    """Extract a feature vector of the given kind from source text."""
    if kind not in EXTRACTORS:
        raise ValueError(f"Unknown feature vector kind {kind!r}. Must be one of: {sorted(EXTRACTORS)}")
    if isinstance(text, bytes):
        text = text.decode("utf-8", errors="replace")
    func, _length = EXTRACTORS[kind]
    return func(text)


def check_vector(vector: FeatureVector) -> None:
    """Raise ValueError if a vector breaks its length or range contract."""
    if vector.kind not in EXTRACTORS:
        raise ValueError(f"Unknown feature vector kind {vector.kind!r}")
    expected = EXTRACTORS[vector.kind][1]
    if len(vector) != expected:
        raise ValueError(
            f"{vector.kind} vector has length {len(vector)}, expected {expected}"
        )
    if any(not 0.0 <= v <= 1.0 for v in vector.values):
        raise ValueError(f"{vector.kind} vector has values outside [0, 1]")
