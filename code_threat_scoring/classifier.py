"""Pluggable threat classifiers.

A classifier turns the two feature vectors into a ``ClassifierOutput``. Any
implementation must keep ``anomaly_score`` in [0, 1], return a probability
distribution over exactly ``CATEGORIES`` and report its maximum as
``confidence``. ``validate_output`` enforces this at the engine boundary.
"""

import importlib
import math
from abc import ABC, abstractmethod

from .errors import ClassifierUnavailable
from .models import ClassifierOutput, FeatureVector

CATEGORIES_VERSION = "categories-v1"
CATEGORIES = (
    "injection",
    "xss",
    "crypto_weak",
    "auth_bypass",
    "path_traversal",
    "command_injection",
    "info_disclosure",
    "dos",
    "csrf",
    "quantum_vulnerable",
)

SIMPLEX_TOLERANCE = 1e-6


class ThreatClassifier(ABC):
    """Base class for classifiers. Load once, reuse across scans, then close."""

    categories: tuple[str, ...] = CATEGORIES
    model_version: str = "unversioned"

    def load(self) -> None:
        """Acquire model resources. Called once before the first scan."""

    @abstractmethod
    def classify(
        self,
        anomaly_vector: FeatureVector,
        classification_vector: FeatureVector,
    ) -> ClassifierOutput:
        """Score one pair of feature vectors."""

    def close(self) -> None:
        """Release model resources."""

    def __enter__(self) -> "ThreatClassifier":
        self.load()
        return self

    def __exit__(self, *exc) -> None:
        self.close()


class NullClassifier(ThreatClassifier):
    """Classifier stand-in: zero anomaly, uniform distribution."""

    model_version = "null"

    def classify(self, anomaly_vector, classification_vector) -> ClassifierOutput:
        return ClassifierOutput.neutral(self.categories)


class HeuristicClassifier(ThreatClassifier):
    """Deterministic weighted-feature classifier.

    The anomaly score is a clamped weighted sum of obfuscation and dangerous
    call densities. Category scores are linear in the feature vectors and
    normalised with a softmax, so an all-zero input produces a uniform
    distribution and a zero anomaly score.
    """

    model_version = "heuristic-v1"
    temperature = 4.0

    # Anomaly vector index -> weight
    ANOMALY_WEIGHTS = {
        3: 0.10,   # template interpolation
        4: 0.30,   # eval()
        56: 0.15,  # exec/spawn/system/popen
        58: 0.10,  # base64 helpers
        59: 0.15,  # hex escapes
        54: 0.10,  # max line length
    }
    ENTROPY_INDEX = 55
    ENTROPY_FLOOR = 0.6

    def classify(self, anomaly_vector, classification_vector) -> ClassifierOutput:
        a = anomaly_vector.values
        c = classification_vector.values

        anomaly = sum(a[i] * w for i, w in self.ANOMALY_WEIGHTS.items())
        entropy = a[self.ENTROPY_INDEX]
        if entropy > self.ENTROPY_FLOOR:
            anomaly += 0.2 * (entropy - self.ENTROPY_FLOOR) / (1 - self.ENTROPY_FLOOR)
        anomaly = min(max(anomaly, 0.0), 1.0)

        secrets = (a[5] + a[6] + a[7]) / 3
        logits = {
            "injection": c[0],
            "xss": c[2],
            "crypto_weak": (a[8] + a[9]) / 2,
            "auth_bypass": c[8] * (1 - c[7]),
            "path_traversal": c[3],
            "command_injection": c[1],
            "info_disclosure": secrets,
            "dos": (c[21] + c[15]) / 2,
            "csrf": c[4] * (1 - c[5]),
            "quantum_vulnerable": a[8],
        }
        distribution = _softmax(logits, self.temperature)
        return ClassifierOutput(
            anomaly_score=anomaly,
            category_distribution=distribution,
            confidence=max(distribution.values()),
        )


def _softmax(logits: dict[str, float], temperature: float) -> dict[str, float]:
    peak = max(logits.values())
    exps = {k: math.exp((v - peak) * temperature) for k, v in logits.items()}
    total = sum(exps.values())
    return {k: v / total for k, v in exps.items()}


def validate_output(output: ClassifierOutput, categories: tuple[str, ...] = CATEGORIES) -> ClassifierOutput:
    """Check a classifier's output against the contract.

    Raises ClassifierUnavailable when the output cannot be trusted.
    """
    if not isinstance(output, ClassifierOutput):
        raise ClassifierUnavailable(f"Classifier returned {type(output).__name__}, not ClassifierOutput")
    if not 0.0 <= output.anomaly_score <= 1.0:
        raise ClassifierUnavailable(f"anomaly_score {output.anomaly_score} outside [0, 1]")

    dist = output.category_distribution
    if set(dist) != set(categories):
        raise ClassifierUnavailable(
            f"Category set mismatch: got {sorted(dist)}, expected {sorted(categories)}"
        )
    if any(not 0.0 <= p <= 1.0 for p in dist.values()):
        raise ClassifierUnavailable("Category probabilities must lie in [0, 1]")
    if abs(sum(dist.values()) - 1.0) > SIMPLEX_TOLERANCE:
        raise ClassifierUnavailable(f"Category probabilities sum to {sum(dist.values())}, not 1")
    if abs(output.confidence - max(dist.values())) > SIMPLEX_TOLERANCE:
        raise ClassifierUnavailable("confidence must equal the largest category probability")
    return output


def load_classifier(dotted_path: str) -> ThreatClassifier:
    """Load and instantiate a classifier from a dotted path.

    Supports two formats:
    - "module.path:ClassName" (colon separator)
    - "module.path.ClassName" (dot separator, last segment is the class)

    The target may be a class or a zero-argument factory.
    """
    if ":" in dotted_path:
        module_path, attr_name = dotted_path.rsplit(":", 1)
    else:
        module_path, attr_name = dotted_path.rsplit(".", 1)

    module = importlib.import_module(module_path)
    factory = getattr(module, attr_name)

    if not callable(factory):
        raise TypeError(f"Classifier {dotted_path!r} is not callable")

    classifier = factory()
    if not isinstance(classifier, ThreatClassifier):
        raise TypeError(f"Classifier {dotted_path!r} did not produce a ThreatClassifier")
    return classifier
