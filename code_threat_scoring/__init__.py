"""code-threat-scoring: Scan source code for vulnerabilities and score its security posture."""

from .classifier import HeuristicClassifier, NullClassifier, ThreatClassifier
from .errors import CodeThreatScoringError, InputError
from .models import BatchResult, ClassifierOutput, Finding, QuantumThreat, ScanResult
from .orchestrator import ScanEngine, ScanState

__version__ = "0.1.0"

__all__ = [
    "ScanEngine",
    "ScanState",
    "ScanResult",
    "BatchResult",
    "Finding",
    "ClassifierOutput",
    "QuantumThreat",
    "ThreatClassifier",
    "HeuristicClassifier",
    "NullClassifier",
    "CodeThreatScoringError",
    "InputError",
]
