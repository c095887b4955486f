"""Exception taxonomy for code-threat-scoring.

Only ``InputError`` is meant to reach a caller as a failure. The remaining
conditions are degradations: the engine records them as warnings on the
result and still produces a score.
"""

__all__ = [
    "CodeThreatScoringError",
    "InputError",
    "ExtractionDegraded",
    "ClassifierUnavailable",
    "IntelUnavailable",
    "PersistenceFailure",
    "BatchItemFailure",
    "ScanFailed",
]


class CodeThreatScoringError(Exception):
    """Base exception for all engine errors"""


class InputError(CodeThreatScoringError):
    """Raised when a required request field is missing or empty"""


class ExtractionDegraded(CodeThreatScoringError):
    """Raised when input could only be decoded or featurised on a best-effort basis"""


class ClassifierUnavailable(CodeThreatScoringError):
    """Raised when the threat classifier fails, times out or breaks its contract"""


class IntelUnavailable(CodeThreatScoringError):
    """Raised when the threat-intelligence feed cannot be reached or parsed"""


class PersistenceFailure(CodeThreatScoringError):
    """Raised when a scan or batch record cannot be durably stored"""


class BatchItemFailure(CodeThreatScoringError):
    """Raised for a single file's failure inside a batch scan"""

    def __init__(self, file_path: str, message: str) -> None:
        super().__init__(f"{file_path}: {message}")
        self.file_path = file_path
        self.message = message


class ScanFailed(CodeThreatScoringError):
    """Raised when a scan reaches the failed state"""

    def __init__(self, file_path: str, state: str, cause: BaseException) -> None:
        super().__init__(f"Scan of {file_path} failed during {state}: {cause}")
        self.file_path = file_path
        self.state = state
        self.cause = cause
