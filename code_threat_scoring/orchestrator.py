"""Scan orchestration: the single-file pipeline and batch scanning."""

import dataclasses
import hashlib
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from enum import Enum
from pathlib import Path
from typing import Callable, Iterable, Self, Sequence

from .cache import MemoryScanCache, ScanCache
from .catalog import RuleCatalog
from .classifier import ThreatClassifier, load_classifier, validate_output
from .compliance import canonical_framework, map_all, map_compliance
from .config import ScanProfile, load_default_profile, load_profile
from .errors import (
    BatchItemFailure,
    ClassifierUnavailable,
    ExtractionDegraded,
    InputError,
    IntelUnavailable,
    PersistenceFailure,
    ScanFailed,
)
from .features import ANOMALY, CLASSIFICATION, FEATURE_VERSION, check_vector, extract_features
from .intel import ThreatIntelClient
from .matcher import PatternMatcher
from .models import (
    BatchResult,
    ClassifierOutput,
    ComplianceReport,
    FileOutcome,
    Finding,
    QuantumAssessment,
    ScanResult,
    ThreatIntel,
)
from .quantum import QuantumAssessor
from .scorer import SecurityScorer
from .stats import pattern_recommendations, summarize
from .store import NullScanStore, ScanStore

logger = logging.getLogger(__name__)

CANCELLED_MESSAGE = "cancelled before dispatch"


class ScanState(str, Enum):
    PENDING = "pending"
    MATCHING = "matching"
    CLASSIFYING = "classifying"
    QUANTUM_ASSESSING = "quantum-assessing"
    SCORING = "scoring"
    COMPLETE = "complete"
    FAILED = "failed"


StateCallback = Callable[[str, ScanState], None]


def fingerprint(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


class ScanEngine:
    """Composition root for the scan pipeline.

    The engine owns the classifier lifecycle: it is loaded once on
    construction and closed by ``close()``.
    """

    def __init__(
        self,
        profile: ScanProfile | None = None,
        classifier: ThreatClassifier | None = None,
        cache: ScanCache | None = None,
        store: ScanStore | None = None,
        intel: ThreatIntelClient | None = None,
    ) -> None:
        self._profile = profile or load_default_profile()
        self.settings = self._profile.settings

        self.catalog = RuleCatalog.from_profile(self._profile)
        self.matcher = PatternMatcher(self.catalog, self.settings.evidence_max_length)
        self.assessor = QuantumAssessor(self._profile.quantum)
        self.scorer = SecurityScorer(self.catalog, self.settings.anomaly_recommendation_threshold)

        self.classifier = classifier if classifier is not None else load_classifier(self.settings.classifier)
        self.classifier.load()

        self.cache = cache if cache is not None else MemoryScanCache()
        self.store = store if store is not None else NullScanStore()
        if intel is None and self.settings.intel_url:
            intel = ThreatIntelClient(self.settings.intel_url, timeout=self.settings.intel_timeout)
        self.intel = intel

        workers = self.settings.batch_concurrency
        self._classifier_slots = threading.BoundedSemaphore(workers)
        self._batch_pool = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="batch-scan")
        self._closed = False

    @classmethod
    def from_config(cls, path: str | Path, **collaborators) -> Self:
        """Create an engine from a YAML profile."""
        return cls(profile=load_profile(path), **collaborators)

    @property
    def frameworks(self) -> list[str]:
        return list(self._profile.frameworks)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._batch_pool.shutdown(wait=True)
        self.classifier.close()

    def __enter__(self) -> Self:
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # -- single file -------------------------------------------------------

    def scan(
        self,
        text: str | bytes,
        file_path: str = "unknown",
        force_rescan: bool = False,
        on_state: StateCallback | None = None,
    ) -> ScanResult:
        """Scan one source text.

        Returns a cached result when one exists for the same content and
        feature version, unless ``force_rescan`` is set. Raises InputError for
        missing input and ScanFailed when the pipeline cannot complete.
        """
        if text is None:
            raise InputError("Source code is required")
        if not isinstance(text, (str, bytes)):
            raise InputError(f"Source code must be text, got {type(text).__name__}")

        started = time.perf_counter()
        warnings: list[str] = []
        source, raw = self._decode(text, file_path, warnings)
        key = fingerprint(raw)

        def notify(state: ScanState) -> None:
            logger.debug("%s: %s", file_path, state.value)
            if on_state is not None:
                on_state(file_path, state)

        notify(ScanState.PENDING)

        if not force_rescan:
            cached = self._cache_get(key)
            if cached is not None and cached.feature_version == FEATURE_VERSION:
                logger.debug("Cache hit for %s (%s)", file_path, key[:12])
                notify(ScanState.COMPLETE)
                return dataclasses.replace(
                    cached,
                    file_path=file_path,
                    from_cache=True,
                    processing_time_ms=_elapsed_ms(started),
                )

        state = ScanState.PENDING
        try:
            state = ScanState.MATCHING
            notify(state)
            findings = self.matcher.scan(source)

            state = ScanState.CLASSIFYING
            notify(state)
            anomaly_vector = extract_features(source, ANOMALY)
            classification_vector = extract_features(source, CLASSIFICATION)
            check_vector(anomaly_vector)
            check_vector(classification_vector)
            classifier_output, classifier_degraded = self._classify(
                anomaly_vector, classification_vector, warnings
            )

            state = ScanState.QUANTUM_ASSESSING
            notify(state)
            quantum_threats = self.assessor.assess(source)

            state = ScanState.SCORING
            notify(state)
            score, recommendations = self.scorer.score(findings, classifier_output, quantum_threats)
            compliance = map_all(findings, self._profile.frameworks)
        except Exception as e:
            notify(ScanState.FAILED)
            raise ScanFailed(file_path, state.value, e) from e

        result = ScanResult(
            fingerprint=key,
            file_path=file_path,
            findings=tuple(findings),
            classifier_output=classifier_output,
            quantum_threats=tuple(quantum_threats),
            security_score=score,
            recommendations=tuple(recommendations),
            compliance=compliance,
            processing_time_ms=_elapsed_ms(started),
            feature_version=FEATURE_VERSION,
            threat_intelligence=self._fetch_intel(warnings),
            warnings=tuple(warnings),
        )
        notify(ScanState.COMPLETE)

        if classifier_degraded:
            logger.debug("Not caching %s: classifier output is a fallback", file_path)
        else:
            self._cache_put(key, result)
        try:
            self.store.save_scan(result)
        except PersistenceFailure as e:
            logger.warning("%s", e)
            result = dataclasses.replace(result, warnings=result.warnings + (str(e),))
        return result

    def _decode(self, text: str | bytes, file_path: str, warnings: list[str]) -> tuple[str, bytes]:
        if isinstance(text, str):
            return text, text.encode("utf-8", errors="surrogatepass")
        try:
            return text.decode("utf-8"), text
        except UnicodeDecodeError as e:
            degraded = ExtractionDegraded(f"{file_path} is not valid UTF-8; decoded with replacement ({e.reason})")
            logger.warning("%s", degraded)
            warnings.append(str(degraded))
            return text.decode("utf-8", errors="replace"), text

    def _classify(
        self, anomaly_vector, classification_vector, warnings: list[str]
    ) -> tuple[ClassifierOutput, bool]:
        """Return the classifier output and whether it is the neutral fallback."""
        categories = self.classifier.categories
        try:
            output = self._run_classifier(anomaly_vector, classification_vector)
            return validate_output(output, categories), False
        except ClassifierUnavailable as e:
            failure = e
        except Exception as e:
            failure = ClassifierUnavailable(f"Classifier failed: {e}")
        logger.warning("%s; using neutral output", failure)
        warnings.append(str(failure))
        return ClassifierOutput.neutral(categories), True

    def _run_classifier(self, anomaly_vector, classification_vector) -> ClassifierOutput:
        # Daemon workers: a classify() call that never returns must not block interpreter exit.
        timeout = self.settings.classifier_timeout
        deadline = time.monotonic() + timeout
        if not self._classifier_slots.acquire(timeout=timeout):
            raise ClassifierUnavailable(f"No classifier worker free after {timeout}s")
        outcome: dict = {}

        def work() -> None:
            try:
                outcome["output"] = self.classifier.classify(anomaly_vector, classification_vector)
            except Exception as e:
                outcome["error"] = e
            finally:
                self._classifier_slots.release()

        worker = threading.Thread(target=work, name="classifier", daemon=True)
        worker.start()
        worker.join(max(deadline - time.monotonic(), 0.0))
        if worker.is_alive():
            raise ClassifierUnavailable(f"Classifier timed out after {timeout}s")
        if "error" in outcome:
            raise outcome["error"]
        return outcome["output"]

    def _fetch_intel(self, warnings: list[str]) -> ThreatIntel | None:
        if self.intel is None:
            return None
        try:
            return self.intel.fetch()
        except IntelUnavailable as e:
            logger.warning("%s", e)
            warnings.append(str(e))
            return ThreatIntel.empty()

    def _cache_get(self, key: str) -> ScanResult | None:
        try:
            return self.cache.get(key)
        except Exception as e:
            logger.warning("Cache read failed for %s: %s", key[:12], e)
            return None

    def _cache_put(self, key: str, result: ScanResult) -> None:
        s = self.settings
        ttl = s.cache_ttl_clean if result.security_score > s.cache_clean_threshold else s.cache_ttl_risky
        try:
            self.cache.put(key, result, ttl)
        except Exception as e:
            logger.warning("Cache write failed for %s: %s", key[:12], e)

    # -- batch --------------------------------------------------------------

    def scan_batch(
        self,
        files: Iterable[tuple[str, str | bytes]],
        force_rescan: bool = False,
        cancel_event: threading.Event | None = None,
    ) -> BatchResult:
        """Scan ``(file_path, content)`` pairs in groups of ``batch_concurrency``.

        A failing file becomes an ``error`` outcome. Setting ``cancel_event``
        stops dispatch of further files; in-flight scans still complete and
        count towards the summary.
        """
        started = time.perf_counter()
        files = list(files)
        outcomes: list[FileOutcome | None] = [None] * len(files)
        group_size = self.settings.batch_concurrency
        cancelled = False

        for group_start in range(0, len(files), group_size):
            in_flight = {}
            for index in range(group_start, min(group_start + group_size, len(files))):
                if cancel_event is not None and cancel_event.is_set():
                    cancelled = True
                    break
                file_path, content = files[index]
                future = self._batch_pool.submit(self._scan_item, file_path, content, force_rescan)
                in_flight[future] = index
            for future in as_completed(in_flight):
                outcomes[in_flight[future]] = future.result()
            if cancelled:
                logger.info("Batch cancelled after %d of %d files", len(in_flight) + group_start, len(files))
                break

        per_file = tuple(
            o if o is not None else FileOutcome(file_path=files[i][0], status="error", error=CANCELLED_MESSAGE)
            for i, o in enumerate(outcomes)
        )
        batch = BatchResult(
            summary=summarize(per_file),
            per_file=per_file,
            recommendations=tuple(pattern_recommendations(per_file)),
            cancelled=cancelled,
            processing_time_ms=_elapsed_ms(started),
        )
        try:
            self.store.save_batch(batch)
        except PersistenceFailure as e:
            logger.warning("%s", e)
        return batch

    def _scan_item(self, file_path: str, content, force_rescan: bool) -> FileOutcome:
        try:
            result = self.scan(content, file_path=file_path, force_rescan=force_rescan)
        except Exception as e:
            failure = BatchItemFailure(file_path, str(e))
            logger.warning("%s", failure)
            return FileOutcome(file_path=file_path, status="error", error=failure.message)
        return FileOutcome(file_path=file_path, status="success", result=result)

    # -- standalone assessments --------------------------------------------

    def assess_quantum(self, text: str, algorithm: str | None = None) -> list[QuantumAssessment]:
        """Assess one named algorithm, or every vulnerable algorithm found in ``text``."""
        if text is None:
            raise InputError("Source code is required")
        if algorithm:
            return [self.assessor.assess_algorithm(text, algorithm)]
        return [
            self.assessor.assess_algorithm(text, threat.algorithm_name)
            for threat in self.assessor.assess(text)
        ]

    def assess_compliance(self, findings: Sequence[Finding], framework: str) -> ComplianceReport:
        """Evaluate one framework against previously produced findings."""
        if not framework:
            raise InputError("Framework is required")
        return map_compliance(findings, canonical_framework(framework))


def _elapsed_ms(started: float) -> float:
    return (time.perf_counter() - started) * 1000
