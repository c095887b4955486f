"""Durable, write-only storage of scan and finding records.

The engine only writes here; reading stored scans back is left to reporting
tools.
"""

import json
import logging
import threading
import uuid
from datetime import datetime, timezone
from typing import Protocol

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool

from .errors import PersistenceFailure
from .models import BatchResult, ScanResult

logger = logging.getLogger(__name__)

metadata = MetaData()

security_scans = Table(
    "security_scans",
    metadata,
    Column("scan_id", String(36), primary_key=True),
    Column("file_path", String(1024), nullable=False),
    Column("code_hash", String(64), nullable=False, index=True),
    Column("security_score", Integer, nullable=False),
    Column("vulnerability_count", Integer, nullable=False, default=0),
    Column("quantum_threat_count", Integer, nullable=False, default=0),
    Column("anomaly_score", Float, nullable=False, default=0.0),
    Column("top_category", String(40), nullable=True),
    Column("feature_version", String(80), nullable=False),
    Column("processing_time_ms", Float, nullable=False),
    Column("scanned_at", DateTime, nullable=False),
)

vulnerability_detections = Table(
    "vulnerability_detections",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("scan_id", String(36), ForeignKey("security_scans.scan_id", ondelete="CASCADE"), nullable=False, index=True),
    Column("vulnerability_type", String(80), nullable=False),
    Column("severity", String(20), nullable=False),
    Column("cwe", String(20), nullable=True),
    Column("line_number", Integer, nullable=True),  # NULL for presence-required findings
    Column("evidence", String(500), nullable=True),
    Column("quantum_threat", Boolean, nullable=False, default=False),
    Column("detected_at", DateTime, nullable=False),
)

quantum_threats = Table(
    "quantum_threats",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("scan_id", String(36), ForeignKey("security_scans.scan_id", ondelete="CASCADE"), nullable=False, index=True),
    Column("algorithm", String(40), nullable=False),
    Column("risk_level", String(10), nullable=False),
    Column("occurrences", Integer, nullable=False, default=1),
    Column("quantum_resistant_alternatives", Text, nullable=True),  # JSON array
)

batch_scans = Table(
    "batch_scans",
    metadata,
    Column("batch_id", String(36), primary_key=True),
    Column("total_files", Integer, nullable=False),
    Column("scanned_files", Integer, nullable=False),
    Column("total_vulnerabilities", Integer, nullable=False, default=0),
    Column("critical_issues", Integer, nullable=False, default=0),
    Column("average_security_score", Float, nullable=False, default=0.0),
    Column("cancelled", Boolean, nullable=False, default=False),
    Column("processing_time_ms", Float, nullable=False),
    Column("scanned_at", DateTime, nullable=False),
)


@event.listens_for(Engine, "connect")
def _set_sqlite_pragma(dbapi_connection, _connection_record):
    # PRAGMA is SQLite-only
    module_name = type(dbapi_connection).__module__
    if "sqlite" in module_name.lower():
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def _create_engine(url: str) -> Engine:
    if url in ("sqlite://", "sqlite:///:memory:"):
        # One shared connection so every worker thread sees the same database
        return create_engine(url, poolclass=StaticPool, connect_args={"check_same_thread": False})
    return create_engine(url)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ScanStore(Protocol):
    def save_scan(self, result: ScanResult) -> str: ...

    def save_batch(self, batch: BatchResult) -> str: ...


class NullScanStore:
    """Store that discards everything."""

    def save_scan(self, result: ScanResult) -> str:
        return ""

    def save_batch(self, batch: BatchResult) -> str:
        return ""


class SqlScanStore:
    """SQLAlchemy-backed store for scans, findings and batches."""

    def __init__(self, url: str = "sqlite://", engine: Engine | None = None) -> None:
        if engine is None:
            engine = _create_engine(url)
        self.engine = engine
        # SQLite allows one writer at a time
        self._lock = threading.Lock()
        metadata.create_all(self.engine)

    def save_scan(self, result: ScanResult) -> str:
        scan_id = str(uuid.uuid4())
        now = _now()
        try:
            with self._lock, self.engine.begin() as conn:
                conn.execute(security_scans.insert().values(
                    scan_id=scan_id,
                    file_path=result.file_path,
                    code_hash=result.fingerprint,
                    security_score=result.security_score,
                    vulnerability_count=len(result.findings),
                    quantum_threat_count=len(result.quantum_threats),
                    anomaly_score=result.classifier_output.anomaly_score,
                    top_category=result.classifier_output.top_category,
                    feature_version=result.feature_version,
                    processing_time_ms=result.processing_time_ms,
                    scanned_at=now,
                ))
                if result.findings:
                    conn.execute(vulnerability_detections.insert(), [
                        {
                            "scan_id": scan_id,
                            "vulnerability_type": f.rule_name,
                            "severity": f.severity_tier,
                            "cwe": f.cwe_id,
                            "line_number": f.line if isinstance(f.line, int) else None,
                            "evidence": f.evidence,
                            "quantum_threat": f.quantum_threat,
                            "detected_at": now,
                        }
                        for f in result.findings
                    ])
                if result.quantum_threats:
                    conn.execute(quantum_threats.insert(), [
                        {
                            "scan_id": scan_id,
                            "algorithm": t.algorithm_name,
                            "risk_level": t.risk_tier,
                            "occurrences": t.occurrence_count,
                            "quantum_resistant_alternatives": json.dumps(list(t.recommended_alternatives)),
                        }
                        for t in result.quantum_threats
                    ])
        except SQLAlchemyError as e:
            raise PersistenceFailure(f"Could not store scan of {result.file_path}: {e}") from e
        logger.debug("Stored scan %s (%d findings)", scan_id, len(result.findings))
        return scan_id

    def save_batch(self, batch: BatchResult) -> str:
        batch_id = str(uuid.uuid4())
        s = batch.summary
        try:
            with self._lock, self.engine.begin() as conn:
                conn.execute(batch_scans.insert().values(
                    batch_id=batch_id,
                    total_files=s.total_files,
                    scanned_files=s.scanned_files,
                    total_vulnerabilities=s.total_findings,
                    critical_issues=s.critical_findings,
                    average_security_score=s.average_security_score,
                    cancelled=batch.cancelled,
                    processing_time_ms=batch.processing_time_ms,
                    scanned_at=_now(),
                ))
        except SQLAlchemyError as e:
            raise PersistenceFailure(f"Could not store batch: {e}") from e
        return batch_id
