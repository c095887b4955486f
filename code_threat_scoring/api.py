"""HTTP request boundary.

Routes:
    POST /api/scan/code          single-file scan
    POST /api/scan/batch         batch scan
    POST /api/assess/quantum     standalone quantum assessment
    POST /api/assess/compliance  standalone compliance assessment
"""

import logging
import time

from flask import Blueprint, Flask, current_app, jsonify, request

from .errors import InputError
from .models import Finding, ScanReport
from .orchestrator import ScanEngine
from .quantum import assessment_recommendations

logger = logging.getLogger(__name__)

EXTENSION_KEY = "code_threat_scoring"

api_bp = Blueprint("code_threat_scoring", __name__, url_prefix="/api")


def _engine() -> ScanEngine:
    return current_app.extensions[EXTENSION_KEY]


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise InputError("Request body must be a JSON object")
    return data


def _required_text(data: dict, field: str) -> str:
    value = data.get(field)
    if not isinstance(value, str) or not value:
        raise InputError(f"{field} is required")
    return value


def _force_rescan(data: dict) -> bool:
    options = data.get("options") or {}
    if not isinstance(options, dict):
        raise InputError("options must be an object")
    return bool(options.get("forceRescan", False))


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 3)


# ────────────────────────────────────────────────────────────
# Scans
# ────────────────────────────────────────────────────────────

@api_bp.post("/scan/code")
def scan_code():
    started = time.perf_counter()
    data = _json_body()
    code = _required_text(data, "code")
    file_path = data.get("filePath") or "unknown"

    result = _engine().scan(code, file_path=file_path, force_rescan=_force_rescan(data))
    elapsed = _elapsed_ms(started)

    response = jsonify({
        "status": "success",
        "scan": result.to_dict(),
        "report": ScanReport.from_result(result).to_dict(),
        "compliance": {name: r.to_dict() for name, r in result.compliance.items()},
        "processingTimeMs": elapsed,
    })
    response.headers["X-Security-Score"] = str(result.security_score)
    response.headers["X-Processing-Time"] = f"{elapsed}ms"
    return response


@api_bp.post("/scan/batch")
def scan_batch():
    started = time.perf_counter()
    data = _json_body()
    files = data.get("files")
    if not isinstance(files, list) or not files:
        raise InputError("files array is required")

    pairs = []
    for i, entry in enumerate(files):
        if not isinstance(entry, dict):
            raise InputError(f"files[{i}] must be an object with path and content")
        pairs.append((entry.get("path") or f"file-{i}", entry.get("content")))

    batch = _engine().scan_batch(pairs, force_rescan=_force_rescan(data))
    body = batch.to_dict()
    body["status"] = "success"
    body["processingTimeMs"] = _elapsed_ms(started)
    return jsonify(body)


# ────────────────────────────────────────────────────────────
# Standalone assessments
# ────────────────────────────────────────────────────────────

@api_bp.post("/assess/quantum")
def assess_quantum():
    data = _json_body()
    code = _required_text(data, "code")
    algorithm = data.get("algorithm")
    if algorithm is not None and not isinstance(algorithm, str):
        raise InputError("algorithm must be a string")

    assessments = _engine().assess_quantum(code, algorithm)
    recommendations = [
        rec.to_dict() for a in assessments for rec in assessment_recommendations(a)
    ]
    return jsonify({
        "status": "success",
        "assessments": [a.to_dict() for a in assessments],
        "recommendations": recommendations,
    })


@api_bp.post("/assess/compliance")
def assess_compliance():
    data = _json_body()
    framework = _required_text(data, "framework")
    findings = _parse_findings(data.get("scanResults"))

    report = _engine().assess_compliance(findings, framework)
    return jsonify({
        "status": "success",
        "framework": report.framework,
        "compliance": report.to_dict(),
    })


def _parse_findings(scan_results) -> list[Finding]:
    """Accept a prior scan (with a ``findings`` list) or a bare findings list."""
    if isinstance(scan_results, dict):
        records = scan_results.get("findings", scan_results.get("vulnerabilities"))
    else:
        records = scan_results
    if not isinstance(records, list):
        raise InputError("scanResults with a findings list is required")
    try:
        return [Finding.from_dict(r) for r in records]
    except (TypeError, ValueError, AttributeError) as e:
        raise InputError(f"Invalid finding in scanResults: {e}") from e


# ────────────────────────────────────────────────────────────
# Errors
# ────────────────────────────────────────────────────────────

@api_bp.errorhandler(InputError)
def _input_error(e: InputError):
    return jsonify({"status": "error", "error": str(e)}), 400


@api_bp.errorhandler(Exception)
def _unexpected_error(e: Exception):
    logger.exception("Unhandled error in %s", request.path)
    return jsonify({"status": "error", "error": "Internal server error"}), 500


def create_app(engine: ScanEngine | None = None) -> Flask:
    """Build the Flask app around a scan engine (the default profile if omitted)."""
    app = Flask(__name__)
    app.extensions[EXTENSION_KEY] = engine or ScanEngine()
    app.register_blueprint(api_bp)
    return app
