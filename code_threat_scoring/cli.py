"""CLI entry point for code-threat-scoring."""

import argparse
import csv
import io
import json
import logging
import os
import sys
from pathlib import Path

from .compliance import canonical_framework
from .errors import InputError
from .models import BatchResult, FileOutcome, ScanReport
from .orchestrator import ScanEngine
from .stats import score_histogram

logger = logging.getLogger(__name__)

MAX_FILE_SIZE = 10 * 1024 * 1024  # 10MB

DEFAULT_EXTENSIONS = {
    ".js", ".jsx", ".mjs", ".cjs", ".ts", ".tsx", ".py", ".php", ".rb", ".go", ".java", ".sh",
}

DEFAULT_EXCLUDE_DIRS = {
    "node_modules", ".git", ".svn", ".hg", "__pycache__", ".venv", "venv", ".tox", "dist", "build",
}


def main(argv: list[str] | None = None) -> None:
    """Code Threat Scoring: scan source files for vulnerabilities and quantum-weak crypto."""
    parser = argparse.ArgumentParser(
        prog="code-threat-scoring",
        description="Scan source files for vulnerabilities and score their security posture.",
    )
    parser.add_argument("paths", nargs="*", help="Files or directories to scan.")
    parser.add_argument("--config", dest="config_path", default=None, help="Path to custom YAML scan profile.")
    parser.add_argument("--format", dest="output_format", choices=["json", "csv"], default="json", help="Output format (default: json).")
    parser.add_argument("--output", dest="output_path", default=None, help="Write results to file instead of stdout.")
    parser.add_argument("--stats", dest="show_stats", action="store_true", default=False, help="Print batch summary to stderr.")
    parser.add_argument("--force", dest="force_rescan", action="store_true", default=False, help="Ignore cached results.")
    parser.add_argument("--framework", default=None, help="Only report compliance for this framework.")
    parser.add_argument("--min-score", type=int, default=None, help="Only output files with security score >= n.")
    parser.add_argument("--sort-by", dest="sort_by", choices=["score"], default=None, help="Sort output by security score, lowest first.")
    parser.add_argument("--verbose", action="store_true", default=False, help="Include findings and recommendations in output.")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s [%(name)s] %(message)s",
    )

    if not args.paths:
        parser.print_help()
        sys.exit(1)

    _cmd_scan(args)


def _cmd_scan(args: argparse.Namespace) -> None:
    """Execute a scan."""
    framework = None
    if args.framework:
        try:
            framework = canonical_framework(args.framework)
        except InputError as e:
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(2)

    if args.config_path and not Path(args.config_path).is_file():
        print(f"Error: Config file not found: {args.config_path}", file=sys.stderr)
        sys.exit(2)

    for path in args.paths:
        if not Path(path).exists():
            print(f"Error: File not found: {path}", file=sys.stderr)
            sys.exit(2)

    files: list[str] = []
    for path in args.paths:
        if Path(path).is_dir():
            files.extend(sorted(discover_files(path)))
        else:
            files.append(path)

    engine = ScanEngine.from_config(args.config_path) if args.config_path else ScanEngine()
    with engine:
        batch = engine.scan_batch(
            ((f, read_source(f)) for f in files),
            force_rescan=args.force_rescan,
        )

    outcomes = list(batch.per_file)

    # Filter
    if args.min_score is not None:
        outcomes = [o for o in outcomes if o.ok and o.result.security_score >= args.min_score]

    # Sort
    if args.sort_by == "score":
        outcomes.sort(key=lambda o: (not o.ok, o.result.security_score if o.ok else 0))

    if args.output_format == "json":
        output_text = _format_json(batch, outcomes, framework, args.verbose)
    else:
        output_text = _format_csv(outcomes, framework, args.verbose)

    if args.output_path:
        with open(args.output_path, "w", encoding="utf-8") as f:
            f.write(output_text)
    else:
        print(output_text)

    if args.show_stats:
        _print_stats(batch)


def discover_files(
    root: str,
    extensions: set[str] | None = None,
    exclude_dirs: set[str] | None = None,
) -> list[str]:
    """Walk a directory tree collecting source files by extension. Symlink-loop safe."""
    if extensions is None:
        extensions = DEFAULT_EXTENSIONS
    if exclude_dirs is None:
        exclude_dirs = DEFAULT_EXCLUDE_DIRS
    found: list[str] = []
    seen_inodes: set[tuple[int, int]] = set()

    for dirpath, dirnames, filenames in os.walk(root, followlinks=False):
        try:
            dir_stat = os.stat(dirpath)
        except OSError:
            dirnames.clear()
            continue
        inode_key = (dir_stat.st_dev, dir_stat.st_ino)
        if inode_key in seen_inodes:
            dirnames.clear()
            continue
        seen_inodes.add(inode_key)

        dirnames[:] = [d for d in dirnames if d not in exclude_dirs]

        for fname in filenames:
            if os.path.splitext(fname)[1].lower() in extensions:
                found.append(os.path.join(dirpath, fname))
    return found


def read_source(path: str) -> bytes | None:
    """Read a file up to MAX_FILE_SIZE. Returns None on error."""
    try:
        size = os.path.getsize(path)
        if size > MAX_FILE_SIZE:
            logger.warning("Skipping %s: exceeds 10MB limit (%d bytes)", path, size)
            return None
        with open(path, "rb") as f:
            return f.read(MAX_FILE_SIZE)
    except OSError as e:
        logger.warning("Cannot read %s: %s", path, e)
        return None


def _compliance(outcome: FileOutcome, framework: str | None) -> dict:
    reports = outcome.result.compliance
    if framework is not None:
        reports = {k: v for k, v in reports.items() if k == framework}
    return {name: r.to_dict() for name, r in reports.items()}


def _format_json(batch: BatchResult, outcomes: list[FileOutcome], framework: str | None, verbose: bool) -> str:
    """Format results as JSON."""
    records = []
    for o in outcomes:
        record = {"file": o.file_path, "status": o.status}
        if not o.ok:
            record["error"] = o.error
            records.append(record)
            continue
        record["securityScore"] = o.result.security_score
        record["report"] = ScanReport.from_result(o.result).to_dict()
        record["compliance"] = _compliance(o, framework)
        if verbose:
            record["findings"] = [f.to_dict() for f in o.result.findings]
            record["quantumThreats"] = [t.to_dict() for t in o.result.quantum_threats]
            record["recommendations"] = [r.to_dict() for r in o.result.recommendations]
            record["warnings"] = list(o.result.warnings)
        records.append(record)

    return json.dumps({
        "summary": batch.summary.to_dict(),
        "results": records,
        "recommendations": [r.to_dict() for r in batch.recommendations],
        "processingTimeMs": round(batch.processing_time_ms, 3),
    }, indent=2)


def _format_csv(outcomes: list[FileOutcome], framework: str | None, verbose: bool) -> str:
    """Format results as CSV, one row per file."""
    buf = io.StringIO()
    fieldnames = [
        "file", "status", "security_score", "findings",
        "critical", "high", "medium", "low", "quantum_threats", "error",
    ]
    if framework is not None:
        fieldnames.append("compliance_status")
    if verbose:
        fieldnames.append("rules")
    writer = csv.DictWriter(buf, fieldnames=fieldnames)
    writer.writeheader()
    for o in outcomes:
        row = {"file": o.file_path, "status": o.status, "error": o.error or ""}
        if o.ok:
            report = ScanReport.from_result(o.result)
            row.update({
                "security_score": report.security_score,
                "findings": report.total_findings,
                "critical": report.critical_count,
                "high": report.high_count,
                "medium": report.medium_count,
                "low": report.low_count,
                "quantum_threats": report.quantum_threats,
            })
            if framework is not None and framework in o.result.compliance:
                row["compliance_status"] = o.result.compliance[framework].status
            if verbose:
                row["rules"] = json.dumps(sorted({f.rule_name for f in o.result.findings}))
        writer.writerow(row)
    return buf.getvalue()


def _print_stats(batch: BatchResult) -> None:
    """Print summary statistics to stderr."""
    s = batch.summary
    print("\n=== Scan Summary ===", file=sys.stderr)
    print(f"Files scanned: {s.scanned_files:,} of {s.total_files:,}", file=sys.stderr)
    print(f"Findings: {s.total_findings:,}  |  Critical: {s.critical_findings:,}", file=sys.stderr)
    print(f"Average security score: {s.average_security_score}", file=sys.stderr)
    hist = score_histogram(batch.per_file)
    print(
        "  Distribution:  "
        + "  |  ".join(f"{bucket}: {count}" for bucket, count in hist.items()),
        file=sys.stderr,
    )
    if batch.recommendations:
        print("", file=sys.stderr)
        print("Project-wide patterns:", file=sys.stderr)
        for rec in batch.recommendations:
            print(f"  {rec.recommendation}", file=sys.stderr)
