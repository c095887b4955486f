"""Compliance mapping: evaluate framework controls as predicates over findings.

Every control is a pure function of the finding sequence, so a report never
depends on classifier output or scan ordering.
"""

from dataclasses import dataclass
from typing import Callable, Iterable, Sequence

from .errors import InputError
from .models import ComplianceReport, Finding

Predicate = Callable[[Sequence[Finding]], bool]


@dataclass(frozen=True)
class Control:
    id: str
    passes: Predicate


@dataclass(frozen=True)
class Framework:
    key: str
    title: str
    controls: tuple[Control, ...]
    partial_threshold: float | None = 50.0  # None: no "partial" status
    compliant_threshold: float = 80.0


def _none_named(*fragments: str) -> Predicate:
    """Pass when no finding's rule name contains any of ``fragments``."""
    def check(findings: Sequence[Finding]) -> bool:
        return not any(
            frag in f.rule_name.upper() for f in findings for frag in fragments
        )
    return check


def _no_quantum_or_named(*fragments: str) -> Predicate:
    named = _none_named(*fragments)

    def check(findings: Sequence[Finding]) -> bool:
        return named(findings) and not any(f.quantum_threat for f in findings)
    return check


def _no_tier(*tiers: str) -> Predicate:
    def check(findings: Sequence[Finding]) -> bool:
        return not any(f.severity_tier in tiers for f in findings)
    return check


def _always(findings: Sequence[Finding]) -> bool:
    # Dependency manifests and build provenance are not part of a source scan
    return True


OWASP = Framework(
    key="OWASP",
    title="OWASP Top 10",
    partial_threshold=None,
    controls=(
        Control("A01_Broken_Access_Control", _none_named("AUTH", "ACCESS")),
        Control("A02_Cryptographic_Failures", _no_quantum_or_named("CRYPTO")),
        Control("A03_Injection", _none_named("INJECTION")),
        Control("A04_Insecure_Design", _no_tier("critical")),
        Control("A05_Security_Misconfiguration", _none_named("CORS", "HEADERS")),
        Control("A06_Vulnerable_Components", _always),
        Control("A07_Authentication_Failures", _none_named("AUTH")),
        Control("A08_Software_Integrity_Failures", _none_named("INTEGRITY", "DESERIALIZATION")),
        Control("A09_Logging_Failures", _none_named("LOGGING")),
        Control("A10_SSRF", _none_named("SSRF")),
    ),
)

NIST = Framework(
    key="NIST",
    title="NIST CSF",
    controls=(
        Control("ID.RA_Risk_Assessment", _no_tier("critical")),
        Control("PR.AC_Access_Control", _none_named("AUTH", "ACCESS", "TRAVERSAL")),
        Control("PR.DS_Data_Security", _no_quantum_or_named("CRYPTO", "KEYS", "HTTP")),
        Control("PR.IP_Secure_Development", _none_named("INJECTION", "XSS")),
        Control("DE.CM_Continuous_Monitoring", _none_named("LOGGING")),
    ),
)

ISO27001 = Framework(
    key="ISO27001",
    title="ISO 27001",
    controls=(
        Control("A.9_Access_Control", _none_named("AUTH", "ACCESS")),
        Control("A.10_Cryptography", _no_quantum_or_named("CRYPTO", "KEYS")),
        Control("A.12_Operations_Security", _none_named("LOGGING", "RANDOM")),
        Control("A.13_Communications_Security", _none_named("HTTP", "CORS", "SSRF", "HEADERS")),
        Control("A.14_Secure_Development", _none_named("INJECTION", "XSS", "TRAVERSAL")),
    ),
)

PCI_DSS = Framework(
    key="PCI-DSS",
    title="PCI DSS",
    controls=(
        Control("Req3_Protect_Stored_Data", _none_named("KEYS", "CRYPTO")),
        Control("Req4_Encrypt_Transmission", _none_named("HTTP")),
        Control("Req6.5.1_Injection", _none_named("INJECTION")),
        Control("Req6.5.7_XSS", _none_named("XSS")),
        Control("Req6.5.8_Access_Control", _none_named("TRAVERSAL", "ACCESS")),
        Control("Req8_Authentication", _none_named("AUTH")),
        Control("Req10_Logging", _none_named("LOGGING")),
    ),
)

FRAMEWORKS: dict[str, Framework] = {
    f.key: f for f in (OWASP, NIST, ISO27001, PCI_DSS)
}

FRAMEWORK_ALIASES = {
    "OWASP-TOP-10": "OWASP",
    "OWASP TOP 10": "OWASP",
    "NIST-CSF": "NIST",
    "NIST CSF": "NIST",
    "ISO-27001": "ISO27001",
    "ISO 27001": "ISO27001",
    "PCI": "PCI-DSS",
    "PCIDSS": "PCI-DSS",
    "PCI DSS": "PCI-DSS",
}


def canonical_framework(name: str) -> str:
    """Resolve a framework name or alias, case-insensitively."""
    key = (name or "").strip().upper()
    key = FRAMEWORK_ALIASES.get(key, key)
    if key not in FRAMEWORKS:
        raise InputError(
            f"Unsupported compliance framework {name!r}. "
            f"Must be one of: {sorted(FRAMEWORKS)}"
        )
    return key


def map_compliance(findings: Sequence[Finding], framework: str) -> ComplianceReport:
    """Evaluate one framework's controls against ``findings``."""
    fw = FRAMEWORKS[canonical_framework(framework)]
    findings = tuple(findings)
    per_control = {c.id: c.passes(findings) for c in fw.controls}
    passed = sum(1 for ok in per_control.values() if ok)
    score = round(passed / len(fw.controls) * 100, 1)

    if score >= fw.compliant_threshold:
        status = "compliant"
    elif fw.partial_threshold is not None and score >= fw.partial_threshold:
        status = "partial"
    else:
        status = "non-compliant"

    return ComplianceReport(
        framework=fw.title,
        score=score,
        per_control_pass=per_control,
        status=status,
    )


def map_all(findings: Sequence[Finding], frameworks: Iterable[str]) -> dict[str, ComplianceReport]:
    """Evaluate several frameworks, keyed by canonical framework name."""
    return {canonical_framework(name): map_compliance(findings, name) for name in frameworks}
