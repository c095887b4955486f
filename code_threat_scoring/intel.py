"""Threat-intelligence feed client.

Queries ``{base_url}/threats/current`` for a JSON document of the form
``{"cves": [...], "emerging": [...], "quantum": [...], "timestamp": ...}``.
"""

import logging

import requests

from .errors import IntelUnavailable
from .models import ThreatIntel

logger = logging.getLogger(__name__)

TIMEOUT = 10
HEADERS = {"User-Agent": "code-threat-scoring/0.1", "Accept": "application/json"}


def _strings(value) -> tuple[str, ...]:
    if not isinstance(value, list):
        return ()
    return tuple(str(v) for v in value if v is not None)


class ThreatIntelClient:
    def __init__(self, base_url: str, timeout: float = TIMEOUT, session: requests.Session | None = None) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session

    def fetch(self) -> ThreatIntel:
        """Fetch current threat intelligence.

        Raises IntelUnavailable on any network, status or payload problem.
        """
        url = f"{self.base_url}/threats/current"
        getter = self.session.get if self.session is not None else requests.get
        try:
            r = getter(url, timeout=self.timeout, headers=HEADERS)
        except requests.RequestException as e:
            raise IntelUnavailable(f"Threat intel request failed: {e}") from e

        if r.status_code != 200:
            raise IntelUnavailable(f"Threat intel feed returned HTTP {r.status_code}")

        try:
            data = r.json()
        except ValueError as e:
            raise IntelUnavailable(f"Threat intel feed returned invalid JSON: {e}") from e
        if not isinstance(data, dict):
            raise IntelUnavailable("Threat intel payload is not a JSON object")

        intel = ThreatIntel(
            active_cves=_strings(data.get("cves")),
            emerging_threats=_strings(data.get("emerging")),
            quantum_threats=_strings(data.get("quantum")),
            last_updated=data.get("timestamp"),
        )
        logger.debug(
            "Threat intel: %d CVEs, %d emerging, %d quantum",
            len(intel.active_cves), len(intel.emerging_threats), len(intel.quantum_threats),
        )
        return intel
