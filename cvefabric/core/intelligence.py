"""NVD enrichment: CVSS score, severity, status, CWE and references for a CVE id."""

from __future__ import annotations

import logging
import os
import time
from typing import Iterable, List, Optional

import requests

from cvefabric.core.models import CveEnrichment
from cvefabric.core.severity import sort_key
from cvefabric.core.utils import IntelligenceError

logger = logging.getLogger(__name__)

NVD_API = os.getenv("NVD_API_URL", "https://services.nvd.nist.gov/rest/json/cves/2.0")
USER_AGENT = "cvefabric/0.1"

# NVD allows 5 requests / 30s anonymously, 50 / 30s with a key.
DELAY_WITH_KEY = 0.1
DELAY_WITHOUT_KEY = 0.7
MAX_REFERENCES = 5


def extract_cvss(item: dict) -> tuple[Optional[float], str]:
    metrics = item.get("metrics") or {}
    for key in ("cvssMetricV31", "cvssMetricV30"):
        entries = metrics.get(key) or []
        if entries:
            data = entries[0].get("cvssData") or {}
            return data.get("baseScore"), data.get("baseSeverity", "UNKNOWN")
    v2 = metrics.get("cvssMetricV2") or []
    if v2:
        return (v2[0].get("cvssData") or {}).get("baseScore"), v2[0].get("baseSeverity", "UNKNOWN")
    return None, "UNKNOWN"


def _english(values: Iterable[dict]) -> Optional[str]:
    for value in values or []:
        if value.get("lang") == "en":
            return value.get("value")
    return None


def _cwe(item: dict) -> Optional[str]:
    for weakness in item.get("weaknesses") or []:
        found = _english(weakness.get("description"))
        if found:
            return found
    return None


def enrich(cve_id: str, api_key: Optional[str] = None, session: requests.Session | None = None) -> CveEnrichment:
    """Fetch one CVE from the NVD and return its enrichment record."""
    http = session or requests
    headers = {"User-Agent": USER_AGENT}
    if api_key:
        headers["apiKey"] = api_key

    try:
        resp = http.get(NVD_API, params={"cveId": cve_id}, headers=headers, timeout=30)
    except requests.RequestException as exc:
        raise IntelligenceError(f"NVD request failed for {cve_id}: {exc}") from exc

    if resp.status_code == 404:
        raise IntelligenceError(f"CVE {cve_id} not found in NVD")
    if resp.status_code == 403:
        raise IntelligenceError("NVD rate limited - provide an API key or wait")
    if resp.status_code >= 400:
        raise IntelligenceError(f"NVD API error: {resp.status_code}")

    try:
        data = resp.json()
    except ValueError as exc:
        raise IntelligenceError(f"NVD returned invalid JSON for {cve_id}") from exc

    vulnerabilities = (data.get("vulnerabilities") if isinstance(data, dict) else None) or []
    item = vulnerabilities[0].get("cve") if vulnerabilities else None
    if not item:
        raise IntelligenceError(f"No data returned for {cve_id}")

    score, severity = extract_cvss(item)
    return CveEnrichment(
        id=item.get("id", cve_id),
        status=item.get("vulnStatus", ""),
        severity=severity,
        score=score,
        description=_english(item.get("descriptions")) or "No description available.",
        published=item.get("published", ""),
        references=[ref.get("url", "") for ref in (item.get("references") or [])[:MAX_REFERENCES]],
        cwe=_cwe(item),
    )


def enrich_batch(
    cve_ids: Iterable[str],
    api_key: Optional[str] = None,
    session: requests.Session | None = None,
    delay: Optional[float] = None,
) -> List[CveEnrichment]:
    """Enrich several CVEs one at a time, most severe first.

    A failing id yields an ``ERROR`` record with the message instead of
    aborting the batch.
    """
    ids = [cve_id.strip().upper() for cve_id in cve_ids if cve_id and cve_id.strip()]
    if delay is None:
        delay = DELAY_WITH_KEY if api_key else DELAY_WITHOUT_KEY

    results: List[CveEnrichment] = []
    for index, cve_id in enumerate(ids):
        try:
            results.append(enrich(cve_id, api_key, session=session))
        except (IntelligenceError, ValueError) as exc:
            logger.warning("Enrichment failed for %s: %s", cve_id, exc)
            results.append(
                CveEnrichment(id=cve_id, status="ERROR", severity="UNKNOWN", description=str(exc), error=str(exc))
            )
        if delay and index < len(ids) - 1:
            time.sleep(delay)

    results.sort(key=lambda r: sort_key(r.severity, r.score))
    return results
