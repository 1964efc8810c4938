from __future__ import annotations

import logging
import os
from typing import List, Optional

import requests

from cvefabric.core.manifests import GHSA_ECOSYSTEM
from cvefabric.core.models import GhsaAdvisory
from cvefabric.core.utils import AdvisoryError

logger = logging.getLogger(__name__)

GRAPHQL_URL = os.getenv("GITHUB_GRAPHQL_URL", "https://api.github.com/graphql")
USER_AGENT = "cvefabric/0.1"

SECURITY_VULNERABILITIES_QUERY = """
    query($ecosystem: SecurityAdvisoryEcosystem!, $package: String!) {
      securityVulnerabilities(
        ecosystem: $ecosystem, package: $package,
        first: 10, orderBy: { field: UPDATED_AT, direction: DESC }
      ) {
        nodes {
          advisory { ghsaId identifiers { type value } summary severity cvss { score } }
          package { ecosystem name }
          vulnerableVersionRange
          firstPatchedVersion { identifier }
        }
      }
    }
"""


def _cve_from_identifiers(identifiers) -> Optional[str]:
    for ident in identifiers or []:
        if isinstance(ident, dict) and ident.get("type") == "CVE" and ident.get("value"):
            return ident["value"]
    return None


def _to_advisory(node: dict) -> GhsaAdvisory:
    advisory = node.get("advisory") or {}
    package = node.get("package") or {}
    cvss = advisory.get("cvss") or {}
    patched = node.get("firstPatchedVersion") or {}
    score = cvss.get("score")
    return GhsaAdvisory(
        ghsa_id=advisory.get("ghsaId", ""),
        cve_id=_cve_from_identifiers(advisory.get("identifiers")),
        summary=advisory.get("summary") or "",
        severity=advisory.get("severity") or "UNKNOWN",
        # GitHub reports 0.0 when no CVSS vector was assigned.
        cvss_score=score if score else None,
        ecosystem=package.get("ecosystem", ""),
        package_name=package.get("name", ""),
        vulnerable_version_range=node.get("vulnerableVersionRange") or "",
        first_patched_version=patched.get("identifier"),
    )


def query_ghsa(
    ecosystem: str,
    package: str,
    token: str,
    session: requests.Session | None = None,
    timeout: int = 30,
) -> List[GhsaAdvisory]:
    """Query the GitHub Advisory Database for vulnerabilities in one package."""
    http = session or requests
    payload = {
        "query": SECURITY_VULNERABILITIES_QUERY,
        "variables": {
            "ecosystem": GHSA_ECOSYSTEM.get(ecosystem, ecosystem.upper()),
            "package": package,
        },
    }
    headers = {
        "Authorization": f"bearer {token}",
        "Content-Type": "application/json",
        "User-Agent": USER_AGENT,
    }
    try:
        resp = http.post(GRAPHQL_URL, json=payload, headers=headers, timeout=timeout)
    except requests.RequestException as exc:
        raise AdvisoryError(f"Advisory query failed for {ecosystem}/{package}: {exc}") from exc

    if resp.status_code != 200:
        raise AdvisoryError(f"Advisory query for {ecosystem}/{package} returned HTTP {resp.status_code}")

    try:
        data = resp.json()
    except ValueError as exc:
        raise AdvisoryError(f"Advisory query for {ecosystem}/{package} returned invalid JSON") from exc

    if data.get("errors"):
        messages = "; ".join(str(err.get("message", err)) for err in data["errors"])
        raise AdvisoryError(f"Advisory query for {ecosystem}/{package} failed: {messages}")

    nodes = ((data.get("data") or {}).get("securityVulnerabilities") or {}).get("nodes") or []
    return [_to_advisory(node) for node in nodes if node]
