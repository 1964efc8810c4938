from __future__ import annotations

import logging
import time
from functools import partial
from typing import Callable, Dict, Iterable, List, Optional

from cvefabric.core.adapters import CodeHost
from cvefabric.core.advisories import query_ghsa
from cvefabric.core.manifests import MANIFEST_PATHS, parse_manifest
from cvefabric.core.models import DetectionResult, GhsaAdvisory, QueueEntry, UNKNOWN_VERSION
from cvefabric.core.severity import SEVERITY_ORDER, meets_threshold, normalize_severity
from cvefabric.core.utils import split_repo, utc_now

logger = logging.getLogger(__name__)

# Pause between advisory queries to stay under the host's rate limits.
QUERY_DELAY_SECONDS = 0.15

AdvisorySource = Callable[[str, str], List[GhsaAdvisory]]


def _query_with_token(token: str, ecosystem: str, package: str) -> List[GhsaAdvisory]:
    return query_ghsa(ecosystem, package, token)


def reference_url(advisory: GhsaAdvisory) -> str:
    if advisory.cve_id:
        return f"https://nvd.nist.gov/vuln/detail/{advisory.cve_id}"
    return f"https://github.com/advisories/{advisory.ghsa_id}"


def to_queue_entry(advisory: GhsaAdvisory, repo: str, ecosystem: str, package: str, version: str) -> QueueEntry:
    return QueueEntry(
        id=advisory.cve_id or advisory.ghsa_id,
        ghsa_id=advisory.ghsa_id or None,
        repo=repo,
        ecosystem=ecosystem,
        affected_package=package,
        affected_version=version,
        patched_version=advisory.first_patched_version or UNKNOWN_VERSION,
        severity=normalize_severity(advisory.severity),
        cvss_score=advisory.cvss_score,
        summary=advisory.summary,
        nvd_url=reference_url(advisory),
        detected_at=utc_now(),
        status="pending",
    )


def read_manifests(github: CodeHost, owner: str, repo: str) -> Dict[str, str]:
    """Return ecosystem -> manifest text for every manifest present in the repo."""
    found: Dict[str, str] = {}
    for path, ecosystem in MANIFEST_PATHS:
        try:
            content = github.get_file_content(owner, repo, path)
        except Exception as exc:
            logger.warning("Could not read %s from %s/%s: %s", path, owner, repo, exc)
            continue
        if content:
            found[ecosystem] = content
    return found


def detect(
    repos: Iterable[str],
    severity_threshold: str,
    github: CodeHost,
    advisory_source: Optional[AdvisorySource] = None,
    delay: float = QUERY_DELAY_SECONDS,
) -> DetectionResult:
    """Scan each repo's manifests and return pending queue entries for matching advisories.

    A failed manifest read or advisory query skips that item only; every repo in
    ``repos`` counts towards ``repos_scanned``.
    """
    repos = list(repos)
    threshold = normalize_severity(severity_threshold)
    if advisory_source is None:
        advisory_source = partial(_query_with_token, github.token)

    findings: List[QueueEntry] = []
    seen: set[tuple[str, str]] = set()

    for repo_full in repos:
        try:
            owner, repo = split_repo(repo_full)
        except ValueError as exc:
            logger.warning("Skipping %s", exc)
            continue

        manifests = read_manifests(github, owner, repo)
        if not manifests:
            logger.info("No manifests found in %s", repo_full)
            continue

        for ecosystem, content in manifests.items():
            deps = parse_manifest(ecosystem, content)
            logger.debug("%s: %d %s dependencies", repo_full, len(deps), ecosystem)
            for package, version in deps.items():
                if not package or package.startswith("//"):
                    continue
                try:
                    advisories = advisory_source(ecosystem, package)
                except Exception as exc:
                    logger.warning("Advisory lookup failed for %s %s in %s: %s", ecosystem, package, repo_full, exc)
                    advisories = []
                if delay:
                    time.sleep(delay)

                for advisory in advisories:
                    if not meets_threshold(advisory.severity, threshold):
                        continue
                    dedupe_key = (advisory.cve_id or advisory.ghsa_id, repo_full)
                    if dedupe_key in seen:
                        continue
                    seen.add(dedupe_key)
                    findings.append(to_queue_entry(advisory, repo_full, ecosystem, package, version))

    by_severity = {s: 0 for s in SEVERITY_ORDER}
    for finding in findings:
        by_severity[finding.severity] += 1

    logger.info("Scanned %d repos: %d findings at %s or above", len(repos), len(findings), threshold)
    return DetectionResult(repos_scanned=len(repos), findings=findings, by_severity=by_severity)
