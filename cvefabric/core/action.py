from __future__ import annotations

import logging
import time
from typing import Iterable, List

from cvefabric.core.adapters import CodeHost
from cvefabric.core.manifests import ECOSYSTEM_MANIFEST, update_manifest
from cvefabric.core.models import FileChange, QueueEntry, RemediationResult, TriagePlan
from cvefabric.core.utils import split_repo, utc_now

logger = logging.getLogger(__name__)

# Pause after each opened PR to stay under the host's rate limits.
PR_DELAY_SECONDS = 0.5

BASE_LABELS = ["security", "cve", "cvefabric"]
DRAFT_LABEL = "draft"

SEVERITY_LABELS = {
    "CRITICAL": ["severity:critical", "priority:urgent"],
    "HIGH": ["severity:high", "priority:high"],
    "MEDIUM": ["severity:medium"],
    "LOW": ["severity:low"],
}

SEVERITY_EMOJI = {
    "CRITICAL": "🔴",
    "HIGH": "🟠",
    "MEDIUM": "🟡",
    "LOW": "🟢",
    "NONE": "⚪",
    "UNKNOWN": "⚫",
}


def branch_name(entry: QueueEntry) -> str:
    return f"security/{entry.id.lower()}"


def pr_title(entry: QueueEntry) -> str:
    return f"fix(security): {entry.id} – {entry.severity} in {entry.affected_package}"


def pr_labels(severity: str, draft: bool) -> List[str]:
    labels = BASE_LABELS + SEVERITY_LABELS.get(severity, [])
    if draft:
        labels.append(DRAFT_LABEL)
    return labels


def commit_message(entry: QueueEntry) -> str:
    return (
        f"fix(security): upgrade {entry.affected_package} to {entry.patched_version}\n\n"
        f"Resolves {entry.id}"
    )


def build_pr_body(entry: QueueEntry, automated: bool = True) -> str:
    """Markdown body for a remediation PR."""
    emoji = SEVERITY_EMOJI.get(entry.severity, SEVERITY_EMOJI["UNKNOWN"])
    score = f"{entry.cvss_score}/10" if entry.cvss_score is not None else "N/A"
    detected = entry.detected_at[:10]
    manifest = ECOSYSTEM_MANIFEST.get(entry.ecosystem, "the dependency manifest")

    if automated:
        required = (
            f"This branch bumps `{entry.affected_package}` in `{manifest}` to `{entry.patched_version}`. "
            "Regenerate the lockfile if the project has one."
        )
    else:
        required = (
            f"Upgrade `{entry.affected_package}` from `{entry.affected_version}` to "
            f"`{entry.patched_version}` or later in `{manifest}`. "
            "No automated change was committed for this ecosystem."
        )

    references = [f"- [NVD / Advisory]({entry.nvd_url})"]
    if entry.ghsa_id:
        references.append(f"- [GitHub Advisory](https://github.com/advisories/{entry.ghsa_id})")

    return "\n".join(
        [
            f"## Security Fix: {entry.id}",
            "",
            "> This PR was opened automatically by cvefabric.",
            "",
            "### Vulnerability Summary",
            "",
            "| Field | Value |",
            "|-------|-------|",
            f"| **CVE / Advisory** | [{entry.id}]({entry.nvd_url}) |",
            f"| **Severity** | {emoji} {entry.severity} |",
            f"| **CVSS Score** | {score} |",
            f"| **Ecosystem** | `{entry.ecosystem}` |",
            f"| **Affected Package** | `{entry.affected_package}` @ `{entry.affected_version}` |",
            f"| **Patched Version** | `{entry.patched_version}` |",
            f"| **Detected** | {detected} |",
            "",
            "### Description",
            "",
            entry.summary or "No description available.",
            "",
            "### Required Action",
            "",
            required,
            "",
            "### Review Checklist",
            "",
            f"- [ ] Dependency upgraded to `{entry.patched_version}` or later",
            "- [ ] Lockfile committed",
            "- [ ] Tests pass with upgraded dependency",
            "- [ ] No breaking API changes introduced",
            "",
            "### References",
            "",
            *references,
            "",
            "---",
            f"<!-- cvefabric | {entry.id} | {utc_now()} -->",
            "",
        ]
    )


def stage_manifest_patch(github: CodeHost, owner: str, repo: str, entry: QueueEntry) -> List[FileChange]:
    """Return the manifest change for ``entry``, or nothing when no automated patch applies."""
    manifest_path = ECOSYSTEM_MANIFEST.get(entry.ecosystem)
    if not manifest_path or not entry.has_patch:
        return []
    current = github.get_file_content(owner, repo, manifest_path)
    if not current:
        return []
    try:
        updated = update_manifest(entry.ecosystem, current, entry.affected_package, entry.patched_version)
    except (ValueError, AttributeError, TypeError) as exc:
        logger.warning("Could not patch %s in %s/%s: %s", manifest_path, owner, repo, exc)
        return []
    if updated is None or updated == current:
        return []
    return [FileChange(path=manifest_path, content=updated)]


def remediate(plan: TriagePlan, github: CodeHost) -> RemediationResult:
    """Branch, patch, commit and open the PR for one acting plan. Raises on failure."""
    entry = plan.entry
    owner, repo = split_repo(entry.repo)
    branch = branch_name(entry)
    draft = plan.action == "open_draft"

    base = github.get_default_branch(owner, repo)
    github.create_branch(owner, repo, branch, base)

    files = stage_manifest_patch(github, owner, repo, entry)
    if files:
        github.commit_files(owner, repo, branch, commit_message(entry), files)
    else:
        logger.info("No automated patch for %s in %s; PR will ask for a manual upgrade", entry.id, entry.repo)

    pr = github.create_pull_request(
        owner,
        repo,
        title=pr_title(entry),
        body=build_pr_body(entry, automated=bool(files)),
        head=branch,
        base=base,
        draft=draft,
        labels=pr_labels(entry.severity, draft),
    )
    logger.info("Opened %sPR #%s for %s in %s", "draft " if draft else "", pr.number, entry.id, entry.repo)
    return RemediationResult(
        cve_id=entry.id, repo=entry.repo, action="pr_opened", pr_number=pr.number, pr_url=pr.html_url
    )


def execute(
    plans: Iterable[TriagePlan],
    github: CodeHost,
    dry_run: bool = False,
    delay: float = PR_DELAY_SECONDS,
) -> List[RemediationResult]:
    """Run plans one at a time in the order given; a failing plan becomes an ``error`` result."""
    results: List[RemediationResult] = []

    for plan in plans:
        entry = plan.entry
        if plan.action == "skip":
            results.append(RemediationResult(cve_id=entry.id, repo=entry.repo, action="skipped", reason=plan.reason))
            continue

        if dry_run:
            kind = "draft " if plan.action == "open_draft" else ""
            results.append(
                RemediationResult(
                    cve_id=entry.id, repo=entry.repo, action="pr_opened", reason=f"[DRY RUN] Would open {kind}PR"
                )
            )
            continue

        try:
            result = remediate(plan, github)
        except Exception as exc:
            logger.error("Remediation failed for %s in %s: %s", entry.id, entry.repo, exc)
            results.append(RemediationResult(cve_id=entry.id, repo=entry.repo, action="error", reason=str(exc)))
            continue

        results.append(result)
        if delay:
            time.sleep(delay)

    return results
