"""Composed operations shared by the CLI and the HTTP API."""

from __future__ import annotations

import logging
from typing import List, Optional

from cvefabric.core import action, decision, detection, queue
from cvefabric.core.adapters import CodeHost, StateStore
from cvefabric.core.models import QueueUpdate, RemediationResult, TriagePolicy
from cvefabric.core.utils import CveFabricError

logger = logging.getLogger(__name__)

RESULT_STATUS = {"pr_opened": "pr_opened", "error": "error"}


def perform_scan(
    repos: List[str],
    github: CodeHost,
    store: StateStore,
    severity_threshold: str = "HIGH",
    dry_run: bool = False,
    **detect_kwargs,
) -> dict:
    """Detect findings across ``repos`` and queue them unless ``dry_run``."""
    result = detection.detect(repos, severity_threshold, github, **detect_kwargs)
    summary = result.to_record()
    if not dry_run and result.findings:
        enqueued = queue.enqueue(result.findings, store)
        summary.update(queued=enqueued.added, duplicates=enqueued.duplicates)
    summary["dry_run"] = dry_run
    return summary


def result_to_update(result: RemediationResult) -> QueueUpdate:
    return QueueUpdate(
        id=result.cve_id,
        repo=result.repo,
        status=RESULT_STATUS.get(result.action, "skipped"),
        pr_number=result.pr_number,
        pr_url=result.pr_url,
        skip_reason=result.reason,
    )


def perform_triage(
    github: CodeHost,
    store: StateStore,
    policy: Optional[TriagePolicy] = None,
    dry_run: bool = False,
    **execute_kwargs,
) -> dict:
    """Triage pending entries, execute the plans and record every outcome."""
    policy = policy or decision.DEFAULT_POLICY
    entries = queue.pending(store)
    plans = decision.triage(entries, policy)
    results = action.execute(plans, github, dry_run=dry_run, **execute_kwargs)

    if not dry_run and results:
        outcome = queue.update([result_to_update(r) for r in results], store)
        if outcome.not_found:
            logger.warning("%d triage results had no matching queue entry", outcome.not_found)

    return {
        "processed": len(results),
        "prs_opened": sum(1 for r in results if r.action == "pr_opened"),
        "skipped": sum(1 for r in results if r.action == "skipped"),
        "errors": sum(1 for r in results if r.action == "error"),
        "dry_run": dry_run,
        "results": [r.to_record() for r in results],
    }


def check_health(github, store: StateStore) -> dict:
    """Verify the credential and the queue store are usable."""
    try:
        github.rate_limit()
    except CveFabricError as exc:
        status = getattr(exc, "status", None)
        if status in (401, 403):
            return {"status": "unavailable", "details": {"error": "Token invalid"}}
        return {"status": "degraded", "details": {"error": str(exc)}}
    try:
        content = store.read(queue.QUEUE_FILE)
    except (CveFabricError, OSError, ValueError) as exc:
        return {"status": "degraded", "details": {"error": str(exc)}}
    return {"status": "healthy", "details": {"queue_exists": content is not None}}
