"""CVE queue backed by a newline-delimited JSON file in a StateStore.

Every mutating call is a whole-file read-modify-write with no locking; run at
most one pipeline against a given store at a time.
"""

from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional, Tuple

from pydantic import ValidationError

from cvefabric.core.adapters import StateStore
from cvefabric.core.models import (
    CompactResult,
    EnqueueResult,
    ListResult,
    OldestPending,
    QueueEntry,
    QueueStats,
    QueueUpdate,
    RepoPending,
    UpdateResult,
)
from cvefabric.core.severity import SEVERITY_ORDER, meets_threshold, sort_key
from cvefabric.core.utils import parse_timestamp, utc_now

logger = logging.getLogger(__name__)

QUEUE_FILE = "state/cve-queue.jsonl"
STATUS_ALL = "all"
DEFAULT_LIST_LIMIT = 50
PENDING_LIMIT = 1000
DEFAULT_RETENTION_DAYS = 30
TOP_REPOS = 10

Key = Tuple[str, str]


def parse_queue(raw: Optional[str]) -> Dict[Key, QueueEntry]:
    queue: Dict[Key, QueueEntry] = {}
    for lineno, line in enumerate((raw or "").splitlines(), start=1):
        stripped = line.strip()
        if not stripped:
            continue
        try:
            entry = QueueEntry.model_validate_json(stripped)
        except ValidationError as exc:
            logger.warning("Skipping malformed queue line %d: %s", lineno, exc.errors()[0].get("msg", exc))
            continue
        queue[entry.key] = entry
    return queue


def serialize_queue(queue: Dict[Key, QueueEntry]) -> str:
    return "\n".join(entry.model_dump_json(by_alias=True, exclude_none=True) for entry in queue.values())


def _load(store: StateStore) -> Dict[Key, QueueEntry]:
    return parse_queue(store.read(QUEUE_FILE))


def _save(store: StateStore, queue: Dict[Key, QueueEntry]) -> None:
    store.write(QUEUE_FILE, serialize_queue(queue))


def _sorted(entries: Iterable[QueueEntry]) -> List[QueueEntry]:
    return sorted(entries, key=lambda e: sort_key(e.severity, e.cvss_score))


def enqueue(entries: Iterable[QueueEntry], store: StateStore) -> EnqueueResult:
    """Merge new findings; an existing (id, repo) key is never overwritten."""
    queue = _load(store)
    added = duplicates = 0
    for entry in entries:
        if entry.key in queue:
            duplicates += 1
            continue
        queue[entry.key] = entry
        added += 1
    if added:
        _save(store, queue)
    logger.info("Enqueued %d new entries (%d duplicates)", added, duplicates)
    return EnqueueResult(added=added, duplicates=duplicates)


def list_entries(
    store: StateStore,
    status: str = "pending",
    severity_min: str = "LOW",
    repo: Optional[str] = None,
    limit: int = DEFAULT_LIST_LIMIT,
) -> ListResult:
    queue = _load(store)
    matches = [
        e
        for e in queue.values()
        if (status == STATUS_ALL or e.status == status)
        and (not repo or e.repo == repo)
        and meets_threshold(e.severity, severity_min)
    ]
    ordered = _sorted(matches)
    return ListResult(total=len(ordered), entries=ordered[: max(limit, 0)])


def pending(store: StateStore) -> List[QueueEntry]:
    return list_entries(store, status="pending", limit=PENDING_LIMIT).entries


def update(updates: Iterable[QueueUpdate], store: StateStore) -> UpdateResult:
    queue = _load(store)
    processed_at = utc_now()
    updated = not_found = 0
    for item in updates:
        key = (item.id, item.repo)
        existing = queue.get(key)
        if existing is None:
            not_found += 1
            continue
        changes = {"status": item.status, "processed_at": processed_at}
        if item.pr_number is not None:
            changes["pr_number"] = item.pr_number
        if item.pr_url is not None:
            changes["pr_url"] = item.pr_url
        if item.skip_reason is not None:
            changes["skip_reason"] = item.skip_reason
        queue[key] = existing.model_copy(update=changes)
        updated += 1
    if updated:
        _save(store, queue)
    return UpdateResult(updated=updated, not_found=not_found)


def stats(store: StateStore) -> QueueStats:
    entries = list(_load(store).values())
    by_status = dict(Counter(e.status for e in entries))
    pending_entries = [e for e in entries if e.status == "pending"]

    pending_by_severity = {s: 0 for s in SEVERITY_ORDER}
    for e in pending_entries:
        pending_by_severity[e.severity] += 1

    oldest = None
    dated = [(parse_timestamp(e.detected_at), e) for e in pending_entries]
    dated = [(ts, e) for ts, e in dated if ts is not None]
    if dated:
        _, first = min(dated, key=lambda pair: pair[0])
        oldest = OldestPending(id=first.id, repo=first.repo, severity=first.severity, detected_at=first.detected_at)

    by_repo = Counter(e.repo for e in pending_entries)
    top_repos = [RepoPending(repo=r, pending=n) for r, n in by_repo.most_common(TOP_REPOS)]

    return QueueStats(
        total=len(entries),
        by_status=by_status,
        pending_by_severity=pending_by_severity,
        oldest_pending=oldest,
        top_repos=top_repos,
    )


def compact(
    store: StateStore,
    retention_days: float = DEFAULT_RETENTION_DAYS,
    now: Optional[datetime] = None,
) -> CompactResult:
    """Drop resolved entries older than the retention window; pending entries always stay."""
    queue = _load(store)
    before = len(queue)
    cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=retention_days)

    removed_by_status: Dict[str, int] = {}
    for key, entry in list(queue.items()):
        if entry.status == "pending":
            continue
        resolved_at = parse_timestamp(entry.processed_at or entry.detected_at)
        if resolved_at is not None and resolved_at < cutoff:
            removed_by_status[entry.status] = removed_by_status.get(entry.status, 0) + 1
            del queue[key]

    removed = before - len(queue)
    if removed:
        _save(store, queue)
        logger.info("Compacted queue: removed %d of %d entries", removed, before)
    return CompactResult(before=before, after=len(queue), removed=removed, by_status=removed_by_status)
