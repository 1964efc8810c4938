from __future__ import annotations

import logging
from typing import List, Literal, Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from cvefabric.core import intelligence, pipeline, queue
from cvefabric.core.config import build_github, build_store, load_settings, resolve_repos
from cvefabric.core.decision import DEFAULT_POLICY
from cvefabric.core.models import QueueUpdate, TriagePolicy
from cvefabric.core.severity import Severity
from cvefabric.core.utils import ConfigError, CveFabricError

logger = logging.getLogger(__name__)

app = FastAPI(title="cvefabric API", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"]
)

Status = Literal["pending", "pr_opened", "skipped", "error"]


class ScanRequest(BaseModel):
    repos: Optional[List[str]] = None
    severity_threshold: Severity = "HIGH"
    dry_run: bool = False


class EnrichRequest(BaseModel):
    cve_id: str


class BatchRequest(BaseModel):
    cve_ids: List[str] = Field(..., min_length=1, max_length=20)


class TriageRequest(BaseModel):
    auto_pr_threshold: Severity = DEFAULT_POLICY.auto_pr_threshold
    draft_threshold: Severity = DEFAULT_POLICY.draft_threshold
    max_prs_per_run: int = Field(DEFAULT_POLICY.max_prs_per_run, ge=0)
    require_patched_version: bool = DEFAULT_POLICY.require_patched_version
    dry_run: bool = False


class UpdateRequest(BaseModel):
    id: str
    repo: str
    status: Status
    skip_reason: Optional[str] = None


class CompactRequest(BaseModel):
    retention_days: float = Field(queue.DEFAULT_RETENTION_DAYS, ge=0)


def _raise(exc: Exception) -> None:
    if isinstance(exc, ConfigError):
        raise HTTPException(status_code=400, detail=str(exc))
    logger.exception("Request failed")
    raise HTTPException(status_code=500, detail=f"Operation failed: {exc}")


@app.get("/api/health")
def health():
    try:
        settings = load_settings()
        github = build_github(settings)
        store = build_store(settings, github)
    except ConfigError as exc:
        return {"app": "cvefabric", "status": "unavailable", "details": {"error": str(exc)}}
    return {"app": "cvefabric", **pipeline.check_health(github, store)}


@app.post("/api/scan")
def run_scan(req: ScanRequest):
    try:
        settings = load_settings()
        repos = resolve_repos(settings, req.repos)
        github = build_github(settings)
        store = build_store(settings, github)
        return pipeline.perform_scan(repos, github, store, req.severity_threshold, dry_run=req.dry_run)
    except CveFabricError as exc:
        _raise(exc)


@app.post("/api/enrich")
def enrich(req: EnrichRequest):
    try:
        result = intelligence.enrich(req.cve_id.strip().upper(), load_settings().nvd_api_key)
    except CveFabricError as exc:
        raise HTTPException(status_code=502, detail=str(exc))
    return result.to_record()


@app.post("/api/batch")
def batch(req: BatchRequest):
    results = intelligence.enrich_batch(req.cve_ids, load_settings().nvd_api_key)
    return {"total": len(results), "triage": [r.to_record() for r in results]}


@app.post("/api/triage")
def run_triage(req: TriageRequest):
    policy = TriagePolicy(
        auto_pr_threshold=req.auto_pr_threshold,
        draft_threshold=req.draft_threshold,
        max_prs_per_run=req.max_prs_per_run,
        require_patched_version=req.require_patched_version,
    )
    try:
        settings = load_settings()
        github = build_github(settings)
        store = build_store(settings, github)
        return pipeline.perform_triage(github, store, policy, dry_run=req.dry_run)
    except CveFabricError as exc:
        _raise(exc)


@app.get("/api/queue")
def list_queue(
    status: Literal["pending", "pr_opened", "skipped", "error", "all"] = "pending",
    severity_min: Severity = "LOW",
    repo: Optional[str] = None,
    limit: int = 50,
):
    try:
        result = queue.list_entries(
            build_store(load_settings()), status=status, severity_min=severity_min, repo=repo, limit=limit
        )
    except CveFabricError as exc:
        _raise(exc)
    return {"total": result.total, "entries": [e.to_record() for e in result.entries]}


@app.get("/api/queue/stats")
def queue_stats():
    try:
        return queue.stats(build_store(load_settings())).model_dump(by_alias=True)
    except CveFabricError as exc:
        _raise(exc)


@app.post("/api/queue/update")
def update_entry(req: UpdateRequest):
    try:
        result = queue.update(
            [QueueUpdate(id=req.id, repo=req.repo, status=req.status, skip_reason=req.skip_reason)],
            build_store(load_settings()),
        )
    except CveFabricError as exc:
        _raise(exc)
    if not result.updated:
        raise HTTPException(status_code=404, detail="Queue entry not found")
    return result.to_record()


@app.post("/api/compact")
def compact_queue(req: CompactRequest):
    try:
        return queue.compact(build_store(load_settings()), retention_days=req.retention_days).to_record()
    except CveFabricError as exc:
        _raise(exc)
