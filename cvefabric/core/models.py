from __future__ import annotations

from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from cvefabric.core.severity import Severity, normalize_severity

EntryStatus = Literal["pending", "pr_opened", "skipped", "error"]
PlanAction = Literal["open_pr", "open_draft", "skip"]
ResultAction = Literal["pr_opened", "skipped", "error"]

UNKNOWN_VERSION = "unknown"


class RecordModel(BaseModel):
    """Base for records that travel as camelCase JSON."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_record(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class QueueEntry(RecordModel):
    id: str
    ghsa_id: Optional[str] = None
    repo: str
    ecosystem: str
    affected_package: str
    affected_version: str
    patched_version: str = UNKNOWN_VERSION
    severity: Severity = "UNKNOWN"
    cvss_score: Optional[float] = None
    summary: str = ""
    nvd_url: str = ""
    detected_at: str
    status: EntryStatus = "pending"
    pr_number: Optional[int] = None
    pr_url: Optional[str] = None
    processed_at: Optional[str] = None
    skip_reason: Optional[str] = None

    @field_validator("severity", mode="before")
    @classmethod
    def _normalize_severity(cls, value):
        return normalize_severity(value)

    @property
    def key(self) -> tuple[str, str]:
        return self.id, self.repo

    @property
    def has_patch(self) -> bool:
        return bool(self.patched_version) and self.patched_version != UNKNOWN_VERSION


class TriagePolicy(RecordModel):
    auto_pr_threshold: Severity = "HIGH"
    # Carried for callers; open_pr vs open_draft is decided by severity alone.
    draft_threshold: Severity = "HIGH"
    max_prs_per_run: int = Field(default=5, ge=0)
    require_patched_version: bool = True

    @field_validator("auto_pr_threshold", "draft_threshold", mode="before")
    @classmethod
    def _normalize_threshold(cls, value):
        return normalize_severity(value)


class TriagePlan(BaseModel):
    entry: QueueEntry
    action: PlanAction
    reason: str


class RemediationResult(RecordModel):
    cve_id: str
    repo: str
    action: ResultAction
    pr_number: Optional[int] = None
    pr_url: Optional[str] = None
    reason: Optional[str] = None


class QueueUpdate(RecordModel):
    id: str
    repo: str
    status: EntryStatus
    pr_number: Optional[int] = None
    pr_url: Optional[str] = None
    skip_reason: Optional[str] = None


class FileChange(BaseModel):
    path: str
    content: str


class PullRequestRef(BaseModel):
    number: int
    html_url: str


class GhsaAdvisory(RecordModel):
    ghsa_id: str
    cve_id: Optional[str] = None
    summary: str = ""
    severity: str = "UNKNOWN"
    cvss_score: Optional[float] = None
    ecosystem: str = ""
    package_name: str = ""
    vulnerable_version_range: str = ""
    first_patched_version: Optional[str] = None


class CveEnrichment(RecordModel):
    id: str
    status: str
    severity: Severity = "UNKNOWN"
    score: Optional[float] = None
    description: str = ""
    published: str = ""
    references: List[str] = []
    cwe: Optional[str] = None
    error: Optional[str] = None

    @field_validator("severity", mode="before")
    @classmethod
    def _normalize_severity(cls, value):
        return normalize_severity(value)


class DetectionResult(RecordModel):
    repos_scanned: int
    findings: List[QueueEntry]
    by_severity: Dict[str, int]


class EnqueueResult(BaseModel):
    added: int
    duplicates: int


class UpdateResult(RecordModel):
    updated: int
    not_found: int


class ListResult(BaseModel):
    total: int
    entries: List[QueueEntry]


class OldestPending(RecordModel):
    id: str
    repo: str
    severity: Severity
    detected_at: str


class RepoPending(BaseModel):
    repo: str
    pending: int


class QueueStats(RecordModel):
    total: int
    by_status: Dict[str, int]
    pending_by_severity: Dict[str, int]
    oldest_pending: Optional[OldestPending] = None
    top_repos: List[RepoPending]


class CompactResult(RecordModel):
    before: int
    after: int
    removed: int
    by_status: Dict[str, int]
