from __future__ import annotations

import os
from datetime import datetime, timezone
from pathlib import Path


class CveFabricError(RuntimeError):
    pass


class ConfigError(CveFabricError):
    pass


class GitHubError(CveFabricError):
    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status


class AdvisoryError(CveFabricError):
    pass


class IntelligenceError(CveFabricError):
    pass


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse an ISO-8601 timestamp, treating naive values as UTC."""
    if not value:
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def split_repo(full_name: str) -> tuple[str, str]:
    owner, sep, repo = (full_name or "").strip().partition("/")
    if not sep or not owner or not repo or "/" in repo:
        raise ValueError(f"Invalid repository identifier: {full_name!r} (expected owner/repo)")
    return owner, repo


def ensure_dir(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)


def get_cache_dir() -> Path:
    return Path(os.path.expanduser("~/.cache/cvefabric"))
