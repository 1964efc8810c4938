from __future__ import annotations

import os
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel

from cvefabric.core.adapters import LocalFileStore, StateStore
from cvefabric.core.github import DEFAULT_API_URL, GitHubClient, GitHubRepoStore
from cvefabric.core.utils import ConfigError, get_cache_dir, split_repo


class Settings(BaseModel):
    github_token: Optional[str] = None
    state_repo: Optional[str] = None
    state_dir: Path
    managed_repos: List[str] = []
    nvd_api_key: Optional[str] = None
    github_api_url: str = DEFAULT_API_URL


def parse_repo_list(value: Optional[str]) -> List[str]:
    return [item.strip() for item in (value or "").split(",") if item.strip()]


def load_settings() -> Settings:
    """Read settings from the environment. Nothing here touches the network."""
    state_dir = os.getenv("CVEFABRIC_STATE_DIR")
    return Settings(
        github_token=os.getenv("GITHUB_TOKEN") or os.getenv("GIT_STEER_TOKEN") or None,
        state_repo=os.getenv("STATE_REPO") or None,
        state_dir=Path(state_dir).expanduser() if state_dir else get_cache_dir(),
        managed_repos=parse_repo_list(os.getenv("MANAGED_REPOS")),
        nvd_api_key=os.getenv("NVD_API_KEY") or None,
        github_api_url=os.getenv("GITHUB_API_URL") or DEFAULT_API_URL,
    )


def require_token(settings: Settings) -> str:
    if not settings.github_token:
        raise ConfigError("GITHUB_TOKEN or GIT_STEER_TOKEN required")
    return settings.github_token


def build_github(settings: Settings) -> GitHubClient:
    return GitHubClient(require_token(settings), base_url=settings.github_api_url)


def build_store(settings: Settings, github: Optional[GitHubClient] = None) -> StateStore:
    """GitHub-backed store when STATE_REPO is set, else the local state directory."""
    if settings.state_repo:
        try:
            split_repo(settings.state_repo)
        except ValueError as exc:
            raise ConfigError(f"STATE_REPO: {exc}") from exc
        return GitHubRepoStore(github or build_github(settings), settings.state_repo)
    return LocalFileStore(settings.state_dir)


def resolve_repos(settings: Settings, repos: Optional[List[str]]) -> List[str]:
    selected = repos or settings.managed_repos
    if not selected:
        raise ConfigError("No repositories given and MANAGED_REPOS is empty")
    for repo in selected:
        try:
            split_repo(repo)
        except ValueError as exc:
            raise ConfigError(str(exc)) from exc
    return selected
