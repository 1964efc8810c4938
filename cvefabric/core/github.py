from __future__ import annotations

import base64
import logging
import time
from typing import List, Optional

import requests

from cvefabric.core.adapters import append_lines
from cvefabric.core.models import FileChange, PullRequestRef
from cvefabric.core.utils import GitHubError, split_repo

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.github.com"
USER_AGENT = "cvefabric/0.1"

MAX_RETRIES = 3
RETRY_STATUSES = (502, 503, 504)
RATE_LIMIT_BUFFER_SECONDS = 5
RATE_LIMIT_MAX_WAIT_SECONDS = 900

LABEL_COLORS = {
    "severity:critical": "B60205",
    "severity:high": "D93F0B",
    "severity:medium": "FBCA04",
    "severity:low": "0E8A16",
}
DEFAULT_LABEL_COLOR = "1D76DB"


def label_color(label: str) -> str:
    return LABEL_COLORS.get(label, DEFAULT_LABEL_COLOR)


def rate_limit_wait(response: requests.Response) -> Optional[int]:
    """Seconds to wait when ``response`` is a primary rate-limit rejection."""
    if response.status_code not in (403, 429):
        return None
    if response.headers.get("X-RateLimit-Remaining") != "0":
        retry_after = response.headers.get("Retry-After")
        return int(retry_after) if retry_after and retry_after.isdigit() else None
    try:
        reset = int(response.headers.get("X-RateLimit-Reset", "0"))
    except ValueError:
        return None
    wait = max(0, reset - int(time.time())) + RATE_LIMIT_BUFFER_SECONDS
    return min(wait, RATE_LIMIT_MAX_WAIT_SECONDS)


def _error_message(response: requests.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text[:200]
    message = data.get("message", "") if isinstance(data, dict) else ""
    errors = data.get("errors") if isinstance(data, dict) else None
    if errors:
        details = "; ".join(str(e.get("message", e)) if isinstance(e, dict) else str(e) for e in errors)
        message = f"{message} ({details})"
    return message


class GitHubClient:
    """Minimal GitHub REST client implementing the CodeHost contract."""

    def __init__(
        self,
        token: str,
        base_url: str = DEFAULT_API_URL,
        session: Optional[requests.Session] = None,
        timeout: int = 30,
        backoff: float = 1.0,
    ):
        self.token = token
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout
        self.backoff = backoff
        self.session.headers.update(
            {
                "Authorization": f"bearer {token}",
                "Accept": "application/vnd.github+json",
                "User-Agent": USER_AGENT,
            }
        )

    def request(self, method: str, path: str, *, expected_missing: bool = False, **kwargs) -> Optional[dict]:
        """Send a request; return decoded JSON, or ``None`` for a tolerated 404."""
        url = f"{self.base_url}/{path.lstrip('/')}"
        attempt = 0
        while True:
            try:
                resp = self.session.request(method, url, timeout=self.timeout, **kwargs)
            except requests.RequestException as exc:
                if attempt < MAX_RETRIES:
                    attempt += 1
                    logger.warning("%s %s failed (%s), retry %d/%d", method, path, exc, attempt, MAX_RETRIES)
                    time.sleep(self.backoff * 2 ** (attempt - 1))
                    continue
                raise GitHubError(f"{method} {path} failed: {exc}") from exc

            if resp.status_code in RETRY_STATUSES and attempt < MAX_RETRIES:
                attempt += 1
                logger.warning("%s %s returned %d, retry %d/%d", method, path, resp.status_code, attempt, MAX_RETRIES)
                time.sleep(self.backoff * 2 ** (attempt - 1))
                continue

            wait = rate_limit_wait(resp)
            if wait is not None and attempt < MAX_RETRIES:
                attempt += 1
                logger.warning("GitHub rate limit hit on %s %s; waiting %ds", method, path, wait)
                time.sleep(wait)
                continue

            if resp.status_code == 404 and expected_missing:
                return None
            if resp.status_code >= 400:
                raise GitHubError(
                    f"{method} {path} returned {resp.status_code}: {_error_message(resp)}",
                    status=resp.status_code,
                )
            if resp.status_code == 204 or not resp.content:
                return {}
            return resp.json()

    # CodeHost

    def get_file_content(self, owner: str, repo: str, path: str, ref: Optional[str] = None) -> Optional[str]:
        data = self.get_content(owner, repo, path, ref=ref)
        if not data or data.get("type", "file") != "file" or not data.get("content"):
            return None
        return base64.b64decode(data["content"]).decode("utf-8", errors="replace")

    def get_content(self, owner: str, repo: str, path: str, ref: Optional[str] = None) -> Optional[dict]:
        params = {"ref": ref} if ref else None
        data = self.request("GET", f"/repos/{owner}/{repo}/contents/{path}", expected_missing=True, params=params)
        # Directories come back as lists.
        return data if isinstance(data, dict) else None

    def get_default_branch(self, owner: str, repo: str) -> str:
        return self.request("GET", f"/repos/{owner}/{repo}")["default_branch"]

    def get_branch_sha(self, owner: str, repo: str, branch: str) -> str:
        ref = self.request("GET", f"/repos/{owner}/{repo}/git/ref/heads/{branch}")
        return ref["object"]["sha"]

    def create_branch(self, owner: str, repo: str, branch: str, from_branch: str) -> None:
        sha = self.get_branch_sha(owner, repo, from_branch)
        try:
            self.request("POST", f"/repos/{owner}/{repo}/git/refs", json={"ref": f"refs/heads/{branch}", "sha": sha})
        except GitHubError as exc:
            if exc.status == 422 and "already exists" in str(exc).lower():
                logger.info("Branch %s already exists in %s/%s; reusing it", branch, owner, repo)
                return
            raise

    def commit_files(self, owner: str, repo: str, branch: str, message: str, files: List[FileChange]) -> dict:
        parent_sha = self.get_branch_sha(owner, repo, branch)
        parent = self.request("GET", f"/repos/{owner}/{repo}/git/commits/{parent_sha}")

        tree_items = []
        for change in files:
            blob = self.request(
                "POST",
                f"/repos/{owner}/{repo}/git/blobs",
                json={"content": base64.b64encode(change.content.encode("utf-8")).decode("ascii"), "encoding": "base64"},
            )
            tree_items.append({"path": change.path, "mode": "100644", "type": "blob", "sha": blob["sha"]})

        tree = self.request(
            "POST", f"/repos/{owner}/{repo}/git/trees", json={"base_tree": parent["tree"]["sha"], "tree": tree_items}
        )
        commit = self.request(
            "POST",
            f"/repos/{owner}/{repo}/git/commits",
            json={"message": message, "tree": tree["sha"], "parents": [parent_sha]},
        )
        self.request("PATCH", f"/repos/{owner}/{repo}/git/refs/heads/{branch}", json={"sha": commit["sha"]})
        return {"sha": commit["sha"], "url": commit.get("html_url", "")}

    def ensure_label(self, owner: str, repo: str, label: str) -> None:
        """Create ``label`` if missing; failures never block the PR."""
        try:
            self.request(
                "POST", f"/repos/{owner}/{repo}/labels", json={"name": label, "color": label_color(label)}
            )
        except GitHubError as exc:
            if exc.status == 422:
                return
            logger.warning("Could not create label %r in %s/%s: %s", label, owner, repo, exc)

    def create_pull_request(
        self,
        owner: str,
        repo: str,
        title: str,
        body: str,
        head: str,
        base: str,
        draft: bool,
        labels: List[str],
    ) -> PullRequestRef:
        for label in labels:
            self.ensure_label(owner, repo, label)

        pr = self.request(
            "POST",
            f"/repos/{owner}/{repo}/pulls",
            json={"title": title, "body": body, "head": head, "base": base, "draft": draft},
        )
        if labels:
            try:
                self.request("POST", f"/repos/{owner}/{repo}/issues/{pr['number']}/labels", json={"labels": labels})
            except GitHubError as exc:
                logger.warning("Could not label PR #%s in %s/%s: %s", pr["number"], owner, repo, exc)
        return PullRequestRef(number=pr["number"], html_url=pr["html_url"])

    def rate_limit(self) -> dict:
        return self.request("GET", "/rate_limit")


class GitHubRepoStore:
    """StateStore that keeps files in a GitHub repository via the contents API."""

    def __init__(self, client: GitHubClient, repo_full: str, branch: Optional[str] = None):
        self.client = client
        self.owner, self.repo = split_repo(repo_full)
        self.branch = branch

    def read(self, name: str) -> Optional[str]:
        return self.client.get_file_content(self.owner, self.repo, name, ref=self.branch)

    def write(self, name: str, content: str) -> None:
        existing = self.client.get_content(self.owner, self.repo, name, ref=self.branch)
        payload = {
            "message": f"chore(cve): update {name}",
            "content": base64.b64encode(content.encode("utf-8")).decode("ascii"),
        }
        if existing and existing.get("sha"):
            payload["sha"] = existing["sha"]
        if self.branch:
            payload["branch"] = self.branch
        self.client.request("PUT", f"/repos/{self.owner}/{self.repo}/contents/{name}", json=payload)

    def append(self, name: str, lines: List[str]) -> None:
        self.write(name, append_lines(self.read(name), lines))
