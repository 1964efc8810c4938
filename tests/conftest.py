from __future__ import annotations

from typing import Dict, List, Optional

import pytest

from cvefabric.core.adapters import append_lines
from cvefabric.core.models import FileChange, PullRequestRef, QueueEntry


class MemoryStore:
    """In-memory StateStore."""

    def __init__(self, files: Optional[Dict[str, str]] = None):
        self.files: Dict[str, str] = dict(files or {})
        self.writes = 0

    def read(self, name: str) -> Optional[str]:
        return self.files.get(name)

    def write(self, name: str, content: str) -> None:
        self.writes += 1
        self.files[name] = content

    def append(self, name: str, lines: List[str]) -> None:
        self.write(name, append_lines(self.read(name), lines))


class FakeCodeHost:
    """In-memory CodeHost that records every mutating call."""

    def __init__(self, files: Optional[Dict[str, Dict[str, str]]] = None, default_branch: str = "main"):
        self.token = "test-token"
        self.files = files or {}
        self.default_branch = default_branch
        self.branches: List[tuple] = []
        self.commits: List[dict] = []
        self.pulls: List[dict] = []
        self.fail_on: Dict[str, Exception] = {}
        self.read_errors: Dict[str, Exception] = {}
        self.next_pr = 100

    def _maybe_fail(self, op: str, repo: str) -> None:
        exc = self.fail_on.get(f"{op}:{repo}") or self.fail_on.get(op)
        if exc:
            raise exc

    def get_file_content(self, owner: str, repo: str, path: str) -> Optional[str]:
        full = f"{owner}/{repo}"
        exc = self.read_errors.get(f"{full}:{path}")
        if exc:
            raise exc
        return self.files.get(full, {}).get(path)

    def get_default_branch(self, owner: str, repo: str) -> str:
        self._maybe_fail("default_branch", f"{owner}/{repo}")
        return self.default_branch

    def create_branch(self, owner: str, repo: str, branch: str, from_branch: str) -> None:
        self._maybe_fail("create_branch", f"{owner}/{repo}")
        self.branches.append((f"{owner}/{repo}", branch, from_branch))

    def commit_files(self, owner: str, repo: str, branch: str, message: str, files: List[FileChange]) -> dict:
        self._maybe_fail("commit", f"{owner}/{repo}")
        self.commits.append({"repo": f"{owner}/{repo}", "branch": branch, "message": message, "files": files})
        return {"sha": "abc123", "url": ""}

    def create_pull_request(self, owner, repo, title, body, head, base, draft, labels) -> PullRequestRef:
        self._maybe_fail("pull", f"{owner}/{repo}")
        self.next_pr += 1
        self.pulls.append(
            {"repo": f"{owner}/{repo}", "title": title, "body": body, "head": head, "base": base, "draft": draft, "labels": labels}
        )
        return PullRequestRef(number=self.next_pr, html_url=f"https://github.com/{owner}/{repo}/pull/{self.next_pr}")


def build_entry(**overrides) -> QueueEntry:
    data = {
        "id": "CVE-2024-0001",
        "ghsa_id": "GHSA-aaaa-bbbb-cccc",
        "repo": "acme/web",
        "ecosystem": "npm",
        "affected_package": "lodash",
        "affected_version": "^4.17.15",
        "patched_version": "4.17.21",
        "severity": "HIGH",
        "cvss_score": 7.5,
        "summary": "Prototype pollution",
        "nvd_url": "https://nvd.nist.gov/vuln/detail/CVE-2024-0001",
        "detected_at": "2024-05-01T00:00:00Z",
        "status": "pending",
    }
    data.update(overrides)
    return QueueEntry(**data)


@pytest.fixture
def make_entry():
    return build_entry


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def github():
    return FakeCodeHost()


class FakeResponse:
    def __init__(self, status_code: int = 200, data=None, headers: Optional[dict] = None, text: str = ""):
        self.status_code = status_code
        self._data = data
        self.headers = headers or {}
        self.text = text
        self.content = b"" if data is None and not text else b"x"

    def json(self):
        if self._data is None:
            raise ValueError("No JSON body")
        return self._data


class FakeSession:
    """Replays queued responses and records each request made through it."""

    def __init__(self):
        self.headers: Dict[str, str] = {}
        self.responses: List[object] = []
        self.calls: List[dict] = []

    def add(self, status_code: int = 200, data=None, headers: Optional[dict] = None, text: str = "") -> None:
        self.responses.append(FakeResponse(status_code, data, headers, text))

    def add_error(self, exc: Exception) -> None:
        self.responses.append(exc)

    def request(self, method: str, url: str, **kwargs):
        self.calls.append({"method": method, "url": url, **kwargs})
        if not self.responses:
            raise AssertionError(f"Unexpected request: {method} {url}")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def get(self, url: str, **kwargs):
        return self.request("GET", url, **kwargs)

    def post(self, url: str, **kwargs):
        return self.request("POST", url, **kwargs)


@pytest.fixture
def http():
    return FakeSession()


@pytest.fixture
def no_sleep(monkeypatch):
    slept: List[float] = []
    monkeypatch.setattr("time.sleep", lambda seconds: slept.append(seconds))
    return slept
