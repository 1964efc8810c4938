"""Capability contracts the core depends on, plus a filesystem-backed store."""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional, Protocol

from cvefabric.core.models import FileChange, PullRequestRef
from cvefabric.core.utils import ensure_dir


class CodeHost(Protocol):
    """Per-repository operations against the code-hosting service."""

    token: str

    def get_file_content(self, owner: str, repo: str, path: str) -> Optional[str]:
        """Return the file text, or ``None`` when the path does not exist."""
        ...

    def create_branch(self, owner: str, repo: str, branch: str, from_branch: str) -> None:
        ...

    def commit_files(
        self, owner: str, repo: str, branch: str, message: str, files: List[FileChange]
    ) -> dict:
        ...

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
        ...

    def get_default_branch(self, owner: str, repo: str) -> str:
        ...


class StateStore(Protocol):
    """Named-file persistence for queue state."""

    def read(self, name: str) -> Optional[str]:
        ...

    def write(self, name: str, content: str) -> None:
        ...

    def append(self, name: str, lines: List[str]) -> None:
        ...


def append_lines(existing: Optional[str], lines: List[str]) -> str:
    addition = "\n".join(lines)
    return f"{existing}\n{addition}" if existing else addition


class LocalFileStore:
    """StateStore rooted at a local directory."""

    def __init__(self, root: Path):
        self.root = Path(root)

    def _path(self, name: str) -> Path:
        path = (self.root / name).resolve()
        if not path.is_relative_to(self.root.resolve()):
            raise ValueError(f"Invalid state file name: {name}")
        return path

    def read(self, name: str) -> Optional[str]:
        path = self._path(name)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8", errors="replace")

    def write(self, name: str, content: str) -> None:
        path = self._path(name)
        ensure_dir(path.parent)
        tmp = path.with_name(path.name + ".tmp")
        tmp.write_text(content, encoding="utf-8")
        tmp.replace(path)

    def append(self, name: str, lines: List[str]) -> None:
        self.write(name, append_lines(self.read(name), lines))
