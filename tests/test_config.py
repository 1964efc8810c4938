from pathlib import Path

import pytest

from cvefabric.core import config
from cvefabric.core.adapters import LocalFileStore
from cvefabric.core.github import GitHubClient, GitHubRepoStore
from cvefabric.core.utils import ConfigError

ENV_VARS = [
    "GITHUB_TOKEN",
    "GIT_STEER_TOKEN",
    "STATE_REPO",
    "CVEFABRIC_STATE_DIR",
    "MANAGED_REPOS",
    "NVD_API_KEY",
    "GITHUB_API_URL",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_defaults():
    settings = config.load_settings()
    assert settings.github_token is None
    assert settings.state_repo is None
    assert settings.managed_repos == []
    assert settings.state_dir == Path.home() / ".cache" / "cvefabric"
    assert settings.github_api_url == "https://api.github.com"


def test_reads_environment(monkeypatch, tmp_path):
    monkeypatch.setenv("GIT_STEER_TOKEN", "steer")
    monkeypatch.setenv("MANAGED_REPOS", " acme/web, acme/api ,,")
    monkeypatch.setenv("CVEFABRIC_STATE_DIR", str(tmp_path))
    monkeypatch.setenv("NVD_API_KEY", "nvd")
    settings = config.load_settings()
    assert settings.github_token == "steer"
    assert settings.managed_repos == ["acme/web", "acme/api"]
    assert settings.state_dir == tmp_path
    assert settings.nvd_api_key == "nvd"


def test_github_token_takes_precedence(monkeypatch):
    monkeypatch.setenv("GITHUB_TOKEN", "primary")
    monkeypatch.setenv("GIT_STEER_TOKEN", "fallback")
    assert config.load_settings().github_token == "primary"


def test_missing_token():
    with pytest.raises(ConfigError, match="GITHUB_TOKEN"):
        config.build_github(config.load_settings())


def test_local_store_by_default(monkeypatch, tmp_path):
    monkeypatch.setenv("CVEFABRIC_STATE_DIR", str(tmp_path))
    store = config.build_store(config.load_settings())
    assert isinstance(store, LocalFileStore)
    assert store.root == tmp_path


def test_repo_store_when_state_repo_set(monkeypatch):
    monkeypatch.setenv("GITHUB_TOKEN", "tok")
    monkeypatch.setenv("STATE_REPO", "acme/state")
    settings = config.load_settings()
    store = config.build_store(settings, config.build_github(settings))
    assert isinstance(store, GitHubRepoStore)
    assert (store.owner, store.repo) == ("acme", "state")
    assert isinstance(store.client, GitHubClient)


def test_invalid_state_repo(monkeypatch):
    monkeypatch.setenv("GITHUB_TOKEN", "tok")
    monkeypatch.setenv("STATE_REPO", "state")
    with pytest.raises(ConfigError, match="STATE_REPO"):
        config.build_store(config.load_settings())


class TestResolveRepos:
    def test_explicit_list_wins(self, monkeypatch):
        monkeypatch.setenv("MANAGED_REPOS", "acme/web")
        assert config.resolve_repos(config.load_settings(), ["acme/api"]) == ["acme/api"]

    def test_falls_back_to_managed_repos(self, monkeypatch):
        monkeypatch.setenv("MANAGED_REPOS", "acme/web")
        assert config.resolve_repos(config.load_settings(), None) == ["acme/web"]

    def test_empty(self):
        with pytest.raises(ConfigError, match="MANAGED_REPOS"):
            config.resolve_repos(config.load_settings(), [])

    def test_invalid_identifier(self):
        with pytest.raises(ConfigError, match="owner/repo"):
            config.resolve_repos(config.load_settings(), ["acme"])


class TestLocalFileStore:
    def test_read_missing(self, tmp_path):
        assert LocalFileStore(tmp_path).read("state/cve-queue.jsonl") is None

    def test_write_then_append(self, tmp_path):
        store = LocalFileStore(tmp_path)
        store.write("state/log.jsonl", "a")
        store.append("state/log.jsonl", ["b", "c"])
        assert (tmp_path / "state" / "log.jsonl").read_text() == "a\nb\nc"
        assert not (tmp_path / "state" / "log.jsonl.tmp").exists()

    def test_rejects_paths_outside_root(self, tmp_path):
        with pytest.raises(ValueError):
            LocalFileStore(tmp_path / "root").write("../escape", "x")

    def test_rejects_sibling_with_shared_prefix(self, tmp_path):
        with pytest.raises(ValueError):
            LocalFileStore(tmp_path / "state").write("../state-evil/queue.jsonl", "x")
