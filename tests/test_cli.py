import json

import pytest
from typer.testing import CliRunner

from cvefabric import cli
from cvefabric.core import detection, intelligence, queue
from cvefabric.core.adapters import LocalFileStore
from cvefabric.core.models import CveEnrichment, GhsaAdvisory

runner = CliRunner()


@pytest.fixture
def state_dir(tmp_path, monkeypatch):
    for name in ("STATE_REPO", "MANAGED_REPOS", "NVD_API_KEY"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("CVEFABRIC_STATE_DIR", str(tmp_path))
    monkeypatch.setenv("GITHUB_TOKEN", "tok")
    return tmp_path


@pytest.fixture
def seeded(state_dir, make_entry):
    store = LocalFileStore(state_dir)
    queue.enqueue(
        [
            make_entry(id="CVE-CRIT", severity="CRITICAL", cvss_score=9.8),
            make_entry(id="CVE-LOW", severity="LOW", repo="acme/api"),
            make_entry(id="CVE-DONE", status="pr_opened", pr_number=5),
        ],
        store,
    )
    return store


@pytest.fixture
def fake_github(monkeypatch, github, no_sleep):
    monkeypatch.setattr(cli, "build_github", lambda settings: github)
    return github


def test_queue_list_table(seeded):
    result = runner.invoke(cli.app, ["queue", "list"])
    assert result.exit_code == 0, result.output
    lines = result.output.splitlines()
    assert lines[0].startswith("Severity")
    assert "CVE-CRIT" in lines[2]
    assert "CVE-LOW" in lines[3]
    assert "Showing 2 of 2" in result.output


def test_queue_list_json_filters(seeded):
    result = runner.invoke(cli.app, ["queue", "list", "--status", "all", "--repo", "acme/web", "--format", "json"])
    data = json.loads(result.output)
    assert data["total"] == 2
    assert {e["id"] for e in data["entries"]} == {"CVE-CRIT", "CVE-DONE"}


def test_queue_list_rejects_bad_severity(seeded):
    result = runner.invoke(cli.app, ["queue", "list", "--severity-min", "urgent"])
    assert result.exit_code == 1


def test_queue_stats(seeded):
    result = runner.invoke(cli.app, ["queue", "stats"])
    data = json.loads(result.output)
    assert data["total"] == 3
    assert data["pendingBySeverity"]["CRITICAL"] == 1
    assert data["topRepos"][0]["pending"] == 1


def test_queue_update(seeded):
    result = runner.invoke(
        cli.app, ["queue", "update", "--id", "CVE-LOW", "--repo", "acme/api", "--status", "skipped", "--skip-reason", "accepted risk"]
    )
    assert result.exit_code == 0, result.output
    (entry,) = queue.list_entries(seeded, status="skipped").entries
    assert entry.skip_reason == "accepted risk"


def test_queue_update_unknown_entry(seeded):
    result = runner.invoke(cli.app, ["queue", "update", "--id", "CVE-NONE", "--repo", "acme/api", "--status", "skipped"])
    assert result.exit_code == 1


def test_compact(seeded):
    result = runner.invoke(cli.app, ["compact", "--retention-days", "0"])
    assert result.exit_code == 0, result.output
    assert '"removed": 1' in result.output
    assert queue.stats(seeded).total == 2


def test_report(seeded, tmp_path):
    out = tmp_path / "out.sarif"
    result = runner.invoke(cli.app, ["report", "--output", str(out)])
    assert result.exit_code == 0, result.output
    assert len(json.loads(out.read_text())["runs"][0]["results"]) == 2


def test_scan(state_dir, fake_github, monkeypatch):
    fake_github.files["acme/web"] = {"requirements.txt": "django==3.2.0\n"}
    advisory = GhsaAdvisory(ghsa_id="GHSA-dj01", cve_id="CVE-2024-2001", severity="HIGH", first_patched_version="3.2.25")
    monkeypatch.setattr(detection, "query_ghsa", lambda ecosystem, package, token: [advisory])

    result = runner.invoke(cli.app, ["scan", "--repos", "acme/web"])

    assert result.exit_code == 0, result.output
    assert "Findings: 1 | Queued: 1 | Duplicates: 0" in result.output
    (entry,) = queue.pending(LocalFileStore(state_dir))
    assert entry.patched_version == "3.2.25"


def test_scan_without_repos_fails(state_dir, fake_github):
    result = runner.invoke(cli.app, ["scan"])
    assert result.exit_code == 1
    assert "MANAGED_REPOS" in result.output


def test_scan_without_token_fails(state_dir, monkeypatch):
    monkeypatch.delenv("GITHUB_TOKEN")
    monkeypatch.delenv("GIT_STEER_TOKEN", raising=False)
    result = runner.invoke(cli.app, ["scan", "--repos", "acme/web"])
    assert result.exit_code == 1


def test_triage_dry_run(seeded, fake_github):
    result = runner.invoke(cli.app, ["triage", "--dry-run"])
    assert result.exit_code == 0, result.output
    assert "Processed: 2 | PRs: 1 | Skipped: 1 | Errors: 0" in result.output
    assert "[DRY RUN] Would open PR" in result.output
    assert fake_github.pulls == []
    assert len(queue.pending(seeded)) == 2


def test_enrich(state_dir, monkeypatch):
    monkeypatch.setattr(
        intelligence,
        "enrich",
        lambda cve_id, api_key=None: CveEnrichment(id=cve_id, status="Analyzed", severity="HIGH", score=7.5),
    )
    result = runner.invoke(cli.app, ["enrich", "cve-2024-1"])
    data = json.loads(result.output)
    assert data["id"] == "CVE-2024-1"
    assert data["severity"] == "HIGH"


def test_batch_limit(state_dir):
    result = runner.invoke(cli.app, ["batch", *[f"CVE-2024-{i}" for i in range(21)]])
    assert result.exit_code == 1
