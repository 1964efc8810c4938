from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import List, Optional

import typer

from cvefabric.core import intelligence, pipeline, queue
from cvefabric.core.config import build_github, build_store, load_settings, parse_repo_list, resolve_repos
from cvefabric.core.decision import DEFAULT_POLICY
from cvefabric.core.models import QueueEntry, QueueUpdate, TriagePolicy
from cvefabric.core.severity import SEVERITY_ORDER
from cvefabric.core.utils import CveFabricError
from cvefabric.reporting.sarif import export_sarif_report

app = typer.Typer(help="cvefabric: dependency CVE detection-to-remediation pipeline")
queue_app = typer.Typer(help="Inspect and edit the CVE queue")
app.add_typer(queue_app, name="queue")


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging")):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _fail(message: str) -> None:
    typer.echo(message, err=True)
    raise typer.Exit(code=1)


def _echo_json(data) -> None:
    typer.echo(json.dumps(data, indent=2))


def _check_severity(value: str, option: str) -> str:
    upper = value.upper()
    if upper not in SEVERITY_ORDER:
        _fail(f"Invalid {option} '{value}'. Choose from: {', '.join(SEVERITY_ORDER)}")
    return upper


def print_entries(entries: List[QueueEntry]) -> None:
    """Pretty-print queue entries in a simple table."""
    headers = ["Severity", "Score", "ID", "Repo", "Package", "Installed", "Patched", "Status"]
    rows = [
        [
            e.severity,
            "" if e.cvss_score is None else f"{e.cvss_score:.1f}",
            e.id,
            e.repo,
            e.affected_package,
            e.affected_version,
            e.patched_version,
            e.status,
        ]
        for e in entries
    ]

    col_widths = [len(h) for h in headers]
    for row in rows:
        for i, cell in enumerate(row):
            col_widths[i] = max(col_widths[i], len(str(cell)))

    def fmt_row(values):
        return " | ".join(str(v).ljust(col_widths[i]) for i, v in enumerate(values))

    typer.echo(fmt_row(headers))
    typer.echo("-+-".join("-" * w for w in col_widths))
    for row in rows:
        typer.echo(fmt_row(row))


@app.command()
def scan(
    repos: Optional[str] = typer.Option(None, "--repos", help="Comma-separated owner/repo list (default: MANAGED_REPOS)"),
    severity_threshold: str = typer.Option("HIGH", "--severity-threshold", help="Minimum severity to record"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Report findings without writing to the queue"),
    format: str = typer.Option("summary", "--format", help="Output format: summary or json"),
):
    """Scan repositories for vulnerable dependencies and queue the findings."""
    threshold = _check_severity(severity_threshold, "severity threshold")
    try:
        settings = load_settings()
        targets = resolve_repos(settings, parse_repo_list(repos))
        github = build_github(settings)
        store = build_store(settings, github)
        typer.echo(f"Scanning {len(targets)} repos at {threshold} threshold...", err=True)
        result = pipeline.perform_scan(targets, github, store, threshold, dry_run=dry_run)
    except CveFabricError as exc:
        _fail(str(exc))

    if format == "json":
        _echo_json(result)
        return
    findings = len(result["findings"])
    if "queued" in result:
        typer.echo(f"Findings: {findings} | Queued: {result['queued']} | Duplicates: {result['duplicates']}")
    else:
        typer.echo(f"Findings: {findings} (dry run: {dry_run})")
    typer.echo("By severity: " + ", ".join(f"{k}={v}" for k, v in result["bySeverity"].items()))


@app.command()
def enrich(cve_id: str = typer.Argument(..., help="CVE identifier, e.g. CVE-2024-12345")):
    """Fetch NVD details for a single CVE."""
    settings = load_settings()
    try:
        result = intelligence.enrich(cve_id.strip().upper(), settings.nvd_api_key)
    except CveFabricError as exc:
        _fail(str(exc))
    _echo_json(result.to_record())


@app.command()
def batch(cve_ids: List[str] = typer.Argument(..., help="Up to 20 CVE identifiers")):
    """Enrich several CVEs and rank them by severity."""
    if len(cve_ids) > 20:
        _fail("At most 20 CVE ids per batch")
    settings = load_settings()
    results = intelligence.enrich_batch(cve_ids, settings.nvd_api_key)
    _echo_json({"total": len(results), "triage": [r.to_record() for r in results]})


@app.command()
def triage(
    auto_pr_threshold: str = typer.Option(DEFAULT_POLICY.auto_pr_threshold, "--auto-pr-threshold", help="Auto-PR severity threshold"),
    draft_threshold: str = typer.Option(DEFAULT_POLICY.draft_threshold, "--draft-threshold", help="Draft PR threshold"),
    max_prs_per_run: int = typer.Option(DEFAULT_POLICY.max_prs_per_run, "--max-prs-per-run", min=0, help="Max PRs per run"),
    require_patched_version: bool = typer.Option(
        DEFAULT_POLICY.require_patched_version,
        "--require-patched-version/--allow-unpatched",
        help="Skip entries with no known patched version",
    ),
    dry_run: bool = typer.Option(False, "--dry-run", help="Plan without opening PRs or updating the queue"),
):
    """Apply the severity policy to pending entries and open remediation PRs."""
    policy = TriagePolicy(
        auto_pr_threshold=_check_severity(auto_pr_threshold, "auto-PR threshold"),
        draft_threshold=_check_severity(draft_threshold, "draft threshold"),
        max_prs_per_run=max_prs_per_run,
        require_patched_version=require_patched_version,
    )
    try:
        settings = load_settings()
        github = build_github(settings)
        store = build_store(settings, github)
        summary = pipeline.perform_triage(github, store, policy, dry_run=dry_run)
    except CveFabricError as exc:
        _fail(str(exc))

    typer.echo(
        f"Processed: {summary['processed']} | PRs: {summary['prs_opened']} | "
        f"Skipped: {summary['skipped']} | Errors: {summary['errors']}"
    )
    for r in summary["results"]:
        line = f"  [{r['action']}] {r['cveId']} {r['repo']}"
        if r.get("prUrl"):
            line += f" -> {r['prUrl']}"
        elif r.get("reason"):
            line += f" ({r['reason']})"
        typer.echo(line)


@queue_app.command("list")
def queue_list(
    status: str = typer.Option("pending", "--status", help="pending, pr_opened, skipped, error or all"),
    severity_min: str = typer.Option("LOW", "--severity-min", help="Minimum severity"),
    repo: Optional[str] = typer.Option(None, "--repo", help="Only entries for this owner/repo"),
    limit: int = typer.Option(50, "--limit", min=1, help="Maximum entries to show"),
    format: str = typer.Option("table", "--format", help="Output format: table or json"),
):
    """List queue entries, most severe first."""
    try:
        store = build_store(load_settings())
        result = queue.list_entries(
            store, status=status, severity_min=_check_severity(severity_min, "minimum severity"), repo=repo, limit=limit
        )
    except CveFabricError as exc:
        _fail(str(exc))

    if format == "json":
        _echo_json({"total": result.total, "entries": [e.to_record() for e in result.entries]})
        return
    print_entries(result.entries)
    typer.echo(f"\nShowing {len(result.entries)} of {result.total}")


@queue_app.command("stats")
def queue_stats():
    """Queue health: totals by status and severity, oldest pending, top repos."""
    try:
        result = queue.stats(build_store(load_settings()))
    except CveFabricError as exc:
        _fail(str(exc))
    _echo_json(result.model_dump(by_alias=True))


@queue_app.command("update")
def queue_update(
    cve_id: str = typer.Option(..., "--id", help="CVE or GHSA identifier"),
    repo: str = typer.Option(..., "--repo", help="owner/repo"),
    status: str = typer.Option(..., "--status", help="pending, pr_opened, skipped or error"),
    skip_reason: Optional[str] = typer.Option(None, "--skip-reason", help="Reason recorded with the entry"),
):
    """Manually set the status of one queue entry."""
    if status not in ("pending", "pr_opened", "skipped", "error"):
        _fail(f"Invalid status '{status}'")
    try:
        result = queue.update(
            [QueueUpdate(id=cve_id, repo=repo, status=status, skip_reason=skip_reason)], build_store(load_settings())
        )
    except CveFabricError as exc:
        _fail(str(exc))
    if not result.updated:
        _fail(f"No queue entry for {cve_id} in {repo}")
    typer.echo(f"Updated {cve_id} in {repo} -> {status}")


@app.command()
def compact(
    retention_days: int = typer.Option(queue.DEFAULT_RETENTION_DAYS, "--retention-days", min=0, help="Days to keep resolved entries"),
):
    """Remove resolved entries older than the retention period."""
    try:
        result = queue.compact(build_store(load_settings()), retention_days=retention_days)
    except CveFabricError as exc:
        _fail(str(exc))
    _echo_json(result.to_record())


@app.command()
def report(
    output: str = typer.Option("cve-queue.sarif", "--output", help="SARIF output path"),
    status: str = typer.Option("pending", "--status", help="Queue status to export, or all"),
    severity_min: str = typer.Option("LOW", "--severity-min", help="Minimum severity"),
):
    """Export queue entries as a SARIF 2.1.0 report."""
    try:
        store = build_store(load_settings())
        result = queue.list_entries(
            store,
            status=status,
            severity_min=_check_severity(severity_min, "minimum severity"),
            limit=queue.PENDING_LIMIT,
        )
    except CveFabricError as exc:
        _fail(str(exc))
    output_path = Path(output)
    count = export_sarif_report(result.entries, output_path)
    typer.echo(f"SARIF report saved to: {output_path} ({count} results)")
    typer.echo(f"Upload to GitHub with: gh api repos/:owner/:repo/code-scanning/sarifs -F sarif=@{output_path}")


if __name__ == "__main__":
    app()
