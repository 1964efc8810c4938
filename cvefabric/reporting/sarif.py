"""SARIF (Static Analysis Results Interchange Format) export of queue entries.

Lets the CVE queue be uploaded to GitHub code scanning or any other tool that
reads SARIF 2.1.0.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Iterable, List

from cvefabric.core.manifests import ECOSYSTEM_MANIFEST
from cvefabric.core.models import QueueEntry
from cvefabric.core.utils import utc_now

SARIF_SCHEMA = "https://raw.githubusercontent.com/oasis-tcs/sarif-spec/master/Schemata/sarif-schema-2.1.0.json"

SARIF_LEVEL_MAP = {
    "CRITICAL": "error",
    "HIGH": "error",
    "MEDIUM": "warning",
    "LOW": "note",
}

# GitHub reads security-severity as a CVSS-like number.
SECURITY_SEVERITY_MAP = {
    "CRITICAL": "9.5",
    "HIGH": "8.0",
    "MEDIUM": "5.5",
    "LOW": "2.0",
}


def _security_severity(entry: QueueEntry) -> str:
    if entry.cvss_score is not None:
        return f"{entry.cvss_score:.1f}"
    return SECURITY_SEVERITY_MAP.get(entry.severity, "0.0")


def _create_rule(entry: QueueEntry) -> Dict[str, Any]:
    help_text = (
        f"{entry.affected_package} {entry.affected_version} ({entry.ecosystem}) is affected by {entry.id}. "
        f"Upgrade to {entry.patched_version} or later."
    )
    tags = ["security", "vulnerability", f"ecosystem-{entry.ecosystem}"]
    if entry.ghsa_id:
        tags.append(entry.ghsa_id.lower())
    rule = {
        "id": entry.id,
        "name": f"VulnerableDependency/{entry.affected_package}",
        "shortDescription": {"text": entry.summary or f"Vulnerable dependency: {entry.affected_package}"},
        "fullDescription": {"text": help_text},
        "help": {
            "text": help_text,
            "markdown": f"## {entry.id}\n\n"
            f"**Package:** `{entry.affected_package}` @ `{entry.affected_version}`\n\n"
            f"**Patched Version:** `{entry.patched_version}`\n\n"
            f"**Severity:** {entry.severity}\n\n"
            f"[Advisory]({entry.nvd_url})",
        },
        "defaultConfiguration": {"level": SARIF_LEVEL_MAP.get(entry.severity, "note")},
        "properties": {
            "security-severity": _security_severity(entry),
            "precision": "high",
            "tags": tags,
        },
    }
    if entry.nvd_url:
        rule["helpUri"] = entry.nvd_url
    return rule


def _create_result(entry: QueueEntry, rule_index: int) -> Dict[str, Any]:
    manifest = ECOSYSTEM_MANIFEST.get(entry.ecosystem, "")
    return {
        "ruleId": entry.id,
        "ruleIndex": rule_index,
        "level": SARIF_LEVEL_MAP.get(entry.severity, "note"),
        "message": {
            "text": f"{entry.affected_package} {entry.affected_version} in {entry.repo} is vulnerable ({entry.id}). "
            f"Upgrade to {entry.patched_version} or later."
        },
        "locations": [
            {
                "physicalLocation": {"artifactLocation": {"uri": manifest}, "region": {"startLine": 1}},
                "logicalLocations": [
                    {"name": entry.affected_package, "fullyQualifiedName": f"{entry.repo}:{entry.affected_package}", "kind": "package"}
                ],
            }
        ],
        "partialFingerprints": {"queueKey": f"{entry.id}::{entry.repo}"},
        "properties": {
            "repo": entry.repo,
            "status": entry.status,
            "severity": entry.severity,
            "cvssScore": entry.cvss_score,
            "prUrl": entry.pr_url,
        },
    }


def convert_to_sarif(entries: Iterable[QueueEntry], tool_version: str = "0.1.0") -> Dict[str, Any]:
    """Build a SARIF 2.1.0 document with one rule per vulnerability id."""
    rules: Dict[str, Dict[str, Any]] = {}
    rule_index: Dict[str, int] = {}
    results: List[Dict[str, Any]] = []

    for entry in entries:
        if entry.id not in rules:
            rules[entry.id] = _create_rule(entry)
            rule_index[entry.id] = len(rule_index)
        results.append(_create_result(entry, rule_index[entry.id]))

    return {
        "version": "2.1.0",
        "$schema": SARIF_SCHEMA,
        "runs": [
            {
                "tool": {
                    "driver": {
                        "name": "cvefabric",
                        "version": tool_version,
                        "shortDescription": {"text": "Dependency vulnerability queue"},
                        "rules": list(rules.values()),
                    }
                },
                "invocation": {"executionSuccessful": True, "endTimeUtc": utc_now()},
                "results": results,
            }
        ],
    }


def export_sarif_report(entries: Iterable[QueueEntry], output_path: Path, tool_version: str = "0.1.0") -> int:
    """Write the SARIF report and return the number of results written."""
    sarif_data = convert_to_sarif(entries, tool_version)
    output_path.write_text(json.dumps(sarif_data, indent=2, ensure_ascii=False), encoding="utf-8")
    return len(sarif_data["runs"][0]["results"])


def validate_sarif_schema(sarif_data: Dict[str, Any]) -> List[str]:
    """Basic structural check; returns a list of problems, empty if valid."""
    errors = []
    if sarif_data.get("version") != "2.1.0":
        errors.append(f"Unsupported or missing SARIF version: {sarif_data.get('version')}")
    runs = sarif_data.get("runs")
    if not isinstance(runs, list) or not runs:
        errors.append("At least one run is required")
        return errors
    for i, run in enumerate(runs):
        if not isinstance(run, dict):
            errors.append(f"Run {i} must be an object")
            continue
        if "tool" not in run:
            errors.append(f"Run {i}: missing required field 'tool'")
        if "results" not in run:
            errors.append(f"Run {i}: missing required field 'results'")
    return errors
