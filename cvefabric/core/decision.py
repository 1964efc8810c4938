"""Severity policy: turn pending queue entries into remediation plans.

No I/O here. The order of the checks in ``triage`` is the whole policy:
run cap, then patch availability, then the auto-PR threshold.
"""

from __future__ import annotations

from typing import Iterable, List

from cvefabric.core.models import QueueEntry, TriagePlan, TriagePolicy
from cvefabric.core.severity import SEVERITY_ORDER, meets_threshold, sort_key

DEFAULT_POLICY = TriagePolicy(
    auto_pr_threshold="HIGH",
    draft_threshold="HIGH",
    max_prs_per_run=5,
    require_patched_version=True,
)

MOST_SEVERE = SEVERITY_ORDER[0]


def triage(entries: Iterable[QueueEntry], policy: TriagePolicy = DEFAULT_POLICY) -> List[TriagePlan]:
    ordered = sorted(
        (e for e in entries if e.status == "pending"),
        key=lambda e: sort_key(e.severity, e.cvss_score),
    )

    plans: List[TriagePlan] = []
    acting = 0

    for entry in ordered:
        actionable = meets_threshold(entry.severity, policy.auto_pr_threshold)

        if acting >= policy.max_prs_per_run and actionable:
            plans.append(
                TriagePlan(entry=entry, action="skip", reason=f"PR cap reached ({policy.max_prs_per_run} per run)")
            )
            continue

        if policy.require_patched_version and not entry.has_patch:
            plans.append(TriagePlan(entry=entry, action="skip", reason="No patched version available yet"))
            continue

        if not actionable:
            plans.append(
                TriagePlan(
                    entry=entry,
                    action="skip",
                    reason=f"Severity {entry.severity} below auto-PR threshold {policy.auto_pr_threshold}",
                )
            )
            continue

        if entry.severity == MOST_SEVERE:
            plans.append(TriagePlan(entry=entry, action="open_pr", reason=f"{MOST_SEVERE} - immediate confirmed PR"))
        else:
            plans.append(TriagePlan(entry=entry, action="open_draft", reason=f"{entry.severity} - draft PR for review"))
        acting += 1

    return plans
