"""Ordered severity scale shared by every stage.

CRITICAL is the most severe level; NONE and UNKNOWN carry no information and
rank last. Every filter and sort in the project compares ranks from here.
"""

from __future__ import annotations

from typing import Literal

Severity = Literal["CRITICAL", "HIGH", "MEDIUM", "LOW", "NONE", "UNKNOWN"]

SEVERITY_ORDER: list[str] = ["CRITICAL", "HIGH", "MEDIUM", "LOW", "NONE", "UNKNOWN"]

_KNOWN = set(SEVERITY_ORDER) - {"UNKNOWN"}


def normalize_severity(raw: object) -> str:
    """Uppercase ``raw`` and map anything unrecognised (or missing) to UNKNOWN."""
    if not isinstance(raw, str):
        return "UNKNOWN"
    upper = raw.strip().upper()
    # GHSA reports MEDIUM as MODERATE
    if upper == "MODERATE":
        upper = "MEDIUM"
    return upper if upper in _KNOWN else "UNKNOWN"


def severity_rank(severity: object) -> int:
    return SEVERITY_ORDER.index(normalize_severity(severity))


def meets_threshold(severity: object, threshold: object) -> bool:
    """True when ``severity`` is at least as severe as ``threshold``."""
    return severity_rank(severity) <= severity_rank(threshold)


def sort_key(severity: object, score: float | None) -> tuple[int, float]:
    """Most severe first, then higher score first; a missing score counts as 0."""
    return severity_rank(severity), -(score if score is not None else 0.0)
