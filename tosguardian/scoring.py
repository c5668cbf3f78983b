"""
Map issues and findings to the traffic-light level: green / yellow / red.
"""
from __future__ import annotations

from enum import IntEnum
from typing import Any


class Level(IntEnum):
    GREEN = 1
    YELLOW = 2
    RED = 3

    def __str__(self) -> str:
        return self.name.lower()

    @classmethod
    def parse(cls, value: str | None) -> "Level | None":
        try:
            return cls[str(value or "").upper()]
        except KeyError:
            return None


def compute_level(issues: list[Any], high: bool) -> Level:
    if not issues:
        return Level.GREEN
    return Level.RED if high else Level.YELLOW


def summarize_findings(findings: list[dict[str, Any]]) -> tuple[Level, dict[str, int]]:
    """Level implied by image findings alone, plus counts per severity."""
    counts = {"high": 0, "medium": 0}
    for f in findings:
        sev = (f.get("severity") or "medium").lower()
        if sev == "high":
            counts["high"] += 1
        else:
            counts["medium"] += 1

    if counts["high"] > 0:
        overall = Level.RED
    elif counts["medium"] > 0:
        overall = Level.YELLOW
    else:
        overall = Level.GREEN

    return overall, counts
