"""Summaries of a batch JSONL report."""
from __future__ import annotations
from collections import Counter
from typing import Iterable

from pcmaudit.errors import InvalidConfig
from pcmaudit.thresholds.scoring import SCORERS
from pcmaudit.types import CHECK_NAMES, Severity

# check name -> analysis subtree holding its measurements
CHECK_RAW_KEYS = {CHECK_NAMES[check]: key for check, (key, _) in SCORERS.items()}
_LEVELS = ("severe", "moderate", "mild")


def _severity_rank(raw: str) -> int:
    try:
        return Severity.parse(raw).rank
    except ValueError:
        return 0


def _analyzed(record: dict) -> bool:
    return not record.get("error") and isinstance(record.get("analysis"), dict)


def build_digest(records: Iterable[dict]) -> dict:
    """Tally failures, worst severities, issue counts and per-check severities."""
    total = 0
    failed = 0
    worst = {"clean": 0, "mild": 0, "moderate": 0, "severe": 0}
    per_track: Counter = Counter()
    by_check: dict[str, dict] = {}

    for record in records:
        total += 1
        if not _analyzed(record):
            failed += 1
            continue
        analysis = record["analysis"]
        summary = analysis.get("summary") or {}
        try:
            level = Severity.parse(summary.get("worst_severity", ""))
        except ValueError:
            level = Severity.NONE
        worst["clean" if level == Severity.NONE else level.value] += 1
        per_track[int(summary.get("issue_count", 0))] += 1

        for issue in analysis.get("issues") or []:
            if not issue.get("detected"):
                continue
            name = issue.get("check", "")
            stats = by_check.setdefault(
                name, {"check": name, "total": 0, "severe": 0, "moderate": 0, "mild": 0}
            )
            stats["total"] += 1
            if issue.get("severity") in _LEVELS:
                stats[issue["severity"]] += 1

    return {
        "total": total,
        "failed": failed,
        "analyzed": total - failed,
        "worst_severity": worst,
        "issues_per_track": dict(sorted(per_track.items())),
        "by_check": sorted(by_check.values(), key=lambda s: (-s["total"], s["check"])),
    }


def render_digest(digest: dict) -> str:
    lines = [
        "=== pcmaudit report digest ===",
        "",
        f"Total tracks:  {digest['total']}",
        f"Failed:        {digest['failed']}",
        f"Analyzed:      {digest['analyzed']}",
        "",
        "--- Worst severity ---",
    ]
    for level in ("clean", "mild", "moderate", "severe"):
        lines.append(f"  {level.capitalize() + ':':<10} {digest['worst_severity'][level]}")
    lines += ["", "--- Issues per track ---"]
    for count, tracks in digest["issues_per_track"].items():
        lines.append(f"  {count} issues:  {tracks} tracks")
    lines += ["", "--- Issues by type ---"]
    for stats in digest["by_check"]:
        lines.append(f"  {stats['check']}")
        lines.append(
            f"    total: {stats['total']}  severe: {stats['severe']}  "
            f"moderate: {stats['moderate']}  mild: {stats['mild']}"
        )
    return "\n".join(lines) + "\n"


def issue_entries(records: Iterable[dict], check: str) -> list[dict]:
    """Files where ``check`` was detected, most severe first."""
    if check not in CHECK_RAW_KEYS:
        raise InvalidConfig(f"unknown check {check!r}")
    raw_key = CHECK_RAW_KEYS[check]
    entries = []
    for record in records:
        if not _analyzed(record):
            continue
        analysis = record["analysis"]
        for issue in analysis.get("issues") or []:
            if not issue.get("detected") or issue.get("check") != check:
                continue
            detail = analysis.get(raw_key)
            entries.append(
                {
                    "file": record.get("file") or "(redacted)",
                    "severity": issue.get("severity", ""),
                    "confidence": float(issue.get("confidence", 0.0)),
                    "summary": issue.get("summary", ""),
                    "detail": detail if isinstance(detail, dict) else None,
                }
            )
    entries.sort(key=lambda e: -_severity_rank(e["severity"]))
    return entries


def _detail_value(value) -> str:
    if isinstance(value, list):
        return f"{len(value)} entries"
    if isinstance(value, float):
        return f"{value:.4g}"
    return str(value)


def render_issue_detail(entries: list[dict], check: str) -> str:
    if not entries:
        return f"No tracks affected by {check}\n"
    lines = [f"=== {check}: {len(entries)} tracks ===", ""]
    for entry in entries:
        lines.append(f"  {entry['file']}")
        lines.append(
            f"    severity: {entry['severity']}  confidence: {entry['confidence'] * 100:.0f}%"
        )
        lines.append(f"    {entry['summary']}")
        for key, value in sorted((entry["detail"] or {}).items()):
            lines.append(f"    {key}: {_detail_value(value)}")
        lines.append("")
    return "\n".join(lines) + "\n"
