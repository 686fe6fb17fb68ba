"""Result <-> JSON wire shape.

The analysis object carries a ``summary``, the ``issues`` list and one
subtree per analyzer that ran, keyed by analyzer name.
"""
from __future__ import annotations

from pcmaudit.errors import ReportParseError
from pcmaudit.thresholds.scoring import build_result
from pcmaudit.types import CHECK_NAMES, CHECKS_ALL, Check, Issue, Result, Severity

_RESERVED = ("summary", "issues")
_CHECKS_BY_NAME = {name: check for check, name in CHECK_NAMES.items()}


def issue_to_dict(issue: Issue) -> dict:
    return {
        "check": issue.name,
        "detected": issue.detected,
        "severity": issue.severity.value,
        "summary": issue.summary,
        "confidence": issue.confidence,
    }


def issue_from_dict(data: dict) -> Issue:
    try:
        return Issue(
            check=_CHECKS_BY_NAME[data["check"]],
            detected=bool(data["detected"]),
            severity=Severity.parse(data.get("severity", "")),
            confidence=float(data.get("confidence", 0.0)),
            summary=str(data.get("summary", "")),
        )
    except (KeyError, ValueError, TypeError) as exc:
        raise ReportParseError(f"malformed issue entry: {data!r}") from exc


def result_to_dict(result: Result) -> dict:
    """Serialize a result into the JSON-ready analysis object."""
    payload = {
        "summary": {
            "issue_count": result.issue_count,
            "worst_severity": result.worst_severity.value,
        },
        "issues": [issue_to_dict(issue) for issue in result.issues],
    }
    for key, raw in result.raw.items():
        payload[key] = raw
    return payload


def raw_from_dict(data: dict) -> dict:
    """The analyzer subtrees of an analysis object."""
    return {key: value for key, value in data.items() if key not in _RESERVED}


def result_from_dict(data: dict) -> Result:
    """Rebuild a result exactly as it was written, without re-scoring."""
    if not isinstance(data, dict):
        raise ReportParseError("analysis must be a JSON object")
    summary = data.get("summary") or {}
    issues = [issue_from_dict(item) for item in data.get("issues") or []]
    try:
        worst = Severity.parse(summary.get("worst_severity", ""))
    except ValueError as exc:
        raise ReportParseError(f"unknown severity {summary.get('worst_severity')!r}") from exc
    return Result(
        issues=issues,
        issue_count=int(summary.get("issue_count", sum(i.detected for i in issues))),
        worst_severity=worst,
        raw=raw_from_dict(data),
    )


def rescore(data: dict, checks: Check = CHECKS_ALL, thresholds: dict | None = None) -> Result:
    """Score the raw subtrees of a stored analysis again."""
    return build_result(raw_from_dict(data), checks, thresholds)
