"""Human-readable rendering of one analysis result."""
from __future__ import annotations

from pcmaudit.types import Check, Issue, Result
from pcmaudit.utils.canonical_json import canonical_dumps

CATEGORIES = (
    ("Source authenticity", (
        Check.FAKE_BIT_DEPTH, Check.FAKE_SAMPLE_RATE, Check.LOSSY_TRANSCODE, Check.FAKE_STEREO,
    )),
    ("Stereo field", (Check.PHASE_ISSUES, Check.INVERTED_PHASE, Check.CHANNEL_IMBALANCE)),
    ("Dynamics & levels", (
        Check.CLIPPING, Check.INTER_SAMPLE_PEAKS, Check.DYNAMIC_RANGE, Check.LOUDNESS,
        Check.DC_OFFSET,
    )),
    ("Noise & interference", (Check.HUM, Check.NOISE_FLOOR)),
    ("Digital artifacts", (Check.DROPOUTS, Check.TRUNCATION, Check.SILENCE_PADDING)),
)


def stereo_width_label(correlation: float) -> str:
    if correlation > 0.95:
        return "Mono/Narrow"
    if correlation > 0.75:
        return "Narrow"
    if correlation > 0.5:
        return "Normal"
    if correlation > 0.2:
        return "Wide"
    return "Very Wide"


def build_properties(result: Result) -> dict[str, str]:
    """Headline measurements worth showing next to the issues."""
    raw = result.raw
    props = {}
    if "loudness" in raw:
        loud = raw["loudness"]
        props["loudness"] = (
            f"{loud['integrated_lufs']:.1f} LUFS (range: {loud['loudness_range']:.1f} LU)"
        )
        props["dynamic_range"] = f"DR{loud['dr_score']}"
    if "true_peak" in raw:
        props["true_peak"] = f"{raw['true_peak']['true_peak_db']:.1f} dBTP"
    if "spectral" in raw:
        props["spectral_centroid"] = f"{raw['spectral']['spectral_centroid']:.0f} Hz"
        props["noise_floor"] = f"{raw['spectral']['noise_floor_db']:.1f} dB"
    if "stereo" in raw:
        stereo = raw["stereo"]
        corr = stereo["correlation"]
        props["stereo_width"] = f"{stereo_width_label(corr)} (correlation: {corr:.2f})"
        if abs(stereo["imbalance_db"]) > 0.5:
            side = "left" if stereo["imbalance_db"] > 0 else "right"
            props["channel_imbalance"] = f"{abs(stereo['imbalance_db']):.1f} dB ({side} louder)"
    if "bit_depth" in raw:
        depth = raw["bit_depth"]
        if depth["claimed"] != depth["effective"]:
            props["bit_depth"] = f"{depth['claimed']}-bit (effective: {depth['effective']}-bit)"
        else:
            props["bit_depth"] = f"{depth['claimed']}-bit"
    return props


def _issue_line(issue: Issue) -> str:
    marker = "!!" if issue.detected else "  "
    return (
        f"{marker} [{issue.severity.value}] {issue.name}: {issue.summary} "
        f"({issue.confidence * 100:.0f}% confidence)"
    )


def _grouped(result: Result) -> list[tuple[str, list[Issue]]]:
    groups = []
    for title, checks in CATEGORIES:
        issues = [issue for issue in result.issues if issue.check in checks]
        if issues:
            groups.append((title, issues))
    return groups


def _headline(result: Result) -> str:
    return f"{result.issue_count} issues found (worst: {result.worst_severity.value})"


def render_console(result: Result, *, label: str = "", debug: bool = False) -> str:
    lines = []
    if label:
        lines.append(label)
    lines.append(_headline(result))
    for title, issues in _grouped(result):
        lines += ["", f"{title}:"]
        lines += [f"  {_issue_line(issue)}" for issue in issues]
    props = build_properties(result)
    if props:
        lines += ["", "Properties:"]
        lines += [f"  {key}: {value}" for key, value in props.items()]
    if debug:
        lines += ["", "Raw measurements:", canonical_dumps(result.raw, indent=2)]
    return "\n".join(lines) + "\n"


def render_markdown(result: Result, *, label: str = "", debug: bool = False) -> str:
    lines = [f"# {label or 'pcmaudit analysis'}", "", f"**{_headline(result)}**"]
    for title, issues in _grouped(result):
        lines += ["", f"## {title}", "", "| Check | Severity | Confidence | Summary |",
                  "|---|---|---|---|"]
        for issue in issues:
            name = f"**{issue.name}**" if issue.detected else issue.name
            lines.append(
                f"| {name} | {issue.severity.value} | {issue.confidence * 100:.0f}% | {issue.summary} |"
            )
    props = build_properties(result)
    if props:
        lines += ["", "## Properties", ""]
        lines += [f"- {key}: {value}" for key, value in props.items()]
    if debug:
        lines += ["", "## Raw measurements", "", "```json", canonical_dumps(result.raw, indent=2), "```"]
    return "\n".join(lines) + "\n"
