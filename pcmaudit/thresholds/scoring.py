"""Turn raw analyzer results into scored issues.

Scoring reads only the raw result dicts and a threshold table, so a result
that went through JSON scores the same as the one produced in memory.
"""
from __future__ import annotations

from pcmaudit.thresholds.presets import build_thresholds
from pcmaudit.types import (
    CHECKS_ALL,
    Check,
    Issue,
    Result,
    Severity,
    iter_checks,
)


def band_severity(value: float, band: dict, *, inclusive: bool = False) -> Severity:
    """Classify ``value`` against a {mild, moderate, severe} band.

    Bands grow upward when mild <= severe, downward otherwise. Detection
    compares strictly against mild unless ``inclusive``; the higher levels
    are reached at their threshold.
    """
    mild, moderate, severe = band["mild"], band["moderate"], band["severe"]
    if mild > severe:
        # Flip a downward band so one set of comparisons serves both.
        value, mild, moderate, severe = -value, -mild, -moderate, -severe
    detected = value >= mild if inclusive else value > mild
    if not detected:
        return Severity.NONE
    if value >= severe:
        return Severity.SEVERE
    if value >= moderate:
        return Severity.MODERATE
    return Severity.MILD


def band_confidence(value: float, band: dict, severity: Severity) -> float:
    """How far a mild value sits between the mild and moderate thresholds."""
    if severity != Severity.MILD:
        return 1.0
    span = band["moderate"] - band["mild"]
    if span == 0:
        return 1.0
    return max(0.0, min(1.0, (value - band["mild"]) / span))


def _banded(value: float, band: dict, summary: str, *, inclusive: bool = False):
    severity = band_severity(value, band, inclusive=inclusive)
    return severity, band_confidence(value, band, severity), summary


def _clean(summary: str):
    return Severity.NONE, 1.0, summary


def _score_clipping(raw: dict, t: dict):
    clip = raw["clipping"]
    if clip["events"] <= 0:
        return _clean("no clipping")
    summary = (
        f"{clip['events']} clipping events, {clip['clipped_samples']} samples at full scale "
        f"(longest run {clip['longest_run']})"
    )
    severity, confidence, summary = _banded(clip["clipped_samples"], t["clipping"], summary)
    if severity == Severity.NONE:
        severity = Severity.MILD
    return severity, confidence, summary


def _score_truncation(raw: dict, t: dict):
    tail = raw["truncation"]
    rms, peak = tail["final_rms_db"], tail["final_peak_db"]
    band = t["truncation"]["rms_db"]
    if not (rms > band["mild"] and peak > t["truncation"]["peak_db"]):
        return _clean(f"ends quietly (tail RMS {rms:.1f} dB)")
    return _banded(rms, band, f"audio stops abruptly (tail RMS {rms:.1f} dB, peak {peak:.1f} dB)")


def _score_bit_depth(raw: dict, t: dict):
    depth = raw["bit_depth"]
    if not depth["is_padded"]:
        return _clean(f"{depth['effective']}-bit content is genuine")
    severity = Severity.SEVERE if depth["effective"] <= 16 else Severity.MILD
    summary = f"{depth['effective']}-bit content padded to {depth['claimed']} bits"
    return severity, 1.0, summary


def _score_sample_rate(raw: dict, t: dict):
    spectral = raw["spectral"]
    if not spectral["is_upsampled"]:
        return _clean(f"{spectral['claimed_rate']} Hz content is genuine")
    summary = (
        f"upsampled from {spectral['effective_rate']} Hz "
        f"(cutoff {spectral['upsample_cutoff']:.0f} Hz, "
        f"{spectral['upsample_sharpness']:.0f} dB/oct)"
    )
    return Severity.SEVERE, 1.0, summary


def _score_transcode(raw: dict, t: dict):
    spectral = raw["spectral"]
    if not spectral["is_transcode"]:
        return _clean("no lossy codec cutoff")
    confidence = float(spectral["transcode_confidence"])
    band = t["lossy_transcode"]
    if confidence >= band["severe"]:
        severity = Severity.SEVERE
    elif confidence >= band["moderate"]:
        severity = Severity.MODERATE
    else:
        severity = Severity.MILD
    summary = (
        f"likely {spectral['likely_codec']} source "
        f"(cutoff {spectral['transcode_cutoff']:.0f} Hz)"
    )
    return severity, confidence, summary


def _score_dc_offset(raw: dict, t: dict):
    dc = raw["dc_offset"]
    offset = abs(dc["offset"])
    return _banded(offset, t["dc_offset"], f"DC offset {offset:.4f} ({dc['offset_db']:.1f} dB)")


def _score_fake_stereo(raw: dict, t: dict):
    stereo = raw["stereo"]
    band = t["fake_stereo"]
    corr, diff = stereo["correlation"], stereo["difference_db"]
    summary = f"correlation {corr:.3f}, side level {diff:.1f} dB"
    if not (corr > band["correlation"] and diff < band["difference_db"]):
        return _clean(summary)
    severity = Severity.SEVERE if diff < band["severe_difference_db"] else Severity.MODERATE
    return severity, 1.0, "mono content in a stereo file: " + summary


def _score_phase(raw: dict, t: dict):
    cancellation = raw["stereo"]["cancellation_db"]
    return _banded(
        cancellation,
        t["phase_issues"],
        f"mono fold-down loses {cancellation:.1f} dB",
    )


def _score_inverted(raw: dict, t: dict):
    corr = raw["stereo"]["correlation"]
    band = t["inverted_phase"]
    if not corr < band["correlation"]:
        return _clean(f"correlation {corr:.3f}")
    severity = Severity.SEVERE if corr < band["severe_correlation"] else Severity.MODERATE
    return severity, 1.0, f"one channel is polarity inverted (correlation {corr:.3f})"


def _score_imbalance(raw: dict, t: dict):
    imbalance = raw["stereo"]["imbalance_db"]
    side = "left" if imbalance > 0 else "right"
    return _banded(
        abs(imbalance),
        t["channel_imbalance"],
        f"{side} channel {abs(imbalance):.1f} dB louder",
    )


def _score_silence(raw: dict, t: dict):
    silence = raw["silence"]
    leading, trailing = silence["leading_sec"], silence["trailing_sec"]
    total = silence["total_duration"]
    if total > 0 and leading >= total:
        return Severity.SEVERE, 1.0, f"entire {total:.1f} s is silent"
    padding = max(leading, trailing)
    return _banded(
        padding,
        t["silence_padding"],
        f"{leading:.1f} s leading, {trailing:.1f} s trailing silence",
        inclusive=True,
    )


def _score_hum(raw: dict, t: dict):
    spectral = raw["spectral"]
    if not (spectral["has_50_hz_hum"] or spectral["has_60_hz_hum"]):
        return _clean("no mains hum")
    freqs = [f for f, key in ((50, "has_50_hz_hum"), (60, "has_60_hz_hum")) if spectral[key]]
    level = spectral["hum_level_db"]
    return _banded(
        level,
        t["hum"],
        f"{'/'.join(str(f) for f in freqs)} Hz hum {level:.1f} dB above the surrounding spectrum",
    )


def _score_noise(raw: dict, t: dict):
    level = raw["spectral"]["noise_floor_db"]
    return _banded(level, t["noise_floor"], f"high-frequency noise floor {level:.1f} dB")


def _score_isp(raw: dict, t: dict):
    peak = raw["true_peak"]
    count = peak["isp_count"]
    return _banded(
        count,
        t["inter_sample_peaks"],
        f"{count} inter-sample overs, true peak {peak['true_peak_db']:.2f} dBTP",
    )


def _score_loudness(raw: dict, t: dict):
    loud = raw["loudness"]
    lufs = loud["integrated_lufs"]
    band = t["loudness"]
    if lufs <= band["unmeasured_lufs"]:
        return _clean("too quiet to measure loudness")
    summary = f"integrated {lufs:.1f} LUFS, LRA {loud['loudness_range']:.1f} LU"
    for side in ("loud", "quiet"):
        severity = band_severity(lufs, band[side])
        if severity != Severity.NONE:
            return severity, band_confidence(lufs, band[side], severity), summary
    return _clean(summary)


def _score_dynamic_range(raw: dict, t: dict):
    loud = raw["loudness"]
    score = loud["dr_score"]
    if score <= 0:
        return _clean("dynamic range not measured")
    return _banded(score, t["dynamic_range"], f"DR{score} ({loud['dr_value']:.1f} dB)", inclusive=True)


def _score_dropouts(raw: dict, t: dict):
    drop = raw["dropouts"]
    total = drop["delta_count"] + drop["zero_run_count"] + drop["dc_jump_count"]
    if total <= 0:
        return _clean("no dropouts")
    band = t["dropouts"]
    worst = drop["worst_db"]
    if total >= band["severe"] or worst >= band["severe_db"]:
        severity = Severity.SEVERE
    elif total >= band["moderate"] or worst >= band["moderate_db"]:
        severity = Severity.MODERATE
    else:
        severity = Severity.MILD
    summary = (
        f"{total} dropouts ({drop['delta_count']} jumps, {drop['zero_run_count']} zero runs, "
        f"{drop['dc_jump_count']} DC steps)"
    )
    return severity, band_confidence(total, band, severity), summary


# check -> (raw key it reads, scorer)
SCORERS = {
    Check.CLIPPING: ("clipping", _score_clipping),
    Check.TRUNCATION: ("truncation", _score_truncation),
    Check.FAKE_BIT_DEPTH: ("bit_depth", _score_bit_depth),
    Check.FAKE_SAMPLE_RATE: ("spectral", _score_sample_rate),
    Check.LOSSY_TRANSCODE: ("spectral", _score_transcode),
    Check.DC_OFFSET: ("dc_offset", _score_dc_offset),
    Check.FAKE_STEREO: ("stereo", _score_fake_stereo),
    Check.PHASE_ISSUES: ("stereo", _score_phase),
    Check.INVERTED_PHASE: ("stereo", _score_inverted),
    Check.CHANNEL_IMBALANCE: ("stereo", _score_imbalance),
    Check.SILENCE_PADDING: ("silence", _score_silence),
    Check.HUM: ("spectral", _score_hum),
    Check.NOISE_FLOOR: ("spectral", _score_noise),
    Check.INTER_SAMPLE_PEAKS: ("true_peak", _score_isp),
    Check.LOUDNESS: ("loudness", _score_loudness),
    Check.DYNAMIC_RANGE: ("loudness", _score_dynamic_range),
    Check.DROPOUTS: ("dropouts", _score_dropouts),
}


def score_issues(raw: dict, checks: Check = CHECKS_ALL, thresholds: dict | None = None) -> list[Issue]:
    """Score every requested check whose raw result is present."""
    if thresholds is None:
        thresholds = build_thresholds()
    issues = []
    for check in iter_checks(checks):
        key, scorer = SCORERS[check]
        if raw.get(key) is None:
            continue
        severity, confidence, summary = scorer(raw, thresholds)
        issues.append(
            Issue(
                check=check,
                detected=severity != Severity.NONE,
                severity=severity,
                confidence=float(confidence),
                summary=summary,
            )
        )
    return issues


def build_result(raw: dict, checks: Check = CHECKS_ALL, thresholds: dict | None = None) -> Result:
    """Score ``raw`` and wrap it with the issue count and worst severity."""
    issues = score_issues(raw, checks, thresholds)
    detected = [issue for issue in issues if issue.detected]
    worst = max((issue.severity for issue in detected), key=lambda s: s.rank, default=Severity.NONE)
    return Result(issues=issues, issue_count=len(detected), worst_severity=worst, raw=raw)
