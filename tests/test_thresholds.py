from __future__ import annotations

import numpy as np
import pytest

from pcmaudit.errors import InvalidConfig
from pcmaudit.thresholds.presets import DEFAULT_THRESHOLDS, build_thresholds, merge_config
from pcmaudit.thresholds.scoring import (
    band_confidence,
    band_severity,
    build_result,
    score_issues,
)
from pcmaudit.types import (
    CHECKS_ALL,
    CHECKS_DEFECTS,
    Check,
    Severity,
    Source,
    parse_checks,
    parse_source,
)

UP = {"mild": 0, "moderate": 100, "severe": 1000}
DOWN = {"mild": 7, "moderate": 6, "severe": 4}


@pytest.mark.parametrize(
    "value,expected",
    [(0, Severity.NONE), (1, Severity.MILD), (99, Severity.MILD),
     (100, Severity.MODERATE), (1000, Severity.SEVERE), (5000, Severity.SEVERE)],
)
def test_upward_band(value, expected):
    assert band_severity(value, UP) == expected


@pytest.mark.parametrize(
    "value,expected",
    [(8, Severity.NONE), (7, Severity.MILD), (6.5, Severity.MILD),
     (6, Severity.MODERATE), (5, Severity.MODERATE), (4, Severity.SEVERE), (1, Severity.SEVERE)],
)
def test_downward_band_inclusive(value, expected):
    assert band_severity(value, DOWN, inclusive=True) == expected


def test_downward_band_strict_excludes_threshold():
    assert band_severity(7, DOWN) == Severity.NONE


def test_band_confidence():
    dc = DEFAULT_THRESHOLDS["dc_offset"]
    assert np.isclose(band_confidence(0.0055, dc, Severity.MILD), 0.5)
    assert band_confidence(0.02, dc, Severity.MODERATE) == 1.0
    assert np.isclose(band_confidence(6.5, DOWN, Severity.MILD), 0.5)


def test_merge_config_is_recursive_and_copies():
    base = {"a": {"x": 1, "y": 2}, "b": 3}
    merged = merge_config(base, {"a": {"y": 5}})
    assert merged == {"a": {"x": 1, "y": 5}, "b": 3}
    assert base["a"]["y"] == 2


def test_source_presets():
    vinyl = build_thresholds(Source.VINYL)
    assert vinyl["hum"]["mild"] == 20.0
    assert vinyl["clipping"] == DEFAULT_THRESHOLDS["clipping"]
    live = build_thresholds("live")
    assert live["dynamic_range"]["severe"] == 3
    assert build_thresholds(None) == build_thresholds(Source.DIGITAL)


def test_threshold_overrides_keep_siblings():
    t = build_thresholds("digital", {"loudness": {"loud": {"mild": -10.0}}})
    assert t["loudness"]["loud"] == {"mild": -10.0, "moderate": -6.0, "severe": -3.0}
    assert t["loudness"]["quiet"] == DEFAULT_THRESHOLDS["loudness"]["quiet"]


def test_unknown_source():
    with pytest.raises(InvalidConfig):
        build_thresholds("cassette")
    assert parse_source("") == Source.DIGITAL
    assert parse_source(" Vinyl ") == Source.VINYL


def test_parse_checks():
    assert parse_checks("clipping, hum") == Check.CLIPPING | Check.HUM
    assert parse_checks("") == CHECKS_ALL
    assert parse_checks(None) == CHECKS_ALL
    assert parse_checks("defects") == CHECKS_DEFECTS
    assert parse_checks("defects,loudness") & Check.LOUDNESS
    with pytest.raises(InvalidConfig):
        parse_checks("clipping,bogus")


def test_severity_parse_accepts_legacy_spelling():
    assert Severity.parse("no issue") == Severity.NONE
    assert Severity.parse("severe").rank == 3
    with pytest.raises(ValueError):
        Severity.parse("catastrophic")


def _issue(raw, check):
    issues = score_issues(raw, check)
    assert len(issues) == 1
    return issues[0]


def test_clipping_single_event_is_at_least_mild():
    raw = {"clipping": {"events": 1, "clipped_samples": 2, "longest_run": 2}}
    issue = _issue(raw, Check.CLIPPING)
    assert issue.detected
    assert issue.severity == Severity.MILD
    assert np.isclose(issue.confidence, 0.02)
    clean = _issue({"clipping": {"events": 0, "clipped_samples": 0, "longest_run": 0}},
                   Check.CLIPPING)
    assert not clean.detected
    assert clean.severity == Severity.NONE


def test_truncation_needs_loud_peak_and_rms():
    raw = {"truncation": {"final_rms_db": -25.0, "final_peak_db": -20.0, "samples_in_tail": 10}}
    assert _issue(raw, Check.TRUNCATION).severity == Severity.MODERATE
    raw["truncation"]["final_peak_db"] = -40.0
    assert not _issue(raw, Check.TRUNCATION).detected


def test_fully_silent_track_is_severe_padding():
    raw = {"silence": {"leading_sec": 5.0, "trailing_sec": 5.0, "total_duration": 5.0}}
    assert _issue(raw, Check.SILENCE_PADDING).severity == Severity.SEVERE
    raw = {"silence": {"leading_sec": 2.0, "trailing_sec": 0.0, "total_duration": 60.0}}
    assert _issue(raw, Check.SILENCE_PADDING).severity == Severity.MILD


@pytest.mark.parametrize(
    "lufs,expected",
    [(-75.0, Severity.NONE), (-14.0, Severity.NONE), (-8.0, Severity.MILD),
     (-2.0, Severity.SEVERE), (-45.0, Severity.MODERATE), (-31.0, Severity.MILD)],
)
def test_loudness_bands(lufs, expected):
    raw = {"loudness": {"integrated_lufs": lufs, "loudness_range": 5.0, "dr_score": 8,
                        "dr_value": 8.0}}
    assert _issue(raw, Check.LOUDNESS).severity == expected


def test_dynamic_range_unmeasured_is_clean():
    raw = {"loudness": {"integrated_lufs": -120.0, "loudness_range": 0.0, "dr_score": 0,
                        "dr_value": 0.0}}
    assert not _issue(raw, Check.DYNAMIC_RANGE).detected
    raw["loudness"]["dr_score"] = 5
    assert _issue(raw, Check.DYNAMIC_RANGE).severity == Severity.MODERATE


def test_dropouts_escalate_on_loud_glitches():
    raw = {"dropouts": {"delta_count": 2, "zero_run_count": 1, "dc_jump_count": 0,
                        "worst_db": -2.0}}
    assert _issue(raw, Check.DROPOUTS).severity == Severity.MODERATE
    raw["dropouts"]["worst_db"] = -20.0
    assert _issue(raw, Check.DROPOUTS).severity == Severity.MILD
    raw["dropouts"]["delta_count"] = 30
    assert _issue(raw, Check.DROPOUTS).severity == Severity.SEVERE


def test_fake_bit_depth_severity():
    raw = {"bit_depth": {"claimed": 32, "effective": 24, "is_padded": True, "samples": 1}}
    assert _issue(raw, Check.FAKE_BIT_DEPTH).severity == Severity.MILD
    raw["bit_depth"]["effective"] = 16
    assert _issue(raw, Check.FAKE_BIT_DEPTH).severity == Severity.SEVERE


def test_vinyl_tolerates_more_hum():
    raw = {"spectral": {"has_50_hz_hum": True, "has_60_hz_hum": False, "hum_level_db": 18.0}}
    digital = score_issues(raw, Check.HUM, build_thresholds("digital"))[0]
    vinyl = score_issues(raw, Check.HUM, build_thresholds("vinyl"))[0]
    assert digital.severity == Severity.MILD
    assert not vinyl.detected


def test_missing_raw_produces_no_issue():
    assert score_issues({}, CHECKS_ALL) == []


def test_build_result_counts_and_worst():
    raw = {
        "clipping": {"events": 3, "clipped_samples": 2000, "longest_run": 900},
        "dc_offset": {"offset": 0.002, "offset_db": -54.0},
    }
    result = build_result(raw, Check.CLIPPING | Check.DC_OFFSET | Check.HUM)
    assert [i.name for i in result.issues] == ["clipping", "dc-offset"]
    assert result.issue_count == 2
    assert result.worst_severity == Severity.SEVERE
    assert result.issue(Check.DC_OFFSET).severity == Severity.MILD
    assert result.issue(Check.HUM) is None
