"""Per-source detection thresholds and configuration merging."""
from __future__ import annotations

from pcmaudit.types import Source, parse_source

# Bands are {mild, moderate, severe}. A band whose mild value is below its
# severe value grows upward; otherwise it grows downward.
DEFAULT_THRESHOLDS = {
    "clipping": {"mild": 0, "moderate": 100, "severe": 1000},
    "truncation": {
        "peak_db": -35.0,
        "rms_db": {"mild": -40.0, "moderate": -30.0, "severe": -20.0},
    },
    "lossy_transcode": {"moderate": 0.65, "severe": 0.85},
    "dc_offset": {"mild": 0.001, "moderate": 0.01, "severe": 0.05},
    "fake_stereo": {
        "correlation": 0.98,
        "difference_db": -60.0,
        "severe_difference_db": -80.0,
    },
    "phase_issues": {"mild": 3.0, "moderate": 6.0, "severe": 9.0},
    "inverted_phase": {"correlation": -0.9, "severe_correlation": -0.95},
    "channel_imbalance": {"mild": 1.0, "moderate": 2.0, "severe": 3.0},
    "silence_padding": {"mild": 2.0, "moderate": 5.0, "severe": 15.0},
    "hum": {"mild": 15.0, "moderate": 20.0, "severe": 30.0},
    "noise_floor": {"mild": -30.0, "moderate": -20.0, "severe": -10.0},
    "inter_sample_peaks": {"mild": 0, "moderate": 100, "severe": 1000},
    "loudness": {
        "unmeasured_lufs": -70.0,
        "loud": {"mild": -9.0, "moderate": -6.0, "severe": -3.0},
        "quiet": {"mild": -30.0, "moderate": -40.0, "severe": -50.0},
    },
    "dynamic_range": {"mild": 7, "moderate": 6, "severe": 4},
    "dropouts": {
        "mild": 0,
        "moderate": 5,
        "severe": 20,
        "moderate_db": -3.0,
        "severe_db": -1.0,
    },
}

SOURCE_OVERRIDES = {
    Source.DIGITAL: {},
    Source.VINYL: {
        "hum": {"mild": 20.0, "moderate": 25.0, "severe": 35.0},
        "noise_floor": {"mild": -20.0, "moderate": -12.0, "severe": -6.0},
        "dc_offset": {"mild": 0.005, "moderate": 0.02, "severe": 0.08},
        "silence_padding": {"mild": 4.0, "moderate": 8.0, "severe": 20.0},
    },
    Source.LIVE: {
        "dynamic_range": {"mild": 5, "moderate": 4, "severe": 3},
        "noise_floor": {"mild": -25.0, "moderate": -15.0, "severe": -8.0},
    },
}


def merge_config(base: dict, overrides: dict | None) -> dict:
    """Recursively overlay ``overrides`` on a copy of ``base``."""
    if not overrides:
        return dict(base)
    merged = {**base}
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            merged[key] = merge_config(base[key], value)
        else:
            merged[key] = value
    return merged


def build_thresholds(source: Source | str | None = None, overrides: dict | None = None) -> dict:
    """Return thresholds for a recording source with optional overrides applied."""
    if not isinstance(source, Source):
        source = parse_source(source)
    merged = merge_config(DEFAULT_THRESHOLDS, SOURCE_OVERRIDES[source])
    return merge_config(merged, overrides)
