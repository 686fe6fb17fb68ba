from __future__ import annotations

import io

import numpy as np

from pcmaudit.io.pcm import CHUNK_FRAMES
from pcmaudit.metrics.dropout import (
    EVENT_DC_JUMP,
    EVENT_DELTA,
    EVENT_ZERO_RUN,
    analyze_dropouts,
    correlate_deltas,
)
from pcmaudit.types import PcmFormat
from tests.conftest import encode_float, stereo

MONO_1K = PcmFormat(sample_rate=1000, bit_depth=16, channels=1)


def _dropouts(x, fmt=MONO_1K, config=None) -> dict:
    return analyze_dropouts(io.BytesIO(encode_float(x)), fmt, config=config)


def test_correlate_single_candidate_kept():
    cands = [(0, 0.0, 0.8, 0.8)]
    assert correlate_deltas(cands, 2) == cands


def test_correlate_stereo_transient_discarded():
    cands = [(0, 0.0, 0.8, 0.8), (1, 0.0, 0.7, 0.7)]
    assert correlate_deltas(cands, 2) == []


def test_correlate_stereo_opposite_directions_kept():
    cands = [(0, 0.0, 0.8, 0.8), (1, 0.0, -0.8, 0.8)]
    assert correlate_deltas(cands, 2) == cands


def test_correlate_stereo_dissimilar_sizes_kept():
    cands = [(0, 0.0, 0.9, 0.9), (1, 0.0, 0.3, 0.3)]
    assert correlate_deltas(cands, 2) == cands


def test_correlate_multichannel_keeps_minority():
    cands = [
        (0, 0.0, 0.8, 0.8),
        (1, 0.0, 0.8, 0.8),
        (2, 0.0, 0.8, 0.8),
        (3, 0.0, -0.8, 0.8),
    ]
    assert correlate_deltas(cands, 4) == [cands[3]]


def test_single_sample_dropout():
    x = np.concatenate((np.full(100, 0.8), [0.0], np.full(100, 0.8)))
    out = _dropouts(x)
    assert out["delta_count"] == 2
    assert out["zero_run_count"] == 1
    assert out["dc_jump_count"] == 0
    assert [e["frame"] for e in out["events"]] == [100, 100, 101]
    assert [e["type"] for e in out["events"]] == [EVENT_DELTA, EVENT_ZERO_RUN, EVENT_DELTA]
    assert out["worst_db"] > -3.0
    assert np.isclose(out["longest_zero_run_ms"], 1.0)


def test_quiet_zero_run_is_gated():
    x = np.concatenate((np.full(100, 0.001), np.zeros(10), np.full(100, 0.001)))
    out = _dropouts(x)
    assert out["zero_run_count"] == 0
    assert out["delta_count"] == 0
    assert np.isclose(out["longest_zero_run_ms"], 10.0)


def test_leading_digital_silence_is_not_a_dropout():
    x = np.concatenate((np.zeros(50), np.full(100, 0.5)))
    out = _dropouts(x)
    assert out["zero_run_count"] == 0


def test_correlated_stereo_jump_is_music():
    fmt = PcmFormat(sample_rate=1000, bit_depth=16, channels=2)
    x = np.concatenate((np.zeros(10), np.full(100, 0.9)))
    assert _dropouts(stereo(x), fmt)["delta_count"] == 0
    assert _dropouts(stereo(x, np.full(110, 0.3)), fmt)["delta_count"] == 1


def test_delta_across_block_boundary():
    x = np.full(CHUNK_FRAMES * 2, 0.8)
    x[CHUNK_FRAMES] = 0.0
    out = _dropouts(x)
    assert out["delta_count"] == 2
    assert out["events"][0]["frame"] == CHUNK_FRAMES
    assert out["frames"] == CHUNK_FRAMES * 2


def test_dc_step_with_short_window():
    x = np.concatenate((np.full(100, 0.05), np.full(100, 0.55)))
    out = _dropouts(x, config={"dc_window_ms": 2.0})
    assert out["dc_jump_count"] == 2
    assert out["delta_count"] == 0
    jumps = [e for e in out["events"] if e["type"] == EVENT_DC_JUMP]
    assert [e["frame"] for e in jumps] == [100, 101]
    assert np.isclose(out["worst_db"], -12.04, atol=0.05)


def test_clean_signal_has_no_events():
    t = np.arange(2000) / 1000.0
    out = _dropouts(0.5 * np.sin(2 * np.pi * 5.0 * t) + 0.2)
    assert out["events"] == []
    assert out["worst_db"] == -120.0
