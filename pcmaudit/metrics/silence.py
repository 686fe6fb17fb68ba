"""Windowed silence segment detection."""
from __future__ import annotations
from typing import BinaryIO

import numpy as np

from pcmaudit.io.pcm import CancelToken, iter_frames, to_db, validate_format
from pcmaudit.thresholds.presets import merge_config
from pcmaudit.types import PcmFormat

DEFAULT_SILENCE_CONFIG = {
    "threshold_db": -60.0,
    "min_duration_ms": 1000,
    "window_ms": 50,
}


def build_silence_config(overrides: dict | None = None) -> dict:
    """Return merged silence configuration with defaults applied."""
    return merge_config(DEFAULT_SILENCE_CONFIG, overrides)


class _SegmentTracker:
    def __init__(self, sample_rate: int, threshold_db: float, min_frames: int):
        self.sample_rate = sample_rate
        self.threshold = 10.0 ** (threshold_db / 20.0)
        self.min_frames = min_frames
        self.frame = 0
        self.segments: list[dict] = []
        self._open: int | None = None
        self._sum_sq = 0.0
        self._count = 0

    def window(self, sum_sq: float, count: int) -> None:
        self.frame += count
        start = self.frame - count
        rms = float(np.sqrt(sum_sq / count))
        if rms < self.threshold:
            if self._open is None:
                self._open = start
                self._sum_sq = 0.0
                self._count = 0
            self._sum_sq += sum_sq
            self._count += count
        elif self._open is not None:
            self._close(start)

    def finish(self) -> None:
        if self._open is not None:
            self._close(self.frame)

    def _close(self, end: int) -> None:
        start = self._open
        self._open = None
        if end - start < self.min_frames:
            return
        sr = self.sample_rate
        rms = float(np.sqrt(self._sum_sq / self._count)) if self._count else 0.0
        self.segments.append(
            {
                "start_sample": int(start),
                "end_sample": int(end),
                "start_sec": start / sr,
                "end_sec": end / sr,
                "duration_sec": (end - start) / sr,
                "rms_db": to_db(rms),
            }
        )


def analyze_silence(
    reader: BinaryIO,
    fmt: PcmFormat,
    *,
    config: dict | None = None,
    cancel: CancelToken | None = None,
) -> dict:
    """
    Find silent segments of at least ``min_duration_ms``.

    Frames are reduced to their mean square across channels and grouped
    into ``window_ms`` windows; a window is silent when its RMS is below
    ``threshold_db``. Segment boundaries fall on window boundaries, and a
    trailing partial window is judged on the frames it holds.
    """
    fmt = validate_format(fmt)
    cfg = build_silence_config(config)
    sr = fmt.sample_rate
    window_frames = max(sr * int(cfg["window_ms"]) // 1000, 1)
    min_frames = sr * int(cfg["min_duration_ms"]) // 1000
    tracker = _SegmentTracker(sr, float(cfg["threshold_db"]), min_frames)

    pending = np.zeros(0, dtype=np.float64)
    for block in iter_frames(reader, fmt, cancel=cancel):
        buf = np.concatenate((pending, np.mean(block * block, axis=1)))
        full = buf.size // window_frames
        if full:
            sums = buf[: full * window_frames].reshape(full, window_frames).sum(axis=1)
            for sum_sq in sums:
                tracker.window(float(sum_sq), window_frames)
        pending = buf[full * window_frames:]
    if pending.size:
        tracker.window(float(pending.sum()), int(pending.size))
    tracker.finish()

    segments = tracker.segments
    frames = tracker.frame
    leading = 0.0
    trailing = 0.0
    if segments and segments[0]["start_sample"] == 0:
        leading = segments[0]["duration_sec"]
    if segments and segments[-1]["end_sample"] == frames:
        trailing = segments[-1]["duration_sec"]
    return {
        "segments": segments,
        "total_silence": float(sum(seg["duration_sec"] for seg in segments)),
        "leading_sec": leading,
        "trailing_sec": trailing,
        "total_duration": frames / sr,
        "frames": frames,
    }
