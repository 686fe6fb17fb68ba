"""Dropout and glitch detection: sample jumps, digital zero runs and DC steps."""
from __future__ import annotations
from typing import BinaryIO

import numpy as np

from pcmaudit.io.pcm import CancelToken, iter_frames, to_db, validate_format
from pcmaudit.metrics.clipping import true_runs
from pcmaudit.thresholds.presets import merge_config
from pcmaudit.types import PcmFormat

DEFAULT_DROPOUT_CONFIG = {
    "delta_threshold": 0.6,
    "delta_near_zero": 0.01,
    "zero_run_min_ms": 1.0,
    "zero_run_quiet_db": -50.0,
    "dc_window_ms": 50.0,
    "dc_jump_threshold": 0.1,
}

EVENT_DELTA = "delta"
EVENT_ZERO_RUN = "zero_run"
EVENT_DC_JUMP = "dc_jump"


def build_dropout_config(overrides: dict | None = None) -> dict:
    """Return merged dropout configuration with defaults applied."""
    return merge_config(DEFAULT_DROPOUT_CONFIG, overrides)


def _event(frame: int, channel: int, kind: str, severity: float, sr: int,
           duration_ms: float = 0.0) -> dict:
    return {
        "frame": int(frame),
        "time_sec": frame / sr,
        "channel": int(channel),
        "type": kind,
        "severity": float(severity),
        "duration_ms": float(duration_ms),
    }


def correlate_deltas(candidates: list[tuple], channels: int) -> list[tuple]:
    """
    Keep the delta candidates of one frame that look like real dropouts.

    Each candidate is ``(channel, prev, cur, delta)``. A jump shared by the
    channels in the same direction is a musical transient: two stereo jumps
    of similar size are discarded, and with more channels only the
    minority direction survives once either direction holds a majority.
    """
    if len(candidates) == 1:
        return candidates
    if channels == 2 and len(candidates) == 2:
        (_, prev0, cur0, d0), (_, prev1, cur1, d1) = candidates
        same_direction = (cur0 - prev0 > 0) == (cur1 - prev1 > 0)
        if same_direction and min(d0, d1) > max(d0, d1) * 0.5:
            return []
    if channels > 2:
        positive = [c for c in candidates if c[2] - c[1] > 0]
        negative = [c for c in candidates if not c[2] - c[1] > 0]
        majority = (channels + 1) // 2
        if len(positive) >= majority or len(negative) >= majority:
            if len(positive) < len(negative):
                return positive
            if len(negative) < len(positive):
                return negative
            return []
    return candidates


class _ZeroRuns:
    """Tracks exact-zero runs of one channel, carrying an open run across blocks."""

    def __init__(self, channel: int, min_frames: int, quiet_db: float, sr: int):
        self.channel = channel
        self.min_frames = min_frames
        self.quiet_db = quiet_db
        self.sr = sr
        self.open_start = -1
        self.open_db = -120.0
        self.longest = 0
        self.events: list[dict] = []

    def _close(self, starts: np.ndarray, ends: np.ndarray, levels: np.ndarray) -> None:
        if starts.size == 0:
            return
        lengths = ends - starts
        self.longest = max(self.longest, int(lengths.max()))
        keep = (lengths >= self.min_frames) & (levels >= self.quiet_db)
        for start, length in zip(starts[keep], lengths[keep]):
            self.events.append(
                _event(start, self.channel, EVENT_ZERO_RUN, length / self.sr, self.sr,
                       duration_ms=length / self.sr * 1000.0)
            )

    def feed(self, is_zero: np.ndarray, first: int, levels_at) -> None:
        starts, lengths = true_runs(is_zero)
        if self.open_start >= 0 and (starts.size == 0 or starts[0] != 0):
            self._close(np.array([self.open_start]), np.array([first]),
                        np.array([self.open_db]))
            self.open_start = -1
        if starts.size == 0:
            return
        ends = first + starts + lengths
        levels = levels_at(starts)
        starts = first + starts
        if self.open_start >= 0:
            starts[0] = self.open_start
            levels[0] = self.open_db
            self.open_start = -1
        if ends[-1] == first + is_zero.size:
            self.open_start = int(starts[-1])
            self.open_db = float(levels[-1])
            starts, ends, levels = starts[:-1], ends[:-1], levels[:-1]
        self._close(starts, ends, levels)

    def finish(self, total: int) -> None:
        if self.open_start >= 0:
            self._close(np.array([self.open_start]), np.array([total]),
                        np.array([self.open_db]))
            self.open_start = -1


def analyze_dropouts(
    reader: BinaryIO,
    fmt: PcmFormat,
    *,
    config: dict | None = None,
    cancel: CancelToken | None = None,
) -> dict:
    """
    Detect three kinds of playback or transfer glitch.

    * ``delta``: a jump larger than ``delta_threshold`` between consecutive
      samples where one side is near zero, filtered across channels by
      :func:`correlate_deltas`.
    * ``zero_run``: at least ``zero_run_min_ms`` of exact digital zero that
      starts while the preceding ``dc_window_ms`` is louder than
      ``zero_run_quiet_db``.
    * ``dc_jump``: a step in the ``dc_window_ms`` rolling mean larger than
      ``dc_jump_threshold`` from one sample to the next.
    """
    fmt = validate_format(fmt)
    cfg = build_dropout_config(config)
    sr = fmt.sample_rate
    channels = fmt.channels
    window = max(int(sr * float(cfg["dc_window_ms"]) / 1000), 1)
    min_zero = max(int(sr * float(cfg["zero_run_min_ms"]) / 1000), 1)
    delta_threshold = float(cfg["delta_threshold"])
    near_zero = float(cfg["delta_near_zero"])
    dc_threshold = float(cfg["dc_jump_threshold"])

    zero_runs = [
        _ZeroRuns(ch, min_zero, float(cfg["zero_run_quiet_db"]), sr) for ch in range(channels)
    ]
    events: list[dict] = []
    delta_count = 0
    dc_jump_count = 0
    tail = np.zeros((0, channels), dtype=np.float64)
    prev = None
    first = 0

    for block in iter_frames(reader, fmt, cancel=cancel):
        n = block.shape[0]
        # Samples preceding each row of the block.
        if prev is None:
            before = np.vstack((block[:1], block[:-1]))
        else:
            before = np.vstack((prev, block[:-1]))
        delta = np.abs(block - before)
        mask = (delta > delta_threshold) & (
            (np.abs(before) < near_zero) | (np.abs(block) < near_zero)
        )
        if prev is None:
            mask[0] = False
        for row in np.flatnonzero(mask.any(axis=1)):
            candidates = [
                (ch, float(before[row, ch]), float(block[row, ch]), float(delta[row, ch]))
                for ch in np.flatnonzero(mask[row])
            ]
            for ch, _, _, size in correlate_deltas(candidates, channels):
                events.append(_event(first + row, ch, EVENT_DELTA, size, sr))
                delta_count += 1

        ext = np.vstack((tail, block))
        k = tail.shape[0]
        csum = np.vstack((np.zeros((1, channels)), np.cumsum(ext * ext, axis=0)))

        for ch, tracker in enumerate(zero_runs):
            def levels_at(starts, ch=ch):
                # RMS of the window preceding each run start.
                count = np.minimum(first + starts, window)
                sums = csum[k + starts, ch] - csum[k + starts - count, ch]
                rms = np.sqrt(np.maximum(sums, 0.0) / np.maximum(count, 1))
                with np.errstate(divide="ignore"):
                    db = np.where(rms > 0, 20.0 * np.log10(rms), -120.0)
                return np.where(count > 0, db, -120.0)

            tracker.feed(block[:, ch] == 0.0, first, levels_at)

        idx = np.arange(n) + k
        idx = idx[idx >= window]
        if idx.size:
            steps = np.abs(ext[idx] - ext[idx - window]) / window
            for row, ch in zip(*np.nonzero(steps > dc_threshold)):
                frame = first + int(idx[row]) - k
                events.append(_event(frame, ch, EVENT_DC_JUMP, steps[row, ch], sr))
                dc_jump_count += 1

        tail = ext[-window:]
        prev = block[-1:]
        first += n

    for tracker in zero_runs:
        tracker.finish(first)
        events.extend(tracker.events)
    events.sort(key=lambda e: (e["frame"], e["channel"]))

    worst = max(
        (e["severity"] for e in events if e["type"] != EVENT_ZERO_RUN), default=0.0
    )
    longest = max((t.longest for t in zero_runs), default=0)
    return {
        "delta_count": delta_count,
        "zero_run_count": sum(len(t.events) for t in zero_runs),
        "dc_jump_count": dc_jump_count,
        "worst_db": to_db(worst),
        "longest_zero_run_ms": longest / sr * 1000.0,
        "frames": first,
        "events": events,
    }
