"""Clipping detection metrics."""
from __future__ import annotations
from typing import BinaryIO

import numpy as np

from pcmaudit.io.pcm import CancelToken, iter_int_frames, validate_format
from pcmaudit.types import PcmFormat


def rails(bit_depth: int) -> tuple[int, int]:
    """Return the (max, min) integer sample values for a bit depth."""
    return (1 << (bit_depth - 1)) - 1, -(1 << (bit_depth - 1))


def true_runs(mask: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """Return start indices and lengths of the runs of True in ``mask``."""
    if mask.size == 0 or not mask.any():
        empty = np.array([], dtype=np.int64)
        return empty, empty
    edges = np.diff(np.concatenate(([0], mask.astype(np.int8), [0])))
    starts = np.flatnonzero(edges == 1)
    ends = np.flatnonzero(edges == -1)
    return starts, ends - starts


class _RunCounter:
    """Counts rail runs for one channel, carrying an open run across chunks."""

    def __init__(self):
        self.open_run = 0
        self.events = 0
        self.clipped_samples = 0
        self.longest_run = 0

    def _record(self, lengths: np.ndarray) -> None:
        runs = lengths[lengths >= 2]
        if runs.size:
            self.events += int(runs.size)
            self.clipped_samples += int(runs.sum())
            self.longest_run = max(self.longest_run, int(runs.max()))

    def close(self) -> None:
        if self.open_run:
            self._record(np.array([self.open_run]))
        self.open_run = 0

    def feed(self, mask: np.ndarray) -> None:
        starts, lengths = true_runs(mask)
        if starts.size == 0:
            self.close()
            return
        tail_open = bool(starts[-1] + lengths[-1] == mask.size)
        if starts[0] == 0:
            lengths[0] += self.open_run
            self.open_run = 0
        else:
            self.close()
        if tail_open:
            self._record(lengths[:-1])
            self.open_run = int(lengths[-1])
        else:
            self._record(lengths)

    def stats(self, channel: int) -> dict:
        return {
            "channel": channel,
            "events": self.events,
            "clipped_samples": self.clipped_samples,
            "longest_run": self.longest_run,
        }


def analyze_clipping(
    reader: BinaryIO,
    fmt: PcmFormat,
    *,
    config: dict | None = None,
    cancel: CancelToken | None = None,
) -> dict:
    """Count runs of two or more consecutive full-scale samples per channel."""
    fmt = validate_format(fmt)
    hi, lo = rails(fmt.bit_depth)
    counters = [_RunCounter() for _ in range(fmt.channels)]
    samples = 0
    for block in iter_int_frames(reader, fmt, cancel=cancel):
        samples += int(block.size)
        at_rail = (block == hi) | (block == lo)
        for ch, counter in enumerate(counters):
            counter.feed(at_rail[:, ch])
    for counter in counters:
        counter.close()

    return {
        "events": sum(c.events for c in counters),
        "clipped_samples": sum(c.clipped_samples for c in counters),
        "longest_run": max((c.longest_run for c in counters), default=0),
        "samples": samples,
        "channels": [c.stats(idx) for idx, c in enumerate(counters)],
    }
