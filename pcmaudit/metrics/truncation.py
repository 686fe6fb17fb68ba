"""Tail level measurement for detecting abruptly cut audio."""
from __future__ import annotations
import io
from typing import BinaryIO

import numpy as np

from pcmaudit.errors import InvalidConfig, ReadFailure
from pcmaudit.io.pcm import CancelToken, iter_frames, to_db, validate_format
from pcmaudit.thresholds.presets import merge_config
from pcmaudit.types import PcmFormat

DEFAULT_TRUNCATION_CONFIG = {
    "window_ms": 50,
}


def build_truncation_config(overrides: dict | None = None) -> dict:
    """Return merged truncation configuration with defaults applied."""
    return merge_config(DEFAULT_TRUNCATION_CONFIG, overrides)


def tail_offset(size: int, fmt: PcmFormat, window_ms: int) -> int:
    """Byte offset where the final ``window_ms`` of the stream begins."""
    tail_bytes = fmt.sample_rate * int(window_ms) // 1000 * fmt.frame_bytes
    start = max(size - tail_bytes, 0)
    return start - start % fmt.frame_bytes


def analyze_truncation(
    reader: BinaryIO,
    fmt: PcmFormat,
    *,
    config: dict | None = None,
    cancel: CancelToken | None = None,
) -> dict:
    """Measure peak and RMS over the last ``window_ms`` of the stream.

    Needs a seekable reader. All channels of the tail are pooled.
    """
    fmt = validate_format(fmt)
    cfg = build_truncation_config(config)
    if not reader.seekable():
        raise InvalidConfig("truncation analysis requires a seekable reader")
    try:
        size = reader.seek(0, io.SEEK_END)
        reader.seek(tail_offset(size, fmt, cfg["window_ms"]))
    except OSError as exc:
        raise ReadFailure(f"seek failed: {exc}") from exc

    peak = 0.0
    sum_sq = 0.0
    count = 0
    for block in iter_frames(reader, fmt, cancel=cancel):
        if block.size:
            peak = max(peak, float(np.max(np.abs(block))))
            sum_sq += float(np.sum(block * block))
            count += int(block.size)

    rms = float(np.sqrt(sum_sq / count)) if count else 0.0
    return {
        "final_rms_db": to_db(rms),
        "final_peak_db": to_db(peak),
        "samples_in_tail": count,
    }
