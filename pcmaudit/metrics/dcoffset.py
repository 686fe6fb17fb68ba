"""DC offset measurement."""
from __future__ import annotations
from typing import BinaryIO

import numpy as np

from pcmaudit.io.pcm import CancelToken, iter_frames, to_db, validate_format
from pcmaudit.types import PcmFormat


def analyze_dc_offset(
    reader: BinaryIO,
    fmt: PcmFormat,
    *,
    config: dict | None = None,
    cancel: CancelToken | None = None,
) -> dict:
    """Mean sample value per channel; the overall offset averages their magnitudes."""
    fmt = validate_format(fmt)
    sums = np.zeros(fmt.channels, dtype=np.float64)
    frames = 0
    for block in iter_frames(reader, fmt, cancel=cancel):
        sums += block.sum(axis=0)
        frames += block.shape[0]

    if frames == 0:
        return {
            "offset": 0.0,
            "offset_db": -120.0,
            "channels": fmt.channels,
            "samples": 0,
            "channel_offsets": [0.0] * fmt.channels,
        }

    channel_offsets = sums / frames
    offset = float(np.mean(np.abs(channel_offsets)))
    return {
        "offset": offset,
        "offset_db": to_db(offset),
        "channels": fmt.channels,
        "samples": int(frames * fmt.channels),
        "channel_offsets": [float(v) for v in channel_offsets],
    }
