"""Stereo field metrics: correlation, side level, cancellation and balance."""
from __future__ import annotations
from typing import BinaryIO

import numpy as np

from pcmaudit.io.pcm import CancelToken, iter_frames, to_db, validate_format
from pcmaudit.types import PcmFormat

_FIELDS = (
    "correlation",
    "difference_db",
    "mono_sum_db",
    "stereo_rms_db",
    "cancellation_db",
    "left_rms_db",
    "right_rms_db",
    "imbalance_db",
)


def _empty(frames: int = 0) -> dict:
    result = {key: 0.0 for key in _FIELDS}
    result["frames"] = frames
    return result


def _rms_db(sum_sq: float, n: int) -> float:
    return to_db(float(np.sqrt(sum_sq / n)))


def analyze_stereo(
    reader: BinaryIO,
    fmt: PcmFormat,
    *,
    config: dict | None = None,
    cancel: CancelToken | None = None,
) -> dict:
    """
    Measure how the two channels of a stereo stream relate.

    Only two-channel streams are measured; any other layout, and an empty
    stream, yields a zero-filled result.
    """
    fmt = validate_format(fmt)
    if fmt.channels != 2:
        return _empty()

    # sum_l, sum_r, sum_ll, sum_rr, sum_lr, sum_diff, sum_mid
    acc = np.zeros(7, dtype=np.float64)
    n = 0
    for block in iter_frames(reader, fmt, cancel=cancel):
        left = block[:, 0]
        right = block[:, 1]
        diff = left - right
        mid = (left + right) / 2.0
        acc += (
            left.sum(),
            right.sum(),
            np.dot(left, left),
            np.dot(right, right),
            np.dot(left, right),
            np.dot(diff, diff),
            np.dot(mid, mid),
        )
        n += left.size

    if n == 0:
        return _empty()

    sum_l, sum_r, sum_ll, sum_rr, sum_lr, sum_diff, sum_mid = (float(v) for v in acc)
    cov = n * sum_lr - sum_l * sum_r
    var = (n * sum_ll - sum_l * sum_l) * (n * sum_rr - sum_r * sum_r)
    correlation = cov / float(np.sqrt(var)) if var > 0 else 0.0

    left_db = _rms_db(sum_ll, n)
    right_db = _rms_db(sum_rr, n)
    mono_db = _rms_db(sum_mid, n)
    stereo_db = _rms_db((sum_ll + sum_rr) / 2.0, n)
    return {
        "correlation": float(np.clip(correlation, -1.0, 1.0)),
        "difference_db": _rms_db(sum_diff, n),
        "mono_sum_db": mono_db,
        "stereo_rms_db": stereo_db,
        "cancellation_db": stereo_db - mono_db,
        "left_rms_db": left_db,
        "right_rms_db": right_db,
        "imbalance_db": left_db - right_db,
        "frames": n,
    }
