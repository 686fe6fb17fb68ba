"""Loudness (ITU-R BS.1770 / EBU R128) and DR measurement.

K-weighting is applied as two cascaded biquads run with ``scipy.signal.lfilter``
so the filter state carries across decode blocks. Momentary (400 ms) and
short-term (3 s) powers are sampled every 100 ms; DR uses non-overlapping
3 s blocks.
"""
from __future__ import annotations
import math
from typing import BinaryIO

import numpy as np
from scipy.signal import lfilter

from pcmaudit.io.pcm import CancelToken, iter_frames, to_db, validate_format
from pcmaudit.types import PcmFormat

ABSOLUTE_GATE_LUFS = -70.0
RELATIVE_GATE_LU = 10.0
LRA_RELATIVE_GATE_LU = 20.0
LUFS_FLOOR = -120.0


def k_weighting_filters(sample_rate: int) -> tuple[tuple, tuple]:
    """Return ((b, a) pre-filter, (b, a) RLB high-pass) biquads for a sample rate."""
    sr = float(sample_rate)

    # High shelf modelling the head.
    k = math.tan(math.pi * 1681.974450955533 / sr)
    vh = 10.0 ** (3.999843853973347 / 20.0)
    vb = vh ** 0.4996667741545416
    q = 0.7071752369554196
    gain = 1.0 + k / q + k * k
    pre_b = np.array([
        (vh + vb * k / q + k * k) / gain,
        2.0 * (k * k - vh) / gain,
        (vh - vb * k / q + k * k) / gain,
    ])
    pre_a = np.array([1.0, 2.0 * (k * k - 1.0) / gain, (1.0 - k / q + k * k) / gain])

    k = math.tan(math.pi * 38.13547087602444 / sr)
    q = 0.5003270373238773
    gain = 1.0 + k / q + k * k
    rlb_b = np.array([1.0, -2.0, 1.0]) / gain
    rlb_a = np.array([1.0, 2.0 * (k * k - 1.0) / gain, (1.0 - k / q + k * k) / gain])
    return (pre_b, pre_a), (rlb_b, rlb_a)


def channel_weights(channels: int) -> np.ndarray:
    """Surround channels 3 and 4 weigh 1.41 in layouts of five or more channels."""
    weights = np.ones(channels, dtype=np.float64)
    if channels > 4:
        weights[3:5] = 1.41
    return weights


def power_to_lufs(power):
    with np.errstate(divide="ignore"):
        return -0.691 + 10.0 * np.log10(power)


def integrated_loudness(powers: np.ndarray) -> float:
    """Gated integrated loudness of 400 ms block powers."""
    powers = np.asarray(powers, dtype=np.float64)
    if powers.size == 0:
        return LUFS_FLOOR
    lufs = power_to_lufs(powers)
    gated = powers[lufs > ABSOLUTE_GATE_LUFS]
    if gated.size == 0:
        return LUFS_FLOOR
    threshold = float(power_to_lufs(gated.mean())) - RELATIVE_GATE_LU
    gated = powers[lufs > threshold]
    if gated.size == 0:
        return LUFS_FLOOR
    return float(power_to_lufs(gated.mean()))


def loudness_range(powers: np.ndarray) -> float:
    """LRA: spread between the 10th and 95th percentile of gated short-term loudness."""
    powers = np.asarray(powers, dtype=np.float64)
    if powers.size < 2:
        return 0.0
    lufs = power_to_lufs(powers)
    lufs = lufs[lufs > ABSOLUTE_GATE_LUFS]
    if lufs.size < 2:
        return 0.0
    lufs = np.sort(lufs[lufs > lufs.mean() - LRA_RELATIVE_GATE_LU])
    if lufs.size < 2:
        return 0.0
    n = lufs.size
    return float(lufs[int(n * 0.95)] - lufs[int(n * 0.10)])


def dynamic_range(blocks: list[tuple[float, float]]) -> tuple[int, float, float, float]:
    """
    Compute (score, value, peak_db, rms_db) from (peak, rms) DR blocks.

    The peak is the second-highest block peak; the RMS averages the loudest
    fifth of the blocks. The score is the rounded value clamped to 1..20.
    """
    if not blocks:
        return 0, 0.0, -120.0, -120.0
    peaks = sorted((b[0] for b in blocks), reverse=True)
    peak = peaks[1] if len(peaks) > 1 else peaks[0]
    rms_values = sorted((b[1] for b in blocks), reverse=True)
    top = max(len(rms_values) // 5, 1)
    rms = sum(rms_values[:top]) / top
    if rms == 0:
        return 0, 0.0, -120.0, -120.0
    value = 20.0 * math.log10(peak / rms) if peak > 0 else -120.0
    score = min(max(int(math.floor(value + 0.5)), 1), 20)
    return score, value, to_db(peak), to_db(rms)


class _DrBlocks:
    def __init__(self, size: int, channels: int):
        self.size = size
        self.channels = channels
        self.blocks: list[tuple[float, float]] = []
        self._sum = 0.0
        self._peak = 0.0
        self._count = 0

    def feed(self, power: np.ndarray, peak: np.ndarray) -> None:
        pos = 0
        while pos < power.size:
            take = min(self.size - self._count, power.size - pos)
            self._sum += float(power[pos:pos + take].sum()) / self.channels
            self._peak = max(self._peak, float(peak[pos:pos + take].max()))
            self._count += take
            pos += take
            if self._count >= self.size:
                self._emit()

    def _emit(self) -> None:
        self.blocks.append((self._peak, math.sqrt(self._sum / self._count)))
        self._sum = 0.0
        self._peak = 0.0
        self._count = 0

    def finish(self, sample_rate: int) -> None:
        # A trailing partial block counts once it holds more than a second.
        if self._count > sample_rate:
            self._emit()


def analyze_loudness(
    reader: BinaryIO,
    fmt: PcmFormat,
    *,
    config: dict | None = None,
    cancel: CancelToken | None = None,
) -> dict:
    """Measure integrated loudness, maxima, LRA and DR of a PCM stream."""
    fmt = validate_format(fmt)
    sr = fmt.sample_rate
    channels = fmt.channels
    (pre_b, pre_a), (rlb_b, rlb_a) = k_weighting_filters(sr)
    weights = channel_weights(channels)
    zi_pre = np.zeros((2, channels))
    zi_rlb = np.zeros((2, channels))

    momentary_size = max(sr * 400 // 1000, 1)
    short_size = max(3 * sr, 1)
    hop = max(sr * 100 // 1000, 1)
    dr = _DrBlocks(short_size, channels)

    momentary: list[np.ndarray] = []
    short_term: list[np.ndarray] = []
    tail = np.zeros(0, dtype=np.float64)
    frames = 0

    for block in iter_frames(reader, fmt, cancel=cancel):
        y, zi_pre = lfilter(pre_b, pre_a, block, axis=0, zi=zi_pre)
        y, zi_rlb = lfilter(rlb_b, rlb_a, y, axis=0, zi=zi_rlb)
        power = (y * y) @ weights
        dr.feed(power, np.max(np.abs(block), axis=1))

        ext = np.concatenate((tail, power))
        k = tail.size
        csum = np.concatenate(([0.0], np.cumsum(ext)))
        # Frame counts (1-based) at which a hop completes inside this block.
        ends = np.arange((frames // hop + 1) * hop, frames + power.size + 1, hop)
        if ends.size:
            pos = ends - frames + k
            full = ends >= momentary_size
            momentary.append(
                (csum[pos[full]] - csum[pos[full] - momentary_size]) / momentary_size
            )
            full = ends >= short_size
            short_term.append((csum[pos[full]] - csum[pos[full] - short_size]) / short_size)

        tail = ext[-short_size:]
        frames += power.size

    dr.finish(sr)
    momentary_powers = np.concatenate(momentary) if momentary else np.zeros(0)
    short_powers = np.concatenate(short_term) if short_term else np.zeros(0)
    momentary_max = max(float(np.max(power_to_lufs(momentary_powers))), LUFS_FLOOR) \
        if momentary_powers.size else LUFS_FLOOR
    short_term_max = max(float(np.max(power_to_lufs(short_powers))), LUFS_FLOOR) \
        if short_powers.size else LUFS_FLOOR
    score, value, peak_db, rms_db = dynamic_range(dr.blocks)

    return {
        "integrated_lufs": integrated_loudness(momentary_powers),
        "short_term_max": short_term_max,
        "momentary_max": momentary_max,
        "loudness_range": loudness_range(short_powers),
        "dr_score": score,
        "dr_value": value,
        "peak_db": peak_db,
        "rms_db": rms_db,
        "frames": frames,
    }
