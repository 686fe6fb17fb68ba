from __future__ import annotations

import sys
from pathlib import Path

import numpy as np

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def encode_ints(values, bit_depth: int) -> bytes:
    """Encode integer samples (interleaved, or a (frames, channels) array) as little-endian PCM."""
    ints = np.asarray(values, dtype=np.int64).ravel()
    if bit_depth == 16:
        return ints.astype("<i2").tobytes()
    if bit_depth == 32:
        return ints.astype("<i4").tobytes()
    if bit_depth == 24:
        u = ints & 0xFFFFFF
        out = np.empty((ints.size, 3), dtype=np.uint8)
        out[:, 0] = u & 0xFF
        out[:, 1] = (u >> 8) & 0xFF
        out[:, 2] = (u >> 16) & 0xFF
        return out.tobytes()
    raise ValueError(bit_depth)


def encode_float(x, bit_depth: int = 16) -> bytes:
    """Quantize float samples in [-1, 1] to PCM, clamped to the rails."""
    scale = float(1 << (bit_depth - 1))
    ints = np.clip(np.round(np.asarray(x, dtype=np.float64) * scale), -scale, scale - 1)
    return encode_ints(ints, bit_depth)


def sine(freq: float, seconds: float, sr: int, amp: float = 0.5) -> np.ndarray:
    t = np.arange(int(seconds * sr)) / sr
    return amp * np.sin(2.0 * np.pi * freq * t)


def stereo(left, right=None) -> np.ndarray:
    left = np.asarray(left, dtype=np.float64)
    right = left if right is None else np.asarray(right, dtype=np.float64)
    return np.column_stack((left, right))
