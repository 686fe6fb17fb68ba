"""Bit-depth authenticity: detect zero-padded sample words."""
from __future__ import annotations
from typing import BinaryIO

import numpy as np

from pcmaudit.io.pcm import CancelToken, iter_int_frames, validate_format
from pcmaudit.types import PcmFormat


def _effective_from_mask(used_bits: int, bit_depth: int) -> int:
    # Bits below a 16-bit word never toggled: 16-bit content.
    if used_bits & ((1 << (bit_depth - 16)) - 1) == 0:
        return 16
    if bit_depth == 32 and used_bits & 0xFF == 0:
        return 24
    return bit_depth


def analyze_bit_depth(
    reader: BinaryIO,
    fmt: PcmFormat,
    *,
    config: dict | None = None,
    cancel: CancelToken | None = None,
) -> dict:
    """
    Report the claimed and effective bit depth of a PCM stream.

    A 16-bit stream cannot carry padding, so it is reported as genuine
    without being read. Otherwise every sample's unsigned bit pattern is
    OR-ed into a mask; reading stops as soon as all the padding bits have
    been seen set.
    """
    fmt = validate_format(fmt)
    claimed = int(fmt.expected_bit_depth)
    if fmt.bit_depth == 16:
        return {"claimed": claimed, "effective": claimed, "is_padded": False, "samples": 0}

    word_mask = (1 << fmt.bit_depth) - 1
    genuine = 0xFF if fmt.bit_depth == 24 else 0xFFFF
    used_bits = 0
    samples = 0
    effective = None
    for block in iter_int_frames(reader, fmt, cancel=cancel):
        samples += int(block.size)
        used_bits |= int(np.bitwise_or.reduce((block & word_mask).ravel()))
        if used_bits & genuine == genuine:
            effective = fmt.bit_depth
            break
    if effective is None:
        effective = _effective_from_mask(used_bits, fmt.bit_depth)

    return {
        "claimed": claimed,
        "effective": int(effective),
        "is_padded": bool(effective < claimed),
        "samples": samples,
    }
