"""Raw PCM decoding and restartable byte sources."""
from __future__ import annotations
import io
import os
import threading
from typing import BinaryIO, Callable, Iterator

import numpy as np

from pcmaudit.errors import AnalysisCancelled, InvalidConfig, ReadFailure
from pcmaudit.types import SUPPORTED_BIT_DEPTHS, PcmFormat

# Full-scale divisors: 2^(bit_depth - 1).
SCALE = {16: 32768.0, 24: 8388608.0, 32: 2147483648.0}
CHUNK_FRAMES = 4096
DB_FLOOR = -120.0

ByteSource = Callable[[], BinaryIO]


class CancelToken:
    """Cooperative cancellation flag checked at chunk boundaries."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise AnalysisCancelled("analysis cancelled")


def validate_format(fmt: PcmFormat) -> PcmFormat:
    """Reject formats the decoder cannot handle."""
    if fmt.bit_depth not in SUPPORTED_BIT_DEPTHS:
        raise InvalidConfig(f"unsupported bit depth {fmt.bit_depth} (expected 16, 24 or 32)")
    if fmt.expected_bit_depth not in SUPPORTED_BIT_DEPTHS:
        raise InvalidConfig(
            f"unsupported expected bit depth {fmt.expected_bit_depth} (expected 16, 24 or 32)"
        )
    if fmt.sample_rate <= 0:
        raise InvalidConfig(f"sample rate must be positive, got {fmt.sample_rate}")
    if fmt.channels < 1:
        raise InvalidConfig(f"channel count must be at least 1, got {fmt.channels}")
    return fmt


def to_db(value: float) -> float:
    """Convert a linear amplitude to dB, floored at -120."""
    if value > 0:
        return max(20.0 * float(np.log10(value)), DB_FLOOR)
    return DB_FLOOR


def decode_ints(data: bytes, bit_depth: int) -> np.ndarray:
    """Decode little-endian signed PCM into int64 sample values."""
    if bit_depth == 16:
        return np.frombuffer(data, dtype="<i2").astype(np.int64)
    if bit_depth == 32:
        return np.frombuffer(data, dtype="<i4").astype(np.int64)
    if bit_depth == 24:
        raw = np.frombuffer(data, dtype=np.uint8).reshape(-1, 3).astype(np.int64)
        values = raw[:, 0] | (raw[:, 1] << 8) | (raw[:, 2] << 16)
        return np.where(values & 0x800000, values - (1 << 24), values)
    raise InvalidConfig(f"unsupported bit depth {bit_depth} (expected 16, 24 or 32)")


def decode_frames(data: bytes, fmt: PcmFormat) -> np.ndarray:
    """Decode whole frames of ``data`` into a (frames, channels) float64 array."""
    validate_format(fmt)
    usable = (len(data) // fmt.frame_bytes) * fmt.frame_bytes
    ints = decode_ints(data[:usable], fmt.bit_depth)
    return ints.reshape(-1, fmt.channels).astype(np.float64) / SCALE[fmt.bit_depth]


def iter_int_frames(
    reader: BinaryIO,
    fmt: PcmFormat,
    *,
    chunk_frames: int = CHUNK_FRAMES,
    cancel: CancelToken | None = None,
) -> Iterator[np.ndarray]:
    """Yield (frames, channels) int64 blocks of whole frames until EOF.

    Bytes of a frame split across two reads are carried over; a partial
    frame left at EOF is dropped.
    """
    frame_bytes = fmt.frame_bytes
    want = frame_bytes * chunk_frames
    pending = b""
    while True:
        if cancel is not None:
            cancel.raise_if_cancelled()
        try:
            data = reader.read(want)
        except OSError as exc:
            raise ReadFailure(f"read failed: {exc}") from exc
        if not data:
            return
        if pending:
            data = pending + data
        usable = (len(data) // frame_bytes) * frame_bytes
        pending = data[usable:]
        if usable:
            ints = decode_ints(data[:usable], fmt.bit_depth)
            yield ints.reshape(-1, fmt.channels)


def iter_frames(
    reader: BinaryIO,
    fmt: PcmFormat,
    *,
    chunk_frames: int = CHUNK_FRAMES,
    cancel: CancelToken | None = None,
) -> Iterator[np.ndarray]:
    """Yield (frames, channels) float64 blocks normalized to [-1, 1]."""
    scale = SCALE[fmt.bit_depth]
    for block in iter_int_frames(reader, fmt, chunk_frames=chunk_frames, cancel=cancel):
        yield block.astype(np.float64) / scale


def bytes_source(data: bytes) -> ByteSource:
    """Restartable source over an in-memory buffer."""
    return lambda: io.BytesIO(data)


def file_source(path: str | os.PathLike) -> ByteSource:
    """Restartable source that reopens ``path`` on every call."""
    if not os.path.isfile(path):
        raise ReadFailure(f"cannot access {path}")
    return lambda: open(path, "rb")


def open_source(source: ByteSource) -> BinaryIO:
    try:
        return source()
    except OSError as exc:
        raise ReadFailure(f"cannot open source: {exc}") from exc
