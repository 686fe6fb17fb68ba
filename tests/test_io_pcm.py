from __future__ import annotations

import io

import numpy as np
import pytest

from pcmaudit.errors import AnalysisCancelled, InvalidConfig, ReadFailure
from pcmaudit.io.pcm import (
    CancelToken,
    decode_frames,
    decode_ints,
    file_source,
    iter_frames,
    iter_int_frames,
    to_db,
    validate_format,
)
from pcmaudit.types import PcmFormat
from tests.conftest import encode_ints


class _TrickleReader(io.RawIOBase):
    """Returns at most ``step`` bytes per read."""

    def __init__(self, data: bytes, step: int):
        self._buf = io.BytesIO(data)
        self._step = step

    def readable(self):
        return True

    def read(self, n=-1):
        return self._buf.read(min(n, self._step) if n and n > 0 else self._step)


class _BrokenReader(io.RawIOBase):
    def readable(self):
        return True

    def read(self, n=-1):
        raise OSError("device gone")


def test_decode_ints_sign_extends_24_bit():
    values = [0, 1, -1, 8388607, -8388608, 12345, -12345]
    out = decode_ints(encode_ints(values, 24), 24)
    assert out.tolist() == values


def test_decode_frames_normalizes_and_drops_partial_frame():
    fmt = PcmFormat(sample_rate=8000, bit_depth=16, channels=2)
    data = encode_ints([[16384, -32768], [0, 32767]], 16) + b"\x01"
    frames = decode_frames(data, fmt)
    assert frames.shape == (2, 2)
    assert np.isclose(frames[0, 0], 0.5)
    assert np.isclose(frames[0, 1], -1.0)


def test_iter_int_frames_reassembles_split_frames():
    fmt = PcmFormat(sample_rate=8000, bit_depth=24, channels=2)
    values = np.arange(-300, 300).reshape(-1, 2)
    data = encode_ints(values, 24) + b"\x00\x00"
    blocks = list(iter_int_frames(_TrickleReader(data, 5), fmt, chunk_frames=7))
    out = np.vstack(blocks)
    assert np.array_equal(out, values)


def test_iter_frames_honours_cancel_token():
    fmt = PcmFormat(sample_rate=8000, bit_depth=16, channels=1)
    token = CancelToken()
    token.cancel()
    assert token.cancelled
    with pytest.raises(AnalysisCancelled):
        list(iter_frames(io.BytesIO(b"\x00" * 64), fmt, cancel=token))


def test_read_errors_become_read_failure():
    fmt = PcmFormat(sample_rate=8000, bit_depth=16, channels=1)
    with pytest.raises(ReadFailure):
        list(iter_frames(_BrokenReader(), fmt))


def test_file_source_missing_path(tmp_path):
    with pytest.raises(ReadFailure):
        file_source(tmp_path / "missing.raw")


def test_file_source_reopens(tmp_path):
    path = tmp_path / "a.raw"
    path.write_bytes(b"\x01\x02")
    source = file_source(path)
    with source() as fh:
        assert fh.read() == b"\x01\x02"
    with source() as fh:
        assert fh.read() == b"\x01\x02"


@pytest.mark.parametrize(
    "fmt",
    [
        PcmFormat(sample_rate=44100, bit_depth=8),
        PcmFormat(sample_rate=44100, bit_depth=16, expected_bit_depth=20),
        PcmFormat(sample_rate=0, bit_depth=16),
        PcmFormat(sample_rate=44100, bit_depth=16, channels=0),
    ],
)
def test_validate_format_rejects(fmt):
    with pytest.raises(InvalidConfig):
        validate_format(fmt)


def test_expected_bit_depth_defaults_to_bit_depth():
    assert PcmFormat(sample_rate=48000, bit_depth=24).expected_bit_depth == 24
    assert PcmFormat(sample_rate=48000, bit_depth=24, channels=2).frame_bytes == 6


def test_to_db_floor():
    assert to_db(0.0) == -120.0
    assert to_db(1e-9) == -120.0
    assert np.isclose(to_db(0.5), -6.0206, atol=1e-3)
