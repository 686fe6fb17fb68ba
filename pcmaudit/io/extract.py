"""Container probing and PCM extraction for encoded audio files.

WAV, FLAC and AIFF decode through soundfile; anything else (and anything
soundfile refuses) goes through ffprobe and ffmpeg. Either way the result
is 32-bit little-endian PCM with the source's real bit depth recorded as
``expected_bit_depth``.
"""
from __future__ import annotations
import json
import logging
import shutil
import subprocess

import numpy as np

from pcmaudit.errors import CommandFailure, CommandTimeout, MissingRequirement, ReadFailure
from pcmaudit.types import PcmFormat

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 60.0

_SUBTYPE_BITS = {
    "PCM_S8": 16,
    "PCM_U8": 16,
    "PCM_16": 16,
    "PCM_24": 24,
    "PCM_32": 32,
}


def _require(tool: str) -> str:
    path = shutil.which(tool)
    if not path:
        raise MissingRequirement(f"{tool} not found on PATH")
    return path


def _run(cmd: list[str], timeout: float) -> subprocess.CompletedProcess:
    logger.debug("running %s", " ".join(cmd))
    try:
        proc = subprocess.run(cmd, capture_output=True, check=False, timeout=timeout)
    except subprocess.TimeoutExpired as exc:
        raise CommandTimeout(f"{cmd[0]} timed out after {timeout:g} s") from exc
    except OSError as exc:
        raise CommandFailure(f"{cmd[0]} could not be started: {exc}") from exc
    if proc.returncode != 0:
        stderr = proc.stderr.decode("utf-8", errors="replace").strip()
        raise CommandFailure(f"{cmd[0]} exited with {proc.returncode}: {stderr}")
    return proc


def probe_file(path: str, *, timeout: float = DEFAULT_TIMEOUT) -> dict:
    """Return ffprobe's JSON description (streams and format) of ``path``."""
    ffprobe = _require("ffprobe")
    cmd = [
        ffprobe,
        "-v", "quiet",
        "-print_format", "json",
        "-show_streams",
        "-show_format",
        path,
    ]
    proc = _run(cmd, timeout)
    try:
        return json.loads(proc.stdout)
    except ValueError as exc:
        raise CommandFailure(f"ffprobe returned invalid JSON: {exc}") from exc


def find_audio_stream(probe: dict, index: int = 0) -> dict:
    """Return the ``index``-th audio stream of a probe result."""
    streams = [s for s in probe.get("streams") or [] if s.get("codec_type") == "audio"]
    if index < 0 or index >= len(streams):
        raise CommandFailure(f"no audio stream {index} (found {len(streams)})")
    return streams[index]


def _container_bits(bits: int) -> int:
    if bits <= 16:
        return 16
    if bits <= 24:
        return 24
    return 32


def format_from_stream(stream: dict) -> PcmFormat:
    """Describe the s32le PCM that ffmpeg will produce for ``stream``."""
    try:
        sample_rate = int(stream["sample_rate"])
        channels = int(stream["channels"])
    except (KeyError, TypeError, ValueError) as exc:
        raise CommandFailure(f"audio stream lacks sample rate or channels: {exc}") from exc
    expected = 32
    for key in ("bits_per_raw_sample", "bits_per_sample"):
        try:
            bits = int(stream.get(key) or 0)
        except (TypeError, ValueError):
            bits = 0
        if bits > 0:
            expected = _container_bits(bits)
            break
    return PcmFormat(
        sample_rate=sample_rate,
        bit_depth=32,
        channels=channels,
        expected_bit_depth=expected,
    )


def extract_pcm(path: str, stream_index: int = 0, *, timeout: float = DEFAULT_TIMEOUT) -> bytes:
    """Decode one audio stream of ``path`` to interleaved s32le bytes."""
    ffmpeg = _require("ffmpeg")
    cmd = [
        ffmpeg,
        "-v", "quiet",
        "-i", path,
        "-map", f"0:a:{stream_index}",
        "-f", "s32le",
        "-acodec", "pcm_s32le",
        "-",
    ]
    return _run(cmd, timeout).stdout


def _load_soundfile(path: str) -> tuple[PcmFormat, bytes]:
    try:
        import soundfile as sf
    except Exception as exc:
        raise RuntimeError("soundfile backend not available.") from exc

    info = sf.info(path)
    data, sample_rate = sf.read(path, dtype="int32", always_2d=True)
    fmt = PcmFormat(
        sample_rate=int(sample_rate),
        bit_depth=32,
        channels=int(data.shape[1]),
        expected_bit_depth=_SUBTYPE_BITS.get(info.subtype, 32),
    )
    return fmt, np.ascontiguousarray(data, dtype="<i4").tobytes()


def load_pcm(
    path: str,
    *,
    stream_index: int = 0,
    probe: dict | None = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> tuple[PcmFormat, bytes]:
    """
    Decode ``path`` to s32le PCM and describe it.

    soundfile is tried first for the first stream; on failure ffmpeg
    decodes it, reusing ``probe`` when the caller already has one.
    """
    if stream_index == 0:
        try:
            return _load_soundfile(path)
        except Exception as exc:
            logger.warning("soundfile could not decode %s (%s); falling back to ffmpeg", path, exc)
    if probe is None:
        probe = probe_file(path, timeout=timeout)
    fmt = format_from_stream(find_audio_stream(probe, stream_index))
    data = extract_pcm(path, stream_index, timeout=timeout)
    if not data:
        raise ReadFailure(f"ffmpeg produced no audio for {path}")
    return fmt, data
