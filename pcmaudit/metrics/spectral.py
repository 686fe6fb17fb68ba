"""Spectral analysis: sample-rate authenticity, lossy transcodes, hum and noise floor.

The stream is mixed to mono and buffered, then up to ``windows_max`` Hann
windows of ``fft_size`` samples are spread evenly across it. The averaged
magnitude spectrum drives the brick-wall checks; the per-window spectra
drive the checks that need temporal behaviour (hum steadiness, quiet-window
noise, cutoff consistency).
"""
from __future__ import annotations
from functools import lru_cache
from typing import BinaryIO

import numpy as np

from pcmaudit.io.pcm import CancelToken, iter_frames, to_db, validate_format
from pcmaudit.thresholds.presets import merge_config
from pcmaudit.types import PcmFormat

DEFAULT_SPECTRAL_CONFIG = {
    "fft_size": 8192,
    "windows_max": 100,
    "noise_flatness_cutoff": 0.4,
    "hum_min_spike_db": 15.0,
    "hum_max_cv": 0.3,
    "hum_min_sharpness_db": 6.0,
}

# (sample rate, nyquist) of the rates an upsampled file may come from.
UPSAMPLE_SOURCES = (
    (44100, 22050.0),
    (48000, 24000.0),
    (88200, 44100.0),
    (96000, 48000.0),
)

TRANSCODE_CUTOFFS = (
    (15500.0, "AAC 128k"),
    (16000.0, "MP3 128k"),
    (17500.0, "MP3 160k"),
    (18000.0, "MP3/AAC 192k"),
    (19000.0, "MP3/AAC 256k"),
    (20000.0, "MP3 320k"),
    (20500.0, "Opus 128k"),
)

BAND_FREQS = (100, 500, 1000, 2000, 4000, 8000, 12000, 16000, 20000, 22050, 24000, 30000, 40000)
HUM_HARMONICS = (1, 2, 3, 4, 5, 6)
QUIET_GATE_DB = -50.0


def build_spectral_config(overrides: dict | None = None) -> dict:
    """Return merged spectral configuration with defaults applied."""
    return merge_config(DEFAULT_SPECTRAL_CONFIG, overrides)


@lru_cache(maxsize=8)
def hann_window(size: int) -> np.ndarray:
    window = np.hanning(size)
    window.setflags(write=False)
    return window


def window_positions(total: int, fft_size: int, windows_max: int) -> list[int]:
    """Start offsets of the analysis windows.

    Every half-window hop is used when that yields at most ``windows_max``
    windows; otherwise ``windows_max`` offsets are spread evenly.
    """
    available = total - fft_size
    if available < 0:
        return []
    hop = max(fft_size // 2, 1)
    if available // hop + 1 <= windows_max:
        return list(range(0, available + 1, hop))
    if windows_max == 1:
        return [available // 2]
    return [available * i // (windows_max - 1) for i in range(windows_max)]


def magnitude_db(magnitude: np.ndarray) -> np.ndarray:
    """Linear magnitude to dB with non-positive values at -120."""
    out = np.full(magnitude.shape, -120.0)
    positive = magnitude > 0
    out[positive] = 20.0 * np.log10(magnitude[positive])
    return out


def band_average(db: np.ndarray, start_hz: float, end_hz: float, bin_hz: float) -> float:
    """Mean dB over the bins from ``start_hz`` to ``end_hz`` inclusive."""
    start = max(int(start_hz / bin_hz), 0)
    end = min(int(end_hz / bin_hz), db.size - 1)
    if start > end:
        return -120.0
    return float(db[start:end + 1].mean())


def detect_brick_wall(db: np.ndarray, freq: float, bin_hz: float) -> tuple[float, float]:
    """Return (drop_db, sharpness_db_per_octave) of a cutoff at ``freq``."""
    below = band_average(db, freq - 1500, freq - 500, bin_hz)
    above = band_average(db, freq + 500, freq + 1500, bin_hz)
    drop = below - above
    sharpness = 0.0
    if drop > 10:
        sharpness = drop / float(np.log2((freq + 1000) / (freq - 1000)))
    return drop, sharpness


def spectral_flatness(magnitudes: np.ndarray) -> float:
    """Geometric over arithmetic mean of the positive magnitudes."""
    positive = magnitudes[magnitudes > 0]
    if positive.size == 0:
        return 0.0
    return float(np.exp(np.mean(np.log(positive))) / np.mean(positive))


def spectral_centroid(magnitude: np.ndarray, bin_hz: float) -> float:
    total = float(magnitude.sum())
    if total == 0:
        return 0.0
    freqs = np.arange(magnitude.size) * bin_hz
    return float(np.dot(freqs, magnitude) / total)


def band_energy(db: np.ndarray, bin_hz: float, nyquist: float, ref_level: float) -> list[dict]:
    bands = []
    for freq in BAND_FREQS:
        if freq >= nyquist:
            break
        level = band_average(db, freq * 0.9, freq * 1.1, bin_hz)
        bands.append({"freq_hz": float(freq), "energy_db": level - ref_level})
    return bands


def hum_spike(
    window_db: np.ndarray,
    fundamental: float,
    bin_hz: float,
    min_sharpness_db: float,
) -> tuple[float, float]:
    """
    Return (mean spike dB, coefficient of variation) of mains hum at ``fundamental``.

    For each window the spike is the largest harmonic peak above its
    surrounding bins. Harmonics whose peak is not narrow (it does not stand
    ``min_sharpness_db`` above the bins just outside it) do not count.
    """
    count, bins = window_db.shape
    if count == 0:
        return 0.0, 1.0
    spikes = np.zeros(count)
    for harmonic in HUM_HARMONICS:
        b = int(fundamental * harmonic / bin_hz)
        if b <= 5 or b >= bins - 5:
            continue
        peak = window_db[:, b]
        adjacent = (window_db[:, b - 1] + window_db[:, b + 1]) / 2.0
        surround = [i for i in range(b - 5, b + 6) if abs(i - b) > 1]
        spike = peak - window_db[:, surround].mean(axis=1)
        spike = np.where(peak - adjacent >= min_sharpness_db, spike, 0.0)
        spikes = np.maximum(spikes, spike)
    mean = float(spikes.mean())
    cv = float(spikes.std()) / mean if mean > 0 else 1.0
    return mean, cv


def cutoff_consistency(window_db: np.ndarray, cutoff: float, bin_hz: float) -> float | None:
    """Stddev in Hz of the steepest per-window drop near ``cutoff``, if enough windows show one."""
    bins = window_db.shape[1]
    lo = max(int((cutoff - 2000) / bin_hz), 0)
    hi = min(int((cutoff + 2000) / bin_hz), bins - 3)
    if hi < lo or window_db.shape[0] == 0:
        return None
    seg = window_db[:, lo:hi + 3]
    drops = seg[:, :-2] - seg[:, 2:]
    steepest = np.argmax(drops, axis=1)
    size = drops[np.arange(drops.shape[0]), steepest]
    freqs = (lo + steepest[size > 5.0]) * bin_hz
    if freqs.size < 3:
        return None
    return float(np.std(freqs))


def _detect_upsampling(result: dict, db: np.ndarray, bin_hz: float, nyquist: float) -> None:
    best_sharpness = 0.0
    best = None
    for rate, source_nyquist in UPSAMPLE_SOURCES:
        if source_nyquist >= nyquist:
            continue
        drop, sharpness = detect_brick_wall(db, source_nyquist, bin_hz)
        if drop > 20 and sharpness > best_sharpness:
            best_sharpness = sharpness
            best = (rate, source_nyquist)
    if best is not None and best_sharpness > 40:
        result["is_upsampled"] = True
        result["effective_rate"] = best[0]
        result["upsample_cutoff"] = best[1]
        result["upsample_sharpness"] = best_sharpness


def _detect_transcode(
    result: dict,
    db: np.ndarray,
    window_db: np.ndarray,
    bin_hz: float,
    nyquist: float,
    ref_level: float,
) -> None:
    best_sharpness = 0.0
    best = None
    for cutoff, codec in TRANSCODE_CUTOFFS:
        if cutoff >= nyquist:
            continue
        if result["is_upsampled"] and abs(cutoff - result["upsample_cutoff"]) < 2000:
            continue
        drop, sharpness = detect_brick_wall(db, cutoff, bin_hz)
        if drop > 15 and sharpness > best_sharpness:
            best_sharpness = sharpness
            best = (cutoff, codec)
    if best is None or best_sharpness <= 30:
        return

    cutoff, codec = best
    result["transcode_cutoff"] = cutoff
    result["transcode_sharpness"] = best_sharpness
    result["likely_codec"] = codec

    confidence = 0.95
    # A cutoff pinned to the same bin in every window is a fixed filter.
    consistency = cutoff_consistency(window_db, cutoff, bin_hz)
    result["cutoff_consistency_hz"] = consistency
    if consistency is not None and consistency < 50.0:
        confidence -= 0.20 * (1.0 - consistency / 50.0)
    if cutoff + 500 < nyquist - 500:
        ultrasonic = band_average(db, cutoff + 500, nyquist - 500, bin_hz) - ref_level
        if ultrasonic > -50.0:
            result["has_ultrasonic_content"] = True
            confidence -= 0.40
    if cutoff >= 20000:
        confidence -= min(0.10 + (cutoff - 20000) / 5000 * 0.10, 0.20)
    if best_sharpness < 40:
        confidence -= 0.10
    confidence = float(np.clip(confidence, 0.0, 1.0))
    result["transcode_confidence"] = confidence
    result["is_transcode"] = confidence >= 0.5


def _noise_floor(
    magnitudes: np.ndarray,
    rms: np.ndarray,
    db: np.ndarray,
    bin_hz: float,
    nyquist: float,
    ref_level: float,
    flatness_cutoff: float,
) -> tuple[float, float]:
    """Return (noise_floor_db relative to the 1-10 kHz level, HF flatness)."""
    bins = magnitudes.shape[1]
    hf_start = int(14000 / bin_hz)
    hf_end = int(min(18000.0, nyquist - 500) / bin_hz)
    if hf_start >= bins or hf_end <= hf_start:
        return -120.0, 0.0

    quiet = np.argsort(rms, kind="stable")[: max(rms.size // 5, 1)]
    use_quiet = to_db(float(rms[quiet].mean())) > QUIET_GATE_DB
    if use_quiet:
        avg_hf = float(magnitudes[quiet, hf_start:hf_end].mean(axis=1).mean())
        hf_db = 20.0 * float(np.log10(avg_hf)) - ref_level if avg_hf > 0 else -120.0
        flatness = float(np.mean([
            spectral_flatness(magnitudes[w, hf_start:hf_end]) for w in quiet
        ]))
    else:
        hf_db = band_average(db, 14000, 18000, bin_hz) - ref_level
        flatness = spectral_flatness(magnitudes[:, hf_start:hf_end].mean(axis=0))

    # Tonal HF is quiet program material rather than noise.
    if flatness < flatness_cutoff:
        hf_db = min(hf_db, -40.0)
    return hf_db, flatness


def _empty_result(sample_rate: int, frames: int) -> dict:
    return {
        "claimed_rate": sample_rate,
        "frames": frames,
        "windows": 0,
        "is_upsampled": False,
        "effective_rate": sample_rate,
        "upsample_cutoff": 0.0,
        "upsample_sharpness": 0.0,
        "is_transcode": False,
        "transcode_cutoff": 0.0,
        "transcode_sharpness": 0.0,
        "likely_codec": "",
        "transcode_confidence": 0.0,
        "cutoff_consistency_hz": None,
        "has_ultrasonic_content": False,
        "has_50_hz_hum": False,
        "has_60_hz_hum": False,
        "hum_level_db": 0.0,
        "noise_floor_db": -120.0,
        "noise_flatness": 0.0,
        "spectral_centroid": 0.0,
        "band_energy": [],
    }


def analyze_spectral(
    reader: BinaryIO,
    fmt: PcmFormat,
    *,
    config: dict | None = None,
    cancel: CancelToken | None = None,
) -> dict:
    """Run every spectral check over a PCM stream."""
    fmt = validate_format(fmt)
    cfg = build_spectral_config(config)
    fft_size = int(cfg["fft_size"])
    sr = fmt.sample_rate

    parts = [block.mean(axis=1) for block in iter_frames(reader, fmt, cancel=cancel)]
    mono = np.concatenate(parts) if parts else np.zeros(0)
    result = _empty_result(sr, int(mono.size))
    positions = window_positions(mono.size, fft_size, int(cfg["windows_max"]))
    if not positions:
        return result

    segments = np.stack([mono[pos:pos + fft_size] for pos in positions])
    rms = np.sqrt(np.mean(segments * segments, axis=1))
    magnitudes = np.abs(np.fft.rfft(segments * hann_window(fft_size), axis=1))
    average = magnitudes.mean(axis=0)
    db = magnitude_db(average)
    window_db = magnitude_db(magnitudes)

    bin_hz = sr / fft_size
    nyquist = sr / 2.0
    ref_level = band_average(db, 1000, 10000, bin_hz)
    result["windows"] = len(positions)

    if sr > 44100:
        _detect_upsampling(result, db, bin_hz, nyquist)
    _detect_transcode(result, db, window_db, bin_hz, nyquist, ref_level)

    min_spike = float(cfg["hum_min_spike_db"])
    max_cv = float(cfg["hum_max_cv"])
    sharpness = float(cfg["hum_min_sharpness_db"])
    for fundamental, key in ((50.0, "has_50_hz_hum"), (60.0, "has_60_hz_hum")):
        spike, cv = hum_spike(window_db, fundamental, bin_hz, sharpness)
        if spike > min_spike and cv < max_cv:
            result[key] = True
            result["hum_level_db"] = max(result["hum_level_db"], spike)

    result["noise_floor_db"], result["noise_flatness"] = _noise_floor(
        magnitudes, rms, db, bin_hz, nyquist, ref_level, float(cfg["noise_flatness_cutoff"])
    )
    result["spectral_centroid"] = spectral_centroid(average, bin_hz)
    result["band_energy"] = band_energy(db, bin_hz, nyquist, ref_level)
    return result
