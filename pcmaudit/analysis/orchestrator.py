"""Run the analyzers a check set needs and score their results."""
from __future__ import annotations
import logging
import time
from dataclasses import dataclass
from typing import Callable

from pcmaudit.io.pcm import ByteSource, CancelToken, bytes_source, open_source, validate_format
from pcmaudit.metrics.bitdepth import analyze_bit_depth
from pcmaudit.metrics.clipping import analyze_clipping
from pcmaudit.metrics.dcoffset import analyze_dc_offset
from pcmaudit.metrics.dropout import analyze_dropouts
from pcmaudit.metrics.loudness import analyze_loudness
from pcmaudit.metrics.silence import analyze_silence
from pcmaudit.metrics.spectral import analyze_spectral
from pcmaudit.metrics.stereo import analyze_stereo
from pcmaudit.metrics.truepeak import analyze_true_peak
from pcmaudit.metrics.truncation import analyze_truncation
from pcmaudit.thresholds.presets import build_thresholds
from pcmaudit.thresholds.scoring import build_result
from pcmaudit.types import AnalysisOptions, Check, PcmFormat, Result

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AnalyzerSpec:
    name: str
    checks: Check
    run: Callable[..., dict]
    needs_seek: bool = False
    stereo_only: bool = False


ANALYZERS = (
    AnalyzerSpec("clipping", Check.CLIPPING, analyze_clipping),
    AnalyzerSpec("truncation", Check.TRUNCATION, analyze_truncation, needs_seek=True),
    AnalyzerSpec("bit_depth", Check.FAKE_BIT_DEPTH, analyze_bit_depth),
    AnalyzerSpec(
        "spectral",
        Check.FAKE_SAMPLE_RATE | Check.LOSSY_TRANSCODE | Check.HUM | Check.NOISE_FLOOR,
        analyze_spectral,
    ),
    AnalyzerSpec("dc_offset", Check.DC_OFFSET, analyze_dc_offset),
    AnalyzerSpec(
        "stereo",
        Check.FAKE_STEREO | Check.PHASE_ISSUES | Check.INVERTED_PHASE | Check.CHANNEL_IMBALANCE,
        analyze_stereo,
        stereo_only=True,
    ),
    AnalyzerSpec("silence", Check.SILENCE_PADDING, analyze_silence),
    AnalyzerSpec("true_peak", Check.INTER_SAMPLE_PEAKS, analyze_true_peak),
    AnalyzerSpec("loudness", Check.LOUDNESS | Check.DYNAMIC_RANGE, analyze_loudness),
    AnalyzerSpec("dropouts", Check.DROPOUTS, analyze_dropouts),
)


def required_analyzers(checks: Check) -> list[AnalyzerSpec]:
    """Analyzers serving at least one of ``checks``, each listed once."""
    return [spec for spec in ANALYZERS if spec.checks & checks]


def run_analyzers(
    source: ByteSource,
    fmt: PcmFormat,
    checks: Check,
    *,
    analyzer_config: dict | None = None,
    cancel: CancelToken | None = None,
) -> dict:
    """Run each needed analyzer on a fresh reader and collect the raw results.

    The stereo analyzer only runs on two-channel streams and truncation
    only on seekable readers; checks they serve then produce no issue.
    """
    analyzer_config = analyzer_config or {}
    raw = {}
    for spec in required_analyzers(checks):
        if cancel is not None:
            cancel.raise_if_cancelled()
        if spec.stereo_only and fmt.channels != 2:
            logger.debug("skipping %s: %d channels", spec.name, fmt.channels)
            continue
        reader = open_source(source)
        try:
            if spec.needs_seek and not reader.seekable():
                logger.debug("skipping %s: reader is not seekable", spec.name)
                continue
            start = time.perf_counter()
            raw[spec.name] = spec.run(
                reader, fmt, config=analyzer_config.get(spec.name), cancel=cancel
            )
            logger.debug("%s finished in %.1f ms", spec.name, (time.perf_counter() - start) * 1000)
        finally:
            reader.close()
    return raw


def analyze(
    source: ByteSource | bytes,
    fmt: PcmFormat,
    options: AnalysisOptions | None = None,
    *,
    cancel: CancelToken | None = None,
) -> Result:
    """
    Analyze a raw PCM stream and return scored issues with the raw results.

    ``source`` is a callable returning a fresh binary reader on every call
    (see :func:`pcmaudit.io.pcm.file_source`); plain bytes are wrapped.
    Any analyzer failure propagates, and cancellation raises
    :class:`pcmaudit.errors.AnalysisCancelled` instead of returning a
    partial result.
    """
    fmt = validate_format(fmt)
    options = options or AnalysisOptions()
    if isinstance(source, (bytes, bytearray, memoryview)):
        source = bytes_source(bytes(source))
    thresholds = build_thresholds(options.source, options.thresholds)
    start = time.perf_counter()
    raw = run_analyzers(
        source,
        fmt,
        options.checks,
        analyzer_config=options.analyzer_config,
        cancel=cancel,
    )
    result = build_result(raw, options.checks, thresholds)
    logger.debug(
        "analysis finished in %.1f ms: %d issues, worst %s",
        (time.perf_counter() - start) * 1000,
        result.issue_count,
        result.worst_severity.value,
    )
    return result
