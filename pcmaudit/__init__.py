"""
pcmaudit - Offline Audio Quality Audit

Analyzes raw PCM streams for clipping, fake bit depth, upsampling, lossy
transcodes, stereo problems, noise, hum, dropouts and loudness issues.
"""
from pcmaudit.version import __version__
from pcmaudit.analysis.orchestrator import analyze
from pcmaudit.io.pcm import CancelToken
from pcmaudit.types import (
    Check,
    Severity,
    Source,
    PcmFormat,
    Issue,
    Result,
    AnalysisOptions,
)

__all__ = [
    "__version__",
    "analyze",
    "CancelToken",
    "Check",
    "Severity",
    "Source",
    "PcmFormat",
    "Issue",
    "Result",
    "AnalysisOptions",
]
