"""Exception types raised by the analysis engine and its integrations."""
from __future__ import annotations


class PcmAuditError(Exception):
    """Base class for pcmaudit errors."""


class InvalidConfig(PcmAuditError, ValueError):
    """Unsupported format, unknown check or source, or a malformed option."""


class ReadFailure(PcmAuditError, OSError):
    """The byte source failed while being opened or read."""


class AnalysisCancelled(PcmAuditError):
    """The analysis was cancelled before it produced a result."""


class MissingRequirement(PcmAuditError, RuntimeError):
    """An external tool needed for decoding is not installed."""


class CommandFailure(PcmAuditError, RuntimeError):
    """An external probe or extract command failed."""


class CommandTimeout(CommandFailure):
    """An external command ran past its deadline."""


class ReportParseError(PcmAuditError, ValueError):
    """A report line could not be decoded."""
