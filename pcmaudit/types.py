from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum, IntFlag

from pcmaudit.errors import InvalidConfig


class Check(IntFlag):
    CLIPPING = 1 << 0
    TRUNCATION = 1 << 1
    FAKE_BIT_DEPTH = 1 << 2
    FAKE_SAMPLE_RATE = 1 << 3
    LOSSY_TRANSCODE = 1 << 4
    DC_OFFSET = 1 << 5
    FAKE_STEREO = 1 << 6
    PHASE_ISSUES = 1 << 7
    INVERTED_PHASE = 1 << 8
    CHANNEL_IMBALANCE = 1 << 9
    SILENCE_PADDING = 1 << 10
    HUM = 1 << 11
    NOISE_FLOOR = 1 << 12
    INTER_SAMPLE_PEAKS = 1 << 13
    LOUDNESS = 1 << 14
    DYNAMIC_RANGE = 1 << 15
    DROPOUTS = 1 << 16


# Declaration order is the order issues are reported in.
CHECK_NAMES: dict[Check, str] = {
    Check.CLIPPING: "clipping",
    Check.TRUNCATION: "truncation",
    Check.FAKE_BIT_DEPTH: "fake-bit-depth",
    Check.FAKE_SAMPLE_RATE: "fake-sample-rate",
    Check.LOSSY_TRANSCODE: "lossy-transcode",
    Check.DC_OFFSET: "dc-offset",
    Check.FAKE_STEREO: "fake-stereo",
    Check.PHASE_ISSUES: "phase-issues",
    Check.INVERTED_PHASE: "inverted-phase",
    Check.CHANNEL_IMBALANCE: "channel-imbalance",
    Check.SILENCE_PADDING: "silence-padding",
    Check.HUM: "hum",
    Check.NOISE_FLOOR: "noise-floor",
    Check.INTER_SAMPLE_PEAKS: "inter-sample-peaks",
    Check.LOUDNESS: "loudness",
    Check.DYNAMIC_RANGE: "dynamic-range",
    Check.DROPOUTS: "dropouts",
}

CHECKS_ALL = Check(0)
for _check in CHECK_NAMES:
    CHECKS_ALL |= _check

CHECKS_DEFECTS = (
    Check.CLIPPING
    | Check.TRUNCATION
    | Check.FAKE_BIT_DEPTH
    | Check.FAKE_SAMPLE_RATE
    | Check.LOSSY_TRANSCODE
    | Check.DC_OFFSET
    | Check.FAKE_STEREO
    | Check.PHASE_ISSUES
    | Check.INVERTED_PHASE
    | Check.SILENCE_PADDING
    | Check.DROPOUTS
)

CHECK_PRESETS = {"all": CHECKS_ALL, "defects": CHECKS_DEFECTS}
_CHECKS_BY_NAME = {name: check for check, name in CHECK_NAMES.items()}


def check_name(check: Check) -> str:
    """Return the kebab-case name of a single check."""
    return CHECK_NAMES[check]


def iter_checks(checks: Check):
    """Yield the single checks contained in a check set, in report order."""
    for check in CHECK_NAMES:
        if checks & check:
            yield check


def parse_checks(raw: str | None) -> Check:
    """Parse a comma-separated list of check names and presets."""
    result = Check(0)
    for name in (raw or "").split(","):
        name = name.strip()
        if not name:
            continue
        if name in CHECK_PRESETS:
            result |= CHECK_PRESETS[name]
        elif name in _CHECKS_BY_NAME:
            result |= _CHECKS_BY_NAME[name]
        else:
            raise InvalidConfig(f"unknown check {name!r}")
    if not result:
        return CHECKS_ALL
    return result


class Severity(str, Enum):
    NONE = "no-issue"
    MILD = "mild"
    MODERATE = "moderate"
    SEVERE = "severe"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    @classmethod
    def parse(cls, raw: str) -> "Severity":
        # Older reports spell the clean state with a space.
        if raw in ("no issue", ""):
            return cls.NONE
        return cls(raw)


_SEVERITY_RANK = {
    Severity.NONE: 0,
    Severity.MILD: 1,
    Severity.MODERATE: 2,
    Severity.SEVERE: 3,
}


class Source(str, Enum):
    DIGITAL = "digital"
    VINYL = "vinyl"
    LIVE = "live"


def parse_source(raw: str | None) -> Source:
    """Parse a source name; an empty value means digital."""
    if not raw:
        return Source.DIGITAL
    try:
        return Source(raw.strip().lower())
    except ValueError as exc:
        raise InvalidConfig(
            f"unknown source {raw!r} (expected digital, vinyl or live)"
        ) from exc


SUPPORTED_BIT_DEPTHS = (16, 24, 32)


@dataclass(frozen=True)
class PcmFormat:
    sample_rate: int
    bit_depth: int = 32
    channels: int = 2
    expected_bit_depth: int | None = None

    def __post_init__(self):
        if self.expected_bit_depth is None:
            object.__setattr__(self, "expected_bit_depth", self.bit_depth)

    @property
    def bytes_per_sample(self) -> int:
        return self.bit_depth // 8

    @property
    def frame_bytes(self) -> int:
        return self.bytes_per_sample * self.channels


@dataclass(frozen=True)
class Issue:
    check: Check
    detected: bool
    severity: Severity
    confidence: float
    summary: str

    @property
    def name(self) -> str:
        return check_name(self.check)


@dataclass(frozen=True)
class Result:
    issues: list[Issue]
    issue_count: int
    worst_severity: Severity
    raw: dict[str, dict] = field(default_factory=dict)

    def issue(self, check: Check) -> Issue | None:
        for item in self.issues:
            if item.check == check:
                return item
        return None


@dataclass(frozen=True)
class AnalysisOptions:
    checks: Check = CHECKS_ALL
    source: Source = Source.DIGITAL
    thresholds: dict | None = None
    analyzer_config: dict | None = None
