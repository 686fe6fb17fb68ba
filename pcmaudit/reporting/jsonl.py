"""Batch report records: one JSON line per audio file."""
from __future__ import annotations
import gzip
import json
import logging
import os
import time
from pathlib import Path
from typing import Iterator

from pcmaudit.analysis.orchestrator import analyze
from pcmaudit.errors import ReportParseError
from pcmaudit.io.extract import DEFAULT_TIMEOUT, load_pcm, probe_file
from pcmaudit.reporting.result import result_to_dict
from pcmaudit.types import CHECKS_ALL, AnalysisOptions, Check, Source
from pcmaudit.utils.canonical_json import canonical_dumps

logger = logging.getLogger(__name__)

REPORT_NAME = "pcmaudit-report.jsonl"
AUDIO_EXTENSIONS = (".flac", ".m4a", ".wav", ".aiff", ".aif")


def collect_audio_files(folder: str | os.PathLike) -> list[Path]:
    """Supported audio files below ``folder``, sorted by path."""
    root = Path(folder)
    if not root.is_dir():
        raise ValueError(f"Folder not found: {folder}")
    return sorted(
        p for p in root.rglob("*") if p.is_file() and p.suffix.lower() in AUDIO_EXTENSIONS
    )


def infer_source(folder: str | os.PathLike, explicit: str | None = None) -> str:
    """An explicit source wins; otherwise folders named for vinyl are vinyl."""
    if explicit:
        return explicit
    if "vinyl" in str(folder).lower():
        return Source.VINYL.value
    return Source.DIGITAL.value


def _ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000.0, 3)


def build_record(
    path: str,
    *,
    checks: Check = CHECKS_ALL,
    source: Source | str = Source.DIGITAL,
    timeout: float = DEFAULT_TIMEOUT,
) -> dict:
    """
    Probe, decode and analyze one file into a report record.

    Failures never raise: a probe failure lands in ``probe_error`` and the
    file is still decoded when possible; a decode or analysis failure lands
    in ``error``.
    """
    record: dict = {"file": str(path)}
    timing = {}
    total = time.perf_counter()

    start = time.perf_counter()
    probe = None
    try:
        probe = probe_file(str(path), timeout=timeout)
        record["probe"] = probe
    except Exception as exc:
        record["probe_error"] = str(exc) or type(exc).__name__
    timing["probe_ms"] = _ms(start)

    try:
        start = time.perf_counter()
        fmt, data = load_pcm(str(path), probe=probe, timeout=timeout)
        timing["decode_ms"] = _ms(start)

        start = time.perf_counter()
        options = AnalysisOptions(checks=checks, source=Source(source))
        result = analyze(data, fmt, options)
        timing["analyze_ms"] = _ms(start)
        record["analysis"] = result_to_dict(result)
    except Exception as exc:
        logger.debug("analysis of %s failed: %s", path, exc)
        record["error"] = str(exc) or type(exc).__name__

    timing["total_ms"] = _ms(total)
    record["timing"] = timing
    return record


def redact_record(record: dict) -> dict:
    """Drop the file path and the probe's copy of it."""
    redacted = dict(record)
    redacted.pop("file", None)
    probe = redacted.get("probe")
    if isinstance(probe, dict) and isinstance(probe.get("format"), dict):
        fmt = dict(probe["format"])
        fmt.pop("filename", None)
        redacted["probe"] = {**probe, "format": fmt}
    return redacted


def write_report(records: list[dict], out_path: str | os.PathLike) -> tuple[Path, Path]:
    """Write records as JSONL plus a gzip copy; returns both paths."""
    out = Path(out_path)
    out.parent.mkdir(parents=True, exist_ok=True)
    text = "".join(canonical_dumps(record) + "\n" for record in records)
    out.write_text(text, encoding="utf-8")
    gz_path = out.with_name(out.name + ".gz")
    with gzip.open(gz_path, "wt", encoding="utf-8") as fh:
        fh.write(text)
    return out, gz_path


def read_records(path: str | os.PathLike) -> Iterator[dict]:
    """
    Yield the records of a JSONL report, gzip-compressed when named ``*.gz``.

    A line that is not a JSON object yields ``{"error": ..., "parse_error": True}``
    so readers can count it as a failed file.
    """
    opener = gzip.open if str(path).endswith(".gz") else open
    with opener(path, "rt", encoding="utf-8") as fh:
        for number, line in enumerate(fh, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                record = json.loads(line)
                if not isinstance(record, dict):
                    raise ReportParseError("record is not an object")
            except ValueError as exc:
                yield {"error": f"line {number}: {exc}", "parse_error": True}
                continue
            yield record
