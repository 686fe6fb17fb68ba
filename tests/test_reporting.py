from __future__ import annotations

import gzip
import json

import pytest

from pcmaudit.errors import CommandFailure, InvalidConfig, MissingRequirement, ReportParseError
from pcmaudit.reporting import jsonl
from pcmaudit.reporting.console import render_console, render_markdown, stereo_width_label
from pcmaudit.reporting.digest import (
    build_digest,
    issue_entries,
    render_digest,
    render_issue_detail,
)
from pcmaudit.reporting.jsonl import (
    collect_audio_files,
    infer_source,
    read_records,
    redact_record,
    write_report,
)
from pcmaudit.reporting.result import issue_from_dict, result_from_dict, result_to_dict
from pcmaudit.thresholds.scoring import build_result
from pcmaudit.types import Check, PcmFormat
from pcmaudit.utils.canonical_json import canonical_dumps


def _raw() -> dict:
    return {
        "clipping": {"events": 4, "clipped_samples": 1500, "longest_run": 700},
        "dc_offset": {"offset": 0.0001, "offset_db": -80.0},
        "stereo": {
            "correlation": 0.6,
            "difference_db": -20.0,
            "mono_sum_db": -12.0,
            "stereo_rms_db": -11.0,
            "cancellation_db": 1.0,
            "left_rms_db": -10.0,
            "right_rms_db": -12.0,
            "imbalance_db": 2.0,
        },
    }


def _result():
    checks = Check.CLIPPING | Check.DC_OFFSET | Check.CHANNEL_IMBALANCE | Check.PHASE_ISSUES
    return build_result(_raw(), checks)


def test_result_to_dict_shape():
    payload = result_to_dict(_result())
    assert payload["summary"] == {"issue_count": 2, "worst_severity": "severe"}
    assert [i["check"] for i in payload["issues"]] == [
        "clipping", "dc-offset", "phase-issues", "channel-imbalance",
    ]
    assert payload["clipping"]["clipped_samples"] == 1500
    assert result_from_dict(payload).raw == _raw()


def test_issue_from_dict_rejects_unknown_check():
    with pytest.raises(ReportParseError):
        issue_from_dict({"check": "wow-flutter", "detected": True})
    with pytest.raises(ReportParseError):
        result_from_dict(["not", "an", "object"])


def test_canonical_dumps_sorts_and_rejects_nan():
    assert canonical_dumps({"b": 1, "a": 2}) == '{"a":2,"b":1}'
    with pytest.raises(ValueError):
        canonical_dumps({"x": float("nan")})


def test_collect_audio_files(tmp_path):
    (tmp_path / "sub").mkdir()
    for name in ("b.wav", "sub/a.FLAC", "notes.txt", "c.m4a"):
        (tmp_path / name).write_bytes(b"")
    found = collect_audio_files(tmp_path)
    assert [p.name for p in found] == ["b.wav", "c.m4a", "a.FLAC"]
    with pytest.raises(ValueError):
        collect_audio_files(tmp_path / "missing")


def test_infer_source():
    assert infer_source("/music/Vinyl Rips") == "vinyl"
    assert infer_source("/music/cd") == "digital"
    assert infer_source("/music/Vinyl", "live") == "live"


def test_redact_record():
    record = {"file": "/a/b.flac", "probe": {"format": {"filename": "/a/b.flac", "size": "1"}}}
    redacted = redact_record(record)
    assert "file" not in redacted
    assert redacted["probe"]["format"] == {"size": "1"}
    assert record["file"] == "/a/b.flac"


def test_write_and_read_report(tmp_path):
    records = [{"file": "a.flac", "analysis": result_to_dict(_result())}, {"file": "b", "error": "x"}]
    out, gz = write_report(records, tmp_path / "out" / "report.jsonl")
    assert out.exists() and gz.name == "report.jsonl.gz"
    assert list(read_records(out)) == records
    assert list(read_records(gz)) == records
    with gzip.open(gz, "rt", encoding="utf-8") as fh:
        assert fh.read() == out.read_text(encoding="utf-8")


def test_read_records_flags_bad_lines(tmp_path):
    path = tmp_path / "r.jsonl"
    path.write_text('{"file": "a"}\nnot json\n\n[1, 2]\n', encoding="utf-8")
    records = list(read_records(path))
    assert len(records) == 3
    assert records[0] == {"file": "a"}
    assert records[1]["parse_error"] and records[1]["error"].startswith("line 2")
    assert records[2]["parse_error"]


def _records() -> list[dict]:
    clean = build_result({"clipping": {"events": 0, "clipped_samples": 0, "longest_run": 0}},
                         Check.CLIPPING)
    return [
        {"file": "bad.flac", "error": "decode failed"},
        {"file": "clean.flac", "analysis": result_to_dict(clean)},
        {"file": "loud.flac", "analysis": result_to_dict(_result())},
        {"error": "line 9: bad", "parse_error": True},
    ]


def test_build_digest():
    digest = build_digest(_records())
    assert digest["total"] == 4
    assert digest["failed"] == 2
    assert digest["analyzed"] == 2
    assert digest["worst_severity"] == {"clean": 1, "mild": 0, "moderate": 0, "severe": 1}
    assert digest["issues_per_track"] == {0: 1, 2: 1}
    by_check = {s["check"]: s for s in digest["by_check"]}
    assert by_check["clipping"]["severe"] == 1
    assert by_check["channel-imbalance"]["moderate"] == 1
    text = render_digest(digest)
    assert "Total tracks:  4" in text
    assert "channel-imbalance" in text


def test_issue_entries_and_detail():
    entries = issue_entries(_records(), "clipping")
    assert len(entries) == 1
    assert entries[0]["file"] == "loud.flac"
    assert entries[0]["detail"]["clipped_samples"] == 1500
    text = render_issue_detail(entries, "clipping")
    assert "loud.flac" in text and "clipped_samples: 1500" in text
    assert render_issue_detail([], "hum") == "No tracks affected by hum\n"
    with pytest.raises(InvalidConfig):
        issue_entries(_records(), "wow-flutter")


def test_console_and_markdown_rendering():
    result = _result()
    text = render_console(result, label="track.flac")
    assert text.startswith("track.flac\n2 issues found (worst: severe)")
    assert "Dynamics & levels:" in text
    assert "stereo_width: Normal (correlation: 0.60)" in text
    assert "channel_imbalance: 2.0 dB (left louder)" in text
    assert "Raw measurements" not in text
    assert "Raw measurements" in render_console(result, debug=True)
    md = render_markdown(result, label="track.flac")
    assert md.startswith("# track.flac")
    assert "| **clipping** | severe |" in md


def test_stereo_width_label():
    assert stereo_width_label(0.99) == "Mono/Narrow"
    assert stereo_width_label(0.8) == "Narrow"
    assert stereo_width_label(0.3) == "Wide"
    assert stereo_width_label(-0.5) == "Very Wide"


def test_build_record_keeps_going_without_ffprobe(monkeypatch):
    def no_probe(path, timeout):
        raise MissingRequirement("ffprobe not found on PATH")

    fmt = PcmFormat(sample_rate=8000, bit_depth=16, channels=1)
    monkeypatch.setattr(jsonl, "probe_file", no_probe)
    monkeypatch.setattr(jsonl, "load_pcm", lambda path, probe, timeout: (fmt, b"\x00" * 1600))
    record = _build_record("x.wav")
    assert record["probe_error"] == "ffprobe not found on PATH"
    assert "probe" not in record
    assert record["analysis"]["summary"]["issue_count"] == 0
    assert set(record["timing"]) == {"probe_ms", "decode_ms", "analyze_ms", "total_ms"}
    json.loads(canonical_dumps(record))


def test_build_record_captures_decode_failure(monkeypatch):
    def fail(path, probe, timeout):
        raise CommandFailure("ffmpeg exited with 1: boom")

    monkeypatch.setattr(jsonl, "probe_file", lambda path, timeout: {"streams": []})
    monkeypatch.setattr(jsonl, "load_pcm", fail)
    record = _build_record("x.m4a")
    assert record["probe"] == {"streams": []}
    assert record["error"] == "ffmpeg exited with 1: boom"
    assert "analysis" not in record


def test_build_record_captures_unexpected_errors(monkeypatch):
    def crash(path, probe, timeout):
        raise RuntimeError("decoder crashed")

    def out_of_memory(path, timeout):
        raise MemoryError()

    monkeypatch.setattr(jsonl, "probe_file", out_of_memory)
    monkeypatch.setattr(jsonl, "load_pcm", crash)
    record = _build_record("x.flac")
    assert record["probe_error"] == "MemoryError"
    assert record["error"] == "decoder crashed"
    assert "analysis" not in record
    assert "total_ms" in record["timing"]


def _build_record(path: str) -> dict:
    record = jsonl.build_record(path, checks=Check.CLIPPING | Check.DC_OFFSET)
    assert record["file"] == path
    return record
