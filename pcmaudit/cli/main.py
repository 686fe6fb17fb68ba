"""pcmaudit CLI - offline audio quality audit."""
from __future__ import annotations
import argparse
import logging
import os
import sys
from concurrent.futures import ProcessPoolExecutor, as_completed

from pcmaudit.analysis.orchestrator import analyze
from pcmaudit.errors import PcmAuditError
from pcmaudit.io.extract import load_pcm
from pcmaudit.io.pcm import bytes_source, file_source
from pcmaudit.reporting.console import render_console, render_markdown
from pcmaudit.reporting.digest import (
    build_digest,
    issue_entries,
    render_digest,
    render_issue_detail,
)
from pcmaudit.reporting.jsonl import (
    REPORT_NAME,
    build_record,
    collect_audio_files,
    infer_source,
    read_records,
    redact_record,
    write_report,
)
from pcmaudit.reporting.result import result_to_dict
from pcmaudit.types import AnalysisOptions, PcmFormat, Result, parse_checks, parse_source
from pcmaudit.utils.canonical_json import canonical_dumps
from pcmaudit.version import __version__

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_BAD_ARGS = 2

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)-12s | %(message)s"


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format=LOG_FORMAT,
        stream=sys.stderr,
    )


def _options(args) -> AnalysisOptions:
    return AnalysisOptions(
        checks=parse_checks(args.checks),
        source=parse_source(args.source),
    )


def _emit(result: Result, fmt_name: str, *, label: str, debug: bool = False) -> None:
    if fmt_name == "json":
        print(canonical_dumps(result_to_dict(result), indent=2))
    elif fmt_name == "markdown":
        sys.stdout.write(render_markdown(result, label=label, debug=debug))
    else:
        sys.stdout.write(render_console(result, label=label, debug=debug))


def cmd_analyze(args) -> int:
    """Handle analyze command: raw PCM from a file or stdin."""
    try:
        options = _options(args)
        fmt = PcmFormat(
            sample_rate=args.sample_rate,
            bit_depth=args.bit_depth,
            channels=args.channels,
            expected_bit_depth=args.expected_bit_depth,
        )
        if args.input == "-":
            source = bytes_source(sys.stdin.buffer.read())
            label = "<stdin>"
        else:
            source = file_source(args.input)
            label = args.input
        result = analyze(source, fmt, options)
        _emit(result, args.format, label=label, debug=args.verbose)
        return EXIT_OK
    except (PcmAuditError, OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FAILURE


def cmd_process(args) -> int:
    """Handle process command: decode an encoded file, then analyze it."""
    try:
        options = _options(args)
        fmt, data = load_pcm(args.input, stream_index=args.stream)
        result = analyze(data, fmt, options)
        _emit(result, args.format, label=args.input, debug=args.debug)
        return EXIT_OK
    except (PcmAuditError, OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FAILURE


def _report_worker(job: tuple[int, str, str, bool]) -> tuple[int, dict]:
    """Worker for batch reporting."""
    index, path, source, redact = job
    record = build_record(path, source=source)
    if redact:
        record = redact_record(record)
    return index, record


def cmd_report(args) -> int:
    """Handle report command."""
    try:
        source = parse_source(infer_source(args.folder, args.source)).value
        paths = collect_audio_files(args.folder)
    except (PcmAuditError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_BAD_ARGS
    if not paths:
        print("Error: No input files found.", file=sys.stderr)
        return EXIT_BAD_ARGS

    jobs = [(i, str(p), source, args.redact_path) for i, p in enumerate(paths)]
    max_workers = min(max(1, int(args.workers)), len(jobs))
    records: list[dict | None] = [None] * len(jobs)
    done = 0
    try:
        if max_workers == 1:
            for job in jobs:
                index, record = _report_worker(job)
                records[index] = record
                done += 1
                print(f"[{done}/{len(jobs)}] {job[1]}", file=sys.stderr)
        else:
            with ProcessPoolExecutor(max_workers=max_workers) as ex:
                futures = {ex.submit(_report_worker, job): job for job in jobs}
                for fut in as_completed(futures):
                    index, record = fut.result()
                    records[index] = record
                    done += 1
                    print(f"[{done}/{len(jobs)}] {futures[fut][1]}", file=sys.stderr)
        out_path, gz_path = write_report(records, args.out)
    except OSError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FAILURE

    print(f"Report written to: {out_path} ({gz_path.name})", file=sys.stderr)
    sys.stdout.write(render_digest(build_digest(records)))
    failures = sum(1 for record in records if record.get("error"))
    return EXIT_FAILURE if failures else EXIT_OK


def cmd_digest(args) -> int:
    """Handle digest command."""
    try:
        records = list(read_records(args.report))
        sys.stdout.write(render_digest(build_digest(records)))
        if args.issue:
            sys.stdout.write("\n")
            sys.stdout.write(render_issue_detail(issue_entries(records, args.issue), args.issue))
        return EXIT_OK
    except (PcmAuditError, OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FAILURE


def _add_analysis_flags(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--checks", "-C",
        default="all",
        help="Comma-separated check names or presets: all, defects (default: all)"
    )
    parser.add_argument(
        "--source", "-S",
        default="digital",
        help="Recording source: digital, vinyl or live (default: digital)"
    )
    parser.add_argument(
        "--format", "-f",
        choices=["console", "json", "markdown"],
        default="console",
        help="Output format (default: console)"
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pcmaudit",
        description="pcmaudit - offline audio quality audit"
    )
    parser.add_argument(
        "--version", action="version",
        version=f"pcmaudit {__version__}"
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Log analyzer progress and include raw measurements"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # analyze command
    analyze_parser = subparsers.add_parser(
        "analyze",
        parents=[common],
        help="Analyze raw little-endian PCM"
    )
    analyze_parser.add_argument(
        "input",
        help="Path to raw PCM, or - for stdin"
    )
    analyze_parser.add_argument(
        "--sample-rate", "-s",
        type=int,
        required=True,
        help="Sample rate in Hz"
    )
    analyze_parser.add_argument(
        "--bit-depth", "-b",
        type=int,
        choices=[16, 24, 32],
        default=32,
        help="Bits per sample (default: 32)"
    )
    analyze_parser.add_argument(
        "--channels", "-c",
        type=int,
        default=2,
        help="Channel count (default: 2)"
    )
    analyze_parser.add_argument(
        "--expected-bit-depth",
        type=int,
        choices=[16, 24, 32],
        default=None,
        help="Bit depth the source claims (default: --bit-depth)"
    )
    _add_analysis_flags(analyze_parser)
    analyze_parser.set_defaults(func=cmd_analyze)

    # process command
    process_parser = subparsers.add_parser(
        "process",
        parents=[common],
        help="Decode an audio file with soundfile or ffmpeg and analyze it"
    )
    process_parser.add_argument(
        "input",
        help="Path to an audio file"
    )
    process_parser.add_argument(
        "--stream",
        type=int,
        default=0,
        help="Audio stream index (default: 0)"
    )
    process_parser.add_argument(
        "--debug",
        action="store_true",
        help="Include raw measurements in the output"
    )
    _add_analysis_flags(process_parser)
    process_parser.set_defaults(func=cmd_process)

    # report command
    report_parser = subparsers.add_parser(
        "report",
        parents=[common],
        help="Analyze every audio file in a folder into a JSONL report"
    )
    report_parser.add_argument(
        "folder",
        help="Folder containing audio files"
    )
    report_parser.add_argument(
        "--source", "-S",
        default=None,
        help="Recording source (default: vinyl if the path mentions vinyl, else digital)"
    )
    report_parser.add_argument(
        "--redact-path",
        action="store_true",
        help="Leave file paths out of the report"
    )
    report_parser.add_argument(
        "--workers", "-j",
        type=int,
        default=os.cpu_count() or 1,
        help="Parallel workers (default: cpu_count)"
    )
    report_parser.add_argument(
        "--out", "-o",
        default=REPORT_NAME,
        help=f"Report path (default: {REPORT_NAME}); a .gz copy is written next to it"
    )
    report_parser.set_defaults(func=cmd_report)

    # digest command
    digest_parser = subparsers.add_parser(
        "digest",
        parents=[common],
        help="Summarize a JSONL report"
    )
    digest_parser.add_argument(
        "report",
        help="Path to a report .jsonl or .jsonl.gz"
    )
    digest_parser.add_argument(
        "--issue",
        help="List the files affected by one check (e.g. clipping, noise-floor)"
    )
    digest_parser.set_defaults(func=cmd_digest)
    return parser


def main(argv: list[str] | None = None):
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.verbose)

    if hasattr(args, "func"):
        sys.exit(args.func(args))
    else:
        parser.print_help()
        sys.exit(EXIT_BAD_ARGS)


if __name__ == "__main__":
    main()
