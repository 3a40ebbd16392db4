"""CLI entrypoints for docsync commands."""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import TextIO

from .config import ConfigError
from .logging import configure_logging
from .models import RunSummary
from .orchestrator import EXIT_FATAL, Orchestrator, RunOptions, RunOutcome, RunStatus, SyncError
from .routing.parser import RoutingTableError


def _add_verbose_option(
    parser: argparse.ArgumentParser, *, suppress_default: bool = False
) -> None:
    kwargs: dict[str, object] = {
        "action": "store_true",
        "help": "Increase log verbosity for troubleshooting.",
    }
    if suppress_default:
        kwargs["default"] = argparse.SUPPRESS
    else:
        kwargs["default"] = False
    parser.add_argument(
        "-v",
        "--verbose",
        **kwargs,
    )


def _add_log_file_option(
    parser: argparse.ArgumentParser, *, suppress_default: bool = False
) -> None:
    parser.add_argument(
        "--log-file",
        type=Path,
        default=argparse.SUPPRESS if suppress_default else None,
        help="Also write detailed logs to this file.",
    )


def _add_path_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "path",
        nargs="?",
        default=".",
        help="Path to the repository root (defaults to current directory).",
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="docsync",
        description="Keep a knowledge pack in step with the source tree it cites.",
    )
    _add_verbose_option(parser)
    _add_log_file_option(parser)
    subparsers = parser.add_subparsers(dest="command", required=True)

    sync_parser = subparsers.add_parser(
        "sync",
        help="Update knowledge documents affected by a commit range.",
    )
    _add_verbose_option(sync_parser, suppress_default=True)
    _add_log_file_option(sync_parser, suppress_default=True)
    _add_path_argument(sync_parser)
    sync_parser.add_argument(
        "--range",
        dest="commit_range",
        default="HEAD~1..HEAD",
        help="Commit range to diff, e.g. origin/main..HEAD (a single ref means ref~1..ref).",
    )
    sync_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print the would-be document diffs without committing or opening a pull request.",
    )
    sync_parser.add_argument(
        "--budget",
        type=int,
        default=None,
        help="Override the per-document payload budget in bytes for this run.",
    )
    sync_parser.add_argument(
        "--file-ceiling",
        type=int,
        default=None,
        help="Override the changed-file ceiling for this run.",
    )
    sync_parser.add_argument(
        "--json",
        action="store_true",
        help="Print the run outcome as JSON.",
    )

    map_parser = subparsers.add_parser(
        "map",
        help="Print the path to document mapping and routing-table warnings.",
    )
    _add_verbose_option(map_parser, suppress_default=True)
    _add_log_file_option(map_parser, suppress_default=True)
    _add_path_argument(map_parser)

    serve_parser = subparsers.add_parser(
        "serve",
        help="Run the HTTP service.",
    )
    _add_verbose_option(serve_parser, suppress_default=True)
    _add_log_file_option(serve_parser, suppress_default=True)
    serve_parser.add_argument("--host", default="127.0.0.1")
    serve_parser.add_argument("--port", type=int, default=8000)

    return parser


def main(argv: list[str] | None = None) -> int:
    """CLI entrypoint for docsync commands; returns the process exit code."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    configure_logging(verbose=bool(args.verbose), log_file=args.log_file)

    if args.command == "serve":
        from .service.app import run_service

        run_service(host=args.host, port=args.port)
        return 0

    orchestrator = Orchestrator()

    if args.command == "map":
        try:
            mapping = orchestrator.load_mapping(args.path)
        except (ConfigError, RoutingTableError) as exc:
            print(f"docsync map failed: {exc}", file=sys.stderr)
            return EXIT_FATAL
        for path in sorted(mapping.path_to_docs):
            print(f"{path} -> {', '.join(mapping.path_to_docs[path])}")
        unreferenced = [path for path in mapping.known_paths if path not in mapping.path_to_docs]
        for path in unreferenced:
            print(f"{path} -> (no document references)")
        for warning in mapping.warnings:
            print(f"warning: {warning}", file=sys.stderr)
        return 0

    options = RunOptions(
        commit_range=args.commit_range,
        dry_run=bool(args.dry_run),
        budget_override=args.budget,
        file_count_ceiling=args.file_ceiling,
    )
    try:
        outcome = orchestrator.run(args.path, options)
    except ConfigError as exc:
        print(f"docsync sync failed: {exc}", file=sys.stderr)
        return EXIT_FATAL
    except SyncError as exc:
        if args.json:
            print(json.dumps({"error": str(exc), "summary": exc.summary.to_dict()}, indent=2))
        print(
            f"docsync sync failed: {exc}\nRun with --verbose for more details.",
            file=sys.stderr,
        )
        if not args.json:
            _print_summary(exc.summary, stream=sys.stderr)
        return EXIT_FATAL

    if args.json:
        print(json.dumps(outcome.to_dict(), indent=2))
    else:
        _print_outcome(outcome)
    return outcome.exit_code


def _print_outcome(outcome: RunOutcome) -> None:
    summary = outcome.summary
    if outcome.status is RunStatus.DRY_RUN:
        if not outcome.diffs:
            print("Knowledge pack already up to date (dry-run)")
        for path in sorted(outcome.diffs):
            print(f"Changes for {path} (dry-run):")
            print(outcome.diffs[path] or "(no diff)")
    elif outcome.status is RunStatus.PUBLISHED:
        print(f"Opened {summary.review_request} from {summary.branch}")
    elif outcome.status is RunStatus.ALREADY_OPEN:
        print(f"Review request already open: {summary.review_request}")
    elif outcome.status is RunStatus.GUARDED:
        print("Safety guard triggered; no documents were updated")
    elif outcome.status is RunStatus.DEBOUNCED:
        print("Skipped: this head was processed moments ago")
    elif outcome.status is RunStatus.LOCKED:
        print("Skipped: another docsync run is in progress")
    else:
        print("Knowledge pack already up to date")

    _print_summary(summary)


def _print_summary(summary: RunSummary, stream: TextIO | None = None) -> None:
    out = stream or sys.stdout
    if summary.branch:
        print(f"branch: {summary.branch}", file=out)
    for path in summary.written:
        print(f"written: {path}", file=out)
    for doc_id, reasons in sorted(summary.flagged.items()):
        print(f"flagged: {doc_id}: {'; '.join(reasons)}", file=out)
    for item in summary.unmapped:
        print(f"unmapped: {item.path} ({item.status.value})", file=out)
    for warning in summary.warnings:
        print(f"warning: {warning}", file=out)


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
