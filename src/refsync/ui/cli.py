from __future__ import annotations

import argparse
import logging
import sys
import threading
from dataclasses import replace
from pathlib import Path
from signal import SIGINT, signal
from typing import TYPE_CHECKING

from dotenv import load_dotenv

from refsync.adapters.reporting import JsonLinesStatusSink
from refsync.app import build_run_parameters, clear_checkpoint, run_reconciliation, show_checkpoint
from refsync.config import ConfigurationError, configure_logging, get_feed_config, get_sync_config
from refsync.domain.model import DeletionPolicy, ErrorPolicy, ReconcileMode, RunStatus

if TYPE_CHECKING:
    from collections.abc import Sequence
    from types import FrameType

    from refsync.config import SyncConfig
    from refsync.domain.model import RunReport

log = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2
EXIT_ABORTED = 3

_STOP = threading.Event()


def _parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Reconcile a reference feed into the database")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    sync = subparsers.add_parser("sync", help="Run one reconciliation")
    sync.add_argument(
        "--url",
        type=str,
        help="Feed URL (defaults to REFSYNC_FEED_URL)",
    )
    sync.add_argument(
        "--cache",
        type=Path,
        help="Local cache file for the downloaded feed (defaults to the data dir)",
    )
    sync.add_argument(
        "--commit-interval",
        type=int,
        help="Rows per committed chunk (defaults to config)",
    )
    sync.add_argument(
        "--delete-threshold",
        type=float,
        help="Largest fraction of persisted entities the feed may drop (defaults to config)",
    )
    sync.add_argument(
        "--mode",
        choices=[mode.value for mode in ReconcileMode],
        help="Reconciliation mode (defaults to config)",
    )
    sync.add_argument(
        "--error-policy",
        choices=[policy.value for policy in ErrorPolicy],
        help="How row-level errors are handled (defaults to config)",
    )
    sync.add_argument(
        "--deletion-policy",
        choices=[policy.value for policy in DeletionPolicy],
        help="What happens to entities missing from the feed (defaults to config)",
    )
    sync.add_argument(
        "--workers",
        type=int,
        help="Threads used to transform rows within a chunk (defaults to config)",
    )
    sync.add_argument(
        "--status-file",
        type=Path,
        help="Write the observed status map as JSON lines to this file",
    )

    checkpoint = subparsers.add_parser("checkpoint", help="Inspect or reset a retained run")
    checkpoint_sub = checkpoint.add_subparsers(dest="checkpoint_command", required=True)
    show = checkpoint_sub.add_parser("show", help="Show the checkpoint of a run")
    show.add_argument("--url", type=str, help="Feed URL (defaults to REFSYNC_FEED_URL)")
    clear = checkpoint_sub.add_parser("clear", help="Delete the checkpoint of a run")
    clear.add_argument("--url", type=str, help="Feed URL (defaults to REFSYNC_FEED_URL)")
    clear.add_argument(
        "--cache",
        type=Path,
        help="Cache file to remove together with --remove-cache",
    )
    clear.add_argument(
        "--remove-cache",
        action="store_true",
        help="Also delete the cached feed so the next run downloads it again",
    )

    return parser.parse_args(list(argv))


def _resolve_url(args: argparse.Namespace) -> str:
    url = args.url or get_feed_config().url
    if not url:
        raise ConfigurationError(
            "Missing feed URL: pass --url or set REFSYNC_FEED_URL", setting="REFSYNC_FEED_URL"
        )
    return url


def _sync_config(args: argparse.Namespace) -> SyncConfig:
    base = get_sync_config()
    overrides: dict[str, object] = {}
    if args.commit_interval is not None:
        overrides["commit_interval"] = args.commit_interval
    if args.delete_threshold is not None:
        overrides["delete_threshold"] = args.delete_threshold
    if args.mode is not None:
        overrides["mode"] = ReconcileMode(args.mode)
    if args.error_policy is not None:
        overrides["error_policy"] = ErrorPolicy(args.error_policy)
    if args.deletion_policy is not None:
        overrides["deletion_policy"] = DeletionPolicy(args.deletion_policy)
    if args.workers is not None:
        overrides["transform_workers"] = args.workers
    return replace(base, **overrides)


def exit_code_for(report: RunReport) -> int:
    match report.status:
        case RunStatus.COMPLETED:
            return EXIT_OK
        case RunStatus.ABORTED_THRESHOLD:
            return EXIT_ABORTED
        case _:
            return EXIT_FAILED


def _run_sync(args: argparse.Namespace) -> int:
    params = build_run_parameters(
        _resolve_url(args),
        download_cache=args.cache,
        sync=_sync_config(args),
    )
    report = run_reconciliation(
        params,
        status_sink=JsonLinesStatusSink(args.status_file) if args.status_file else None,
        stop_requested=_STOP.is_set,
    )
    return exit_code_for(report)


def _run_checkpoint(args: argparse.Namespace) -> int:
    url = _resolve_url(args)
    if args.checkpoint_command == "show":
        checkpoint = show_checkpoint(url)
        if checkpoint is None:
            log.info("No checkpoint retained for %s", url)
            return EXIT_OK
        log.info(
            "Checkpoint %s: run_id=%s, status=%s, step=%s, reason=%s, rows_consumed=%s, "
            "chunks_committed=%s, rows_skipped=%s, finalized=%s, deleted_or_stale=%s, "
            "updated_at=%s",
            checkpoint.run_key,
            checkpoint.run_id,
            checkpoint.status,
            checkpoint.step,
            checkpoint.reason,
            checkpoint.rows_consumed,
            checkpoint.chunks_committed,
            checkpoint.rows_skipped,
            checkpoint.finalized,
            checkpoint.deleted_or_stale,
            checkpoint.updated_at,
        )
        return EXIT_OK
    clear_checkpoint(url, download_cache=args.cache, remove_cache=args.remove_cache)
    return EXIT_OK


def main(argv: Sequence[str] | None = None) -> None:
    """Main application entry point."""
    args_list = list(argv) if argv is not None else list(sys.argv[1:])
    parsed_args = _parse_args(args_list)
    configure_logging(level=logging.DEBUG if parsed_args.verbose else logging.INFO)

    try:
        if parsed_args.command == "sync":
            code = _run_sync(parsed_args)
        else:
            code = _run_checkpoint(parsed_args)
    except ConfigurationError as exc:
        log.error("Configuration error in %s: %s", exc.setting or "settings", exc)  # noqa: TRY400
        sys.exit(EXIT_USAGE)
    except ValueError:
        log.exception("Configuration error")
        sys.exit(EXIT_USAGE)
    except Exception:
        log.exception("Fatal error")
        sys.exit(EXIT_FAILED)

    if code != EXIT_OK:
        sys.exit(code)


def sigint_handler(_signal_received: int, _frame: FrameType | None) -> None:
    """Request a stop at the next chunk boundary; a second Ctrl+C exits at once."""
    if _STOP.is_set():
        log.info("Closed by user (Ctrl+C)")
        sys.exit(EXIT_FAILED)
    log.info("Stop requested (Ctrl+C); finishing the current chunk")
    _STOP.set()


def run() -> None:
    load_dotenv()
    signal(SIGINT, sigint_handler)
    main()


if __name__ == "__main__":
    run()
