import argparse
import logging
import os
import sys
from pathlib import Path

import httpx

from . import config
from .core import ImmichDupesApp
from .exceptions import AuthenticationError, ImmichDupesError
from .execution.executor import ExecutionConfig


def setup_logging(log_dir: Path, verbose: bool):
    """Sets up logging to both console and a file in the log directory."""
    log_level = logging.DEBUG if verbose else logging.INFO

    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / config.LOG_FILE

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        handlers=[
            logging.FileHandler(log_file, encoding='utf-8'),
            logging.StreamHandler(sys.stdout)
        ]
    )

    # Silence chatty libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("exifread").setLevel(logging.ERROR)


def _add_execution_args(p: argparse.ArgumentParser):
    p.add_argument("--backup-dir", type=Path, default=config.DEFAULT_BACKUP_DIR,
                   help="Where loser originals are saved before deletion")
    p.add_argument("--rate", type=float, default=config.DEFAULT_REQUESTS_PER_SEC,
                   help="Max API requests per second")
    p.add_argument("--concurrency", type=int, default=config.DEFAULT_MAX_CONCURRENT,
                   help="Max in-flight API requests")
    p.add_argument("--force", action="store_true", help="Delete permanently instead of moving to trash")
    p.add_argument("--skip-conflicts", action="store_true", help="Skip groups with metadata conflicts")
    p.add_argument("--preserve-albums", action="store_true", help="Move losers' album memberships to the winner")
    p.add_argument("--dry-run", action="store_true", help="Show what would happen without changing anything")


def _add_verify_args(p: argparse.ArgumentParser, default_analysis: str):
    p.add_argument("--analysis", type=Path, default=Path(default_analysis), help="Analysis JSON to verify")
    p.add_argument("--execution-report", type=Path, default=None,
                   help="Execution report; enables consolidation checks")
    p.add_argument("--report", type=Path, default=Path(config.VERIFICATION_REPORT_FILE),
                   help="Output path for the verification report")


def parse_args(argv=None):
    p = argparse.ArgumentParser(description="Immich Dupes: resolve duplicate assets without losing metadata")

    p.add_argument("--url", default=os.environ.get("IMMICH_URL"),
                   help="Immich server URL (default: $IMMICH_URL)")
    p.add_argument("--api-key", default=os.environ.get("IMMICH_API_KEY"),
                   help="Immich API key (default: $IMMICH_API_KEY)")
    p.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    p.add_argument("--log-dir", type=Path, default=Path("."), help="Directory for the log file")
    p.add_argument("--no-progress", action="store_true", help="Hide progress bars")

    sub = p.add_subparsers(dest="command", required=True)

    analyze = sub.add_parser("analyze", help="Fetch duplicate groups and pick winners")
    analyze.add_argument("--output", type=Path, default=Path(config.ANALYSIS_FILE))
    analyze.add_argument("--capture-tolerance", type=float, default=config.CAPTURE_TIME_TOLERANCE_SECONDS,
                         help="Seconds two capture times may differ before it counts as a conflict")

    execute = sub.add_parser("execute", help="Consolidate, back up and delete losers")
    execute.add_argument("--analysis", type=Path, default=Path(config.ANALYSIS_FILE))
    execute.add_argument("--report", type=Path, default=Path(config.EXECUTION_REPORT_FILE))
    _add_execution_args(execute)

    verify = sub.add_parser("verify", help="Check the server state after execute")
    _add_verify_args(verify, config.ANALYSIS_FILE)

    letterbox = sub.add_parser("letterbox", help="Find and resolve iPhone 4:3/16:9 pairs")
    lb_sub = letterbox.add_subparsers(dest="letterbox_command", required=True)

    lb_analyze = lb_sub.add_parser("analyze", help="Scan the library for letterbox pairs")
    lb_analyze.add_argument("--output", type=Path, default=Path(config.LETTERBOX_ANALYSIS_FILE))

    lb_execute = lb_sub.add_parser("execute", help="Back up and delete the 16:9 crops")
    lb_execute.add_argument("--analysis", type=Path, default=Path(config.LETTERBOX_ANALYSIS_FILE))
    lb_execute.add_argument("--report", type=Path, default=Path(config.EXECUTION_REPORT_FILE))
    _add_execution_args(lb_execute)

    lb_verify = lb_sub.add_parser("verify", help="Check the server state after letterbox execute")
    _add_verify_args(lb_verify, config.LETTERBOX_ANALYSIS_FILE)

    restore = sub.add_parser("restore", help="Re-upload backed-up originals")
    restore.add_argument("--backup-dir", type=Path, required=True)
    restore.add_argument("--dry-run", action="store_true", help="List files without uploading")
    restore.add_argument("--rate", type=float, default=config.DEFAULT_REQUESTS_PER_SEC)
    restore.add_argument("--concurrency", type=int, default=config.DEFAULT_MAX_CONCURRENT)

    return p.parse_args(argv)


def build_execution_config(args) -> ExecutionConfig:
    return ExecutionConfig(
        requests_per_sec=getattr(args, "rate", config.DEFAULT_REQUESTS_PER_SEC),
        max_concurrent=getattr(args, "concurrency", config.DEFAULT_MAX_CONCURRENT),
        backup_dir=getattr(args, "backup_dir", config.DEFAULT_BACKUP_DIR),
        force_delete=getattr(args, "force", False),
        skip_conflicts=getattr(args, "skip_conflicts", False),
        preserve_albums=getattr(args, "preserve_albums", False),
        dry_run=getattr(args, "dry_run", False),
        show_progress=not args.no_progress,
    )


def run(args, app: ImmichDupesApp):
    exec_config = build_execution_config(args)

    if args.command == "analyze":
        app.analyze(args.output, args.capture_tolerance)
    elif args.command == "execute":
        app.execute(args.analysis, exec_config, args.report)
    elif args.command == "verify":
        app.verify(args.analysis, args.execution_report, args.report, exec_config)
    elif args.command == "letterbox":
        if args.letterbox_command == "analyze":
            app.letterbox_analyze(args.output)
        elif args.letterbox_command == "execute":
            app.letterbox_execute(args.analysis, exec_config, args.report)
        else:
            app.letterbox_verify(args.analysis, args.execution_report, args.report, exec_config)
    elif args.command == "restore":
        app.restore(args.backup_dir, exec_config)


def main(argv=None):
    args = parse_args(argv)
    setup_logging(args.log_dir.resolve(), args.verbose)

    if not args.url:
        logging.error("No server URL. Pass --url or set IMMICH_URL.")
        sys.exit(1)
    if not args.api_key:
        logging.error("No API key. Pass --api-key or set IMMICH_API_KEY.")
        sys.exit(1)

    logging.info(f"=== Immich Dupes: {args.command} ===")
    logging.info(f"Server: {args.url}")

    app = ImmichDupesApp(args.url, args.api_key)

    try:
        run(args, app)
    except AuthenticationError as e:
        logging.error(f"Authentication failed ({e}). Check the API key and its permissions.")
        sys.exit(1)
    except httpx.HTTPError as e:
        logging.error(f"Could not reach {args.url}: {e}")
        sys.exit(1)
    except ImmichDupesError as e:
        logging.error(str(e))
        sys.exit(1)
    except KeyboardInterrupt:
        logging.warning("Operation cancelled by user.")
        sys.exit(1)
    except Exception:
        logging.exception("Fatal error.")
        sys.exit(1)


if __name__ == "__main__":
    main()
