#!/usr/bin/env python3
"""
cli.py
Command-line interface for the two programs:
  csbackup  [options] <activeNodeAddress> <backupLocation>
  csrestore [options] <backupLocation> <restoreNodeAddress>
Parses arguments, loads settings, configures logging and maps errors to exit codes.
"""
from __future__ import annotations
import argparse, logging, sys, time
from pathlib import Path
from typing import Callable
from .config import DEFAULT_CONFIG_PATH, MAX_CONCURRENCY, MAX_GENERATIONS, find_config, load_config, validate_config
from .orchestrator import run_backup, run_restore
from .types import Config
from .util import format_duration, require_tools, setup_logging
from .errors import CSBackupError

log = logging.getLogger("csbackup")

REQUIRED_TOOLS = ("rsync", "ssh")
EXIT_INTERRUPTED = 130


class _Parser(argparse.ArgumentParser):
    """Bad arguments exit with 1, like every other configuration problem."""

    def error(self, message):
        self.print_usage(sys.stderr)
        print(f"❌ Error: {message}", file=sys.stderr)
        sys.exit(1)


def _common_options(ap: argparse.ArgumentParser) -> None:
    ap.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    ap.add_argument("-d", "--dry-run", action="store_true", help="show commands without changing anything")
    ap.add_argument("-z", "--compress", action="store_true", default=None, help="compress data in transit")
    ap.add_argument(
        "-n",
        "--concurrency",
        type=int,
        default=None,
        help=f"parallel DBRoot transfers (1-{MAX_CONCURRENCY})",
    )
    ap.add_argument("--user", default=None, help="remote account (default: root)")
    ap.add_argument("--install-dir", default=None, help="cluster install root on every node")
    ap.add_argument(
        "--config",
        default=None,
        help=f"path to csbackup.toml (default: {DEFAULT_CONFIG_PATH} then /etc/csbackup.toml)",
    )
    ap.add_argument("--log-file", default=None, help="also append the log to this file")


def build_backup_parser() -> argparse.ArgumentParser:
    ap = _Parser(
        prog="csbackup",
        description="Back up every PM DBRoot and metadata store of a cluster to a local location",
    )
    _common_options(ap)
    ap.add_argument(
        "-g",
        "--generations",
        type=int,
        default=None,
        help=f"incremental generations to keep (1-{MAX_GENERATIONS}, default 3)",
    )
    ap.add_argument("active_node", help="address of the cluster's active node")
    ap.add_argument("backup_location", help="local directory receiving the backup")
    return ap


def build_restore_parser() -> argparse.ArgumentParser:
    ap = _Parser(
        prog="csrestore",
        description="Restore a backup onto a stopped, freshly installed cluster of the same shape",
    )
    _common_options(ap)
    ap.add_argument(
        "--strict-addresses",
        action="store_true",
        default=None,
        help="fail when module addresses differ from the backup",
    )
    ap.add_argument("backup_location", help="local directory holding the backup")
    ap.add_argument("restore_node", help="address of the target cluster's active node")
    return ap


def settings_from(args: argparse.Namespace) -> Config:
    cfg = load_config(find_config(args.config))
    if args.user is not None:
        cfg.user = args.user
    if args.install_dir is not None:
        cfg.install_dir = args.install_dir.rstrip("/") or "/"
    if args.concurrency is not None:
        cfg.concurrency = args.concurrency
    if args.compress:
        cfg.compress = True
    if getattr(args, "generations", None) is not None:
        cfg.generations = args.generations
    if getattr(args, "strict_addresses", None):
        cfg.strict_addresses = True
    if args.log_file:
        cfg.log_file = args.log_file
    cfg.dry_run = args.dry_run
    cfg.verbose = args.verbose
    if cfg.verbose:
        cfg.log_level = "DEBUG"
    validate_config(cfg)
    return cfg


def execute(name: str, cfg: Config, flow: Callable[[], int]) -> int:
    """Run one flow; always logs elapsed time and a final Success/Failed line."""
    started = time.time()
    rc = 1
    try:
        require_tools(REQUIRED_TOOLS)
        log.info("%s started%s", name, " (dry run)" if cfg.dry_run else "")
        rc = flow()
    except CSBackupError as e:
        log.error("%s", e)
        rc = e.exit_code
    except KeyboardInterrupt:
        log.error("Interrupted")
        rc = EXIT_INTERRUPTED
    except Exception as e:
        log.exception("unexpected error: %s", e)
        rc = 1
    finally:
        log.info("elapsed %s", format_duration(time.time() - started))
        if rc == 0:
            log.info("Success")
        else:
            log.error("Failed (exit %d)", rc)
    return rc


def _main(parser: argparse.ArgumentParser, argv, name: str, flow_for) -> int:
    args = parser.parse_args(argv)
    try:
        cfg = settings_from(args)
    except CSBackupError as e:
        print(f"❌ Error: {e}", file=sys.stderr)
        return e.exit_code
    setup_logging(cfg.log_level, cfg.log_file)
    return execute(name, cfg, flow_for(args, cfg))


def backup_main(argv=None) -> int:
    return _main(
        build_backup_parser(),
        argv,
        "backup",
        lambda args, cfg: lambda: run_backup(cfg, args.active_node, Path(args.backup_location).absolute()),
    )


def restore_main(argv=None) -> int:
    return _main(
        build_restore_parser(),
        argv,
        "restore",
        lambda args, cfg: lambda: run_restore(cfg, Path(args.backup_location).absolute(), args.restore_node),
    )


if __name__ == "__main__":
    sys.exit(backup_main())
