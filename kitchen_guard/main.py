"""Main entry point for Kitchen Guard."""

import argparse
import logging
import os
import signal
import sys
import threading
from typing import Optional

from .config import ActionKind, FatalConfigurationError, Options
from .engine import KitchenGuard, RequestResult
from .journal import OutcomeJournal
from .notifier import DesktopNotifier, LogNotifier
from .state import ConfigurationState
from .watcher import ProjectWatcher

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

logger = logging.getLogger(__name__)


def configure_logging(debug: bool = False, log_file: Optional[str] = None) -> None:
    """Configure root logging to stderr, plus an optional debug log file."""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format=LOG_FORMAT,
        stream=sys.stderr,
    )

    if log_file:
        file_handler = logging.FileHandler(log_file, mode='w')  # Overwrite on each start
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root_logger = logging.getLogger()
        root_logger.addHandler(file_handler)
        root_logger.setLevel(logging.DEBUG)
        logger.debug(f"Debug logging initialized - writing to: {log_file}")


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="kitchen-guard",
        description="Kitchen Guard - run test-kitchen actions when project files change",
    )
    parser.add_argument(
        "project_dir",
        nargs="?",
        default=".",
        help="Kitchen project directory (default: current directory)",
    )
    parser.add_argument(
        "--concurrency",
        type=int,
        default=None,
        help="Maximum instances kitchen handles in parallel (env: KITCHEN_GUARD_CONCURRENCY)",
    )
    parser.add_argument(
        "--destroy-on-reload",
        action="store_true",
        default=None,
        help="Destroy all instances before re-creating them on reload",
    )
    parser.add_argument(
        "--no-destroy-on-exit",
        dest="destroy_on_exit",
        action="store_false",
        default=None,
        help="Keep instances running when Kitchen Guard stops",
    )
    parser.add_argument(
        "--non-concurrent",
        nargs="+",
        choices=[kind.value for kind in ActionKind],
        default=None,
        metavar="STAGE",
        help="Actions that always run with concurrency 1",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Seconds before a kitchen action is abandoned (default: wait forever)",
    )
    parser.add_argument(
        "--journal",
        default=os.getenv("KITCHEN_GUARD_JOURNAL"),
        help="Append action outcomes to this JSONL file",
    )
    parser.add_argument(
        "--debounce",
        type=float,
        default=0.3,
        help="Seconds to wait for further changes before acting (default: 0.3)",
    )
    parser.add_argument(
        "--no-desktop-notifications",
        dest="desktop_notifications",
        action="store_false",
        help="Log notifications instead of showing them on the desktop",
    )
    parser.add_argument(
        "--list",
        action="store_true",
        help="Print the suites from the kitchen configuration and exit",
    )
    parser.add_argument(
        "--run-all",
        action="store_true",
        help="Verify all suites right after start",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--log-file",
        default=None,
        help="Also write debug logs to this file",
    )
    parser.add_argument(
        "--version",
        action="version",
        version="kitchen-guard 0.1.0"
    )
    return parser.parse_args(argv)


def build_options(args: argparse.Namespace) -> Options:
    """Options from the environment, with CLI flags taking precedence."""
    return Options.from_env(
        concurrency_level=args.concurrency,
        destroy_on_reload=args.destroy_on_reload,
        destroy_on_exit=args.destroy_on_exit,
        non_concurrent_stages=frozenset(args.non_concurrent) if args.non_concurrent else None,
        command_timeout=args.timeout,
    )


def list_suites(state: ConfigurationState) -> int:
    state.reload()
    config = state.config
    print(f"Kitchen configuration: {config.config_path}")
    suites = state.list_suite_names()
    print(f"{len(suites)} suite(s):")
    for name in suites:
        print(f"  - {name}")
    return 0


def _report(request: str, result: RequestResult) -> None:
    if result.aborted:
        logger.warning(f"Kitchen Guard {request} failed; waiting for the next change")


def run(args: argparse.Namespace, options: Options) -> int:
    state = ConfigurationState(args.project_dir)

    if args.list:
        return list_suites(state)

    notifier = DesktopNotifier() if args.desktop_notifications else LogNotifier()
    journal = OutcomeJournal(args.journal) if args.journal else None
    guard = KitchenGuard(options=options, state=state, notifier=notifier, journal=journal)

    _report("start", guard.on_start())
    if args.run_all:
        _report("run all", guard.on_run_all())

    def on_files_changed(paths: list[str]) -> None:
        try:
            _report("change run", guard.on_files_changed(paths))
        except FatalConfigurationError as e:
            logger.error(f"Kitchen configuration could not be loaded: {e}")
            stop_event.set()

    stop_event = threading.Event()
    watcher = ProjectWatcher(
        str(state.project_dir),
        on_files_changed=on_files_changed,
        debounce_seconds=args.debounce,
    )
    reload_event = threading.Event()
    if hasattr(signal, "SIGHUP"):
        signal.signal(signal.SIGHUP, lambda signum, frame: reload_event.set())

    watcher.start()
    print(f"\nKitchen Guard is watching {state.project_dir} (Ctrl-C to stop, SIGHUP to reload)\n", file=sys.stderr)

    try:
        while not stop_event.is_set():
            if reload_event.wait(timeout=1.0):
                reload_event.clear()
                _report("reload", guard.on_reload())
    except KeyboardInterrupt:
        logger.info("Interrupted")
    finally:
        watcher.stop()

    _report("stop", guard.on_stop())
    return 1 if stop_event.is_set() else 0


def main(argv: Optional[list[str]] = None) -> None:
    """Initialize and run Kitchen Guard."""
    args = parse_args(argv)
    configure_logging(args.debug, args.log_file)

    try:
        options = build_options(args)
    except ValueError as e:
        print(f"\nERROR: Invalid option: {e}", file=sys.stderr)
        sys.exit(1)

    try:
        sys.exit(run(args, options))
    except FatalConfigurationError as e:
        print(f"\nERROR: Invalid kitchen configuration: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
