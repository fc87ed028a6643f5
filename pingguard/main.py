import sys
import signal
import asyncio
import logging
import argparse
from pathlib import Path
from typing import List, Optional

import setproctitle

# Basic console logger for messages BEFORE full setup is complete.
# This logger will be replaced by setup_logging.
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)-8s - [console] - %(message)s',
    stream=sys.stdout
)
log = logging.getLogger("pingguard")

from pingguard import __version__
from pingguard.local.config import ConfigError, effective_settings as config
from pingguard.local.supervisor import HeartbeatSupervisor, LaunchError
from pingguard.log.setup import setup_logging


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pingguard",
        description=(
            "Run a child process and kill its whole process tree when UDP "
            "heartbeats stop arriving within the timeout."
        ),
    )
    parser.add_argument(
        "-l", "--listen-addr",
        metavar="IP:PORT",
        default=None,
        help=f"Address to receive heartbeat datagrams on (default: {config.LISTEN_ADDR}).",
    )
    parser.add_argument(
        "-t", "--timeout-secs",
        metavar="SECONDS",
        type=int,
        default=None,
        help=f"Seconds without a heartbeat before the child is killed (default: {config.TIMEOUT_SECS}).",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("binary", metavar="BINARY_PATH", help="Child executable to supervise.")
    parser.add_argument(
        "child_args",
        metavar="CHILD_ARGS",
        nargs=argparse.REMAINDER,
        help="Arguments for the child (put them after '--').",
    )
    return parser


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    args = build_parser().parse_args(argv)
    # argparse keeps the literal '--' inside REMAINDER; drop it if present.
    if args.child_args and args.child_args[0] == "--":
        args.child_args = args.child_args[1:]
    return args


def main(argv: Optional[List[str]] = None) -> int:
    """
    The main entry point for the pingguard command.

    :param argv: Command-line arguments (defaults to sys.argv[1:]).
    :return int: The exit code for the supervisor process.
    """
    args = parse_args(argv)

    console_level = logging.DEBUG if args.verbose else getattr(logging, config.LOG_LEVEL, logging.INFO)
    setup_logging(console_level)

    config.apply_overrides({
        "LISTEN_ADDR": args.listen_addr,
        "TIMEOUT_SECS": args.timeout_secs,
        "CHILD_BINARY": args.binary,
        "CHILD_ARGS": args.child_args,
    })
    try:
        config.validate()
    except ConfigError as e:
        log.error(f"Error: {e}")
        return config.EXIT_CODE_STARTUP_FAILURE

    setproctitle.setproctitle(f"{config.PROCESS_TITLE} - {Path(config.CHILD_BINARY).name}")

    try:
        code = asyncio.run(HeartbeatSupervisor(config).run())
    except LaunchError as e:
        log.critical(f"Startup failed: {e}")
        return config.EXIT_CODE_STARTUP_FAILURE
    except KeyboardInterrupt:
        log.warning("Interrupted before supervision started.")
        return config.EXIT_CODE_SIGNAL_BASE + signal.SIGINT

    log.info(f"Exiting watchdog with code {code}.")
    return code


if __name__ == "__main__":
    sys.exit(main())
