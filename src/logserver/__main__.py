"""
=============================================================================
LOG SERVER CLI ENTRY POINT
=============================================================================

    # Run with defaults (0.0.0.0:9000, /var/tmp/aesdsocketdata)
    python -m logserver

    # Run in the background
    python -m logserver -d

    # Custom port and data file
    python -m logserver --port 9001 --log-file ./data.log

    # Fresh log every start, removed again on exit
    python -m logserver --truncate --delete-on-exit

Settings not given on the command line come from LOGSERVER_* environment
variables (see ServerConfig.from_env), then from the defaults.

=============================================================================
"""

import argparse
import sys

from . import __version__
from .config import ServerConfig
from .server import LogServer


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="logserver",
        description="Append-log socket server: every newline-terminated packet is "
                    "appended to a shared file and the whole file is sent back",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m logserver                         # Run with defaults
  python -m logserver -d                      # Run as a daemon
  python -m logserver --port 9001             # Custom port
  python -m logserver -f ./data.log --truncate
        """
    )

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK ARGUMENTS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--host", "-H",
        default=None,
        help="Host to bind to (default: 0.0.0.0)"
    )

    parser.add_argument(
        "--port", "-p",
        type=int,
        default=None,
        help="Port to listen on (default: 9000)"
    )

    # ─────────────────────────────────────────────────────────────────────
    # LOG FILE ARGUMENTS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--log-file", "-f",
        default=None,
        help="Shared data file (default: /var/tmp/aesdsocketdata)"
    )

    parser.add_argument(
        "--reopen",
        action="store_true",
        help="Open the data file for every operation instead of keeping it open"
    )

    parser.add_argument(
        "--truncate",
        action="store_true",
        help="Empty the data file on startup"
    )

    parser.add_argument(
        "--delete-on-exit",
        action="store_true",
        help="Remove the data file after shutdown"
    )

    parser.add_argument(
        "--fsync",
        action="store_true",
        help="fsync() the data file after every append"
    )

    # ─────────────────────────────────────────────────────────────────────
    # TIMER ARGUMENTS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--timer-interval", "-t",
        type=float,
        default=None,
        help="Seconds between timestamp lines (default: 10)"
    )

    parser.add_argument(
        "--no-timer",
        action="store_true",
        help="Do not append timestamp lines"
    )

    # ─────────────────────────────────────────────────────────────────────
    # PROCESS AND LOGGING ARGUMENTS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--daemon", "-d",
        action="store_true",
        help="Fork into the background after binding the port"
    )

    parser.add_argument(
        "--log-level", "-l",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Logging level (default: INFO)"
    )

    parser.add_argument(
        "--log-format",
        choices=["text", "json"],
        default=None,
        help="Diagnostic log format (default: text)"
    )

    parser.add_argument(
        "--syslog",
        action="store_true",
        help="Also send diagnostics to syslog"
    )

    parser.add_argument(
        "--version", "-v",
        action="version",
        version=f"logserver {__version__}"
    )

    return parser


def config_from_args(args: argparse.Namespace) -> ServerConfig:
    """Environment first, then command-line overrides on top."""
    config = ServerConfig.from_env()

    if args.host is not None:
        config.host = args.host
    if args.port is not None:
        config.port = args.port
    if args.log_file is not None:
        config.log_path = args.log_file
    if args.reopen:
        config.keep_open = False
    if args.truncate:
        config.truncate_on_start = True
    if args.delete_on_exit:
        config.delete_on_shutdown = True
    if args.fsync:
        config.fsync = True
    if args.timer_interval is not None:
        config.timer_interval = args.timer_interval
    if args.no_timer:
        config.timer_enabled = False
    if args.log_level is not None:
        config.log_level = args.log_level
    if args.log_format is not None:
        config.log_format = args.log_format
    if args.syslog:
        config.syslog = True

    return config


def main(argv=None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = config_from_args(args)
        server = LogServer(config)
    except ValueError as e:
        parser.error(str(e))

    return server.run(daemonize=args.daemon)


if __name__ == "__main__":
    sys.exit(main())
