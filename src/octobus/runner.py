#!/usr/bin/env python3
"""Main entry point for octobus."""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path

from .config import DEFAULT_COMMAND, Defaults, RunConfig, load_config
from .errors import ConfigError, ParseError
from .executor import SessionAttempt, SessionStatus
from .fleet import Fleet
from .hosts import Credentials, read_host_spec, resolve_hosts
from .log import configure_logging
from .sink import LineSink, OutputSink, StreamSink
from .template import render_command, tail_command
from .transport import AsyncSSHTransport, load_private_key

logger = logging.getLogger("octobus")


def _add_common(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--hosts",
        help="Comma-separated hosts ([user[:pass]@]host[:port]), or @FILE with one host per line",
    )
    parser.add_argument("--key", type=Path, help="Private key (default ~/.ssh/id_rsa)")
    parser.add_argument("--user", help="Default remote user (default root)")
    parser.add_argument("--pass", dest="password", help="Default remote password")
    parser.add_argument("--config", type=Path, help="YAML file with defaults")
    parser.add_argument("--dashboard", action="store_true", help="Run with the TUI dashboard")
    parser.add_argument("--verbose", action="store_true", help="Enable diagnostic logging")
    parser.add_argument("--json-logs", action="store_true", help="Log as JSON lines")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="octobus",
        description="Run a command on many SSH hosts at once and stream their output",
    )
    subparsers = parser.add_subparsers(dest="mode", required=True)

    run = subparsers.add_parser("run", help="Run a command on every host")
    _add_common(run)
    run.add_argument(
        "--cmd",
        default=DEFAULT_COMMAND,
        help="Remote command; {{ host }} is replaced by each host name (default: %(default)s)",
    )
    run.add_argument(
        "--reconnect",
        action="store_true",
        default=None,
        help="Reconnect when a connection fails or drops",
    )
    run.add_argument(
        "--fail-fast",
        action="store_true",
        help="Abort before connecting if any host or the command does not parse",
    )
    run.add_argument("--prefix", action="store_true", help="Prefix each output line with its host")

    tail = subparsers.add_parser("tail", help="Follow a file on every host forever")
    _add_common(tail)
    tail.add_argument("--file", required=True, help="Remote file to follow")
    tail.add_argument("--sudo", action="store_true", help="Run tail with sudo")
    return parser


def _build_config(args: argparse.Namespace, defaults: Defaults) -> RunConfig:
    """Merge command line options over the configured defaults."""
    if args.mode == "tail":
        command = tail_command(args.file, args.sudo)
        reconnect = True
        fail_fast = False
    else:
        command = args.cmd
        reconnect = defaults.reconnect if args.reconnect is None else args.reconnect
        fail_fast = args.fail_fast

    return RunConfig(
        hosts=args.hosts or defaults.hosts,
        command=command,
        user=args.user if args.user is not None else defaults.user,
        password=args.password if args.password is not None else defaults.password,
        port=defaults.port,
        ssh_key=args.key or defaults.ssh_key,
        timeout=defaults.timeout,
        backoff=defaults.backoff,
        reconnect=reconnect,
        fail_fast=fail_fast,
        verbose=args.verbose,
    )


def _make_sink(args: argparse.Namespace) -> OutputSink:
    if args.mode == "run" and not args.prefix:
        return StreamSink()
    return LineSink(color=sys.stdout.isatty())


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    argv = sys.argv[1:] if argv is None else argv
    parser = build_parser()
    if not argv:
        parser.print_help()
        return 0
    args = parser.parse_args(argv)

    configure_logging(
        logging.DEBUG if args.verbose else logging.INFO,
        json_format=args.json_logs,
    )

    try:
        defaults = load_config(args.config) if args.config else Defaults()
        config = _build_config(args, defaults)
        if not config.hosts:
            raise ConfigError("no hosts given, use --hosts")
        hosts = read_host_spec(config.hosts)
        if config.fail_fast:
            for target in resolve_hosts(config.hosts, config.user, config.password, config.port):
                render_command(config.command, target)
        credentials = Credentials(
            keys=(load_private_key(config.ssh_key),),
            password=config.password,
        )
    except ConfigError as e:
        logger.error("config: %s", e)
        return 1
    except ParseError as e:
        logger.error("%s: %s", e.kind, e)
        return 1

    logger.debug("user: %s", config.user)
    logger.debug("cmd: %s", config.command)
    logger.debug("hosts: %d", len(hosts))

    transport = AsyncSSHTransport(connect_timeout=config.timeout)

    async def run_fleet(
        sink: OutputSink, on_status=None, install_signals: bool = False, on_fleet=None
    ):
        fleet = Fleet(
            transport,
            credentials,
            sink,
            user=config.user,
            password=config.password,
            port=config.port,
            reconnect=config.reconnect,
            backoff=config.backoff,
            fail_fast=config.fail_fast,
            on_status=on_status,
        )
        if on_fleet:
            on_fleet(fleet)
        if install_signals:
            loop = asyncio.get_running_loop()
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.add_signal_handler(sig, fleet.stop)
        if args.mode == "tail":
            return await fleet.tail_forever(hosts, args.file, args.sudo)
        return await fleet.run(hosts, config.command)

    if args.dashboard:
        return _run_dashboard(len(hosts), run_fleet)

    attempts = asyncio.run(run_fleet(_make_sink(args), install_signals=True))
    return _exit_code(attempts)


def _run_dashboard(total: int, run_fleet) -> int:
    """Run the fleet inside the TUI dashboard."""
    from .dashboard import Dashboard

    # The dashboard owns the terminal while it runs
    level = logger.level
    logger.setLevel(logging.CRITICAL)
    app = Dashboard(
        total,
        lambda app: run_fleet(app.sink, app.sink.on_status, on_fleet=app.attach_fleet),
    )
    try:
        app.run()
        # Quitting stops the fleet; let its sessions close before reporting
        app.wait_for_fleet()
    finally:
        logger.setLevel(level)

    if app.fleet_result is None:
        return 130
    return _exit_code(app.fleet_result)


def _exit_code(attempts: list[SessionAttempt]) -> int:
    failed = [a for a in attempts if a.status == SessionStatus.FAILED]
    if failed:
        print("\nFailed hosts:", file=sys.stderr)
        for attempt in failed:
            print(f"  {attempt.label}: {attempt.last_error}", file=sys.stderr)
        return 1
    if any(a.status == SessionStatus.CANCELLED for a in attempts):
        return 130
    return 0


if __name__ == "__main__":
    sys.exit(main())
