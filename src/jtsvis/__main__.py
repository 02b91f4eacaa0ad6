"""CLI entry point for jtsvis.

Usage:
    python -m jtsvis <command> [options]

Commands:
    poll TARGET_JSON... [--interval SECONDS] [--duration SECONDS]
    target PROBE [ARGS...] [--target NAME]
    view FILE [--segment-duration SECONDS] [--realtime] [--last N]
    config validate
    config get <key>
"""

from __future__ import annotations

import argparse
import contextlib
import logging
import os
import sys
from pathlib import Path
from typing import TYPE_CHECKING, NoReturn

from jtsvis import __version__

if TYPE_CHECKING:
    from jtsvis.config import Config
    from jtsvis.poller import PollTarget

logger = logging.getLogger("jtsvis.cli")


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        prog="jtsvis",
        description="Poll JSON probes and inspect the resulting time series",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Enable debug logging"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # poll command
    poll_parser = subparsers.add_parser(
        "poll", help="Poll targets and stream records to stdout"
    )
    poll_parser.add_argument(
        "targets",
        nargs="*",
        help="Target definitions as JSON objects, or @FILE with one target per line",
    )
    poll_parser.add_argument(
        "--interval",
        "-i",
        type=float,
        help="Seconds between polls (default: from config, 1)",
    )
    poll_parser.add_argument(
        "--duration",
        "-d",
        type=float,
        help="Total seconds to poll (default: from config, 3600)",
    )
    poll_parser.add_argument(
        "--probe-timeout",
        type=float,
        help="Seconds before a probe run is abandoned (default: no timeout)",
    )

    # target command
    target_parser = subparsers.add_parser(
        "target", help="Print a target definition for the poll command"
    )
    target_parser.add_argument("probe_path", help="Path to the probe command")
    target_parser.add_argument(
        "probe_args", nargs=argparse.REMAINDER, help="Arguments passed to the probe"
    )
    target_parser.add_argument(
        "--target",
        "-t",
        help="Target name (default: target.<pid>)",
    )

    # view command
    view_parser = subparsers.add_parser("view", help="Show a record log by segment")
    view_parser.add_argument("record_file", help="Path to the JSONL record log")
    view_parser.add_argument(
        "--segment-duration",
        "-s",
        type=int,
        help="Segment width in seconds (default: from config, 1)",
    )
    view_parser.add_argument(
        "--realtime",
        "-r",
        action="store_true",
        help="Keep following the log as records are appended",
    )
    view_parser.add_argument(
        "--last",
        "-n",
        type=int,
        default=0,
        help="Only show the newest N segments initially (default: all)",
    )

    # config command
    config_parser = subparsers.add_parser("config", help="Configuration management")
    config_subparsers = config_parser.add_subparsers(
        dest="config_command", help="Config subcommands"
    )

    # config validate
    config_subparsers.add_parser("validate", help="Validate configuration")

    # config get
    get_parser = config_subparsers.add_parser("get", help="Get configuration value")
    get_parser.add_argument("key", help="Configuration key (e.g. poll.interval)")

    return parser


def _load_config() -> Config | None:
    """Load the config, reporting errors on stderr."""
    from jtsvis.config import Config

    try:
        return Config.load_or_default()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return None


def parse_targets(definitions: list[str]) -> list[PollTarget]:
    """Parse target definitions given on the command line.

    Args:
        definitions: Inline JSON objects, or ``@path`` to a file holding one
            JSON target per line.

    Returns:
        List of PollTarget.

    Raises:
        ValueError: If a definition is invalid.
        OSError: If a target file cannot be read.
    """
    from jtsvis.poller import PollTarget

    targets: list[PollTarget] = []
    for definition in definitions:
        if definition.startswith("@"):
            for line in Path(definition[1:]).read_text().splitlines():
                if line.strip():
                    targets.append(PollTarget.from_json(line))
        else:
            targets.append(PollTarget.from_json(definition))
    return targets


def cmd_poll(args: argparse.Namespace) -> int:
    """Handle 'poll' command.

    Records are written to stdout, one JSON object per line, until every
    target's poll duration has elapsed.
    """
    from jtsvis.jsonl import JsonlWriter
    from jtsvis.poller import poll_targets

    config = _load_config()
    if config is None:
        return 1

    try:
        targets = parse_targets(args.targets)
    except (ValueError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    targets.extend(config.get_enabled_targets())

    if not targets:
        print("Error: No targets given and none configured", file=sys.stderr)
        return 1

    interval = args.interval if args.interval is not None else config.poll.interval
    duration = args.duration if args.duration is not None else config.poll.duration
    timeout = (
        args.probe_timeout if args.probe_timeout is not None else config.poll.probe_timeout
    )
    if interval <= 0:
        print(f"Error: Poll interval must be positive: {interval}", file=sys.stderr)
        return 1

    logger.info(
        f"Polling {len(targets)} target(s) every {interval}s for {duration}s"
    )

    writer = JsonlWriter(sys.stdout)
    records = poll_targets(targets, interval, duration, probe_timeout=timeout)
    with contextlib.closing(records):
        try:
            for record in records:
                writer.write(record)
        except BrokenPipeError:
            logger.info("Output closed, stopping pollers")
        except KeyboardInterrupt:
            return 130

    return 0


def cmd_target(args: argparse.Namespace) -> int:
    """Handle 'target' command."""
    from jtsvis.poller import PollTarget

    name = args.target or f"target.{os.getpid()}"
    target = PollTarget(
        name=name,
        probe_path=Path(args.probe_path),
        probe_args=tuple(args.probe_args),
    )
    print(target.to_json())
    return 0


def cmd_view(args: argparse.Namespace) -> int:
    """Handle 'view' command."""
    from jtsvis.jsonl import DecodeError
    from jtsvis.viewer import Viewer

    config = _load_config()
    if config is None:
        return 1
    segment_duration = (
        args.segment_duration
        if args.segment_duration is not None
        else config.view.segment_duration
    )
    if segment_duration <= 0:
        print(f"Error: Segment duration must be positive: {segment_duration}", file=sys.stderr)
        return 1

    path = Path(args.record_file)
    if not path.exists():
        print(f"Error: Record file not found: {path}", file=sys.stderr)
        return 1

    viewer = Viewer(
        path,
        segment_duration=segment_duration,
        realtime=args.realtime,
        tail_interval=config.view.tail_interval,
        last=args.last,
    )
    try:
        return viewer.run()
    except DecodeError as e:
        print(f"Error: Malformed record log {path}: {e}", file=sys.stderr)
        return 1
    except OSError as e:
        print(f"Error reading record log: {e}", file=sys.stderr)
        return 1


def cmd_config_get(args: argparse.Namespace) -> int:
    """Handle 'config get' command."""
    from jtsvis.config import Config

    try:
        config = Config.load_or_default()
        value = config.get_value(args.key)
        print(value)
        return 0
    except KeyError:
        print(f"Error: Config key not found: {args.key}", file=sys.stderr)
        return 1
    except Exception as e:
        print(f"Error reading config: {e}", file=sys.stderr)
        return 1


def cmd_config_validate(args: argparse.Namespace) -> int:
    """Handle 'config validate' command."""
    from jtsvis.config import Config

    try:
        config = Config.load()
        print(f"Configuration valid: {config.config_path}")
        print(f"  Version: {config.version}")
        print(f"  Poll interval: {config.poll.interval}s")
        print(f"  Poll duration: {config.poll.duration}s")
        print(f"  Segment duration: {config.view.segment_duration}s")
        print(f"  Targets: {len(config.targets)}")
        for name, target in config.targets.items():
            status = "enabled" if target.enabled else "disabled"
            print(f"    - {name}: {target.probe_path}, {status}")
        return 0
    except FileNotFoundError as e:
        print(f"No configuration found: {e}", file=sys.stderr)
        return 0  # Missing config is not an error
    except Exception as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1


def configure_logging(verbose: bool = False) -> None:
    """Set up logging from config, with --verbose forcing DEBUG."""
    from jtsvis.config import Config
    from jtsvis.logs import setup_logging

    try:
        config = Config.load_or_default()
        level = config.logging.level
        log_file = Path(config.logging.file) if config.logging.file else None
    except ValueError:
        # Reported properly by the command itself
        level, log_file = "INFO", None

    setup_logging("DEBUG" if verbose else level, log_file)


def main() -> NoReturn:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    configure_logging(args.verbose)

    if args.command == "poll":
        sys.exit(cmd_poll(args))
    elif args.command == "target":
        sys.exit(cmd_target(args))
    elif args.command == "view":
        sys.exit(cmd_view(args))
    elif args.command == "config":
        if args.config_command == "validate":
            sys.exit(cmd_config_validate(args))
        elif args.config_command == "get":
            sys.exit(cmd_config_get(args))
        else:
            parser.parse_args(["config", "--help"])
            sys.exit(1)
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
