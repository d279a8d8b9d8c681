"""
PONYX CLI Main Module
=====================

Main CLI entry point with all commands.
"""

from __future__ import annotations

import argparse
import sys
from typing import List, Optional

from ponyx import __version__
from ponyx.core.config import Config, ConfigError, set_config
from ponyx.utils.logger import LogLevel, configure_logging, get_logger

logger = get_logger("ponyx.cli")


def create_parser() -> argparse.ArgumentParser:
    """Create argument parser."""
    parser = argparse.ArgumentParser(
        prog="ponyx",
        description="PONYX component compiler",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  ponyx check components/                    Report diagnostics for every unit
  ponyx build Counter.ponyx                  Print the JSON artifact
  ponyx build components/ --out generated/   Write one artifact per unit
  ponyx build components/ --format source    Emit host source instead of JSON
  ponyx graph Counter.ponyx                  Show bindings and their readers
        """,
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"PONYX {__version__}",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase log verbosity (-v info, -vv debug)",
    )
    parser.add_argument(
        "--log-format",
        choices=["text", "json"],
        default=None,
        help="Log output format",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to ponyx_config.py or its directory",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print diagnostics and reports as JSON",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Build command
    build_parser = subparsers.add_parser(
        "build",
        help="Compile units",
    )
    build_parser.add_argument(
        "files",
        nargs="+",
        help="Unit files or directories",
    )
    build_parser.add_argument(
        "--out",
        default=None,
        help="Output directory (stdout when omitted)",
    )
    build_parser.add_argument(
        "--format",
        choices=["json", "source"],
        default=None,
        help="Artifact format",
    )
    build_parser.add_argument(
        "--jobs", "-j",
        type=int,
        default=1,
        help="Number of worker processes",
    )

    # Check command
    check_parser = subparsers.add_parser(
        "check",
        help="Report diagnostics without writing artifacts",
    )
    check_parser.add_argument(
        "files",
        nargs="+",
        help="Unit files or directories",
    )
    check_parser.add_argument(
        "--jobs", "-j",
        type=int,
        default=1,
        help="Number of worker processes",
    )

    # Graph command
    graph_parser = subparsers.add_parser(
        "graph",
        help="Print the dependency graph of a unit",
    )
    graph_parser.add_argument(
        "file",
        help="Unit file",
    )

    return parser


def setup(args: argparse.Namespace) -> Config:
    """Load configuration and configure logging from parsed arguments."""
    config = Config.load(args.config) if args.config else Config.load(".")
    set_config(config)

    if args.verbose >= 2:
        level = LogLevel.DEBUG
    elif args.verbose == 1:
        level = LogLevel.INFO
    else:
        level = LogLevel.parse(config.get("log.level", "WARNING"))

    configure_logging(
        level=level,
        format=args.log_format or config.get("log.format", "text"),
        colors=sys.stderr.isatty(),
    )
    logger.debug("Loaded configuration", sources=",".join(name for name, _ in config.sources))
    return config


def cli(args: Optional[List[str]] = None) -> int:
    """
    Main CLI entry point.

    Args:
        args: Command line arguments (uses sys.argv if None)

    Returns:
        Exit code
    """
    parser = create_parser()
    parsed = parser.parse_args(args)

    if not parsed.command:
        parser.print_help()
        return 0

    # Route to command handler
    handlers = {
        "build": handle_build,
        "check": handle_check,
        "graph": handle_graph,
    }

    handler = handlers.get(parsed.command)
    if handler:
        try:
            config = setup(parsed)
            return handler(parsed, config)
        except KeyboardInterrupt:
            print("\nAborted.", file=sys.stderr)
            return 130
        except (ConfigError, OSError, UnicodeDecodeError) as e:
            logger.debug("Command failed", command=parsed.command, exception=e)
            print(f"Error: {e}", file=sys.stderr)
            return 1
    else:
        parser.print_help()
        return 1


def handle_build(args: argparse.Namespace, config: Config) -> int:
    """Handle build command."""
    from ponyx.cli.commands.build import build_units
    return build_units(
        args.files,
        config,
        out_dir=args.out or config.get("build.out_dir"),
        fmt=args.format or config.get("build.format", "json"),
        jobs=args.jobs,
        json_output=args.json,
    )


def handle_check(args: argparse.Namespace, config: Config) -> int:
    """Handle check command."""
    from ponyx.cli.commands.check import check_units
    return check_units(args.files, config, jobs=args.jobs, json_output=args.json)


def handle_graph(args: argparse.Namespace, config: Config) -> int:
    """Handle graph command."""
    from ponyx.cli.commands.graph import show_graph
    return show_graph(args.file, config, json_output=args.json)


def main() -> None:
    """Main entry point."""
    sys.exit(cli())


if __name__ == "__main__":
    main()
