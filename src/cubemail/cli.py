from __future__ import annotations

import argparse
import logging
from dataclasses import replace

from . import __release_date__, __version_label__
from .app import run
from .config import DEFAULT_CONFIG_PATH, load_config
from .logging_setup import setup_logging
from .style import ConsoleStyle

LOGGER = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cubemail",
        description="Show the unread count of an IMAP mailbox on an Amperka Cube.",
    )
    parser.add_argument(
        "--config",
        "-config",
        dest="config",
        default=DEFAULT_CONFIG_PATH,
        help=f"Path to config file (default: {DEFAULT_CONFIG_PATH})",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version_label__} ({__release_date__})",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    # A broken config is fatal: ConfigError propagates to the interpreter.
    config = load_config(args.config)
    if args.verbose:
        config = replace(config, log_level="DEBUG", log_console_level="DEBUG")

    style = ConsoleStyle.for_output(config.color_output)
    print(style.banner("IMAP monitor for Amperka Cube"))
    print()

    setup_logging(
        config.log_file,
        log_level=config.log_level,
        log_console_level=config.log_console_level,
        log_console_enabled=config.log_console_enabled,
        log_max_bytes=config.log_max_bytes,
        log_backup_count=config.log_backup_count,
        log_run_files_keep=config.log_run_files_keep,
        app_version=__version_label__,
        release_date=__release_date__,
    )
    LOGGER.info(
        "cubemail %s started (%s)",
        __version_label__,
        __release_date__,
        extra={"category": "startup"},
    )
    if config.defaulted_keys:
        LOGGER.info(
            "Using defaults for config keys: %s",
            ", ".join(config.defaulted_keys),
            extra={"category": "config"},
        )
    return run(config, style)


if __name__ == "__main__":
    raise SystemExit(main())
