"""CLI entry point for the Alertmanager Telegram bot.

Usage:
    python -m alertmanager_telegram [-c CONFIG] [options]
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import logging.config
import sys
from pathlib import Path
from typing import Any, NoReturn

from pydantic import ValidationError

from alertmanager_telegram import PROGRAM_NAME, __version__
from alertmanager_telegram.bot import Bot
from alertmanager_telegram.config import Settings, load_settings
from alertmanager_telegram.errors import UpstreamQueryError
from alertmanager_telegram.shutdown import GracefulShutdown

# Exit codes
EXIT_SUCCESS = 0
EXIT_ERROR = 1
EXIT_CONFIG_ERROR = 2
EXIT_INTERRUPTED = 130


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        prog=PROGRAM_NAME,
        description="Relay Alertmanager notifications to Telegram and browse alerts from chat.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  alertmanager-telegram-bot -c config.yml                 Run the bot
  alertmanager-telegram-bot -c config.yml --config-check  Validate config and exit
  alertmanager-telegram-bot --disable-http                Run without the webhook server
        """,
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    parser.add_argument(
        "-c",
        "--config",
        default=None,
        help="Path to the YAML config file (default: $CONFIG_PATH)",
    )

    parser.add_argument(
        "--config-check",
        action="store_true",
        help="Validate configuration and exit",
    )

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Override logging level (default: from settings)",
    )

    parser.add_argument(
        "--disable-http",
        action="store_true",
        help="Do not start the webhook HTTP server",
    )

    return parser


def configure_logging(level: str, logfile_path: str | None = None) -> None:
    """Configure logging for the application.

    Args:
        level: Logging level name.
        logfile_path: Also log to this file when set.
    """
    handlers: dict[str, dict[str, Any]] = {
        "console": {
            "class": "logging.StreamHandler",
            "level": level,
            "formatter": "detailed" if level == "DEBUG" else "standard",
            "stream": "ext://sys.stdout",
        },
    }
    if logfile_path:
        handlers["file"] = {
            "class": "logging.FileHandler",
            "level": level,
            "formatter": "detailed",
            "filename": logfile_path,
            "encoding": "utf-8",
        }

    config = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {
                "format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
            "detailed": {
                "format": (
                    "%(asctime)s [%(levelname)s] %(name)s (%(filename)s:%(lineno)d): %(message)s"
                ),
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
        },
        "handlers": handlers,
        "root": {
            "level": level,
            "handlers": list(handlers),
        },
        # Quieter logging for noisy libraries
        "loggers": {
            "httpx": {"level": "WARNING"},
            "httpcore": {"level": "WARNING"},
            "aiohttp.access": {"level": "WARNING"},
        },
    }
    logging.config.dictConfig(config)


def print_config_summary(settings: Settings) -> None:
    summary = settings.redacted_summary()
    print("Configuration:")
    for key, value in summary.items():
        print(f"  {key}: {value}")
    print()


def validate_config(config_path: str | None) -> Settings | None:
    """Load and validate configuration.

    Returns:
        Settings instance if valid, None if invalid.
    """
    try:
        return load_settings(config_path)
    except ValidationError as e:
        print("Configuration validation failed:", file=sys.stderr)
        for error in e.errors():
            field = ".".join(str(loc) for loc in error["loc"])
            print(f"  {field}: {error['msg']}", file=sys.stderr)
        return None
    except (OSError, ValueError) as e:
        print(f"Cannot read config file: {e}", file=sys.stderr)
        return None


def run_config_check(settings: Settings) -> int:
    """Report the configuration and the configured templates."""
    print("Configuration is valid!")
    print()
    print_config_summary(settings)

    missing = [
        path
        for path in (
            settings.webhook_alerts_template_path,
            settings.gettable_alerts_template_path,
            settings.silences_template_path,
        )
        if path and not Path(path).is_file()
    ]
    if missing:
        for path in missing:
            print(f"  Template not found: {path}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    print("All checks passed. Ready to run.")
    return EXIT_SUCCESS


async def run_bot(settings: Settings, *, disable_http: bool = False) -> int:
    """Run the bot until a shutdown signal arrives.

    Returns:
        Exit code.
    """
    logger = logging.getLogger(__name__)

    try:
        async with GracefulShutdown() as shutdown:
            bot = Bot(settings, disable_http=disable_http or None)
            shutdown.register_cleanup(bot.stop)

            await bot.start()
            logger.info("Bot running. Press Ctrl+C to stop.")

            await shutdown.wait()
            logger.info("Shutdown signal received, stopping bot...")

        return EXIT_SUCCESS
    except UpstreamQueryError as e:
        logger.error("Cannot reach Alertmanager: %s", e)
        return EXIT_ERROR
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return EXIT_INTERRUPTED
    except Exception as e:
        logger.exception("Bot failed: %s", e)
        return EXIT_ERROR


def main(argv: list[str] | None = None) -> NoReturn:
    """Main entry point for the CLI.

    Args:
        argv: Command line arguments (defaults to sys.argv[1:]).
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    settings = validate_config(args.config)
    if settings is None:
        sys.exit(EXIT_CONFIG_ERROR)

    configure_logging(args.log_level or settings.log_level, settings.logfile_path)

    if args.config_check:
        sys.exit(run_config_check(settings))

    exit_code = asyncio.run(run_bot(settings, disable_http=args.disable_http))
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
