"""
Rubedo DJ - Entry Point

Run with: python -m rubedo
"""

import argparse
import asyncio
import logging
import logging.handlers
import sys
from dataclasses import replace
from pathlib import Path

from rubedo import __version__
from rubedo.config import DEFAULT_CONFIG_PATH, ConfigError, DjConfig, load_config
from rubedo.station import RubedoStation
from rubedo.streaming.icecast import FatalConnectError

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


def setup_logging(verbose: bool = False, log_file: Path | None = None) -> None:
    """Configure logging for the application."""
    level = logging.DEBUG if verbose else logging.INFO

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        # One file per day, like the DJ log always has been
        handlers.append(
            logging.handlers.TimedRotatingFileHandler(
                log_file,
                when="midnight",
                encoding="utf-8",
            )
        )

    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        datefmt=LOG_DATEFMT,
        handlers=handlers,
        force=True,
    )

    # Reduce noise from third-party libraries
    logging.getLogger("asyncio").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="rubedo-dj",
        description="Rubedo DJ - streams the request queue (or random songs) to Icecast",
    )

    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=DEFAULT_CONFIG_PATH,
        help=f"Path to the TOML config file (default: {DEFAULT_CONFIG_PATH})",
    )

    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose (debug) logging",
    )

    parser.add_argument(
        "--music-folder",
        type=Path,
        default=None,
        help="Override the music folder from the config file",
    )

    parser.add_argument(
        "--database",
        type=Path,
        default=None,
        help="Override the shared SQLite database path",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    return parser.parse_args(argv)


def apply_overrides(config: DjConfig, args: argparse.Namespace) -> DjConfig:
    """Apply command line overrides on top of the loaded config."""
    if args.music_folder is not None:
        config = replace(config, music_folder=args.music_folder)
    if args.database is not None:
        config = replace(config, database=args.database)
    return config


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the application."""
    args = parse_args(argv)

    # Log to stderr until we know where the log file goes
    setup_logging(verbose=args.verbose)
    logger = logging.getLogger(__name__)

    try:
        config = apply_overrides(load_config(args.config), args)
    except ConfigError as e:
        logger.error("Invalid configuration: %s", e)
        return 2

    setup_logging(verbose=args.verbose, log_file=config.log_path)
    logger.info("Starting Rubedo DJ %s...", __version__)

    station = RubedoStation(config)
    try:
        asyncio.run(station.run())
    except KeyboardInterrupt:
        logger.info("Shutdown requested by user")
    except FatalConnectError:
        # Already logged; nothing to broadcast to.
        return 1
    except Exception as e:
        logger.exception("Fatal error: %s", e)
        return 1

    logger.info("Exiting")
    return 0


if __name__ == "__main__":
    sys.exit(main())
