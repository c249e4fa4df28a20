from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

import dotenv
import uvloop

from mqtt_hub import __version__


def parse_cli(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="mqtt-hub", description="MQTT Hub bridge")
    _ = parser.add_argument("--version", action="version", version=__version__)
    _ = parser.add_argument(
        "-s",
        "--settings",
        type=Path,
        default=None,
        help="Path to the YAML settings file (default: $MQTT_HUB_SETTINGS_FILE)",
    )
    _ = parser.add_argument("--env", help="Path to the environment file", default=None, type=Path)
    _ = parser.add_argument("-D", "--debug", action="store_true", help="Enable debug mode")
    return parser.parse_args(argv)


def load_env_file(env_file: Path) -> bool:
    """Load ``env_file`` into the process environment.

    Runs before logging is configured, so problems go to stderr.
    """
    env_path = env_file.expanduser().resolve()
    if not env_path.exists():
        print(f"Warning: Environment file not found: {env_path}", file=sys.stderr)
        return False
    return dotenv.load_dotenv(env_path, override=True)


def main(argv: list[str] | None = None) -> int:
    """Main entry point for MQTT Hub."""
    args = parse_cli(argv)
    env_loaded = load_env_file(args.env) if args.env else False

    # everything below reads MQTT_HUB_* on import
    from mqtt_hub import app
    from mqtt_hub.const import MQTT_HUB_DEBUG, MQTT_HUB_SETTINGS_FILE
    from mqtt_hub.correlation import correlation_context
    from mqtt_hub.logging_abstraction import get_logger, set_level_all

    logger = get_logger(__name__)
    with correlation_context():
        logger.info("Starting MQTT Hub", extra={"version": __version__})
        if env_loaded:
            logger.info("Environment variables loaded", extra={"source": str(args.env)})
        elif args.env:
            logger.warning("No environment variables loaded from file", extra={"path": str(args.env)})

        if args.debug or MQTT_HUB_DEBUG:
            set_level_all(logging.DEBUG)
            logger.info("Debug mode enabled")

        settings_file = args.settings or Path(MQTT_HUB_SETTINGS_FILE)
        try:
            code = uvloop.run(app.run_hub(settings_file))
        except KeyboardInterrupt:
            logger.info("Keyboard interrupt received, shutting down...")
            code = 0
        except Exception:
            logger.exception("Fatal error in main loop")
            code = 1
        logger.info("MQTT Hub shutdown complete")
        return code


if __name__ == "__main__":
    raise SystemExit(main())
