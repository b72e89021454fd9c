"""
scoutchat entry point.

This file handles startup concerns (arg-parsing, logging) and launches the appropriate interface
(API or CLI).
"""

import argparse
import logging
import os
import sys

from scoutchat.api.app import run_api
from scoutchat.config import settings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _init_logging(level: str) -> None:
    numeric = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=numeric,
        format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
        stream=sys.stdout,
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------
def main(argv: list[str] | None = None) -> None:
    """
    Main entry point for the scoutchat application.

    This function sets up the command-line interface, initializes logging, and starts the
    application in either CLI or API mode.
    """
    if argv is None:
        argv = sys.argv[1:]

    parser = argparse.ArgumentParser(description="Run the scoutchat research agent")
    parser.add_argument(
        "--mode",
        choices=["api", "cli"],
        type=str.lower,
        default="cli",
        help="Launch the REST API or the interactive CLI (default: cli)",
    )
    parser.add_argument(
        "--workflow",
        choices=["plan", "chat"],
        type=str.lower,
        default=settings.WORKFLOW,
        help="Plan every message, or let the model drive tool calls (default: %(default)s)",
    )
    parser.add_argument(
        "--log-level",
        choices=["debug", "info", "warning", "error", "critical"],
        type=str.lower,
        default=settings.LOG_LEVEL,
        help="Logging level (default from env: %(default)s)",
    )
    args = parser.parse_args(argv)

    # Override settings with command-line arguments; the environment carries them into
    # processes spawned by uvicorn reload
    settings.LOG_LEVEL = args.log_level
    settings.WORKFLOW = args.workflow
    os.environ["LOG_LEVEL"] = args.log_level
    os.environ["WORKFLOW"] = args.workflow

    _init_logging(settings.LOG_LEVEL)

    logger.info("Starting scoutchat [%s mode, %s workflow]", args.mode, settings.WORKFLOW)
    secrets = {"OPENAI_API_KEY", "GEMINI_API_KEY", "ANTHROPIC_API_KEY"}
    logger.debug("Settings: %s", settings.model_dump(exclude=secrets))

    if args.mode == "api":
        run_api(host="0.0.0.0", port=settings.API_PORT, reload=settings.DEBUG)
    else:
        # Lazy import to avoid CLI dependencies if not needed
        from scoutchat.client.cli import (  # pylint: disable=import-outside-toplevel
            run_cli,
        )

        run_cli(settings)


if __name__ == "__main__":
    main()
