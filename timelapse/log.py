"""Logging setup for the timelapse service and CLI."""

import logging
import os
import sys


LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


def setup_logging(level: str | None = None) -> None:
    """
    Configure the root logger once.

    Args:
        level: Log level override. Defaults to $LOG_LEVEL or INFO.
    """
    log_level = (level or os.environ.get("LOG_LEVEL", "INFO")).upper()

    root = logging.getLogger()
    root.setLevel(log_level)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))

    # Remove existing handlers to avoid duplicates
    for h in root.handlers[:]:
        root.removeHandler(h)
    root.addHandler(handler)

    # One line per request is noise next to job progress
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
