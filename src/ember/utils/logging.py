"""Logging setup for all EMBER components."""

import logging
import os
import sys

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def configure_logging(level=None):
    """Configure the `ember` logger hierarchy.

    Level comes from the argument, else EMBER_LOG_LEVEL, else info.
    Safe to call more than once; the handler is only attached once.
    """
    level = level or os.environ.get("EMBER_LOG_LEVEL", "info")
    root = logging.getLogger("ember")
    root.setLevel(getattr(logging, str(level).upper(), logging.INFO))
    if not any(getattr(h, "_ember", False) for h in root.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
        handler._ember = True
        root.addHandler(handler)
    root.propagate = False
    return root
