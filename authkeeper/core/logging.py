"""
Logging utilities for the command-line entry points.

Library modules only ever call ``logging.getLogger(__name__)``; wiring up
handlers is left to whoever owns the process.
"""

import logging
import sys


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging with the project's line format."""
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        stream=sys.stderr,
    )
    # httpx logs every request line at INFO.
    logging.getLogger("httpx").setLevel(logging.WARNING)


__all__ = ["configure_logging"]
