from __future__ import annotations

import logging
import os
import sys

_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"
_configured = False


def _configure_root() -> None:
    global _configured
    if _configured:
        return

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(_FORMAT))

    root = logging.getLogger("tradelab")
    root.addHandler(handler)
    root.setLevel(os.getenv("LOG_LEVEL", "INFO").upper())
    root.propagate = False

    _configured = True


def set_level(level: str) -> None:
    """Override the package log level (e.g. from a CLI flag)."""
    _configure_root()
    logging.getLogger("tradelab").setLevel(level.upper())


def get_logger(name: str) -> logging.Logger:
    """Return a logger under the `tradelab` hierarchy."""
    _configure_root()
    if not name.startswith("tradelab"):
        name = f"tradelab.{name}"
    return logging.getLogger(name)
