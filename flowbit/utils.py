"""
Shared helpers used across features.
"""
import logging
import re
import sys

from flowbit.core import config


_LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"
_configured = False


def _configure_root() -> None:
    global _configured
    if _configured:
        return
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(_LOG_FORMAT))
    root = logging.getLogger("flowbit")
    root.addHandler(handler)
    root.setLevel(config.LOG_LEVEL.upper())
    root.propagate = False
    _configured = True


def get_logger(name: str) -> logging.Logger:
    """Return a logger under the ``flowbit`` hierarchy."""
    _configure_root()
    if not name.startswith("flowbit"):
        name = f"flowbit.{name}"
    return logging.getLogger(name)


def slugify(value: str, max_length: int = 50) -> str:
    """Lowercase, URL-safe slug. Falls back to ``org`` for empty input."""
    slug = re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-")
    return slug[:max_length].strip("-") or "org"
