"""
Logging utilities for the API process and the background balance monitor.

Provides a consistent logging format and a helper to keep bearer tokens out
of log output.
"""

import hashlib
import logging
import sys


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging with a sensible default format."""
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        stream=sys.stdout,
    )
    # httpx logs every request URL at INFO, and our URLs carry the token.
    logging.getLogger("httpx").setLevel(logging.WARNING)


def token_fingerprint(token: str | None) -> str:
    """Return a short, stable, non-reversible label for a credential."""
    if not token:
        return "<none>"
    digest = hashlib.sha256(token.encode("utf-8")).hexdigest()
    return f"tok:{digest[:8]}"


__all__ = ["configure_logging", "token_fingerprint"]
