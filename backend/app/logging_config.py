"""Logging setup and structured log helpers."""

import logging
import sys

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

_configured = False


def configure_logging(debug: bool = False) -> None:
    """Configure the root ``archidesk`` logger once per process."""
    global _configured
    if _configured:
        return
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root = logging.getLogger("archidesk")
    root.addHandler(handler)
    root.setLevel(logging.DEBUG if debug else logging.INFO)
    root.propagate = False
    _configured = True


def get_logger(name: str) -> logging.Logger:
    """Get a logger under the ``archidesk`` namespace."""
    if not name.startswith("archidesk"):
        name = f"archidesk.{name}"
    return logging.getLogger(name)


_memory_logger = get_logger("archidesk.memory")
_auth_logger = get_logger("archidesk.auth")


def log_memory_event(
    tier: str,
    owner: str,
    action: str,
    detail: str | None = None,
    success: bool = True,
) -> None:
    """Log a single memory mutation as one pipe-separated line."""
    status = "OK" if success else "FAIL"
    line = f"MEMORY | {tier} | {owner} | {action} | {status}"
    if detail:
        line = f"{line} | {detail}"
    if success:
        _memory_logger.info(line)
    else:
        _memory_logger.warning(line)


def log_auth_event(event: str, subject: str, success: bool = True, reason: str | None = None) -> None:
    """Log an authentication event."""
    status = "OK" if success else "FAIL"
    line = f"AUTH | {event} | {subject} | {status}"
    if reason:
        line = f"{line} | {reason}"
    if success:
        _auth_logger.info(line)
    else:
        _auth_logger.warning(line)
