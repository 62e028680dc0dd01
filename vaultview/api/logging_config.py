"""
Logging setup for VaultView.

Every module takes a namespaced logger:

    from vaultview.api.logging_config import get_logger
    logger = get_logger("disclosure")

Entry points call setup_logging() once. JSON output is one object per line;
records emitted inside a correlation_id() block carry the id.

Never log plaintext balances, proof signatures or ciphertext bytes.
"""
from __future__ import annotations

import json
import logging
import sys
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Generator, Optional

ROOT_LOGGER = "vaultview"

_correlation_id: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)


def get_correlation_id() -> Optional[str]:
    return _correlation_id.get()


@contextmanager
def correlation_id(cid: Optional[str] = None) -> Generator[str, None, None]:
    """Stamp every record logged inside the block with `cid` (generated if omitted)."""
    if cid is None:
        cid = str(uuid.uuid4())[:12]
    token = _correlation_id.set(cid)
    try:
        yield cid
    finally:
        _correlation_id.reset(token)


class JSONFormatter(logging.Formatter):
    STANDARD_ATTRS = frozenset([
        "name", "msg", "args", "created", "filename", "funcName",
        "levelname", "levelno", "lineno", "module", "msecs",
        "pathname", "process", "processName", "relativeCreated",
        "stack_info", "exc_info", "exc_text", "thread", "threadName",
        "message", "taskName",
    ])

    def format(self, record: logging.LogRecord) -> str:
        data: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        cid = get_correlation_id()
        if cid:
            data["correlation_id"] = cid
        if record.exc_info:
            data["exception"] = self.formatException(record.exc_info)
        for key, value in record.__dict__.items():
            if key not in self.STANDARD_ATTRS:
                data[key] = value
        return json.dumps(data, default=str)


class _CorrelationFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.cid = get_correlation_id() or "-"
        return True


def get_logger(name: str) -> logging.Logger:
    """Return a logger under the `vaultview.` namespace."""
    if name.startswith(ROOT_LOGGER):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")


def setup_logging(level: str = "INFO", json_format: bool = False, log_file: Optional[str] = None) -> logging.Logger:
    """
    Configure the `vaultview` logger tree.

    Args:
        level: Level name for the root vaultview logger
        json_format: Emit JSONFormatter lines instead of plain text
        log_file: Optional path for an extra file handler

    Returns:
        The configured root vaultview logger
    """
    root = logging.getLogger(ROOT_LOGGER)
    root.setLevel(getattr(logging, str(level).upper(), logging.INFO))
    for h in list(root.handlers):
        root.removeHandler(h)

    if json_format:
        fmt: logging.Formatter = JSONFormatter()
    else:
        fmt = logging.Formatter("%(asctime)s %(levelname)s [%(name)s] [%(cid)s] %(message)s")

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
    for h in handlers:
        h.setFormatter(fmt)
        h.addFilter(_CorrelationFilter())
        root.addHandler(h)

    root.propagate = False
    return root


logging.getLogger(ROOT_LOGGER).addHandler(logging.NullHandler())

__all__ = ["get_logger", "setup_logging", "correlation_id", "get_correlation_id", "JSONFormatter"]
