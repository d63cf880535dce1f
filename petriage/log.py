from __future__ import annotations

import logging
from typing import Any, Optional, Protocol

from rich.console import Console
from rich.logging import RichHandler

LOGGER_NAMESPACE = "petriage"


class Logger(Protocol):
    """Capability set the parser logs through. Context goes in as keywords."""

    def info(self, msg: str, **context: Any) -> None: ...

    def warn(self, msg: str, **context: Any) -> None: ...

    def error(self, msg: str, **context: Any) -> None: ...

    def debug(self, msg: str, **context: Any) -> None: ...


def _format(msg: str, context: dict) -> str:
    if not context:
        return msg
    pairs = " ".join(f"{k}={v}" for k, v in context.items())
    return f"{msg} {pairs}"


class StdLogger:
    """Logger adapter over a standard library ``logging.Logger``."""

    def __init__(self, name: str = LOGGER_NAMESPACE, logger: Optional[logging.Logger] = None) -> None:
        self._logger = logger or logging.getLogger(name)

    def info(self, msg: str, **context: Any) -> None:
        self._logger.info(_format(msg, context), extra={"pe_context": context})

    def warn(self, msg: str, **context: Any) -> None:
        self._logger.warning(_format(msg, context), extra={"pe_context": context})

    def error(self, msg: str, **context: Any) -> None:
        self._logger.error(_format(msg, context), extra={"pe_context": context})

    def debug(self, msg: str, **context: Any) -> None:
        self._logger.debug(_format(msg, context), extra={"pe_context": context})


def setup_logging(level: str = "INFO") -> logging.Logger:
    """Attach a Rich console handler to the package logger (idempotent)."""
    logger = logging.getLogger(LOGGER_NAMESPACE)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    logger.propagate = False
    if not any(isinstance(h, RichHandler) for h in logger.handlers):
        logger.addHandler(
            RichHandler(
                console=Console(stderr=True),
                show_path=False,
                show_time=True,
                markup=False,
                rich_tracebacks=True,
            )
        )
    return logger
