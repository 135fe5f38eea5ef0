"""Console logger backed by the standard ``logging`` module."""

from __future__ import annotations

import logging
import sys
from typing import Any

from .base import Logger

_FORMAT = "%(asctime)s %(levelname)-7s %(message)s"


def _format_value(value: Any) -> str:
    if isinstance(value, float):
        return f"{value:.3f}"
    text = str(value)
    if " " in text or not text:
        return repr(text)
    return text


class ConsoleLogger(Logger):
    """Writes ``message key=value ...`` lines to stderr.

    ``event`` is dropped from the rendered fields when it repeats the message,
    which is how every loadgen component calls it.
    """

    def __init__(self, name: str = "loadgen", level: int = logging.INFO) -> None:
        self._logger = logging.getLogger(name)
        self._logger.setLevel(level)
        if not self._logger.handlers:
            handler = logging.StreamHandler(sys.stderr)
            handler.setFormatter(logging.Formatter(_FORMAT))
            self._logger.addHandler(handler)
        self._logger.propagate = False

    def set_level(self, level: int | str) -> None:
        if isinstance(level, str):
            level = logging.getLevelName(level.upper())
        self._logger.setLevel(level)

    def _render(self, message: str, kwargs: dict[str, Any]) -> str:
        if kwargs.get("event") == message:
            kwargs = {k: v for k, v in kwargs.items() if k != "event"}
        if not kwargs:
            return message
        fields = " ".join(f"{key}={_format_value(value)}" for key, value in kwargs.items())
        return f"{message} {fields}"

    def debug(self, message: str, **kwargs: Any) -> None:
        if self._logger.isEnabledFor(logging.DEBUG):
            self._logger.debug(self._render(message, kwargs))

    def info(self, message: str, **kwargs: Any) -> None:
        self._logger.info(self._render(message, kwargs))

    def warning(self, message: str, **kwargs: Any) -> None:
        self._logger.warning(self._render(message, kwargs))

    def error(self, message: str, **kwargs: Any) -> None:
        self._logger.error(self._render(message, kwargs))

    def critical(self, message: str, **kwargs: Any) -> None:
        self._logger.critical(self._render(message, kwargs))
