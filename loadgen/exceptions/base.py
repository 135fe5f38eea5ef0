"""Exception classes for loadgen."""

from __future__ import annotations

from typing import Any


class LoadgenError(Exception):
    """Base exception: ``code: message`` plus optional structured details."""

    def __init__(self, code: str, message: str, details: dict[str, Any] | None = None) -> None:
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(str(self))

    def __str__(self) -> str:
        if self.details:
            return f"{self.code}: {self.message} (details: {self.details})"
        return f"{self.code}: {self.message}"


class ValidationError(LoadgenError):
    """Raised when an individual value (duration, threshold expression) is malformed."""

    pass


class ConfigurationError(LoadgenError):
    """Raised when a run configuration is inconsistent before the run starts."""

    pass


class SetupError(LoadgenError):
    """Raised by setup hooks to signal a failed precondition."""

    pass


class SetupAbortedError(LoadgenError):
    """Raised by the runner when setup failed and no stage was executed."""

    pass
