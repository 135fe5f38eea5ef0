"""Custom exceptions for loadgen.

All exceptions carry a machine-readable code, a human-readable message and
an optional details dict, so the CLI can report them uniformly.
"""

from loadgen.exceptions.base import (
    ConfigurationError,
    LoadgenError,
    SetupAbortedError,
    SetupError,
    ValidationError,
)

__all__ = [
    "LoadgenError",
    "ValidationError",
    "ConfigurationError",
    "SetupError",
    "SetupAbortedError",
]
