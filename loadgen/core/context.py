"""Per-virtual-user execution context.

Scenario functions take no arguments; the engine binds a ``VUContext`` in a
context variable before running them so helpers such as metric handles,
``check`` and the HTTP client can find the active run.  asyncio tasks and
``asyncio.to_thread`` both copy the context, so each VU sees its own.
"""

from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass
from typing import TYPE_CHECKING, Iterator

from loadgen.exceptions import LoadgenError

if TYPE_CHECKING:
    from loadgen.core.http import HttpClient
    from loadgen.core.metrics import MetricsCollector


@dataclass
class VUContext:
    vu_id: int
    metrics: "MetricsCollector"
    http: "HttpClient | None" = None
    iteration: int = 0
    scenario: str | None = None


_current: ContextVar[VUContext | None] = ContextVar("loadgen_vu_context", default=None)


def current() -> VUContext:
    """Return the context of the running virtual user (or setup/teardown)."""
    ctx = _current.get()
    if ctx is None:
        raise LoadgenError(
            "NO_ACTIVE_CONTEXT",
            "no virtual user context is bound; call this from a scenario, setup or teardown",
        )
    return ctx


@contextmanager
def bind(ctx: VUContext) -> Iterator[VUContext]:
    token = _current.set(ctx)
    try:
        yield ctx
    finally:
        _current.reset(token)
