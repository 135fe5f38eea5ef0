from __future__ import annotations

import asyncio
import functools
import inspect
import random
import time
from dataclasses import dataclass

from loadgen.core.context import VUContext, bind
from loadgen.core.http import HttpClient
from loadgen.core.metrics import MetricsCollector
from loadgen.core.mix import ScenarioDispatcher
from loadgen.core.models import ScenarioWeight, ThinkTime
from loadgen.logger import Logger, session_logger


@dataclass(frozen=True)
class VUConfig:
    vu_id: int
    think_time: ThinkTime
    seed: int | None = None


class VirtualUser:
    """One simulated client: dispatch, execute, record, think, repeat.

    Stopping is cooperative.  ``stop_event`` is only looked at between
    iterations and during think-time, so a scenario that has started always
    finishes and records its observations.
    """

    def __init__(
        self,
        config: VUConfig,
        dispatcher: ScenarioDispatcher,
        metrics: MetricsCollector,
        *,
        http: HttpClient | None = None,
        logger: Logger | None = None,
    ) -> None:
        self._config = config
        self._dispatcher = dispatcher
        self._metrics = metrics
        self._http = http
        self._logger = logger or session_logger
        self._rng = random.Random(config.seed)
        self._worker: asyncio.Future | None = None
        self._deferred_close: asyncio.Task | None = None
        self.iterations = 0

    @property
    def vu_id(self) -> int:
        return self._config.vu_id

    async def aclose(self) -> None:
        if self._http is None:
            return
        worker = self._worker
        if worker is not None and not worker.done():
            # a sync scenario cannot be interrupted; close once its thread returns
            worker.add_done_callback(self._close_after_worker)
            return
        await self._http.aclose()

    def _close_after_worker(self, worker: asyncio.Future) -> None:
        if not worker.cancelled():
            worker.exception()
        self._deferred_close = asyncio.ensure_future(self._http.aclose())

    async def run(self, stop_event: asyncio.Event) -> None:
        ctx = VUContext(vu_id=self._config.vu_id, metrics=self._metrics, http=self._http)
        self._logger.debug("vu.start", event="vu.start", vu_id=self.vu_id)

        with bind(ctx):
            while not stop_event.is_set():
                scenario = self._dispatcher.choose(self._rng)
                ctx.iteration = self.iterations
                ctx.scenario = scenario.name
                await self.run_iteration(scenario)
                self.iterations += 1

                if await self._think(stop_event):
                    break

        self._logger.debug("vu.stop", event="vu.stop", vu_id=self.vu_id, iterations=self.iterations)

    async def run_iteration(self, scenario: ScenarioWeight) -> bool:
        """Run one scenario and record iteration metrics; returns success."""
        start = time.monotonic()
        ok = True
        try:
            await self._call(scenario.handler)
        except asyncio.CancelledError:
            # hard stop mid-iteration: record nothing for the partial work
            raise
        except Exception as exc:
            ok = False
            self._logger.warning(
                "vu.iteration_error",
                event="vu.iteration_error",
                vu_id=self.vu_id,
                scenario=scenario.name,
                error_type=type(exc).__name__,
                error=str(exc),
            )

        duration_ms = (time.monotonic() - start) * 1000.0
        tags = {"scenario": scenario.name}
        self._metrics.add_counter("iterations", 1, tags=tags)
        self._metrics.add_trend("iteration_duration", duration_ms, tags=tags)
        self._metrics.add_rate("iteration_failed", not ok, tags=tags)
        return ok

    async def _call(self, handler):
        """Run one scenario handler.

        Async handlers are awaited directly.  Sync handlers run in a worker
        thread that a hard cancel cannot stop; the worker is kept so ``aclose``
        leaves the HTTP client open until the thread returns.
        """
        if _is_async_callable(handler):
            return await handler()
        self._worker = asyncio.ensure_future(asyncio.to_thread(handler))
        result = await asyncio.shield(self._worker)
        if inspect.isawaitable(result):
            result = await result
        return result

    def think_seconds(self) -> float:
        think = self._config.think_time
        return think.min_seconds + self._rng.random() * think.jitter_seconds

    async def _think(self, stop_event: asyncio.Event) -> bool:
        """Sleep the think-time; returns True when stopped during or before it."""
        delay = self.think_seconds()
        if delay <= 0:
            await asyncio.sleep(0)
            return stop_event.is_set()
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return stop_event.is_set()
        return True


def _is_async_callable(fn) -> bool:
    while isinstance(fn, functools.partial):
        fn = fn.func
    return inspect.iscoroutinefunction(fn) or inspect.iscoroutinefunction(getattr(fn, "__call__", None))


async def invoke(fn, *args):
    """Await async callables; run plain ones in a worker thread so the loop never blocks."""
    if _is_async_callable(fn):
        return await fn(*args)
    result = await asyncio.to_thread(fn, *args)
    if inspect.isawaitable(result):
        result = await result
    return result
