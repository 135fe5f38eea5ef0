from __future__ import annotations

import asyncio
import signal
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable

import httpx

from loadgen.core.config import validate_run_config
from loadgen.core.context import VUContext, bind
from loadgen.core.http import HttpClient
from loadgen.core.metrics import MetricsCollector
from loadgen.core.mix import ScenarioDispatcher
from loadgen.core.models import RunConfig, RunResult
from loadgen.core.stages import StageSchedule
from loadgen.core.thresholds import evaluate_thresholds
from loadgen.core.vu import VirtualUser, VUConfig, invoke
from loadgen.exceptions import SetupAbortedError
from loadgen.logger import Logger, session_logger


class Runner:
    """Drives one load run: setup, staged virtual users, thresholds, teardown."""

    def __init__(
        self,
        config: RunConfig,
        *,
        logger: Logger | None = None,
        clock: Callable[[], float] = time.monotonic,
        transport: httpx.AsyncBaseTransport | None = None,
        handle_signals: bool = True,
    ) -> None:
        self._config = config
        self._logger = logger or session_logger
        self._clock = clock
        self._transport = transport
        self._handle_signals = handle_signals
        self._pool: _VUPool | None = None

    @property
    def spawned_vus(self) -> int:
        return self._pool.spawned if self._pool is not None else 0

    async def run(self) -> RunResult:
        config = self._config
        validate_run_config(config)

        schedule = StageSchedule(config.stages, max_vus=config.max_vus)
        dispatcher = ScenarioDispatcher(config.scenarios)
        metrics = MetricsCollector(sample_size=config.sample_size, seed=config.seed, logger=self._logger)

        self._logger.info(
            "run.start",
            event="run.start",
            base_url=config.base_url,
            stages=len(config.stages),
            total_duration_seconds=schedule.total_duration_seconds,
            peak_target=schedule.peak_target,
            scenarios=dispatcher.probabilities(),
            thresholds=len(config.thresholds),
        )

        setup_data = await self._run_setup(metrics)

        interrupt = asyncio.Event()
        pool = self._pool = _VUPool(config, dispatcher, metrics, self.build_http_client, logger=self._logger)
        started = self._clock()
        aborted = False

        loop = asyncio.get_running_loop()

        def _handle_signal(signum: int, _frame) -> None:  # pragma: no cover
            self._logger.warning("run.signal", event="run.signal", signum=signum)
            loop.call_soon_threadsafe(interrupt.set)

        with _SignalHandlers(_handle_signal, enabled=self._handle_signals):
            try:
                aborted = await self._drive(schedule, pool, metrics, started, interrupt)
            finally:
                await pool.shutdown(config.graceful_stop_seconds)

        ended = self._clock()
        metrics.freeze()
        duration = max(0.0, ended - started)
        snapshot = metrics.snapshot()
        outcomes, passed = evaluate_thresholds(config.thresholds, snapshot, duration_seconds=duration)

        result = RunResult(
            started_at_monotonic=started,
            ended_at_monotonic=ended,
            metrics={name: s.to_report(duration) for name, s in snapshot.items()},
            outcomes=outcomes,
            peak_vus=pool.peak,
            aborted_by_threshold=aborted,
            interrupted=interrupt.is_set(),
        )

        for outcome in outcomes:
            log = self._logger.info if outcome.passed else self._logger.warning
            log(
                "run.threshold",
                event="run.threshold",
                metric=outcome.threshold.metric,
                threshold=outcome.threshold.source,
                observed=outcome.observed,
                passed=outcome.passed,
            )

        self._logger.info(
            "run.end",
            event="run.end",
            passed=passed,
            duration_seconds=result.duration_seconds,
            iterations=result.iterations,
            request_count=result.request_count,
            throughput_rps=result.throughput_rps,
            peak_vus=result.peak_vus,
            aborted_by_threshold=aborted,
        )

        await self._run_teardown(setup_data, metrics)
        return result

    async def _drive(
        self,
        schedule: StageSchedule,
        pool: "_VUPool",
        metrics: MetricsCollector,
        started: float,
        interrupt: asyncio.Event,
    ) -> bool:
        """Converge the active set to the stage target every tick.

        Returns True if an ``abort_on_fail`` threshold ended the run early.
        """
        config = self._config
        abort_thresholds = [t for t in config.thresholds if t.abort_on_fail]
        abort_metrics = {t.metric for t in abort_thresholds}
        last_target: int | None = None

        while not interrupt.is_set():
            elapsed = self._clock() - started
            if schedule.is_terminal(elapsed):
                break

            target = schedule.target_at(elapsed)
            await pool.scale_to(target)
            if target != last_target:
                self._logger.debug(
                    "run.tick",
                    event="run.tick",
                    elapsed_seconds=elapsed,
                    target=target,
                    active=pool.active_count,
                )
                last_target = target

            if abort_thresholds:
                outcomes, _ = evaluate_thresholds(
                    abort_thresholds, metrics.summaries(abort_metrics), duration_seconds=max(elapsed, 0.0)
                )
                # thresholds without data yet are not a reason to abort
                breached = [o for o in outcomes if not o.passed and o.observed is not None]
                if breached:
                    self._logger.warning(
                        "run.abort_on_fail",
                        event="run.abort_on_fail",
                        thresholds=[o.threshold.label for o in breached],
                        elapsed_seconds=elapsed,
                    )
                    return True

            remaining = schedule.total_duration_seconds - elapsed
            try:
                await asyncio.wait_for(interrupt.wait(), timeout=max(0.0, min(config.tick_seconds, remaining)))
            except asyncio.TimeoutError:
                pass

        return False

    async def _run_setup(self, metrics: MetricsCollector) -> Any:
        if self._config.setup is None:
            return None

        self._logger.info("run.setup", event="run.setup")
        http = self.build_http_client(metrics, vu_id=0)
        try:
            with bind(VUContext(vu_id=0, metrics=metrics, http=http)):
                return await invoke(self._config.setup)
        except Exception as exc:
            self._logger.error(
                "run.setup_failed",
                event="run.setup_failed",
                error_type=type(exc).__name__,
                error=str(exc),
                recovery="Fix the precondition reported by setup; no virtual users were started",
            )
            raise SetupAbortedError(
                "SETUP_FAILED",
                f"setup failed: {exc}",
                {"error_type": type(exc).__name__},
            ) from exc
        finally:
            await http.aclose()

    async def _run_teardown(self, data: Any, metrics: MetricsCollector) -> None:
        if self._config.teardown is None:
            return

        self._logger.info("run.teardown", event="run.teardown")
        http = self.build_http_client(metrics, vu_id=0)
        try:
            with bind(VUContext(vu_id=0, metrics=metrics, http=http)):
                await invoke(self._config.teardown, data)
        except Exception as exc:
            self._logger.error(
                "run.teardown_failed",
                event="run.teardown_failed",
                error_type=type(exc).__name__,
                error=str(exc),
            )
        finally:
            await http.aclose()

    def build_http_client(self, metrics: MetricsCollector, *, vu_id: int) -> HttpClient:
        config = self._config
        return HttpClient(
            metrics,
            base_url=config.base_url,
            api_key=config.api_key,
            timeout_seconds=config.timeout_seconds,
            max_retries=config.max_retries,
            vu_id=vu_id,
            logger=self._logger,
            transport=self._transport,
        )


@dataclass(eq=False)
class _VUHandle:
    vu: VirtualUser
    stop_event: asyncio.Event
    task: asyncio.Task[None]


class _VUPool:
    """The active virtual-user set; only the scheduler tick mutates it."""

    def __init__(
        self,
        config: RunConfig,
        dispatcher: ScenarioDispatcher,
        metrics: MetricsCollector,
        client_factory: Callable[..., HttpClient],
        *,
        logger: Logger,
    ) -> None:
        self._config = config
        self._client_factory = client_factory
        self._logger = logger
        self._dispatcher = dispatcher
        self._metrics = metrics
        self._lock = asyncio.Lock()
        self._active: list[_VUHandle] = []
        self._retiring: set[_VUHandle] = set()
        self._next_id = 1
        self.spawned = 0
        self.peak = 0

    @property
    def active_count(self) -> int:
        return len(self._active)

    async def scale_to(self, target: int) -> None:
        async with self._lock:
            while len(self._active) < target:
                self._active.append(self._spawn())
            while len(self._active) > target:
                # most recently spawned users retire first
                self._retire(self._active.pop())
            self.peak = max(self.peak, len(self._active))

    async def shutdown(self, graceful_seconds: float) -> None:
        """Stop every user, wait for in-flight iterations, then hard-cancel stragglers."""
        async with self._lock:
            while self._active:
                self._retire(self._active.pop())
            handles = list(self._retiring)

        if not handles:
            return

        tasks = [h.task for h in handles]
        _, pending = await asyncio.wait(tasks, timeout=max(0.0, graceful_seconds))
        if pending:
            self._logger.warning(
                "run.graceful_stop_exceeded",
                event="run.graceful_stop_exceeded",
                cancelled=len(pending),
                graceful_stop_seconds=graceful_seconds,
            )
            for task in pending:
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    def _spawn(self) -> _VUHandle:
        config = self._config
        vu_id = self._next_id
        self._next_id += 1
        self.spawned += 1

        vu = VirtualUser(
            VUConfig(
                vu_id=vu_id,
                think_time=config.think_time,
                seed=(config.seed + vu_id) if config.seed is not None else None,
            ),
            self._dispatcher,
            self._metrics,
            http=self._client_factory(self._metrics, vu_id=vu_id),
            logger=self._logger,
        )
        stop_event = asyncio.Event()
        task = asyncio.create_task(_run_vu(vu, stop_event), name=f"vu-{vu_id}")
        return _VUHandle(vu=vu, stop_event=stop_event, task=task)

    def _retire(self, handle: _VUHandle) -> None:
        handle.stop_event.set()
        self._retiring.add(handle)
        handle.task.add_done_callback(lambda _t, h=handle: self._retiring.discard(h))


async def _run_vu(vu: VirtualUser, stop_event: asyncio.Event) -> None:
    try:
        await vu.run(stop_event)
    finally:
        await vu.aclose()


class _SignalHandlers:
    def __init__(self, handler, *, enabled: bool = True) -> None:
        self._handler = handler
        self._enabled = enabled and threading.current_thread() is threading.main_thread()
        self._previous: dict[int, object] = {}

    def __enter__(self):
        if not self._enabled:
            return self
        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                self._previous[signum] = signal.signal(signum, self._handler)
            except (ValueError, OSError):
                # Some platforms/restrictions may forbid signal handling.
                continue
        return self

    def __exit__(self, exc_type, exc, tb):
        for signum, previous in self._previous.items():
            signal.signal(signum, previous)  # type: ignore[arg-type]
        return False
