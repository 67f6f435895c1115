"""Coordination of dispatched test runs from start to a single terminal outcome."""

import asyncio
import inspect
import logging
import random
import string
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

import aiohttp

from execution_tracker.channels.base import ResultChannel
from execution_tracker.channels.simulated import SimulatedResultChannel
from execution_tracker.ci.base import CIProvider, CIProviderError, DispatchRequest
from execution_tracker.config import RunnerSettings
from execution_tracker.errors import (
    ChannelError,
    ConfigurationError,
    DispatchError,
    ReconciliationError,
    RequestNotFoundError,
)
from execution_tracker.models.request import (
    TRANSITIONS,
    ExecutionHandle,
    ExecutionReport,
    ExecutionRequest,
    ExecutionState,
    ExecutionSummary,
    Outcome,
)
from execution_tracker.models.result import TestResult, TestStatus
from execution_tracker.reconciler import ResultReconciler
from execution_tracker.registry import CorrelationRegistry
from execution_tracker.supervisor import ChannelSupervisor

log = logging.getLogger(__name__)

type ProgressCallback = Callable[[Sequence[TestResult]], Awaitable[None] | None]
type CompletionCallback = Callable[[ExecutionReport], Awaitable[None] | None]
type BackendProbe = Callable[[], Awaitable[bool]]

PRIMARY_WAIT_TIMER = "primary_wait"
DEADLINE_TIMER = "deadline"

_ID_ALPHABET = string.ascii_lowercase + string.digits


def new_request_id() -> str:
    """Generate a request ID of the form ``req_<epoch-ms>_<random>``."""
    suffix = "".join(random.choices(_ID_ALPHABET, k=9))
    return f"req_{int(time.time() * 1000)}_{suffix}"


@dataclass(frozen=True, kw_only=True)
class ExecutionOptions:
    """Per-run options passed to ``ExecutionCoordinator.start``."""

    simulate: bool = False


@dataclass(kw_only=True)
class _Run:
    """Everything the coordinator keeps for one request."""

    coordinator: "ExecutionCoordinator" = field(repr=False)
    request: ExecutionRequest
    supervisor: ChannelSupervisor = field(repr=False)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)
    unapplied: list[TestResult] = field(default_factory=list)
    progress_callbacks: list[ProgressCallback] = field(default_factory=list)
    completion_callbacks: list[CompletionCallback] = field(default_factory=list)
    done: asyncio.Future[ExecutionReport] = field(
        default_factory=lambda: asyncio.get_running_loop().create_future(),
        repr=False,
    )
    launch: asyncio.Task[None] | None = field(default=None, repr=False)
    report: ExecutionReport | None = None

    async def deliver(
        self, channel: str, request_id: str, results: Sequence[TestResult]
    ) -> None:
        await self.coordinator.deliver(channel, request_id, results)

    async def report_failure(
        self, channel: str, request_id: str, error: ChannelError
    ) -> None:
        await self.coordinator.report_failure(channel, request_id, error)


@dataclass(kw_only=True)
class ExecutionCoordinator:
    """Drives each request through dispatch, result collection and completion.

    Results may arrive over several channels at once. Each request moves
    through an explicit state machine guarded by its own lock, and every
    exit path ends in ``_finish``, which tears down the request's timers
    and channels. Progress and completion callbacks run after the lock is
    released, so they may call back into the coordinator; completion
    callbacks run exactly once.

    Until the primary wait elapses, results come from the realtime push
    channel and the backend poll (only when the backend answered its health
    check). Afterwards, the CI status poll takes over and reads results
    from run artifacts. An absolute outer deadline bounds every request.
    """

    settings: RunnerSettings
    reconciler: ResultReconciler
    provider: CIProvider[Any] | None = None
    push: ResultChannel | None = None
    backend_poll: ResultChannel | None = None
    ci_poll: ResultChannel | None = None
    simulator: ResultChannel = field(default_factory=SimulatedResultChannel)
    probe: BackendProbe | None = None
    registry: CorrelationRegistry[_Run] = field(default_factory=CorrelationRegistry)
    id_factory: Callable[[], str] = new_request_id
    _runs: dict[str, _Run] = field(default_factory=dict, repr=False)
    _purges: dict[str, asyncio.TimerHandle] = field(default_factory=dict, repr=False)
    _callback_tasks: set[asyncio.Task[None]] = field(default_factory=set, repr=False)

    async def start(
        self,
        subject_id: str,
        test_case_ids: Sequence[str],
        options: ExecutionOptions | None = None,
    ) -> ExecutionHandle:
        """Start running ``test_case_ids`` for ``subject_id``.

        The run is dispatched in the background; use ``on_complete`` or
        ``wait`` to learn its outcome. A run still in flight for the same
        subject is cancelled with outcome ``superseded``.

        Raises:
            ValueError: If no test case IDs are given
            ConfigurationError: If the CI configuration cannot be used

        """
        options = options or ExecutionOptions()
        requested = tuple(dict.fromkeys(test_case_ids))
        if not requested:
            raise ValueError("At least one test case ID is required")

        mode = self.settings.execution_mode(simulate=options.simulate)
        if mode == "ci" and (self.provider is None or self.ci_poll is None):
            raise ConfigurationError("No CI provider is configured")

        self.registry.purge_expired()

        timeouts = self.settings.timeouts
        now = datetime.now(timezone.utc)
        request = ExecutionRequest(
            request_id=self.id_factory(),
            subject_id=subject_id,
            requested_test_case_ids=requested,
            mode=mode,
            created_at=now,
            deadline_at=now + timedelta(seconds=timeouts.outer_deadline),
        )
        run = _Run(
            coordinator=self,
            request=request,
            supervisor=ChannelSupervisor(request=request),
        )
        self._runs[request.request_id] = run
        self.registry.subscribe(request.request_id, run)
        previous = self.registry.subscribe(subject_id, run)

        if previous is not None:
            async with previous.lock:
                if not previous.request.terminal:
                    log.info(
                        "Request %s supersedes %s for %s",
                        request.request_id,
                        previous.request.request_id,
                        subject_id,
                    )
                    await self._finish(
                        previous,
                        "cancelled",
                        outcome="superseded",
                        message=f"Superseded by {request.request_id}",
                    )
            await self._notify_complete(previous)

        request.transition("dispatching")
        log.info(
            "Starting %s run %s for %s with %d test case(s)",
            mode,
            request.request_id,
            subject_id,
            len(requested),
        )
        run.supervisor.call_later(
            DEADLINE_TIMER, timeouts.outer_deadline, lambda: self._on_deadline(run)
        )
        run.launch = asyncio.create_task(
            self._launch(run), name=f"launch:{request.request_id}"
        )
        return ExecutionHandle(request_id=request.request_id, subject_id=subject_id)

    async def cancel(self, handle: ExecutionHandle) -> bool:
        """Cancel a run; returns False if it had already finished or is unknown."""
        run = self._runs.get(handle.request_id)
        if run is None:
            return False
        async with run.lock:
            if run.request.terminal:
                return False
            await self._finish(run, "cancelled", message="Cancelled")
        await self._notify_complete(run)
        return True

    def on_progress(self, handle: ExecutionHandle, callback: ProgressCallback) -> None:
        """Call ``callback`` with each batch of newly accepted results."""
        self._get_run(handle.request_id).progress_callbacks.append(callback)

    def on_complete(
        self, handle: ExecutionHandle, callback: CompletionCallback
    ) -> None:
        """Call ``callback`` once with the run's final report.

        If the run has already finished, the callback is scheduled right away.
        """
        run = self._get_run(handle.request_id)
        if run.report is None:
            run.completion_callbacks.append(callback)
            return
        task = asyncio.create_task(
            _invoke(callback, run.report), name=f"on_complete:{handle.request_id}"
        )
        self._callback_tasks.add(task)
        task.add_done_callback(self._callback_tasks.discard)

    async def wait(self, handle: ExecutionHandle) -> ExecutionReport:
        """Wait for the run to finish and return its final report."""
        run = self._get_run(handle.request_id)
        return await asyncio.shield(run.done)

    def get_execution_summary(self, request_id: str) -> ExecutionSummary:
        """Summarise the latest known status of each requested test case.

        Raises:
            RequestNotFoundError: If the request is unknown or already purged

        """
        request = self._get_run(request_id).request
        counts: dict[TestStatus, int] = {}
        test_cases = []
        for test_case_id in request.requested_test_case_ids:
            status = request.status_of(test_case_id)
            counts[status] = counts.get(status, 0) + 1
            result = request.results.get(test_case_id)
            test_cases.append(
                {
                    "id": test_case_id,
                    "status": status,
                    "duration_ms": result.duration_ms if result else 0,
                    "logs": result.logs if result else None,
                }
            )
        return ExecutionSummary(
            request_id=request.request_id,
            state=request.state,
            total_tests=len(request.requested_test_case_ids),
            status_counts=counts,
            test_cases=test_cases,
        )

    def get_request(self, request_id: str) -> ExecutionRequest:
        """Return the request for ``request_id`` while it is retained.

        Raises:
            RequestNotFoundError: If the request is unknown or already purged

        """
        return self._get_run(request_id).request

    async def deliver(
        self, channel: str, request_id: str, results: Sequence[TestResult]
    ) -> None:
        """Accept results reported by ``channel`` for ``request_id``."""
        run = self._lookup(request_id)
        if run is None:
            log.info("Discarding %d result(s) for %s", len(results), request_id)
            return

        async with run.lock:
            request = run.request
            if request.terminal or channel not in request.active_channels:
                log.info(
                    "Discarding %d late result(s) from %s for %s",
                    len(results),
                    channel,
                    request_id,
                )
                return

            accepted = self._merge(request, results)
            batch = [*run.unapplied, *accepted]
            if batch:
                try:
                    await self.reconciler.apply(request_id, batch)
                    run.unapplied = []
                except ReconciliationError as exc:
                    log.warning(
                        "Reconciliation failed for %s, will retry: %s", request_id, exc
                    )
                    run.unapplied = batch

            callbacks = list(run.progress_callbacks) if accepted else []
            if request.is_complete():
                await self._finish(run, "completed")

        for callback in callbacks:
            await _invoke(callback, accepted)
        await self._notify_complete(run)

    async def report_failure(
        self, channel: str, request_id: str, error: ChannelError
    ) -> None:
        """Accept a failure reported by ``channel`` for ``request_id``."""
        run = self._lookup(request_id)
        if run is None:
            return

        if not error.fatal:
            log.warning("Channel %s failed for %s: %s", channel, request_id, error)
            return

        async with run.lock:
            request = run.request
            if request.terminal or channel not in request.active_channels:
                return
            if "failed" not in TRANSITIONS[request.state]:
                log.warning(
                    "Ignoring fatal %s error for %s in state %s: %s",
                    channel,
                    request_id,
                    request.state,
                    error,
                )
                return
            await self._finish(run, "failed", message=str(error))
        await self._notify_complete(run)

    async def aclose(self) -> None:
        """Cancel every unfinished run and release channel resources.

        Completion callbacks still pending are awaited before returning.
        """
        for run in list(self._runs.values()):
            async with run.lock:
                if not run.request.terminal:
                    await self._finish(run, "cancelled", message="Coordinator closed")
            await self._notify_complete(run)
            if run.launch is not None and not run.launch.done():
                run.launch.cancel()
        if self._callback_tasks:
            await asyncio.gather(*self._callback_tasks)
        for handle in self._purges.values():
            handle.cancel()
        self._purges.clear()
        for channel in (self.push, self.backend_poll, self.ci_poll, self.simulator):
            if channel is not None:
                await channel.close()

    async def _launch(self, run: _Run) -> None:
        request = run.request
        timeouts = self.settings.timeouts

        if request.mode == "simulated":
            async with run.lock:
                if request.terminal:
                    return
                request.transition("awaiting_results")
                await run.supervisor.activate(self.simulator, run)
            return

        backend_available = await self._probe_backend()
        try:
            handle = await self._dispatch(request)
        except DispatchError as exc:
            async with run.lock:
                if not request.terminal:
                    log.error("Dispatch failed for %s: %s", request.request_id, exc)
                    await self._finish(run, "failed", message=str(exc))
            await self._notify_complete(run)
            return

        async with run.lock:
            if request.terminal:
                log.info(
                    "Request %s finished while dispatching (%s)",
                    request.request_id,
                    request.state,
                )
                return

            request.run_handle = handle
            request.transition("awaiting_results")
            if backend_available:
                for channel in (self.push, self.backend_poll):
                    if channel is not None:
                        await run.supervisor.activate(channel, run)
                primary_wait = timeouts.primary_wait_with_backend
            else:
                log.info(
                    "Backend unavailable, waiting for CI run of %s", request.request_id
                )
                primary_wait = timeouts.primary_wait_without_backend

            run.supervisor.call_later(
                PRIMARY_WAIT_TIMER, primary_wait, lambda: self._on_primary_wait(run)
            )

    async def _probe_backend(self) -> bool:
        if self.probe is None:
            return False
        try:
            return await asyncio.wait_for(
                self.probe(), timeout=self.settings.timeouts.probe
            )
        except TimeoutError:
            log.warning("Backend health check timed out")
            return False

    async def _dispatch(self, request: ExecutionRequest) -> Any:
        if self.provider is None:
            raise DispatchError("No CI provider is configured")
        try:
            return await self.provider.dispatch_workflow(
                DispatchRequest(
                    request_id=request.request_id,
                    subject_id=request.subject_id,
                    test_case_ids=request.requested_test_case_ids,
                    callback_url=self.settings.callback_url,
                )
            )
        except (CIProviderError, aiohttp.ClientError, TimeoutError) as exc:
            raise DispatchError(f"Failed to dispatch run: {exc}") from exc

    async def _on_primary_wait(self, run: _Run) -> None:
        async with run.lock:
            request = run.request
            if request.state != "awaiting_results":
                return

            pending = request.pending_test_case_ids()
            log.info(
                "Primary wait elapsed for %s with %d pending test case(s), "
                "polling CI run",
                request.request_id,
                len(pending),
            )
            request.transition("polling")
            for name in list(request.active_channels):
                await run.supervisor.deactivate(name)

            if self.ci_poll is None:
                await self._finish(
                    run, "failed", message="No CI status poller is configured"
                )
            elif not await run.supervisor.activate(self.ci_poll, run):
                await self._finish(
                    run, "failed", message="CI status polling could not start"
                )
        await self._notify_complete(run)

    async def _on_deadline(self, run: _Run) -> None:
        async with run.lock:
            if run.request.terminal:
                return
            log.warning(
                "Request %s timed out in state %s",
                run.request.request_id,
                run.request.state,
            )
            await self._finish(
                run, "timed_out", message="Timed out waiting for results"
            )
        await self._notify_complete(run)

    def _merge(
        self, request: ExecutionRequest, results: Sequence[TestResult]
    ) -> list[TestResult]:
        accepted: list[TestResult] = []
        requested = set(request.requested_test_case_ids)
        for result in results:
            if result.test_case_id not in requested:
                log.info(
                    "Ignoring result for %s, not requested by %s",
                    result.test_case_id,
                    request.request_id,
                )
                continue
            current = request.results.get(result.test_case_id)
            if current is not None and current.terminal:
                if not result.terminal or current.status == result.status:
                    continue
            request.results[result.test_case_id] = result
            accepted.append(result)
        return accepted

    async def _finish(
        self,
        run: _Run,
        state: ExecutionState,
        *,
        outcome: Outcome | None = None,
        message: str | None = None,
    ) -> None:
        """Move ``run`` to a terminal state; caller holds its lock.

        Completion callbacks are left for ``_notify_complete``, which the
        caller runs once the lock is released.
        """
        request = run.request
        request.transition(state)
        request.outcome = outcome or state
        request.message = message
        self.registry.retire(request.request_id)
        self.registry.unsubscribe(request.subject_id, run)

        await run.supervisor.deactivate_all()

        if run.unapplied:
            try:
                await self.reconciler.apply(request.request_id, run.unapplied)
                run.unapplied = []
            except ReconciliationError:
                log.exception(
                    "Dropping %d unreconciled result(s) for %s",
                    len(run.unapplied),
                    request.request_id,
                )

        report = ExecutionReport(
            request_id=request.request_id,
            subject_id=request.subject_id,
            outcome=request.outcome,
            results=request.ordered_results(),
            message=message,
        )
        run.report = report
        log.info(
            "Request %s finished: outcome=%s, results=%d/%d",
            request.request_id,
            report.outcome,
            len(report.results),
            len(request.requested_test_case_ids),
        )

        if not run.done.done():
            run.done.set_result(report)

        loop = asyncio.get_running_loop()
        self._purges[request.request_id] = loop.call_later(
            self.registry.grace_period, self._purge, request.request_id
        )

    async def _notify_complete(self, run: _Run) -> None:
        """Hand a finished run's report to its completion callbacks, once."""
        if run.report is None:
            return
        callbacks, run.completion_callbacks = run.completion_callbacks, []
        for callback in callbacks:
            await _invoke(callback, run.report)

    def _purge(self, request_id: str) -> None:
        self._purges.pop(request_id, None)
        self._runs.pop(request_id, None)
        self.registry.purge(request_id)
        self.reconciler.forget(request_id)
        log.debug("Purged request %s", request_id)

    def _lookup(self, request_id: str) -> _Run | None:
        if not self.registry.accepts_results(request_id):
            return None
        return self.registry.lookup(request_id)

    def _get_run(self, request_id: str) -> _Run:
        run = self._runs.get(request_id)
        if run is None:
            raise RequestNotFoundError(f"Unknown request: {request_id}")
        return run


async def _invoke(callback: Callable[[Any], Any], argument: Any) -> None:
    try:
        result = callback(argument)
        if inspect.isawaitable(result):
            await result
    except Exception:
        log.exception("Execution callback failed")
