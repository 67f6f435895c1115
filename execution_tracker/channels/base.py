"""Abstract base classes for result channels."""

import asyncio
import contextlib
import logging
from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import ClassVar, Protocol

from execution_tracker.errors import ChannelError
from execution_tracker.models.request import ExecutionRequest
from execution_tracker.models.result import TestResult

log = logging.getLogger(__name__)


class ChannelListener(Protocol):
    """Receiver of everything a channel learns about a request."""

    async def deliver(
        self, channel: str, request_id: str, results: Sequence[TestResult]
    ) -> None:
        """Accept results reported for ``request_id``."""

    async def report_failure(
        self, channel: str, request_id: str, error: ChannelError
    ) -> None:
        """Accept a failure the channel ran into while serving ``request_id``."""


class ResultChannel(ABC):
    """A mechanism through which results for a request can be learned.

    Channels pick their own cadence and call back into the listener whenever
    they have something to report. ``deactivate`` must be safe to call at any
    time, including for requests that were never activated, and once it has
    returned the channel must not deliver anything further for that request.
    """

    name: ClassVar[str]

    @abstractmethod
    async def activate(
        self, request: ExecutionRequest, listener: ChannelListener
    ) -> None:
        """Start looking for results of ``request``.

        Raises:
            ChannelError: If the channel cannot serve the request

        """

    @abstractmethod
    async def deactivate(self, request_id: str) -> None:
        """Stop looking for results of ``request_id``."""

    async def close(self) -> None:
        """Release resources shared by every request."""


@dataclass(kw_only=True)
class PollingChannel(ResultChannel):
    """Channel running one background task per active request."""

    _tasks: dict[str, asyncio.Task[None]] = field(default_factory=dict, repr=False)

    async def activate(
        self, request: ExecutionRequest, listener: ChannelListener
    ) -> None:
        """Start the background task for ``request``."""
        if request.request_id in self._tasks:
            return
        self._tasks[request.request_id] = asyncio.create_task(
            self._guarded_run(request, listener),
            name=f"{self.name}:{request.request_id}",
        )

    async def deactivate(self, request_id: str) -> None:
        """Cancel the background task for ``request_id`` and wait for it."""
        task = self._tasks.pop(request_id, None)
        if task is None or task is asyncio.current_task():
            # A task deactivating itself just stops at its next loop check.
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    def is_active(self, request_id: str) -> bool:
        """Whether a task is still registered for ``request_id``."""
        return request_id in self._tasks

    async def close(self) -> None:
        """Cancel every background task."""
        for request_id in list(self._tasks):
            await self.deactivate(request_id)

    async def _guarded_run(
        self, request: ExecutionRequest, listener: ChannelListener
    ) -> None:
        try:
            await self._run(request, listener)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            log.exception("%s channel crashed for %s", self.name, request.request_id)
            await listener.report_failure(
                self.name,
                request.request_id,
                ChannelError(str(exc), channel=self.name),
            )
        finally:
            if self._tasks.get(request.request_id) is asyncio.current_task():
                del self._tasks[request.request_id]

    @abstractmethod
    async def _run(self, request: ExecutionRequest, listener: ChannelListener) -> None:
        """Look for results of ``request`` until done or cancelled."""
