"""Scoped ownership of the timers and channels serving one request."""

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from types import TracebackType

from execution_tracker.channels.base import ChannelListener, ResultChannel
from execution_tracker.errors import ChannelError
from execution_tracker.models.request import ExecutionRequest

log = logging.getLogger(__name__)

type TimerCallback = Callable[[], Awaitable[None]]


@dataclass(kw_only=True)
class ChannelSupervisor:
    """Owns the timers and active channels of a single request.

    Every exit path of a request ends in ``deactivate_all``, which cancels
    the timers and deactivates the channels exactly once however many times
    it is called. It may be called from inside one of the supervised timers
    or channel tasks; that task is left to finish on its own.
    """

    request: ExecutionRequest
    _channels: dict[str, ResultChannel] = field(default_factory=dict, repr=False)
    _timers: dict[str, asyncio.Task[None]] = field(default_factory=dict, repr=False)
    _closed: bool = False

    @property
    def closed(self) -> bool:
        """Whether ``deactivate_all`` has run."""
        return self._closed

    def call_later(self, name: str, delay: float, callback: TimerCallback) -> None:
        """Run ``callback`` after ``delay`` seconds, replacing a same-named timer."""
        if self._closed:
            return
        self.cancel_timer(name)
        self._timers[name] = asyncio.create_task(
            self._fire(name, delay, callback),
            name=f"{name}:{self.request.request_id}",
        )

    def cancel_timer(self, name: str) -> None:
        """Cancel the timer called ``name`` if it has not fired yet."""
        timer = self._timers.pop(name, None)
        if timer is not None and timer is not asyncio.current_task():
            timer.cancel()

    async def _fire(self, name: str, delay: float, callback: TimerCallback) -> None:
        await asyncio.sleep(delay)
        if self._timers.get(name) is asyncio.current_task():
            del self._timers[name]
        try:
            await callback()
        except Exception:
            log.exception(
                "Timer %s failed for %s", name, self.request.request_id
            )

    async def activate(self, channel: ResultChannel, listener: ChannelListener) -> bool:
        """Activate ``channel`` for the request.

        Returns:
            Whether the channel is now active; activation failures are logged

        """
        if self._closed or channel.name in self._channels:
            return channel.name in self._channels
        try:
            await channel.activate(self.request, listener)
        except ChannelError as exc:
            log.warning(
                "Channel %s unavailable for %s: %s",
                channel.name,
                self.request.request_id,
                exc,
            )
            return False
        self._channels[channel.name] = channel
        self.request.active_channels.add(channel.name)
        log.info("Activated %s for %s", channel.name, self.request.request_id)
        return True

    async def deactivate(self, name: str) -> None:
        """Deactivate the channel called ``name``."""
        channel = self._channels.pop(name, None)
        self.request.active_channels.discard(name)
        if channel is None:
            return
        try:
            await channel.deactivate(self.request.request_id)
        except Exception:
            log.exception(
                "Failed to deactivate %s for %s", name, self.request.request_id
            )

    async def deactivate_all(self) -> None:
        """Cancel every timer and deactivate every channel."""
        if self._closed:
            return
        self._closed = True

        current = asyncio.current_task()
        timers = [t for t in self._timers.values() if t is not current]
        self._timers.clear()
        for timer in timers:
            timer.cancel()
        for timer in timers:
            with contextlib.suppress(asyncio.CancelledError):
                await timer

        for name in list(self._channels):
            await self.deactivate(name)

    async def __aenter__(self) -> "ChannelSupervisor":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.deactivate_all()
