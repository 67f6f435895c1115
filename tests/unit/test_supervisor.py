"""Tests for the channel supervisor."""

import asyncio

import pytest

from execution_tracker.supervisor import ChannelSupervisor
from execution_tracker.testing.channels import (
    RecordingListener,
    ScriptedBackendPollChannel,
    ScriptedPushChannel,
)
from execution_tracker.testing.factories import build_request


async def never() -> None:
    """Timer callback that must not run."""
    raise AssertionError("timer fired")


@pytest.fixture
def supervisor() -> ChannelSupervisor:
    """Create a supervisor for one request."""
    return ChannelSupervisor(request=build_request())


async def test_activate_tracks_active_channels(supervisor: ChannelSupervisor) -> None:
    """Activated channels are recorded on the request."""
    push = ScriptedPushChannel()

    assert await supervisor.activate(push, RecordingListener())
    assert supervisor.request.active_channels == {"push"}
    assert push.activations == ["req_1"]


async def test_activation_failure_is_contained(supervisor: ChannelSupervisor) -> None:
    """A channel refusing activation is logged and left out."""
    push = ScriptedPushChannel(fail_activation=True)

    assert not await supervisor.activate(push, RecordingListener())
    assert supervisor.request.active_channels == set()


async def test_timer_fires_callback(supervisor: ChannelSupervisor) -> None:
    """Timers run their callback after the delay."""
    fired = asyncio.Event()

    async def callback() -> None:
        fired.set()

    supervisor.call_later("primary_wait", 0, callback)

    await asyncio.wait_for(fired.wait(), 1)


async def test_cancelled_timer_does_not_fire(supervisor: ChannelSupervisor) -> None:
    """A cancelled timer never runs its callback."""
    calls: list[str] = []

    async def callback() -> None:
        calls.append("fired")

    supervisor.call_later("primary_wait", 0.01, callback)
    supervisor.cancel_timer("primary_wait")
    await asyncio.sleep(0.05)

    assert calls == []


async def test_deactivate_all_is_idempotent(supervisor: ChannelSupervisor) -> None:
    """Tearing down twice deactivates each channel once."""
    push, backend = ScriptedPushChannel(), ScriptedBackendPollChannel()
    await supervisor.activate(push, RecordingListener())
    await supervisor.activate(backend, RecordingListener())
    supervisor.call_later("deadline", 3600, never)

    await supervisor.deactivate_all()
    await supervisor.deactivate_all()

    assert push.deactivations == ["req_1"]
    assert backend.deactivations == ["req_1"]
    assert supervisor.request.active_channels == set()
    assert supervisor.closed


async def test_nothing_starts_after_teardown(supervisor: ChannelSupervisor) -> None:
    """Closed supervisors refuse new timers and channels."""
    calls: list[str] = []

    async def callback() -> None:
        calls.append("fired")

    await supervisor.deactivate_all()
    supervisor.call_later("primary_wait", 0, callback)
    activated = await supervisor.activate(ScriptedPushChannel(), RecordingListener())
    await asyncio.sleep(0.01)

    assert not activated
    assert calls == []


async def test_teardown_from_inside_timer(supervisor: ChannelSupervisor) -> None:
    """A timer may tear down its own supervisor without deadlocking."""
    push = ScriptedPushChannel()
    await supervisor.activate(push, RecordingListener())
    done = asyncio.Event()

    async def callback() -> None:
        await supervisor.deactivate_all()
        done.set()

    supervisor.call_later("deadline", 0, callback)

    await asyncio.wait_for(done.wait(), 1)
    assert push.deactivations == ["req_1"]


async def test_context_manager_tears_down(supervisor: ChannelSupervisor) -> None:
    """Leaving the context deactivates everything."""
    push = ScriptedPushChannel()

    async with supervisor:
        await supervisor.activate(push, RecordingListener())

    assert push.deactivations == ["req_1"]
