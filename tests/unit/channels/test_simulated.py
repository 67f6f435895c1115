"""Tests for the simulated result channel."""

import asyncio
import random

from execution_tracker.channels.simulated import SimulatedResultChannel
from execution_tracker.testing.channels import RecordingListener
from execution_tracker.testing.factories import build_request


async def test_delivers_one_result_per_test_case() -> None:
    """Every requested test case gets a Passed or Failed result."""
    channel = SimulatedResultChannel(delay=0, rng=random.Random(7))
    listener = RecordingListener()
    request = build_request("TC_001", "TC_002", "TC_003", mode="simulated")

    await channel.activate(request, listener)
    await listener.wait()

    assert len(listener.deliveries) == 1
    assert [r.test_case_id for r in listener.results] == ["TC_001", "TC_002", "TC_003"]
    for result in listener.results:
        assert result.status in {"Passed", "Failed"}
        assert 100 <= result.duration_ms <= 1100
        assert result.logs is not None
        assert result.logs.startswith(f"Executing test {result.test_case_id}")
        assert result.source == "simulated"


async def test_pass_rate_controls_outcome() -> None:
    """A zero pass rate fails every test case with an assertion message."""
    channel = SimulatedResultChannel(delay=0, pass_rate=0.0)
    listener = RecordingListener()

    await channel.activate(build_request("TC_001", "TC_002"), listener)
    await listener.wait()

    assert {r.status for r in listener.results} == {"Failed"}
    assert all("FAILED: Assertion error" in (r.logs or "") for r in listener.results)


async def test_deactivate_before_delay_delivers_nothing() -> None:
    """Nothing is delivered once the request is deactivated."""
    channel = SimulatedResultChannel(delay=0.05)
    listener = RecordingListener()
    request = build_request("TC_001")

    await channel.activate(request, listener)
    assert channel.is_active(request.request_id)
    await channel.deactivate(request.request_id)
    await asyncio.sleep(0.1)

    assert listener.deliveries == []
    assert not channel.is_active(request.request_id)


async def test_activate_twice_runs_once() -> None:
    """A second activation for the same request is ignored."""
    channel = SimulatedResultChannel(delay=0)
    listener = RecordingListener()
    request = build_request("TC_001")

    await channel.activate(request, listener)
    await channel.activate(request, listener)
    await listener.wait()
    await asyncio.sleep(0.01)

    assert len(listener.deliveries) == 1
