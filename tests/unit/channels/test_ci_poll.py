"""Tests for the CI status poll channel."""

from execution_tracker.channels.ci_poll import CIStatusPollChannel
from execution_tracker.ci.base import Artifact, RunStatus
from execution_tracker.testing.channels import RecordingListener
from execution_tracker.testing.factories import build_request
from execution_tracker.testing.junit import junit_report
from execution_tracker.testing.providers import FakeCIProvider


def results_artifact(cases: dict[str, str]) -> Artifact:
    """Wrap a JUnit report in a test-results artifact."""
    return Artifact(
        name="test-results", files={"junit.xml": junit_report(cases).encode()}
    )


def make_channel(provider: FakeCIProvider, **kwargs: int) -> CIStatusPollChannel:
    """Create a channel that polls without waiting."""
    return CIStatusPollChannel(provider=provider, poll_interval=0, **kwargs)


async def test_delivers_artifact_results_when_run_completes() -> None:
    """Polls until completed, then delivers parsed artifact results."""
    provider = FakeCIProvider(
        statuses=[
            RunStatus(status="queued"),
            RunStatus(status="running"),
            RunStatus(status="completed", conclusion="failure"),
        ],
        artifacts=[results_artifact({"TC_001": "passed", "TC_002": "failed"})],
    )
    listener = RecordingListener()

    await make_channel(provider).activate(
        build_request("TC_001", "TC_002", run_handle="run-1"), listener
    )
    await listener.wait()

    assert listener.failures == []
    assert [(r.test_case_id, r.status) for r in listener.results] == [
        ("TC_001", "Passed"),
        ("TC_002", "Failed"),
    ]
    assert provider.status_checks == ["run-1", "run-1", "run-1"]


async def test_missing_results_are_fatal_after_delivery() -> None:
    """Results found are delivered, then missing ones fail the request."""
    provider = FakeCIProvider(artifacts=[results_artifact({"TC_001": "passed"})])
    listener = RecordingListener()
    channel = make_channel(provider)

    await channel.activate(build_request("TC_001", "TC_002", run_handle="h"), listener)
    await listener.wait()
    if not listener.failures:
        await listener.wait()

    assert [r.test_case_id for r in listener.results] == ["TC_001"]
    ((_, _, error),) = listener.failures
    assert error.fatal
    assert "TC_002" in str(error)


async def test_completed_without_artifacts_is_fatal() -> None:
    """A completed run without parseable results is a fatal failure."""
    provider = FakeCIProvider(artifacts=[])
    listener = RecordingListener()

    await make_channel(provider).activate(build_request(run_handle="h"), listener)
    await listener.wait()

    assert listener.deliveries == []
    ((name, _, error),) = listener.failures
    assert name == "ci_poll"
    assert error.fatal
    assert "without test results" in str(error)


async def test_malformed_artifact_is_fatal() -> None:
    """An artifact that cannot be parsed is a fatal failure."""
    provider = FakeCIProvider(
        artifacts=[Artifact(name="test-results", files={"junit.xml": b"<broken"})]
    )
    listener = RecordingListener()

    await make_channel(provider).activate(build_request(run_handle="h"), listener)
    await listener.wait()

    ((_, _, error),) = listener.failures
    assert error.fatal
    assert "parse" in str(error)


async def test_repeated_api_errors_are_fatal() -> None:
    """Reaching the consecutive error limit gives up."""
    provider = FakeCIProvider(status_errors=[10])
    listener = RecordingListener()

    await make_channel(provider, max_consecutive_errors=3).activate(
        build_request(run_handle="h"), listener
    )
    await listener.wait()

    ((_, _, error),) = listener.failures
    assert error.fatal
    assert len(provider.status_checks) == 3


async def test_transient_api_errors_are_tolerated() -> None:
    """Errors below the limit are retried."""
    provider = FakeCIProvider(
        status_errors=[2], artifacts=[results_artifact({"TC_001": "passed"})]
    )
    listener = RecordingListener()

    await make_channel(provider, max_consecutive_errors=3).activate(
        build_request(run_handle="h"), listener
    )
    await listener.wait()

    assert listener.failures == []
    assert [r.status for r in listener.results] == ["Passed"]


async def test_request_without_run_is_fatal() -> None:
    """Nothing can be polled without a dispatched run."""
    listener = RecordingListener()

    await make_channel(FakeCIProvider()).activate(build_request(), listener)
    await listener.wait()

    ((_, _, error),) = listener.failures
    assert error.fatal
