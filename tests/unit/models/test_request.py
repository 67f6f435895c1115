"""Tests for the execution request state machine."""

import pytest

from execution_tracker.models.request import ExecutionRequest, InvalidTransitionError
from execution_tracker.testing.factories import TestResultFactory


@pytest.fixture
def request_() -> ExecutionRequest:
    """Create a request for two test cases."""
    return ExecutionRequest(
        request_id="req_1",
        subject_id="REQ-001",
        requested_test_case_ids=("TC_001", "TC_002"),
        mode="ci",
    )


def test_follows_happy_path(request_: ExecutionRequest) -> None:
    """Moves along the dispatch, wait, poll, complete edges."""
    for state in ("dispatching", "awaiting_results", "polling", "completed"):
        request_.transition(state)

    assert request_.terminal


def test_refuses_missing_edge(request_: ExecutionRequest) -> None:
    """Edges outside the table raise."""
    with pytest.raises(InvalidTransitionError, match="idle to polling"):
        request_.transition("polling")


def test_terminal_state_has_no_exit(request_: ExecutionRequest) -> None:
    """Terminal states cannot be left."""
    request_.transition("cancelled")

    with pytest.raises(InvalidTransitionError):
        request_.transition("dispatching")


def test_pending_and_completion(request_: ExecutionRequest) -> None:
    """Completion requires a terminal result for every requested test case."""
    request_.results["TC_001"] = TestResultFactory.build(
        test_case_id="TC_001", status="Passed"
    )
    request_.results["TC_002"] = TestResultFactory.build(
        test_case_id="TC_002", status="Running"
    )

    assert request_.pending_test_case_ids() == ["TC_002"]
    assert not request_.is_complete()
    assert request_.status_of("TC_002") == "Running"

    request_.results["TC_002"] = TestResultFactory.build(
        test_case_id="TC_002", status="Failed"
    )

    assert request_.is_complete()
    assert [r.test_case_id for r in request_.ordered_results()] == [
        "TC_001",
        "TC_002",
    ]


def test_status_of_unreported_is_not_started(request_: ExecutionRequest) -> None:
    """Test cases without results are Not Started."""
    assert request_.status_of("TC_001") == "Not Started"
