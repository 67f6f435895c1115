"""Models describing one dispatched test run and its lifecycle."""

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal

from execution_tracker.models.result import TestResult, TestStatus

type ExecutionState = Literal[
    "idle",
    "dispatching",
    "awaiting_results",
    "polling",
    "completed",
    "timed_out",
    "cancelled",
    "failed",
]

type Outcome = Literal["completed", "timed_out", "cancelled", "failed", "superseded"]

type ExecutionMode = Literal["ci", "simulated"]

TERMINAL_STATES: frozenset[ExecutionState] = frozenset(
    ["completed", "timed_out", "cancelled", "failed"]
)

TRANSITIONS: Mapping[ExecutionState, frozenset[ExecutionState]] = {
    "idle": frozenset(["dispatching", "cancelled"]),
    "dispatching": frozenset(
        ["awaiting_results", "failed", "cancelled", "timed_out"]
    ),
    "awaiting_results": frozenset(
        ["awaiting_results", "polling", "completed", "cancelled", "timed_out"]
    ),
    "polling": frozenset(["completed", "failed", "cancelled", "timed_out"]),
    "completed": frozenset(),
    "timed_out": frozenset(),
    "cancelled": frozenset(),
    "failed": frozenset(),
}


class InvalidTransitionError(RuntimeError):
    """Raised when a request is moved along an edge the state machine lacks."""


@dataclass(frozen=True, kw_only=True)
class ExecutionHandle:
    """Reference to a started execution handed back to the caller."""

    request_id: str
    subject_id: str


@dataclass(kw_only=True)
class ExecutionRequest:
    """One dispatched run, owned by the coordinator."""

    request_id: str
    subject_id: str
    requested_test_case_ids: tuple[str, ...]
    mode: ExecutionMode
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    deadline_at: datetime | None = None
    state: ExecutionState = "idle"
    results: dict[str, TestResult] = field(default_factory=dict)
    active_channels: set[str] = field(default_factory=set)
    run_handle: Any = None
    outcome: Outcome | None = None
    message: str | None = None

    @property
    def terminal(self) -> bool:
        """Whether the request reached a terminal state."""
        return self.state in TERMINAL_STATES

    def transition(self, new_state: ExecutionState) -> None:
        """Move to ``new_state``, refusing edges the state machine does not have."""
        if new_state not in TRANSITIONS[self.state]:
            raise InvalidTransitionError(
                f"Request {self.request_id} cannot move "
                f"from {self.state} to {new_state}"
            )
        self.state = new_state

    def pending_test_case_ids(self) -> Sequence[str]:
        """Requested test cases that do not have a terminal result yet."""
        return [
            test_case_id
            for test_case_id in self.requested_test_case_ids
            if (result := self.results.get(test_case_id)) is None or not result.terminal
        ]

    def is_complete(self) -> bool:
        """Whether every requested test case has a terminal result."""
        return not self.pending_test_case_ids()

    def status_of(self, test_case_id: str) -> TestStatus:
        """Latest known status for a requested test case."""
        result = self.results.get(test_case_id)
        return result.status if result is not None else "Not Started"

    def ordered_results(self) -> Sequence[TestResult]:
        """Known results in the order the test cases were requested."""
        return [
            self.results[test_case_id]
            for test_case_id in self.requested_test_case_ids
            if test_case_id in self.results
        ]


@dataclass(frozen=True, kw_only=True)
class ExecutionReport:
    """Final notification for a request, delivered exactly once."""

    request_id: str
    subject_id: str
    outcome: Outcome
    results: Sequence[TestResult]
    message: str | None = None


@dataclass(frozen=True, kw_only=True)
class ExecutionSummary:
    """Aggregate view of a request's test cases."""

    request_id: str
    state: ExecutionState
    total_tests: int
    status_counts: Mapping[TestStatus, int]
    test_cases: Sequence[Mapping[str, Any]]
