"""Models for reported test case results."""

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Literal

from execution_tracker.models.failure import FailureDetails

type TestStatus = Literal[
    "Not Started",
    "Running",
    "Passed",
    "Failed",
    "Blocked",
    "Cancelled",
]

TERMINAL_STATUSES: frozenset[TestStatus] = frozenset(
    ["Passed", "Failed", "Blocked", "Cancelled"]
)

IDLE_STATUS: TestStatus = "Not Started"

STATUS_ALIASES: Mapping[str, TestStatus] = {
    "not started": "Not Started",
    "not_started": "Not Started",
    "not run": "Not Started",
    "pending": "Not Started",
    "queued": "Not Started",
    "running": "Running",
    "in_progress": "Running",
    "in progress": "Running",
    "passed": "Passed",
    "pass": "Passed",
    "success": "Passed",
    "failed": "Failed",
    "fail": "Failed",
    "failure": "Failed",
    "error": "Failed",
    "blocked": "Blocked",
    "skipped": "Blocked",
    "cancelled": "Cancelled",
    "canceled": "Cancelled",
}


def normalize_status(raw: str) -> TestStatus:
    """Map a status string reported by a runner onto a known test status.

    Raises:
        ValueError: If the status is not recognised

    """
    status = STATUS_ALIASES.get(raw.strip().lower())
    if status is None:
        raise ValueError(f"Unknown test status: {raw!r}")
    return status


def is_terminal(status: TestStatus) -> bool:
    """Whether the status will not be revised further within a request."""
    return status in TERMINAL_STATUSES


@dataclass(frozen=True, kw_only=True)
class TestResult:
    """Outcome reported for one test case within one request."""

    __test__ = False

    test_case_id: str
    status: TestStatus
    duration_ms: int = 0
    logs: str | None = None
    name: str | None = None
    source: str | None = None
    failure: FailureDetails | None = None
    received_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def terminal(self) -> bool:
        """Whether this result carries a terminal status."""
        return is_terminal(self.status)
