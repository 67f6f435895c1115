"""Wire models for results reported by the backend, the push channel and artifacts."""

import logging
from collections.abc import Iterable, Sequence
from datetime import datetime

from pydantic import AliasChoices, Field

from execution_tracker.models.base import CamelModel
from execution_tracker.models.result import TestResult, normalize_status

log = logging.getLogger(__name__)


class ReportedTestCase(CamelModel):
    """A test case result as written by the CI workflow."""

    id: str | None = Field(
        default=None, validation_alias=AliasChoices("id", "testCaseId", "test_case_id")
    )
    name: str | None = None
    status: str
    duration: float = 0.0
    logs: str | None = None

    def to_result(
        self,
        *,
        source: str,
        received_at: datetime | None = None,
        test_case_id: str | None = None,
    ) -> TestResult:
        """Convert to a ``TestResult``.

        Raises:
            ValueError: If no test case ID is known or the status is unrecognised

        """
        resolved_id = test_case_id or self.id
        if not resolved_id:
            raise ValueError("Reported test case has no ID")

        extra = {"received_at": received_at} if received_at is not None else {}
        return TestResult(
            test_case_id=resolved_id,
            status=normalize_status(self.status),
            duration_ms=int(self.duration),
            logs=self.logs,
            name=self.name,
            source=source,
            **extra,
        )


class TestCaseResultEvent(CamelModel):
    """Push event carrying the result of a single test case."""

    __test__ = False

    request_id: str
    test_case_id: str
    test_case: ReportedTestCase
    xml_content: str | None = None
    timestamp: datetime | None = None


class BulkResultsEvent(CamelModel):
    """Legacy push event carrying every result of a run at once."""

    request_id: str | None = None
    requirement_id: str | None = None
    timestamp: datetime | None = None
    results: Sequence[ReportedTestCase] = Field(default_factory=list)


class StoredResult(CamelModel):
    """One result held by the backend for a request."""

    test_case_id: str
    test_case: ReportedTestCase


class BackendResultsResponse(CamelModel):
    """Response of the backend's results-by-request endpoint."""

    request_id: str
    retrieved_at: datetime | None = None
    results: Sequence[StoredResult] = Field(default_factory=list)


def results_from_reports(
    reports: Iterable[tuple[str | None, ReportedTestCase]],
    *,
    source: str,
    received_at: datetime | None = None,
) -> Sequence[TestResult]:
    """Convert reported test cases, skipping the ones that cannot be understood."""
    results: list[TestResult] = []
    for test_case_id, report in reports:
        try:
            results.append(
                report.to_result(
                    source=source, received_at=received_at, test_case_id=test_case_id
                )
            )
        except ValueError as exc:
            log.warning("Skipping result from %s: %s", source, exc)
    return results
