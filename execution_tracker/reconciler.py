"""Merge reported results into the canonical test case records."""

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from execution_tracker.errors import ReconciliationError
from execution_tracker.models.result import IDLE_STATUS, TestResult, TestStatus
from execution_tracker.models.test_case import TestCase
from execution_tracker.store import RecordStore

log = logging.getLogger(__name__)


@dataclass(kw_only=True)
class ResultReconciler:
    """Applies results to the record store at most once per status change.

    Terminal statuses are remembered per (request, test case) so that a late
    non-terminal report cannot undo them and a repeated terminal report is
    a no-op. Recalculation and change notification run once per ``apply``
    call that changed a record, whatever the batch size, including a call
    that fails partway through.
    """

    store: RecordStore
    clock: Callable[[], datetime] = field(
        default=lambda: datetime.now(timezone.utc), repr=False
    )
    _terminal: dict[tuple[str, str], TestStatus] = field(
        default_factory=dict, repr=False
    )

    async def apply(self, request_id: str, results: Sequence[TestResult]) -> int:
        """Apply ``results`` reported for ``request_id``.

        Returns:
            Number of test case records that changed

        Raises:
            ReconciliationError: If the record store could not be read or written

        """
        if not results:
            return 0

        try:
            existing = {tc.id: tc for tc in await self.store.get_test_cases()}
        except Exception as exc:
            raise ReconciliationError(f"Failed to read test cases: {exc}") from exc

        applied = 0
        try:
            for result in results:
                if await self._apply_one(request_id, result, existing):
                    applied += 1
        finally:
            if applied:
                await self._after_changes()

        return applied

    async def _apply_one(
        self, request_id: str, result: TestResult, existing: dict[str, TestCase]
    ) -> bool:
        key = (request_id, result.test_case_id)
        recorded = self._terminal.get(key)
        if recorded is not None:
            if not result.terminal:
                log.info(
                    "Ignoring %s for %s: already %s in request %s",
                    result.status,
                    result.test_case_id,
                    recorded,
                    request_id,
                )
                return False
            if recorded == result.status:
                return False

        current = existing.get(result.test_case_id)
        changed = False
        try:
            if current is None:
                existing[result.test_case_id] = await self.store.add_test_case(
                    self._new_record(result)
                )
                changed = True
                log.info(
                    "Created test case %s with status %s",
                    result.test_case_id,
                    result.status,
                )
            elif current.status != result.status:
                existing[result.test_case_id] = await self.store.update_test_case(
                    result.test_case_id, self._patch(result)
                )
                changed = True
                log.info(
                    "Updated test case %s status: %s -> %s",
                    result.test_case_id,
                    current.status,
                    result.status,
                )
        except Exception as exc:
            raise ReconciliationError(
                f"Failed to write test case {result.test_case_id}: {exc}"
            ) from exc

        if result.terminal:
            self._terminal[key] = result.status
        return changed

    def forget(self, request_id: str) -> None:
        """Drop the terminal-status memory kept for a finished request."""
        for key in [key for key in self._terminal if key[0] == request_id]:
            del self._terminal[key]

    def _new_record(self, result: TestResult) -> TestCase:
        return TestCase(
            id=result.test_case_id,
            name=result.name or f"Test case {result.test_case_id}",
            description="Automatically created from test results",
            status=result.status,
            automation_status="Automated",
            last_executed=self.clock() if result.status != IDLE_STATUS else None,
            execution_time=result.duration_ms,
            logs=result.logs,
            failure=result.failure,
        )

    def _patch(self, result: TestResult) -> dict[str, Any]:
        patch: dict[str, Any] = {
            "status": result.status,
            "execution_time": result.duration_ms,
            "failure": result.failure,
        }
        if result.logs is not None:
            patch["logs"] = result.logs
        if result.status != IDLE_STATUS:
            patch["last_executed"] = self.clock()
        return patch

    async def _after_changes(self) -> None:
        try:
            await self.store.recalculate_coverage_and_gates()
        except Exception:
            log.warning("Coverage recalculation failed", exc_info=True)
        try:
            await self.store.notify_listeners()
        except Exception:
            log.warning("Change notification failed", exc_info=True)
