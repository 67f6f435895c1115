"""Synthetic results for running without a CI system."""

import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import ClassVar

from execution_tracker.channels.base import ChannelListener, PollingChannel
from execution_tracker.models.request import ExecutionRequest
from execution_tracker.models.result import TestResult

log = logging.getLogger(__name__)


@dataclass(kw_only=True)
class SimulatedResultChannel(PollingChannel):
    """Fabricates a pass/fail result per requested test case after a delay.

    Used when no CI repository is configured so the product can be shown
    without credentials.
    """

    name: ClassVar[str] = "simulated"

    delay: float = 5.0
    pass_rate: float = 0.8
    rng: random.Random = field(default_factory=random.Random, repr=False)

    async def _run(self, request: ExecutionRequest, listener: ChannelListener) -> None:
        await asyncio.sleep(self.delay)
        if not self.is_active(request.request_id):
            return

        results = [
            self._fabricate(test_case_id)
            for test_case_id in request.requested_test_case_ids
        ]
        log.info(
            "Simulated execution finished for %s (%d result(s))",
            request.request_id,
            len(results),
        )
        await listener.deliver(self.name, request.request_id, results)

    def _fabricate(self, test_case_id: str) -> TestResult:
        passed = self.rng.random() < self.pass_rate
        return TestResult(
            test_case_id=test_case_id,
            status="Passed" if passed else "Failed",
            duration_ms=self.rng.randint(100, 1100),
            logs=(
                f"Executing test {test_case_id}\n"
                f"{'PASSED' if passed else 'FAILED: Assertion error'}"
            ),
            source=self.name,
        )
