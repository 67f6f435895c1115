"""Periodic polling of the results backend for a request's results."""

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import ClassVar

import aiohttp
from pydantic import ValidationError
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from execution_tracker.channels.base import ChannelListener, PollingChannel
from execution_tracker.errors import ChannelError
from execution_tracker.models.payloads import (
    BackendResultsResponse,
    results_from_reports,
)
from execution_tracker.models.request import ExecutionRequest
from execution_tracker.models.result import TestResult

log = logging.getLogger(__name__)


class BackendUnavailableError(RuntimeError):
    """Raised when the backend answers with a server error."""


RETRYABLE_ERRORS = (aiohttp.ClientError, TimeoutError, BackendUnavailableError)


@dataclass(kw_only=True)
class BackendPollChannel(PollingChannel):
    """Polls ``GET /api/test-results/request/{request_id}`` on the backend.

    A 404 means the backend has nothing for the request yet. Each poll is
    retried with exponential backoff; when every attempt fails the failure
    is reported as non-fatal and polling carries on at the next interval.
    """

    name: ClassVar[str] = "backend_poll"

    session: aiohttp.ClientSession = field(repr=False)
    base_url: str
    interval: float = 10.0
    max_attempts: int = 3
    retry_delay: float = 1.0
    max_retry_delay: float = 10.0

    async def _run(self, request: ExecutionRequest, listener: ChannelListener) -> None:
        while self.is_active(request.request_id):
            await asyncio.sleep(self.interval)
            if not self.is_active(request.request_id):
                return

            try:
                results = await self._fetch_with_retries(request.request_id)
            except ChannelError as exc:
                await listener.report_failure(self.name, request.request_id, exc)
                continue

            if results:
                await listener.deliver(self.name, request.request_id, results)

    async def _fetch_with_retries(self, request_id: str) -> Sequence[TestResult]:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(
                multiplier=self.retry_delay, max=self.max_retry_delay
            ),
            retry=retry_if_exception_type(RETRYABLE_ERRORS),
            before_sleep=before_sleep_log(log, logging.WARNING),
            reraise=True,
        )
        try:
            return await retrying(self.fetch_results, request_id)
        except RETRYABLE_ERRORS as exc:
            raise ChannelError(
                f"Backend poll failed after {self.max_attempts} attempts: {exc}",
                channel=self.name,
            ) from exc

    async def fetch_results(self, request_id: str) -> Sequence[TestResult]:
        """Fetch the results the backend holds for ``request_id``.

        Raises:
            BackendUnavailableError: If the backend answered with a 5xx status
            aiohttp.ClientError: If the request failed

        """
        url = f"{self.base_url.rstrip('/')}/api/test-results/request/{request_id}"
        async with self.session.get(url) as response:
            if response.status == 404:
                return []
            if response.status >= 500:
                text = await response.text()
                raise BackendUnavailableError(
                    f"Failed to fetch results: {response.status} {text}"
                )
            if response.status != 200:
                text = await response.text()
                raise ChannelError(
                    f"Failed to fetch results: {response.status} {text}",
                    channel=self.name,
                )
            data = await response.json()

        try:
            body = BackendResultsResponse.model_validate(data)
        except ValidationError as exc:
            raise ChannelError(
                f"Unexpected results payload: {exc}", channel=self.name
            ) from exc
        return results_from_reports(
            ((stored.test_case_id, stored.test_case) for stored in body.results),
            source=self.name,
        )
