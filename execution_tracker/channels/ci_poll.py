"""Polling of the CI system's run status, the last-resort result channel."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, ClassVar

import aiohttp

from execution_tracker.artifacts import ArtifactParseError, parse_artifacts
from execution_tracker.channels.base import ChannelListener, PollingChannel
from execution_tracker.ci.base import CIProvider, CIProviderError
from execution_tracker.errors import ChannelError
from execution_tracker.models.request import ExecutionRequest

log = logging.getLogger(__name__)


@dataclass(kw_only=True)
class CIStatusPollChannel(PollingChannel):
    """Polls the CI run until it completes, then reads results from artifacts.

    Everything this channel reports at the end of a run is fatal: a
    completed run whose artifacts hold no usable results, or that leaves
    requested test cases without a result, cannot produce more results
    later. Repeated API errors are fatal too.
    """

    name: ClassVar[str] = "ci_poll"

    provider: CIProvider[Any]
    poll_interval: float = 2.0
    max_consecutive_errors: int = 5

    async def _run(self, request: ExecutionRequest, listener: ChannelListener) -> None:
        if request.run_handle is None:
            await listener.report_failure(
                self.name,
                request.request_id,
                ChannelError("No CI run to poll", channel=self.name, fatal=True),
            )
            return

        errors = 0
        while self.is_active(request.request_id):
            try:
                status = await self.provider.get_run_status(request.run_handle)
            except (CIProviderError, aiohttp.ClientError, TimeoutError) as exc:
                errors += 1
                log.warning(
                    "CI status check %d/%d failed for %s: %s",
                    errors,
                    self.max_consecutive_errors,
                    request.request_id,
                    exc,
                )
                if errors >= self.max_consecutive_errors:
                    await listener.report_failure(
                        self.name,
                        request.request_id,
                        ChannelError(
                            f"CI status unavailable after {errors} attempts: {exc}",
                            channel=self.name,
                            fatal=True,
                        ),
                    )
                    return
                await asyncio.sleep(self.poll_interval)
                continue

            errors = 0
            if status.status == "completed":
                log.info(
                    "CI run for %s completed with conclusion=%s",
                    request.request_id,
                    status.conclusion,
                )
                await self._collect(request, listener)
                return

            log.debug("CI run for %s is %s", request.request_id, status.status)
            await asyncio.sleep(self.poll_interval)

    async def _collect(
        self, request: ExecutionRequest, listener: ChannelListener
    ) -> None:
        try:
            artifacts = await self.provider.get_run_artifacts(request.run_handle)
            results = parse_artifacts(
                artifacts, request.requested_test_case_ids, source=self.name
            )
        except (CIProviderError, aiohttp.ClientError, TimeoutError) as exc:
            await self._fail(request, listener, f"Failed to fetch run artifacts: {exc}")
            return
        except ArtifactParseError as exc:
            await self._fail(request, listener, f"Failed to parse run artifacts: {exc}")
            return

        if not results:
            await self._fail(request, listener, "Run completed without test results")
            return

        await listener.deliver(self.name, request.request_id, results)

        reported = {result.test_case_id for result in results}
        missing = [
            tc for tc in request.requested_test_case_ids if tc not in reported
        ]
        if missing:
            await self._fail(
                request,
                listener,
                f"Run completed without results for {', '.join(missing)}",
            )

    async def _fail(
        self, request: ExecutionRequest, listener: ChannelListener, message: str
    ) -> None:
        log.error("%s for %s", message, request.request_id)
        await listener.report_failure(
            self.name,
            request.request_id,
            ChannelError(message, channel=self.name, fatal=True),
        )
