"""Realtime results pushed by the backend over a websocket."""

import asyncio
import contextlib
import json
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, ClassVar

import aiohttp
from pydantic import ValidationError

from execution_tracker.artifacts import (
    ArtifactParseError,
    junit_case_to_result,
    parse_junit_xml,
    select_junit_case,
)
from execution_tracker.channels.base import ChannelListener, ResultChannel
from execution_tracker.errors import ChannelError
from execution_tracker.models.payloads import (
    BulkResultsEvent,
    TestCaseResultEvent,
    results_from_reports,
)
from execution_tracker.models.request import ExecutionRequest
from execution_tracker.models.result import TestResult

log = logging.getLogger(__name__)


@dataclass(kw_only=True)
class RealtimePushChannel(ResultChannel):
    """Listens on one shared websocket for results of every active request.

    Messages are JSON objects ``{"event": <name>, "data": <payload>}``. Two
    events are understood:

    - ``test-case-result``: the result of a single test case, optionally
      carrying a JUnit XML report in ``xmlContent`` that takes precedence
      over the reported fields.
    - ``test-results``: every result of a run at once, addressed by
      ``requestId`` or, for older workflows, by ``requirementId``.

    The connection is opened on first activation and shared by all requests.
    """

    name: ClassVar[str] = "push"

    session: aiohttp.ClientSession = field(repr=False)
    url: str
    heartbeat: float = 30.0
    _ws: aiohttp.ClientWebSocketResponse | None = field(default=None, repr=False)
    _reader: asyncio.Task[None] | None = field(default=None, repr=False)
    _connect_lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)
    _interests: dict[str, ChannelListener] = field(default_factory=dict, repr=False)
    _subjects: dict[str, str] = field(default_factory=dict, repr=False)

    @property
    def connected(self) -> bool:
        """Whether the websocket is open."""
        return self._ws is not None and not self._ws.closed

    async def activate(
        self, request: ExecutionRequest, listener: ChannelListener
    ) -> None:
        """Connect if needed and route events for ``request`` to ``listener``.

        Raises:
            ChannelError: If the websocket cannot be opened

        """
        await self._ensure_connected()
        self._interests[request.request_id] = listener
        self._subjects[request.subject_id] = request.request_id

    async def deactivate(self, request_id: str) -> None:
        """Stop routing events for ``request_id``."""
        self._interests.pop(request_id, None)
        for subject_id in [s for s, r in self._subjects.items() if r == request_id]:
            del self._subjects[subject_id]

    def is_active(self, request_id: str) -> bool:
        """Whether events for ``request_id`` are being routed."""
        return request_id in self._interests

    async def close(self) -> None:
        """Close the websocket and stop reading from it."""
        reader, self._reader = self._reader, None
        if reader is not None and reader is not asyncio.current_task():
            reader.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await reader
        ws, self._ws = self._ws, None
        if ws is not None:
            await ws.close()

    async def _ensure_connected(self) -> None:
        async with self._connect_lock:
            if self.connected:
                return
            try:
                self._ws = await self.session.ws_connect(
                    self.url, heartbeat=self.heartbeat
                )
            except (aiohttp.ClientError, TimeoutError) as exc:
                raise ChannelError(
                    f"Failed to connect to {self.url}: {exc}", channel=self.name
                ) from exc
            log.info("Connected to realtime results at %s", self.url)
            self._reader = asyncio.create_task(
                self._read(self._ws), name=f"{self.name}:reader"
            )

    async def _read(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        async for msg in ws:
            if msg.type == aiohttp.WSMsgType.TEXT:
                try:
                    message = json.loads(msg.data)
                except ValueError:
                    log.warning("Ignoring malformed push message: %.200s", msg.data)
                    continue
                if isinstance(message, Mapping):
                    await self._dispatch(message)
            elif msg.type == aiohttp.WSMsgType.ERROR:
                log.warning("Realtime connection error: %s", ws.exception())
                break

        if self._ws is ws:
            self._ws = None
            await self._connection_lost()

    async def _connection_lost(self) -> None:
        log.warning(
            "Realtime connection closed with %d request(s) listening",
            len(self._interests),
        )
        for request_id, listener in list(self._interests.items()):
            await self._notify(
                listener.report_failure(
                    self.name,
                    request_id,
                    ChannelError("Realtime connection closed", channel=self.name),
                ),
                request_id,
            )

    async def _dispatch(self, message: Mapping[str, Any]) -> None:
        """Route one decoded push message to the request it belongs to."""
        event = message.get("event")
        data = message.get("data")
        try:
            if event == "test-case-result":
                await self._on_test_case_result(
                    TestCaseResultEvent.model_validate(data)
                )
            elif event == "test-results":
                await self._on_test_results(BulkResultsEvent.model_validate(data))
            else:
                log.debug("Ignoring push event %r", event)
        except ValidationError as exc:
            log.warning("Ignoring invalid %s event: %s", event, exc)

    async def _on_test_case_result(self, event: TestCaseResultEvent) -> None:
        listener = self._interests.get(event.request_id)
        if listener is None:
            log.debug("No listener for %s, dropping result", event.request_id)
            return

        result = self._result_from_xml(event)
        if result is None:
            try:
                result = event.test_case.to_result(
                    source=self.name, test_case_id=event.test_case_id
                )
            except ValueError as exc:
                log.warning("Ignoring result for %s: %s", event.test_case_id, exc)
                return

        await self._notify(
            listener.deliver(self.name, event.request_id, [result]), event.request_id
        )

    def _result_from_xml(self, event: TestCaseResultEvent) -> TestResult | None:
        if not event.xml_content:
            return None
        try:
            cases = parse_junit_xml(event.xml_content)
        except ArtifactParseError as exc:
            log.warning("Ignoring JUnit XML for %s: %s", event.test_case_id, exc)
            return None
        case = select_junit_case(cases, event.test_case_id)
        if case is None:
            log.warning("Test case %s not found in JUnit XML", event.test_case_id)
            return None
        return junit_case_to_result(case, event.test_case_id, source=self.name)

    async def _on_test_results(self, event: BulkResultsEvent) -> None:
        request_id = event.request_id
        if request_id not in self._interests and event.requirement_id:
            request_id = self._subjects.get(event.requirement_id)
        listener = self._interests.get(request_id) if request_id else None
        if request_id is None or listener is None:
            log.debug("No listener for bulk results, dropping them")
            return

        results: Sequence[TestResult] = results_from_reports(
            ((None, report) for report in event.results), source=self.name
        )
        if results:
            await self._notify(
                listener.deliver(self.name, request_id, results), request_id
            )

    async def _notify(self, call: Any, request_id: str) -> None:
        try:
            await call
        except Exception:
            log.exception("Listener for %s failed handling push event", request_id)
