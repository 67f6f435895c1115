"""Record store interface and an in-memory implementation."""

import json
import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

from pydantic import TypeAdapter

from execution_tracker.models.test_case import TestCase

log = logging.getLogger(__name__)

type StoreListener = Callable[[Sequence[TestCase]], None]

TEST_CASES_ADAPTER = TypeAdapter(list[TestCase])


class RecordStore(Protocol):
    """Store owning the canonical test case records."""

    async def get_test_cases(self) -> Sequence[TestCase]:
        """Return every test case."""

    async def add_test_case(self, test_case: TestCase) -> TestCase:
        """Insert a new test case."""

    async def update_test_case(
        self, test_case_id: str, patch: Mapping[str, Any]
    ) -> TestCase:
        """Apply ``patch`` to an existing test case and return the result."""

    def subscribe(self, callback: StoreListener) -> Callable[[], None]:
        """Register a change listener and return its unsubscribe function."""

    async def recalculate_coverage_and_gates(self) -> None:
        """Recompute coverage and quality gates after test cases changed."""

    async def notify_listeners(self) -> None:
        """Tell subscribers the test cases changed."""


@dataclass(kw_only=True)
class InMemoryRecordStore:
    """Record store kept in process memory.

    ``mutation_count`` counts every insert and update, which makes it easy
    to assert that nothing was written.
    """

    test_cases: dict[str, TestCase] = field(default_factory=dict)
    mutation_count: int = 0
    recalculation_count: int = 0
    notification_count: int = 0
    _listeners: list[StoreListener] = field(default_factory=list, repr=False)

    @classmethod
    def from_records(cls, records: Sequence[TestCase]) -> "InMemoryRecordStore":
        """Create a store holding ``records``."""
        return cls(test_cases={record.id: record for record in records})

    async def get_test_cases(self) -> Sequence[TestCase]:
        """Return every test case."""
        return list(self.test_cases.values())

    async def add_test_case(self, test_case: TestCase) -> TestCase:
        """Insert a new test case."""
        if test_case.id in self.test_cases:
            raise ValueError(f"Test case {test_case.id} already exists")
        self.test_cases[test_case.id] = test_case
        self.mutation_count += 1
        return test_case

    async def update_test_case(
        self, test_case_id: str, patch: Mapping[str, Any]
    ) -> TestCase:
        """Apply ``patch`` to an existing test case and return the result."""
        current = self.test_cases.get(test_case_id)
        if current is None:
            raise KeyError(test_case_id)
        updated = current.model_copy(update=dict(patch))
        self.test_cases[test_case_id] = updated
        self.mutation_count += 1
        return updated

    def subscribe(self, callback: StoreListener) -> Callable[[], None]:
        """Register a change listener and return its unsubscribe function."""
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    async def recalculate_coverage_and_gates(self) -> None:
        """Coverage lives outside this package; only the call is recorded."""
        self.recalculation_count += 1

    async def notify_listeners(self) -> None:
        """Tell subscribers the test cases changed."""
        self.notification_count += 1
        snapshot = list(self.test_cases.values())
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                log.exception("Record store listener failed")


@dataclass(kw_only=True)
class JsonFileRecordStore(InMemoryRecordStore):
    """In-memory store loaded from and saved to a JSON array of test cases."""

    path: Path

    @classmethod
    def load(cls, path: Path) -> "JsonFileRecordStore":
        """Load test cases from ``path``; a missing file gives an empty store."""
        records: list[TestCase] = []
        if path.exists():
            records = TEST_CASES_ADAPTER.validate_json(path.read_bytes())
        return cls(path=path, test_cases={record.id: record for record in records})

    def save(self) -> None:
        """Write every test case back to the file."""
        data = TEST_CASES_ADAPTER.dump_python(
            list(self.test_cases.values()), mode="json", by_alias=True
        )
        self.path.write_text(json.dumps(data, indent=2) + "\n")
