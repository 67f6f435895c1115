"""Test case records owned by the record store."""

from collections.abc import Sequence
from datetime import datetime

from pydantic import Field

from execution_tracker.models.base import CamelModel
from execution_tracker.models.failure import FailureDetails


class TestCase(CamelModel):
    """A test case as held by the record store."""

    __test__ = False

    id: str = Field(..., description="Test case identifier (e.g. TC_001)")
    name: str = Field(default="", description="Human-readable test case name")
    description: str = Field(default="", description="Free-form description")
    status: str = Field(default="Not Started", description="Latest execution status")
    automation_status: str = Field(default="Manual", description="Automation state")
    last_executed: datetime | None = Field(
        default=None, description="When the test case last ran"
    )
    execution_time: int = Field(default=0, description="Last duration in milliseconds")
    requirement_ids: Sequence[str] = Field(
        default_factory=list, description="Requirements covered by this test case"
    )
    logs: str | None = Field(default=None, description="Output of the last run")
    failure: FailureDetails | None = Field(
        default=None, description="Analysis of the last failure"
    )
