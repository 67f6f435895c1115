"""Structured description of why a test case failed."""

from typing import Literal

from pydantic import Field

from execution_tracker.models.base import CamelModel

type FailureCategory = Literal["assertion", "timeout", "element", "network", "general"]


class SourceLocation(CamelModel):
    """A file position named in a stack trace."""

    file: str
    line: int
    column: int | None = None
    function: str | None = None


class FailureDetails(CamelModel):
    """What a JUnit ``<failure>`` or ``<error>`` element says about a failure."""

    type: str = Field(default="TestFailure", description="Exception or failure type")
    message: str = Field(default="", description="Failure message")
    category: FailureCategory = "general"
    framework: str = Field(default="Unknown", description="Test framework, if known")
    method: str = Field(default="", description="Failing test method")
    class_name: str = Field(default="", description="Class or module of the test")
    file: str | None = None
    line: int | None = None
    expected: str | None = None
    actual: str | None = None
    operator: str | None = None
    stack_trace: str | None = None
    locations: tuple[SourceLocation, ...] = ()

    @property
    def has_assertion(self) -> bool:
        """Whether an expected/actual pair was recognised."""
        return self.expected is not None or self.actual is not None
