"""Abstract base class for CI providers that run test workflows."""

from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Literal

type RunState = Literal["queued", "running", "completed"]


class CIProviderError(RuntimeError):
    """Raised when the CI system's API answers with an error."""


@dataclass(frozen=True, kw_only=True)
class DispatchRequest:
    """Everything the CI workflow needs to run and report back."""

    request_id: str
    subject_id: str
    test_case_ids: Sequence[str]
    callback_url: str | None = None


@dataclass(frozen=True, kw_only=True)
class RunStatus:
    """Status of a dispatched run as reported by the CI system."""

    status: RunState
    conclusion: str | None = None
    run_id: int | None = None
    html_url: str | None = None


@dataclass(frozen=True, kw_only=True)
class Artifact:
    """A downloaded run artifact, unpacked into its files."""

    name: str
    files: Mapping[str, bytes] = field(default_factory=dict)


@dataclass(frozen=True, kw_only=True)
class CIProvider[T](ABC):
    """Abstract base for CI providers.

    Generic type T represents the run handle - whatever data the provider
    needs to find the run again after dispatching it.
    """

    @abstractmethod
    async def dispatch_workflow(self, request: DispatchRequest) -> T:
        """Dispatch the test workflow and return a run handle.

        Args:
            request: Request, subject and test cases to run

        Returns:
            Run handle to pass to get_run_status and get_run_artifacts

        Raises:
            CIProviderError: If the CI system did not accept the run

        """

    @abstractmethod
    async def get_run_status(self, handle: T) -> RunStatus:
        """Check the status of a dispatched run.

        Args:
            handle: Handle returned from dispatch_workflow

        Returns:
            Current run status; "queued" while the run cannot be found yet

        """

    @abstractmethod
    async def get_run_artifacts(self, handle: T) -> Sequence[Artifact]:
        """Download the test result artifacts of a completed run.

        Args:
            handle: Handle returned from dispatch_workflow

        Returns:
            Artifacts holding test results, possibly empty

        """
