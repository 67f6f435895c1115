"""GitHub Actions provider implementation."""

import io
import json
import logging
import zipfile
from collections.abc import AsyncGenerator, Mapping, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone

import aiohttp

from execution_tracker.ci.base import (
    Artifact,
    CIProvider,
    CIProviderError,
    DispatchRequest,
    RunState,
    RunStatus,
)
from execution_tracker.ci.github_actions.config import GitHubActionsConfig
from execution_tracker.ci.github_actions.models import (
    ArtifactsResponse,
    WorkflowRun,
    WorkflowRunsResponse,
    WorkflowRunStatus,
)

log = logging.getLogger(__name__)

RESULTS_ARTIFACT_MARKER = "test-results"

RUN_STATUS_TO_STATE: Mapping[WorkflowRunStatus, RunState] = {
    "requested": "queued",
    "waiting": "queued",
    "pending": "queued",
    "queued": "queued",
    "in_progress": "running",
    "completed": "completed",
}


@dataclass(frozen=True, kw_only=True)
class DispatchState:
    """State returned from dispatch for polling."""

    request_id: str
    dispatch_time: datetime


@dataclass(frozen=True, kw_only=True)
class GitHubActionsProvider(CIProvider[DispatchState]):
    """GitHub Actions CI provider.

    The test workflow is expected to include the ``request_id`` input in its
    run name, which is how a dispatched run is found again.
    """

    config: GitHubActionsConfig
    session: aiohttp.ClientSession = field(repr=False)
    _run_ids: dict[str, int] = field(default_factory=dict, repr=False)

    @classmethod
    @asynccontextmanager
    async def from_config(
        cls, config: GitHubActionsConfig
    ) -> AsyncGenerator["GitHubActionsProvider", None]:
        """Create provider with managed session lifecycle."""
        headers = {
            "Authorization": f"Bearer {config.token.get_secret_value()}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        async with aiohttp.ClientSession(
            base_url=config.api_base_url,
            headers=headers,
        ) as session:
            yield cls(config=config, session=session)

    @property
    def _repo_path(self) -> str:
        return f"/repos/{self.config.owner}/{self.config.repo}"

    async def dispatch_workflow(self, request: DispatchRequest) -> DispatchState:
        """Dispatch workflow and return state for polling."""
        dispatch_time = datetime.now(timezone.utc)

        url = (
            f"{self._repo_path}/actions/workflows/{self.config.workflow_id}/dispatches"
        )
        payload = {
            "ref": self.config.ref,
            "inputs": {
                "request_id": request.request_id,
                "requirement_id": request.subject_id,
                "test_cases": json.dumps(list(request.test_case_ids)),
                "callback_url": request.callback_url or "",
            },
        }

        log.info(
            "Dispatching workflow: api_base_url=%s, url=%s, owner=%s, repo=%s, "
            "workflow_id=%s, ref=%s, request_id=%s, test_cases=%d",
            self.config.api_base_url,
            url,
            self.config.owner,
            self.config.repo,
            self.config.workflow_id,
            self.config.ref,
            request.request_id,
            len(request.test_case_ids),
        )

        async with self.session.post(url, json=payload) as response:
            if response.status != 204:
                text = await response.text()
                raise CIProviderError(
                    f"Failed to dispatch workflow: {response.status} {text}"
                )

        return DispatchState(request_id=request.request_id, dispatch_time=dispatch_time)

    async def get_run_status(self, handle: DispatchState) -> RunStatus:
        """Check the status of the dispatched workflow run."""
        run = await self._get_run(handle)
        if run is None:
            log.info("Workflow run not found for request_id=%s", handle.request_id)
            return RunStatus(status="queued")

        return RunStatus(
            status=RUN_STATUS_TO_STATE[run.status],
            conclusion=run.conclusion,
            run_id=run.id,
            html_url=run.html_url,
        )

    async def get_run_artifacts(self, handle: DispatchState) -> Sequence[Artifact]:
        """Download the test result artifacts of the workflow run."""
        run_id = self._run_ids.get(handle.request_id)
        if run_id is None:
            run = await self._get_run(handle)
            if run is None:
                raise CIProviderError(
                    f"Workflow run not found for request_id={handle.request_id}"
                )
            run_id = run.id

        url = f"{self._repo_path}/actions/runs/{run_id}/artifacts"
        async with self.session.get(url, params={"per_page": "100"}) as response:
            if response.status != 200:
                text = await response.text()
                raise CIProviderError(
                    f"Failed to list run artifacts: {response.status} {text}"
                )
            data = await response.json()

        listing = ArtifactsResponse.model_validate(data)
        artifacts: list[Artifact] = []
        for artifact in listing.artifacts:
            if RESULTS_ARTIFACT_MARKER not in artifact.name or artifact.expired:
                continue
            files = await self._download_artifact(artifact.id)
            artifacts.append(Artifact(name=artifact.name, files=files))

        log.info(
            "Downloaded %d result artifact(s) from workflow run %s",
            len(artifacts),
            run_id,
        )
        return artifacts

    async def _download_artifact(self, artifact_id: int) -> Mapping[str, bytes]:
        url = f"{self._repo_path}/actions/artifacts/{artifact_id}/zip"
        async with self.session.get(url) as response:
            if response.status != 200:
                text = await response.text()
                raise CIProviderError(
                    f"Failed to download artifact {artifact_id}: "
                    f"{response.status} {text}"
                )
            content = await response.read()

        try:
            with zipfile.ZipFile(io.BytesIO(content)) as archive:
                return {
                    info.filename: archive.read(info)
                    for info in archive.infolist()
                    if not info.is_dir()
                }
        except zipfile.BadZipFile as exc:
            raise CIProviderError(
                f"Artifact {artifact_id} is not a zip archive: {exc}"
            ) from exc

    async def _get_run(self, handle: DispatchState) -> WorkflowRun | None:
        run_id = self._run_ids.get(handle.request_id)
        if run_id is None:
            run = await self.find_workflow_run(handle.request_id, handle.dispatch_time)
            if run is not None:
                self._run_ids[handle.request_id] = run.id
            return run

        url = f"{self._repo_path}/actions/runs/{run_id}"
        async with self.session.get(url) as response:
            if response.status != 200:
                text = await response.text()
                raise CIProviderError(
                    f"Failed to get workflow run: {response.status} {text}"
                )
            data = await response.json()
        return WorkflowRun.model_validate(data)

    async def find_workflow_run(
        self, request_id: str, dispatch_time: datetime
    ) -> WorkflowRun | None:
        """Find workflow run by request ID in display_title.

        Uses the created filter to narrow search scope and paginates through
        all matching runs to ensure we don't miss the target run.
        """
        url = f"{self._repo_path}/actions/runs"
        created_filter = f">={dispatch_time.strftime('%Y-%m-%dT%H:%M:%SZ')}"
        page = 1

        while True:
            params = {"per_page": "100", "created": created_filter, "page": str(page)}

            async with self.session.get(url, params=params) as response:
                if response.status != 200:
                    text = await response.text()
                    raise CIProviderError(
                        f"Failed to list workflow runs: {response.status} {text}"
                    )
                data = await response.json()

            runs_response = WorkflowRunsResponse.model_validate(data)

            for run in runs_response.workflow_runs:
                if request_id in run.display_title:
                    return run

            if len(runs_response.workflow_runs) < 100:
                break

            page += 1

        return None
