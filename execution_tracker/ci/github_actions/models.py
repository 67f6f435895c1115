"""Pydantic models for GitHub Actions API responses."""

from collections.abc import Sequence
from datetime import datetime
from typing import Literal

from pydantic import BaseModel

type WorkflowRunStatus = Literal[
    "requested",
    "waiting",
    "pending",
    "queued",
    "in_progress",
    "completed",
]


class WorkflowRun(BaseModel):
    """A workflow run from GitHub Actions API."""

    id: int
    status: WorkflowRunStatus
    conclusion: str | None = None
    name: str
    display_title: str
    html_url: str
    created_at: datetime
    updated_at: datetime


class WorkflowRunsResponse(BaseModel):
    """Response from list workflow runs API."""

    workflow_runs: Sequence[WorkflowRun]


class WorkflowArtifact(BaseModel):
    """An artifact uploaded by a workflow run."""

    id: int
    name: str
    size_in_bytes: int = 0
    expired: bool = False


class ArtifactsResponse(BaseModel):
    """Response from list workflow run artifacts API."""

    total_count: int = 0
    artifacts: Sequence[WorkflowArtifact]
