"""Payload helpers for GitHub Actions API responses in tests."""

import io
import zipfile
from collections.abc import Mapping, Sequence
from typing import Any


def workflow_run(
    *,
    run_id: int = 123456789,
    status: str = "completed",
    conclusion: str | None = "success",
    display_title: str = "Quality tracker tests",
    html_url: str = "https://github.com/test-owner/test-repo/actions/runs/123456789",
    created_at: str = "2099-01-01T12:00:00Z",
    updated_at: str = "2099-01-01T12:01:00Z",
) -> dict[str, Any]:
    """Create a workflow run payload for testing.

    Returns a realistic GitHub workflow run API response structure.
    """
    return {
        "id": run_id,
        "name": "Quality Tracker Tests",
        "node_id": "WFR_kwLOtest",
        "head_branch": "main",
        "head_sha": "abc123def456",
        "path": ".github/workflows/quality-tracker-tests.yml",
        "display_title": display_title,
        "run_number": 42,
        "event": "workflow_dispatch",
        "status": status,
        "conclusion": conclusion,
        "workflow_id": 98765,
        "html_url": html_url,
        "created_at": created_at,
        "updated_at": updated_at,
        "run_attempt": 1,
    }


def workflow_runs_response(runs: Sequence[dict[str, Any]]) -> dict[str, Any]:
    """Create a list workflow runs response."""
    return {"total_count": len(runs), "workflow_runs": list(runs)}


def artifact(
    *,
    artifact_id: int = 555,
    name: str = "test-results",
    expired: bool = False,
) -> dict[str, Any]:
    """Create an artifact payload for testing."""
    return {
        "id": artifact_id,
        "node_id": "MDg6QXJ0aWZhY3Q1NTU=",
        "name": name,
        "size_in_bytes": 1024,
        "archive_download_url": (
            f"https://api.github.com/repos/test-owner/test-repo"
            f"/actions/artifacts/{artifact_id}/zip"
        ),
        "expired": expired,
        "created_at": "2099-01-01T12:01:00Z",
        "expires_at": "2099-04-01T12:01:00Z",
    }


def artifacts_response(artifacts: Sequence[dict[str, Any]]) -> dict[str, Any]:
    """Create a list run artifacts response."""
    return {"total_count": len(artifacts), "artifacts": list(artifacts)}


def zip_archive(files: Mapping[str, str | bytes]) -> bytes:
    """Pack ``files`` into a zip archive like GitHub serves artifacts."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        for name, content in files.items():
            archive.writestr(name, content)
    return buffer.getvalue()
