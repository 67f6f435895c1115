"""Configuration for GitHub Actions provider."""

from pydantic import BaseModel, SecretStr

from execution_tracker.config import RunnerSettings
from execution_tracker.errors import ConfigurationError


class GitHubActionsConfig(BaseModel):
    """Configuration for GitHub Actions provider."""

    token: SecretStr
    owner: str
    repo: str
    workflow_id: str
    ref: str = "main"
    api_base_url: str = "https://api.github.com"

    @classmethod
    def from_settings(cls, settings: RunnerSettings) -> "GitHubActionsConfig":
        """Derive the provider configuration from the runner settings.

        Raises:
            ConfigurationError: If the repository URL or token is missing

        """
        if settings.gh_token is None:
            raise ConfigurationError("GitHub token is required to run tests in CI")
        repository = settings.repository()
        return cls(
            token=settings.gh_token,
            owner=repository.owner,
            repo=repository.repo,
            workflow_id=settings.workflow_id,
            ref=settings.branch,
            api_base_url=settings.api_base_url,
        )
