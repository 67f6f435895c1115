"""Runner configuration loaded from the persisted CI settings."""

from dataclasses import dataclass
from pathlib import Path

from pydantic import Field, SecretStr
from yarl import URL

from execution_tracker.errors import ConfigurationError
from execution_tracker.models.base import CamelModel
from execution_tracker.models.request import ExecutionMode


class TimeoutSettings(CamelModel):
    """Timing knobs, all in seconds."""

    probe: float = 5.0
    primary_wait_with_backend: float = 120.0
    primary_wait_without_backend: float = 30.0
    outer_deadline: float = 600.0
    ci_poll_interval: float = 2.0
    ci_max_consecutive_errors: int = 5
    backend_poll_interval: float = 10.0
    backend_poll_attempts: int = 3
    simulated_delay: float = 5.0
    grace_period: float = 60.0


@dataclass(frozen=True, kw_only=True)
class Repository:
    """Owner and name of a GitHub repository."""

    owner: str
    repo: str


def parse_repository_url(url: str) -> Repository:
    """Parse ``https://github.com/<owner>/<repo>`` into its parts.

    Raises:
        ConfigurationError: If the URL is not a GitHub repository URL

    """
    parsed = URL(url.strip())
    if parsed.host != "github.com":
        raise ConfigurationError(f"URL is not a GitHub repository: {url}")

    parts = [part for part in parsed.path.split("/") if part]
    if len(parts) < 2:
        raise ConfigurationError(f"Invalid GitHub repository URL format: {url}")

    repo = parts[1].removesuffix(".git")
    return Repository(owner=parts[0], repo=repo)


class RunnerSettings(CamelModel):
    """CI integration settings as persisted by the tracker.

    Keys use the tracker's camelCase spelling (``repoUrl``, ``ghToken``,
    ``workflowId``, ``callbackUrl``) so existing settings files load as-is.
    """

    provider: str = "github-actions"
    repo_url: str | None = None
    branch: str = "main"
    workflow_id: str = "quality-tracker-tests.yml"
    gh_token: SecretStr | None = None
    callback_url: str | None = None
    backend_url: str | None = None
    push_url: str | None = None
    api_base_url: str = "https://api.github.com"
    timeouts: TimeoutSettings = Field(default_factory=TimeoutSettings)

    @classmethod
    def load(cls, path: Path) -> "RunnerSettings":
        """Load settings from a JSON file."""
        return cls.model_validate_json(path.read_bytes())

    @property
    def demo_repository(self) -> bool:
        """Whether no real repository is configured."""
        return not self.repo_url or "example" in self.repo_url

    def execution_mode(self, *, simulate: bool = False) -> ExecutionMode:
        """Decide whether a run goes to CI or is simulated.

        Raises:
            ConfigurationError: If a repository is configured but cannot be
                used to dispatch a run

        """
        if simulate or self.demo_repository:
            return "simulated"
        if self.gh_token is None or not self.gh_token.get_secret_value():
            raise ConfigurationError("GitHub token is required to run tests in CI")
        self.repository()
        return "ci"

    def repository(self) -> Repository:
        """Owner and name of the configured repository.

        Raises:
            ConfigurationError: If no usable repository URL is configured

        """
        if not self.repo_url:
            raise ConfigurationError("No repository URL configured")
        return parse_repository_url(self.repo_url)

    def push_endpoint(self) -> str | None:
        """Websocket URL of the realtime results channel."""
        if self.push_url:
            return self.push_url
        if not self.backend_url:
            return None
        base = URL(self.backend_url)
        scheme = "wss" if base.scheme == "https" else "ws"
        return str(base.with_scheme(scheme).with_path("/webhook"))
