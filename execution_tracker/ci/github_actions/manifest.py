"""GitHub Actions provider manifest."""

from execution_tracker.ci.github_actions.config import GitHubActionsConfig
from execution_tracker.ci.github_actions.provider import GitHubActionsProvider
from execution_tracker.ci.manifest import ProviderManifest

github_actions_manifest = ProviderManifest(
    config_cls=GitHubActionsConfig,
    config_from_settings=GitHubActionsConfig.from_settings,
    provider_factory=GitHubActionsProvider.from_config,
)
