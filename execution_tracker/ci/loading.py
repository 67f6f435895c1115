"""Loading of CI providers from entry points."""

import logging
from importlib.metadata import entry_points
from typing import Any

from execution_tracker.ci.manifest import ProviderManifest
from execution_tracker.errors import ConfigurationError

log = logging.getLogger(__name__)

ENTRY_POINT_GROUP = "execution_tracker.ci_providers"


class ProviderNotFoundError(ConfigurationError):
    """Raised when the settings name a CI provider that is not installed."""


def load_provider_manifest(key: str) -> ProviderManifest[Any, Any]:
    """Load the manifest of the CI provider registered as ``key``.

    Providers register under the ``execution_tracker.ci_providers`` entry
    point group, e.g. ``github-actions``.

    Raises:
        ProviderNotFoundError: If no provider is registered under ``key``

    """
    registered = {entry.name: entry for entry in entry_points(group=ENTRY_POINT_GROUP)}

    entry = registered.get(key)
    if entry is None:
        raise ProviderNotFoundError(
            f"Provider '{key}' not found. Available providers: {sorted(registered)}"
        )

    log.debug("Loading CI provider %s from %s", key, entry.value)
    manifest: ProviderManifest[Any, Any] = entry.load()
    return manifest
