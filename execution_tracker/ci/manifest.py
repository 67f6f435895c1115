"""Provider manifest definition for the plugin system."""

from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass

from pydantic import BaseModel

from execution_tracker.ci.base import CIProvider
from execution_tracker.config import RunnerSettings


@dataclass(frozen=True, kw_only=True)
class ProviderManifest[ConfigT: BaseModel, HandleT]:
    """Manifest describing a CI provider plugin.

    The manifest references the configuration class, how to derive that
    configuration from the runner settings, and the provider factory used
    to open a provider with a managed HTTP session.
    """

    config_cls: type[ConfigT]
    config_from_settings: Callable[[RunnerSettings], ConfigT]
    provider_factory: Callable[
        [ConfigT], AbstractAsyncContextManager[CIProvider[HandleT]]
    ]
