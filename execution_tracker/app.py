"""Assembly of an execution coordinator from runner settings."""

import logging
from collections.abc import AsyncGenerator
from contextlib import AsyncExitStack, asynccontextmanager

import aiohttp

from execution_tracker.channels.backend_poll import BackendPollChannel
from execution_tracker.channels.ci_poll import CIStatusPollChannel
from execution_tracker.channels.push import RealtimePushChannel
from execution_tracker.channels.simulated import SimulatedResultChannel
from execution_tracker.ci.loading import load_provider_manifest
from execution_tracker.config import RunnerSettings
from execution_tracker.coordinator import ExecutionCoordinator
from execution_tracker.errors import ConfigurationError
from execution_tracker.health import BackendHealthProbe
from execution_tracker.reconciler import ResultReconciler
from execution_tracker.registry import CorrelationRegistry
from execution_tracker.store import RecordStore

log = logging.getLogger(__name__)


@asynccontextmanager
async def open_coordinator(
    settings: RunnerSettings, store: RecordStore
) -> AsyncGenerator[ExecutionCoordinator, None]:
    """Create a coordinator with every channel the settings allow.

    The CI provider is only opened when a real repository is configured and
    usable; otherwise ``start`` reports the configuration problem, or runs
    simulated for demo repositories. Backend channels and the health probe
    are only created when a backend URL is configured.
    """
    timeouts = settings.timeouts

    async with AsyncExitStack() as stack:
        provider = None
        ci_poll = None
        if not settings.demo_repository:
            try:
                settings.execution_mode()
                manifest = load_provider_manifest(settings.provider)
                config = manifest.config_from_settings(settings)
            except ConfigurationError as exc:
                log.warning("CI provider unavailable: %s", exc)
            else:
                log.info("Loading provider: %s", settings.provider)
                provider = await stack.enter_async_context(
                    manifest.provider_factory(config)
                )
                ci_poll = CIStatusPollChannel(
                    provider=provider,
                    poll_interval=timeouts.ci_poll_interval,
                    max_consecutive_errors=timeouts.ci_max_consecutive_errors,
                )

        push = None
        backend_poll = None
        probe = None
        if settings.backend_url:
            session = await stack.enter_async_context(aiohttp.ClientSession())
            probe = BackendHealthProbe(
                session=session, base_url=settings.backend_url, timeout=timeouts.probe
            )
            backend_poll = BackendPollChannel(
                session=session,
                base_url=settings.backend_url,
                interval=timeouts.backend_poll_interval,
                max_attempts=timeouts.backend_poll_attempts,
            )
            push_url = settings.push_endpoint()
            if push_url:
                push = RealtimePushChannel(session=session, url=push_url)

        coordinator = ExecutionCoordinator(
            settings=settings,
            reconciler=ResultReconciler(store=store),
            provider=provider,
            push=push,
            backend_poll=backend_poll,
            ci_poll=ci_poll,
            simulator=SimulatedResultChannel(delay=timeouts.simulated_delay),
            probe=probe,
            registry=CorrelationRegistry(grace_period=timeouts.grace_period),
        )
        try:
            yield coordinator
        finally:
            await coordinator.aclose()
