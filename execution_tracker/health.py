"""Availability probe for the results backend."""

import logging
from dataclasses import dataclass, field

import aiohttp

log = logging.getLogger(__name__)


@dataclass(frozen=True, kw_only=True)
class BackendHealthProbe:
    """Checks ``GET {base_url}/health`` within a bounded time."""

    session: aiohttp.ClientSession = field(repr=False)
    base_url: str
    timeout: float = 5.0

    async def __call__(self) -> bool:
        """Return whether the backend answered the health check successfully."""
        url = f"{self.base_url.rstrip('/')}/health"
        try:
            async with self.session.get(
                url, timeout=aiohttp.ClientTimeout(total=self.timeout)
            ) as response:
                if 200 <= response.status < 300:
                    return True
                log.warning("Backend health check returned %s", response.status)
                return False
        except (aiohttp.ClientError, TimeoutError) as exc:
            log.warning("Backend health check failed: %s", exc)
            return False
