"""Correlation of request and subject identifiers to the run listening for them."""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field

log = logging.getLogger(__name__)


@dataclass(kw_only=True)
class CorrelationRegistry[L]:
    """Maps request IDs and subject IDs to a single listener each.

    Subscribing a key that already has a listener replaces it (last writer
    wins) and hands the replaced listener back to the caller. Retired
    requests stay resolvable for a grace period so late results can be
    recognised and discarded instead of being mistaken for unknown traffic.
    """

    grace_period: float = 60.0
    clock: Callable[[], float] = time.monotonic
    _listeners: dict[str, L] = field(default_factory=dict, repr=False)
    _retired: dict[str, float] = field(default_factory=dict, repr=False)

    def subscribe(self, key: str, listener: L) -> L | None:
        """Attach ``listener`` to ``key`` and return the listener it replaced."""
        previous = self._listeners.get(key)
        self._listeners[key] = listener
        if previous is not None and previous is not listener:
            log.info("Listener for %s replaced", key)
            return previous
        return None

    def unsubscribe(self, key: str, listener: L | None = None) -> None:
        """Detach the listener for ``key``.

        When ``listener`` is given, the key is only detached if it still
        points at that listener, so a newer subscription is left alone.
        """
        current = self._listeners.get(key)
        if current is None:
            return
        if listener is not None and current is not listener:
            return
        del self._listeners[key]

    def lookup(self, key: str) -> L | None:
        """Return the listener for a request or subject ID."""
        return self._listeners.get(key)

    def retire(self, request_id: str) -> None:
        """Mark a request as finished; its results are discarded from now on."""
        self._retired.setdefault(request_id, self.clock() + self.grace_period)

    def is_retired(self, request_id: str) -> bool:
        """Whether results for ``request_id`` must be discarded."""
        return request_id in self._retired

    def accepts_results(self, request_id: str) -> bool:
        """Whether a live listener exists for ``request_id``."""
        return request_id in self._listeners and request_id not in self._retired

    def purge(self, request_id: str) -> None:
        """Forget a request entirely."""
        self._retired.pop(request_id, None)
        self._listeners.pop(request_id, None)

    def purge_expired(self) -> list[str]:
        """Forget retired requests whose grace period has elapsed."""
        now = self.clock()
        expired = [rid for rid, until in self._retired.items() if until <= now]
        for request_id in expired:
            self.purge(request_id)
        return expired

    def __len__(self) -> int:
        return len(self._listeners)

    def __contains__(self, key: object) -> bool:
        return key in self._listeners
