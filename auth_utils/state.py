"""Short-lived, single-use state storage.

OAuth handlers save a pending authorization under each ``state`` nonce and
WebAuthn handlers save challenges under each attempt ID. Both only need two
operations: save with a TTL, and consume (read-and-delete).

``MemoryStateStore`` is the default in-process implementation. Deployments
with more than one worker process should inject a shared store (Redis,
database) implementing ``StateStore``.
"""

import logging
import secrets
import threading
import time
from typing import Any, Callable, Protocol

logger = logging.getLogger(__name__)

DEFAULT_TTL = 600  # seconds
DEFAULT_MAX_ENTRIES = 10_000


class StateStore(Protocol):
    """Storage for single-use values keyed by an opaque nonce."""

    async def save(self, key: str, value: Any, ttl: int | None = None) -> None:
        """Save a value that expires after ``ttl`` seconds."""
        ...

    async def consume(self, key: str) -> Any | None:
        """Remove and return a value, or None if absent or expired."""
        ...


class MemoryStateStore:
    """In-memory ``StateStore`` with per-entry expiry.

    Expired entries are purged on every write, and the store never holds
    more than ``max_entries`` items (oldest are evicted first).
    """

    def __init__(
        self,
        ttl: int = DEFAULT_TTL,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the store.

        Args:
            ttl: Default lifetime of an entry in seconds
            max_entries: Upper bound on stored entries
            clock: Monotonic time source (injectable for tests)
        """
        self.ttl = ttl
        self.max_entries = max_entries
        self._clock = clock
        self._entries: dict[str, tuple[float, Any]] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            entry = self._entries.get(key)  # type: ignore[arg-type]
            return entry is not None and entry[0] > self._clock()

    def _purge_expired_locked(self) -> int:
        now = self._clock()
        expired = [k for k, (expires_at, _) in self._entries.items() if expires_at <= now]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def purge_expired(self) -> int:
        """Drop expired entries.

        Returns:
            Number of entries removed
        """
        with self._lock:
            return self._purge_expired_locked()

    async def save(self, key: str, value: Any, ttl: int | None = None) -> None:
        lifetime = self.ttl if ttl is None else ttl
        with self._lock:
            self._purge_expired_locked()
            self._entries.pop(key, None)
            while len(self._entries) >= self.max_entries:
                oldest = next(iter(self._entries))
                del self._entries[oldest]
                logger.warning("State store full, evicted oldest pending entry")
            self._entries[key] = (self._clock() + lifetime, value)

    async def consume(self, key: str) -> Any | None:
        with self._lock:
            entry = self._entries.pop(key, None)
        if entry is None:
            return None
        expires_at, value = entry
        if expires_at <= self._clock():
            logger.debug("Consumed state entry had already expired")
            return None
        return value

    def clear(self) -> None:
        """Remove every entry."""
        with self._lock:
            self._entries.clear()


def generate_state() -> str:
    """Generate a cryptographically random state parameter.

    Returns:
        32-character random hex string
    """
    return secrets.token_hex(16)
