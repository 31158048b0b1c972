"""Bounded-staleness snapshot of the public catalog."""
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional


@dataclass(frozen=True)
class CacheSnapshot:
    version: int
    taken_at: float
    payload: bytes


class ListingCache:
    """One immutable snapshot, replaced as a whole.

    ``invalidate`` bumps the version and drops the snapshot, so the next read
    recomputes. A recompute that started under an older version still answers
    its own caller but is not installed.
    """

    def __init__(self, ttl_seconds: float = 10.0, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._version = 0
        self._snapshot: Optional[CacheSnapshot] = None

    @property
    def version(self) -> int:
        return self._version

    def peek(self) -> Optional[CacheSnapshot]:
        """The current snapshot if still fresh."""
        snapshot = self._snapshot
        if snapshot is None or snapshot.version != self._version:
            return None
        if self._clock() - snapshot.taken_at >= self.ttl_seconds:
            return None
        return snapshot

    async def get(self, loader: Callable[[], Awaitable[bytes]]) -> bytes:
        snapshot = self.peek()
        if snapshot is not None:
            return snapshot.payload

        version = self._version
        started_at = self._clock()
        payload = await loader()
        if version == self._version:
            self._snapshot = CacheSnapshot(version=version, taken_at=started_at, payload=payload)
        return payload

    def invalidate(self) -> None:
        self._version += 1
        self._snapshot = None
