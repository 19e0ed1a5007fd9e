import time
from collections import OrderedDict
from typing import Callable, Hashable

from app.core.config import settings

class DedupCache:
    """
    Bounded, expiring membership set for webhook replays.

    Entries live for `ttl_seconds`; past `max_entries` the least recently
    used key is evicted. In-process only: a restart forgets everything, the
    conditional status update in the database remains the real guard.
    """

    def __init__(
        self,
        max_entries: int = settings.DEDUP_MAX_ENTRIES,
        ttl_seconds: float = settings.DEDUP_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_entries = max_entries
        self.ttl = ttl_seconds
        self._clock = clock
        self._entries: "OrderedDict[Hashable, float]" = OrderedDict()

    def __contains__(self, key: Hashable) -> bool:
        return self.has(key)

    def __len__(self) -> int:
        self._purge_expired()
        return len(self._entries)

    def has(self, key: Hashable) -> bool:
        expires_at = self._entries.get(key)
        if expires_at is None:
            return False
        if expires_at <= self._clock():
            del self._entries[key]
            return False
        self._entries.move_to_end(key)
        return True

    def add(self, key: Hashable) -> None:
        self._entries[key] = self._clock() + self.ttl
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)

    def check_and_add(self, key: Hashable) -> bool:
        """True the first time a key is seen inside the window, False on replays."""
        if self.has(key):
            return False
        self.add(key)
        return True

    def clear(self) -> None:
        self._entries.clear()

    def _purge_expired(self) -> None:
        now = self._clock()
        for key in [k for k, exp in self._entries.items() if exp <= now]:
            del self._entries[key]
