from __future__ import annotations

import logging
import math
import time
from typing import Callable, Dict, Hashable, Optional, Tuple

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


class ExpiringStore:
    """
    Key -> expiry map. An entry is live while `now < expiry`; expired entries
    are reclaimed on access and by `purge()`.
    """

    def __init__(self, clock: Clock = time.monotonic, sweep_interval: float = 30.0):
        self._clock = clock
        self._entries: Dict[Hashable, float] = {}
        self._sweep_interval = sweep_interval
        self._last_sweep = clock()

    def now(self) -> float:
        return self._clock()

    def expiry(self, key: Hashable) -> Optional[float]:
        now = self._clock()
        self._maybe_sweep(now)
        expires_at = self._entries.get(key)
        if expires_at is None:
            return None
        if now >= expires_at:
            del self._entries[key]
            return None
        return expires_at

    def set(self, key: Hashable, ttl_seconds: float) -> float:
        expires_at = self._clock() + ttl_seconds
        self._entries[key] = expires_at
        return expires_at

    def purge(self) -> int:
        now = self._clock()
        stale = [k for k, exp in self._entries.items() if now >= exp]
        for key in stale:
            del self._entries[key]
        self._last_sweep = now
        return len(stale)

    def _maybe_sweep(self, now: float) -> None:
        if now - self._last_sweep >= self._sweep_interval:
            removed = self.purge()
            if removed:
                logger.debug("Reclaimed %d expired cooldown entries", removed)

    def __len__(self) -> int:
        return len(self._entries)


class CooldownTracker:
    """Per-user, per-command throttle."""

    def __init__(self, store: Optional[ExpiringStore] = None):
        self._store = store or ExpiringStore()

    def check_and_arm(self, user_id: int, command: str, window_seconds: float) -> Optional[int]:
        """
        Arm a cooldown if none is active and return None (allowed).
        Otherwise return the whole seconds left, without resetting the window.
        """
        key: Tuple[int, str] = (user_id, command)
        expires_at = self._store.expiry(key)
        if expires_at is not None:
            return max(1, math.ceil(expires_at - self._store.now()))
        if window_seconds > 0:
            self._store.set(key, window_seconds)
        return None

    def purge(self) -> int:
        return self._store.purge()
