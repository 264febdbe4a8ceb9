"""Bounded in-process cache with per-entry expiry."""

import logging
import threading
import time
from collections import OrderedDict
from typing import Any, Callable, Hashable, Tuple, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

MISSING = object()


class TTLCache:
    """Key/value store dropping entries after ``ttl_seconds`` and evicting the
    least recently used entry once ``max_entries`` is reached."""

    def __init__(
        self,
        max_entries: int = 512,
        ttl_seconds: float = 3600,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self.max_entries = max_entries
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: "OrderedDict[Hashable, Tuple[float, Any]]" = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: Hashable, default: Any = MISSING) -> Any:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return default
            expires_at, value = entry
            if expires_at <= self._clock():
                del self._entries[key]
                return default
            self._entries.move_to_end(key)
            return value

    def set(self, key: Hashable, value: Any) -> None:
        with self._lock:
            self._entries[key] = (self._clock() + self.ttl_seconds, value)
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def get_or_compute(self, key: Hashable, compute_fn: Callable[[], T]) -> T:
        """Return the cached value for ``key`` or compute and store it.

        ``None`` results are not stored.
        """
        value = self.get(key)
        if value is not MISSING:
            logger.debug("cache hit for %s", key)
            return value
        logger.debug("cache miss for %s", key)
        value = compute_fn()
        if value is not None:
            self.set(key, value)
        return value
