# =============================================================================
# File: concurrent_dict.py
# Date: 2026-10-03
# Copyright (c) 2024 Goutam Malakar. All rights reserved.
# =============================================================================

import time
from threading import Lock, RLock
from typing import Any, Callable, Dict, List, Optional, Tuple

from sentembed.logger import get_logger

logger = get_logger("concurrent_dict")


class ConcurrentDict:
    """
    Thread-safe dictionary for concurrent access.

    Provides atomic get, set and remove plus a load-once ``get_or_add``: the
    factory for a key runs at most once at a time, outside the dictionary lock,
    so different keys load in parallel while callers racing on the same key
    wait for the first load and reuse its value. Optional LRU eviction with an
    ``on_evict(key, value)`` callback.
    """

    def __init__(
        self,
        created_for: Any = None,
        max_size: Optional[int] = None,
        on_evict: Optional[Callable[[Any, Any], None]] = None,
    ):
        self._lock = RLock()
        self._dict: Dict[Any, Any] = {}
        self._access_times: Dict[Any, float] = {}
        self._key_locks: Dict[Any, Lock] = {}
        self._created_for = created_for
        self._max_size = max_size if (max_size is None or max_size > 0) else None
        self._on_evict = on_evict

    @property
    def created_for(self) -> Any:
        """Label describing what this dictionary caches."""
        return self._created_for

    def get(self, key: Any, default: Optional[Any] = None) -> Any:
        """
        Thread-safe get operation with access time tracking.
        """
        with self._lock:
            if key in self._dict:
                self._access_times[key] = time.time()
                return self._dict[key]
            return default

    def contains(self, key: Any) -> bool:
        """Membership test that does not refresh the access time."""
        with self._lock:
            return key in self._dict

    def set(self, key: Any, value: Any) -> None:
        """
        Thread-safe set operation with access time tracking.
        """
        with self._lock:
            self._dict[key] = value
            self._access_times[key] = time.time()
            evicted = self._collect_evictions()
        self._notify_evicted(evicted)

    def remove(self, key: Any) -> Any:
        """
        Thread-safe remove operation. Returns the removed value or None.
        """
        with self._lock:
            self._access_times.pop(key, None)
            return self._dict.pop(key, None)

    def get_or_add(self, key: Any, factory: Callable[[], Any]) -> Any:
        """
        Return the value for ``key``, creating it with ``factory`` exactly once.

        Exceptions raised by the factory propagate to the caller and nothing is
        stored, so a later call retries the load.
        """
        while True:
            with self._lock:
                if key in self._dict:
                    self._access_times[key] = time.time()
                    return self._dict[key]
                key_lock = self._key_locks.setdefault(key, Lock())

            with key_lock:
                with self._lock:
                    if key in self._dict:
                        self._access_times[key] = time.time()
                        return self._dict[key]
                    # The previous holder failed and dropped this lock; queue
                    # on the registered one so loads stay serialized.
                    if self._key_locks.get(key) is not key_lock:
                        continue
                try:
                    value = factory()
                except Exception:
                    with self._lock:
                        self._release_key_lock(key, key_lock)
                    raise
                # Publish the value before dropping the key lock so late
                # arrivals never start a second load.
                with self._lock:
                    self._dict[key] = value
                    self._access_times[key] = time.time()
                    self._release_key_lock(key, key_lock)
                    evicted = self._collect_evictions(protect=key)
            self._notify_evicted(evicted)
            return value

    def _release_key_lock(self, key: Any, key_lock: Lock) -> None:
        if self._key_locks.get(key) is key_lock:
            del self._key_locks[key]

    def keys(self) -> List[Any]:
        """Snapshot of the current keys."""
        with self._lock:
            return list(self._dict.keys())

    def is_empty(self) -> bool:
        """
        Thread-safe check if the dictionary is empty.
        """
        with self._lock:
            return len(self._dict) == 0

    def size(self) -> int:
        """
        Thread-safe get size of the dictionary.
        """
        with self._lock:
            return len(self._dict)

    def clear(self) -> None:
        """
        Thread-safe clear all items from the dictionary.
        """
        with self._lock:
            self._dict.clear()
            self._access_times.clear()

    def set_max_size(self, max_size: Optional[int]) -> None:
        """Dynamically adjust max size and evict if needed."""
        with self._lock:
            self._max_size = max_size if (max_size is None or max_size > 0) else None
            evicted = self._collect_evictions()
        self._notify_evicted(evicted)

    def _collect_evictions(self, protect: Any = None) -> List[Tuple[Any, Any]]:
        """Pop least-recently-used items until under max_size. Caller holds the lock."""
        evicted: List[Tuple[Any, Any]] = []
        if not self._max_size:
            return evicted
        while len(self._dict) > self._max_size:
            candidates = {k: t for k, t in self._access_times.items() if k != protect}
            if not candidates:
                break
            lru_key = min(candidates, key=candidates.get)
            evicted.append((lru_key, self._dict.pop(lru_key, None)))
            self._access_times.pop(lru_key, None)
        return evicted

    def _notify_evicted(self, evicted: List[Tuple[Any, Any]]) -> None:
        """Invoke the on_evict callback outside the lock."""
        if not self._on_evict:
            return
        for key, value in evicted:
            if value is None:
                continue
            try:
                self._on_evict(key, value)
            except Exception as e:
                logger.warning(f"Error in on_evict callback for key {key}: {e}")

    def cleanup_unused(self, max_age_seconds: float = 60.0) -> int:
        """
        Remove items not accessed for max_age_seconds. Returns count of removed items.
        """
        current_time = time.time()
        with self._lock:
            keys_to_remove = [
                key
                for key, access_time in self._access_times.items()
                if current_time - access_time > max_age_seconds
            ]
            for key in keys_to_remove:
                del self._dict[key]
                del self._access_times[key]
        return len(keys_to_remove)
