"""A lazily expiring key/value map."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Dict, Generic, Hashable, TypeVar, Union

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")

_MISSING = object()


@dataclass
class _Entry(Generic[V]):
    value: V
    expiry: float


def _seconds(ttl: Union[float, int, timedelta]) -> float:
    if isinstance(ttl, timedelta):
        return ttl.total_seconds()
    return float(ttl)


class DecayMap(Generic[K, V]):
    """Map whose entries expire after a time-to-live; expired entries are pruned on access."""

    def __init__(self) -> None:
        self._data: Dict[K, _Entry[V]] = {}
        self._lock = threading.Lock()

    def expire(self, key: K) -> bool:
        """Force ``key`` to expire one second in the past. Returns whether it existed."""
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return False
            entry.expiry = time.monotonic() - 1.0
            return True

    def get(self, key: K, default: Any = None) -> Any:
        """Return the live value for ``key``, or ``default`` if absent or expired."""
        with self._lock:
            entry = self._data.get(key)
        if entry is None:
            return default
        if time.monotonic() > entry.expiry:
            with self._lock:
                # The entry may have been replaced since it was read.
                if self._data.get(key) is entry:
                    del self._data[key]
            return default
        return entry.value

    def set(self, key: K, value: V, ttl: Union[float, int, timedelta]) -> None:
        """Store ``value`` under ``key`` for ``ttl`` seconds (or a timedelta)."""
        with self._lock:
            self._data[key] = _Entry(value, time.monotonic() + _seconds(ttl))

    def cleanup(self) -> None:
        """Remove every expired entry."""
        now = time.monotonic()
        with self._lock:
            for key in [k for k, e in self._data.items() if now > e.expiry]:
                del self._data[key]

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)

    def __contains__(self, key: object) -> bool:
        return self.get(key, _MISSING) is not _MISSING  # type: ignore[arg-type]