"""Bounded TTL cache shared by the price and metadata services."""
from __future__ import annotations

import time
from collections import OrderedDict
from collections.abc import Callable
from typing import Any, Generic, Hashable, Optional, Tuple, TypeVar

V = TypeVar("V")

_MISSING: Any = object()


class TtlCache(Generic[V]):
    """Mapping of key → (value, expiry) with oldest-first eviction.

    ``None`` is a legal cached value (negative caching), so lookups go
    through :meth:`lookup`, which reports hit/miss separately.
    """

    def __init__(self, ttl_seconds: float, max_entries: int = 10_000,
                 clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl = float(ttl_seconds)
        self.max_entries = max(1, int(max_entries))
        self._clock = clock
        self._items: "OrderedDict[Hashable, Tuple[V, float]]" = OrderedDict()

    def lookup(self, key: Hashable) -> Tuple[bool, Optional[V]]:
        item = self._items.get(key, _MISSING)
        if item is _MISSING:
            return False, None
        value, expiry = item
        if self._clock() >= expiry:
            del self._items[key]
            return False, None
        return True, value

    def get(self, key: Hashable) -> Optional[V]:
        return self.lookup(key)[1]

    def set(self, key: Hashable, value: V) -> None:
        self._items.pop(key, None)
        self._items[key] = (value, self._clock() + self.ttl)
        while len(self._items) > self.max_entries:
            self._items.popitem(last=False)

    def clear(self) -> None:
        self._items.clear()

    def __len__(self) -> int:
        return len(self._items)

    def stats(self) -> dict[str, float]:
        return {"size": len(self._items), "ttl_seconds": self.ttl}
