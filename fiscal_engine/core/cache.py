"""
Explicit in-process caches

Both caches are plain objects handed to the components that need them, so
tests can build isolated instances.
"""
import asyncio
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple


class TTLCache:
    """Key -> value cache with absolute expiry and single-flight refresh"""

    def __init__(self, skew_seconds: float = 0.0, clock: Callable[[], float] = time.time):
        self.skew_seconds = skew_seconds
        self._clock = clock
        self._items: Dict[str, Tuple[Any, float]] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def get(self, key: str) -> Optional[Any]:
        item = self._items.get(key)
        if item is None:
            return None
        value, expires_at = item
        if self._clock() + self.skew_seconds >= expires_at:
            return None
        return value

    def set(self, key: str, value: Any, expires_at: float) -> None:
        self._items[key] = (value, expires_at)

    def invalidate(self, key: str) -> None:
        self._items.pop(key, None)

    async def get_or_refresh(
        self,
        key: str,
        refresh: Callable[[], Awaitable[Tuple[Any, float]]],
    ) -> Any:
        """Return a fresh value; on miss only the first caller runs `refresh`"""
        value = self.get(key)
        if value is not None:
            return value
        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            value = self.get(key)
            if value is not None:
                return value
            value, expires_at = await refresh()
            self.set(key, value, expires_at)
            return value


@dataclass
class LeaseView:
    is_leader: bool
    expires_at_ms: int
    last_check_ms: int


class LeaseCache:
    """Last observed lease state per job name"""

    def __init__(self):
        self._views: Dict[str, LeaseView] = {}

    def get(self, name: str) -> Optional[LeaseView]:
        return self._views.get(name)

    def set(self, name: str, view: LeaseView) -> None:
        self._views[name] = view

    def snapshot(self) -> Dict[str, LeaseView]:
        return dict(self._views)
