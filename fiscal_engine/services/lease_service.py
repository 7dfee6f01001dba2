"""
Lease Service - best-effort leader election over the blob store

Only the lease holder runs a periodic job body. A short window of dual
leadership is possible around acquisition; every job driven by a lease must
therefore be idempotent on its own.
"""
from typing import Dict, Optional
import logging
import os
import secrets
import socket

from fiscal_engine.core.cache import LeaseCache, LeaseView
from fiscal_engine.core.clock import Clock
from fiscal_engine.core.exceptions import FiscalEngineError
from fiscal_engine.storage import BlobStore, safe_segment

logger = logging.getLogger(__name__)

CACHE_MIN_REMAINING = 0.4
CACHE_MAX_AGE_MS = 5000
RENEW_MARGIN = 0.2


def make_instance_id() -> str:
    return f"{socket.gethostname()}:{os.getpid()}:{secrets.token_hex(3)}"


def lease_key(name: str) -> str:
    return f"locks/lease_{safe_segment(name)}.json"


class LeaderLease:

    def __init__(
        self,
        store: BlobStore,
        clock: Clock,
        cache: Optional[LeaseCache] = None,
        instance_id: Optional[str] = None,
    ):
        self.store = store
        self.clock = clock
        self.cache = cache or LeaseCache()
        self.instance_id = instance_id or make_instance_id()

    async def ensure_leader(self, name: str, ttl_seconds: float) -> bool:
        """Acquire or renew the named lease; False if another instance holds it"""
        now = self.clock.timestamp_ms()
        ttl_ms = int(ttl_seconds * 1000)

        view = self.cache.get(name)
        if (
            view
            and view.is_leader
            and view.expires_at_ms > now + CACHE_MIN_REMAINING * ttl_ms
            and now - view.last_check_ms < CACHE_MAX_AGE_MS
        ):
            return True

        key = lease_key(name)
        try:
            current = await self.store.get_json(key) or {}
            owner = current.get("id")
            expires_at = int(current.get("expiresAt") or 0)

            if owner and owner != self.instance_id and expires_at > now:
                self.cache.set(name, LeaseView(False, expires_at, now))
                return False
            if owner == self.instance_id and expires_at > now + RENEW_MARGIN * ttl_ms:
                self.cache.set(name, LeaseView(True, expires_at, now))
                return True

            next_expiry = now + ttl_ms
            await self.store.put_json(key, {
                "id": self.instance_id,
                "expiresAt": next_expiry,
                "updatedAt": now,
            })
            # Read back: a concurrent writer may have won the race
            confirmed = await self.store.get_json(key) or {}
        except FiscalEngineError as e:
            logger.warning(f"Lease {name} check failed: {e}")
            self.cache.set(name, LeaseView(False, 0, now))
            return False

        is_leader = confirmed.get("id") == self.instance_id
        self.cache.set(name, LeaseView(is_leader, int(confirmed.get("expiresAt") or 0), now))
        if is_leader and owner != self.instance_id:
            logger.info(f"Lease {name} acquired by {self.instance_id}")
        return is_leader

    async def release(self, name: str) -> None:
        key = lease_key(name)
        current = await self.store.get_json(key) or {}
        if current.get("id") == self.instance_id:
            await self.store.delete(key)
            logger.info(f"Lease {name} released by {self.instance_id}")
        self.cache.set(name, LeaseView(False, 0, self.clock.timestamp_ms()))

    def snapshot(self) -> Dict[str, dict]:
        return {
            name: {
                "is_leader": view.is_leader,
                "expires_at_ms": view.expires_at_ms,
                "last_check_ms": view.last_check_ms,
            }
            for name, view in self.cache.snapshot().items()
        }
