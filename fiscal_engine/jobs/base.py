"""
Periodic Worker - common tick wrapper for lease-driven jobs
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, Optional
import asyncio
import logging
import time

from fiscal_engine.services.lease_service import LeaderLease

logger = logging.getLogger(__name__)


class PeriodicWorker(ABC):
    """
    One tick = re-entrancy guard -> lease -> run_once().

    A tick already in progress in this process suppresses a concurrent one;
    non-leaders skip the tick entirely.
    """
    NAME: str = "worker"

    def __init__(self, lease: LeaderLease, lease_ttl: float):
        self.lease = lease
        self.lease_ttl = lease_ttl
        self._lock = asyncio.Lock()
        self.last_run: Optional[datetime] = None
        self.last_summary: Dict[str, Any] = {}

    async def tick(self) -> Dict[str, Any]:
        if self._lock.locked():
            logger.debug(f"[{self.NAME}] tick already running, skipped")
            return {"skipped": "busy"}

        async with self._lock:
            if not await self.lease.ensure_leader(self.NAME, self.lease_ttl):
                logger.debug(f"[{self.NAME}] not leader, skipped")
                return {"skipped": "not_leader"}

            started = time.monotonic()
            try:
                summary = await self.run_once()
            except Exception as e:
                logger.exception(f"[{self.NAME}] tick failed: {e}")
                summary = {"error": str(e)}
            summary["elapsed_ms"] = int((time.monotonic() - started) * 1000)
            self.last_run = datetime.now()
            self.last_summary = summary
            logger.info(f"[{self.NAME}] tick: {summary}")
            return summary

    @abstractmethod
    async def run_once(self) -> Dict[str, Any]:
        """Do one pass; must be idempotent"""
        pass

    def get_status(self) -> Dict[str, Any]:
        return {
            "name": self.NAME,
            "running": self._lock.locked(),
            "last_run": self.last_run.isoformat() if self.last_run else None,
            "last_summary": self.last_summary,
        }
