"""
Engine error taxonomy

Transient gateway failures and missing preconditions are retried on the next
tick; integrity hazards block the write that triggered them.
"""
from typing import Optional


class FiscalEngineError(Exception):
    """Base error for the orchestration engine"""


class StorageTimeout(FiscalEngineError):
    def __init__(self, operation: str, key: str, timeout: float):
        super().__init__(f"storage {operation} '{key}' exceeded {timeout}s")
        self.operation = operation
        self.key = key


class GatewayError(FiscalEngineError):
    """Network, timeout or 5xx failure talking to an external gateway"""

    def __init__(self, gateway: str, message: str, status_code: Optional[int] = None, body: str = ""):
        super().__init__(f"{gateway}: {message}" + (f" (HTTP {status_code})" if status_code else ""))
        self.gateway = gateway
        self.status_code = status_code
        self.body = body[:500]


class LedgerShrinkBlocked(FiscalEngineError):
    def __init__(self, previous_count: int, next_count: int, marker_key: str):
        super().__init__(
            f"ledger write blocked: record count would drop {previous_count} -> {next_count}"
        )
        self.previous_count = previous_count
        self.next_count = next_count
        self.marker_key = marker_key


class OrderIdConflict(FiscalEngineError):
    def __init__(self, order_id: int, existing_task_id: str):
        super().__init__(f"order id {order_id} already belongs to task {existing_task_id}")
        self.order_id = order_id
        self.existing_task_id = existing_task_id


class InvariantViolation(FiscalEngineError):
    """A record breaks a ledger invariant and is refused"""
