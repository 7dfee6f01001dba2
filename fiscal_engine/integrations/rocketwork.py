"""
RocketWork Payment Gateway Client
API Documentation: https://app.rocketwork.ru/api/docs

Only two calls are consumed: task status and the "pay" (capture) action.
"""
from dataclasses import dataclass
from typing import Any, Dict, Optional
from urllib.parse import quote
import logging

import httpx

from fiscal_engine.core.exceptions import GatewayError
from .base import BaseGatewayClient

logger = logging.getLogger(__name__)

# Executor kinds registered as individual entrepreneurs; they issue their own
# tax receipts, so no NPD receipt is expected for them
ENTREPRENEUR_KINDS = frozenset({"ip", "individual_entrepreneur", "entrepreneur"})


@dataclass
class ExecutorInfo:
    inn: Optional[str] = None
    full_name: Optional[str] = None
    is_entrepreneur: bool = False


@dataclass
class TaskStatus:
    task_id: str
    acquiring_status: Optional[str] = None
    root_status: Optional[str] = None
    executor: Optional[ExecutorInfo] = None
    receipt_url: Optional[str] = None
    commission_receipt_url: Optional[str] = None
    npd_receipt_uri: Optional[str] = None
    has_commission: bool = False


class RocketWorkClient(BaseGatewayClient):
    """
    RocketWork tasks API
    """
    GATEWAY_NAME = "rocketwork"

    def __init__(
        self,
        base_url: str,
        api_token: str,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(base_url, timeout=timeout, transport=transport)
        self.api_token = api_token

    def _build_headers(self) -> Dict[str, str]:
        headers = super()._build_headers()
        if self.api_token:
            headers["Authorization"] = f"Bearer {self.api_token}"
        return headers

    async def get_task_status(self, task_id: str) -> TaskStatus:
        response = await self._request("GET", f"tasks/{quote(str(task_id), safe='')}")
        if response.status_code >= 400:
            raise GatewayError(
                self.GATEWAY_NAME,
                f"task {task_id} status unavailable",
                status_code=response.status_code,
                body=response.text,
            )
        data = self._parse_json(response)
        if not isinstance(data, dict):
            raise GatewayError(self.GATEWAY_NAME, f"task {task_id}: unexpected response body")
        task = data["task"] if isinstance(data.get("task"), dict) else data
        return parse_task(str(task_id), task)

    async def trigger_capture(self, task_id: str) -> None:
        """Ask the gateway to pay out the task; the response body is discarded"""
        response = await self._request(
            "PATCH",
            f"tasks/{quote(str(task_id), safe='')}/pay",
            read_body=False,
        )
        if response.status_code >= 400:
            raise GatewayError(
                self.GATEWAY_NAME,
                f"capture for task {task_id} rejected",
                status_code=response.status_code,
            )
        logger.info(f"[rocketwork] capture triggered for task {task_id}")


def parse_task(task_id: str, task: Dict[str, Any]) -> TaskStatus:
    acquiring = task.get("acquiring_order") if isinstance(task.get("acquiring_order"), dict) else {}
    executor_raw = task.get("executor") if isinstance(task.get("executor"), dict) else None

    executor = None
    if executor_raw:
        name_parts = [
            str(executor_raw.get(part) or "").strip()
            for part in ("last_name", "first_name", "second_name")
        ]
        kind = str(executor_raw.get("employment_kind") or executor_raw.get("kind") or "").lower()
        executor = ExecutorInfo(
            inn=_text(executor_raw.get("inn")),
            full_name=" ".join(p for p in name_parts if p) or None,
            is_entrepreneur=kind in ENTREPRENEUR_KINDS,
        )

    commission_value = task.get("additional_commission_value")
    return TaskStatus(
        task_id=task_id,
        acquiring_status=_lower(acquiring.get("status")),
        root_status=_lower(task.get("status")),
        executor=executor,
        receipt_url=_text(task.get("ofd_url") or acquiring.get("ofd_url")),
        commission_receipt_url=_text(task.get("additional_commission_ofd_url")),
        npd_receipt_uri=_text(task.get("receipt_uri")),
        has_commission=bool(commission_value) and str(commission_value) not in ("0", "0.0", "0.00"),
    )


def _text(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


def _lower(value: Any) -> Optional[str]:
    text = _text(value)
    return text.strip().lower() if text else None
