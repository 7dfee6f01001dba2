"""
Base Gateway Client - Abstract base class for external gateway integrations
"""
from abc import ABC
from typing import Any, Dict, Optional
from urllib.parse import urljoin
import logging

import httpx

from fiscal_engine.core.exceptions import GatewayError
from .http import send_and_read, send_and_discard

logger = logging.getLogger(__name__)


class BaseGatewayClient(ABC):
    """
    Shared plumbing for gateway clients: one pooled AsyncClient, bounded
    requests, transport failures surfaced as GatewayError
    """
    GATEWAY_NAME: str = "base"

    def __init__(
        self,
        base_url: str,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url if base_url.endswith("/") else base_url + "/"
        self.timeout = timeout
        self._client = httpx.AsyncClient(timeout=httpx.Timeout(timeout), transport=transport)

    async def aclose(self) -> None:
        await self._client.aclose()

    # ========== Requests ==========

    def _url(self, path: str) -> str:
        return urljoin(self.base_url, path.lstrip("/"))

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
        headers: Optional[Dict[str, str]] = None,
        read_body: bool = True,
    ) -> httpx.Response:
        request = self._client.build_request(
            method,
            self._url(path),
            params=params,
            json=json,
            headers={**self._build_headers(), **(headers or {})},
        )
        try:
            if read_body:
                response = await send_and_read(self._client, request, self.timeout)
            else:
                response = await send_and_discard(self._client, request, self.timeout)
        except httpx.HTTPError as e:
            logger.warning(f"[{self.GATEWAY_NAME}] {method} {path} failed: {e}")
            raise GatewayError(self.GATEWAY_NAME, f"{method} {path} failed: {e}") from e

        self._log_api_call(method, path, response.status_code)
        if response.status_code >= 500:
            raise GatewayError(
                self.GATEWAY_NAME,
                f"{method} {path} server error",
                status_code=response.status_code,
                body=response.text if read_body else "",
            )
        return response

    @staticmethod
    def _parse_json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            return None

    # ========== Utilities ==========

    def _build_headers(self) -> Dict[str, str]:
        """Build common request headers"""
        return {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def _log_api_call(self, method: str, endpoint: str, status_code: int):
        """Log API call for debugging"""
        logger.info(f"[{self.GATEWAY_NAME}] {method} {endpoint} -> {status_code}")
