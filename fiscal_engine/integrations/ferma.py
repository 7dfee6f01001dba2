"""
Ferma (OFD.ru) Cloud Cash Register Client
API Documentation: https://ferma.ofd.ru/api-docs

Receipt creation is keyed by InvoiceId: the gateway refuses a second receipt
for the same invoice and reports the existing one instead.
"""
import time
from datetime import timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Optional
from urllib.parse import quote
import logging

import httpx
from dateutil import parser as date_parser

from fiscal_engine.core.cache import TTLCache
from fiscal_engine.core.exceptions import GatewayError
from fiscal_engine.schemas.receipt import (
    AuthToken,
    CreatedReceipt,
    ReceiptParty,
    ReceiptSpec,
    ReceiptStatus,
)
from .base import BaseGatewayClient

logger = logging.getLogger(__name__)

TOKEN_FALLBACK_TTL_SECONDS = 10 * 60
DEFAULT_SUPPLIER_NAME = "Исполнитель"

VAT_MAP = {
    "none": "VatNo",
    "0": "Vat0",
    "5": "Vat5",
    "7": "Vat7",
    "10": "Vat10",
    "20": "Vat20",
}


class FermaClient(BaseGatewayClient):
    """
    Ferma cloud receipt API
    """
    GATEWAY_NAME = "ferma"

    AUTH_PATH = "/api/Authorization/CreateAuthToken"
    RECEIPT_PATH = "/api/kkt/cloud/receipt"

    def __init__(
        self,
        base_url: str,
        login: str,
        password: str,
        token_cache: TTLCache,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(base_url, timeout=timeout, transport=transport)
        self.login = login
        self.password = password
        self.token_cache = token_cache

    @property
    def _token_key(self) -> str:
        return f"{self.base_url}|{self.login}"

    # ========== Authorization ==========

    async def create_auth_token(self) -> AuthToken:
        response = await self._request(
            "POST",
            self.AUTH_PATH,
            json={"Login": self.login, "Password": self.password},
        )
        data = self._parse_json(response)
        if not isinstance(data, dict):
            data = {}
        inner = data.get("Data") or {}
        token = inner.get("AuthToken") or data.get("AuthToken")
        if response.status_code >= 400 or not token:
            raise GatewayError(
                self.GATEWAY_NAME,
                "auth token not issued",
                status_code=response.status_code,
                body=response.text,
            )
        expires_at = _parse_expiry(inner.get("ExpirationDateUtc") or data.get("ExpirationDateUtc"))
        if expires_at is None:
            expires_at = time.time() + TOKEN_FALLBACK_TTL_SECONDS
        return AuthToken(token=token, expires_at=expires_at)

    async def get_auth_token(self) -> str:
        """Cached token; refreshed a skew interval before it expires"""
        async def refresh():
            created = await self.create_auth_token()
            logger.info(f"[ferma] auth token refreshed for {self.login}")
            return created.token, created.expires_at

        return await self.token_cache.get_or_refresh(self._token_key, refresh)

    # ========== Receipts ==========

    async def create_receipt(self, payload: Dict[str, Any]) -> CreatedReceipt:
        """
        Submit a receipt. A duplicate-invoice answer carrying the existing
        receipt id counts as success.
        """
        token = await self.get_auth_token()
        response = await self._request(
            "POST",
            self.RECEIPT_PATH,
            params={"AuthToken": token},
            json=payload,
        )
        data = self._parse_json(response)
        receipt_id = _receipt_id(data)
        existing_id = _existing_receipt_id(data)
        status = _status_text(data)

        if response.status_code < 400 and receipt_id:
            return CreatedReceipt(id=receipt_id, status=status)
        if existing_id:
            logger.info(f"[ferma] invoice already fiscalized, existing receipt {existing_id}")
            return CreatedReceipt(id=existing_id, status=status, duplicate=True)
        if response.status_code == 401:
            self.token_cache.invalidate(self._token_key)
        raise GatewayError(
            self.GATEWAY_NAME,
            "receipt not created",
            status_code=response.status_code,
            body=response.text,
        )

    async def get_receipt_status(self, receipt_or_invoice_id: str) -> Optional[ReceiptStatus]:
        """
        Look up a receipt by receipt id or by invoice id.
        Returns None when the gateway knows nothing about it.
        """
        token = await self.get_auth_token()
        response = await self._request(
            "GET",
            f"{self.RECEIPT_PATH}/{quote(str(receipt_or_invoice_id), safe='')}",
            params={"AuthToken": token},
        )
        if response.status_code == 401:
            self.token_cache.invalidate(self._token_key)
            raise GatewayError(self.GATEWAY_NAME, "status lookup unauthorized", status_code=401)
        if response.status_code >= 400:
            return None

        data = self._parse_json(response)
        if not isinstance(data, dict):
            return None
        if str(data.get("Status") or "").lower() == "failed":
            return None
        inner = data.get("Data") or {}
        device = inner.get("Device") or {}
        status = ReceiptStatus(
            receipt_id=inner.get("ReceiptId") or data.get("ReceiptId"),
            status_code=inner.get("StatusCode"),
            status_name=inner.get("StatusName"),
            fn=_text(inner.get("Fn") or data.get("Fn") or device.get("FN")),
            fd=_text(inner.get("Fd") or data.get("Fd") or device.get("FDN")),
            fp=_text(inner.get("Fp") or data.get("Fp") or device.get("FPD")),
            direct_url=device.get("OfdReceiptUrl") or None,
        )
        if not status.receipt_id and not status.is_signed:
            return None
        return status

    def receipt_url(self, status: ReceiptStatus) -> Optional[str]:
        """Public receipt URL, once the receipt has been signed"""
        if status.direct_url:
            return status.direct_url
        if status.fn and status.fd and status.fp:
            return build_receipt_view_url(status.fn, status.fd, status.fp, self.base_url)
        return None


# ========== Payload helpers ==========

def build_receipt_view_url(fn: str, fd: str, fp: str, base_url: str = "") -> str:
    viewer = "https://check-demo.ofd.ru" if "ferma-test" in base_url.lower() else "https://check.ofd.ru"
    return f"{viewer}/rec/{quote(str(fn), safe='')}/{quote(str(fd), safe='')}/{quote(str(fp), safe='')}"


def build_receipt_payload(
    spec: ReceiptSpec,
    cashbox_inn: str,
    callback_url: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Build a Ferma receipt request.
    Partner receipts are issued as agent receipts on behalf of the supplier.
    """
    price = Decimal(str(max(0, spec.amount))).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    amount = float(price)

    item: Dict[str, Any] = {
        "Label": spec.description or "Услуги",
        "Price": amount,
        "Quantity": 1,
        "Amount": amount,
        "Vat": VAT_MAP.get(str(spec.vat_rate), "VatNo"),
        "PaymentMethod": spec.method_code,
        "PaymentType": 4,
        "Measure": "PIECE",
    }

    agent_info = None
    if spec.party == ReceiptParty.PARTNER:
        agent_info = {
            "AgentType": "AGENT",
            "SupplierInn": spec.party_inn,
            "SupplierName": (spec.party_name or "").strip() or DEFAULT_SUPPLIER_NAME,
        }
        item["PaymentAgentInfo"] = agent_info

    customer_receipt: Dict[str, Any] = {
        "TaxationSystem": "Common",
        "Items": [item],
        "Payments": [{"Type": 2, "Amount": amount}],
        "PaymentType": 4,
    }
    if spec.buyer_email and spec.buyer_email.strip():
        customer_receipt["Email"] = spec.buyer_email.strip()
    if agent_info:
        customer_receipt["PaymentAgentInfo"] = agent_info

    payment_items = None
    if spec.payment_item_type is not None:
        payment_items = [{"PaymentType": spec.payment_item_type, "Sum": amount}]
        customer_receipt["PaymentItems"] = payment_items

    request: Dict[str, Any] = {
        "Inn": cashbox_inn,
        "SupplierInn": spec.party_inn,
        "Type": spec.doc_type.value,
        "InvoiceId": spec.invoice_id,
        "CustomerReceipt": customer_receipt,
    }
    if payment_items:
        request["PaymentItems"] = payment_items
    if callback_url:
        request["CallbackUrl"] = callback_url
    return {"Request": request}


def _parse_expiry(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        parsed = date_parser.isoparse(value)
    except (ValueError, OverflowError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.timestamp()


def _receipt_id(data: Any) -> Optional[str]:
    if not isinstance(data, dict):
        return None
    found = data.get("id") or data.get("uuid") or data.get("ReceiptId")
    if not found and isinstance(data.get("Data"), dict):
        found = data["Data"].get("ReceiptId")
    return _text(found)


def _existing_receipt_id(data: Any) -> Optional[str]:
    if not isinstance(data, dict) or not isinstance(data.get("Data"), dict):
        return None
    inner = data["Data"]
    found = inner.get("ExistingReceiptId")
    if not found and isinstance(inner.get("ExistingReceiptIds"), list) and inner["ExistingReceiptIds"]:
        found = inner["ExistingReceiptIds"][0]
    return _text(found)


def _status_text(data: Any) -> Optional[str]:
    if not isinstance(data, dict):
        return None
    return _text(data.get("status") or data.get("state") or data.get("Status"))


def _text(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)
