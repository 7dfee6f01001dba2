"""
Receipt Service - idempotent fiscal receipt issuance

The invoice id is the idempotency key: before creating, the gateway is asked
whether a receipt for that invoice already exists, and a duplicate answer on
create resolves to the existing receipt.
"""
from typing import Awaitable, Callable, Optional
import asyncio
import logging

from fiscal_engine.core.exceptions import GatewayError
from fiscal_engine.integrations.ferma import FermaClient, build_receipt_payload
from fiscal_engine.schemas.receipt import (
    DocumentType,
    ReceiptParty,
    ReceiptSpec,
    PAYMENT_ITEM_ADVANCE_OFFSET,
    PAYMENT_ITEM_PREPAYMENT,
    PAYMENT_METHOD_FULL_PAYMENT,
    PAYMENT_METHOD_PREPAY_FULL,
)
from fiscal_engine.schemas.sale import InvoiceKind, OffsetJob, SaleOrder

logger = logging.getLogger(__name__)


class ReceiptService:

    def __init__(
        self,
        ferma: FermaClient,
        cashbox_inn: str,
        callback_url: Optional[str] = None,
        url_poll_attempts: int = 3,
        url_poll_backoff: float = 1.2,
        default_email: Optional[str] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.ferma = ferma
        self.cashbox_inn = cashbox_inn
        self.callback_url = callback_url
        self.url_poll_attempts = url_poll_attempts
        self.url_poll_backoff = url_poll_backoff
        self.default_email = default_email
        self._sleep = sleep

    async def ensure_receipt(self, spec: ReceiptSpec) -> str:
        """Return the receipt id for spec.invoice_id, creating it only if none exists"""
        existing = await self.ferma.get_receipt_status(spec.invoice_id)
        if existing and existing.receipt_id:
            logger.info(f"Receipt for invoice {spec.invoice_id} already exists: {existing.receipt_id}")
            return existing.receipt_id

        payload = build_receipt_payload(spec, self.cashbox_inn, self.callback_url)
        created = await self.ferma.create_receipt(payload)
        if not created.id:
            raise GatewayError("ferma", f"receipt for invoice {spec.invoice_id} created without id")
        logger.info(
            f"Receipt {created.id} for invoice {spec.invoice_id} "
            f"({spec.doc_type.value}, order #{spec.order_id}{', duplicate' if created.duplicate else ''})"
        )
        return created.id

    async def resolve_url(self, receipt_id: str) -> Optional[str]:
        """Short-poll until the receipt is signed; None means try again later"""
        for attempt in range(self.url_poll_attempts):
            status = await self.ferma.get_receipt_status(receipt_id)
            url = self.ferma.receipt_url(status) if status else None
            if url:
                return url
            if attempt < self.url_poll_attempts - 1:
                await self._sleep(self.url_poll_backoff)
        logger.debug(f"Receipt {receipt_id} not signed yet")
        return None

    # ========== Receipt request builders ==========

    def build_for_order(
        self,
        order: SaleOrder,
        kind: InvoiceKind,
        party: ReceiptParty,
        party_inn: str,
        party_name: Optional[str] = None,
    ) -> ReceiptSpec:
        if kind == InvoiceKind.PREPAY:
            invoice_id, doc_type = order.invoice_prepay, DocumentType.INCOME_PREPAYMENT
            method, payment_item = PAYMENT_METHOD_PREPAY_FULL, None
        elif kind == InvoiceKind.OFFSET:
            invoice_id, doc_type = order.invoice_offset, DocumentType.INCOME
            method, payment_item = PAYMENT_METHOD_FULL_PAYMENT, PAYMENT_ITEM_ADVANCE_OFFSET
        else:
            invoice_id, doc_type = order.invoice_full, DocumentType.INCOME
            method, payment_item = PAYMENT_METHOD_FULL_PAYMENT, PAYMENT_ITEM_PREPAYMENT
        if not invoice_id:
            raise ValueError(f"order #{order.order_id} has no invoice of kind {kind.value}")

        return ReceiptSpec(
            invoice_id=invoice_id,
            party=party,
            party_inn=party_inn,
            party_name=party_name or (order.partner_name if party == ReceiptParty.PARTNER else order.organization_name),
            description=order.description,
            amount=float(order.net_amount),
            vat_rate=order.vat_rate.value,
            method_code=method,
            doc_type=doc_type,
            order_id=order.order_id,
            buyer_email=order.buyer_email or self.default_email,
            payment_item_type=payment_item,
        )

    def build_for_job(
        self,
        job: OffsetJob,
        invoice_id: str,
        party_inn: str,
        party_name: Optional[str] = None,
    ) -> ReceiptSpec:
        return ReceiptSpec(
            invoice_id=invoice_id,
            party=ReceiptParty(job.party),
            party_inn=party_inn,
            party_name=party_name or job.partner_name,
            description=job.description,
            amount=float(job.amount),
            vat_rate=job.vat_rate.value,
            method_code=PAYMENT_METHOD_FULL_PAYMENT,
            doc_type=DocumentType.INCOME,
            order_id=job.order_id,
            buyer_email=job.buyer_email or self.default_email,
            payment_item_type=PAYMENT_ITEM_ADVANCE_OFFSET,
        )
