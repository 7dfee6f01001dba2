"""
Fiscal Callback API - receipt-signed notifications from the fiscal gateway

The callback is an alternative path into the same ledger operation the
repair worker uses to attach receipt URLs.
"""
from fastapi import APIRouter, Depends, HTTPException, Query, Request
import logging

from fiscal_engine.engine import FiscalEngine
from fiscal_engine.integrations.ferma import build_receipt_view_url
from fiscal_engine.schemas.sale import InvoiceKind, ReceiptUpdate
from fiscal_engine.services.invoice_service import parse_invoice_id
from .deps import get_engine

logger = logging.getLogger(__name__)

callback_router = APIRouter(prefix="/fiscal", tags=["fiscal"])


@callback_router.post("/callback")
async def fiscal_callback(
    request: Request,
    secret: str = Query(""),
    engine: FiscalEngine = Depends(get_engine),
):
    """
    Expected body (Ferma callback):
    {"Data": {"ReceiptId", "InvoiceId", "Fn", "Fd", "Fp", "Device": {"OfdReceiptUrl"}}}
    """
    expected = engine.settings.FERMA_CALLBACK_SECRET
    provided = secret or request.headers.get("X-Ofd-Signature", "")
    if expected and provided != expected:
        raise HTTPException(status_code=401, detail="Invalid callback secret")

    try:
        body = await request.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}
    data = body.get("Data") if isinstance(body.get("Data"), dict) else body
    device = data.get("Device") if isinstance(data.get("Device"), dict) else {}

    receipt_id = data.get("ReceiptId") or body.get("id")
    invoice_id = data.get("InvoiceId")
    url = device.get("OfdReceiptUrl")
    fn, fd, fp = data.get("Fn"), data.get("Fd"), data.get("Fp")
    if not url and fn and fd is not None and fp is not None:
        url = build_receipt_view_url(fn, fd, fp, engine.settings.FERMA_BASE_URL)

    parsed = parse_invoice_id(invoice_id) if invoice_id else None
    if not parsed or not (url or receipt_id):
        logger.info(f"Fiscal callback not attachable (invoice {invoice_id}, receipt {receipt_id})")
        return {"ok": True, "attached": False}

    kind, order_id = parsed
    order = await engine.ledger.get_by_order_id(order_id)
    if not order:
        logger.warning(f"Fiscal callback for unknown order #{order_id} (invoice {invoice_id})")
        return {"ok": True, "attached": False}

    if kind == InvoiceKind.PREPAY:
        update = ReceiptUpdate(prepay_receipt_id=receipt_id, prepay_receipt_url=url)
    else:
        update = ReceiptUpdate(full_receipt_id=receipt_id, full_receipt_url=url)
    await engine.ledger.attach_receipt_urls(order.task_id, update)
    logger.info(f"Fiscal callback attached {kind.value} receipt {receipt_id} to order #{order_id}")
    return {"ok": True, "attached": True, "order_id": order_id}
