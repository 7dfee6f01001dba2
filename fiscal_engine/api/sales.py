"""
Sales API - order placement and ledger access
"""
from fastapi import APIRouter, Depends, HTTPException, Query
from typing import List
import logging

from fiscal_engine.engine import FiscalEngine
from fiscal_engine.schemas.sale import (
    OrderCreate,
    ReceiptUpdate,
    SaleOrder,
    SaleSummary,
    StatusUpdate,
)
from .deps import get_engine

logger = logging.getLogger(__name__)

sales_router = APIRouter(tags=["sales"])


@sales_router.post("/orders", response_model=SaleOrder, status_code=201)
async def place_order(data: OrderCreate, engine: FiscalEngine = Depends(get_engine)):
    return await engine.orders.place_order(data)


@sales_router.get("/sales/{task_id}", response_model=SaleOrder)
async def get_sale(task_id: str, engine: FiscalEngine = Depends(get_engine)):
    order = await engine.ledger.get_by_task_id(task_id)
    if not order:
        raise HTTPException(status_code=404, detail="Sale not found")
    return order


@sales_router.get("/orgs/{org_id}/sales", response_model=List[SaleSummary])
async def list_org_sales(
    org_id: str,
    include_hidden: bool = Query(False),
    engine: FiscalEngine = Depends(get_engine),
):
    rows = await engine.ledger.list_by_organization(org_id)
    if not include_hidden:
        rows = [r for r in rows if not r.hidden]
    return rows


@sales_router.post("/sales/{task_id}/status", response_model=SaleOrder)
async def update_sale_status(
    task_id: str,
    update: StatusUpdate,
    engine: FiscalEngine = Depends(get_engine),
):
    # capture is only ever marked by the repair worker
    order = await engine.ledger.update_status(task_id, update.model_copy(update={"captured": False}))
    if not order:
        raise HTTPException(status_code=404, detail="Sale not found")
    return order


@sales_router.post("/sales/{task_id}/receipts", response_model=SaleOrder)
async def attach_sale_receipts(
    task_id: str,
    update: ReceiptUpdate,
    engine: FiscalEngine = Depends(get_engine),
):
    order = await engine.ledger.attach_receipt_urls(task_id, update)
    if not order:
        raise HTTPException(status_code=404, detail="Sale not found")
    return order
