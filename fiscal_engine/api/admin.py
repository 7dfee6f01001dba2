"""
Admin API - manual worker runs and ledger maintenance
"""
from fastapi import APIRouter, Depends, Query
import logging

from fiscal_engine.engine import FiscalEngine
from .deps import get_engine, require_admin

logger = logging.getLogger(__name__)

admin_router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])


@admin_router.post("/repair")
async def run_repair(
    force: bool = Query(False, description="Run even if another instance holds the lease"),
    engine: FiscalEngine = Depends(get_engine),
):
    if force:
        return await engine.repair_worker.run_once()
    return await engine.repair_worker.tick()


@admin_router.post("/schedule/run")
async def run_schedule(
    force: bool = Query(False),
    engine: FiscalEngine = Depends(get_engine),
):
    if force:
        return await engine.schedule_worker.run_once()
    return await engine.schedule_worker.tick()


@admin_router.post("/ledger/migrate")
async def migrate_ledger(
    force: bool = Query(False),
    engine: FiscalEngine = Depends(get_engine),
):
    return await engine.ledger.migrate_legacy(force=force)


@admin_router.post("/ledger/export-legacy")
async def export_legacy_ledger(
    allow_shrink: bool = Query(False),
    engine: FiscalEngine = Depends(get_engine),
):
    """Rewrite the legacy ledger file from the sharded store"""
    orders = await engine.ledger.list_all()
    await engine.legacy.write_all(orders, allow_shrink=allow_shrink)
    return {"written": len(orders)}


@admin_router.get("/offset-jobs")
async def list_offset_jobs(engine: FiscalEngine = Depends(get_engine)):
    jobs = await engine.offset_jobs.load()
    return {"jobs": [j.model_dump(mode="json") for j in jobs]}


@admin_router.post("/offset-jobs/rebuild")
async def rebuild_offset_jobs(engine: FiscalEngine = Depends(get_engine)):
    return await engine.orders.rebuild_offset_jobs()
