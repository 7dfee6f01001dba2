"""
API Router - JSON Endpoints
"""
from fastapi import APIRouter, Depends
from datetime import datetime

from fiscal_engine.engine import FiscalEngine
from fiscal_engine.jobs.scheduler import get_scheduler

# Import sub-routers
from .admin import admin_router
from .callbacks import callback_router
from .deps import get_engine
from .sales import sales_router

api_router = APIRouter(tags=["API"])

# Include sub-routers
api_router.include_router(sales_router)
api_router.include_router(callback_router)
api_router.include_router(admin_router)

# ===================== HEALTH & STATUS =====================

@api_router.get("/status")
async def api_status(engine: FiscalEngine = Depends(get_engine)):
    scheduler = get_scheduler()
    return {
        "status": "ok",
        "version": "1.0.0",
        "timestamp": datetime.now().isoformat(),
        "instance_id": engine.lease.instance_id,
        "storage": engine.store.BACKEND_NAME,
        "leases": engine.lease.snapshot(),
        "workers": [w.get_status() for w in engine.workers],
        "scheduled_jobs": scheduler.get_jobs() if scheduler else [],
    }
