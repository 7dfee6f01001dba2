"""
Fiscal Orchestrator - receipt orchestration service
FastAPI Application Entry Point
"""
import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from typing import Optional
import logging

from fiscal_engine.core import settings
from fiscal_engine.core.exceptions import LedgerShrinkBlocked, InvariantViolation, OrderIdConflict
from fiscal_engine.core.log_config import setup_logging
from fiscal_engine.api.router import api_router
from fiscal_engine.engine import FiscalEngine, build_engine
from fiscal_engine.jobs import start_scheduler, stop_scheduler

logger = logging.getLogger(__name__)


def create_app(engine: Optional[FiscalEngine] = None, start_workers: bool = True) -> FastAPI:

    # Lifespan for startup/shutdown
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if getattr(app.state, "engine", None) is None:
            app.state.engine = build_engine(settings)
        logger.info(f"{settings.APP_NAME} starting on port {settings.APP_PORT}")

        # Start periodic workers
        if start_workers:
            try:
                start_scheduler(app.state.engine)
            except Exception as e:
                logger.warning(f"Could not start scheduler: {e}")

        yield

        # Shutdown
        if start_workers:
            stop_scheduler()
        await app.state.engine.aclose()
        logger.info(f"{settings.APP_NAME} shutting down")

    app = FastAPI(
        title=settings.APP_NAME,
        description="Fiscal receipt orchestration: invoice ids, sale ledger, receipt workers",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.engine = engine

    @app.exception_handler(LedgerShrinkBlocked)
    async def shrink_blocked_handler(request: Request, exc: LedgerShrinkBlocked):
        return JSONResponse(status_code=409, content={
            "detail": str(exc),
            "previous_count": exc.previous_count,
            "next_count": exc.next_count,
            "marker": exc.marker_key,
        })

    @app.exception_handler(OrderIdConflict)
    async def order_conflict_handler(request: Request, exc: OrderIdConflict):
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    @app.exception_handler(InvariantViolation)
    async def invariant_handler(request: Request, exc: InvariantViolation):
        return JSONResponse(status_code=422, content={"detail": str(exc)})

    # Include routers
    app.include_router(api_router, prefix="/api")

    # Health check
    @app.get("/health")
    async def health_check():
        return {"status": "healthy", "app": settings.APP_NAME}

    return app


app = create_app()


if __name__ == "__main__":
    setup_logging()
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=settings.APP_PORT,
        reload=settings.DEBUG
    )
