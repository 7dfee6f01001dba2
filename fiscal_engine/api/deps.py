"""
API dependencies
"""
from fastapi import Header, HTTPException, Request

from fiscal_engine.engine import FiscalEngine


def get_engine(request: Request) -> FiscalEngine:
    return request.app.state.engine


def require_admin(request: Request, x_admin_token: str = Header("", alias="X-Admin-Token")):
    expected = request.app.state.engine.settings.ADMIN_TOKEN
    if expected and x_admin_token != expected:
        raise HTTPException(status_code=401, detail="Admin token required")
