"""
FastAPI application entry point.
"""

from __future__ import annotations

from fastapi import FastAPI

from weddingpix.admin_routes import router as admin_router
from weddingpix.config import get_settings
from weddingpix.routes import router


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title="WeddingPix Backend (FastAPI)", version="0.1.0")
    app.include_router(router, prefix=settings.api_prefix)
    app.include_router(admin_router, prefix=settings.api_prefix)
    return app


app = create_app()
