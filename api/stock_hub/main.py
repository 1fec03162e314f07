# stock_hub/main.py
# Stock Hub - packaging stations + bundle-aware stock reconciliation
from __future__ import annotations
import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from stock_hub.settings import Settings, settings as default_settings
from stock_hub.logging_setup import setup_logging
from stock_hub.database import init_db, close_db, check_db_health
from stock_hub.hub import StockHub, build_hub
from stock_hub.stores import build_stores
from stock_hub.services.audit import InMemoryAuditSink, SqlAuditSink
from stock_hub.services.packaging import SessionRegistry
from stock_hub.routers.packaging import router as packaging_router

logger = logging.getLogger(__name__)

VERSION = "1.0.0"


def create_app(app_settings: Optional[Settings] = None, hub: Optional[StockHub] = None) -> FastAPI:
    """
    Build the API. A prebuilt `hub` skips store construction (tests, embedding);
    otherwise CATALOG_BACKEND picks the SQL database or the in-memory stores.
    """
    app_settings = app_settings or default_settings
    use_sql = hub is None and app_settings.CATALOG_BACKEND == "sql"

    # ---------------------------------------------------------
    # Lifespan: logging, stores, session registry
    # ---------------------------------------------------------
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        log_path = setup_logging(app_settings)
        logger.info("Stock Hub %s starting, logging to %s", VERSION, log_path)

        if hub is not None:
            app.state.hub = hub
        elif use_sql:
            factory = await init_db(app_settings, create_tables=True)
            catalog, records = build_stores("sql", factory)
            app.state.hub = build_hub(catalog, records, SqlAuditSink(factory), app_settings)
            logger.info("Catalog backend: sql")
        else:
            catalog, records = build_stores("memory")
            app.state.hub = build_hub(catalog, records, InMemoryAuditSink(), app_settings)
            logger.info("Catalog backend: memory")
        idle = app_settings.SESSION_IDLE_MINUTES
        app.state.sessions = SessionRegistry(idle_timeout=timedelta(minutes=idle) if idle else None)
        yield
        if use_sql:
            await close_db()
        logger.info("Stock Hub stopped")

    app = FastAPI(
        title="Stock Hub API",
        version=VERSION,
        description="Packaging stations with bundle-aware stock reconciliation",
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "http://localhost:5173",
            "http://127.0.0.1:5173",
        ],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(packaging_router)

    @app.get("/health")
    async def health(request: Request):
        """Health check with database status when the SQL backend is active."""
        result = {
            "status": "ok",
            "version": VERSION,
            "backend": type(request.app.state.hub.catalog).__name__,
            "open_sessions": len(request.app.state.sessions),
        }
        if use_sql:
            db_health = await check_db_health()
            result["database"] = db_health
            if db_health.get("status") != "healthy":
                result["status"] = "degraded"
        return result

    return app


app = create_app()
