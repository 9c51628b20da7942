"""
XRPL Whale Monitor API - FastAPI Application

Whale-transaction monitoring and Telegram alert dispatch for a curated
set of XRP Ledger wallets
"""

from fastapi import FastAPI, Depends, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session
from datetime import datetime, timezone
from typing import Dict, Any
from contextlib import asynccontextmanager

from whale_monitor.db.session import get_db, init_db
from whale_monitor.db.seed import seed_monitored_wallets
from whale_monitor.api.routes import admin, alerts, telegram
from whale_monitor.core.logging_config import setup_logging, get_logger
from whale_monitor.core.config import settings
from whale_monitor.core.security import mask_token
from whale_monitor.core.exceptions import (
    APIException,
    MonitorError,
    api_exception_handler,
    monitor_exception_handler,
    http_exception_handler
)
from whale_monitor.services.dispatcher import get_dispatcher
from whale_monitor.services.scheduler import start_monitor_scheduler, stop_monitor_scheduler, get_monitor_scheduler
from whale_monitor.xrpl.client import get_xrpl_client
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from whale_monitor.core.rate_limit import limiter
from fastapi import HTTPException

VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager

    Startup: logging, tables, registry wallets, background scheduler
    Shutdown: scheduler, HTTP clients
    """
    setup_logging(level=settings.LOG_LEVEL, json_format=settings.use_json_logs)

    logger = get_logger()
    logger.info("Starting XRPL Whale Monitor API", extra={
        "version": VERSION,
        "environment": settings.ENVIRONMENT
    })

    init_db()
    logger.info("Database initialized successfully")

    if settings.MONITOR_SEED_REGISTRY:
        seed_monitored_wallets()

    if not settings.TELEGRAM_BOT_TOKEN:
        logger.warning("TELEGRAM_BOT_TOKEN is not set; alerts will stay pending until it is configured")
    else:
        logger.info("Telegram bot configured (token %s)", mask_token(settings.TELEGRAM_BOT_TOKEN))

    if settings.MONITOR_ENABLED:
        await start_monitor_scheduler()
    else:
        logger.info("Monitor scheduler disabled (MONITOR_ENABLED=false)")

    yield

    logger.info("Shutting down XRPL Whale Monitor API")
    await stop_monitor_scheduler()
    await get_dispatcher().close()
    await (await get_xrpl_client()).close()


app = FastAPI(
    title="XRPL Whale Monitor API",
    description="Whale transaction monitoring and alert dispatch for XRP Ledger wallets",
    version=VERSION,
    lifespan=lifespan
)

# Add rate limiter
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# Add structured exception handlers
app.add_exception_handler(APIException, api_exception_handler)
app.add_exception_handler(MonitorError, monitor_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)

# CORS for the admin UI
# SECURITY: Restrict origins in production (configured via ALLOWED_ORIGINS env var)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(admin.router)
app.include_router(alerts.router)
app.include_router(telegram.router)


@app.get("/")
@limiter.limit("100/minute")
def root(request: Request) -> Dict[str, str]:
    """
    Root endpoint - API is up
    """
    return {
        "message": "XRPL Whale Monitor API",
        "status": "working",
        "version": VERSION,
        "docs": "/docs",
    }


@app.get("/health")
@limiter.limit("60/minute")
def health(request: Request) -> Dict[str, Any]:
    """
    Basic health check endpoint

    Returns 200 if application is running.
    Use for liveness probes.
    """
    scheduler = get_monitor_scheduler()
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "scheduler": "running" if scheduler and scheduler.is_running else "stopped",
    }


@app.get("/health/ready")
@limiter.limit("60/minute")
async def health_ready(request: Request, db: Session = Depends(get_db)) -> Dict[str, Any]:
    """
    Readiness check endpoint

    Verifies that application is ready to serve traffic:
    - Database connection is working
    - Telegram dispatch is configured

    Returns:
        200: Application is ready
        503: Database unreachable (with details)
    """
    from sqlalchemy import text

    checks = {
        "status": "ready",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": {}
    }

    try:
        db.execute(text("SELECT 1"))
        checks["checks"]["database"] = "ok"
    except Exception as e:
        checks["status"] = "not_ready"
        checks["checks"]["database"] = f"error: {str(e)}"
        raise HTTPException(503, detail=checks)

    # Missing Telegram config degrades dispatch only; alerts keep accumulating
    missing = [tier for tier, channel in settings.telegram_channels.items() if not channel]
    if not settings.TELEGRAM_BOT_TOKEN:
        checks["checks"]["telegram"] = "missing bot token"
    elif missing:
        checks["checks"]["telegram"] = f"missing channels: {', '.join(missing)}"
    else:
        checks["checks"]["telegram"] = "ok"

    return checks


# Run:
# uvicorn whale_monitor.main:app --reload  (from backend/)
#
# Trigger a scan:
# curl -X POST -H "Authorization: Bearer $ADMIN_TOKEN" http://localhost:8000/admin/monitor/all
