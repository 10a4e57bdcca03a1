"""
FastAPI application for the ERP backend.
"""

import time
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from erp_api.config import settings
from erp_api.core.cache import cache
from erp_api.core.database import Database
from erp_api.core.errors import ERPError
from erp_api.core.logging import bind_request_context, configure_logging, get_logger
from erp_api.core.performance import monitor
from erp_api.scheduler import start_scheduler, stop_scheduler
from erp_api.routers.accounting import router as accounting_router
from erp_api.routers.crm import router as crm_router
from erp_api.routers.dashboard import router as dashboard_router
from erp_api.routers.essl import router as essl_router
from erp_api.routers.finance import router as finance_router
from erp_api.routers.hr import router as hr_router
from erp_api.routers.inventory import router as inventory_router
from erp_api.routers.logistics import router as logistics_router
from erp_api.routers.procurement import router as procurement_router
from erp_api.routers.sales import router as sales_router
from erp_api.routers.vendors import router as vendors_router

log = get_logger(__name__)

VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    # Startup
    configure_logging(settings.log_level, settings.json_logs)
    log.info("application_starting", company=settings.company_name)

    # Initialize database schema
    db = Database()
    db.init_schema()

    if settings.scheduler_enabled:
        start_scheduler()
    else:
        log.info("scheduler_disabled", reason="use /essl/sync and /hr/attendance/process")

    yield

    # Shutdown
    if settings.scheduler_enabled:
        stop_scheduler()
    log.info("application_stopped")


app = FastAPI(
    title="ERP API",
    description="Sales, logistics, accounting, HR, inventory, procurement and CRM backend",
    version=VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)


@app.middleware("http")
async def track_performance(request: Request, call_next):
    """Bind a request id to the log context and time every request per route."""
    bind_request_context(request_id=uuid.uuid4().hex[:12], method=request.method, path=request.url.path)
    started = time.perf_counter()
    failed = True
    try:
        response = await call_next(request)
        failed = response.status_code >= 500
        return response
    finally:
        duration_ms = (time.perf_counter() - started) * 1000
        route = request.scope.get("route")
        key = f"{request.method} {route.path if route else request.url.path}"
        if monitor.record(key, duration_ms, failed=failed):
            log.warning("slow_request", route=key, duration_ms=round(duration_ms, 1))


@app.exception_handler(ERPError)
async def erp_error_handler(request: Request, exc: ERPError):
    if exc.status_code >= 500:
        log.error("request_failed", error=exc.message, status_code=exc.status_code)
    else:
        log.info("request_rejected", error=exc.message, status_code=exc.status_code)
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_dict()))


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={"error": "Invalid request", "details": jsonable_encoder(exc.errors())},
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    log.exception("unhandled_error", error=str(exc))
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


app.include_router(crm_router)
app.include_router(sales_router)
app.include_router(finance_router)
app.include_router(accounting_router)
app.include_router(inventory_router)
app.include_router(logistics_router)
app.include_router(procurement_router)
app.include_router(vendors_router)
app.include_router(hr_router)
app.include_router(essl_router)
app.include_router(dashboard_router)


# Endpoints

@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy", "version": VERSION}


@app.get("/admin/performance")
async def performance():
    """Per-route timings since start (or the last reset)."""
    return {
        "slow_threshold_ms": monitor.slow_threshold_ms,
        "routes": monitor.snapshot(),
        "cache": cache.stats(),
    }


@app.delete("/admin/performance")
async def reset_performance():
    monitor.reset()
    return {"success": True}


@app.delete("/admin/cache")
async def clear_cache():
    cache.clear()
    log.info("cache_cleared")
    return {"success": True}


# Run with: uvicorn erp_api.main:app --host 0.0.0.0 --port 8000
