"""
Main application module for the Family Ledger API.

This module sets up the FastAPI application with lifespan management, database connections, middleware and
routing configuration.
"""

from contextlib import asynccontextmanager
import time

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from pymongo.errors import PyMongoError
import uvicorn

from family_ledger.config import settings
from family_ledger.database import db_manager
from family_ledger.integrations.receipt_scanner import receipt_scanner
from family_ledger.managers.logging_manager import get_logger
from family_ledger.managers.redis_manager import redis_manager
from family_ledger.routes import auth_router, family_router, ledger_router, receipts_router
from family_ledger.utils.logging_utils import RequestLoggingMiddleware, log_application_lifecycle, log_error_with_context

logger = get_logger()

APP_VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(_app: FastAPI):
    """
    Application lifespan manager.

    Connects MongoDB and ensures indexes on startup; closes MongoDB, Redis and the receipt scanner client on
    shutdown.
    """
    startup_start_time = time.time()
    log_application_lifecycle(
        "startup_initiated",
        {
            "app_name": settings.APP_NAME,
            "version": APP_VERSION,
            "environment": "production" if settings.is_production else "development",
            "debug_mode": settings.DEBUG,
        },
    )

    try:
        db_connect_start = time.time()
        await db_manager.connect()
        log_application_lifecycle(
            "database_connected",
            {
                "connection_duration": f"{time.time() - db_connect_start:.3f}s",
                "database_name": settings.MONGODB_DATABASE,
                "transactions_supported": db_manager.transactions_supported,
            },
        )

        indexes_start = time.time()
        await db_manager.create_indexes()
        log_application_lifecycle("database_indexes_ready", {"indexes_duration": f"{time.time() - indexes_start:.3f}s"})
    except PyMongoError as e:
        log_application_lifecycle(
            "startup_failed",
            {
                "error": str(e),
                "error_type": type(e).__name__,
                "startup_duration": f"{time.time() - startup_start_time:.3f}s",
            },
        )
        log_error_with_context(e, {"operation": "application_startup", "phase": "database_connection"})
        raise

    if not db_manager.transactions_supported:
        logger.warning(
            "MongoDB does not support transactions (standalone server); membership changes use post-condition checks"
        )

    log_application_lifecycle("startup_completed", {"startup_duration": f"{time.time() - startup_start_time:.3f}s"})

    yield

    shutdown_start_time = time.time()
    log_application_lifecycle("shutdown_initiated")
    await receipt_scanner.close()
    await redis_manager.close()
    await db_manager.disconnect()
    log_application_lifecycle("shutdown_completed", {"shutdown_duration": f"{time.time() - shutdown_start_time:.3f}s"})


app = FastAPI(
    title="Family Ledger API",
    description="""
    Personal and family finance tracking.

    - Personal ledgers of income and expense transactions grouped into budgeted categories
    - Families joined by invite code, with a shared ledger, admin roles and spending limits
    - Dashboard statistics and receipt scanning
    """,
    version=APP_VERSION,
    lifespan=lifespan,
    openapi_tags=[
        {"name": "Authentication", "description": "Registration, login (session or bearer token) and logout"},
        {"name": "Family", "description": "Family creation, invite codes and member administration"},
        {"name": "Family Ledger", "description": "Shared family transactions and categories"},
        {"name": "Spending Limits", "description": "Admin-managed family spending limits"},
        {"name": "Ledger", "description": "Personal transactions, categories and statistics"},
        {"name": "Receipts", "description": "Receipt photo extraction"},
        {"name": "System", "description": "Health checks"},
    ],
)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Answer malformed requests with 400 and the same detail shape the domain errors use."""
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = f"{location}: {first.get('msg', 'Invalid request')}" if location else first.get("msg", "Invalid request")
    logger.info("Request validation failed on %s %s: %s", request.method, request.url.path, message)
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": {"error": "VALIDATION_ERROR", "message": message}},
    )


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
# Added last so it wraps CORS and sees every request.
app.add_middleware(RequestLoggingMiddleware)
log_application_lifecycle("middleware_configured", {"middleware": ["CORSMiddleware", "RequestLoggingMiddleware"]})

routers_config = [
    ("auth", auth_router, "Authentication endpoints"),
    ("family", family_router, "Family management, shared ledger and spending limits"),
    ("ledger", ledger_router, "Personal ledger and statistics"),
    ("receipts", receipts_router, "Receipt scanning"),
]
for router_name, router, description in routers_config:
    app.include_router(router)
    logger.debug("Included %s router: %s", router_name, description)
log_application_lifecycle("routers_configured", {"routers": [name for name, _, _ in routers_config]})


@app.get("/health", tags=["System"])
async def health():
    """Liveness plus database reachability."""
    database_ok = await db_manager.health_check()
    if not database_ok:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"error": "SERVICE_UNAVAILABLE", "message": "Database is unreachable"},
        )
    return {"status": "healthy", "database": "connected", "version": APP_VERSION}


Instrumentator(should_group_status_codes=True, should_ignore_untemplated=True).instrument(app).expose(
    app, include_in_schema=False, endpoint="/metrics"
)


def run():
    """Console entry point."""
    uvicorn.run(
        "family_ledger.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    run()
