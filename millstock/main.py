"""
Mill Stock FastAPI Main Application
Entry point for the stock ledger REST API
"""
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
import sys

from millstock.core.config import settings
from millstock.core.database import check_db_connection, init_db
from millstock.core.exceptions import (
    BusinessLogicError, InsufficientPermissionsError, RecordNotFound,
    StoreUnavailable, ValidationError
)
from millstock.core.logging import get_logger
from millstock.api.v1.api_router import api_router

logger = get_logger("api")

# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="""
    ## Rice Mill Stock Ledger API

    Paddy stock reconciliation and opening balances derived from the
    movement ledger.

    ### Key Features:
    - **Movements**: purchases, shiftings, production-shiftings, loose entries, sales and palti
    - **Approval workflow**: staff, manager and admin sign-off
    - **Opening balances**: per kunchinittu, warehouse and outturn at any cutoff
    - **Rates**: weighted purchase rates carried along with shifted stock
    """,
    docs_url=settings.DOCS_URL,
    redoc_url=settings.REDOC_URL,
    openapi_url=settings.OPENAPI_URL,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Add trusted host middleware for production
if not settings.DEBUG:
    app.add_middleware(
        TrustedHostMiddleware,
        allowed_hosts=settings.ALLOWED_HOSTS
    )


@app.get("/health", tags=["System"])
async def health_check():
    """
    Health check endpoint for monitoring and load balancers

    Returns system status and database connectivity
    """
    try:
        db_status = check_db_connection()

        return {
            "status": "healthy" if db_status else "degraded",
            "version": settings.APP_VERSION,
            "database": "connected" if db_status else "disconnected",
            "debug": settings.DEBUG
        }
    except Exception as e:
        logger.error(f"Health check failed: {e}")
        raise HTTPException(status_code=503, detail="Service unavailable")


@app.get("/info", tags=["System"])
async def system_info():
    """Application configuration and enabled features"""
    return {
        "application": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "api_version": "v1",
        "docs_url": settings.DOCS_URL,
        "cache": {
            "enabled": settings.CACHE_ENABLED,
            "backend": settings.CACHE_BACKEND,
            "ttl_seconds": settings.CACHE_TTL_SECONDS,
        },
        "rules": {
            "rate_unit_kg": settings.RATE_UNIT_KG,
            "paddy_bags_per_quintal": settings.PADDY_BAGS_PER_QUINTAL,
            "exempt_byproducts": settings.EXEMPT_BYPRODUCTS,
        },
    }


@app.on_event("startup")
async def startup_event():
    """
    Application startup tasks

    Verify the database and create missing tables
    """
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")

    if not check_db_connection():
        logger.error("Failed to connect to database on startup")
        sys.exit(1)

    logger.info("Database connection established")
    init_db()
    logger.info("Application startup completed successfully")


@app.on_event("shutdown")
async def shutdown_event():
    logger.info("Shutting down application")


@app.exception_handler(ValidationError)
async def validation_exception_handler(request: Request, exc: ValidationError):
    """Rejected movements: the body tells the caller what to correct"""
    logger.info(f"{request.method} {request.url.path} rejected: {exc.message}")
    return JSONResponse(
        status_code=400,
        content={"error": exc.code, "detail": exc.message, **exc.to_dict()},
    )


@app.exception_handler(BusinessLogicError)
async def business_exception_handler(request: Request, exc: BusinessLogicError):
    return JSONResponse(
        status_code=400,
        content={"error": "business_rule", "detail": str(exc)},
    )


@app.exception_handler(InsufficientPermissionsError)
async def permission_exception_handler(request: Request, exc: InsufficientPermissionsError):
    return JSONResponse(
        status_code=403,
        content={"error": "forbidden", "detail": str(exc)},
    )


@app.exception_handler(RecordNotFound)
async def not_found_exception_handler(request: Request, exc: RecordNotFound):
    return JSONResponse(
        status_code=404,
        content={"error": "not_found", "detail": str(exc)},
    )


@app.exception_handler(StoreUnavailable)
async def store_exception_handler(request: Request, exc: StoreUnavailable):
    logger.error(f"{request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=503,
        content={"error": "store_unavailable", "detail": "Event store unavailable, retry later"},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    """
    Global exception handler for unhandled errors

    Args:
        request: FastAPI request object
        exc: Exception that occurred

    Returns:
        JSON error response
    """
    logger.error(f"Unhandled exception: {exc}", exc_info=True)

    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "detail": str(exc) if settings.DEBUG else "An unexpected error occurred",
            "type": "server_error"
        }
    )


app.include_router(api_router, prefix=settings.API_V1_STR)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "millstock.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower(),
    )
