"""Main FastAPI application."""
import json
import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import InterfaceError, OperationalError
from starlette.middleware.base import BaseHTTPMiddleware

from nftmarket.api.market import router as market_router
from nftmarket.domain.common.errors import (
    ConflictError,
    DependencyUnavailableError,
    InvalidPriceError,
    NotFoundError,
    OfferNotObservedError,
    ValidationError,
)
from nftmarket.infra.db import base
from nftmarket.infra.db.base import Base
# Import all models to ensure they're registered with Base
from nftmarket.infra.db.models import ListingModel, OrderModel, SaleOfferModel  # noqa: F401
from nftmarket.settings import settings

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    if base.engine is not None:
        try:
            async with base.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except (OperationalError, InterfaceError, OSError) as e:
            # Database might not be ready yet; /ready reports it
            logger.warning("Could not connect to database during startup: %s", e)

    if not settings.xumm_api_key or not settings.xumm_api_secret:
        logger.warning("Signing gateway credentials not set; offers and purchases will return 503")
    if not settings.pay_destination:
        logger.warning("PAY_DESTINATION not set; purchases will return 503")

    yield

    # Shutdown
    if base.engine is not None:
        await base.engine.dispose()


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origin_regex=r".*",
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS", "HEAD"],
    allow_headers=["*"],
    max_age=3600,
)


class LoggingMiddleware(BaseHTTPMiddleware):
    """Middleware to log all requests and responses."""

    async def dispatch(self, request: Request, call_next):
        start_time = time.time()

        logger.info(f"[SERVER REQUEST] {request.method} {request.url.path}")
        logger.debug(f"   Query params: {dict(request.query_params)}")
        if request.headers:
            # Shared secrets are never logged
            headers = dict(request.headers)
            for secret_header in ("x-ingest-key", "x-api-key", "x-api-secret"):
                if secret_header in headers:
                    headers[secret_header] = "***"
            logger.debug(f"   Headers: {headers}")

        response = await call_next(request)

        process_time = time.time() - start_time
        logger.info(
            f"[SERVER RESPONSE] {request.method} {request.url.path} - {response.status_code} ({process_time:.3f}s)"
        )
        return response


# Add logging middleware AFTER CORS (CORS must be first)
app.add_middleware(LoggingMiddleware)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle validation errors with detailed logging."""
    logger.error(f"[VALIDATION ERROR] {request.method} {request.url.path}")
    errors = exc.errors()
    logger.error(f"   Validation errors ({len(errors)}):")
    for i, error in enumerate(errors, 1):
        logger.error(f"   Error {i}: {json.dumps(error, default=str)}")

    return JSONResponse(
        status_code=422,
        content={"detail": json.loads(json.dumps(errors, default=str))},
    )


# Domain error handlers: map domain exceptions to correct HTTP status
@app.exception_handler(NotFoundError)
async def domain_not_found_handler(request: Request, exc: NotFoundError):
    """Return 404 when a resource is not found."""
    return JSONResponse(status_code=404, content={"detail": exc.message})


@app.exception_handler(ValidationError)
async def domain_validation_handler(request: Request, exc: ValidationError):
    """Return 422 for domain validation errors."""
    return JSONResponse(status_code=422, content={"detail": exc.message})


@app.exception_handler(InvalidPriceError)
async def invalid_price_handler(request: Request, exc: InvalidPriceError):
    """Return 400 when the listing can't be sold in the requested currency."""
    return JSONResponse(status_code=400, content={"detail": exc.message})


@app.exception_handler(OfferNotObservedError)
async def offer_not_observed_handler(request: Request, exc: OfferNotObservedError):
    """Return 409 when a signed offer never showed up on the ledger."""
    return JSONResponse(status_code=409, content={"detail": exc.message})


@app.exception_handler(ConflictError)
async def domain_conflict_handler(request: Request, exc: ConflictError):
    """Return 409 for conflict errors."""
    return JSONResponse(status_code=409, content={"detail": exc.message})


@app.exception_handler(DependencyUnavailableError)
async def dependency_unavailable_handler(request: Request, exc: DependencyUnavailableError):
    """Return 503 so callers (and the signing gateway) retry later."""
    logger.error("Dependency unavailable on %s %s: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=503, content={"detail": exc.message})


@app.exception_handler(OperationalError)
async def database_unavailable_handler(request: Request, exc: OperationalError):
    """Return 503 when the database can't be reached."""
    logger.error("Database error on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=503, content={"detail": "Database unavailable"})


# Health check (root and under /v1 so GET /v1/health works behind a /v1 proxy prefix)
@app.get("/health")
@app.get(f"{settings.api_v1_prefix}/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "ok", "version": settings.app_version}


# Readiness: config, packages, DB, signing gateway, ledger
@app.get("/ready")
async def readiness():
    """Readiness endpoint: run all checks and return 200 if ready, 503 otherwise."""
    from nftmarket.readiness import is_ready, run_all_checks_async
    checks = await run_all_checks_async()
    ready, summary = is_ready(checks)
    if ready:
        return {"ready": True, "checks": summary}
    return JSONResponse(
        status_code=503,
        content={"ready": False, "checks": summary},
    )


# API v1 routes
app.include_router(market_router, prefix=settings.api_v1_prefix, tags=["market"])


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("nftmarket.main:app", host="0.0.0.0", port=8000, reload=True)
