"""
Main FastAPI Application

Entry point for the construction-tracking platform API.
Configures middleware, routes, error handlers, and startup/shutdown events.

Request pipeline (outermost first):
  CORS -> timing -> TenantMiddleware -> RateLimitMiddleware -> routes
TenantMiddleware must run before the rate limiter and before any
endpoint, since both read the TenantContext it populates.
"""
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException
import time
from contextlib import asynccontextmanager

from app.config import get_settings
from app.database import engine, read_engine, init_db
from app.middleware.tenant import TenantMiddleware
from app.middleware.rate_limit import RateLimitMiddleware
from app.utils.logging import setup_logging, get_logger, request_log_extra
from app.core.exceptions import AppError, TenantAccessViolationError, UnauthenticatedContextError
from app.schemas.common import ErrorResponse

from app.api.endpoints import auth, projects, health

settings = get_settings()

setup_logging(
    log_level=settings.LOG_LEVEL,
    json_format=(settings.ENVIRONMENT == "production")
)
logger = get_logger(__name__)

GENERIC_ERROR_MESSAGE = "An error occurred while processing your request"
VALIDATION_ERROR_MESSAGE = "One or more validation errors occurred."


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Refuses to start with an unsafe configuration; disposes pools on exit."""
    settings.validate_for_startup()
    logger.info(f"Starting Construction Tracker API ({settings.ENVIRONMENT})")

    # Development convenience only; other environments run migrations
    if settings.ENVIRONMENT == "development":
        logger.warning("Creating missing database tables")
        init_db()

    yield

    for pool in {engine, read_engine}:
        pool.dispose()
    logger.info("Database pools disposed")


app = FastAPI(
    title="Construction Tracker API",
    description="Multi-tenant construction project tracking with tenant-isolated authentication",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)


# ============================================================================
# MIDDLEWARE CONFIGURATION
# ============================================================================
# add_middleware() wraps the current stack, so the last one added runs first.

app.add_middleware(RateLimitMiddleware)

# CRITICAL: populates the TenantContext everything downstream depends on
app.add_middleware(TenantMiddleware)


@app.middleware("http")
async def add_process_time_header(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    response.headers["X-Process-Time"] = f"{time.perf_counter() - started:.6f}"
    return response


app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.ENVIRONMENT == "development" else settings.CORS_ORIGINS,
    allow_credentials=settings.ENVIRONMENT != "development",
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================================
# EXCEPTION HANDLERS
# ============================================================================
# Every error leaves as {"status_code", "message", "errors"?}.

def error_response(status_code: int, message: str, errors=None, headers=None) -> JSONResponse:
    body = ErrorResponse(status_code=status_code, message=message, errors=errors or None)
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(exclude_none=True),
        headers=headers,
    )


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    if isinstance(exc, TenantAccessViolationError):
        # CRITICAL: alert on these
        logger.error(
            f"TENANT ISOLATION VIOLATION: requested={exc.requested_tenant_id} actual={exc.actual_tenant_id}",
            extra=request_log_extra(request),
        )
    elif isinstance(exc, UnauthenticatedContextError):
        logger.error(f"Tenant context misuse: {exc.internal_message}", extra=request_log_extra(request))
    elif exc.status_code >= 500:
        logger.error(f"{type(exc).__name__}: {exc.detail}", extra=request_log_extra(request))

    return error_response(exc.status_code, exc.detail, errors=exc.errors, headers=exc.headers)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return error_response(exc.status_code, str(exc.detail), headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Request validation failures are 400 with field/message pairs."""
    errors = []
    for error in exc.errors():
        location = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path")]
        message = error.get("msg", "Invalid value")
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        errors.append({"field": ".".join(location), "message": message})

    return error_response(status.HTTP_400_BAD_REQUEST, VALIDATION_ERROR_MESSAGE, errors=errors)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """
    Catch-all exception handler.

    SECURITY: Full details go to the logs only.
    """
    logger.error(
        f"Unhandled exception: {type(exc).__name__}: {str(exc)}",
        exc_info=True,
        extra=request_log_extra(request),
    )
    return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, GENERIC_ERROR_MESSAGE)


# ============================================================================
# ROUTES
# ============================================================================

@app.get("/", tags=["root"], include_in_schema=False)
async def root():
    return {"name": app.title, "version": app.version, "health": "/api/health"}


app.include_router(health.router, prefix="/api")
app.include_router(auth.router, prefix="/api")
app.include_router(projects.router, prefix="/api")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("app.main:app", host="0.0.0.0", port=8000, reload=settings.DEBUG)
