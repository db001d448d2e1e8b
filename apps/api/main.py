"""
FastAPI application setup with monitoring, rate limiting and error handling.
"""
import time

import structlog
from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.exceptions import HTTPException as StarletteHTTPException

from apps.api.dependencies import get_credit_manager
from apps.api.rate_limit import limiter
from apps.api.services import CreditManager
from apps.core.exceptions import (
    CreditLedgerException,
    general_exception_handler,
    http_exception_handler,
    ledger_exception_handler,
)
from apps.core.monitoring import (
    basic_health_check,
    increment_http_requests,
    init_sentry,
    metrics,
    observe_http_request_duration,
    readiness_check,
)
from apps.core.settings import settings

# Setup structured logging
structlog.configure(
    processors=[
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.add_log_level,
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.make_filtering_bound_logger(settings.log_level_number),
    context_class=dict,
    logger_factory=structlog.PrintLoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()


def create_application() -> FastAPI:
    """Create and configure the FastAPI application."""

    app = FastAPI(
        title="Credit Ledger API",
        description="Credit balances, consumption accounting and pricing for AI operations",
        version=settings.app_version,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )

    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    setup_middleware(app)
    setup_monitoring(app)
    setup_exception_handlers(app)
    setup_routers(app)
    setup_event_handlers(app)

    return app


def setup_middleware(app: FastAPI):
    """Setup CORS."""
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "Idempotency-Key"] if settings.is_production else ["*"],
        max_age=3600 if settings.is_production else 600,
    )
    logger.info("CORS configured", allowed_origins=settings.allowed_origins)


def setup_monitoring(app: FastAPI):
    """Setup Sentry, request metrics and the Prometheus endpoint."""

    init_sentry()

    @app.middleware("http")
    async def metrics_middleware(request: Request, call_next):
        start_time = time.time()

        response = await call_next(request)

        duration = time.time() - start_time
        endpoint = request.scope.get("route").path if request.scope.get("route") else request.url.path
        increment_http_requests(request.method, endpoint, str(response.status_code))
        observe_http_request_duration(request.method, endpoint, duration)

        return response

    if settings.enable_metrics:
        instrumentator = Instrumentator(
            should_group_status_codes=False,
            should_ignore_untemplated=True,
            should_instrument_requests_inprogress=True,
            excluded_handlers=["/metrics", "/healthz", "/readyz"],
            inprogress_name="credit_ledger_requests_inprogress",
            inprogress_labels=True,
        )
        instrumentator.instrument(app)

    @app.get("/metrics", include_in_schema=False)
    def get_metrics():
        """Expose Prometheus metrics."""
        return metrics.get_metrics_response()


def setup_exception_handlers(app: FastAPI):
    """Render every error as ``{"error": {...}}``."""

    app.add_exception_handler(CreditLedgerException, ledger_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    @app.exception_handler(RequestValidationError)
    async def request_validation_exception_handler(request: Request, exc: RequestValidationError):
        """Handle request validation errors with detailed response."""
        logger.info("Request validation failed",
                    path=request.url.path,
                    method=request.method,
                    errors=str(exc.errors()))

        return JSONResponse(
            status_code=422,
            content={
                "error": {
                    "message": "Input validation failed",
                    "type": "RequestValidationError",
                    "details": {"errors": jsonable_errors(exc)},
                    "status_code": 422
                }
            }
        )


def jsonable_errors(exc: RequestValidationError):
    return [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg"), "type": error.get("type")}
        for error in exc.errors()
    ]


def setup_routers(app: FastAPI):
    """Setup API routers and operational endpoints."""

    from apps.api.routers import admin, billing, credits, pricing

    app.include_router(credits.router, prefix="/api")
    app.include_router(pricing.router, prefix="/api")
    app.include_router(billing.router, prefix="/api")
    app.include_router(admin.router, prefix="/api")

    @app.get("/healthz")
    @limiter.limit("200/minute")
    def health_check(request: Request):
        """Basic health check endpoint."""
        logger.debug("Health check requested", remote_addr=get_remote_address(request))
        return basic_health_check()

    @app.get("/readyz")
    def readiness_check_endpoint(manager: CreditManager = Depends(get_credit_manager)):
        """Readiness check against the ledger store."""
        result = readiness_check(manager.store)
        return JSONResponse(status_code=200 if result["healthy"] else 503, content=result)

    @app.get("/")
    @limiter.limit("60/minute")
    def root(request: Request):
        """Root endpoint with API information."""
        return {
            "message": "Credit Ledger API",
            "version": settings.app_version,
            "docs": "/docs" if settings.is_development else "Contact admin for API documentation",
            "ledger_backend": settings.ledger_backend,
        }


def setup_event_handlers(app: FastAPI):
    """Setup application event handlers."""

    @app.on_event("startup")
    def startup_event():
        logger.info("Credit ledger API starting up",
                    environment=settings.environment,
                    ledger_backend=settings.ledger_backend)

        for problem in settings.validate_production_config():
            logger.warning("Configuration problem", problem=problem)

        if settings.seed_default_catalog:
            manager = get_credit_manager()
            manager.seed_default_catalog()

        logger.info("Credit ledger API started")

    @app.on_event("shutdown")
    def shutdown_event():
        logger.info("Credit ledger API shutting down")


# Create application instance
app = create_application()
