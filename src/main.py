"""Ludora Access API - Main Application."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from src.access.admin import AdminOverridePolicy
from src.access.resolver import AccessResolver
from src.access.router import router as access_router
from src.catalog.service import ProductCatalogService
from src.config import get_settings
from src.core.context import get_request_id
from src.core.database import init_async_cassandra, shutdown_async_cassandra
from src.core.logging import configure_structlog, get_logger
from src.core.middleware import RequestContextMiddleware
from src.core.redis import init_redis, shutdown_redis
from src.health import router as health_router
from src.purchases.service import PurchaseService
from src.students.gate import StudentAccessGate
from src.students.router import router as students_router
from src.students.service import TeacherLinkService
from src.subscriptions.ledger import AllowanceLedger
from src.subscriptions.router import admin_router as subscriptions_admin_router
from src.subscriptions.router import router as subscriptions_router
from src.subscriptions.service import ClaimService
from src.subscriptions.store import CassandraSubscriptionStore
from src.system_settings.router import router as settings_router
from src.system_settings.service import SystemSettingsService


# Configure logging early (before creating logger)
settings = get_settings()
configure_structlog(settings, log_dir=Path(settings.log_dir))

logger = get_logger(__name__)


# Application state for dependency injection
class AppState:
    """Application state container."""

    cassandra_session: Any = None
    access_resolver: AccessResolver | None = None
    purchase_service: PurchaseService | None = None
    claim_service: ClaimService | None = None
    teacher_link_service: TeacherLinkService | None = None
    settings_service: SystemSettingsService | None = None
    student_gate: StudentAccessGate | None = None


app_state = AppState()


def get_access_resolver() -> AccessResolver:
    """Get AccessResolver instance from app state."""
    if app_state.access_resolver is None:
        msg = "AccessResolver not initialized"
        raise RuntimeError(msg)
    return app_state.access_resolver


def get_purchase_service() -> PurchaseService:
    """Get PurchaseService instance from app state."""
    if app_state.purchase_service is None:
        msg = "PurchaseService not initialized"
        raise RuntimeError(msg)
    return app_state.purchase_service


def get_claim_service() -> ClaimService:
    """Get ClaimService instance from app state."""
    if app_state.claim_service is None:
        msg = "ClaimService not initialized"
        raise RuntimeError(msg)
    return app_state.claim_service


def get_teacher_link_service() -> TeacherLinkService:
    """Get TeacherLinkService instance from app state."""
    if app_state.teacher_link_service is None:
        msg = "TeacherLinkService not initialized"
        raise RuntimeError(msg)
    return app_state.teacher_link_service


def get_settings_service() -> SystemSettingsService:
    """Get SystemSettingsService instance from app state."""
    if app_state.settings_service is None:
        msg = "SystemSettingsService not initialized"
        raise RuntimeError(msg)
    return app_state.settings_service


def get_student_gate() -> StudentAccessGate:
    """Get StudentAccessGate instance from app state."""
    if app_state.student_gate is None:
        msg = "StudentAccessGate not initialized"
        raise RuntimeError(msg)
    return app_state.student_gate


def init_services(session: Any, redis_client: Any = None) -> None:
    """Wire stores, the access core and services into the app state."""
    settings = get_settings()
    keyspace = settings.cassandra_keyspace
    admin_policy = AdminOverridePolicy.from_settings(settings)

    catalog = ProductCatalogService(session=session, keyspace=keyspace)
    purchases = PurchaseService(session=session, keyspace=keyspace, catalog=catalog)
    subscriptions = CassandraSubscriptionStore(session=session, keyspace=keyspace)
    teacher_links = TeacherLinkService(
        session=session,
        keyspace=keyspace,
        code_length=settings.invitation_code_length,
    )
    ledger = AllowanceLedger(
        subscriptions=subscriptions,
        allowances=subscriptions,
        max_retries=settings.allowance_claim_max_retries,
    )

    app_state.purchase_service = purchases
    app_state.teacher_link_service = teacher_links
    app_state.access_resolver = AccessResolver(
        catalog=catalog,
        purchases=purchases,
        subscriptions=subscriptions,
        teacher_links=teacher_links,
        ledger=ledger,
        admin_policy=admin_policy,
        claim_download_allowed=settings.claim_download_allowed,
    )
    app_state.claim_service = ClaimService(
        subscriptions=subscriptions,
        ledger=ledger,
        catalog=catalog,
        purchases=purchases,
        low_allowance_threshold=settings.low_allowance_threshold,
    )
    app_state.settings_service = SystemSettingsService(
        session=session,
        keyspace=keyspace,
        redis=redis_client,
        cache_ttl=settings.settings_cache_ttl_seconds,
    )
    app_state.student_gate = StudentAccessGate(
        settings_provider=app_state.settings_service,
        admin_policy=admin_policy,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    settings = get_settings()
    logger.info(
        "starting_application",
        app_name=settings.app_name,
        version=settings.app_version,
        environment=settings.environment,
    )

    # Initialize Redis (non-critical - settings cache only)
    redis_client = None
    try:
        redis_client = await init_redis()
        logger.info("redis_initialized")
    except Exception as e:
        logger.warning(
            "redis_init_skipped",
            error=str(e),
            message="Running without Redis - settings are read from Cassandra",
        )

    # Initialize Cassandra (async)
    try:
        app_state.cassandra_session = await init_async_cassandra()
        logger.info("cassandra_initialized")

        init_services(app_state.cassandra_session, redis_client)
        logger.info("access_services_initialized")
    except Exception as e:
        logger.warning(
            "database_init_skipped",
            error=str(e),
            message="Running without database connection",
        )

    yield

    # Shutdown
    logger.info("shutting_down_application")
    await shutdown_redis()
    await shutdown_async_cassandra()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    # SECURITY: Always set debug=False to prevent Starlette's ServerErrorMiddleware
    # from exposing stack traces in responses. Our custom exception handlers will
    # log full details internally while returning safe error messages to users.
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Ludora - Access control and entitlements API",
        debug=False,  # Never expose stack traces in responses
        lifespan=lifespan,
        default_response_class=ORJSONResponse,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
        openapi_url="/openapi.json" if settings.is_development else None,
    )

    # Request context middleware (must be added first - outermost)
    app.add_middleware(
        RequestContextMiddleware,
        log_requests=settings.log_requests,
        exclude_paths=settings.log_exclude_paths,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=settings.cors_allow_methods,
        allow_headers=settings.cors_allow_headers,
        max_age=settings.cors_max_age,
    )

    # Helper to get request_id from request state or context
    def _get_request_id_safe(request: Request) -> str | None:
        """Get request_id from request state or context."""
        if hasattr(request.state, "request_id"):
            return request.state.request_id
        return get_request_id()

    # Global exception handlers (security: never expose stack traces)
    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        request: Request, exc: StarletteHTTPException
    ) -> ORJSONResponse:
        """Handle HTTP exceptions with safe error messages.

        Domain errors carry a dict detail ({"code", "message", ...}); its
        fields are passed through to the client.
        """
        request_id = _get_request_id_safe(request)

        # Log the error with full details (for debugging)
        logger.warning(
            "http_exception",
            status_code=exc.status_code,
            detail=str(exc.detail),
            path=request.url.path,
            method=request.method,
        )

        content: dict[str, Any] = {
            "error": True,
            "status_code": exc.status_code,
            "request_id": request_id,
        }
        if isinstance(exc.detail, dict):
            content.update(exc.detail)
        else:
            content["message"] = (
                str(exc.detail)
                if exc.status_code < status.HTTP_500_INTERNAL_SERVER_ERROR
                else "Internal server error"
            )

        return ORJSONResponse(
            status_code=exc.status_code,
            content=content,
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> ORJSONResponse:
        """Handle validation errors with safe error messages."""
        request_id = _get_request_id_safe(request)

        # Log validation errors
        logger.warning(
            "validation_error",
            errors=exc.errors(),
            path=request.url.path,
            method=request.method,
        )

        # Return user-friendly validation errors (these are safe to expose)
        return ORJSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={
                "error": True,
                "code": "validation_error",
                "message": "Validation error",
                "status_code": 422,
                "request_id": request_id,
                "details": [
                    {
                        "field": ".".join(str(loc) for loc in err.get("loc", [])),
                        "message": err.get("msg", "Invalid value"),
                    }
                    for err in exc.errors()
                ],
            },
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(
        request: Request, exc: Exception
    ) -> ORJSONResponse:
        """Catch-all handler for unhandled exceptions.

        SECURITY: Never expose stack traces or internal error details to users.
        All details are logged internally for debugging.
        """
        request_id = _get_request_id_safe(request)

        # Log the full exception with stack trace (for internal debugging)
        logger.exception(
            "unhandled_exception",
            error_type=type(exc).__name__,
            error_message=str(exc),
            path=request.url.path,
            method=request.method,
        )

        # Return generic error message to user (no internal details)
        return ORJSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": True,
                "message": "An unexpected error occurred. Please try again later.",
                "status_code": 500,
                "request_id": request_id,
            },
        )

    # Include routers
    app.include_router(health_router)
    app.include_router(access_router)
    app.include_router(subscriptions_router)
    app.include_router(subscriptions_admin_router)
    app.include_router(students_router)
    app.include_router(settings_router)

    @app.get("/", include_in_schema=False)
    async def root(request: Request) -> dict[str, str]:
        """Root endpoint."""
        return {
            "message": "Ludora Access API",
            "version": settings.app_version,
            "docs": f"{request.url}docs",
        }

    return app


# Configure router dependencies before creating app
from src.access.dependencies import (  # noqa: E402
    set_purchase_service_getter,
    set_resolver_getter,
)
from src.students.dependencies import (  # noqa: E402
    set_gate_getter,
    set_teacher_link_service_getter,
)
from src.subscriptions.dependencies import set_claim_service_getter  # noqa: E402
from src.system_settings.dependencies import (  # noqa: E402
    set_settings_service_getter,
)


set_resolver_getter(get_access_resolver)
set_purchase_service_getter(get_purchase_service)
set_claim_service_getter(get_claim_service)
set_teacher_link_service_getter(get_teacher_link_service)
set_settings_service_getter(get_settings_service)
set_gate_getter(get_student_gate)


app = create_app()


def run() -> None:
    """Serve the API with uvicorn using the server settings."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "src.main:app",
        host=settings.api_host,
        port=settings.api_port,
        workers=settings.api_workers,
        reload=settings.api_reload and settings.is_development,
        log_config=None,
    )


if __name__ == "__main__":
    run()
