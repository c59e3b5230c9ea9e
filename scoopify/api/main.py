"""
Main FastAPI application for the Scoopify backend.
Configures the API server with routes, middleware, and documentation.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, status
from fastapi.responses import JSONResponse

import structlog

from scoopify.core.config import settings
from scoopify.core.database import DatabaseManager, close_database, init_database
from scoopify.core.locks import close_redis
from scoopify.core.logging import setup_logging
from scoopify.api.middleware import add_middleware
from scoopify.api.schemas.common import APIResponse, HealthCheckResponse
from scoopify.api.routes import cron, payments, payouts, services

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info("Starting Scoopify API server")
    await init_database()

    yield

    logger.info("Shutting down Scoopify API server")
    try:
        await close_redis()
        await close_database()
    except Exception as e:
        logger.error("Error during shutdown", error=str(e))


def create_app() -> FastAPI:
    """Create and configure FastAPI application."""
    setup_logging()

    app = FastAPI(
        title="Scoopify API",
        description="""
        Backend API for Scoopify, a recurring pet-waste removal marketplace.

        ## Caller identity

        Requests carry the authenticated user from the upstream auth layer:
        ```
        X-User-Id: <user id>
        X-User-Role: CUSTOMER | EMPLOYEE | ADMIN
        ```

        Cron endpoints require `Authorization: Bearer <CRON_SECRET>`.

        ## Error Handling

        Errors return `{success: false, error_code, message, details}`.
        """,
        version=settings.app_version,
        lifespan=lifespan,
    )

    add_middleware(app)

    @app.get("/health", response_model=HealthCheckResponse, tags=["System"], summary="Health Check")
    async def health_check():
        """Database connectivity check."""
        if await DatabaseManager.health_check():
            return HealthCheckResponse(
                status="healthy",
                version=settings.app_version,
                services={"database": "healthy", "api": "healthy"}
            )
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=HealthCheckResponse(
                status="unhealthy",
                version=settings.app_version,
                services={"database": "unhealthy", "api": "healthy"}
            ).model_dump(mode="json")
        )

    @app.get("/", response_model=APIResponse, tags=["System"], summary="API Information")
    async def root():
        return APIResponse(message=f"Scoopify API v{settings.app_version} ({settings.environment})")

    app.include_router(cron.router, prefix=f"{settings.api_v1_prefix}/cron")
    app.include_router(services.router, prefix=f"{settings.api_v1_prefix}/services")
    app.include_router(payouts.router, prefix=f"{settings.api_v1_prefix}/payouts")
    app.include_router(payments.router, prefix=f"{settings.api_v1_prefix}/payments")

    logger.info("FastAPI application created successfully")
    return app


# Create app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "scoopify.api.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.is_development,
        log_level=settings.log_level.lower()
    )
