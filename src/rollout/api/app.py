"""FastAPI application factory."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from rollout.api.dependencies.services import ServiceContainer
from rollout.api.middleware.correlation import CorrelationIdMiddleware
from rollout.api.routes import deployment_routes, health_routes
from rollout.config import get_settings, Settings
from rollout.domain.errors import (
    DeploymentConflictError,
    DeploymentLockError,
    DeploymentNotFoundError,
    DeploymentValidationError,
    InvalidDeploymentStateError,
    RolloutError,
)


logger = structlog.get_logger(__name__)

# Checked in order; subclasses must come before their bases.
_ERROR_STATUS: list[tuple[type[RolloutError], int, str]] = [
    (DeploymentNotFoundError, status.HTTP_404_NOT_FOUND, "not_found"),
    (DeploymentConflictError, status.HTTP_409_CONFLICT, "conflict"),
    (InvalidDeploymentStateError, status.HTTP_409_CONFLICT, "invalid_state"),
    (DeploymentValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY, "validation_failed"),
    (DeploymentLockError, status.HTTP_423_LOCKED, "locked"),
]


async def _rollout_error_handler(request: Request, exc: Exception) -> JSONResponse:
    for error_type, status_code, code in _ERROR_STATUS:
        if isinstance(exc, error_type):
            break
    else:
        status_code, code = status.HTTP_500_INTERNAL_SERVER_ERROR, "internal_error"
    logger.info("api_error", path=request.url.path, error=code, detail=str(exc))
    return JSONResponse(status_code=status_code, content={"error": code, "detail": str(exc)})


def create_app(
    settings: Settings | None = None,
    container: ServiceContainer | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    if settings is None:
        settings = get_settings()
    if container is None:
        container = ServiceContainer(settings)

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
        logger.info(
            "application_starting",
            environment=settings.environment.value,
            debug=settings.debug,
        )
        await container.startup()
        yield
        logger.info("application_shutting_down")
        await container.shutdown()
        logger.info("application_shutdown_complete")

    app = FastAPI(
        title="Rollout Orchestrator",
        description="Deployment rollouts with health-gated stages and automatic rollback",
        version="1.0.0",
        docs_url=f"{settings.api_prefix}/docs",
        redoc_url=f"{settings.api_prefix}/redoc",
        openapi_url=f"{settings.api_prefix}/openapi.json",
        lifespan=lifespan,
    )
    app.state.container = container

    # Middleware (order matters - first added = outermost)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.debug else [],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(CorrelationIdMiddleware)

    app.add_exception_handler(RolloutError, _rollout_error_handler)

    # Routes
    app.include_router(health_routes.router)
    app.include_router(deployment_routes.router, prefix=settings.api_prefix)

    return app
