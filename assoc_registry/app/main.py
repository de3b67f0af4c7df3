"""
Association Registry API - FastAPI Application
Service entry point for the association hierarchy.

This service handles:
- Association CRUD with materialized-path maintenance
- Re-parenting with descendant cascade and repair
- Tree reconstruction and path consistency audit

Member management, authentication and audit logging are handled by other services.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from assoc_registry.app.config import settings
from assoc_registry.app.routers import associations
from assoc_registry.core.exceptions import RegistryException
from assoc_registry.core.services.hierarchy_crud import get_hierarchy_crud_service
from assoc_registry.core.services.hierarchy_crud.seed import seed_registry
from assoc_registry.core.utils.error_handling import internal_error_response, registry_error_response
from assoc_registry.core.utils.logging import safe_error_log, setup_logging

# Initialize logging
setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.
    Handles startup and shutdown events.
    """
    logger.info(
        f"Starting {settings.app_name} v{settings.app_version}",
        extra={
            "environment": settings.environment,
            "storage_backend": settings.storage_backend,
        }
    )

    if settings.seed_file:
        try:
            result = await seed_registry(get_hierarchy_crud_service(), settings.seed_file)
        except (OSError, RegistryException) as e:
            safe_error_log(logger, f"Failed to seed registry from {settings.seed_file}", e)
            raise
        if result["errors"]:
            logger.warning(f"Seed completed with {len(result['errors'])} rejected rows")

    yield

    logger.info(f"Shutting down {settings.app_name}")


app = FastAPI(
    title="Association Registry API",
    description="Hierarchy management for associations and clubs",
    version=settings.app_version,
    docs_url="/docs" if settings.enable_api_docs else None,
    redoc_url="/redoc" if settings.enable_api_docs else None,
    lifespan=lifespan
)

# ============================================
# Middleware
# ============================================

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)


# ============================================
# Exception Handlers
# ============================================

@app.exception_handler(RegistryException)
async def registry_exception_handler(request: Request, exc: RegistryException):
    """Structured registry errors keep their own status code and body."""
    return registry_error_response(exc, operation=f"{request.method} {request.url.path}")


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler for unhandled errors."""
    return internal_error_response(
        exc,
        expose_details=settings.expose_error_details or settings.debug,
        operation=f"{request.method} {request.url.path}"
    )


# ============================================
# Health Check
# ============================================

@app.get("/health", tags=["Health"])
async def health_check():
    """
    Basic health check endpoint.
    Returns 200 if service is running.
    """
    return {
        "status": "healthy",
        "service": settings.app_name,
        "version": settings.app_version,
        "environment": settings.environment,
        "storage_backend": settings.storage_backend,
    }


app.include_router(associations.router, prefix=settings.api_prefix, tags=["Associations"])
