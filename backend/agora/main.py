"""
Agora Forum Backend Application.

FastAPI application exposing the forum interaction and moderation engine:
threads, posts, likes, views, moderation and notifications.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from loguru import logger

from agora.api.v1 import router as api_v1_router
from agora.core.config import settings
from agora.core.database import close_db, init_db
from agora.core.errors import ForumError, TransientStoreError
from agora.core.logging import setup_logging


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    setup_logging()
    logger.info("Starting Agora Forum backend...")

    await init_db()
    logger.info("Database initialized")

    yield

    logger.info("Shutting down Agora Forum backend...")
    await close_db()
    logger.info("Shutdown complete")


def create_app() -> FastAPI:
    """Build the FastAPI application."""
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Threads, posts, likes, views, moderation and notifications.",
        openapi_url=f"{settings.api_v1_prefix}/openapi.json",
        docs_url="/docs",
        redoc_url="/redoc",
        default_response_class=ORJSONResponse,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ForumError)
    async def forum_error_handler(request: Request, exc: ForumError) -> ORJSONResponse:
        """Map forum error kinds onto HTTP responses."""
        if isinstance(exc, TransientStoreError):
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return ORJSONResponse(status_code=exc.status_code, content={"error": exc.to_dict()})

    app.include_router(api_v1_router, prefix=settings.api_v1_prefix)

    @app.get("/health", tags=["System"])
    async def health_check() -> dict:
        """Liveness check."""
        return {
            "status": "healthy",
            "version": settings.app_version,
        }

    @app.get("/", tags=["System"])
    async def root() -> dict:
        """Service name, version and where the API lives."""
        return {
            "name": settings.app_name,
            "version": settings.app_version,
            "docs": "/docs",
            "api": settings.api_v1_prefix,
        }

    return app


app = create_app()
