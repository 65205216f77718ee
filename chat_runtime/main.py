# Copyright (c) 2026 Heureum AI. All rights reserved.

"""
Chat Runtime - FastAPI service in front of LangChain chat model backends
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from chat_runtime.config import settings
from chat_runtime.routers import runtime
from chat_runtime.services.backend import LangChainBackend
from chat_runtime.services.runtime_service import RuntimeService
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager.

    Creates the runtime service (unless one was installed on ``app.state``
    beforehand), starts its background sweeps and closes it on shutdown.

    Args:
        app (FastAPI): The FastAPI application instance.

    Yields:
        None: Control is yielded to the application between startup
            and shutdown.
    """
    logger.info("Starting %s...", settings.APP_NAME)
    service = getattr(app.state, "runtime", None)
    if service is None:
        service = RuntimeService(LangChainBackend(settings), settings)
        app.state.runtime = service
    service.start()
    try:
        yield
    finally:
        logger.info("Shutting down %s...", settings.APP_NAME)
        await service.aclose()


app = FastAPI(
    title="Chat Runtime",
    description="Caching, rate limiting, context management and low-latency streaming for chat models",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(runtime.router, prefix="/api/v1", tags=["runtime"])
runtime.register_exception_handlers(app)


class HealthResponse(BaseModel):
    """Health check response model.

    Attributes:
        status (str): Current service health status.
        version (str): Application version string.
    """

    status: str
    version: str


@app.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Health check endpoint.

    Returns:
        HealthResponse: Current service status and version.
    """
    return HealthResponse(status="healthy", version="0.1.0")


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint.

    Returns:
        dict[str, str]: A mapping containing a welcome message and links
            to documentation and health endpoints.
    """
    return {
        "message": "Chat Runtime Service",
        "docs": "/docs",
        "health": "/health",
    }
