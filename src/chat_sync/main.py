# src/chat_sync/main.py
"""Entry point for the local document service.

The service speaks the same document API as the hosted backend so the chat
engine can be developed and tested without it.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.middleware.gzip import GZipMiddleware

from chat_sync.api.v1 import documents_router
from chat_sync.core.settings import settings
from chat_sync.db.session import create_tables

logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="Chat Sync Document Service",
    description="Local document store compatible with the chat backend API",
    version=settings.app_version,
)

# Add GZip middleware for compression
app.add_middleware(GZipMiddleware)

# Include API routers
app.include_router(documents_router, prefix="/v1")


@app.on_event("startup")
async def on_startup() -> None:
    create_tables()
    logger.info("Document service ready (project %s)", settings.backend_project_id)


@app.get("/health")
@app.get("/v1/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint to verify the service is running."""
    return {"status": "ok"}


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint with basic information about the service."""
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "docs": "/docs",
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("chat_sync.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
