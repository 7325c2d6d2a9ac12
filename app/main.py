"""FastAPI application entry point."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.config import settings
from app.errors import (
    http_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from app.middleware import BodySizeLimitMiddleware, SecurityHeadersMiddleware
from app.routers import admin, jobs, notifications, users

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: startup and shutdown."""
    Path(settings.upload_dir).mkdir(parents=True, exist_ok=True)
    logger.info("Marketplace API starting (env=%s, payments=%s)", settings.env, settings.payment_backend)
    yield


app = FastAPI(
    title="Freelance Job Marketplace",
    description="Job posting, admin review, two-phase payment and revision workflow",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS - restrict to configured origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Middleware (last added runs outermost)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(
    BodySizeLimitMiddleware,
    max_bytes=settings.max_request_bytes,
    max_upload_bytes=settings.max_upload_request_bytes,
)

# Error rendering
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(StarletteHTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

# Routers
app.include_router(users.router)
app.include_router(jobs.router)
app.include_router(admin.router)
app.include_router(notifications.router)


@app.get("/health")
async def health() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "ok"}
