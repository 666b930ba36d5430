"""
FastAPI API Server.

REST API for calls, extractions, feedback, customers, and jobs.
Runs separately from the call processor worker.

Start with:
    uvicorn call_intel.api_server:app --reload --port 8000
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from dotenv import load_dotenv
load_dotenv(".env.local")

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from call_intel.api.calls import router as calls_router
from call_intel.api.customers import router as customers_router
from call_intel.api.deps import register_exception_handlers
from call_intel.api.extractions import router as extractions_router
from call_intel.api.feedback import router as feedback_router
from call_intel.api.jobs import router as jobs_router
from call_intel.api.middleware import RateLimitMiddleware, RequestIdMiddleware
from call_intel.api.notifications import router as notifications_router
from call_intel.config import get_settings
from call_intel.logging_config import get_logger, setup_logging

setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle hooks."""
    settings = get_settings()
    logger.info("api_server_starting", environment=settings.environment.value, store=settings.store_backend.value)
    yield
    services = getattr(app.state, "services", None)
    if services is not None:
        await services.notifications.drain()
    logger.info("api_server_stopping")


app = FastAPI(
    title="Call Intelligence Service API",
    description="Turns recorded service calls into customers, appointment extractions, and jobs",
    version="0.1.0",
    lifespan=lifespan,
)

# Middleware (last added runs first)
app.add_middleware(RateLimitMiddleware)
app.add_middleware(RequestIdMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Restrict in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

# Routers
app.include_router(calls_router)
app.include_router(extractions_router)
app.include_router(feedback_router)
app.include_router(jobs_router)
app.include_router(customers_router)
app.include_router(notifications_router)


@app.get("/health", tags=["System"])
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "ok", "service": "call-intelligence-service"}


@app.get("/", tags=["System"])
async def root() -> dict[str, str]:
    """API root."""
    return {
        "service": "Call Intelligence Service",
        "version": "0.1.0",
        "docs": "/docs",
    }
