# wolmgr/main.py
"""
Wake-on-LAN Task API
--------------------
This module defines the FastAPI application coordinating "wake this device" requests.
It handles:
- Task creation from a MAC address or a saved device
- Concurrency-safe claiming of pending tasks by waking agents
- Task lifecycle updates (pending, processing, success, failed) and device-online notifications
- Recovery of tasks abandoned in processing
"""

import signal
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from wolmgr.__version__ import __version__
from wolmgr.api.errors import register_exception_handlers
from wolmgr.api.openapi import OpenAPIConfig, setup_openapi_config, setup_protected_openapi_routes
from wolmgr.core import config as config_module
from wolmgr.core.config import config
from wolmgr.core.setup_logging import setup_default_logging
from wolmgr.core.state import reset_store
from wolmgr.services.background_service import background_manager

# Configure logging
logger = setup_default_logging()


def _reload_config(signum, frame) -> None:
    config_module.reload_config_env()
    # Store backend or path may have changed
    reset_store()


def _register_sighup_reload():
    """Register SIGHUP handler in the worker process to reload config."""
    try:
        signal.signal(signal.SIGHUP, _reload_config)
    except (AttributeError, ValueError) as exc:  # no SIGHUP on Windows, or not main thread
        logger.warning(f"Failed to register SIGHUP reload handler: {exc}")


_register_sighup_reload()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for FastAPI application.

    Handles startup and shutdown events including:
    - Router registration
    - Background task management
    - Store handle cleanup

    Args:
        app: FastAPI application instance
    """
    logger.info("Starting Wake-on-LAN task API")

    # The same global app is started/stopped many times by TestClient;
    # routers must only be included once.
    if not getattr(app.state, "routers_included", False):
        from wolmgr.api.routes import api, devices, tasks

        app.include_router(api.router)
        app.include_router(tasks.router)
        app.include_router(devices.router)

        if config.API_DOCS_VISIBILITY == "private":
            setup_protected_openapi_routes(app)

        app.state.routers_included = True

    await background_manager.start_all_services()

    yield

    logger.info("Shutting down Wake-on-LAN task API")

    await background_manager.stop_all_services()
    reset_store()


# Disable default OpenAPI routes if documentation is private
openapi_config = OpenAPIConfig.get_fastapi_config()
if config.API_DOCS_VISIBILITY == "private":
    # Protected ones are created in lifespan
    openapi_config["docs_url"] = None
    openapi_config["redoc_url"] = None
    openapi_config["openapi_url"] = None

app = FastAPI(lifespan=lifespan, **openapi_config)

# Rate limiting configuration
limiter = Limiter(key_func=get_remote_address, default_limits=[config.RATE_LIMIT_DEFAULT])
app.state.limiter = limiter
app.add_middleware(SlowAPIMiddleware)
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)  # type: ignore[arg-type]

register_exception_handlers(app)

setup_openapi_config(app)

# CORS middleware configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ALLOW_ORIGINS,
    allow_credentials=config.CORS_ALLOW_CREDENTIALS,
    allow_methods=config.CORS_ALLOW_METHODS,
    allow_headers=config.CORS_ALLOW_HEADERS,
)


@app.get(
    "/",
    summary="Root endpoint",
    description="Service information, not protected",
    tags=["API"],
)
async def root():
    """
    Root endpoint with API information and links. Not protected, always available.

    Returns:
        Dict: API information and available endpoints
    """
    return {
        "message": "Wake-on-LAN Task API",
        "version": __version__,
        "tasks": "/api/wol/tasks",
        "health_check": "/api/health",
        "api_docs_visibility": config.API_DOCS_VISIBILITY,
        "documentation": {"swagger": "/docs", "redoc": "/redoc", "openapi": "/openapi.json"},
    }
