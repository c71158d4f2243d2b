# wolmgr/api/routes/api.py
"""
API routes for service metadata: version, health and caller identity.
"""

import asyncio
from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from wolmgr.__version__ import (
    __author__,
    __description__,
    __email__,
    __license__,
    __version__,
    __version_info__,
)
from wolmgr.core.auth import resolve_principal, verify_token
from wolmgr.core.config import config
from wolmgr.core.errors import StoreError
from wolmgr.core.setup_logging import setup_default_logging
from wolmgr.core.state import get_store
from wolmgr.core.store import TaskStore
from wolmgr.models.models import MeResponse, Principal
from wolmgr.services.background_service import background_manager

# Configure logging
logger = setup_default_logging()

# Create API router
router = APIRouter(prefix="/api", tags=["API"])

# ======================================================
# Endpoints
# ======================================================


@router.get(
    "/version",
    response_model=dict,
    summary="Get API version",
    description="Returns version information and metadata about the task API",
    dependencies=[Depends(verify_token)],
)
async def get_version() -> dict:
    """
    Get version information about the task API.

    Returns:
        dict: Version information including version number, author, license, etc.
    """
    return {
        "version": __version__,
        "version_info": {
            "major": __version_info__[0],
            "minor": __version_info__[1],
            "patch": __version_info__[2],
        },
        "description": __description__,
        "author": __author__,
        "email": __email__,
        "license": __license__,
    }


@router.get(
    "/health",
    response_model=dict,
    summary="Health check",
    description="Checks that the task store answers and reports background service state",
    dependencies=[Depends(verify_token)],
)
async def health(store: TaskStore = Depends(get_store)):
    store_status = "ok"
    try:
        await asyncio.to_thread(store.list_claimable, 1, config.CLAIM_MAX_ATTEMPTS)
    except StoreError as exc:
        logger.error(f"Health check: task store unavailable: {exc}")
        store_status = "unavailable"

    body = {
        "status": "healthy" if store_status == "ok" else "unhealthy",
        "version": __version__,
        "store": {"backend": config.STORE_BACKEND, "status": store_status},
        "background_services": background_manager.get_service_status(),
    }
    if store_status != "ok":
        return JSONResponse(status_code=503, content=body)
    return body


@router.get(
    "/me",
    response_model=MeResponse,
    summary="Current principal",
    description="The user principal identified by the presented token, or null",
)
async def me(principal: Optional[Principal] = Depends(resolve_principal)) -> MeResponse:
    return MeResponse(user=principal)
