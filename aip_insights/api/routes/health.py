from __future__ import annotations

import logging

from fastapi import APIRouter

from aip_insights.config import settings

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("")
async def health_check():
    """Basic health check endpoint."""
    return {
        "status": "healthy",
        "version": settings.app_version,
        "environment": settings.environment,
    }
