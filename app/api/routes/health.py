from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException

from app.config import settings
from app.services.events.service import EventService, get_event_service

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


@router.get("/ready")
def readiness_check(service: EventService = Depends(get_event_service)):
    """Readiness check endpoint that includes storage connectivity."""
    if not service.repository.ping():
        raise HTTPException(status_code=503, detail="Database is not available")

    return {
        "status": "ready",
        "version": settings.app_version,
        "environment": settings.environment,
        "database": "connected" if settings.database_url else "not configured",
        "ingestion": "configured" if settings.ingestion_configured else "not configured",
    }
