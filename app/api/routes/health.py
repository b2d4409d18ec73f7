from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException

from app.config import settings
from app.core.redis import check_redis_health
from app.services.investors.errors import InvestorStoreError
from app.services.investors.providers import get_investor_store
from app.services.investors.repositories import InvestorStore

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
async def readiness_check(store: InvestorStore = Depends(get_investor_store)):
    """Readiness check endpoint that includes store and cache connectivity."""
    try:
        await store.get_all()
    except InvestorStoreError as exc:
        logger.error(f"Store readiness check failed: {exc}")
        raise HTTPException(status_code=503, detail="Investor store is not available") from exc

    redis_ok = await check_redis_health()

    return {
        "status": "ready",
        "version": settings.app_version,
        "environment": settings.environment,
        "database": "connected" if settings.database_url else "not configured",
        "cache": ("connected" if redis_ok else "degraded") if settings.redis_url else "in-process",
    }
