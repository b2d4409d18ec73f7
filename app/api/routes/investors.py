"""API endpoints for browsing and enriching stored investors."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from app.models.investor import Investor
from app.services.investors.cache import SharedCache
from app.services.investors.enrichment import ProfileEnricher
from app.services.investors.errors import InvestorStoreError
from app.services.investors.providers import (
    api_background,
    get_investor_store,
    get_profile_enricher,
    get_shared_cache,
)
from app.services.investors.repositories import InvestorStore

router = APIRouter()
logger = logging.getLogger(__name__)


class InvestorListResponse(BaseModel):
    investors: list[Investor]
    total: int
    cached: bool


class EnrichResponse(BaseModel):
    success: bool = True
    investor: Investor


class BatchUpdateRequest(BaseModel):
    investor_ids: list[str] = Field(..., alias="investorIds", min_length=1)


class BatchUpdateResponse(BaseModel):
    success: bool = True
    updated: int
    errors: list[str] | None = None
    message: str


@router.get("/investors", response_model=InvestorListResponse)
async def list_investors(
    store: InvestorStore = Depends(get_investor_store),
    cache: SharedCache = Depends(get_shared_cache),
) -> InvestorListResponse:
    """Return the canonical investor set, from cache when warm."""
    cached = await cache.get_cached_all()
    if cached is not None:
        return InvestorListResponse(investors=cached, total=len(cached), cached=True)
    investors = await _load_all(store)
    api_background.spawn(cache.set_cached_all(investors), "cache_all")
    return InvestorListResponse(investors=investors, total=len(investors), cached=False)


@router.get("/investors/{investor_id}", response_model=Investor)
async def get_investor(
    investor_id: str,
    store: InvestorStore = Depends(get_investor_store),
    cache: SharedCache = Depends(get_shared_cache),
) -> Investor:
    """Fetch a single investor by id."""
    cached = await cache.get_cached_all()
    for investor in cached or []:
        if investor.id == investor_id:
            return investor
    try:
        investor = await store.get_by_id(investor_id)
    except InvestorStoreError as exc:
        raise HTTPException(status_code=_map_error_code(exc.code), detail=str(exc)) from exc
    if investor is None:
        raise HTTPException(status_code=404, detail="Investor not found")
    return investor


@router.post("/investors/{investor_id}/enrich", response_model=EnrichResponse)
async def enrich_investor(
    investor_id: str,
    enricher: ProfileEnricher = Depends(get_profile_enricher),
) -> EnrichResponse:
    """Fill in missing profile details for one investor."""
    try:
        investor = await enricher.enrich(investor_id)
    except InvestorStoreError as exc:
        raise HTTPException(status_code=_map_error_code(exc.code), detail=str(exc)) from exc
    if investor is None:
        raise HTTPException(status_code=404, detail="Investor not found")
    return EnrichResponse(investor=investor)


@router.post("/investors/batch-update", response_model=BatchUpdateResponse, response_model_exclude_none=True)
async def batch_update_investors(
    payload: BatchUpdateRequest,
    enricher: ProfileEnricher = Depends(get_profile_enricher),
) -> BatchUpdateResponse:
    """Enrich several investors in one request."""
    try:
        result = await enricher.enrich_many(payload.investor_ids)
    except InvestorStoreError as exc:
        raise HTTPException(status_code=_map_error_code(exc.code), detail=str(exc)) from exc
    if not result.investors:
        raise HTTPException(status_code=404, detail="No investors found with the provided IDs")

    plural = "" if result.updated == 1 else "s"
    failed = f" ({len(result.errors)} failed)" if result.errors else ""
    return BatchUpdateResponse(
        updated=result.updated,
        errors=result.errors or None,
        message=f"Successfully updated {result.updated} investor{plural}{failed}",
    )


async def _load_all(store: InvestorStore) -> list[Investor]:
    try:
        return await store.get_all()
    except InvestorStoreError as exc:
        logger.error("investors.api_error", extra={"code": exc.code})
        raise HTTPException(status_code=_map_error_code(exc.code), detail=str(exc)) from exc


def _map_error_code(code: str) -> int:
    if code.startswith("500_STORE"):
        return status.HTTP_503_SERVICE_UNAVAILABLE
    return status.HTTP_500_INTERNAL_SERVER_ERROR
