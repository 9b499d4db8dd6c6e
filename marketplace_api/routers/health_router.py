import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException

from marketplace_api.core.deps import get_store
from marketplace_api.database.base import ListingStore
from marketplace_api.models.listing_models import HealthResponse, StatsResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])


@router.get("/health", response_model=HealthResponse)
async def health(store: ListingStore = Depends(get_store)):
    connected = await store.ping()
    return HealthResponse(
        status="OK",
        timestamp=datetime.now(timezone.utc).isoformat(),
        database="Connected" if connected else "Disconnected",
        backend=store.name,
    )


@router.get("/stats", response_model=StatsResponse)
async def stats(store: ListingStore = Depends(get_store)):
    try:
        return StatsResponse(**await store.stats())
    except Exception:
        logger.exception("❌ Error fetching stats")
        raise HTTPException(status_code=500, detail="Failed to fetch stats")
