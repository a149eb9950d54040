"""FastAPI application for Storewatch."""

from datetime import datetime
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from ..errors import RateLimited, StoreNotFound, SyncError
from ..orchestrator.coordinator import SyncCoordinator
from ..storage.database import STOCK_SCOPES
from ..storage.models import ChangeType
from ..utils.config import get_config

# Initialize FastAPI app
app = FastAPI(
    title="Storewatch API",
    description="Store catalog monitoring and change feed",
    version="1.0.0",
)

# Load configuration
config = get_config()

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.api.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

_coordinator: Optional[SyncCoordinator] = None


def get_coordinator() -> SyncCoordinator:
    """Shared coordinator, created on first use."""
    global _coordinator
    if _coordinator is None:
        _coordinator = SyncCoordinator(config.model_dump())
    return _coordinator


@app.on_event("startup")
async def startup_event():
    """Run on application startup."""
    logger.info("Storewatch API starting up")


@app.on_event("shutdown")
async def shutdown_event():
    """Run on application shutdown."""
    logger.info("Storewatch API shutting down")


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "Storewatch API",
        "version": "1.0.0",
        "status": "running",
    }


@app.get("/health")
async def health_check(coordinator: SyncCoordinator = Depends(get_coordinator)):
    """Health check endpoint."""
    return {
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat(),
        "sync_errors": coordinator.error_state.error_summary,
    }


@app.get("/stores")
async def list_stores(coordinator: SyncCoordinator = Depends(get_coordinator)):
    """List monitored stores with their last sync error, if any."""
    stores = coordinator.db.list_stores()

    results = []
    for store in stores:
        error = coordinator.error_state.error_for(store.id)
        results.append({
            **store.model_dump(mode="json"),
            "sync_state": coordinator.state_of(store.id).value,
            "error": error.to_dict() if isinstance(error, SyncError) else (str(error) if error else None),
        })

    return {"stores": results, "total": len(results)}


@app.get("/stores/{store_id}/products")
async def list_products(
    store_id: str,
    search: str = Query("", description="Case-insensitive title or vendor search"),
    stock: str = Query("all", description=f"Stock scope: {', '.join(STOCK_SCOPES)}"),
    include_removed: bool = Query(False, description="Include products no longer in the feed"),
    limit: int = Query(50, ge=1, le=200, description="Number of results"),
    offset: int = Query(0, ge=0, description="Pagination offset"),
    coordinator: SyncCoordinator = Depends(get_coordinator),
):
    """List a store's products.

    Args:
        store_id: Store ID
        search: Text matched against title and vendor
        stock: One of ``all``, ``in_stock``, ``out_of_stock``
        include_removed: Include removed products
        limit: Number of results (max 200)
        offset: Pagination offset

    Returns:
        Products ordered by title
    """
    if stock not in STOCK_SCOPES:
        raise HTTPException(status_code=422, detail=f"Unknown stock scope: {stock}")

    db = coordinator.db
    if db.get_store(store_id) is None:
        raise HTTPException(status_code=404, detail="Store not found")

    products = db.fetch_products(store_id, search, stock, include_removed, limit, offset)
    return {
        "products": [p.model_dump(mode="json") for p in products],
        "total": db.count_products(store_id, search, stock, include_removed),
        "offset": offset,
        "limit": limit,
    }


@app.get("/stores/{store_id}/products/{product_id}/variants/{variant_id}/history")
async def price_history(
    store_id: str,
    product_id: str,
    variant_id: str,
    coordinator: SyncCoordinator = Depends(get_coordinator),
):
    """Snapshot history of one variant, oldest first."""
    snapshots = coordinator.db.get_price_history(store_id, product_id, variant_id)
    return {"snapshots": [s.model_dump(mode="json") for s in snapshots]}


@app.post("/stores/{store_id}/sync")
async def sync_store(store_id: str, coordinator: SyncCoordinator = Depends(get_coordinator)):
    """Sync one store now.

    Returns:
        Events emitted by the sync

    Raises:
        404 for an unknown store, 429 when polled too soon, 502 on fetch errors
    """
    try:
        events = await coordinator.sync_store(store_id)
    except StoreNotFound:
        raise HTTPException(status_code=404, detail="Store not found")
    except RateLimited as e:
        raise HTTPException(
            status_code=429,
            detail=e.to_dict(),
            headers={"Retry-After": str(int(e.retry_after) + 1)},
        )
    except SyncError as e:
        raise HTTPException(status_code=502, detail=e.to_dict())

    return {
        "events": [e.model_dump(mode="json") for e in events],
        "count": len(events),
    }


@app.get("/events")
async def list_events(
    store_id: Optional[str] = Query(None, description="Filter by store"),
    types: Optional[List[ChangeType]] = Query(None, description="Filter by change type"),
    since: Optional[datetime] = Query(None, description="Only events at or after this time"),
    unread_only: bool = Query(False, description="Only unread events"),
    limit: int = Query(50, ge=1, le=200, description="Number of results"),
    offset: int = Query(0, ge=0, description="Pagination offset"),
    coordinator: SyncCoordinator = Depends(get_coordinator),
):
    """Activity feed, newest first."""
    events = coordinator.db.fetch_events(
        store_id=store_id,
        change_types=types,
        since=since,
        unread_only=unread_only,
        limit=limit,
        offset=offset,
    )
    return {
        "events": [e.model_dump(mode="json") for e in events],
        "offset": offset,
        "limit": limit,
    }


@app.get("/events/unread-count")
async def unread_count(
    store_id: Optional[str] = Query(None, description="Filter by store"),
    coordinator: SyncCoordinator = Depends(get_coordinator),
):
    return {"unread": coordinator.db.count_unread_events(store_id)}


@app.post("/events/read-all")
async def mark_all_read(
    store_id: Optional[str] = Query(None, description="Filter by store"),
    coordinator: SyncCoordinator = Depends(get_coordinator),
):
    """Mark every unread event (optionally of one store) as read."""
    updated = coordinator.db.mark_all_events_read(store_id=store_id)
    return {"updated": updated}


@app.post("/events/{event_id}/read")
async def mark_read(event_id: str, coordinator: SyncCoordinator = Depends(get_coordinator)):
    if not coordinator.db.mark_event_read(event_id):
        raise HTTPException(status_code=404, detail="Event not found")
    return {"id": event_id, "is_read": True}
