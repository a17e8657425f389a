"""
Status API endpoints.

Exposes the realtime session's connection status, recent updates and the
price feed to the application layer.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from ..errors import InvalidInputError
from ..pricing.aggregator import PriceAggregator
from ..realtime.session import RealtimeSession

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1", tags=["realtime"])


def get_session(request: Request) -> RealtimeSession:
    """Session created by the app lifespan."""
    session = getattr(request.app.state, "session", None)
    if session is None:
        raise HTTPException(status_code=503, detail="Realtime session not initialized")
    return session


def get_aggregator(request: Request) -> PriceAggregator:
    aggregator = getattr(request.app.state, "aggregator", None)
    if aggregator is None:
        raise HTTPException(status_code=503, detail="Price feed not initialized")
    return aggregator


def _serialize_update(update: Any) -> dict[str, Any]:
    data: dict[str, Any] = {
        "kind": update.kind.value,
        "timestamp": update.timestamp.isoformat(),
    }
    if hasattr(update, "signature"):
        data.update({
            "signature": update.signature,
            "status": update.status.value,
            "slot": update.slot,
            "error": update.error,
        })
    else:
        data.update({
            "address": update.address,
            "slot": update.account.slot,
            "lamports": update.account.lamports,
            "owner": update.account.owner,
        })
    return data


@router.get("/status")
async def get_status(
    session: RealtimeSession = Depends(get_session),
    aggregator: PriceAggregator = Depends(get_aggregator),
) -> dict[str, Any]:
    """
    Connection status plus price feed statistics.

    ``live_updates_available`` turns false once reconnection has been
    exhausted for the session.
    """
    return {
        "connection": session.get_connection_status(),
        "prices": aggregator.get_cache_stats(),
    }


@router.get("/updates")
async def get_updates(
    limit: int = Query(20, ge=1, le=500, description="Maximum number of updates to return"),
    session: RealtimeSession = Depends(get_session),
) -> dict[str, Any]:
    """Most recent account, wallet and transaction updates, newest first."""
    items = session.recent_updates.items(limit)
    return {
        "count": len(items),
        "last_update_at": session.state.last_update_at.isoformat() if session.state.last_update_at else None,
        "updates": [_serialize_update(u) for u in items],
    }


@router.get("/prices")
async def get_prices(
    ids: str = Query(..., description="Comma-separated asset ids (token mints)"),
    aggregator: PriceAggregator = Depends(get_aggregator),
) -> dict[str, Any]:
    """
    Prices for the requested assets.

    Assets that could not be resolved are listed under ``missing``; they are
    unknown, not zero.
    """
    asset_ids = [i.strip() for i in ids.split(",") if i.strip()]
    if not asset_ids:
        raise HTTPException(status_code=400, detail="ids must not be empty")
    try:
        prices = await aggregator.get_prices(asset_ids)
    except InvalidInputError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {
        "prices": {asset_id: entry.to_dict() for asset_id, entry in prices.items()},
        "missing": [a for a in asset_ids if a not in prices],
    }
