"""Execution statistics endpoint."""

from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from fusion_jar.core.investments.store import IntentStore

router = APIRouter(prefix="/executions", tags=["Executions"])


def get_store(request: Request) -> IntentStore:
    store = getattr(request.app.state, "store", None)
    if store is None:
        detail = getattr(request.app.state, "config_error", None) or "store not configured"
        raise HTTPException(status_code=503, detail=detail)
    return store


@router.get("/stats")
async def execution_stats(
    hours: int = Query(24, ge=1, le=24 * 30, description="Look-back window in hours"),
    store: IntentStore = Depends(get_store),
) -> Dict[str, Any]:
    """Execution counts by status over the look-back window."""
    return await store.get_execution_stats(hours=hours)
