from fastapi import APIRouter, Request
from typing import Dict, Any
from ..config import settings
from ..providers.fusion import FusionProvider

router = APIRouter()


@router.get("/healthz")
async def health_check(request: Request) -> Dict[str, Any]:
    """Health check: credentials, aggregator client and scheduler state"""

    provider_status = {
        "1inch": await FusionProvider().health_check(),
        "supabase": {"status": "healthy" if settings.has_supabase else "unavailable"},
    }

    scheduler = getattr(request.app.state, "scheduler", None)
    missing = settings.missing_credentials()

    return {
        "status": "healthy" if not missing and scheduler is not None else "degraded",
        "providers": provider_status,
        "missing_credentials": missing,
        "scheduler": {
            "configured": scheduler is not None,
            "is_running": scheduler.is_running if scheduler is not None else False,
            "run_state": scheduler.run_state if scheduler is not None else None,
        },
    }
