"""
Scheduler API Endpoints

Status and control of the investment scheduler daemon.
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field

from fusion_jar.core.investments.schedule import is_valid_frequency
from fusion_jar.workers.investment_scheduler import InvestmentScheduler

router = APIRouter(prefix="/scheduler", tags=["Scheduler"])

ACTIONS = ("start", "stop", "trigger")


class SchedulerCommand(BaseModel):
    """Command for the scheduler daemon."""
    action: str = Field(..., description="start, stop or trigger")
    frequency: Optional[str] = Field(None, description="Only run intents with this frequency (trigger)")


def get_scheduler(request: Request) -> InvestmentScheduler:
    scheduler = getattr(request.app.state, "scheduler", None)
    if scheduler is None:
        detail = getattr(request.app.state, "config_error", None) or "scheduler not configured"
        raise HTTPException(status_code=503, detail=detail)
    return scheduler


@router.get("/status")
async def scheduler_status(
    scheduler: InvestmentScheduler = Depends(get_scheduler),
) -> Dict[str, Any]:
    return scheduler.status()


@router.post("")
async def scheduler_command(
    command: SchedulerCommand,
    scheduler: InvestmentScheduler = Depends(get_scheduler),
) -> Dict[str, Any]:
    action = command.action.strip().lower()
    if action not in ACTIONS:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid action '{command.action}'. Use one of: {', '.join(ACTIONS)}",
        )
    if command.frequency is not None and not is_valid_frequency(command.frequency):
        raise HTTPException(status_code=400, detail=f"Invalid frequency '{command.frequency}'")

    if action == "start":
        started = await scheduler.start()
        return {"started": started, "status": scheduler.status()}

    if action == "stop":
        stopped = await scheduler.stop()
        return {"stopped": stopped, "status": scheduler.status()}

    triggered = scheduler.trigger_in_background(command.frequency)
    return {
        "triggered": triggered,
        "skipped": not triggered,
        "message": "Run started" if triggered else "A run is already in progress",
        "frequency": command.frequency,
    }
