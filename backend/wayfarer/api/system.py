from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
import logging

from wayfarer.api.auth import require_admin_key, require_system_key
from wayfarer.context import AppContext, get_context
from wayfarer.database import get_db
from wayfarer.resilience.registry import UnknownDependencyError
from wayfarer.services.trip_status import TripStatusService

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/api/system/status-transitions", dependencies=[Depends(require_system_key)])
async def run_status_transitions(ctx: AppContext = Depends(get_context)):
    """
    Run the date-based sweep now.

    Goes through the scheduler's guard, so it is skipped if a scheduled run
    is still in flight.
    """
    outcome = await ctx.scheduler.run_once()
    if not outcome.success and not outcome.skipped:
        raise HTTPException(
            status_code=500,
            detail={"error": "Status transition job failed", "details": outcome.error},
        )
    return outcome.to_dict()


@router.post("/api/system/status-transitions", dependencies=[Depends(require_admin_key)])
async def force_status_transitions(
    ctx: AppContext = Depends(get_context),
    db: Session = Depends(get_db),
):
    logger.info("🔧 Admin-triggered status transition check")
    outcome = await ctx.scheduler.run_once()
    response = outcome.to_dict()
    response["statistics"] = {
        status.value: count
        for status, count in TripStatusService(db).get_status_statistics().items()
    }
    return response


@router.get("/api/system/status-statistics")
async def status_statistics(db: Session = Depends(get_db)):
    stats = TripStatusService(db).get_status_statistics()
    return {status.value: count for status, count in stats.items()}


@router.get("/api/system/circuit-breakers")
async def circuit_breakers(ctx: AppContext = Depends(get_context)):
    return {"circuit_breakers": ctx.breakers.get_status()}


@router.post("/api/system/circuit-breakers/{name}/reset", dependencies=[Depends(require_admin_key)])
async def reset_circuit_breaker(name: str, ctx: AppContext = Depends(get_context)):
    try:
        ctx.breakers.reset(name)
    except UnknownDependencyError:
        raise HTTPException(status_code=404, detail=f"Unknown dependency: {name}")
    breaker = ctx.breakers.get(name)
    return {"reset": True, "state": breaker.get_state().to_dict()}
