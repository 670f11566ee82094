from fastapi import APIRouter, Depends, Header, HTTPException, Query
from sqlalchemy.orm import Session
from typing import Optional
import logging

from wayfarer.api.auth import has_admin_key
from wayfarer.context import AppContext, get_context
from wayfarer.database import get_db
from wayfarer.models import TransitionReason
from wayfarer.schemas import (
    TripCreate,
    TripResponse,
    StatusUpdate,
    ItineraryUpdate,
    StatusInfo,
    TransitionResponse,
    StatusHistoryEntry,
    Pagination,
)
from wayfarer.services.trip_status import (
    TripStatusService,
    TripNotFoundError,
    InvalidTransitionError,
    get_transition_options,
    describe_status,
    describe_change,
    is_automatic_reason,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def _not_found(trip_id: int) -> HTTPException:
    return HTTPException(status_code=404, detail=f"Trip {trip_id} not found")


def _internal_error(message: str) -> HTTPException:
    return HTTPException(status_code=500, detail={"error": message, "code": "INTERNAL_ERROR"})


def _invalid_transition(e: InvalidTransitionError) -> HTTPException:
    return HTTPException(
        status_code=400,
        detail={
            "error": f"Invalid status transition from {e.current.value} to {e.requested.value}",
            "code": "INVALID_TRANSITION",
            "currentStatus": e.current.value,
            "requestedStatus": e.requested.value,
            "allowedTransitions": [s.value for s in e.allowed],
        },
    )


@router.post("/api/trips", status_code=201)
async def create_trip(trip: TripCreate, db: Session = Depends(get_db)):
    service = TripStatusService(db)
    new_trip = service.create_trip(
        title=trip.title,
        destination=trip.destination,
        start_date=trip.start_date,
        end_date=trip.end_date,
        user_id=trip.user_id,
    )
    return TripResponse.model_validate(new_trip)


@router.get("/api/trips/{trip_id}")
async def get_trip(trip_id: int, db: Session = Depends(get_db)):
    try:
        trip = TripStatusService(db).get_trip(trip_id)
    except TripNotFoundError:
        raise _not_found(trip_id)
    return TripResponse.model_validate(trip)


@router.get("/api/trips/{trip_id}/status")
async def get_trip_status(trip_id: int, db: Session = Depends(get_db)):
    """Current status plus the transitions the UI may offer."""
    try:
        trip = TripStatusService(db).get_trip(trip_id)
    except TripNotFoundError:
        raise _not_found(trip_id)

    allowed = get_transition_options(trip.status)
    return {
        "trip": {
            "id": trip.id,
            "title": trip.title,
            "status": trip.status.value,
            "updated_at": trip.updated_at,
        },
        "status_info": StatusInfo(**describe_status(trip.status)),
        "allowed_transitions": [s.value for s in allowed],
        "can_transition": len(allowed) > 0,
    }


@router.put("/api/trips/{trip_id}/status")
async def update_trip_status(
    trip_id: int,
    update: StatusUpdate,
    db: Session = Depends(get_db),
    ctx: AppContext = Depends(get_context),
    x_api_key: Optional[str] = Header(None),
):
    """Manually change a trip's status. admin_override needs the admin key."""
    if update.reason == TransitionReason.ADMIN_OVERRIDE and not has_admin_key(ctx, x_api_key):
        raise HTTPException(status_code=401, detail="Unauthorized - Admin access required")

    service = TripStatusService(db)
    try:
        result = service.request_transition(
            trip_id,
            update.status,
            actor=update.user_id,
            reason=update.reason.value,
            metadata={"source": "api"},
        )
    except TripNotFoundError:
        raise _not_found(trip_id)
    except InvalidTransitionError as e:
        raise _invalid_transition(e)
    except Exception as e:
        logger.error(f"❌ Error updating trip {trip_id} status: {e}")
        raise _internal_error("Failed to update trip status")

    return {
        "success": True,
        "message": f"Trip status updated to {result.new_status.value}",
        "trip": TripResponse.model_validate(service.get_trip(trip_id)),
        "transition": TransitionResponse(
            old_status=result.old_status,
            new_status=result.new_status,
            reason=result.reason,
            timestamp=result.record.timestamp,
        ),
    }


@router.post("/api/trips/{trip_id}/itinerary")
async def save_itinerary(trip_id: int, itinerary: ItineraryUpdate, db: Session = Depends(get_db)):
    """Store a generated itinerary; a draft trip with activities moves to planned."""
    service = TripStatusService(db)
    try:
        result = service.mark_itinerary_generated(
            trip_id,
            {"days": itinerary.days, "activities": itinerary.activities},
            actor=itinerary.user_id,
        )
    except TripNotFoundError:
        raise _not_found(trip_id)
    except InvalidTransitionError as e:
        raise _invalid_transition(e)

    trip = service.get_trip(trip_id)
    return {
        "trip": TripResponse.model_validate(trip),
        "transitioned": result is not None,
        "transition": TransitionResponse(
            old_status=result.old_status,
            new_status=result.new_status,
            reason=result.reason,
            timestamp=result.record.timestamp,
        ) if result else None,
    }


@router.get("/api/trips/{trip_id}/status-history")
async def get_status_history(
    trip_id: int,
    page: int = Query(1),
    limit: int = Query(20),
    db: Session = Depends(get_db),
):
    service = TripStatusService(db)
    try:
        trip = service.get_trip(trip_id)
        history = service.get_history(trip_id, page=page, limit=limit)
    except TripNotFoundError:
        raise _not_found(trip_id)

    entries = [
        StatusHistoryEntry(
            id=h.id,
            trip_id=h.trip_id,
            old_status=h.old_status,
            new_status=h.new_status,
            reason=h.reason,
            user_id=h.user_id,
            metadata=h.details or {},
            timestamp=h.timestamp,
            is_automatic=is_automatic_reason(h.reason),
            is_manual=h.reason == TransitionReason.MANUAL.value,
            description=describe_change(h.old_status, h.new_status, h.reason),
        )
        for h in history.entries
    ]

    return {
        "trip": {"id": trip.id, "title": trip.title, "current_status": trip.status.value},
        "status_history": entries,
        "pagination": Pagination(
            page=history.page,
            limit=history.limit,
            total=history.total,
            pages=history.pages,
        ),
        "summary": {
            "total_changes": history.total,
            "automatic_changes": sum(1 for e in entries if e.is_automatic),
            "manual_changes": sum(1 for e in entries if e.is_manual),
        },
    }
