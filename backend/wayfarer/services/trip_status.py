"""
Trip lifecycle status engine.

Legal transitions:
    draft     -> planned, cancelled
    planned   -> active, draft, cancelled
    active    -> completed, cancelled
    completed -> active                 (reactivation)
    cancelled -> draft, planned         (restore)

Every applied change appends a TripStatusHistory row in the same
transaction as the status write. The current status is read with a row lock
inside that transaction, so a concurrent writer that commits first makes the
loser fail the legality check instead of logging a stale old_status.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from wayfarer.models import Trip, TripStatus, TripStatusHistory, TransitionReason

logger = logging.getLogger(__name__)


VALID_TRANSITIONS: Dict[TripStatus, List[TripStatus]] = {
    TripStatus.DRAFT: [TripStatus.PLANNED, TripStatus.CANCELLED],
    TripStatus.PLANNED: [TripStatus.ACTIVE, TripStatus.DRAFT, TripStatus.CANCELLED],
    TripStatus.ACTIVE: [TripStatus.COMPLETED, TripStatus.CANCELLED],
    TripStatus.COMPLETED: [TripStatus.ACTIVE],
    TripStatus.CANCELLED: [TripStatus.DRAFT, TripStatus.PLANNED],
}

# Never touched by the date-based sweep
SWEEP_EXCLUDED = (TripStatus.CANCELLED,)

AUTOMATIC_REASONS = (
    TransitionReason.DATE_BASED,
    TransitionReason.SYSTEM,
    TransitionReason.ITINERARY_GENERATED,
)

STATUS_DESCRIPTIONS: Dict[TripStatus, Dict[str, str]] = {
    TripStatus.DRAFT: {
        "label": "Draft",
        "description": "Trip is being planned and not yet finalized",
    },
    TripStatus.PLANNED: {
        "label": "Planned",
        "description": "Trip is planned with itinerary and ready to go",
    },
    TripStatus.ACTIVE: {
        "label": "Active",
        "description": "Trip is currently in progress",
    },
    TripStatus.COMPLETED: {
        "label": "Completed",
        "description": "Trip has been completed successfully",
    },
    TripStatus.CANCELLED: {
        "label": "Cancelled",
        "description": "Trip has been cancelled",
    },
}


class TripNotFoundError(LookupError):
    def __init__(self, trip_id: int):
        self.trip_id = trip_id
        super().__init__(f"Trip {trip_id} not found")


class InvalidTransitionError(ValueError):
    """Requested status change is not an edge of the transition table."""

    def __init__(self, current: TripStatus, requested: TripStatus):
        self.current = current
        self.requested = requested
        self.allowed = get_transition_options(current)
        super().__init__(f"Cannot transition from {current.value} to {requested.value}")


def get_transition_options(current: TripStatus) -> List[TripStatus]:
    """Legal next states for ``current``; used to enable UI actions."""
    return list(VALID_TRANSITIONS.get(TripStatus(current), []))


def is_transition_allowed(current: TripStatus, requested: TripStatus) -> bool:
    return TripStatus(requested) in VALID_TRANSITIONS.get(TripStatus(current), [])


def validate_transition(current: TripStatus, requested: TripStatus) -> None:
    if not is_transition_allowed(current, requested):
        raise InvalidTransitionError(TripStatus(current), TripStatus(requested))


def describe_status(status: TripStatus) -> Dict[str, str]:
    return dict(STATUS_DESCRIPTIONS.get(TripStatus(status), STATUS_DESCRIPTIONS[TripStatus.DRAFT]))


def is_automatic_reason(reason: str) -> bool:
    return reason in {r.value for r in AUTOMATIC_REASONS}


def describe_change(old_status: Optional[TripStatus], new_status: TripStatus, reason: str) -> str:
    """Human-readable sentence for one history entry."""
    old_label = describe_status(old_status)["label"] if old_status else None
    new_label = describe_status(new_status)["label"]

    if reason == TransitionReason.TRIP_CREATED.value:
        return f"Trip created with {new_label} status"
    if reason == TransitionReason.ITINERARY_GENERATED.value:
        return f"Automatically moved to {new_label} after itinerary generation"
    if reason == TransitionReason.DATE_BASED.value:
        if old_status == TripStatus.PLANNED and new_status == TripStatus.ACTIVE:
            return "Automatically activated on trip start date"
        if old_status == TripStatus.ACTIVE and new_status == TripStatus.COMPLETED:
            return "Automatically completed after trip end date"
        return "Status automatically updated based on trip dates"
    if reason == TransitionReason.SYSTEM.value:
        return f"System automatically updated status to {new_label}"
    if reason == TransitionReason.ADMIN_OVERRIDE.value:
        return f"Administrator changed status from {old_label} to {new_label}"
    if reason == TransitionReason.MANUAL.value:
        if old_label:
            return f"Manually changed from {old_label} to {new_label}"
        return f"Manually set to {new_label}"
    if old_label:
        return f"Status changed from {old_label} to {new_label}"
    return f"Status set to {new_label}"


@dataclass
class TransitionResult:
    trip_id: int
    old_status: Optional[TripStatus]
    new_status: TripStatus
    reason: str
    record: TripStatusHistory

    @property
    def changed(self) -> bool:
        return self.old_status != self.new_status


@dataclass
class SweepError:
    trip_id: int
    message: str


@dataclass
class SweepResult:
    processed_count: int = 0
    transitions: List[TransitionResult] = field(default_factory=list)
    errors: List[SweepError] = field(default_factory=list)
    stopped_early: bool = False

    def summary(self) -> dict:
        return {
            "processed": self.processed_count,
            "transitions": len(self.transitions),
            "errors": len(self.errors),
            "stopped_early": self.stopped_early,
        }


@dataclass
class HistoryPage:
    entries: List[TripStatusHistory]
    page: int
    limit: int
    total: int

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.total else 0


def _to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class TripStatusService:
    """
    Manual and automatic status transitions for trips.

    One instance per database session. Each transition commits its own unit
    of work, so a sweep over many trips isolates failures per trip.
    """

    def __init__(self, db: Session):
        self.db = db

    def get_trip(self, trip_id: int) -> Trip:
        trip = self.db.query(Trip).filter(Trip.id == trip_id).first()
        if not trip:
            raise TripNotFoundError(trip_id)
        return trip

    def create_trip(
        self,
        title: str,
        start_date: datetime,
        end_date: datetime,
        destination: Optional[str] = None,
        user_id: Optional[str] = None,
        itinerary: Optional[dict] = None,
    ) -> Trip:
        start_date = _to_naive_utc(start_date)
        end_date = _to_naive_utc(end_date)
        if end_date < start_date:
            raise ValueError("end_date must not be before start_date")

        trip = Trip(
            title=title,
            destination=destination,
            start_date=start_date,
            end_date=end_date,
            user_id=user_id,
            itinerary=itinerary,
            status=TripStatus.DRAFT,
        )
        self.db.add(trip)
        try:
            self.db.flush()
            self.db.add(TripStatusHistory(
                trip_id=trip.id,
                old_status=None,
                new_status=TripStatus.DRAFT,
                reason=TransitionReason.TRIP_CREATED.value,
                user_id=user_id,
                details={},
                timestamp=datetime.utcnow(),
            ))
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.db.refresh(trip)
        logger.info(f"Trip {trip.id} created in {TripStatus.DRAFT.value}")
        return trip

    def request_transition(
        self,
        trip_id: int,
        new_status: TripStatus,
        actor: Optional[str] = None,
        reason: str = TransitionReason.MANUAL.value,
        metadata: Optional[dict] = None,
    ) -> TransitionResult:
        """
        Move a trip to ``new_status`` and append the audit entry.

        Raises InvalidTransitionError for an illegal edge unless ``reason`` is
        ``admin_override``, and TripNotFoundError for an unknown trip. The
        trip is untouched when either is raised.
        """
        new_status = TripStatus(new_status)
        reason = TransitionReason(reason).value

        try:
            trip = (
                self.db.query(Trip)
                .filter(Trip.id == trip_id)
                .with_for_update()
                .populate_existing()
                .first()
            )
            if not trip:
                raise TripNotFoundError(trip_id)

            old_status = trip.status
            if reason != TransitionReason.ADMIN_OVERRIDE.value:
                validate_transition(old_status, new_status)

            trip.status = new_status
            trip.updated_at = datetime.utcnow()
            record = TripStatusHistory(
                trip_id=trip.id,
                old_status=old_status,
                new_status=new_status,
                reason=reason,
                user_id=actor,
                details=dict(metadata or {}),
                timestamp=datetime.utcnow(),
            )
            self.db.add(record)
            self.db.commit()
        except InvalidTransitionError as e:
            self.db.rollback()
            logger.warning(f"Trip {trip_id}: rejected transition ({e})")
            raise
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(record)
        logger.info(
            f"Trip {trip_id} status {old_status.value} -> {new_status.value} "
            f"({reason}{', by ' + actor if actor else ''})"
        )
        return TransitionResult(
            trip_id=trip_id,
            old_status=old_status,
            new_status=new_status,
            reason=reason,
            record=record,
        )

    def mark_itinerary_generated(
        self,
        trip_id: int,
        itinerary: dict,
        actor: Optional[str] = None,
    ) -> Optional[TransitionResult]:
        """
        Store a generated itinerary; a draft trip with activities becomes planned.

        Returns the transition, or None when the status is left alone.
        """
        trip = self.get_trip(trip_id)
        trip.itinerary = itinerary
        self.db.commit()

        if trip.status != TripStatus.DRAFT or trip.activity_count == 0:
            return None

        return self.request_transition(
            trip_id,
            TripStatus.PLANNED,
            actor=actor,
            reason=TransitionReason.ITINERARY_GENERATED.value,
            metadata={"activities": trip.activity_count},
        )

    def list_sweep_candidates(self) -> List[Trip]:
        return (
            self.db.query(Trip)
            .filter(Trip.status.notin_(SWEEP_EXCLUDED))
            .order_by(Trip.id)
            .all()
        )

    @staticmethod
    def date_based_target(trip: Trip, now: datetime) -> Optional[TripStatus]:
        """The status the dates call for, or None if the trip should stay put."""
        if trip.status == TripStatus.PLANNED and now >= trip.start_date:
            return TripStatus.ACTIVE
        if trip.status == TripStatus.ACTIVE and now > trip.end_date:
            return TripStatus.COMPLETED
        return None

    def run_date_based_sweep(
        self,
        now: Optional[datetime] = None,
        should_stop: Optional[Callable[[], bool]] = None,
    ) -> SweepResult:
        """
        Apply date-based transitions to every trip that is not cancelled.

        A failure on one trip is recorded in ``errors`` and the sweep moves on.
        ``should_stop`` is polled between trips so an abandoned run halts early.
        """
        now = _to_naive_utc(now or datetime.utcnow())
        result = SweepResult()

        logger.info(f"🔄 Starting date-based status sweep at {now.isoformat()}")
        candidates = [(t.id, t.status, t.start_date, t.end_date) for t in self.list_sweep_candidates()]

        for trip_id, status, start_date, end_date in candidates:
            if should_stop is not None and should_stop():
                result.stopped_early = True
                logger.warning(f"Status sweep stopped early after {result.processed_count} trips")
                break

            result.processed_count += 1
            try:
                trip = self.get_trip(trip_id)
                target = self.date_based_target(trip, now)
                if target is None:
                    continue

                transition = self.request_transition(
                    trip_id,
                    target,
                    actor=None,
                    reason=TransitionReason.DATE_BASED.value,
                    metadata={
                        "check_time": now.isoformat(),
                        "original_status": status.value,
                        "start_date": start_date.isoformat(),
                        "end_date": end_date.isoformat(),
                    },
                )
                result.transitions.append(transition)
            except Exception as e:
                self.db.rollback()
                result.errors.append(SweepError(trip_id=trip_id, message=str(e)))
                logger.error(f"❌ Status sweep failed for trip {trip_id}: {e}")

        logger.info(
            f"Status sweep complete: {result.processed_count} processed, "
            f"{len(result.transitions)} transitioned, {len(result.errors)} errors"
        )
        return result

    def get_history(self, trip_id: int, page: int = 1, limit: int = 20) -> HistoryPage:
        self.get_trip(trip_id)

        page = max(1, min(page, 1000))
        limit = max(1, min(limit, 100))

        query = self.db.query(TripStatusHistory).filter(TripStatusHistory.trip_id == trip_id)
        total = query.count()
        entries = (
            query.order_by(TripStatusHistory.timestamp.desc(), TripStatusHistory.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return HistoryPage(entries=entries, page=page, limit=limit, total=total)

    def get_status_statistics(self) -> Dict[TripStatus, int]:
        counts = {status: 0 for status in TripStatus}
        rows = self.db.query(Trip.status, func.count(Trip.id)).group_by(Trip.status).all()
        for status, count in rows:
            counts[status] = count
        return counts
