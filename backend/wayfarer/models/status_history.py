from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, JSON
from sqlalchemy.orm import relationship
from datetime import datetime
from wayfarer.database import Base
from wayfarer.models.trip import TripStatusType
import enum


class TransitionReason(str, enum.Enum):
    TRIP_CREATED = "trip_created"
    ITINERARY_GENERATED = "itinerary_generated"
    DATE_BASED = "date_based"
    MANUAL = "manual"
    SYSTEM = "system"
    ADMIN_OVERRIDE = "admin_override"


class TripStatusHistory(Base):
    """
    Append-only audit entry for a trip status change.

    old_status is null only for the creation entry. user_id is null for
    automatic transitions. Rows are never updated or deleted by the service.
    """
    __tablename__ = "trip_status_history"

    id = Column(Integer, primary_key=True, index=True)
    trip_id = Column(
        Integer,
        ForeignKey("trips.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    old_status = Column(TripStatusType, nullable=True)
    new_status = Column(TripStatusType, nullable=False)
    reason = Column(String(50), nullable=False)

    user_id = Column(String(64), nullable=True)

    # "metadata" is reserved on declarative classes
    details = Column("metadata", JSON, default=dict)

    timestamp = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    trip = relationship("Trip", back_populates="status_history")

    @property
    def is_automatic(self) -> bool:
        return self.reason in (
            TransitionReason.DATE_BASED.value,
            TransitionReason.SYSTEM.value,
            TransitionReason.ITINERARY_GENERATED.value,
        )

    def __repr__(self) -> str:
        old = self.old_status.value if self.old_status else None
        return f"<TripStatusHistory trip={self.trip_id}: {old} -> {self.new_status.value} ({self.reason})>"
