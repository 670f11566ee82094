from sqlalchemy import Column, Integer, String, DateTime, JSON, Enum as SQLEnum
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from wayfarer.database import Base
import enum


class TripStatus(str, enum.Enum):
    DRAFT = "draft"
    PLANNED = "planned"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# Shared by trips.status and the history columns
TripStatusType = SQLEnum(
    TripStatus,
    values_callable=lambda e: [m.value for m in e],
    name="tripstatus",
)


class Trip(Base):
    """
    A planned trip with a lifecycle status.

    Status changes go through TripStatusService so that every change leaves a
    TripStatusHistory row. Dates are naive UTC.
    """
    __tablename__ = "trips"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), nullable=True, index=True)

    title = Column(String(200), nullable=False)
    destination = Column(String(200), nullable=True)

    start_date = Column(DateTime, nullable=False)
    end_date = Column(DateTime, nullable=False)

    status = Column(
        TripStatusType,
        default=TripStatus.DRAFT,
        nullable=False,
        index=True,
    )

    # Generated day-by-day plan: {"days": [...], "activities": [...]}
    itinerary = Column(JSON, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    status_history = relationship(
        "TripStatusHistory",
        back_populates="trip",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="TripStatusHistory.id",
    )

    @property
    def activity_count(self) -> int:
        if not self.itinerary:
            return 0
        return len(self.itinerary.get("activities") or [])

    def __repr__(self) -> str:
        return f"<Trip {self.id}: {self.title} ({self.status.value})>"
