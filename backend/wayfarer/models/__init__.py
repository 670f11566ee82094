# SQLAlchemy models
from wayfarer.models.trip import Trip, TripStatus
from wayfarer.models.status_history import TripStatusHistory, TransitionReason

__all__ = [
    "Trip",
    "TripStatusHistory",
    # Enums
    "TripStatus",
    "TransitionReason",
]
