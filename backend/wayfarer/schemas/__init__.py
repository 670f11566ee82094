from wayfarer.schemas.trip_status import (
    TripCreate,
    TripResponse,
    StatusUpdate,
    ItineraryUpdate,
    StatusInfo,
    TransitionResponse,
    StatusHistoryEntry,
    Pagination,
)

__all__ = [
    "TripCreate",
    "TripResponse",
    "StatusUpdate",
    "ItineraryUpdate",
    "StatusInfo",
    "TransitionResponse",
    "StatusHistoryEntry",
    "Pagination",
]
