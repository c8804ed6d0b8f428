"""
Trip and trip request enumerations with their transition tables.

Services consult ``can_transition`` instead of comparing status strings
at each call site.
"""

import enum
from typing import Dict, FrozenSet


class TripStatus(str, enum.Enum):
    """Trip status enumeration."""
    SCHEDULED = "scheduled"  # Posted by driver, open for requests
    ACTIVE = "active"  # Driver has started
    COMPLETED = "completed"  # Arrived
    CANCELLED = "cancelled"  # Cancelled by driver or system


class TripRequestStatus(str, enum.Enum):
    """Trip request status enumeration."""
    PENDING = "pending"  # Awaiting driver decision
    APPROVED = "approved"  # Seats reserved
    REJECTED = "rejected"  # Declined by driver
    CANCELLED = "cancelled"  # Withdrawn by passenger


TRIP_TRANSITIONS: Dict[TripStatus, FrozenSet[TripStatus]] = {
    TripStatus.SCHEDULED: frozenset({TripStatus.ACTIVE, TripStatus.CANCELLED}),
    TripStatus.ACTIVE: frozenset({TripStatus.COMPLETED, TripStatus.CANCELLED}),
    TripStatus.COMPLETED: frozenset(),
    TripStatus.CANCELLED: frozenset(),
}

REQUEST_TRANSITIONS: Dict[TripRequestStatus, FrozenSet[TripRequestStatus]] = {
    TripRequestStatus.PENDING: frozenset({
        TripRequestStatus.APPROVED,
        TripRequestStatus.REJECTED,
        TripRequestStatus.CANCELLED,
    }),
    TripRequestStatus.APPROVED: frozenset({TripRequestStatus.CANCELLED}),
    TripRequestStatus.REJECTED: frozenset(),
    TripRequestStatus.CANCELLED: frozenset(),
}

# Requests that block a passenger from requesting the same trip again
ACTIVE_REQUEST_STATUSES = (TripRequestStatus.PENDING, TripRequestStatus.APPROVED)


def can_transition_trip(current: TripStatus, target: TripStatus) -> bool:
    return target in TRIP_TRANSITIONS[current]


def can_transition_request(current: TripRequestStatus, target: TripRequestStatus) -> bool:
    return target in REQUEST_TRANSITIONS[current]
