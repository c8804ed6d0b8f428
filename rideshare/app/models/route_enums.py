"""
Route-related enumerations.
"""

import enum


class RouteType(str, enum.Enum):
    """
    Route ownership type.

    DEFAULT: Seeded by the system, no creator, not deletable by ordinary users
    CUSTOM: Created by a user
    """
    DEFAULT = "default"
    CUSTOM = "custom"
