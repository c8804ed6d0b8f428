"""
User roles enumeration.

Roles arrive as the ``role`` claim of tokens issued by the identity service.
Driver and passenger are relationships to a trip, not roles.
"""

import enum


class UserRole(str, enum.Enum):
    """
    User role enumeration.

    Roles:
        ADMIN: Supreme user, may edit or retire system-default routes
        USER: Regular member (default role)
    """
    ADMIN = "ADMIN"
    USER = "USER"
