"""Database infrastructure — engine, ORM models, and repositories."""

from phasion_escrow.infrastructure.database.engine import (
    close_db,
    get_async_session,
    get_session_factory,
    init_db,
)
from phasion_escrow.infrastructure.database.orm_models import (
    Base,
    Dispute,
    EscrowOrder,
    Notification,
    OrderEvent,
    Profile,
)
from phasion_escrow.infrastructure.database.repositories import (
    DisputeRepository,
    EventRepository,
    NotificationRepository,
    OrderRepository,
    ProfileRepository,
)

__all__ = [
    "Base",
    "Dispute",
    "EscrowOrder",
    "Notification",
    "OrderEvent",
    "Profile",
    "DisputeRepository",
    "EventRepository",
    "NotificationRepository",
    "OrderRepository",
    "ProfileRepository",
    "get_async_session",
    "get_session_factory",
    "init_db",
    "close_db",
]
