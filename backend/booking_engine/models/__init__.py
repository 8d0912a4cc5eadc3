# backend/booking_engine/models/__init__.py
"""
Models package.

Importing this package registers every table on Base.metadata.
"""

from .availability import AvailabilityException, AvailabilityTemplate
from .pack import SessionPack
from .provider import Client, Provider, ServiceType
from .schedule import ClientTimePreference, RecurringSchedule
from .session import BookedSession
from .subscription import Subscription, SubscriptionAllocation, SubscriptionCredit

__all__ = [
    "AvailabilityException",
    "AvailabilityTemplate",
    "BookedSession",
    "Client",
    "ClientTimePreference",
    "Provider",
    "RecurringSchedule",
    "ServiceType",
    "SessionPack",
    "Subscription",
    "SubscriptionAllocation",
    "SubscriptionCredit",
]
