# backend/booking_engine/services/__init__.py
"""
Service layer for the booking engine.

Every service takes a SQLAlchemy Session and an explicit Actor per call.
"""

from .availability_service import AvailabilityService
from .base import BaseService
from .booking_service import BookingService
from .cancellation_service import CancellationService
from .conflict_checker import ConflictChecker
from .credit_ledger import CreditLedger
from .pack_service import PackService
from .recurring_schedule_service import RecurringScheduleService
from .subscription_service import SubscriptionService
from .time_preference_service import TimePreferenceService

__all__ = [
    "AvailabilityService",
    "BaseService",
    "BookingService",
    "CancellationService",
    "ConflictChecker",
    "CreditLedger",
    "PackService",
    "RecurringScheduleService",
    "SubscriptionService",
    "TimePreferenceService",
]
