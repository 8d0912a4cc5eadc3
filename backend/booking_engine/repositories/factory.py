# backend/booking_engine/repositories/factory.py
"""
Repository Factory

Provides centralized creation of repository instances,
ensuring consistent initialization and dependency injection.
"""

from typing import TYPE_CHECKING

from sqlalchemy.orm import Session

# Avoid circular imports
if TYPE_CHECKING:
    from .availability_repository import AvailabilityRepository
    from .pack_repository import PackRepository
    from .provider_repository import ClientRepository, ProviderRepository, ServiceTypeRepository
    from .schedule_repository import RecurringScheduleRepository, TimePreferenceRepository
    from .session_repository import SessionRepository
    from .subscription_repository import SubscriptionCreditRepository, SubscriptionRepository


class RepositoryFactory:
    """
    Factory class for creating repository instances.

    Centralizes repository creation to ensure consistent initialization
    and makes it easy to swap implementations if needed.
    """

    @staticmethod
    def create_provider_repository(db: Session) -> "ProviderRepository":
        from .provider_repository import ProviderRepository

        return ProviderRepository(db)

    @staticmethod
    def create_client_repository(db: Session) -> "ClientRepository":
        from .provider_repository import ClientRepository

        return ClientRepository(db)

    @staticmethod
    def create_service_type_repository(db: Session) -> "ServiceTypeRepository":
        from .provider_repository import ServiceTypeRepository

        return ServiceTypeRepository(db)

    @staticmethod
    def create_availability_repository(db: Session) -> "AvailabilityRepository":
        """Create repository for templates and exceptions."""
        from .availability_repository import AvailabilityRepository

        return AvailabilityRepository(db)

    @staticmethod
    def create_session_repository(db: Session) -> "SessionRepository":
        """Create repository for session queries (overlap, ledger counts)."""
        from .session_repository import SessionRepository

        return SessionRepository(db)

    @staticmethod
    def create_pack_repository(db: Session) -> "PackRepository":
        from .pack_repository import PackRepository

        return PackRepository(db)

    @staticmethod
    def create_subscription_repository(db: Session) -> "SubscriptionRepository":
        from .subscription_repository import SubscriptionRepository

        return SubscriptionRepository(db)

    @staticmethod
    def create_credit_repository(db: Session) -> "SubscriptionCreditRepository":
        from .subscription_repository import SubscriptionCreditRepository

        return SubscriptionCreditRepository(db)

    @staticmethod
    def create_time_preference_repository(db: Session) -> "TimePreferenceRepository":
        from .schedule_repository import TimePreferenceRepository

        return TimePreferenceRepository(db)

    @staticmethod
    def create_recurring_schedule_repository(db: Session) -> "RecurringScheduleRepository":
        from .schedule_repository import RecurringScheduleRepository

        return RecurringScheduleRepository(db)
