# backend/booking_engine/repositories/subscription_repository.py
"""
Subscription Repositories

Subscriptions with their allocations, and the discrete credit rows consumed
by bookings. Credits are handed out oldest first.
"""

import logging
from typing import Iterable, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from ..core.enums import CreditStatus
from ..core.exceptions import RepositoryException
from ..models.subscription import Subscription, SubscriptionCredit
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class SubscriptionRepository(BaseRepository[Subscription]):
    def __init__(self, db: Session):
        super().__init__(db, Subscription)

    def get_with_allocations(self, subscription_id: str) -> Optional[Subscription]:
        try:
            return (
                self.db.query(Subscription)
                .options(selectinload(Subscription.allocations))
                .filter(Subscription.id == subscription_id)
                .first()
            )
        except SQLAlchemyError as exc:
            self.logger.error("Failed to load subscription %s: %s", subscription_id, exc)
            raise RepositoryException(f"Failed to load subscription: {exc}") from exc


class SubscriptionCreditRepository(BaseRepository[SubscriptionCredit]):
    def __init__(self, db: Session):
        super().__init__(db, SubscriptionCredit)

    def get_oldest_available(
        self, subscription_id: str, service_type_id: str, *, for_update: bool = False
    ) -> Optional[SubscriptionCredit]:
        try:
            query = (
                self.db.query(SubscriptionCredit)
                .filter(
                    SubscriptionCredit.subscription_id == subscription_id,
                    SubscriptionCredit.service_type_id == service_type_id,
                    SubscriptionCredit.status == CreditStatus.AVAILABLE.value,
                )
                .order_by(SubscriptionCredit.created_at.asc(), SubscriptionCredit.id.asc())
            )
            if for_update:
                query = self._lock(query)
            return query.first()
        except SQLAlchemyError as exc:
            self.logger.error("Failed to load available credit: %s", exc)
            raise RepositoryException(f"Failed to load available credit: {exc}") from exc

    def count_available(self, subscription_id: str, service_type_id: Optional[str] = None) -> int:
        try:
            query = self.db.query(func.count(SubscriptionCredit.id)).filter(
                SubscriptionCredit.subscription_id == subscription_id,
                SubscriptionCredit.status == CreditStatus.AVAILABLE.value,
            )
            if service_type_id is not None:
                query = query.filter(SubscriptionCredit.service_type_id == service_type_id)
            return query.scalar() or 0
        except SQLAlchemyError as exc:
            self.logger.error("Failed to count credits: %s", exc)
            raise RepositoryException(f"Failed to count credits: {exc}") from exc

    def get_available_ids(self, subscription_id: str) -> List[str]:
        try:
            rows = (
                self.db.query(SubscriptionCredit.id)
                .filter(
                    SubscriptionCredit.subscription_id == subscription_id,
                    SubscriptionCredit.status == CreditStatus.AVAILABLE.value,
                )
                .order_by(SubscriptionCredit.created_at.asc(), SubscriptionCredit.id.asc())
                .all()
            )
            return [row[0] for row in rows]
        except SQLAlchemyError as exc:
            self.logger.error("Failed to list credits: %s", exc)
            raise RepositoryException(f"Failed to list credits: {exc}") from exc

    def get_many_for_update(self, credit_ids: Iterable[str]) -> List[SubscriptionCredit]:
        ids = list(dict.fromkeys(credit_ids))
        if not ids:
            return []
        try:
            query = (
                self.db.query(SubscriptionCredit)
                .filter(SubscriptionCredit.id.in_(ids))
                .order_by(SubscriptionCredit.id.asc())
            )
            return self._lock(query).all()
        except SQLAlchemyError as exc:
            self.logger.error("Failed to lock credits: %s", exc)
            raise RepositoryException(f"Failed to lock credits: {exc}") from exc
