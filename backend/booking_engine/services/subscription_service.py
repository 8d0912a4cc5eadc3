# backend/booking_engine/services/subscription_service.py
"""
Subscription Service

Termination (forfeiting outstanding credits) and manual credit provisioning.
"""

from datetime import date, datetime, timezone
import logging
from typing import Dict, Optional

from sqlalchemy.orm import Session

from ..core.actor import Actor
from ..core.enums import SubscriptionStatus
from ..core.exceptions import NotFoundException, ValidationException
from ..core.timezone_utils import get_provider_timezone
from ..models.subscription import Subscription, SubscriptionCredit
from ..repositories import RepositoryFactory
from .access import ensure_provider
from .base import BaseService
from .credit_ledger import CreditLedger

logger = logging.getLogger(__name__)

_TERMINAL_STATUSES = (SubscriptionStatus.CANCELLED, SubscriptionStatus.ENDED)


class SubscriptionService(BaseService):
    def __init__(self, db: Session, credit_ledger: Optional[CreditLedger] = None):
        super().__init__(db)
        self.credit_ledger = credit_ledger or CreditLedger(db)
        self.repository = RepositoryFactory.create_subscription_repository(db)
        self.credit_repository = RepositoryFactory.create_credit_repository(db)
        self.provider_repository = RepositoryFactory.create_provider_repository(db)

    def _get_visible_subscription(self, actor: Actor, subscription_id: str) -> Subscription:
        subscription = self.repository.get_with_allocations(subscription_id)
        visible = subscription is not None and (
            (actor.is_provider and actor.actor_id == subscription.provider_id)
            or (actor.is_client and actor.actor_id == subscription.client_id)
        )
        if not visible:
            raise NotFoundException(
                "Subscription not found",
                code="SUBSCRIPTION_NOT_FOUND",
                details={"id": subscription_id},
            )
        return subscription

    @BaseService.measure_operation("terminate_subscription")
    def terminate_subscription(
        self,
        actor: Actor,
        subscription_id: str,
        status: str = SubscriptionStatus.CANCELLED.value,
        end_date: Optional[date] = None,
    ) -> int:
        """
        Move a subscription to cancelled/ended and forfeit its available credits.

        Returns:
            Number of credits forfeited
        """
        try:
            target = SubscriptionStatus(status)
        except ValueError as exc:
            raise ValidationException(
                f"Invalid termination status: {status}", code="INVALID_STATUS"
            ) from exc
        if target not in _TERMINAL_STATUSES:
            raise ValidationException(
                "Subscriptions terminate as cancelled or ended", code="INVALID_STATUS"
            )

        subscription = self._get_visible_subscription(actor, subscription_id)
        ensure_provider(actor, subscription.provider_id, "terminate subscriptions")

        with self.transaction():
            subscription = self.repository.get_for_update(subscription_id)
            subscription.status = target.value
            if end_date is not None:
                subscription.end_date = end_date
            elif subscription.end_date is None:
                subscription.end_date = datetime.now(timezone.utc).date()
            forfeited = self.credit_ledger.forfeit_credits(
                self.credit_repository.get_available_ids(subscription.id), use_transaction=False
            )

        self.log_operation(
            "terminate_subscription",
            subscription_id=subscription_id,
            status=target.value,
            forfeited=forfeited,
        )
        return forfeited

    @BaseService.measure_operation("provision_period_credits")
    def provision_period_credits(
        self, actor: Actor, subscription_id: str, service_type_id: str, quantity: int
    ) -> list[SubscriptionCredit]:
        subscription = self._get_visible_subscription(actor, subscription_id)
        ensure_provider(actor, subscription.provider_id, "provision credits")
        if not subscription.is_active:
            raise ValidationException(
                "Credits can only be provisioned on an active subscription",
                code="SUBSCRIPTION_INACTIVE",
                details={"status": subscription.status},
            )
        return self.credit_ledger.provision_credits(subscription.id, service_type_id, quantity)

    def get_balance(
        self, actor: Actor, subscription_id: str, at: Optional[datetime] = None
    ) -> Dict[str, Dict[str, int]]:
        """Available credits and remaining allowance per covered service type."""
        subscription = self._get_visible_subscription(actor, subscription_id)
        provider = self.provider_repository.get_by_id(subscription.provider_id)
        tz = get_provider_timezone(provider)
        moment = at or datetime.now(timezone.utc)
        return {
            allocation.service_type_id: {
                "credits_available": self.credit_repository.count_available(
                    subscription.id, allocation.service_type_id
                ),
                "allowance_remaining": self.credit_ledger.allowance_remaining(
                    subscription, allocation.service_type_id, moment, tz
                ),
            }
            for allocation in subscription.allocations
        }
