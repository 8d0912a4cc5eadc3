# backend/booking_engine/services/credit_ledger.py
"""
Credit Ledger

Accounting for the two entitlement kinds:

- Packs: a remaining count derived from session rows, never stored. Consuming
  a pack session means "permit a session row that references the pack";
  releasing one is a no-op because the cancelled row stops counting on its own.
- Subscription credits: discrete rows with an available -> used -> available
  (revert) lifecycle, or forfeited on termination. Sessions may also consume
  the subscription's periodic allowance directly, without a credit row.

Every mutation accepts use_transaction; the booking and cancellation services
call the ledger with use_transaction=False inside their own unit of work so
the session change and the ledger change commit or roll back together.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
import logging
from typing import Iterable, List, Optional, Tuple

from sqlalchemy.orm import Session
import pytz

from ..core.enums import BillingCycle, CreditStatus, PackStatus
from ..core.exceptions import (
    BookingConflictException,
    ConflictReason,
    NotFoundException,
    ValidationException,
)
from ..core.timezone_utils import get_provider_timezone, to_local
from ..models.pack import SessionPack
from ..models.session import BookedSession
from ..models.subscription import Subscription, SubscriptionCredit
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories import RepositoryFactory
from ..schemas.pack import PackStats
from .base import BaseService

logger = logging.getLogger(__name__)

_PERIOD_DAYS = {BillingCycle.WEEKLY: 7, BillingCycle.FORTNIGHTLY: 14}


def _exhausted(message: str, **details) -> BookingConflictException:
    return BookingConflictException(
        ConflictReason.ENTITLEMENT_EXHAUSTED, message, details=details
    )


class CreditLedger(BaseService):
    """Consumption and reversal of pack sessions and subscription credits."""

    def __init__(self, db: Session):
        super().__init__(db)
        self.session_repository = RepositoryFactory.create_session_repository(db)
        self.pack_repository = RepositoryFactory.create_pack_repository(db)
        self.subscription_repository = RepositoryFactory.create_subscription_repository(db)
        self.credit_repository = RepositoryFactory.create_credit_repository(db)

    # Packs

    def pack_remaining(self, pack: SessionPack | str) -> int:
        """total_sessions minus sessions that still consume (never negative)."""
        if isinstance(pack, str):
            loaded = self.pack_repository.get_by_id(pack)
            if loaded is None:
                raise NotFoundException("Pack not found", code="PACK_NOT_FOUND", details={"id": pack})
            pack = loaded
        consumed = self.session_repository.count_pack_consuming(pack.id)
        return max(int(pack.total_sessions) - consumed, 0)

    @BaseService.measure_operation("try_consume_pack_session")
    def try_consume_pack_session(self, pack_id: str, at: Optional[date] = None) -> SessionPack:
        """
        Lock the pack row and confirm one more session may reference it.

        Writes nothing: the caller creates the session row in the same
        transaction, which is what actually consumes the unit.

        Raises:
            NotFoundException: unknown pack
            BookingConflictException(entitlement_exhausted): archived, expired or used up
        """
        pack = self.pack_repository.get_for_update(pack_id)
        if pack is None:
            raise NotFoundException("Pack not found", code="PACK_NOT_FOUND", details={"id": pack_id})
        if not pack.is_active:
            raise _exhausted("Pack is no longer active", pack_id=pack.id, pack_status=pack.status)
        if at is not None and pack.is_expired(at):
            raise _exhausted(
                "Pack has expired",
                pack_id=pack.id,
                expiry_date=pack.expiry_date.isoformat(),
            )
        remaining = self.pack_remaining(pack)
        if remaining <= 0:
            raise _exhausted(
                "No sessions remaining on this pack",
                pack_id=pack.id,
                total_sessions=int(pack.total_sessions),
            )
        prometheus_metrics.record_ledger_mutation("pack_consume")
        return pack

    def release_pack_session(self, pack_id: str) -> None:
        """
        No-op by construction: a session cancelled without penalty drops out
        of the consuming set, so the derived remaining count recovers itself.
        """
        self.logger.debug("Pack %s released a session (derived count recomputes)", pack_id)
        prometheus_metrics.record_ledger_mutation("pack_release")

    def archive_pack_if_exhausted(self, pack_id: str) -> bool:
        """Archive an active pack once fully consumed with nothing still scheduled."""
        pack = self.pack_repository.get_by_id(pack_id)
        if pack is None or not pack.is_active:
            return False
        if self.pack_remaining(pack) > 0:
            return False
        if self.session_repository.get_scheduled_for_pack(pack.id):
            return False
        pack.status = PackStatus.ARCHIVED.value
        self.db.flush()
        self.log_operation("archive_pack", pack_id=pack.id, reason="fully_consumed")
        return True

    def pack_stats(self, pack: SessionPack | str) -> PackStats:
        if isinstance(pack, str):
            loaded = self.pack_repository.get_by_id(pack)
            if loaded is None:
                raise NotFoundException("Pack not found", code="PACK_NOT_FOUND", details={"id": pack})
            pack = loaded
        counts = self.session_repository.pack_status_counts(pack.id)
        consumed = (
            counts["scheduled"] + counts["completed"] + counts["no_show"] + counts["cancelled_penalty"]
        )
        cancelled_total = counts["cancelled_late"] + counts["cancelled_early"]
        return PackStats(
            pack_id=pack.id,
            status=pack.status,
            total_sessions=int(pack.total_sessions),
            consumed=consumed,
            remaining=max(int(pack.total_sessions) - consumed, 0),
            scheduled=counts["scheduled"],
            completed=counts["completed"],
            no_show=counts["no_show"],
            cancelled_penalty=counts["cancelled_penalty"],
            cancelled_no_penalty=cancelled_total - counts["cancelled_penalty"],
        )

    # Subscription allowance

    @staticmethod
    def billing_period(
        subscription: Subscription, at: datetime, tz: pytz.BaseTzInfo
    ) -> Tuple[datetime, datetime]:
        """
        The [start, end) billing period containing ``at``.

        Weekly/fortnightly periods are anchored at the subscription start date;
        monthly periods are calendar months. Bounds are local midnights.
        """
        local_day = to_local(at, tz).date()
        cycle = BillingCycle(subscription.billing_cycle)
        if cycle == BillingCycle.MONTHLY:
            first = local_day.replace(day=1)
            next_first = (first + timedelta(days=32)).replace(day=1)
        else:
            length = _PERIOD_DAYS[cycle]
            index = (local_day - subscription.start_date).days // length
            first = subscription.start_date + timedelta(days=index * length)
            next_first = first + timedelta(days=length)
        return (
            tz.localize(datetime.combine(first, datetime.min.time())),
            tz.localize(datetime.combine(next_first, datetime.min.time())),
        )

    def allowance_remaining(
        self,
        subscription: Subscription,
        service_type_id: str,
        at: datetime,
        tz: Optional[pytz.BaseTzInfo] = None,
        exclude_session_id: Optional[str] = None,
    ) -> int:
        allocation = subscription.allocation_for(service_type_id)
        if allocation is None:
            return 0
        zone = tz or get_provider_timezone(None)
        period_start, period_end = self.billing_period(subscription, at, zone)
        used = self.session_repository.count_allowance_consuming(
            subscription.id,
            service_type_id,
            period_start,
            period_end,
            exclude_session_id=exclude_session_id,
        )
        return max(int(allocation.quantity_per_period) - used, 0)

    @BaseService.measure_operation("select_subscription_source")
    def select_subscription_source(
        self,
        subscription_id: str,
        service_type_id: str,
        start_at: datetime,
        tz: pytz.BaseTzInfo,
    ) -> Tuple[Subscription, Optional[SubscriptionCredit]]:
        """
        Lock the subscription and pick what a new session will consume.

        The oldest available credit for the service type wins; otherwise the
        periodic allowance must still have room in the session's period.

        Returns:
            (subscription, credit) where credit is None for allowance consumption
        """
        subscription = self.subscription_repository.get_for_update(subscription_id)
        if subscription is None:
            raise NotFoundException(
                "Subscription not found",
                code="SUBSCRIPTION_NOT_FOUND",
                details={"id": subscription_id},
            )
        if not subscription.is_active:
            raise _exhausted(
                "Subscription is not active",
                subscription_id=subscription.id,
                subscription_status=subscription.status,
            )
        self._check_term(subscription, to_local(start_at, tz).date())
        if subscription.allocation_for(service_type_id) is None:
            raise _exhausted(
                "Subscription does not cover this service type",
                subscription_id=subscription.id,
                service_type_id=service_type_id,
            )

        credit = self.credit_repository.get_oldest_available(
            subscription.id, service_type_id, for_update=True
        )
        if credit is not None:
            return subscription, credit
        if self.allowance_remaining(subscription, service_type_id, start_at, tz) <= 0:
            raise _exhausted(
                "No subscription sessions remaining for this period",
                subscription_id=subscription.id,
                service_type_id=service_type_id,
            )
        return subscription, None

    @staticmethod
    def _check_term(subscription: Subscription, local_day: date) -> None:
        if local_day < subscription.start_date or (
            subscription.end_date is not None and local_day > subscription.end_date
        ):
            raise _exhausted(
                "Session date is outside the subscription term", subscription_id=subscription.id
            )

    @BaseService.measure_operation("check_moved_session")
    def check_moved_session(
        self, session: BookedSession, new_start: datetime, tz: pytz.BaseTzInfo
    ) -> None:
        """
        Confirm the entitlement a scheduled session already holds still covers
        it at ``new_start``.

        Packs must not be expired on the new local date. Subscription sessions
        must stay inside the term, and allowance-backed ones need room in the
        new billing period with the session itself left out of the count.
        Discrete credits move with the session unchanged.

        Raises:
            BookingConflictException(entitlement_exhausted)
        """
        local_day = to_local(new_start, tz).date()
        if session.pack_id:
            pack = self.pack_repository.get_for_update(session.pack_id)
            if pack is not None and pack.is_expired(local_day):
                raise _exhausted(
                    "Pack has expired",
                    pack_id=pack.id,
                    expiry_date=pack.expiry_date.isoformat(),
                )
            return
        if not session.subscription_id:
            return

        subscription = self.subscription_repository.get_for_update(session.subscription_id)
        if subscription is None:
            return
        self._check_term(subscription, local_day)
        if session.subscription_credit_id:
            return
        remaining = self.allowance_remaining(
            subscription, session.service_type_id, new_start, tz, exclude_session_id=session.id
        )
        if remaining <= 0:
            raise _exhausted(
                "No subscription sessions remaining for this period",
                subscription_id=subscription.id,
                service_type_id=session.service_type_id,
            )

    # Subscription credits

    @BaseService.measure_operation("consume_credit")
    def consume_credit(
        self, credit_id: str, session: BookedSession, *, use_transaction: bool = True
    ) -> SubscriptionCredit:
        """available -> used, bound to ``session`` in both directions."""

        def _consume() -> SubscriptionCredit:
            credit = self.credit_repository.get_for_update(credit_id)
            if credit is None:
                raise NotFoundException(
                    "Credit not found", code="CREDIT_NOT_FOUND", details={"id": credit_id}
                )
            if not credit.is_available:
                raise _exhausted(
                    "Credit is not available", credit_id=credit.id, credit_status=credit.status
                )
            credit.status = CreditStatus.USED.value
            credit.used_at = datetime.now(timezone.utc)
            credit.session_id = session.id
            session.subscription_credit_id = credit.id
            session.subscription_id = credit.subscription_id
            self.db.flush()
            prometheus_metrics.record_ledger_mutation("credit_consume")
            return credit

        if use_transaction:
            with self.transaction():
                return _consume()
        return _consume()

    @BaseService.measure_operation("revert_credit")
    def revert_credit(self, credit_id: str, *, use_transaction: bool = True) -> SubscriptionCredit:
        """used -> available; clears used_at and the session binding on both sides."""

        def _revert() -> SubscriptionCredit:
            credit = self.credit_repository.get_for_update(credit_id)
            if credit is None:
                raise NotFoundException(
                    "Credit not found", code="CREDIT_NOT_FOUND", details={"id": credit_id}
                )
            if credit.status != CreditStatus.USED.value:
                raise ValidationException(
                    f"Only used credits can be reverted (status={credit.status})",
                    code="CREDIT_NOT_USED",
                    details={"id": credit.id},
                )
            if credit.session_id:
                session = self.session_repository.get_by_id(credit.session_id)
                if session is not None and session.subscription_credit_id == credit.id:
                    session.subscription_credit_id = None
            credit.status = CreditStatus.AVAILABLE.value
            credit.used_at = None
            credit.session_id = None
            self.db.flush()
            prometheus_metrics.record_ledger_mutation("credit_revert")
            return credit

        if use_transaction:
            with self.transaction():
                return _revert()
        return _revert()

    @BaseService.measure_operation("mint_credit")
    def mint_credit(
        self,
        subscription_id: str,
        service_type_id: str,
        value: Decimal | int | float,
        reason: str,
        *,
        use_transaction: bool = True,
    ) -> SubscriptionCredit:
        """Insert a fresh available credit."""

        def _mint() -> SubscriptionCredit:
            credit = self.credit_repository.create(
                subscription_id=subscription_id,
                service_type_id=service_type_id,
                status=CreditStatus.AVAILABLE.value,
                value=Decimal(str(value)),
                reason=reason,
            )
            prometheus_metrics.record_ledger_mutation("credit_mint")
            self.log_operation(
                "mint_credit", subscription_id=subscription_id, credit_id=credit.id, reason=reason
            )
            return credit

        if use_transaction:
            with self.transaction():
                return _mint()
        return _mint()

    @BaseService.measure_operation("provision_credits")
    def provision_credits(
        self,
        subscription_id: str,
        service_type_id: str,
        quantity: int,
        *,
        reason: str = "provisioned",
        value: Optional[Decimal] = None,
        use_transaction: bool = True,
    ) -> List[SubscriptionCredit]:
        """Mint ``quantity`` credits valued at the allocation's cost unless given."""
        if quantity <= 0:
            raise ValidationException("quantity must be positive", code="INVALID_QUANTITY")

        def _provision() -> List[SubscriptionCredit]:
            subscription = self.subscription_repository.get_with_allocations(subscription_id)
            if subscription is None:
                raise NotFoundException(
                    "Subscription not found",
                    code="SUBSCRIPTION_NOT_FOUND",
                    details={"id": subscription_id},
                )
            allocation = subscription.allocation_for(service_type_id)
            if allocation is None:
                raise ValidationException(
                    "Subscription does not cover this service type",
                    code="NO_ALLOCATION",
                    details={"service_type_id": service_type_id},
                )
            unit_value = value if value is not None else allocation.cost_per_session
            return [
                self.mint_credit(
                    subscription_id, service_type_id, unit_value, reason, use_transaction=False
                )
                for _ in range(quantity)
            ]

        if use_transaction:
            with self.transaction():
                return _provision()
        return _provision()

    @BaseService.measure_operation("forfeit_credits")
    def forfeit_credits(self, credit_ids: Iterable[str], *, use_transaction: bool = True) -> int:
        """Bulk available -> forfeited. Rows in any other status are left alone."""

        def _forfeit() -> int:
            now = datetime.now(timezone.utc)
            forfeited = 0
            for credit in self.credit_repository.get_many_for_update(credit_ids):
                if not credit.is_available:
                    continue
                credit.status = CreditStatus.FORFEITED.value
                credit.forfeited_at = now
                forfeited += 1
            self.db.flush()
            prometheus_metrics.record_ledger_mutation("credit_forfeit", forfeited)
            return forfeited

        if use_transaction:
            with self.transaction():
                return _forfeit()
        return _forfeit()

    def credit_value_for(self, subscription_id: str, service_type_id: str) -> Decimal:
        """Allocation cost used when minting a replacement credit (0 if missing)."""
        subscription = self.subscription_repository.get_with_allocations(subscription_id)
        allocation = subscription.allocation_for(service_type_id) if subscription else None
        if allocation is None:
            return Decimal("0")
        return Decimal(str(allocation.cost_per_session))
