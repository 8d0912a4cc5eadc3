from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest
import pytz

from booking_engine.core.enums import (
    BillingCycle,
    CancellationReason,
    CreditStatus,
    PackStatus,
    SessionStatus,
    SubscriptionStatus,
)
from booking_engine.core.exceptions import (
    BookingConflictException,
    ConflictReason,
    NotFoundException,
    ValidationException,
)
from booking_engine.services.credit_ledger import CreditLedger


@pytest.fixture
def ledger(unit_db):
    return CreditLedger(unit_db)


def _days_ago(days: int) -> datetime:
    return datetime.now(timezone.utc) - timedelta(days=days)


class TestPackAccounting:
    def test_remaining_counts_consuming_sessions_only(self, world, ledger):
        pack = world.add_pack(total_sessions=5)
        monday = world.next_weekday(0)
        world.add_session(world.at(monday, 9), pack_id=pack.id)
        world.add_session(world.at(monday, 10), status=SessionStatus.COMPLETED, pack_id=pack.id)
        world.add_session(world.at(monday, 11), status=SessionStatus.NO_SHOW, pack_id=pack.id)
        world.add_session(
            world.at(monday, 12),
            status=SessionStatus.CANCELLED_LATE,
            pack_id=pack.id,
            cancellation_reason=CancellationReason.PENALTY.value,
        )
        world.add_session(
            world.at(monday, 13),
            status=SessionStatus.CANCELLED_EARLY,
            pack_id=pack.id,
            cancellation_reason=CancellationReason.NO_PENALTY.value,
        )

        assert ledger.pack_remaining(pack) == 1
        assert ledger.pack_remaining(pack.id) == 1

    def test_remaining_for_unknown_pack(self, world, ledger):
        with pytest.raises(NotFoundException):
            ledger.pack_remaining("01MISSINGPACK0000000000000")

    def test_try_consume_allows_while_units_remain(self, world, ledger):
        pack = world.add_pack(total_sessions=2)
        world.add_session(world.at(world.next_weekday(0), 9), pack_id=pack.id)

        assert ledger.try_consume_pack_session(pack.id).id == pack.id

    def test_try_consume_rejects_a_used_up_pack(self, world, ledger):
        pack = world.add_pack(total_sessions=1)
        world.add_session(world.at(world.next_weekday(0), 9), pack_id=pack.id)

        with pytest.raises(BookingConflictException) as exc:
            ledger.try_consume_pack_session(pack.id)

        assert exc.value.reason == ConflictReason.ENTITLEMENT_EXHAUSTED
        assert exc.value.details["total_sessions"] == 1

    def test_try_consume_rejects_archived_pack(self, world, ledger):
        pack = world.add_pack(status=PackStatus.ARCHIVED.value)
        with pytest.raises(BookingConflictException):
            ledger.try_consume_pack_session(pack.id)

    def test_try_consume_rejects_expired_pack(self, world, ledger):
        expiry = date.today() + timedelta(days=3)
        pack = world.add_pack(expiry_date=expiry)

        ledger.try_consume_pack_session(pack.id, at=expiry)
        with pytest.raises(BookingConflictException) as exc:
            ledger.try_consume_pack_session(pack.id, at=expiry + timedelta(days=1))
        assert "expiry_date" in exc.value.details

    def test_try_consume_unknown_pack(self, world, ledger):
        with pytest.raises(NotFoundException):
            ledger.try_consume_pack_session("01MISSINGPACK0000000000000")

    def test_release_is_a_no_op(self, world, ledger):
        pack = world.add_pack(total_sessions=1)
        ledger.release_pack_session(pack.id)
        assert ledger.pack_remaining(pack) == 1


class TestPackArchival:
    def test_archives_when_fully_consumed(self, world, ledger):
        pack = world.add_pack(total_sessions=1)
        world.add_session(world.at(world.next_weekday(0), 9), status=SessionStatus.COMPLETED, pack_id=pack.id)

        assert ledger.archive_pack_if_exhausted(pack.id) is True
        assert pack.status == PackStatus.ARCHIVED.value

    def test_keeps_pack_with_scheduled_sessions(self, world, ledger):
        pack = world.add_pack(total_sessions=1)
        world.add_session(world.at(world.next_weekday(0), 9), pack_id=pack.id)

        assert ledger.archive_pack_if_exhausted(pack.id) is False
        assert pack.status == PackStatus.ACTIVE.value

    def test_keeps_pack_with_units_left(self, world, ledger):
        pack = world.add_pack(total_sessions=3)
        assert ledger.archive_pack_if_exhausted(pack.id) is False


class TestPackStats:
    def test_breakdown(self, world, ledger):
        pack = world.add_pack(total_sessions=6)
        monday = world.next_weekday(0)
        world.add_session(world.at(monday, 9), pack_id=pack.id)
        world.add_session(world.at(monday, 10), status=SessionStatus.COMPLETED, pack_id=pack.id)
        world.add_session(
            world.at(monday, 11),
            status=SessionStatus.CANCELLED_LATE,
            pack_id=pack.id,
            cancellation_reason=CancellationReason.PENALTY.value,
        )
        world.add_session(
            world.at(monday, 12),
            status=SessionStatus.CANCELLED_EARLY,
            pack_id=pack.id,
            cancellation_reason=CancellationReason.NO_PENALTY.value,
        )

        stats = ledger.pack_stats(pack.id)

        assert stats.consumed == 3
        assert stats.remaining == 3
        assert stats.scheduled == 1
        assert stats.completed == 1
        assert stats.cancelled_penalty == 1
        assert stats.cancelled_no_penalty == 1


class TestBillingPeriod:
    def test_weekly_period_is_anchored_at_start_date(self, world):
        subscription = world.add_subscription(start_date=date(2026, 3, 4))

        start, end = CreditLedger.billing_period(
            subscription, datetime(2026, 3, 13, 15, tzinfo=timezone.utc), pytz.UTC
        )

        assert start == pytz.UTC.localize(datetime(2026, 3, 11))
        assert end == pytz.UTC.localize(datetime(2026, 3, 18))

    def test_fortnightly_period(self, world):
        subscription = world.add_subscription(
            billing_cycle=BillingCycle.FORTNIGHTLY, start_date=date(2026, 3, 4)
        )

        start, end = CreditLedger.billing_period(
            subscription, datetime(2026, 3, 20, tzinfo=timezone.utc), pytz.UTC
        )

        assert (start.date(), end.date()) == (date(2026, 3, 18), date(2026, 4, 1))

    def test_monthly_period_is_the_calendar_month(self, world):
        subscription = world.add_subscription(
            billing_cycle=BillingCycle.MONTHLY, start_date=date(2026, 1, 15)
        )

        start, end = CreditLedger.billing_period(
            subscription, datetime(2026, 12, 31, 23, tzinfo=timezone.utc), pytz.UTC
        )

        assert (start.date(), end.date()) == (date(2026, 12, 1), date(2027, 1, 1))

    def test_bounds_are_local_midnights(self, world):
        subscription = world.add_subscription(
            billing_cycle=BillingCycle.MONTHLY, start_date=date(2026, 1, 1)
        )
        tz = pytz.timezone("America/New_York")

        # 03:00 UTC on Feb 1 is still Jan 31 in New York.
        start, _ = CreditLedger.billing_period(
            subscription, datetime(2026, 2, 1, 3, tzinfo=timezone.utc), tz
        )

        assert start == tz.localize(datetime(2026, 1, 1))


class TestSubscriptionSource:
    def test_prefers_oldest_available_credit(self, world, ledger):
        subscription = world.add_subscription()
        world.add_credit(subscription, created_at=_days_ago(1))
        oldest = world.add_credit(subscription, created_at=_days_ago(5))

        _, credit = ledger.select_subscription_source(
            subscription.id, world.service_type.id, world.at(world.next_weekday(0), 9), pytz.UTC
        )

        assert credit.id == oldest.id

    def test_falls_back_to_allowance(self, world, ledger):
        subscription = world.add_subscription(quantity_per_period=1)

        selected, credit = ledger.select_subscription_source(
            subscription.id, world.service_type.id, world.at(world.next_weekday(0), 9), pytz.UTC
        )

        assert selected.id == subscription.id
        assert credit is None

    def test_exhausted_allowance_is_a_conflict(self, world, ledger):
        subscription = world.add_subscription(quantity_per_period=1)
        start = world.at(world.next_weekday(0), 9)
        world.add_session(start, subscription_id=subscription.id)

        with pytest.raises(BookingConflictException) as exc:
            ledger.select_subscription_source(
                subscription.id, world.service_type.id, start + timedelta(hours=2), pytz.UTC
            )
        assert exc.value.reason == ConflictReason.ENTITLEMENT_EXHAUSTED

    def test_inactive_subscription(self, world, ledger):
        subscription = world.add_subscription(status=SubscriptionStatus.PAUSED)
        with pytest.raises(BookingConflictException):
            ledger.select_subscription_source(
                subscription.id, world.service_type.id, world.at(world.next_weekday(0), 9), pytz.UTC
            )

    def test_date_before_term(self, world, ledger):
        monday = world.next_weekday(0)
        subscription = world.add_subscription(start_date=monday + timedelta(days=7))
        with pytest.raises(BookingConflictException):
            ledger.select_subscription_source(
                subscription.id, world.service_type.id, world.at(monday, 9), pytz.UTC
            )

    def test_uncovered_service_type(self, world, ledger):
        subscription = world.add_subscription()
        with pytest.raises(BookingConflictException):
            ledger.select_subscription_source(
                subscription.id, "01OTHERSERVICE000000000000", world.at(world.next_weekday(0), 9), pytz.UTC
            )

    def test_unknown_subscription(self, world, ledger):
        with pytest.raises(NotFoundException):
            ledger.select_subscription_source(
                "01MISSINGSUB00000000000000", world.service_type.id, world.at(world.next_weekday(0), 9), pytz.UTC
            )


class TestAllowance:
    def test_credit_backed_sessions_do_not_use_allowance(self, world, ledger):
        subscription = world.add_subscription(quantity_per_period=2)
        start = world.at(world.next_weekday(0), 9)
        credit = world.add_credit(subscription, status=CreditStatus.USED)
        world.add_session(start, subscription_id=subscription.id, subscription_credit_id=credit.id)
        world.add_session(start + timedelta(hours=2), subscription_id=subscription.id)

        assert ledger.allowance_remaining(subscription, world.service_type.id, start, pytz.UTC) == 1

    def test_no_allocation_means_no_allowance(self, world, ledger):
        subscription = world.add_subscription()
        assert ledger.allowance_remaining(subscription, "01OTHERSERVICE000000000000", datetime.now(timezone.utc)) == 0


class TestCreditLifecycle:
    def test_consume_binds_both_sides(self, world, ledger):
        subscription = world.add_subscription()
        credit = world.add_credit(subscription)
        session = world.add_session(world.at(world.next_weekday(0), 9))

        consumed = ledger.consume_credit(credit.id, session)

        assert consumed.status == CreditStatus.USED.value
        assert consumed.used_at is not None
        assert consumed.session_id == session.id
        assert session.subscription_credit_id == credit.id
        assert session.subscription_id == subscription.id

    def test_consume_rejects_a_used_credit(self, world, ledger):
        subscription = world.add_subscription()
        credit = world.add_credit(subscription, status=CreditStatus.USED)
        session = world.add_session(world.at(world.next_weekday(0), 9))

        with pytest.raises(BookingConflictException):
            ledger.consume_credit(credit.id, session)

    def test_revert_restores_availability(self, world, ledger):
        subscription = world.add_subscription()
        credit = world.add_credit(subscription)
        session = world.add_session(world.at(world.next_weekday(0), 9))
        ledger.consume_credit(credit.id, session)

        reverted = ledger.revert_credit(credit.id)

        assert reverted.status == CreditStatus.AVAILABLE.value
        assert reverted.used_at is None
        assert reverted.session_id is None
        assert session.subscription_credit_id is None

    def test_revert_requires_a_used_credit(self, world, ledger):
        subscription = world.add_subscription()
        credit = world.add_credit(subscription)
        with pytest.raises(ValidationException):
            ledger.revert_credit(credit.id)

    def test_mint(self, world, ledger):
        subscription = world.add_subscription()

        credit = ledger.mint_credit(subscription.id, world.service_type.id, 35, "cancellation")

        assert credit.status == CreditStatus.AVAILABLE.value
        assert credit.value == Decimal("35")
        assert credit.reason == "cancellation"

    def test_provision_uses_allocation_cost(self, world, ledger):
        subscription = world.add_subscription(cost_per_session=Decimal("55.00"))

        credits = ledger.provision_credits(subscription.id, world.service_type.id, 3)

        assert len(credits) == 3
        assert {c.value for c in credits} == {Decimal("55.00")}

    def test_provision_rejects_non_positive_quantity(self, world, ledger):
        subscription = world.add_subscription()
        with pytest.raises(ValidationException):
            ledger.provision_credits(subscription.id, world.service_type.id, 0)

    def test_provision_requires_allocation(self, world, ledger):
        subscription = world.add_subscription()
        with pytest.raises(ValidationException):
            ledger.provision_credits(subscription.id, "01OTHERSERVICE000000000000", 1)

    def test_forfeit_only_touches_available_credits(self, world, ledger):
        subscription = world.add_subscription()
        available = world.add_credit(subscription)
        used = world.add_credit(subscription, status=CreditStatus.USED)

        assert ledger.forfeit_credits([available.id, used.id]) == 1
        assert available.status == CreditStatus.FORFEITED.value
        assert available.forfeited_at is not None
        assert used.status == CreditStatus.USED.value

    def test_credit_value_for(self, world, ledger):
        subscription = world.add_subscription(cost_per_session=Decimal("42.50"))
        assert ledger.credit_value_for(subscription.id, world.service_type.id) == Decimal("42.50")
        assert ledger.credit_value_for(subscription.id, "01OTHERSERVICE000000000000") == Decimal("0")
