from datetime import date, datetime, time, timezone

import pytest
from sqlalchemy.exc import IntegrityError

from booking_engine.core.enums import (
    CancellationReason,
    CreditStatus,
    ExceptionKind,
    SessionStatus,
    Weekday,
)
from booking_engine.models import SubscriptionCredit


class TestBookedSession:
    def test_naive_storage_reads_back_as_utc(self, world):
        session = world.add_session(datetime(2026, 3, 2, 9, tzinfo=timezone.utc))
        session.start_at = session.start_at.replace(tzinfo=None)

        assert session.start_utc == datetime(2026, 3, 2, 9, tzinfo=timezone.utc)

    def test_cancel_with_penalty(self, world):
        session = world.add_session(world.at(world.next_weekday(0), 9))
        now = datetime.now(timezone.utc)

        session.cancel(penalized=True, cancelled_by_id=world.client.id, now=now)

        assert session.status == SessionStatus.CANCELLED_LATE.value
        assert session.is_penalty_cancelled is True
        assert session.cancelled_at == now
        assert session.cancelled_by_id == world.client.id

    def test_cancel_without_penalty(self, world):
        session = world.add_session(world.at(world.next_weekday(0), 9))

        session.cancel(penalized=False, cancelled_by_id=world.provider.id, now=datetime.now(timezone.utc))

        assert session.status == SessionStatus.CANCELLED_EARLY.value
        assert session.cancellation_reason == CancellationReason.NO_PENALTY.value
        assert session.is_scheduled is False

    def test_complete_and_no_show(self, world):
        done = world.add_session(world.at(world.next_weekday(0), 9))
        missed = world.add_session(world.at(world.next_weekday(0), 11))

        done.complete()
        missed.mark_no_show()

        assert done.status == SessionStatus.COMPLETED.value
        assert done.completed_at is not None
        assert missed.status == SessionStatus.NO_SHOW.value

    def test_to_dict(self, world):
        pack = world.add_pack()
        session = world.add_session(datetime(2026, 3, 2, 9, tzinfo=timezone.utc), pack_id=pack.id)

        data = session.to_dict()

        assert data["id"] == session.id
        assert data["start_at"] == "2026-03-02T09:00:00+00:00"
        assert data["end_at"] == "2026-03-02T10:00:00+00:00"
        assert data["pack_id"] == pack.id
        assert data["subscription_id"] is None
        assert data["status"] == "scheduled"

    def test_pack_and_subscription_are_exclusive(self, world):
        pack = world.add_pack()
        subscription = world.add_subscription()

        with pytest.raises(IntegrityError):
            world.add_session(
                world.at(world.next_weekday(0), 9),
                pack_id=pack.id,
                subscription_id=subscription.id,
            )
        world.db.rollback()


class TestEntitlementModels:
    def test_pack_expiry_is_inclusive(self, world):
        pack = world.add_pack(expiry_date=date(2026, 3, 31))

        assert pack.is_active is True
        assert pack.is_expired(date(2026, 3, 31)) is False
        assert pack.is_expired(date(2026, 4, 1)) is True

    def test_pack_without_expiry_never_expires(self, world):
        assert world.add_pack().is_expired(date(2099, 1, 1)) is False

    def test_allocation_lookup(self, world):
        subscription = world.add_subscription(quantity_per_period=2)

        allocation = subscription.allocation_for(world.service_type.id)

        assert allocation is not None
        assert allocation.quantity_per_period == 2
        assert subscription.allocation_for("01UNKNOWNSERVICETYPE000000") is None

    def test_credit_availability(self, world):
        subscription = world.add_subscription()
        available = world.add_credit(subscription)
        used = world.add_credit(subscription, status=CreditStatus.USED)

        assert available.is_available is True
        assert used.is_available is False
        assert "used" in repr(used)

    def test_used_credit_requires_session(self, world):
        subscription = world.add_subscription()
        world.db.add(
            SubscriptionCredit(
                subscription_id=subscription.id,
                service_type_id=world.service_type.id,
                status=CreditStatus.USED.value,
                reason="provisioned",
            )
        )
        with pytest.raises(IntegrityError):
            world.db.flush()
        world.db.rollback()


class TestAvailabilityModels:
    def test_template_weekday_enum(self, world):
        template = world.add_template(2, time(9), time(17))

        assert template.weekday_enum == Weekday.WEDNESDAY
        assert "WEDNESDAY" in repr(template)

    def test_exception_kind_enum(self, world):
        exception = world.add_exception(date(2026, 3, 2), ExceptionKind.FULL_DAY_BLOCK)
        assert exception.kind_enum == ExceptionKind.FULL_DAY_BLOCK

    def test_partial_block_without_times_is_rejected(self, world):
        with pytest.raises(IntegrityError):
            world.add_exception(date(2026, 3, 2), ExceptionKind.PARTIAL_BLOCK)
        world.db.rollback()

    def test_preference_weekday_enum(self, world):
        preference = world.add_preference(6, time(10), flex_minutes=30)

        assert preference.weekday_enum == Weekday.SUNDAY
        assert preference.flex_minutes == 30


class TestEntitlementRef:
    def test_one_off(self, world):
        assert world.add_session(world.at(world.next_weekday(0), 9)).entitlement_ref is None

    def test_pack(self, world):
        pack = world.add_pack()
        session = world.add_session(world.at(world.next_weekday(0), 9), pack_id=pack.id)
        assert session.entitlement_ref == ("pack", pack.id)

    def test_credit_wins_over_subscription(self, world):
        subscription = world.add_subscription()
        credit = world.add_credit(subscription)
        session = world.add_session(
            world.at(world.next_weekday(0), 9),
            subscription_id=subscription.id,
            subscription_credit_id=credit.id,
        )
        assert session.entitlement_ref == ("credit", credit.id)

    def test_allowance(self, world):
        subscription = world.add_subscription()
        session = world.add_session(world.at(world.next_weekday(0), 9), subscription_id=subscription.id)
        assert session.entitlement_ref == ("subscription", subscription.id)
