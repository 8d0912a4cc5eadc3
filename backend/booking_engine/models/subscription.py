# backend/booking_engine/models/subscription.py
"""
Subscription models.

A Subscription grants, per billing period, quantity_per_period sessions of
each allocated service type. Sessions may consume either the periodic
allowance directly (session.subscription_id only) or a discrete
SubscriptionCredit row (session.subscription_credit_id).
"""

from decimal import Decimal

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import ulid

from ..core.enums import BillingCycle, CreditStatus, SubscriptionStatus
from ..database import Base


class Subscription(Base):
    __tablename__ = "subscriptions"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    provider_id = Column(String(26), ForeignKey("providers.id"), nullable=False)
    client_id = Column(String(26), ForeignKey("clients.id"), nullable=False, index=True)
    status = Column(String(20), nullable=False, default=SubscriptionStatus.ACTIVE.value)
    billing_cycle = Column(String(20), nullable=False, default=BillingCycle.WEEKLY.value)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    allocations = relationship(
        "SubscriptionAllocation", back_populates="subscription", cascade="all, delete-orphan"
    )
    credits = relationship("SubscriptionCredit", back_populates="subscription")

    __table_args__ = (
        CheckConstraint(
            "status IN ('active', 'paused', 'ended', 'cancelled')", name="ck_subscriptions_status"
        ),
        CheckConstraint(
            "billing_cycle IN ('weekly', 'fortnightly', 'monthly')",
            name="ck_subscriptions_billing_cycle",
        ),
    )

    @property
    def is_active(self) -> bool:
        return self.status == SubscriptionStatus.ACTIVE.value

    def allocation_for(self, service_type_id: str) -> "SubscriptionAllocation | None":
        for allocation in self.allocations:
            if allocation.service_type_id == service_type_id:
                return allocation
        return None

    def __repr__(self) -> str:
        return f"<Subscription {self.id}: client={self.client_id} {self.status} {self.billing_cycle}>"


class SubscriptionAllocation(Base):
    __tablename__ = "subscription_allocations"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    subscription_id = Column(String(26), ForeignKey("subscriptions.id"), nullable=False)
    service_type_id = Column(String(26), ForeignKey("service_types.id"), nullable=False)
    quantity_per_period = Column(Integer, nullable=False)
    cost_per_session = Column(Numeric(10, 2), nullable=False, default=Decimal("0"))

    subscription = relationship("Subscription", back_populates="allocations")

    __table_args__ = (
        UniqueConstraint("subscription_id", "service_type_id", name="uq_allocation_service"),
        CheckConstraint("quantity_per_period >= 0", name="ck_allocation_quantity"),
        CheckConstraint("cost_per_session >= 0", name="ck_allocation_cost"),
    )


class SubscriptionCredit(Base):
    """One consumable unit. status: available -> used -> available (revert) | forfeited."""

    __tablename__ = "subscription_credits"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    subscription_id = Column(String(26), ForeignKey("subscriptions.id"), nullable=False)
    service_type_id = Column(String(26), ForeignKey("service_types.id"), nullable=False)
    status = Column(String(20), nullable=False, default=CreditStatus.AVAILABLE.value)
    value = Column(Numeric(10, 2), nullable=False, default=Decimal("0"))
    reason = Column(String(64), nullable=True)
    # Session currently holding this credit; no FK to avoid a cycle with sessions
    session_id = Column(String(26), nullable=True, index=True)
    used_at = Column(DateTime(timezone=True), nullable=True)
    forfeited_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    subscription = relationship("Subscription", back_populates="credits")

    __table_args__ = (
        CheckConstraint(
            "status IN ('available', 'used', 'forfeited')", name="ck_subscription_credits_status"
        ),
        CheckConstraint(
            "(status = 'used') = (session_id IS NOT NULL)", name="ck_subscription_credits_binding"
        ),
        Index(
            "ix_subscription_credits_lookup", "subscription_id", "service_type_id", "status"
        ),
    )

    @property
    def is_available(self) -> bool:
        return self.status == CreditStatus.AVAILABLE.value

    def __repr__(self) -> str:
        return f"<SubscriptionCredit {self.id}: {self.status} session={self.session_id}>"
