# backend/booking_engine/models/session.py
"""
Session model.

A BookedSession is one committed hour of provider time for a client.
Rows are never deleted; history is kept through terminal statuses:

    scheduled -> completed | cancelled_late | cancelled_early | no_show

The entitlement behind a session is at most one of:
- pack_id: consumes one unit of a SessionPack
- subscription_credit_id: consumed a discrete SubscriptionCredit row
- subscription_id alone: consumed the subscription's periodic allowance
"""

from datetime import datetime, timezone
import logging
from typing import Any, Optional

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import ulid

from ..core.enums import CancellationReason, SessionStatus
from ..core.timezone_utils import ensure_utc
from ..database import Base

logger = logging.getLogger(__name__)


class BookedSession(Base):
    __tablename__ = "sessions"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))

    provider_id = Column(String(26), ForeignKey("providers.id"), nullable=False)
    client_id = Column(String(26), ForeignKey("clients.id"), nullable=False, index=True)
    service_type_id = Column(String(26), ForeignKey("service_types.id"), nullable=False)

    # Stored in UTC
    start_at = Column(DateTime(timezone=True), nullable=False)
    end_at = Column(DateTime(timezone=True), nullable=False)
    duration_minutes = Column(Integer, nullable=False, default=60)

    status = Column(String(20), nullable=False, default=SessionStatus.SCHEDULED.value)

    # Entitlement reference
    pack_id = Column(String(26), ForeignKey("session_packs.id"), nullable=True, index=True)
    subscription_id = Column(String(26), ForeignKey("subscriptions.id"), nullable=True, index=True)
    subscription_credit_id = Column(String(26), ForeignKey("subscription_credits.id"), nullable=True)

    recurring_schedule_id = Column(String(26), ForeignKey("recurring_schedules.id"), nullable=True)
    idempotency_key = Column(String(128), nullable=True, index=True)
    notes = Column(Text, nullable=True)

    # Lifecycle
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
    completed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_by_id = Column(String(26), nullable=True)
    cancellation_reason = Column(String(20), nullable=True)

    pack = relationship("SessionPack", back_populates="sessions")
    subscription = relationship("Subscription")
    subscription_credit = relationship("SubscriptionCredit", foreign_keys=[subscription_credit_id])

    __table_args__ = (
        CheckConstraint(
            "status IN ('scheduled', 'completed', 'cancelled_late', 'cancelled_early', 'no_show')",
            name="ck_sessions_status",
        ),
        CheckConstraint(
            "cancellation_reason IS NULL OR cancellation_reason IN ('penalty', 'no_penalty')",
            name="ck_sessions_cancellation_reason",
        ),
        CheckConstraint(
            "pack_id IS NULL OR (subscription_id IS NULL AND subscription_credit_id IS NULL)",
            name="ck_sessions_single_entitlement",
        ),
        CheckConstraint("duration_minutes > 0", name="ck_sessions_duration_positive"),
        Index("ix_sessions_provider_start", "provider_id", "start_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<BookedSession {self.id}: provider={self.provider_id}, client={self.client_id}, "
            f"start={self.start_at}, status={self.status}>"
        )

    @property
    def start_utc(self) -> datetime:
        return ensure_utc(self.start_at)

    @property
    def end_utc(self) -> datetime:
        return ensure_utc(self.end_at)

    @property
    def is_scheduled(self) -> bool:
        return self.status == SessionStatus.SCHEDULED.value

    @property
    def is_penalty_cancelled(self) -> bool:
        return self.cancellation_reason == CancellationReason.PENALTY.value

    @property
    def entitlement_ref(self) -> Optional[tuple[str, str]]:
        if self.pack_id:
            return ("pack", self.pack_id)
        if self.subscription_credit_id:
            return ("credit", self.subscription_credit_id)
        if self.subscription_id:
            return ("subscription", self.subscription_id)
        return None

    def complete(self) -> None:
        self.status = SessionStatus.COMPLETED.value
        self.completed_at = datetime.now(timezone.utc)
        logger.info(f"Session {self.id} marked as completed")

    def mark_no_show(self) -> None:
        self.status = SessionStatus.NO_SHOW.value
        logger.info(f"Session {self.id} marked as no-show")

    def cancel(self, *, penalized: bool, cancelled_by_id: str, now: datetime) -> None:
        if penalized:
            self.status = SessionStatus.CANCELLED_LATE.value
            self.cancellation_reason = CancellationReason.PENALTY.value
        else:
            self.status = SessionStatus.CANCELLED_EARLY.value
            self.cancellation_reason = CancellationReason.NO_PENALTY.value
        self.cancelled_at = now
        self.cancelled_by_id = cancelled_by_id
        logger.info(f"Session {self.id} cancelled by {cancelled_by_id} (penalized={penalized})")

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "provider_id": self.provider_id,
            "client_id": self.client_id,
            "service_type_id": self.service_type_id,
            "start_at": self.start_utc.isoformat() if self.start_at else None,
            "end_at": self.end_utc.isoformat() if self.end_at else None,
            "duration_minutes": self.duration_minutes,
            "status": self.status,
            "pack_id": self.pack_id,
            "subscription_id": self.subscription_id,
            "subscription_credit_id": self.subscription_credit_id,
            "cancellation_reason": self.cancellation_reason,
        }
