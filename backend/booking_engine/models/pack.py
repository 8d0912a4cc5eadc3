# backend/booking_engine/models/pack.py
"""
SessionPack model.

A pack is a fixed-size prepaid bundle of sessions. There is deliberately no
stored remaining counter: remaining = total_sessions minus the number of
sessions on the pack that still consume (scheduled, completed, no_show, or
cancelled with a penalty). See CreditLedger.pack_remaining().
"""

from datetime import date
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import ulid

from ..core.enums import PackStatus
from ..database import Base


class SessionPack(Base):
    __tablename__ = "session_packs"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    provider_id = Column(String(26), ForeignKey("providers.id"), nullable=False)
    client_id = Column(String(26), ForeignKey("clients.id"), nullable=False, index=True)
    service_type_id = Column(String(26), ForeignKey("service_types.id"), nullable=True)

    total_sessions = Column(Integer, nullable=False)
    amount_paid = Column(Numeric(10, 2), nullable=False, default=0)
    purchase_date = Column(Date, nullable=False)
    expiry_date = Column(Date, nullable=True)
    status = Column(String(20), nullable=False, default=PackStatus.ACTIVE.value)

    # Cancellation bookkeeping
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    cancellation_mode = Column(String(20), nullable=True)
    forfeited_sessions = Column(Integer, nullable=False, default=0)
    refunded_sessions = Column(Integer, nullable=False, default=0)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    sessions = relationship("BookedSession", back_populates="pack")

    __table_args__ = (
        CheckConstraint("total_sessions > 0", name="ck_packs_total_positive"),
        CheckConstraint("amount_paid >= 0", name="ck_packs_amount_non_negative"),
        CheckConstraint("status IN ('active', 'archived')", name="ck_packs_status"),
        CheckConstraint(
            "cancellation_mode IS NULL OR cancellation_mode IN ('forfeit', 'refund')",
            name="ck_packs_cancellation_mode",
        ),
    )

    @property
    def is_active(self) -> bool:
        return self.status == PackStatus.ACTIVE.value

    def is_expired(self, on_date: date) -> bool:
        expiry: Optional[date] = self.expiry_date
        return expiry is not None and on_date > expiry

    def __repr__(self) -> str:
        return f"<SessionPack {self.id}: client={self.client_id} total={self.total_sessions} {self.status}>"
