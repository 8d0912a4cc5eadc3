# backend/booking_engine/models/schedule.py
"""
Recurring scheduling models: client weekly time preferences and the
schedules generated from them.
"""

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Time,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from sqlalchemy.types import JSON
import ulid

from ..core.enums import Weekday
from ..database import Base


class ClientTimePreference(Base):
    __tablename__ = "client_time_preferences"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    provider_id = Column(String(26), ForeignKey("providers.id"), nullable=False)
    client_id = Column(String(26), ForeignKey("clients.id"), nullable=False, index=True)
    weekday = Column(Integer, nullable=False)
    start_time = Column(Time, nullable=False)
    flex_minutes = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    recurring_schedule_id = Column(String(26), ForeignKey("recurring_schedules.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        CheckConstraint("weekday >= 0 AND weekday <= 6", name="ck_preference_weekday"),
        CheckConstraint("flex_minutes >= 0 AND flex_minutes <= 180", name="ck_preference_flex"),
    )

    @property
    def weekday_enum(self) -> Weekday:
        return Weekday(self.weekday)

    def __repr__(self) -> str:
        return (
            f"<ClientTimePreference {self.id}: {self.weekday_enum.name} {self.start_time} "
            f"±{self.flex_minutes}m>"
        )


class RecurringSchedule(Base):
    __tablename__ = "recurring_schedules"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    provider_id = Column(String(26), ForeignKey("providers.id"), nullable=False)
    client_id = Column(String(26), ForeignKey("clients.id"), nullable=False)
    service_type_id = Column(String(26), ForeignKey("service_types.id"), nullable=False)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    entitlement_policy = Column(String(64), nullable=False, default="none")
    preference_ids = Column(JSON, nullable=False, default=list)
    status = Column(String(20), nullable=False, default="active")
    idempotency_key = Column(String(128), nullable=False, unique=True)
    created_by_id = Column(String(26), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    preferences = relationship("ClientTimePreference")

    def __repr__(self) -> str:
        return f"<RecurringSchedule {self.id}: {self.start_date}..{self.end_date}>"
