# backend/booking_engine/models/availability.py
"""
Availability models.

AvailabilityTemplate is a recurring weekly window; AvailabilityException is a
one-off override for a single date, tagged by a single ``kind`` column:

- full_day_block: no times; clears the whole day
- partial_block: [start_time, end_time) removed from the day
- extra_slot: [start_time, end_time) added to the day

Times are wall-clock in the provider's timezone. An end_time of 00:00
means the end of the day.
"""

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Time,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import ulid

from ..core.enums import ExceptionKind, Weekday
from ..database import Base


class AvailabilityTemplate(Base):
    __tablename__ = "availability_templates"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    provider_id = Column(String(26), ForeignKey("providers.id"), nullable=False)
    weekday = Column(Integer, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    provider = relationship("Provider")

    __table_args__ = (
        CheckConstraint("weekday >= 0 AND weekday <= 6", name="ck_template_weekday"),
        Index("ix_availability_templates_provider_weekday", "provider_id", "weekday"),
    )

    @property
    def weekday_enum(self) -> Weekday:
        return Weekday(self.weekday)

    def __repr__(self) -> str:
        return (
            f"<AvailabilityTemplate {self.id}: {self.weekday_enum.name} "
            f"{self.start_time}-{self.end_time}>"
        )


class AvailabilityException(Base):
    __tablename__ = "availability_exceptions"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    provider_id = Column(String(26), ForeignKey("providers.id"), nullable=False)
    exception_date = Column(Date, nullable=False)
    kind = Column(String(20), nullable=False)
    start_time = Column(Time, nullable=True)
    end_time = Column(Time, nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    provider = relationship("Provider")

    __table_args__ = (
        CheckConstraint(
            "kind IN ('full_day_block', 'partial_block', 'extra_slot')",
            name="ck_availability_exception_kind",
        ),
        CheckConstraint(
            "(kind = 'full_day_block' AND start_time IS NULL AND end_time IS NULL) "
            "OR (kind <> 'full_day_block' AND start_time IS NOT NULL AND end_time IS NOT NULL)",
            name="ck_availability_exception_range",
        ),
        Index("ix_availability_exceptions_provider_date", "provider_id", "exception_date"),
    )

    @property
    def kind_enum(self) -> ExceptionKind:
        return ExceptionKind(self.kind)

    def __repr__(self) -> str:
        return f"<AvailabilityException {self.id}: {self.exception_date} {self.kind}>"
