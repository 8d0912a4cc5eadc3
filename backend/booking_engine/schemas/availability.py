from datetime import date, datetime, time
from typing import Optional

from pydantic import Field, field_validator, model_validator

from ..core.enums import ExceptionKind, Weekday
from ..utils.time_utils import is_valid_range
from ._strict_base import StrictModel, StrictRequestModel


class BusySlot(StrictModel):
    """An occupied hour on a provider's calendar, as visible to the caller."""

    start_at: datetime
    end_at: datetime
    status: str
    session_id: Optional[str] = None
    is_own: bool = False


class TemplateCreate(StrictRequestModel):
    weekday: Weekday
    start_time: time
    end_time: time

    @field_validator("weekday", mode="before")
    @classmethod
    def _parse_weekday(cls, value: object) -> Weekday:
        return Weekday.parse(value)

    @model_validator(mode="after")
    def _check_range(self) -> "TemplateCreate":
        if not is_valid_range(self.start_time, self.end_time):
            raise ValueError("start_time must be before end_time")
        return self


class ExceptionCreate(StrictRequestModel):
    exception_date: date
    kind: ExceptionKind
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    notes: Optional[str] = Field(default=None, max_length=1000)

    @model_validator(mode="after")
    def _check_range(self) -> "ExceptionCreate":
        if self.kind == ExceptionKind.FULL_DAY_BLOCK:
            if self.start_time is not None or self.end_time is not None:
                raise ValueError("full_day_block exceptions take no times")
            return self
        if self.start_time is None or self.end_time is None:
            raise ValueError(f"{self.kind.value} exceptions require start_time and end_time")
        if not is_valid_range(self.start_time, self.end_time):
            raise ValueError("start_time must be before end_time")
        return self


class ResolveRequest(StrictRequestModel):
    date_from: date
    date_to: date

    @model_validator(mode="after")
    def _check_order(self) -> "ResolveRequest":
        if self.date_to < self.date_from:
            raise ValueError("date_to must not be before date_from")
        return self
