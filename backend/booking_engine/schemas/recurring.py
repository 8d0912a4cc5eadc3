import datetime as dt
from typing import List, Optional

from pydantic import Field, field_validator, model_validator

from ..core.enums import OccurrenceOutcome, OccurrenceStatus, ScheduleAction, Weekday
from ..utils.time_utils import format_hhmm, parse_hhmm
from ._strict_base import StrictModel, StrictRequestModel
from .booking import EntitlementSelector


class TimePreferenceCreate(StrictRequestModel):
    weekday: Weekday
    start_time: dt.time
    flex_minutes: int = Field(default=0, ge=0, le=180)

    @field_validator("weekday", mode="before")
    @classmethod
    def _parse_weekday(cls, value: object) -> Weekday:
        return Weekday.parse(value)

    @field_validator("start_time", mode="before")
    @classmethod
    def _parse_time(cls, value: object) -> object:
        if isinstance(value, str):
            return parse_hhmm(value)
        return value


class ExcludedOccurrence(StrictRequestModel):
    """An occurrence the caller removed after preview, keyed by its preferred slot."""

    date: dt.date
    time: str

    @field_validator("time")
    @classmethod
    def _normalize_time(cls, value: str) -> str:
        return format_hhmm(parse_hhmm(value))

    @property
    def key(self) -> tuple[dt.date, str]:
        return (self.date, self.time)


class GenerateScheduleRequest(StrictRequestModel):
    action: ScheduleAction
    provider_id: str = Field(min_length=1)
    client_id: str = Field(min_length=1)
    service_type_id: str = Field(min_length=1)
    preference_ids: List[str] = Field(min_length=1)
    start_date: dt.date
    end_date: dt.date
    entitlement_policy: EntitlementSelector = Field(default_factory=EntitlementSelector)
    excluded_occurrences: List[ExcludedOccurrence] = Field(default_factory=list)

    @field_validator("entitlement_policy", mode="before")
    @classmethod
    def _parse_policy(cls, value: object) -> EntitlementSelector:
        return EntitlementSelector.parse(value)

    @field_validator("excluded_occurrences", mode="before")
    @classmethod
    def _parse_exclusions(cls, value: object) -> object:
        if value is None:
            return []
        parsed = []
        for item in value:  # type: ignore[union-attr]
            if isinstance(item, (tuple, list)) and len(item) == 2:
                parsed.append({"date": item[0], "time": item[1]})
            else:
                parsed.append(item)
        return parsed

    @model_validator(mode="after")
    def _check_range(self) -> "GenerateScheduleRequest":
        if self.end_date <= self.start_date:
            raise ValueError("end_date must be after start_date")
        return self


class ProposedOccurrence(StrictModel):
    date: dt.date
    time: str
    start_at: dt.datetime
    weekday: Weekday
    preference_id: str
    status: OccurrenceStatus
    message: Optional[str] = None
    adjusted: bool = False
    excluded: bool = False

    @property
    def key(self) -> tuple[dt.date, str]:
        return (self.date, self.time)


class ScheduleStats(StrictModel):
    total_proposed: int
    ok: int
    warnings: int
    conflicts: int
    excluded: int


class SchedulePreview(StrictModel):
    occurrences: List[ProposedOccurrence]
    stats: ScheduleStats


class OccurrenceResult(StrictModel):
    date: dt.date
    time: str
    start_at: dt.datetime
    status: OccurrenceOutcome
    session_id: Optional[str] = None
    error_code: Optional[str] = None
    message: Optional[str] = None


class ScheduleConfirmation(StrictModel):
    schedule_id: str
    created_count: int
    failed_count: int
    results: List[OccurrenceResult]
    stopped_early: bool = False
    replayed: bool = False
