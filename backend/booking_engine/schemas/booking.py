"""Request/response DTOs for booking, lifecycle and cancellation operations."""

from datetime import datetime
from typing import Optional

from pydantic import Field, field_validator, model_validator

from ..core.enums import EntitlementKind, LedgerAction, SessionStatus
from ._strict_base import StrictModel, StrictRequestModel


class EntitlementSelector(StrictModel):
    """`none`, `pack:<id>` or `subscription:<id>`."""

    kind: EntitlementKind = EntitlementKind.NONE
    ref_id: Optional[str] = None

    @model_validator(mode="after")
    def _check_ref(self) -> "EntitlementSelector":
        if self.kind == EntitlementKind.NONE and self.ref_id:
            raise ValueError("entitlement 'none' takes no id")
        if self.kind != EntitlementKind.NONE and not self.ref_id:
            raise ValueError(f"entitlement '{self.kind.value}' requires an id")
        return self

    @classmethod
    def parse(cls, value: object) -> "EntitlementSelector":
        if isinstance(value, EntitlementSelector):
            return value
        if value is None:
            return cls()
        if isinstance(value, dict):
            return cls(**value)
        if isinstance(value, str):
            text = value.strip()
            if text in ("", EntitlementKind.NONE.value):
                return cls()
            kind, sep, ref_id = text.partition(":")
            if not sep:
                raise ValueError(f"Invalid entitlement selector: {value!r}")
            return cls(kind=EntitlementKind(kind.strip().lower()), ref_id=ref_id.strip())
        raise ValueError(f"Invalid entitlement selector: {value!r}")

    def __str__(self) -> str:
        if self.kind == EntitlementKind.NONE:
            return EntitlementKind.NONE.value
        return f"{self.kind.value}:{self.ref_id}"


def _require_aware(value: datetime) -> datetime:
    if value.tzinfo is None or value.utcoffset() is None:
        raise ValueError("start_at must be timezone-aware")
    return value


class BookSessionRequest(StrictRequestModel):
    provider_id: str = Field(min_length=1)
    client_id: str = Field(min_length=1)
    service_type_id: str = Field(min_length=1)
    start_at: datetime
    entitlement: EntitlementSelector = Field(default_factory=EntitlementSelector)
    override_availability: bool = False
    idempotency_key: Optional[str] = Field(default=None, max_length=200)
    notes: Optional[str] = Field(default=None, max_length=2000)

    @field_validator("entitlement", mode="before")
    @classmethod
    def _parse_entitlement(cls, value: object) -> EntitlementSelector:
        return EntitlementSelector.parse(value)

    @field_validator("start_at")
    @classmethod
    def _aware_start(cls, value: datetime) -> datetime:
        return _require_aware(value)


class RescheduleRequest(StrictRequestModel):
    session_id: str = Field(min_length=1)
    new_start_at: datetime
    override_availability: bool = False

    @field_validator("new_start_at")
    @classmethod
    def _aware_start(cls, value: datetime) -> datetime:
        return _require_aware(value)


class BookingResult(StrictModel):
    session_id: str
    status: SessionStatus = SessionStatus.SCHEDULED
    replayed: bool = False


class CancellationResult(StrictModel):
    session_id: str
    final_status: SessionStatus
    penalized: bool
    ledger_action: LedgerAction
    credit_id: Optional[str] = None
