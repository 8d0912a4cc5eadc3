# backend/booking_engine/core/enums.py
"""
Core enums for the booking engine.

Status values are stored as plain strings in the database; these enums
are the only place the allowed values are spelled out.
"""

from enum import Enum, IntEnum


class Weekday(IntEnum):
    """ISO-style weekday index (Monday=0), matching date.weekday()."""

    MONDAY = 0
    TUESDAY = 1
    WEDNESDAY = 2
    THURSDAY = 3
    FRIDAY = 4
    SATURDAY = 5
    SUNDAY = 6

    @classmethod
    def parse(cls, value: object) -> "Weekday":
        """Accept an index, a full name or a three-letter abbreviation."""
        if isinstance(value, Weekday):
            return value
        if isinstance(value, int) and not isinstance(value, bool):
            return cls(value)
        if isinstance(value, str):
            text = value.strip().lower()
            if text.isdigit():
                return cls(int(text))
            for member in cls:
                name = member.name.lower()
                if text == name or text == name[:3]:
                    return member
        raise ValueError(f"Invalid weekday: {value!r}")


class SessionStatus(str, Enum):
    """Session lifecycle. SCHEDULED is the only non-terminal state."""

    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    CANCELLED_LATE = "cancelled_late"
    CANCELLED_EARLY = "cancelled_early"
    NO_SHOW = "no_show"


# Statuses that occupy provider time.
OCCUPYING_STATUSES = (SessionStatus.SCHEDULED.value, SessionStatus.COMPLETED.value)

# Statuses that are never cancelled.
LIVE_STATUSES = (
    SessionStatus.SCHEDULED.value,
    SessionStatus.COMPLETED.value,
    SessionStatus.NO_SHOW.value,
)


class CancellationReason(str, Enum):
    """Ledger-level tag used for pack consumption accounting."""

    PENALTY = "penalty"
    NO_PENALTY = "no_penalty"


class ExceptionKind(str, Enum):
    FULL_DAY_BLOCK = "full_day_block"
    PARTIAL_BLOCK = "partial_block"
    EXTRA_SLOT = "extra_slot"


class PackStatus(str, Enum):
    ACTIVE = "active"
    ARCHIVED = "archived"


class PackCancellationMode(str, Enum):
    FORFEIT = "forfeit"
    REFUND = "refund"


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    ENDED = "ended"
    CANCELLED = "cancelled"


class BillingCycle(str, Enum):
    WEEKLY = "weekly"
    FORTNIGHTLY = "fortnightly"
    MONTHLY = "monthly"


class CreditStatus(str, Enum):
    AVAILABLE = "available"
    USED = "used"
    FORFEITED = "forfeited"


class EntitlementKind(str, Enum):
    NONE = "none"
    PACK = "pack"
    SUBSCRIPTION = "subscription"


class LedgerAction(str, Enum):
    """What a cancellation did to the entitlement behind the session."""

    NONE = "none"
    PACK_CONSUMED = "pack_consumed"
    PACK_RELEASED = "pack_released"
    CREDIT_RETAINED = "credit_retained"
    CREDIT_REVERTED = "credit_reverted"
    CREDIT_MINTED = "credit_minted"


class OccurrenceStatus(str, Enum):
    OK = "ok"
    WARNING = "warning"
    CONFLICT = "conflict"


class OccurrenceOutcome(str, Enum):
    CREATED = "created"
    FAILED = "failed"
    SKIPPED = "skipped"
    NOT_ATTEMPTED = "not_attempted"


class ScheduleAction(str, Enum):
    PREVIEW = "preview"
    CONFIRM = "confirm"
