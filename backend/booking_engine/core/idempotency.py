"""Deterministic idempotency keys for booking and schedule requests."""

from datetime import datetime
import hashlib
from typing import Iterable, Optional

from .config import settings
from .timezone_utils import ensure_utc


def idem_key(raw: str) -> str:
    digest = hashlib.sha256(raw.encode()).hexdigest()
    return f"{settings.lock_namespace}:idem:{digest}"


def booking_idempotency_key(
    provider_id: str,
    client_id: str,
    start_at: datetime,
    entitlement: str,
    caller_key: Optional[str] = None,
) -> str:
    """Key a booking on (provider, client, start, entitlement) unless the caller supplies one."""
    if caller_key:
        return idem_key(f"caller|{provider_id}|{caller_key}")
    start = ensure_utc(start_at)
    return idem_key(f"book|{provider_id}|{client_id}|{start.isoformat()}|{entitlement}")


def schedule_idempotency_key(parts: Iterable[object]) -> str:
    return idem_key("schedule|" + "|".join(str(p) for p in parts))
