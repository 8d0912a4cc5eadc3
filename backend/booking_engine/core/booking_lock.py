from __future__ import annotations

from contextlib import contextmanager
from datetime import date
import logging
import threading
import time
from typing import Iterator, Optional

from redis import Redis

from ..monitoring.prometheus_metrics import prometheus_metrics
from .config import settings

logger = logging.getLogger(__name__)

_SYNC_REDIS: Optional[Redis] = None
_SYNC_REDIS_LOCK = threading.Lock()


def _lock_key(provider_id: str, day: date) -> str:
    return f"provider:{provider_id}:{day.isoformat()}:mutex"


def _namespaced_key(key: str) -> str:
    return f"{settings.lock_namespace}:lock:{key}"


def _get_sync_redis() -> Optional[Redis]:
    global _SYNC_REDIS
    if _SYNC_REDIS is not None:
        return _SYNC_REDIS
    with _SYNC_REDIS_LOCK:
        if _SYNC_REDIS is not None:
            return _SYNC_REDIS
        try:
            client = Redis.from_url(
                settings.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=1,
            )
            client.ping()
        except Exception as exc:
            logger.warning("provider_lock_redis_unavailable: %s", exc)
            return None
        _SYNC_REDIS = client
        return _SYNC_REDIS


def acquire_provider_day_lock(provider_id: str, day: date, ttl_s: Optional[int] = None) -> bool:
    """
    Take the cross-process mutex for one provider's calendar day.

    Returns True when Redis is disabled or unreachable; row locks in the
    booking transaction remain the source of truth.
    """
    if not settings.booking_lock_enabled:
        return True
    ttl = ttl_s or settings.booking_lock_ttl_seconds
    client = _get_sync_redis()
    if client is None:
        prometheus_metrics.record_booking_lock("acquire", "redis_unavailable")
        logger.warning(
            "provider_lock_redis_unavailable",
            extra={"provider_id": provider_id, "day": day.isoformat()},
        )
        return True
    try:
        acquired = bool(
            client.set(
                _namespaced_key(_lock_key(provider_id, day)), str(time.time()), nx=True, ex=ttl
            )
        )
        if acquired:
            prometheus_metrics.record_booking_lock("acquire", "success")
        else:
            prometheus_metrics.record_booking_lock("acquire", "blocked")
        return acquired
    except Exception as exc:
        prometheus_metrics.record_booking_lock("acquire", "error")
        logger.warning(
            "provider_lock_acquire_failed",
            extra={
                "provider_id": provider_id,
                "day": day.isoformat(),
                "error": str(exc),
                "error_type": type(exc).__name__,
            },
        )
        return True


def release_provider_day_lock(provider_id: str, day: date) -> None:
    if not settings.booking_lock_enabled:
        return
    client = _get_sync_redis()
    if client is None:
        prometheus_metrics.record_booking_lock("release", "redis_unavailable")
        return
    try:
        deleted = client.delete(_namespaced_key(_lock_key(provider_id, day)))
        if deleted:
            prometheus_metrics.record_booking_lock("release", "success")
        else:
            prometheus_metrics.record_booking_lock("release", "not_found")
    except Exception as exc:
        prometheus_metrics.record_booking_lock("release", "error")
        logger.warning(
            "provider_lock_release_failed",
            extra={
                "provider_id": provider_id,
                "day": day.isoformat(),
                "error": str(exc),
                "error_type": type(exc).__name__,
            },
        )


@contextmanager
def provider_day_lock(
    provider_id: str, days: tuple[date, ...] | list[date], ttl_s: Optional[int] = None
) -> Iterator[bool]:
    """
    Hold the mutex for every listed day (sorted, de-duplicated).

    Yields False if any day is held elsewhere; days already taken are released.
    """
    ordered = sorted(set(days))
    held: list[date] = []
    acquired = True
    try:
        for day in ordered:
            if not acquire_provider_day_lock(provider_id, day, ttl_s=ttl_s):
                acquired = False
                break
            held.append(day)
        yield acquired
    finally:
        for day in reversed(held):
            release_provider_day_lock(provider_id, day)
