# backend/booking_engine/repositories/session_repository.py
"""
Session Repository

All session queries used by the resolver, the overlap validator and the
credit ledger. Datetimes passed in are normalized to UTC before binding.
"""

from datetime import datetime
import logging
from typing import Dict, List, Optional

from sqlalchemy import func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.enums import LIVE_STATUSES, OCCUPYING_STATUSES, CancellationReason, SessionStatus
from ..core.exceptions import RepositoryException
from ..core.timezone_utils import ensure_utc
from ..models.session import BookedSession
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


def _consuming_clause():
    return or_(
        BookedSession.status.in_(list(LIVE_STATUSES)),
        BookedSession.cancellation_reason == CancellationReason.PENALTY.value,
    )


class SessionRepository(BaseRepository[BookedSession]):
    def __init__(self, db: Session):
        super().__init__(db, BookedSession)

    def get_occupying_sessions(
        self,
        provider_id: str,
        range_start: datetime,
        range_end: datetime,
        exclude_session_id: Optional[str] = None,
    ) -> List[BookedSession]:
        """
        Scheduled/completed sessions intersecting [range_start, range_end).

        Args:
            provider_id: Provider whose calendar is checked
            range_start: Inclusive lower bound
            range_end: Exclusive upper bound
            exclude_session_id: Session to ignore (rescheduling)
        """
        try:
            query = self.db.query(BookedSession).filter(
                BookedSession.provider_id == provider_id,
                BookedSession.status.in_(list(OCCUPYING_STATUSES)),
                BookedSession.start_at < ensure_utc(range_end),
                BookedSession.end_at > ensure_utc(range_start),
            )
            if exclude_session_id:
                query = query.filter(BookedSession.id != exclude_session_id)
            return query.order_by(BookedSession.start_at.asc(), BookedSession.id.asc()).all()
        except SQLAlchemyError as exc:
            self.logger.error("Failed to load occupying sessions for %s: %s", provider_id, exc)
            raise RepositoryException(f"Failed to load sessions: {exc}") from exc

    def get_live_by_idempotency_key(
        self, provider_id: str, idempotency_key: str
    ) -> Optional[BookedSession]:
        try:
            return (
                self.db.query(BookedSession)
                .filter(
                    BookedSession.provider_id == provider_id,
                    BookedSession.idempotency_key == idempotency_key,
                    BookedSession.status.in_(list(LIVE_STATUSES)),
                )
                .first()
            )
        except SQLAlchemyError as exc:
            self.logger.error("Failed idempotency lookup: %s", exc)
            raise RepositoryException(f"Failed idempotency lookup: {exc}") from exc

    def count_pack_consuming(self, pack_id: str) -> int:
        try:
            return (
                self.db.query(func.count(BookedSession.id))
                .filter(BookedSession.pack_id == pack_id, _consuming_clause())
                .scalar()
                or 0
            )
        except SQLAlchemyError as exc:
            self.logger.error("Failed to count pack consumption for %s: %s", pack_id, exc)
            raise RepositoryException(f"Failed to count pack sessions: {exc}") from exc

    def pack_status_counts(self, pack_id: str) -> Dict[str, int]:
        """Counts keyed by status, plus 'cancelled_penalty' for penalized cancellations."""
        try:
            rows = (
                self.db.query(
                    BookedSession.status,
                    BookedSession.cancellation_reason,
                    func.count(BookedSession.id),
                )
                .filter(BookedSession.pack_id == pack_id)
                .group_by(BookedSession.status, BookedSession.cancellation_reason)
                .all()
            )
        except SQLAlchemyError as exc:
            self.logger.error("Failed to load pack stats for %s: %s", pack_id, exc)
            raise RepositoryException(f"Failed to load pack stats: {exc}") from exc

        counts: Dict[str, int] = {status.value: 0 for status in SessionStatus}
        counts["cancelled_penalty"] = 0
        for status, reason, count in rows:
            counts[status] = counts.get(status, 0) + int(count)
            if reason == CancellationReason.PENALTY.value:
                counts["cancelled_penalty"] += int(count)
        return counts

    def get_scheduled_for_pack(self, pack_id: str) -> List[BookedSession]:
        try:
            return (
                self.db.query(BookedSession)
                .filter(
                    BookedSession.pack_id == pack_id,
                    BookedSession.status == SessionStatus.SCHEDULED.value,
                )
                .order_by(BookedSession.start_at.asc())
                .all()
            )
        except SQLAlchemyError as exc:
            self.logger.error("Failed to load scheduled sessions for pack %s: %s", pack_id, exc)
            raise RepositoryException(f"Failed to load pack sessions: {exc}") from exc

    def count_allowance_consuming(
        self,
        subscription_id: str,
        service_type_id: str,
        period_start: datetime,
        period_end: datetime,
        exclude_session_id: Optional[str] = None,
    ) -> int:
        """Consuming sessions charged to the periodic allowance (no discrete credit)."""
        try:
            query = self.db.query(func.count(BookedSession.id)).filter(
                BookedSession.subscription_id == subscription_id,
                BookedSession.service_type_id == service_type_id,
                BookedSession.subscription_credit_id.is_(None),
                BookedSession.start_at >= ensure_utc(period_start),
                BookedSession.start_at < ensure_utc(period_end),
                _consuming_clause(),
            )
            if exclude_session_id:
                query = query.filter(BookedSession.id != exclude_session_id)
            return query.scalar() or 0
        except SQLAlchemyError as exc:
            self.logger.error("Failed to count allowance usage for %s: %s", subscription_id, exc)
            raise RepositoryException(f"Failed to count allowance usage: {exc}") from exc

    def get_for_schedule(self, recurring_schedule_id: str) -> List[BookedSession]:
        try:
            return (
                self.db.query(BookedSession)
                .filter(BookedSession.recurring_schedule_id == recurring_schedule_id)
                .order_by(BookedSession.start_at.asc())
                .all()
            )
        except SQLAlchemyError as exc:
            self.logger.error("Failed to load schedule sessions: %s", exc)
            raise RepositoryException(f"Failed to load schedule sessions: {exc}") from exc
