# backend/booking_engine/services/conflict_checker.py
"""
Conflict Checker Service

Overlap validation for a candidate session against the provider's
scheduled and completed sessions. Intervals are half-open, so a session
ending at 10:00 never conflicts with one starting at 10:00.

Results are advisory when called outside a booking transaction; the
booking service re-runs the check under the provider lock.
"""

from datetime import datetime, timedelta
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.timezone_utils import ensure_utc
from ..models.session import BookedSession
from ..repositories import RepositoryFactory
from ..repositories.session_repository import SessionRepository
from ..utils.intervals import Interval, overlapping
from .base import BaseService

logger = logging.getLogger(__name__)


class ConflictChecker(BaseService):
    def __init__(self, db: Session, repository: Optional[SessionRepository] = None):
        """
        Initialize conflict checker service.

        Args:
            db: Database session
            repository: Optional SessionRepository instance
        """
        super().__init__(db)
        self.repository = repository or RepositoryFactory.create_session_repository(db)

    @staticmethod
    def candidate_end(start_at: datetime, duration_minutes: Optional[int] = None) -> datetime:
        return start_at + timedelta(minutes=duration_minutes or settings.session_duration_minutes)

    @BaseService.measure_operation("find_conflicts")
    def find_conflicts(
        self,
        provider_id: str,
        start_at: datetime,
        end_at: Optional[datetime] = None,
        exclude_session_id: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """
        Check if a time range conflicts with existing sessions.

        Args:
            provider_id: The provider to check
            start_at: Candidate start (aware)
            end_at: Candidate end; defaults to start + session duration
            exclude_session_id: Optional session to ignore (rescheduling)

        Returns:
            List of conflicts with session details
        """
        start = ensure_utc(start_at)
        end = ensure_utc(end_at) if end_at is not None else self.candidate_end(start)

        by_interval: Dict[Interval, List[BookedSession]] = {}
        for session in self.repository.get_occupying_sessions(
            provider_id, start, end, exclude_session_id=exclude_session_id
        ):
            by_interval.setdefault(Interval(session.start_utc, session.end_utc), []).append(session)

        conflicts = []
        for block in overlapping(by_interval, Interval(start, end)):
            for session in by_interval[block]:
                conflicts.append(
                    {
                        "session_id": session.id,
                        "start_at": session.start_utc.isoformat(),
                        "end_at": session.end_utc.isoformat(),
                        "status": session.status,
                    }
                )

        if conflicts:
            self.logger.info(
                f"Found {len(conflicts)} session conflicts for {provider_id} "
                f"between {start.isoformat()} and {end.isoformat()}"
            )
        return conflicts

    def check_overlap(
        self,
        provider_id: str,
        start_at: datetime,
        end_at: Optional[datetime] = None,
        exclude_session_id: Optional[str] = None,
    ) -> bool:
        """Simplified boolean check: True when the candidate overlaps anything."""
        return bool(
            self.find_conflicts(
                provider_id, start_at, end_at=end_at, exclude_session_id=exclude_session_id
            )
        )
