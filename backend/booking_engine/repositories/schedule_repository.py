# backend/booking_engine/repositories/schedule_repository.py
import logging
from typing import Iterable, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.schedule import ClientTimePreference, RecurringSchedule
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class TimePreferenceRepository(BaseRepository[ClientTimePreference]):
    def __init__(self, db: Session):
        super().__init__(db, ClientTimePreference)

    def get_for_client(
        self, client_id: str, *, ids: Optional[Iterable[str]] = None, active_only: bool = True
    ) -> List[ClientTimePreference]:
        try:
            query = self.db.query(ClientTimePreference).filter(
                ClientTimePreference.client_id == client_id
            )
            if ids is not None:
                query = query.filter(ClientTimePreference.id.in_(list(ids)))
            if active_only:
                query = query.filter(ClientTimePreference.is_active.is_(True))
            return query.order_by(
                ClientTimePreference.weekday.asc(),
                ClientTimePreference.start_time.asc(),
                ClientTimePreference.id.asc(),
            ).all()
        except SQLAlchemyError as exc:
            self.logger.error("Failed to load preferences for %s: %s", client_id, exc)
            raise RepositoryException(f"Failed to load time preferences: {exc}") from exc


class RecurringScheduleRepository(BaseRepository[RecurringSchedule]):
    def __init__(self, db: Session):
        super().__init__(db, RecurringSchedule)

    def get_by_idempotency_key(self, key: str) -> Optional[RecurringSchedule]:
        return self.find_one_by(idempotency_key=key)
