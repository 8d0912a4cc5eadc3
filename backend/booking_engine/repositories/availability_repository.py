# backend/booking_engine/repositories/availability_repository.py
"""
Availability Repository

Data access for recurring weekly templates and date-specific exceptions.
The resolver loads a whole date range in two queries and groups in memory.
"""

from datetime import date
import logging
from typing import Iterable, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.availability import AvailabilityException, AvailabilityTemplate
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class AvailabilityRepository(BaseRepository[AvailabilityTemplate]):
    """Templates are the primary model; exceptions are handled alongside."""

    def __init__(self, db: Session):
        super().__init__(db, AvailabilityTemplate)

    # Templates

    def get_templates(
        self, provider_id: str, weekdays: Optional[Iterable[int]] = None
    ) -> List[AvailabilityTemplate]:
        try:
            query = self.db.query(AvailabilityTemplate).filter(
                AvailabilityTemplate.provider_id == provider_id
            )
            if weekdays is not None:
                query = query.filter(AvailabilityTemplate.weekday.in_(list(weekdays)))
            return query.order_by(
                AvailabilityTemplate.weekday.asc(),
                AvailabilityTemplate.start_time.asc(),
                AvailabilityTemplate.id.asc(),
            ).all()
        except SQLAlchemyError as exc:
            self.logger.error("Failed to load templates for %s: %s", provider_id, exc)
            raise RepositoryException(f"Failed to load availability templates: {exc}") from exc

    # Exceptions

    def get_exception(self, exception_id: str) -> Optional[AvailabilityException]:
        try:
            return (
                self.db.query(AvailabilityException)
                .filter(AvailabilityException.id == exception_id)
                .first()
            )
        except SQLAlchemyError as exc:
            self.logger.error("Failed to load exception %s: %s", exception_id, exc)
            raise RepositoryException(f"Failed to load availability exception: {exc}") from exc

    def get_exceptions(
        self, provider_id: str, start_date: date, end_date: date
    ) -> List[AvailabilityException]:
        """Exceptions with start_date <= exception_date <= end_date."""
        try:
            return (
                self.db.query(AvailabilityException)
                .filter(
                    AvailabilityException.provider_id == provider_id,
                    AvailabilityException.exception_date >= start_date,
                    AvailabilityException.exception_date <= end_date,
                )
                .order_by(
                    AvailabilityException.exception_date.asc(),
                    AvailabilityException.start_time.asc(),
                    AvailabilityException.id.asc(),
                )
                .all()
            )
        except SQLAlchemyError as exc:
            self.logger.error("Failed to load exceptions for %s: %s", provider_id, exc)
            raise RepositoryException(f"Failed to load availability exceptions: {exc}") from exc

    def create_exception(self, **kwargs) -> AvailabilityException:
        try:
            exception = AvailabilityException(**kwargs)
            self.db.add(exception)
            self.db.flush()
            return exception
        except SQLAlchemyError as exc:
            self.logger.error("Failed to create availability exception: %s", exc)
            self.db.rollback()
            raise RepositoryException(f"Failed to create availability exception: {exc}") from exc

    def delete_exception(self, exception: AvailabilityException) -> None:
        try:
            self.db.delete(exception)
            self.db.flush()
        except SQLAlchemyError as exc:
            self.logger.error("Failed to delete availability exception %s: %s", exception.id, exc)
            self.db.rollback()
            raise RepositoryException(f"Failed to delete availability exception: {exc}") from exc
