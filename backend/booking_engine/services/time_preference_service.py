# backend/booking_engine/services/time_preference_service.py
"""Client weekly time preferences, the input to the recurring schedule generator."""

from datetime import time
import logging
from typing import List

from sqlalchemy.orm import Session

from ..core.actor import Actor
from ..core.exceptions import NotFoundException
from ..models.provider import Client
from ..models.schedule import ClientTimePreference
from ..repositories import RepositoryFactory
from ..schemas._strict_base import validate_request
from ..schemas.recurring import TimePreferenceCreate
from .base import BaseService

logger = logging.getLogger(__name__)


class TimePreferenceService(BaseService):
    def __init__(self, db: Session):
        super().__init__(db)
        self.repository = RepositoryFactory.create_time_preference_repository(db)
        self.client_repository = RepositoryFactory.create_client_repository(db)

    def _get_visible_client(self, actor: Actor, client_id: str) -> Client:
        client = self.client_repository.get_by_id(client_id)
        visible = client is not None and (
            (actor.is_provider and actor.actor_id == client.provider_id)
            or (actor.is_client and actor.actor_id == client.id)
        )
        if not visible:
            raise NotFoundException(
                "Client not found", code="CLIENT_NOT_FOUND", details={"id": client_id}
            )
        return client

    @BaseService.measure_operation("create_preference")
    def create_preference(
        self,
        actor: Actor,
        client_id: str,
        weekday: object,
        start_time: time | str,
        flex_minutes: int = 0,
    ) -> ClientTimePreference:
        """Either the client or their provider may record a preference."""
        request = validate_request(
            TimePreferenceCreate, weekday=weekday, start_time=start_time, flex_minutes=flex_minutes
        )
        client = self._get_visible_client(actor, client_id)

        with self.transaction():
            preference = self.repository.create(
                provider_id=client.provider_id,
                client_id=client.id,
                weekday=int(request.weekday),
                start_time=request.start_time,
                flex_minutes=request.flex_minutes,
                is_active=True,
            )
        self.log_operation(
            "create_preference",
            client_id=client.id,
            preference_id=preference.id,
            weekday=request.weekday.name,
        )
        return preference

    def list_preferences(
        self, actor: Actor, client_id: str, active_only: bool = True
    ) -> List[ClientTimePreference]:
        client = self._get_visible_client(actor, client_id)
        return self.repository.get_for_client(client.id, active_only=active_only)

    @BaseService.measure_operation("deactivate_preference")
    def deactivate_preference(self, actor: Actor, preference_id: str) -> ClientTimePreference:
        preference = self.repository.get_by_id(preference_id)
        if preference is None:
            raise NotFoundException(
                "Time preference not found",
                code="TIME_PREFERENCE_NOT_FOUND",
                details={"id": preference_id},
            )
        self._get_visible_client(actor, preference.client_id)

        with self.transaction():
            preference.is_active = False
            self.db.flush()
        self.log_operation("deactivate_preference", preference_id=preference.id)
        return preference
