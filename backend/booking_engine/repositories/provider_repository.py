# backend/booking_engine/repositories/provider_repository.py
"""
Repositories for the engine's external collaborators: providers, their
clients and their service types. Only ownership lookups live here.
"""

import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.provider import Client, Provider, ServiceType
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class ProviderRepository(BaseRepository[Provider]):
    def __init__(self, db: Session):
        super().__init__(db, Provider)


class ClientRepository(BaseRepository[Client]):
    def __init__(self, db: Session):
        super().__init__(db, Client)

    def get_for_provider(self, client_id: str, provider_id: str) -> Optional[Client]:
        """Return the client only if it belongs to the provider."""
        try:
            return (
                self.db.query(Client)
                .filter(Client.id == client_id, Client.provider_id == provider_id)
                .first()
            )
        except SQLAlchemyError as exc:
            self.logger.error("Failed to load client %s: %s", client_id, exc)
            raise RepositoryException(f"Failed to load client: {exc}") from exc


class ServiceTypeRepository(BaseRepository[ServiceType]):
    def __init__(self, db: Session):
        super().__init__(db, ServiceType)

    def get_for_provider(self, service_type_id: str, provider_id: str) -> Optional[ServiceType]:
        try:
            return (
                self.db.query(ServiceType)
                .filter(ServiceType.id == service_type_id, ServiceType.provider_id == provider_id)
                .first()
            )
        except SQLAlchemyError as exc:
            self.logger.error("Failed to load service type %s: %s", service_type_id, exc)
            raise RepositoryException(f"Failed to load service type: {exc}") from exc
