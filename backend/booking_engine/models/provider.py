# backend/booking_engine/models/provider.py
"""
Provider, client and service type models.

These are thin collaborators of the engine: profile data lives elsewhere,
the engine only needs ownership links and the provider's timezone.
"""

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import ulid

from ..core.config import settings
from ..database import Base


class Provider(Base):
    """A service professional whose calendar and entitlements are managed."""

    __tablename__ = "providers"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    name = Column(String(255), nullable=False)
    timezone = Column(String(64), nullable=False, default=lambda: settings.default_timezone)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    clients = relationship("Client", back_populates="provider")
    service_types = relationship("ServiceType", back_populates="provider")

    def __repr__(self) -> str:
        return f"<Provider {self.id}: {self.name} ({self.timezone})>"


class Client(Base):
    __tablename__ = "clients"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    provider_id = Column(String(26), ForeignKey("providers.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    provider = relationship("Provider", back_populates="clients")

    def __repr__(self) -> str:
        return f"<Client {self.id}: {self.name} provider={self.provider_id}>"


class ServiceType(Base):
    __tablename__ = "service_types"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    provider_id = Column(String(26), ForeignKey("providers.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)

    provider = relationship("Provider", back_populates="service_types")

    def __repr__(self) -> str:
        return f"<ServiceType {self.id}: {self.name}>"
