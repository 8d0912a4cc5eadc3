"""Explicit acting identity passed into every engine operation."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ActorRole(str, Enum):
    PROVIDER = "provider"
    CLIENT = "client"


@dataclass(frozen=True)
class Actor:
    """The authenticated party making a request."""

    actor_id: str
    role: ActorRole

    @classmethod
    def provider(cls, provider_id: str) -> "Actor":
        return cls(actor_id=provider_id, role=ActorRole.PROVIDER)

    @classmethod
    def client(cls, client_id: str) -> "Actor":
        return cls(actor_id=client_id, role=ActorRole.CLIENT)

    @property
    def is_provider(self) -> bool:
        return self.role == ActorRole.PROVIDER

    @property
    def is_client(self) -> bool:
        return self.role == ActorRole.CLIENT

    @property
    def identifier(self) -> str:
        """Human-readable identifier for logs."""
        return f"{self.role.value}:{self.actor_id}"
