# backend/booking_engine/repositories/__init__.py
"""
Repository layer for the booking engine.

Repositories own queries; services own transactions.
"""

from .base_repository import BaseRepository
from .factory import RepositoryFactory

__all__ = ["BaseRepository", "RepositoryFactory"]
