# backend/booking_engine/repositories/pack_repository.py
from sqlalchemy.orm import Session

from ..models.pack import SessionPack
from .base_repository import BaseRepository


class PackRepository(BaseRepository[SessionPack]):
    def __init__(self, db: Session):
        super().__init__(db, SessionPack)
