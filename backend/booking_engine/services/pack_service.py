# backend/booking_engine/services/pack_service.py
"""
Pack Service

Provider-side pack management: stats and cancellation. A pack cannot be
cancelled while any of its sessions is still scheduled; the caller must
cancel those first so each one goes through the cancellation policy.
"""

from datetime import datetime, timezone
import logging
from typing import Optional

from sqlalchemy.orm import Session

from ..core.actor import Actor
from ..core.enums import PackCancellationMode, PackStatus
from ..core.exceptions import BookingConflictException, ConflictReason, NotFoundException
from ..models.pack import SessionPack
from ..repositories import RepositoryFactory
from ..schemas._strict_base import validate_request
from ..schemas.pack import CancelPackRequest, PackStats
from .access import ensure_provider
from .base import BaseService
from .credit_ledger import CreditLedger

logger = logging.getLogger(__name__)


class PackService(BaseService):
    def __init__(self, db: Session, credit_ledger: Optional[CreditLedger] = None):
        super().__init__(db)
        self.credit_ledger = credit_ledger or CreditLedger(db)
        self.repository = RepositoryFactory.create_pack_repository(db)
        self.session_repository = RepositoryFactory.create_session_repository(db)

    def _get_visible_pack(self, actor: Actor, pack_id: str) -> SessionPack:
        pack = self.repository.get_by_id(pack_id)
        visible = pack is not None and (
            (actor.is_provider and actor.actor_id == pack.provider_id)
            or (actor.is_client and actor.actor_id == pack.client_id)
        )
        if not visible:
            raise NotFoundException("Pack not found", code="PACK_NOT_FOUND", details={"id": pack_id})
        return pack

    def get_pack_stats(self, actor: Actor, pack_id: str) -> PackStats:
        pack = self._get_visible_pack(actor, pack_id)
        return self.credit_ledger.pack_stats(pack)

    @BaseService.measure_operation("cancel_pack")
    def cancel_pack(
        self, actor: Actor, pack_id: str, mode: object, notes: Optional[str] = None
    ) -> SessionPack:
        """
        Archive a pack, recording the unused sessions as forfeited or refunded.

        Raises:
            BookingConflictException(pack_has_scheduled_sessions): details carry the session ids
        """
        request = validate_request(CancelPackRequest, mode=mode, notes=notes)
        pack = self._get_visible_pack(actor, pack_id)
        ensure_provider(actor, pack.provider_id, "cancel packs")

        with self.transaction():
            pack = self.repository.get_for_update(pack_id)
            scheduled = self.session_repository.get_scheduled_for_pack(pack.id)
            if scheduled:
                raise BookingConflictException(
                    ConflictReason.PACK_HAS_SCHEDULED_SESSIONS,
                    f"Pack has {len(scheduled)} scheduled session(s); cancel them first",
                    details={"session_ids": [s.id for s in scheduled]},
                )

            remaining = self.credit_ledger.pack_remaining(pack)
            pack.status = PackStatus.ARCHIVED.value
            pack.cancelled_at = datetime.now(timezone.utc)
            pack.cancellation_mode = request.mode.value
            if request.mode == PackCancellationMode.REFUND:
                pack.refunded_sessions = remaining
            else:
                pack.forfeited_sessions = remaining
            if request.notes:
                pack.notes = request.notes
            self.db.flush()

        self.log_operation(
            "cancel_pack", pack_id=pack.id, mode=request.mode.value, unused_sessions=remaining
        )
        return pack
