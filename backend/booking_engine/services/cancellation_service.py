# backend/booking_engine/services/cancellation_service.py
"""
Cancellation Service

Decides whether a cancellation is penalized and applies the matching
ledger effect in the same transaction as the status change:

    penalized   cancelled_late,  entitlement stays consumed
    otherwise   cancelled_early, entitlement restored

Default policy: a start within the penalty window (inclusive), or one that
has already passed, is penalized. Providers may force or waive the penalty.
"""

from datetime import datetime, timezone
import logging
from typing import Optional, Tuple

from sqlalchemy.orm import Session

from ..core.actor import Actor
from ..core.config import settings
from ..core.enums import LedgerAction, SessionStatus
from ..core.exceptions import BookingConflictException, ConflictReason, NotFoundException
from ..core.timezone_utils import ensure_utc, hours_until
from ..models.session import BookedSession
from ..repositories import RepositoryFactory
from ..schemas.booking import CancellationResult
from .access import ensure_provider
from .base import BaseService
from .credit_ledger import CreditLedger

logger = logging.getLogger(__name__)


def is_late_cancellation(start_at: datetime, now: datetime) -> bool:
    """True when the session starts within the penalty window or has started."""
    return hours_until(start_at, now) <= settings.penalty_window_hours


class CancellationService(BaseService):
    def __init__(self, db: Session, credit_ledger: Optional[CreditLedger] = None):
        super().__init__(db)
        self.credit_ledger = credit_ledger or CreditLedger(db)
        self.repository = RepositoryFactory.create_session_repository(db)
        self.provider_repository = RepositoryFactory.create_provider_repository(db)

    @BaseService.measure_operation("cancel_session")
    def cancel_session(
        self,
        actor: Actor,
        session_id: str,
        penalize: Optional[bool] = None,
        now: Optional[datetime] = None,
    ) -> CancellationResult:
        """
        Cancel a scheduled session.

        Args:
            actor: Provider or the session's client
            penalize: Provider-only override of the default late policy
            now: Clock injection for the policy check

        Returns:
            CancellationResult with the final status and the ledger action taken

        Raises:
            NotFoundException: session not visible to the actor
            ForbiddenException: a client passing penalize
            BookingConflictException(session_not_scheduled): already terminal
        """
        current_time = ensure_utc(now) if now is not None else datetime.now(timezone.utc)

        session = self.repository.get_by_id(session_id)
        if session is None or not self._can_view(actor, session):
            raise NotFoundException(
                "Session not found", code="SESSION_NOT_FOUND", details={"id": session_id}
            )
        if penalize is not None:
            ensure_provider(actor, session.provider_id, "waive or force a cancellation penalty")

        with self.transaction():
            self.provider_repository.get_for_update(session.provider_id)
            session = self.repository.get_for_update(session_id)
            if session.status != SessionStatus.SCHEDULED.value:
                raise BookingConflictException(
                    ConflictReason.SESSION_NOT_SCHEDULED,
                    f"Session is {session.status}, not scheduled",
                    details={"session_id": session.id, "status": session.status},
                )

            penalized = (
                penalize if penalize is not None else is_late_cancellation(session.start_at, current_time)
            )
            session.cancel(penalized=penalized, cancelled_by_id=actor.actor_id, now=current_time)
            self.db.flush()
            ledger_action, credit_id = self._apply_ledger(session, penalized)

        self.log_operation(
            "cancel_session",
            session_id=session.id,
            cancelled_by=actor.identifier,
            penalized=penalized,
            ledger_action=ledger_action.value,
        )
        return CancellationResult(
            session_id=session.id,
            final_status=SessionStatus(session.status),
            penalized=penalized,
            ledger_action=ledger_action,
            credit_id=credit_id,
        )

    def _apply_ledger(
        self, session: BookedSession, penalized: bool
    ) -> Tuple[LedgerAction, Optional[str]]:
        ref = session.entitlement_ref
        if ref is None:
            return LedgerAction.NONE, None

        kind, ref_id = ref
        if kind == "pack":
            if penalized:
                self.credit_ledger.archive_pack_if_exhausted(ref_id)
                return LedgerAction.PACK_CONSUMED, None
            self.credit_ledger.release_pack_session(ref_id)
            return LedgerAction.PACK_RELEASED, None

        if kind == "credit":
            if penalized:
                return LedgerAction.CREDIT_RETAINED, ref_id
            self.credit_ledger.revert_credit(ref_id, use_transaction=False)
            return LedgerAction.CREDIT_REVERTED, ref_id

        # Allowance-backed: no discrete credit row was consumed.
        if penalized:
            return LedgerAction.CREDIT_RETAINED, None
        credit = self.credit_ledger.mint_credit(
            ref_id,
            session.service_type_id,
            self.credit_ledger.credit_value_for(ref_id, session.service_type_id),
            "cancellation",
            use_transaction=False,
        )
        return LedgerAction.CREDIT_MINTED, credit.id

    @staticmethod
    def _can_view(actor: Actor, session: BookedSession) -> bool:
        if actor.is_provider:
            return actor.actor_id == session.provider_id
        return actor.actor_id == session.client_id
