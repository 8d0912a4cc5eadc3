# backend/booking_engine/services/booking_service.py
"""
Booking Service

Orchestrates session creation and the non-cancellation lifecycle:

    book_session     validate -> lock -> replay? -> overlap -> entitlement
                     -> availability -> insert, all in one unit of work
    complete_session / mark_no_show
    reschedule_session

Concurrency: the Redis provider-day mutex is held around the whole unit and
the provider row is locked FOR UPDATE inside it, so two bookings for the same
provider are serialized before the overlap check runs.
"""

from datetime import date, datetime, timedelta, timezone
import logging
from typing import Iterable, List, Optional, Tuple, Union

from sqlalchemy.orm import Session

from ..core.actor import Actor
from ..core.booking_lock import provider_day_lock
from ..core.config import settings
from ..core.enums import EntitlementKind
from ..core.exceptions import (
    BookingConflictException,
    ConflictReason,
    DomainException,
    NotFoundException,
    TransientException,
    ValidationException,
)
from ..core.idempotency import booking_idempotency_key
from ..core.timezone_utils import ensure_utc, get_provider_timezone, hours_until, to_local
from ..models.provider import Provider
from ..models.pack import SessionPack
from ..models.session import BookedSession
from ..models.subscription import Subscription
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories import RepositoryFactory
from ..schemas._strict_base import validate_request
from ..schemas.booking import BookingResult, BookSessionRequest, EntitlementSelector, RescheduleRequest
from .access import ensure_provider
from .availability_service import AvailabilityService
from .base import BaseService
from .conflict_checker import ConflictChecker
from .credit_ledger import CreditLedger

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def lock_days(tz, start_at: datetime, end_at: datetime) -> Tuple[date, ...]:
    """Local dates touched by [start_at, end_at)."""
    first = to_local(start_at, tz).date()
    last = to_local(end_at - timedelta(microseconds=1), tz).date()
    days = []
    current = first
    while current <= last:
        days.append(current)
        current += timedelta(days=1)
    return tuple(days)


class BookingService(BaseService):
    """
    Service layer for booking operations.

    Centralizes session creation and lifecycle transitions, keeping the
    session row and the entitlement ledger consistent within one transaction.
    """

    def __init__(
        self,
        db: Session,
        availability_service: Optional[AvailabilityService] = None,
        conflict_checker: Optional[ConflictChecker] = None,
        credit_ledger: Optional[CreditLedger] = None,
    ):
        """
        Initialize booking service.

        Args:
            db: Database session
            availability_service: Optional resolver instance
            conflict_checker: Optional overlap validator instance
            credit_ledger: Optional ledger instance
        """
        super().__init__(db)
        self.availability_service = availability_service or AvailabilityService(db)
        self.conflict_checker = conflict_checker or ConflictChecker(db)
        self.credit_ledger = credit_ledger or CreditLedger(db)
        self.repository = RepositoryFactory.create_session_repository(db)
        self.provider_repository = RepositoryFactory.create_provider_repository(db)
        self.client_repository = RepositoryFactory.create_client_repository(db)
        self.service_type_repository = RepositoryFactory.create_service_type_repository(db)
        self.pack_repository = RepositoryFactory.create_pack_repository(db)
        self.subscription_repository = RepositoryFactory.create_subscription_repository(db)

    # Booking

    @BaseService.measure_operation("book_session")
    def book_session(
        self,
        actor: Actor,
        provider_id: str,
        client_id: str,
        service_type_id: str,
        start_at: datetime,
        entitlement: object = "none",
        override_availability: bool = False,
        idempotency_key: Optional[str] = None,
        notes: Optional[str] = None,
        recurring_schedule_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> BookingResult:
        """
        Book one session for a client.

        Args:
            actor: Acting provider or client
            start_at: Timezone-aware start; the session lasts the configured duration
            entitlement: "none", "pack:<id>" or "subscription:<id>"
            override_availability: Provider-only skip of the declared-availability check
            idempotency_key: Optional caller key; defaults to a hash of the request
            recurring_schedule_id: Set when booked by the recurring generator

        Returns:
            BookingResult; replayed=True when an identical booking already existed

        Raises:
            ValidationException: malformed request or start in the past
            NotFoundException: provider, client, service type or entitlement not visible
            ForbiddenException: client attempting to override availability
            BookingConflictException: overlap, entitlement_exhausted, outside_availability
            TransientException: provider calendar locked by another booking
        """
        request = validate_request(
            BookSessionRequest,
            provider_id=provider_id,
            client_id=client_id,
            service_type_id=service_type_id,
            start_at=start_at,
            entitlement=entitlement,
            override_availability=override_availability,
            idempotency_key=idempotency_key,
            notes=notes,
        )
        try:
            result = self._book(actor, request, recurring_schedule_id, now or _utcnow())
        except BookingConflictException as exc:
            prometheus_metrics.record_booking_outcome(exc.reason.value)
            raise
        except TransientException:
            prometheus_metrics.record_booking_outcome("transient")
            raise
        except DomainException:
            prometheus_metrics.record_booking_outcome("rejected")
            raise
        prometheus_metrics.record_booking_outcome("replayed" if result.replayed else "created")
        return result

    def _book(
        self,
        actor: Actor,
        request: BookSessionRequest,
        recurring_schedule_id: Optional[str],
        now: datetime,
    ) -> BookingResult:
        provider = self.get_provider_for_booking(actor, request.provider_id, request.client_id)
        if request.override_availability:
            ensure_provider(actor, provider.id, "override availability")
        if self.service_type_repository.get_for_provider(request.service_type_id, provider.id) is None:
            raise NotFoundException(
                "Service type not found",
                code="SERVICE_TYPE_NOT_FOUND",
                details={"id": request.service_type_id},
            )

        start = ensure_utc(request.start_at)
        if start <= ensure_utc(now):
            raise ValidationException(
                "Sessions must start in the future",
                code="START_IN_PAST",
                details={"start_at": start.isoformat()},
            )
        end = self.conflict_checker.candidate_end(start)
        self.check_entitlement_ownership(
            request.entitlement, provider.id, request.client_id, request.service_type_id
        )

        key = booking_idempotency_key(
            provider.id,
            request.client_id,
            start,
            str(request.entitlement),
            caller_key=request.idempotency_key,
        )
        tz = get_provider_timezone(provider)

        with provider_day_lock(provider.id, lock_days(tz, start, end)) as acquired:
            if not acquired:
                raise TransientException(
                    "Another booking for this provider is in progress, please retry",
                    code="BOOKING_LOCKED",
                    details={"provider_id": provider.id},
                )
            with self.transaction():
                self.provider_repository.get_for_update(provider.id)

                existing = self.repository.get_live_by_idempotency_key(provider.id, key)
                if existing is not None:
                    self.logger.info(
                        "Replaying booking %s for idempotency key", existing.id,
                        extra={"provider_id": provider.id, "session_id": existing.id},
                    )
                    return BookingResult(session_id=existing.id, status=existing.status, replayed=True)

                conflicts = self.conflict_checker.find_conflicts(provider.id, start, end)
                if conflicts:
                    raise BookingConflictException(
                        ConflictReason.OVERLAP,
                        "The requested time overlaps an existing session",
                        details={"conflicts": conflicts},
                    )

                session_fields, credit = self._reserve_entitlement(request, tz, start)

                if self._availability_required(actor, request.override_availability):
                    if not self.availability_service.within_declared_availability(provider, start, end):
                        raise BookingConflictException(
                            ConflictReason.OUTSIDE_AVAILABILITY,
                            "The requested time is outside the provider's availability",
                            details={"start_at": start.isoformat(), "end_at": end.isoformat()},
                        )

                session = self.repository.create(
                    provider_id=provider.id,
                    client_id=request.client_id,
                    service_type_id=request.service_type_id,
                    start_at=start,
                    end_at=end,
                    duration_minutes=settings.session_duration_minutes,
                    idempotency_key=key,
                    notes=request.notes,
                    recurring_schedule_id=recurring_schedule_id,
                    **session_fields,
                )
                if credit is not None:
                    self.credit_ledger.consume_credit(credit.id, session, use_transaction=False)

        self.log_operation(
            "book_session",
            session_id=session.id,
            provider_id=provider.id,
            client_id=request.client_id,
            start_at=start.isoformat(),
            entitlement=str(request.entitlement),
        )
        return BookingResult(session_id=session.id, status=session.status, replayed=False)

    def get_provider_for_booking(self, actor: Actor, provider_id: str, client_id: str) -> Provider:
        provider = self.provider_repository.get_by_id(provider_id)
        if provider is None or (actor.is_provider and actor.actor_id != provider.id):
            raise NotFoundException(
                "Provider not found", code="PROVIDER_NOT_FOUND", details={"id": provider_id}
            )
        client = self.client_repository.get_for_provider(client_id, provider.id)
        if client is None or (actor.is_client and actor.actor_id != client.id):
            raise NotFoundException(
                "Client not found", code="CLIENT_NOT_FOUND", details={"id": client_id}
            )
        return provider

    def check_entitlement_ownership(
        self,
        selector: EntitlementSelector,
        provider_id: str,
        client_id: str,
        service_type_id: str,
    ) -> Union[SessionPack, Subscription, None]:
        """Unlocked pre-check; the ledger re-reads under row locks."""
        if selector.kind == EntitlementKind.PACK:
            pack = self.pack_repository.get_by_id(selector.ref_id)
            if pack is None or pack.provider_id != provider_id or pack.client_id != client_id:
                raise NotFoundException(
                    "Pack not found", code="PACK_NOT_FOUND", details={"id": selector.ref_id}
                )
            if pack.service_type_id and pack.service_type_id != service_type_id:
                raise ValidationException(
                    "Pack does not cover this service type",
                    code="PACK_SERVICE_MISMATCH",
                    details={"pack_id": pack.id, "service_type_id": service_type_id},
                )
            return pack
        elif selector.kind == EntitlementKind.SUBSCRIPTION:
            subscription = self.subscription_repository.get_by_id(selector.ref_id)
            if (
                subscription is None
                or subscription.provider_id != provider_id
                or subscription.client_id != client_id
            ):
                raise NotFoundException(
                    "Subscription not found",
                    code="SUBSCRIPTION_NOT_FOUND",
                    details={"id": selector.ref_id},
                )
            return subscription
        return None

    def _reserve_entitlement(self, request: BookSessionRequest, tz, start: datetime):
        """Returns (session column values, credit to consume or None)."""
        selector = request.entitlement
        if selector.kind == EntitlementKind.PACK:
            pack = self.credit_ledger.try_consume_pack_session(
                selector.ref_id, at=to_local(start, tz).date()
            )
            return {"pack_id": pack.id}, None
        if selector.kind == EntitlementKind.SUBSCRIPTION:
            subscription, credit = self.credit_ledger.select_subscription_source(
                selector.ref_id, request.service_type_id, start, tz
            )
            return {"subscription_id": subscription.id}, credit
        return {}, None

    @staticmethod
    def _availability_required(actor: Actor, override: bool) -> bool:
        if actor.is_client:
            return True
        return settings.require_availability and not override

    @staticmethod
    def _entitlement_label(session: BookedSession) -> str:
        """The selector string a booking request for this session would carry."""
        if session.pack_id:
            return str(EntitlementSelector(kind=EntitlementKind.PACK, ref_id=session.pack_id))
        if session.subscription_id:
            return str(
                EntitlementSelector(kind=EntitlementKind.SUBSCRIPTION, ref_id=session.subscription_id)
            )
        return str(EntitlementSelector())

    # Lookup

    def get_session(self, actor: Actor, session_id: str) -> BookedSession:
        """Load a session visible to the actor (NotFoundException otherwise)."""
        session = self.repository.get_by_id(session_id)
        if session is None or not self._can_view(actor, session):
            raise NotFoundException(
                "Session not found", code="SESSION_NOT_FOUND", details={"id": session_id}
            )
        return session

    def list_client_sessions(
        self, actor: Actor, client_id: str, statuses: Optional[Iterable[str]] = None
    ) -> List[BookedSession]:
        client = self.client_repository.get_by_id(client_id)
        if client is None or not (
            (actor.is_provider and actor.actor_id == client.provider_id)
            or (actor.is_client and actor.actor_id == client.id)
        ):
            raise NotFoundException("Client not found", code="CLIENT_NOT_FOUND", details={"id": client_id})
        sessions = self.repository.find_by(client_id=client.id)
        if statuses is not None:
            wanted = set(statuses)
            sessions = [s for s in sessions if s.status in wanted]
        return sorted(sessions, key=lambda s: s.start_utc)

    @staticmethod
    def _can_view(actor: Actor, session: BookedSession) -> bool:
        if actor.is_provider:
            return actor.actor_id == session.provider_id
        return actor.actor_id == session.client_id

    # Lifecycle

    @BaseService.measure_operation("complete_session")
    def complete_session(self, actor: Actor, session_id: str) -> BookedSession:
        """scheduled -> completed (provider only)."""
        return self._finish(actor, session_id, "complete sessions", lambda s: s.complete())

    @BaseService.measure_operation("mark_no_show")
    def mark_no_show(self, actor: Actor, session_id: str) -> BookedSession:
        """scheduled -> no_show (provider only). Terminal; the entitlement stays consumed."""
        return self._finish(actor, session_id, "mark no-shows", lambda s: s.mark_no_show())

    def _finish(self, actor: Actor, session_id: str, action: str, transition) -> BookedSession:
        session = self.get_session(actor, session_id)
        ensure_provider(actor, session.provider_id, action)

        with self.transaction():
            session = self.repository.get_for_update(session_id)
            self._require_scheduled(session)
            transition(session)
            self.db.flush()
            if session.pack_id:
                self.credit_ledger.archive_pack_if_exhausted(session.pack_id)

        self.log_operation(action.replace(" ", "_"), session_id=session.id, status=session.status)
        return session

    @staticmethod
    def _require_scheduled(session: BookedSession) -> None:
        if not session.is_scheduled:
            raise BookingConflictException(
                ConflictReason.SESSION_NOT_SCHEDULED,
                f"Session is {session.status}, not scheduled",
                details={"session_id": session.id, "status": session.status},
            )

    # Reschedule

    @BaseService.measure_operation("reschedule_session")
    def reschedule_session(
        self,
        actor: Actor,
        session_id: str,
        new_start_at: datetime,
        override_availability: bool = False,
        now: Optional[datetime] = None,
    ) -> BookingResult:
        """
        Move a scheduled session, keeping its entitlement.

        Clients may not move a session that starts within the reschedule
        notice window (boundary included). The entitlement is re-checked at
        the new date, and the idempotency key is re-derived from the new
        start so the vacated slot can be booked again.
        """
        request = validate_request(
            RescheduleRequest,
            session_id=session_id,
            new_start_at=new_start_at,
            override_availability=override_availability,
        )
        current_time = ensure_utc(now or _utcnow())
        session = self.get_session(actor, request.session_id)
        if request.override_availability:
            ensure_provider(actor, session.provider_id, "override availability")
        self._require_scheduled(session)

        notice_left = hours_until(session.start_at, current_time)
        if actor.is_client and notice_left <= settings.reschedule_notice_hours:
            raise BookingConflictException(
                ConflictReason.RESCHEDULE_NOTICE,
                f"Sessions cannot be rescheduled within {settings.reschedule_notice_hours} hours of start",
                details={"session_id": session.id},
            )

        new_start = ensure_utc(request.new_start_at)
        if new_start <= current_time:
            raise ValidationException(
                "Sessions must start in the future",
                code="START_IN_PAST",
                details={"start_at": new_start.isoformat()},
            )
        new_end = self.conflict_checker.candidate_end(new_start, session.duration_minutes)
        provider = self.provider_repository.get_by_id(session.provider_id)
        tz = get_provider_timezone(provider)
        days = lock_days(tz, session.start_utc, session.end_utc) + lock_days(tz, new_start, new_end)

        with provider_day_lock(provider.id, days) as acquired:
            if not acquired:
                raise TransientException(
                    "Another booking for this provider is in progress, please retry",
                    code="BOOKING_LOCKED",
                    details={"provider_id": provider.id},
                )
            with self.transaction():
                self.provider_repository.get_for_update(provider.id)
                session = self.repository.get_for_update(session.id)
                self._require_scheduled(session)

                conflicts = self.conflict_checker.find_conflicts(
                    provider.id, new_start, new_end, exclude_session_id=session.id
                )
                if conflicts:
                    raise BookingConflictException(
                        ConflictReason.OVERLAP,
                        "The requested time overlaps an existing session",
                        details={"conflicts": conflicts},
                    )
                self.credit_ledger.check_moved_session(session, new_start, tz)

                if self._availability_required(actor, request.override_availability):
                    if not self.availability_service.within_declared_availability(
                        provider, new_start, new_end
                    ):
                        raise BookingConflictException(
                            ConflictReason.OUTSIDE_AVAILABILITY,
                            "The requested time is outside the provider's availability",
                            details={"start_at": new_start.isoformat()},
                        )

                previous_start = session.start_utc
                session.start_at = new_start
                session.end_at = new_end
                session.idempotency_key = booking_idempotency_key(
                    provider.id, session.client_id, new_start, self._entitlement_label(session)
                )
                self.db.flush()

        self.log_operation(
            "reschedule_session",
            session_id=session.id,
            previous_start=previous_start.isoformat(),
            new_start=new_start.isoformat(),
        )
        return BookingResult(session_id=session.id, status=session.status, replayed=False)
