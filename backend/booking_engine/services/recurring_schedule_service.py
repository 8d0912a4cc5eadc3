# backend/booking_engine/services/recurring_schedule_service.py
"""
Recurring Schedule Service

Expands a client's weekly time preferences over a date range into proposed
occurrences, classifies each one, and on confirm books them one by one.

Classification, in iteration order (date, then time):
- ok:       the preferred slot is open
- warning:  open only after a flex shift, the date has an availability
            exception, or the start is within 24 hours
- conflict: nothing fits within the preference's flex tolerance, or the
            entitlement budget ran out on an earlier occurrence

Confirm is deliberately not all-or-nothing: each booking commits on its
own, and the run stops at the first failure without undoing earlier ones.
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
import logging
from typing import Dict, Iterator, List, Optional, Sequence, Tuple, Union

from sqlalchemy.orm import Session

from ..core.actor import Actor
from ..core.config import settings
from ..core.enums import (
    EntitlementKind,
    OccurrenceOutcome,
    OccurrenceStatus,
    ScheduleAction,
    Weekday,
)
from ..core.exceptions import DomainException, NotFoundException, ValidationException
from ..core.idempotency import schedule_idempotency_key
from ..core.timezone_utils import ensure_utc, get_provider_timezone, hours_until
from ..models.provider import Provider
from ..models.schedule import ClientTimePreference, RecurringSchedule
from ..repositories import RepositoryFactory
from ..schemas._strict_base import validate_request
from ..schemas.recurring import (
    GenerateScheduleRequest,
    OccurrenceResult,
    ProposedOccurrence,
    ScheduleConfirmation,
    SchedulePreview,
    ScheduleStats,
)
from ..utils.intervals import Interval, contains, merge, subtract
from ..utils.time_utils import format_hhmm
from .availability_service import AvailabilityService
from .base import BaseService
from .booking_service import BookingService

logger = logging.getLogger(__name__)


@dataclass
class _Candidate:
    day: date
    preference: ClientTimePreference
    start_at: datetime

    @property
    def key(self) -> Tuple[date, str]:
        return (self.day, format_hhmm(self.preference.start_time))


class _EntitlementBudget:
    """
    Sessions the entitlement can still cover, drawn down in iteration order.

    Packs draw from a single remaining count. Subscriptions draw from
    available credits first, then from each billing period's allowance.
    """

    def __init__(self, service: "RecurringScheduleService", request: GenerateScheduleRequest, tz):
        self.service = service
        self.request = request
        self.tz = tz
        self.kind = request.entitlement_policy.kind
        self.blocked_reason: Optional[str] = None
        self.pack = None
        self.subscription = None
        self.pack_remaining = 0
        self.credits = 0
        self.period_remaining: Dict[datetime, int] = {}
        ledger = service.booking_service.credit_ledger

        if self.kind == EntitlementKind.PACK:
            self.pack = service.booking_service.check_entitlement_ownership(
                request.entitlement_policy,
                request.provider_id,
                request.client_id,
                request.service_type_id,
            )
            if not self.pack.is_active:
                self.blocked_reason = "Pack is no longer active"
            self.pack_remaining = ledger.pack_remaining(self.pack)
        elif self.kind == EntitlementKind.SUBSCRIPTION:
            owned = service.booking_service.check_entitlement_ownership(
                request.entitlement_policy,
                request.provider_id,
                request.client_id,
                request.service_type_id,
            )
            self.subscription = ledger.subscription_repository.get_with_allocations(owned.id)
            if not self.subscription.is_active:
                self.blocked_reason = "Subscription is not active"
            elif self.subscription.allocation_for(request.service_type_id) is None:
                self.blocked_reason = "Subscription does not cover this service type"
            self.credits = ledger.credit_repository.count_available(
                self.subscription.id, request.service_type_id
            )

    def take(self, start_at: datetime) -> Optional[str]:
        """Consume one unit for a session at start_at; returns a reason when none is left."""
        if self.kind == EntitlementKind.NONE:
            return None
        if self.blocked_reason:
            return self.blocked_reason
        local_day = start_at.astimezone(self.tz).date()

        if self.kind == EntitlementKind.PACK:
            if self.pack.is_expired(local_day):
                return "Pack expires before this date"
            if self.pack_remaining <= 0:
                return "No sessions remaining on this pack"
            self.pack_remaining -= 1
            return None

        subscription = self.subscription
        if local_day < subscription.start_date or (
            subscription.end_date is not None and local_day > subscription.end_date
        ):
            return "Date is outside the subscription term"
        if self.credits > 0:
            self.credits -= 1
            return None
        ledger = self.service.booking_service.credit_ledger
        period_start, _ = ledger.billing_period(subscription, start_at, self.tz)
        if period_start not in self.period_remaining:
            self.period_remaining[period_start] = ledger.allowance_remaining(
                subscription, self.request.service_type_id, start_at, self.tz
            )
        if self.period_remaining[period_start] <= 0:
            return "No subscription sessions remaining for this period"
        self.period_remaining[period_start] -= 1
        return None


def _flex_offsets(flex_minutes: int, step: int) -> Iterator[int]:
    """0, +step, -step, +2*step, -2*step, ... within +/- flex_minutes."""
    yield 0
    offset = step
    while offset <= flex_minutes:
        yield offset
        yield -offset
        offset += step


class RecurringScheduleService(BaseService):
    def __init__(
        self,
        db: Session,
        booking_service: Optional[BookingService] = None,
        availability_service: Optional[AvailabilityService] = None,
    ):
        super().__init__(db)
        self.booking_service = booking_service or BookingService(db)
        self.availability_service = availability_service or self.booking_service.availability_service
        self.preference_repository = RepositoryFactory.create_time_preference_repository(db)
        self.schedule_repository = RepositoryFactory.create_recurring_schedule_repository(db)
        self.session_repository = RepositoryFactory.create_session_repository(db)
        self.service_type_repository = RepositoryFactory.create_service_type_repository(db)

    @BaseService.measure_operation("generate_schedule")
    def generate_schedule(
        self,
        actor: Actor,
        action: Union[ScheduleAction, str],
        provider_id: str,
        client_id: str,
        service_type_id: str,
        preference_ids: Sequence[str],
        start_date: date,
        end_date: date,
        entitlement_policy: object = "none",
        excluded_occurrences: Sequence[object] = (),
        now: Optional[datetime] = None,
    ) -> Union[SchedulePreview, ScheduleConfirmation]:
        """
        Preview or confirm a recurring schedule.

        Args:
            action: "preview" or "confirm"
            preference_ids: Active preferences of the client to expand
            start_date: First date considered (inclusive)
            end_date: Last date considered (inclusive), after start_date
            entitlement_policy: "none", "pack:<id>" or "subscription:<id>" for every occurrence
            excluded_occurrences: (date, "HH:MM") keys removed after preview
            now: Clock injection

        Returns:
            SchedulePreview for preview, ScheduleConfirmation for confirm
        """
        request = validate_request(
            GenerateScheduleRequest,
            action=action,
            provider_id=provider_id,
            client_id=client_id,
            service_type_id=service_type_id,
            preference_ids=list(preference_ids),
            start_date=start_date,
            end_date=end_date,
            entitlement_policy=entitlement_policy,
            excluded_occurrences=list(excluded_occurrences),
        )
        current_time = ensure_utc(now) if now is not None else datetime.now(timezone.utc)

        provider = self.booking_service.get_provider_for_booking(
            actor, request.provider_id, request.client_id
        )
        if self.service_type_repository.get_for_provider(request.service_type_id, provider.id) is None:
            raise NotFoundException(
                "Service type not found",
                code="SERVICE_TYPE_NOT_FOUND",
                details={"id": request.service_type_id},
            )
        preferences = self._load_preferences(request)
        tz = get_provider_timezone(provider)
        candidates = self._expand(preferences, request.start_date, request.end_date, tz)
        if len(candidates) > settings.max_sessions_per_schedule:
            raise ValidationException(
                f"Schedule would create {len(candidates)} sessions "
                f"(max {settings.max_sessions_per_schedule})",
                code="TOO_MANY_OCCURRENCES",
                details={"count": len(candidates)},
            )

        occurrences = self._classify(provider, request, candidates, tz, current_time)
        if request.action == ScheduleAction.PREVIEW:
            return SchedulePreview(occurrences=occurrences, stats=self._stats(occurrences))
        return self._confirm(actor, request, preferences, occurrences, current_time)

    # Expansion

    def _load_preferences(self, request: GenerateScheduleRequest) -> List[ClientTimePreference]:
        wanted = list(dict.fromkeys(request.preference_ids))
        preferences = self.preference_repository.get_for_client(
            request.client_id, ids=wanted, active_only=True
        )
        found = {p.id for p in preferences}
        missing = [pid for pid in wanted if pid not in found]
        if missing:
            raise ValidationException(
                "Time preferences must be active and belong to the client",
                code="INVALID_PREFERENCES",
                details={"preference_ids": missing},
            )
        return preferences

    @staticmethod
    def _expand(
        preferences: Sequence[ClientTimePreference], start_date: date, end_date: date, tz
    ) -> List[_Candidate]:
        by_weekday: Dict[int, List[ClientTimePreference]] = {}
        for preference in preferences:
            by_weekday.setdefault(int(preference.weekday), []).append(preference)
        for group in by_weekday.values():
            group.sort(key=lambda p: (p.start_time, p.id))

        candidates: List[_Candidate] = []
        day = start_date
        while day <= end_date:
            for preference in by_weekday.get(day.weekday(), []):
                start_at = tz.localize(datetime.combine(day, preference.start_time))
                candidates.append(_Candidate(day=day, preference=preference, start_at=start_at))
            day += timedelta(days=1)
        return candidates

    # Classification

    def _classify(
        self,
        provider: Provider,
        request: GenerateScheduleRequest,
        candidates: Sequence[_Candidate],
        tz,
        now: datetime,
    ) -> List[ProposedOccurrence]:
        excluded = {item.key for item in request.excluded_occurrences}
        budget = _EntitlementBudget(self, request, tz)
        open_by_day: Dict[date, List[Interval]] = {}
        exception_days: Dict[date, bool] = {}
        claimed: List[Interval] = []
        duration = timedelta(minutes=settings.session_duration_minutes)
        step = settings.flex_step_minutes

        def open_intervals(first: date, last: date) -> List[Interval]:
            intervals: List[Interval] = []
            day = first
            while day <= last:
                if day not in open_by_day:
                    open_by_day[day] = self.availability_service.resolve_for_provider(provider, day, day)
                intervals.extend(open_by_day[day])
                day += timedelta(days=1)
            return subtract(merge(intervals), claimed)

        occurrences: List[ProposedOccurrence] = []
        for candidate in candidates:
            preferred_time = format_hhmm(candidate.preference.start_time)
            base = {
                "date": candidate.day,
                "time": preferred_time,
                "weekday": Weekday(candidate.day.weekday()),
                "preference_id": candidate.preference.id,
            }
            if candidate.key in excluded:
                occurrences.append(
                    ProposedOccurrence(
                        **base,
                        start_at=candidate.start_at,
                        status=OccurrenceStatus.OK,
                        message="Excluded",
                        excluded=True,
                    )
                )
                continue

            flex = min(int(candidate.preference.flex_minutes or 0), settings.max_flex_minutes)
            fit: Optional[Interval] = None
            shift = 0
            for offset in _flex_offsets(flex, step):
                start = candidate.start_at + timedelta(minutes=offset)
                if start <= now:
                    continue
                slot = Interval(start, start + duration)
                local_start = slot.start.astimezone(tz)
                local_end = (slot.end - timedelta(microseconds=1)).astimezone(tz)
                if contains(open_intervals(local_start.date(), local_end.date()), slot):
                    fit, shift = slot, offset
                    break

            if fit is None:
                occurrences.append(
                    ProposedOccurrence(
                        **base,
                        start_at=candidate.start_at,
                        status=OccurrenceStatus.CONFLICT,
                        message=(
                            f"No availability within {flex} minutes of the preferred time"
                            if flex
                            else "Preferred time is not available"
                        ),
                    )
                )
                continue

            exhausted = budget.take(fit.start)
            if exhausted:
                occurrences.append(
                    ProposedOccurrence(
                        **base,
                        start_at=fit.start,
                        status=OccurrenceStatus.CONFLICT,
                        message=exhausted,
                        adjusted=shift != 0,
                    )
                )
                continue

            claimed.append(fit)
            warnings: List[str] = []
            if shift:
                warnings.append(f"Shifted by {shift:+d} minutes")
            if candidate.day not in exception_days:
                exception_days[candidate.day] = self.availability_service.has_exception_on(
                    provider, candidate.day
                )
            if exception_days[candidate.day]:
                warnings.append("Availability exception on this date")
            if hours_until(fit.start, now) <= 24:
                warnings.append("Starts within 24 hours")

            occurrences.append(
                ProposedOccurrence(
                    **base,
                    start_at=fit.start,
                    status=OccurrenceStatus.WARNING if warnings else OccurrenceStatus.OK,
                    message="; ".join(warnings) or None,
                    adjusted=shift != 0,
                )
            )
        return occurrences

    @staticmethod
    def _stats(occurrences: Sequence[ProposedOccurrence]) -> ScheduleStats:
        active = [o for o in occurrences if not o.excluded]
        return ScheduleStats(
            total_proposed=len(occurrences),
            ok=sum(1 for o in active if o.status == OccurrenceStatus.OK),
            warnings=sum(1 for o in active if o.status == OccurrenceStatus.WARNING),
            conflicts=sum(1 for o in active if o.status == OccurrenceStatus.CONFLICT),
            excluded=len(occurrences) - len(active),
        )

    # Confirm

    def _confirm(
        self,
        actor: Actor,
        request: GenerateScheduleRequest,
        preferences: Sequence[ClientTimePreference],
        occurrences: Sequence[ProposedOccurrence],
        now: datetime,
    ) -> ScheduleConfirmation:
        key = schedule_idempotency_key(
            [
                request.provider_id,
                request.client_id,
                request.service_type_id,
                ",".join(sorted(request.preference_ids)),
                request.start_date.isoformat(),
                request.end_date.isoformat(),
                str(request.entitlement_policy),
                ",".join(
                    sorted(f"{e.date.isoformat()}T{e.time}" for e in request.excluded_occurrences)
                ),
            ]
        )
        existing = self.schedule_repository.get_by_idempotency_key(key)
        if existing is not None:
            self.logger.info(
                "Recurring schedule %s already confirmed", existing.id,
                extra={"schedule_id": existing.id},
            )
            return ScheduleConfirmation(
                schedule_id=existing.id, created_count=0, failed_count=0, results=[], replayed=True
            )

        with self.transaction():
            schedule: RecurringSchedule = self.schedule_repository.create(
                provider_id=request.provider_id,
                client_id=request.client_id,
                service_type_id=request.service_type_id,
                start_date=request.start_date,
                end_date=request.end_date,
                entitlement_policy=str(request.entitlement_policy),
                preference_ids=[p.id for p in preferences],
                idempotency_key=key,
                created_by_id=actor.actor_id,
            )
            for preference in preferences:
                preference.recurring_schedule_id = schedule.id
            self.db.flush()

        results: List[OccurrenceResult] = []
        stopped = False
        for occurrence in occurrences:
            base = {"date": occurrence.date, "time": occurrence.time, "start_at": occurrence.start_at}
            if stopped:
                results.append(OccurrenceResult(**base, status=OccurrenceOutcome.NOT_ATTEMPTED))
                continue
            if occurrence.excluded or occurrence.status == OccurrenceStatus.CONFLICT:
                results.append(
                    OccurrenceResult(
                        **base, status=OccurrenceOutcome.SKIPPED, message=occurrence.message
                    )
                )
                continue
            try:
                booking = self.booking_service.book_session(
                    actor,
                    request.provider_id,
                    request.client_id,
                    request.service_type_id,
                    occurrence.start_at,
                    entitlement=request.entitlement_policy,
                    idempotency_key=f"{schedule.id}:{occurrence.date.isoformat()}:{occurrence.time}",
                    recurring_schedule_id=schedule.id,
                    now=now,
                )
            except DomainException as exc:
                self.logger.warning(
                    "Recurring booking failed for %s %s: %s",
                    occurrence.date.isoformat(),
                    occurrence.time,
                    exc.message,
                    extra={"schedule_id": schedule.id, "code": exc.code},
                )
                results.append(
                    OccurrenceResult(
                        **base,
                        status=OccurrenceOutcome.FAILED,
                        error_code=exc.code,
                        message=exc.message,
                    )
                )
                stopped = True
                continue
            results.append(
                OccurrenceResult(**base, status=OccurrenceOutcome.CREATED, session_id=booking.session_id)
            )

        created = sum(1 for r in results if r.status == OccurrenceOutcome.CREATED)
        failed = sum(1 for r in results if r.status == OccurrenceOutcome.FAILED)
        self.log_operation(
            "confirm_recurring_schedule",
            schedule_id=schedule.id,
            created=created,
            failed=failed,
            stopped_early=stopped,
        )
        return ScheduleConfirmation(
            schedule_id=schedule.id,
            created_count=created,
            failed_count=failed,
            results=results,
            stopped_early=stopped,
        )
