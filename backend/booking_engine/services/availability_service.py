# backend/booking_engine/services/availability_service.py
"""
Availability Service

Resolves a provider's bookable intervals for a date range:

1. Project every weekly template for the day's weekday onto that date.
2. Apply the date's exceptions: a full_day_block empties the day outright;
   otherwise partial_block ranges are subtracted, then extra_slot ranges are
   added and the set is re-merged.
3. Subtract every scheduled/completed session (one hour each).
4. Drop anything empty.

Templates and exceptions are wall-clock times in the provider's timezone;
returned intervals are aware datetimes in that timezone. The resolver is a
pure read: it never caches and never writes.
"""

from collections import defaultdict
from datetime import date, datetime, time, timedelta
import logging
from typing import Dict, List, Optional, Sequence

from sqlalchemy.orm import Session

from ..core.actor import Actor
from ..core.config import settings
from ..core.enums import ExceptionKind, Weekday
from ..core.exceptions import NotFoundException, ValidationException
from ..core.timezone_utils import (
    day_bounds,
    ensure_utc,
    get_provider_timezone,
    localize_wall_time,
    to_local,
)
from ..models.availability import AvailabilityException, AvailabilityTemplate
from ..models.provider import Provider
from ..models.session import BookedSession
from ..repositories import RepositoryFactory
from ..schemas._strict_base import validate_request
from ..schemas.availability import BusySlot, ExceptionCreate, ResolveRequest, TemplateCreate
from ..utils.intervals import Interval, contains, merge, normalize, subtract
from .access import ensure_can_view, ensure_provider
from .base import BaseService

logger = logging.getLogger(__name__)


def _daterange(start: date, end: date):
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


class AvailabilityService(BaseService):
    """Availability resolver plus template/exception management."""

    def __init__(self, db: Session):
        super().__init__(db)
        self.repository = RepositoryFactory.create_availability_repository(db)
        self.session_repository = RepositoryFactory.create_session_repository(db)
        self.provider_repository = RepositoryFactory.create_provider_repository(db)
        self.client_repository = RepositoryFactory.create_client_repository(db)

    # Access

    def get_visible_provider(self, actor: Actor, provider_id: str) -> Provider:
        """
        Load a provider the actor may see: itself, or the provider a client belongs to.
        """
        provider = self.provider_repository.get_by_id(provider_id)
        if provider is None or (
            actor.is_client
            and self.client_repository.get_for_provider(actor.actor_id, provider_id) is None
        ):
            raise NotFoundException(
                "Provider not found", code="PROVIDER_NOT_FOUND", details={"id": provider_id}
            )
        ensure_can_view(actor, provider_id=provider.id, resource="Provider", resource_id=provider_id)
        return provider

    # Resolver

    @BaseService.measure_operation("resolve_availability")
    def resolve(
        self, actor: Actor, provider_id: str, date_from: date, date_to: date
    ) -> List[Interval]:
        """
        Open intervals for [date_from, date_to] (inclusive calendar dates).

        Returns:
            Ordered list of Interval(start, end) in the provider's timezone
        """
        validate_request(ResolveRequest, date_from=date_from, date_to=date_to)
        provider = self.get_visible_provider(actor, provider_id)
        return self.resolve_for_provider(provider, date_from, date_to)

    def resolve_for_provider(
        self,
        provider: Provider,
        date_from: date,
        date_to: date,
        *,
        exclude_session_id: Optional[str] = None,
    ) -> List[Interval]:
        """Resolver without access checks, for use inside other services."""
        span = (date_to - date_from).days + 1
        if span > settings.max_resolve_days:
            raise ValidationException(
                f"Date range too large ({span} days). Max {settings.max_resolve_days}",
                code="RANGE_TOO_LARGE",
            )
        windows = self.declared_windows(provider, date_from, date_to)
        tz = get_provider_timezone(provider)
        range_start, _ = day_bounds(tz, date_from)
        _, range_end = day_bounds(tz, date_to)
        sessions = self.session_repository.get_occupying_sessions(
            provider.id, range_start, range_end, exclude_session_id=exclude_session_id
        )
        busy_by_day = self._sessions_by_day(sessions, tz)

        result: List[Interval] = []
        for day in _daterange(date_from, date_to):
            open_now = subtract(windows.get(day, []), busy_by_day.get(day, []))
            result.extend(open_now)
        return normalize(result)

    def declared_windows(
        self, provider: Provider, date_from: date, date_to: date
    ) -> Dict[date, List[Interval]]:
        """Steps 1-2 only: templates plus exceptions, before sessions are subtracted."""
        tz = get_provider_timezone(provider)
        templates_by_weekday: Dict[int, List[AvailabilityTemplate]] = defaultdict(list)
        for template in self.repository.get_templates(provider.id):
            templates_by_weekday[int(template.weekday)].append(template)

        exceptions_by_day: Dict[date, List[AvailabilityException]] = defaultdict(list)
        for exception in self.repository.get_exceptions(provider.id, date_from, date_to):
            exceptions_by_day[exception.exception_date].append(exception)

        windows: Dict[date, List[Interval]] = {}
        for day in _daterange(date_from, date_to):
            baseline = merge(
                self._project(tz, day, t.start_time, t.end_time)
                for t in templates_by_weekday.get(day.weekday(), [])
            )
            windows[day] = self._apply_exceptions(tz, day, baseline, exceptions_by_day.get(day, []))
        return windows

    def _apply_exceptions(
        self,
        tz,
        day: date,
        baseline: List[Interval],
        exceptions: Sequence[AvailabilityException],
    ) -> List[Interval]:
        if not exceptions:
            return baseline
        kinds = [e.kind_enum for e in exceptions]
        if ExceptionKind.FULL_DAY_BLOCK in kinds:
            return []

        working = subtract(
            baseline,
            [
                self._project(tz, day, e.start_time, e.end_time)
                for e, kind in zip(exceptions, kinds)
                if kind == ExceptionKind.PARTIAL_BLOCK
            ],
        )
        extras = [
            self._project(tz, day, e.start_time, e.end_time)
            for e, kind in zip(exceptions, kinds)
            if kind == ExceptionKind.EXTRA_SLOT
        ]
        return merge(working + extras)

    @staticmethod
    def _project(tz, day: date, start: time, end: time) -> Interval:
        return Interval(
            localize_wall_time(tz, day, start),
            localize_wall_time(tz, day, end, is_end_time=True),
        )

    @staticmethod
    def _sessions_by_day(sessions: Sequence[BookedSession], tz) -> Dict[date, List[Interval]]:
        """Group session hours by each local day they touch."""
        grouped: Dict[date, List[Interval]] = defaultdict(list)
        for session in sessions:
            start = to_local(session.start_at, tz)
            end = to_local(session.end_at, tz)
            day = start.date()
            while day <= end.date():
                grouped[day].append(Interval(start, end))
                day += timedelta(days=1)
        return grouped

    def is_bookable(
        self,
        provider: Provider,
        start_at: datetime,
        end_at: datetime,
        *,
        exclude_session_id: Optional[str] = None,
    ) -> bool:
        """True when [start_at, end_at) lies inside one open interval."""
        tz = get_provider_timezone(provider)
        local_start = to_local(start_at, tz)
        local_end = to_local(end_at, tz)
        open_intervals = self.resolve_for_provider(
            provider,
            local_start.date(),
            local_end.date(),
            exclude_session_id=exclude_session_id,
        )
        return contains(open_intervals, Interval(local_start, local_end))

    def within_declared_availability(
        self, provider: Provider, start_at: datetime, end_at: datetime
    ) -> bool:
        """Containment against templates and exceptions only, ignoring sessions."""
        tz = get_provider_timezone(provider)
        local_start = to_local(start_at, tz)
        local_end = to_local(end_at, tz)
        windows = self.declared_windows(provider, local_start.date(), local_end.date())
        all_windows = [w for day_windows in windows.values() for w in day_windows]
        return contains(all_windows, Interval(local_start, local_end))

    def has_exception_on(self, provider: Provider, day: date) -> bool:
        return bool(self.repository.get_exceptions(provider.id, day, day))

    # Busy slots

    @BaseService.measure_operation("get_busy_slots")
    def get_busy_slots(
        self, actor: Actor, provider_id: str, range_start: datetime, range_end: datetime
    ) -> List[BusySlot]:
        """
        Occupied (scheduled/completed) hours in [range_start, range_end).

        Clients see every occupied slot but only their own session ids.
        """
        if range_start.tzinfo is None or range_end.tzinfo is None:
            raise ValidationException("range bounds must be timezone-aware", code="NAIVE_DATETIME")
        if range_end <= range_start:
            raise ValidationException("range_end must be after range_start", code="INVALID_RANGE")
        provider = self.get_visible_provider(actor, provider_id)

        slots: List[BusySlot] = []
        for session in self.session_repository.get_occupying_sessions(
            provider.id, range_start, range_end
        ):
            own = actor.is_provider or session.client_id == actor.actor_id
            slots.append(
                BusySlot(
                    start_at=ensure_utc(session.start_at),
                    end_at=ensure_utc(session.end_at),
                    status=session.status,
                    session_id=session.id if own else None,
                    is_own=actor.is_client and session.client_id == actor.actor_id,
                )
            )
        return slots

    # Templates

    @BaseService.measure_operation("create_template")
    def create_template(
        self, actor: Actor, provider_id: str, weekday: object, start_time: time, end_time: time
    ) -> AvailabilityTemplate:
        """
        Add a weekly window. Overlapping windows on the same weekday are
        accepted; the resolver merges them.
        """
        request = validate_request(
            TemplateCreate, weekday=weekday, start_time=start_time, end_time=end_time
        )
        provider = self.get_visible_provider(actor, provider_id)
        ensure_provider(actor, provider.id, "manage availability")

        with self.transaction():
            template = self.repository.create(
                provider_id=provider.id,
                weekday=int(request.weekday),
                start_time=request.start_time,
                end_time=request.end_time,
            )
        self.log_operation(
            "create_template",
            provider_id=provider.id,
            weekday=Weekday(request.weekday).name,
            template_id=template.id,
        )
        return template

    def list_templates(self, actor: Actor, provider_id: str) -> List[AvailabilityTemplate]:
        provider = self.get_visible_provider(actor, provider_id)
        return self.repository.get_templates(provider.id)

    @BaseService.measure_operation("delete_template")
    def delete_template(self, actor: Actor, template_id: str) -> None:
        template = self.repository.get_by_id(template_id)
        if template is None or not (actor.is_provider and actor.actor_id == template.provider_id):
            raise NotFoundException(
                "Availability template not found",
                code="TEMPLATE_NOT_FOUND",
                details={"id": template_id},
            )
        with self.transaction():
            self.repository.delete(template_id)
        self.log_operation("delete_template", template_id=template_id)

    # Exceptions

    @BaseService.measure_operation("create_exception")
    def create_exception(
        self,
        actor: Actor,
        provider_id: str,
        exception_date: date,
        kind: object,
        start_time: Optional[time] = None,
        end_time: Optional[time] = None,
        notes: Optional[str] = None,
    ) -> AvailabilityException:
        request = validate_request(
            ExceptionCreate,
            exception_date=exception_date,
            kind=kind,
            start_time=start_time,
            end_time=end_time,
            notes=notes,
        )
        provider = self.get_visible_provider(actor, provider_id)
        ensure_provider(actor, provider.id, "manage availability")

        with self.transaction():
            exception = self.repository.create_exception(
                provider_id=provider.id,
                exception_date=request.exception_date,
                kind=request.kind.value,
                start_time=request.start_time,
                end_time=request.end_time,
                notes=request.notes,
            )
        self.log_operation(
            "create_exception",
            provider_id=provider.id,
            exception_date=request.exception_date.isoformat(),
            kind=request.kind.value,
        )
        return exception

    def list_exceptions(
        self, actor: Actor, provider_id: str, date_from: date, date_to: date
    ) -> List[AvailabilityException]:
        validate_request(ResolveRequest, date_from=date_from, date_to=date_to)
        provider = self.get_visible_provider(actor, provider_id)
        return self.repository.get_exceptions(provider.id, date_from, date_to)

    @BaseService.measure_operation("delete_exception")
    def delete_exception(self, actor: Actor, exception_id: str) -> None:
        exception = self.repository.get_exception(exception_id)
        if exception is None or not (
            actor.is_provider and actor.actor_id == exception.provider_id
        ):
            raise NotFoundException(
                "Availability exception not found",
                code="EXCEPTION_NOT_FOUND",
                details={"id": exception_id},
            )
        with self.transaction():
            self.repository.delete_exception(exception)
        self.log_operation("delete_exception", exception_id=exception_id)
