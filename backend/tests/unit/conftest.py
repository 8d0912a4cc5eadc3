from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Optional

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool
import ulid

from booking_engine.core.actor import Actor
from booking_engine.core.enums import (
    BillingCycle,
    CreditStatus,
    ExceptionKind,
    PackStatus,
    SessionStatus,
    SubscriptionStatus,
)
from booking_engine.database import Base

# Import models so Base.metadata is populated for create_all.
import booking_engine.models  # noqa: F401
from booking_engine.models import (
    AvailabilityException,
    AvailabilityTemplate,
    BookedSession,
    Client,
    ClientTimePreference,
    Provider,
    ServiceType,
    SessionPack,
    Subscription,
    SubscriptionAllocation,
    SubscriptionCredit,
)


@pytest.fixture(scope="session")
def _unit_engine():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        future=True,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    # pysqlite defers BEGIN on its own; take it over so SAVEPOINTs behave.
    @event.listens_for(engine, "connect")
    def _do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture(scope="function")
def unit_db(_unit_engine) -> Session:
    """
    Provide a session joined to an outer transaction that is rolled back after
    each test. Service commits and rollbacks only touch savepoints.
    """
    connection = _unit_engine.connect()
    transaction = connection.begin()
    session = Session(
        bind=connection,
        join_transaction_mode="create_savepoint",
        expire_on_commit=False,
    )
    try:
        yield session
    finally:
        session.close()
        transaction.rollback()
        connection.close()


@dataclass
class World:
    db: Session
    provider: Provider
    client: Client
    other_client: Client
    service_type: ServiceType

    @staticmethod
    def next_weekday(weekday: int, weeks_ahead: int = 2) -> date:
        """A date with the given weekday at least ``weeks_ahead`` weeks from today."""
        base = datetime.now(timezone.utc).date() + timedelta(weeks=weeks_ahead)
        return base + timedelta(days=(weekday - base.weekday()) % 7)

    @staticmethod
    def at(day: date, hour: int, minute: int = 0) -> datetime:
        """Aware UTC datetime on ``day``."""
        return datetime.combine(day, time(hour, minute), tzinfo=timezone.utc)

    @property
    def provider_actor(self) -> Actor:
        return Actor.provider(self.provider.id)

    @property
    def client_actor(self) -> Actor:
        return Actor.client(self.client.id)

    def add_template(self, weekday: int, start: time, end: time) -> AvailabilityTemplate:
        template = AvailabilityTemplate(
            provider_id=self.provider.id, weekday=weekday, start_time=start, end_time=end
        )
        self.db.add(template)
        self.db.commit()
        return template

    def add_exception(
        self,
        on: date,
        kind: ExceptionKind,
        start: Optional[time] = None,
        end: Optional[time] = None,
    ) -> AvailabilityException:
        exception = AvailabilityException(
            provider_id=self.provider.id,
            exception_date=on,
            kind=kind.value,
            start_time=start,
            end_time=end,
        )
        self.db.add(exception)
        self.db.commit()
        return exception

    def add_session(
        self,
        start_at: datetime,
        status: SessionStatus = SessionStatus.SCHEDULED,
        client: Optional[Client] = None,
        **fields,
    ) -> BookedSession:
        session = BookedSession(
            provider_id=self.provider.id,
            client_id=(client or self.client).id,
            service_type_id=self.service_type.id,
            start_at=start_at,
            end_at=start_at + timedelta(hours=1),
            duration_minutes=60,
            status=status.value,
            **fields,
        )
        self.db.add(session)
        self.db.commit()
        return session

    def add_pack(self, total_sessions: int = 5, **fields) -> SessionPack:
        fields.setdefault("purchase_date", datetime.now(timezone.utc).date())
        fields.setdefault("status", PackStatus.ACTIVE.value)
        fields.setdefault("client_id", self.client.id)
        fields.setdefault("service_type_id", self.service_type.id)
        pack = SessionPack(
            provider_id=self.provider.id,
            total_sessions=total_sessions,
            amount_paid=Decimal("250.00"),
            **fields,
        )
        self.db.add(pack)
        self.db.commit()
        return pack

    def add_subscription(
        self,
        quantity_per_period: int = 1,
        billing_cycle: BillingCycle = BillingCycle.WEEKLY,
        cost_per_session: Decimal = Decimal("40.00"),
        start_date: Optional[date] = None,
        status: SubscriptionStatus = SubscriptionStatus.ACTIVE,
    ) -> Subscription:
        subscription = Subscription(
            provider_id=self.provider.id,
            client_id=self.client.id,
            status=status.value,
            billing_cycle=billing_cycle.value,
            start_date=start_date or datetime.now(timezone.utc).date() - timedelta(days=30),
        )
        self.db.add(subscription)
        self.db.flush()
        self.db.add(
            SubscriptionAllocation(
                subscription_id=subscription.id,
                service_type_id=self.service_type.id,
                quantity_per_period=quantity_per_period,
                cost_per_session=cost_per_session,
            )
        )
        self.db.commit()
        self.db.refresh(subscription)
        return subscription

    def add_credit(
        self,
        subscription: Subscription,
        status: CreditStatus = CreditStatus.AVAILABLE,
        created_at: Optional[datetime] = None,
        **fields,
    ) -> SubscriptionCredit:
        if status == CreditStatus.USED:
            # Used credits must point at a session.
            fields.setdefault("session_id", str(ulid.ULID()))
        credit = SubscriptionCredit(
            subscription_id=subscription.id,
            service_type_id=self.service_type.id,
            status=status.value,
            value=Decimal("40.00"),
            reason="provisioned",
            created_at=created_at or datetime.now(timezone.utc),
            **fields,
        )
        self.db.add(credit)
        self.db.commit()
        return credit

    def add_preference(self, weekday: int, start: time, flex_minutes: int = 0) -> ClientTimePreference:
        preference = ClientTimePreference(
            provider_id=self.provider.id,
            client_id=self.client.id,
            weekday=weekday,
            start_time=start,
            flex_minutes=flex_minutes,
            is_active=True,
        )
        self.db.add(preference)
        self.db.commit()
        return preference


@pytest.fixture
def world(unit_db: Session) -> World:
    """A UTC provider with two clients and one service type."""
    provider = Provider(name="Pat Provider", timezone="UTC")
    unit_db.add(provider)
    unit_db.flush()
    client = Client(provider_id=provider.id, name="Casey Client")
    other_client = Client(provider_id=provider.id, name="Other Client")
    service_type = ServiceType(provider_id=provider.id, name="Personal training")
    unit_db.add_all([client, other_client, service_type])
    unit_db.commit()
    return World(
        db=unit_db,
        provider=provider,
        client=client,
        other_client=other_client,
        service_type=service_type,
    )
