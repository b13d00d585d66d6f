import os

os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ["DATABASE_URL"] = "sqlite://"

from datetime import date, time
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker

from ticketa.database import Base, get_db, get_session_factory
from ticketa.models import (
    User, Profile, UserRole, BusCompany, CompanyAdmin, Bus, Route, Schedule, Trip, Driver
)
from ticketa.auth.permissions import Identity, Role, parse_roles
from ticketa.auth.utils import get_password_hash, create_access_token
from ticketa.main import app

PASSWORD = "secret123"
PASSWORD_HASH = get_password_hash(PASSWORD)


def _sqlite_engine(path, immediate=False):
    engine = create_engine(
        f"sqlite:///{path}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )

    if immediate:
        # Take the write lock when a transaction starts so concurrent
        # writers queue up instead of failing with "database is locked"
        @event.listens_for(engine, "connect")
        def _disable_pysqlite_transactions(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None

        @event.listens_for(engine, "begin")
        def _begin_immediate(conn):
            conn.exec_driver_sql("BEGIN IMMEDIATE")

    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def engine(tmp_path):
    engine = _sqlite_engine(tmp_path / "ticketa.db")
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def serial_session_factory(tmp_path):
    """Sessions whose transactions serialize like row locks on Postgres"""
    engine = _sqlite_engine(tmp_path / "ticketa-serial.db", immediate=True)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def client(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


class Factory:
    """Inserts rows directly so tests only exercise the code under test"""

    def __init__(self, db):
        self.db = db
        self._seq = 0

    def _next(self):
        self._seq += 1
        return self._seq

    def _save(self, obj):
        self.db.add(obj)
        self.db.commit()
        self.db.refresh(obj)
        return obj

    def user(self, email=None, roles=(Role.PASSENGER,), full_name="Test User"):
        user = self._save(User(
            email=email or f"user{self._next()}@example.com",
            password=PASSWORD_HASH
        ))
        self.db.add(Profile(user_id=user.id, full_name=full_name, phone="0912345678"))
        for role in roles:
            self.db.add(UserRole(user_id=user.id, role=Role(role).value))
        self.db.commit()
        self.db.refresh(user)
        return user

    def company(self, admin=None, approved=True, active=True, name=None):
        company = self._save(BusCompany(
            name=name or f"Company {self._next()}",
            is_approved=approved,
            is_active=active
        ))
        if admin is not None:
            self._save(CompanyAdmin(company_id=company.id, user_id=admin.id))
        return company

    def bus(self, company, seat_capacity=40, status="available"):
        return self._save(Bus(
            company_id=company.id,
            registration_number=f"BUS-{self._next():04d}",
            model="Coach",
            seat_capacity=seat_capacity,
            amenities=["wifi"],
            status=status
        ))

    def route(self, company, origin="Yangon", destination="Mandalay"):
        return self._save(Route(
            company_id=company.id,
            origin=origin,
            destination=destination,
            stops=[],
            estimated_duration_minutes=540,
            is_active=True
        ))

    def schedule(self, route, bus, price=Decimal("25000.00"), days_of_week=(0, 1, 2, 3, 4, 5, 6),
                 departure_time=time(8, 0)):
        return self._save(Schedule(
            route_id=route.id,
            bus_id=bus.id,
            departure_time=departure_time,
            arrival_time=time(17, 0),
            days_of_week=list(days_of_week),
            price=price,
            is_active=True
        ))

    def trip(self, company=None, seat_capacity=40, trip_date=None, status="scheduled",
             available_seats=None, origin="Yangon", destination="Mandalay"):
        company = company or self.company()
        bus = self.bus(company, seat_capacity=seat_capacity)
        route = self.route(company, origin=origin, destination=destination)
        schedule = self.schedule(route, bus)
        return self._save(Trip(
            schedule_id=schedule.id,
            trip_date=trip_date or date.today(),
            available_seats=seat_capacity if available_seats is None else available_seats,
            status=status
        ))

    def driver(self, company, user=None, active=True):
        user = user or self.user(roles=(Role.PASSENGER, Role.DRIVER))
        self._save(Driver(user_id=user.id, company_id=company.id, is_active=active))
        return user

    def company_of(self, trip):
        return self.db.get(Trip, trip.id).schedule.route.company

    def identity(self, user):
        self.db.refresh(user)
        return Identity(
            user_id=user.id,
            email=user.email,
            roles=parse_roles(r.role for r in user.user_roles),
            company_ids=frozenset(
                row.company_id for row in
                self.db.query(CompanyAdmin).filter(CompanyAdmin.user_id == user.id).all()
            )
        )


@pytest.fixture
def factory(db):
    return Factory(db)


def auth_headers(user):
    token = create_access_token({"sub": str(user.id), "email": user.email})
    return {"Authorization": f"Bearer {token}"}


def seat_request(trip_id, seat_number, name="Aung Aung", phone="0912345678"):
    from ticketa.bookings.schemas import SeatAllocationRequest
    return SeatAllocationRequest(
        trip_id=trip_id, seat_number=seat_number, passenger_name=name, passenger_phone=phone
    )
