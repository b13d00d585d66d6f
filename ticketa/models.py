from sqlalchemy import (
    Column, Integer, BigInteger, String, Boolean, DateTime, Date, Time, Text,
    ForeignKey, Numeric, JSON, Index, UniqueConstraint, text
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from ticketa.database import Base

# SQLite only autoincrements INTEGER PRIMARY KEY columns
BigIntPK = BigInteger().with_variant(Integer, "sqlite")

# ================================
# Users, Profiles & Roles
# ================================
class User(Base):
    __tablename__ = "users"

    id = Column(BigIntPK, primary_key=True, index=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    password = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    profile = relationship("Profile", back_populates="user", uselist=False)
    user_roles = relationship("UserRole", back_populates="user", cascade="all, delete-orphan")
    tickets = relationship("Ticket", back_populates="passenger", foreign_keys="Ticket.passenger_id")

class Profile(Base):
    __tablename__ = "profiles"

    id = Column(BigIntPK, primary_key=True, index=True)
    user_id = Column(BigInteger, ForeignKey("users.id"), unique=True, nullable=False)
    full_name = Column(String(255))
    phone = Column(String(50))
    avatar_url = Column(String(500))
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    user = relationship("User", back_populates="profile")

class UserRole(Base):
    __tablename__ = "user_roles"
    __table_args__ = (UniqueConstraint("user_id", "role", name="uq_user_roles_user_role"),)

    id = Column(BigIntPK, primary_key=True, index=True)
    user_id = Column(BigInteger, ForeignKey("users.id"), nullable=False, index=True)
    role = Column(String(50), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    user = relationship("User", back_populates="user_roles")

# ================================
# Companies & Fleet
# ================================
class BusCompany(Base):
    __tablename__ = "bus_companies"

    id = Column(BigIntPK, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    logo_url = Column(String(500))
    contact_email = Column(String(255))
    contact_phone = Column(String(50))
    address = Column(Text)
    is_approved = Column(Boolean, default=False, index=True)
    is_active = Column(Boolean, default=True, index=True)
    average_rating = Column(Numeric(3, 2), default=0)
    total_reviews = Column(Integer, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    admins = relationship("CompanyAdmin", back_populates="company")
    buses = relationship("Bus", back_populates="company")
    routes = relationship("Route", back_populates="company")
    drivers = relationship("Driver", back_populates="company")

class CompanyAdmin(Base):
    __tablename__ = "company_admins"
    __table_args__ = (UniqueConstraint("company_id", "user_id", name="uq_company_admins_company_user"),)

    id = Column(BigIntPK, primary_key=True, index=True)
    company_id = Column(BigInteger, ForeignKey("bus_companies.id"), nullable=False, index=True)
    user_id = Column(BigInteger, ForeignKey("users.id"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    company = relationship("BusCompany", back_populates="admins")

class Bus(Base):
    __tablename__ = "buses"

    id = Column(BigIntPK, primary_key=True, index=True)
    company_id = Column(BigInteger, ForeignKey("bus_companies.id"), nullable=False, index=True)
    registration_number = Column(String(50), unique=True, nullable=False)
    model = Column(String(100))
    seat_capacity = Column(Integer, nullable=False)
    amenities = Column(JSON, default=list)
    status = Column(String(20), default="available")
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    company = relationship("BusCompany", back_populates="buses")
    schedules = relationship("Schedule", back_populates="bus")

class Route(Base):
    __tablename__ = "routes"

    id = Column(BigIntPK, primary_key=True, index=True)
    company_id = Column(BigInteger, ForeignKey("bus_companies.id"), nullable=False, index=True)
    origin = Column(String(255), nullable=False, index=True)
    destination = Column(String(255), nullable=False, index=True)
    stops = Column(JSON, default=list)
    distance_km = Column(Numeric(8, 2))
    estimated_duration_minutes = Column(Integer)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    company = relationship("BusCompany", back_populates="routes")
    schedules = relationship("Schedule", back_populates="route")

# ================================
# Schedules & Trips
# ================================
class Schedule(Base):
    __tablename__ = "schedules"

    id = Column(BigIntPK, primary_key=True, index=True)
    route_id = Column(BigInteger, ForeignKey("routes.id"), nullable=False, index=True)
    bus_id = Column(BigInteger, ForeignKey("buses.id"), nullable=False, index=True)
    departure_time = Column(Time, nullable=False)
    arrival_time = Column(Time)
    days_of_week = Column(JSON, default=list)  # 0 = Sunday ... 6 = Saturday
    price = Column(Numeric(10, 2), nullable=False)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    route = relationship("Route", back_populates="schedules")
    bus = relationship("Bus", back_populates="schedules")
    trips = relationship("Trip", back_populates="schedule")

class Trip(Base):
    __tablename__ = "trips"
    __table_args__ = (UniqueConstraint("schedule_id", "trip_date", name="uq_trips_schedule_date"),)

    id = Column(BigIntPK, primary_key=True, index=True)
    schedule_id = Column(BigInteger, ForeignKey("schedules.id"), nullable=False, index=True)
    trip_date = Column(Date, nullable=False, index=True)
    available_seats = Column(Integer, nullable=False)
    status = Column(String(20), default="scheduled", index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    schedule = relationship("Schedule", back_populates="trips")
    tickets = relationship("Ticket", back_populates="trip")

# ================================
# Drivers
# ================================
class Driver(Base):
    __tablename__ = "drivers"

    id = Column(BigIntPK, primary_key=True, index=True)
    user_id = Column(BigInteger, ForeignKey("users.id"), unique=True, nullable=False)
    company_id = Column(BigInteger, ForeignKey("bus_companies.id"), nullable=False, index=True)
    license_number = Column(String(100))
    assigned_bus_id = Column(BigInteger, ForeignKey("buses.id"))
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    company = relationship("BusCompany", back_populates="drivers")
    assigned_bus = relationship("Bus")
    user = relationship("User")

# ================================
# Tickets & Scans
# ================================
class Ticket(Base):
    __tablename__ = "tickets"
    __table_args__ = (
        # One live ticket per seat; cancelled tickets release the seat
        Index(
            "uq_tickets_trip_seat_live",
            "trip_id", "seat_number",
            unique=True,
            postgresql_where=text("status <> 'cancelled'"),
            sqlite_where=text("status <> 'cancelled'"),
        ),
    )

    id = Column(BigIntPK, primary_key=True, index=True)
    trip_id = Column(BigInteger, ForeignKey("trips.id"), nullable=False, index=True)
    passenger_id = Column(BigInteger, ForeignKey("users.id"), index=True)
    passenger_name = Column(String(255), nullable=False)
    passenger_phone = Column(String(50), nullable=False)
    seat_number = Column(Integer, nullable=False)
    ticket_code = Column(String(32), unique=True, nullable=False, index=True)
    status = Column(String(20), default="active", nullable=False, index=True)
    price_paid = Column(Numeric(10, 2), nullable=False)
    payment_status = Column(String(20), default="pending")
    payment_reference = Column(String(100))
    purchased_at = Column(DateTime(timezone=True), server_default=func.now())
    scanned_at = Column(DateTime(timezone=True))
    scanned_by = Column(BigInteger, ForeignKey("users.id"))
    cancelled_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    trip = relationship("Trip", back_populates="tickets")
    passenger = relationship("User", back_populates="tickets", foreign_keys=[passenger_id])
    scans = relationship("TicketScan", back_populates="ticket")

class TicketScan(Base):
    __tablename__ = "ticket_scans"

    id = Column(BigIntPK, primary_key=True, index=True)
    ticket_id = Column(BigInteger, ForeignKey("tickets.id"), index=True)
    scanned_code = Column(String(64), nullable=False)
    scanned_by = Column(BigInteger, ForeignKey("users.id"), nullable=False, index=True)
    scan_result = Column(String(20), nullable=False, index=True)
    scan_location = Column(String(100))
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)

    # Relationships
    ticket = relationship("Ticket", back_populates="scans")
