#!/usr/bin/env python3

from datetime import date, time
from decimal import Decimal

from sqlalchemy import text

from ticketa.database import Base, engine, SessionLocal
from ticketa.auth.permissions import Role
from ticketa.auth.schemas import UserCreate
from ticketa.auth.service import UserService
from ticketa.companies.schemas import CompanyCreate, BusCreate, RouteCreate, ScheduleCreate, DriverCreate
from ticketa.companies.service import CompanyService
from ticketa.trips.service import TripService

DEMO_USERS = [
    ("admin@ticketa.example.com", "Admin123!", "Platform Admin"),
    ("operator@ticketa.example.com", "Operator123!", "Express Lines Operator"),
    ("driver@ticketa.example.com", "Driver123!", "Demo Driver"),
    ("passenger@ticketa.example.com", "Passenger123!", "Demo Passenger"),
]

def verify_database_connection():
    """Verify database connection"""
    print("Verifying database connection...")

    try:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1")).fetchone()
        print("Database connection successful")
        return True
    except Exception as e:
        print(f"Database connection failed: {e}")
        return False

def create_seed_data(days: int = 7):
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()

    try:
        if UserService.get_user_by_email(db, DEMO_USERS[0][0]):
            print("Demo data already exists, skipping...")
            return

        print("Creating demo users...")
        users = {}
        for email, password, full_name in DEMO_USERS:
            users[email] = UserService.create_user(
                db, UserCreate(email=email, password=password, full_name=full_name)
            )
        admin, operator, driver, _ = users.values()
        UserService.assign_role(db, admin.id, Role.ADMIN)

        print("Creating bus company...")
        operator_identity = UserService.build_identity(db, operator)
        company = CompanyService.register_company(db, CompanyCreate(
            name="Express Lines",
            description="Intercity coach services",
            contact_email="contact@expresslines.example.com",
            contact_phone="+95 9 000 0000"
        ), operator_identity)
        CompanyService.set_company_flags(
            db, company.id, UserService.build_identity(db, admin), is_approved=True
        )

        # Company membership changed, so rebuild the operator identity
        operator_identity = UserService.build_identity(db, operator)

        print("Creating fleet, routes and schedules...")
        bus = CompanyService.add_bus(db, company.id, BusCreate(
            registration_number="YGN-1234",
            model="Yutong ZK6122",
            seat_capacity=40,
            amenities=["wifi", "air_conditioning", "usb_charging"]
        ), operator_identity)

        routes = [
            CompanyService.add_route(db, company.id, RouteCreate(
                origin="Yangon", destination="Mandalay",
                stops=["Bago", "Naypyidaw"], distance_km=Decimal("620"), estimated_duration_minutes=540
            ), operator_identity),
            CompanyService.add_route(db, company.id, RouteCreate(
                origin="Mandalay", destination="Yangon",
                stops=["Naypyidaw", "Bago"], distance_km=Decimal("620"), estimated_duration_minutes=540
            ), operator_identity),
        ]

        schedules = [
            CompanyService.add_schedule(db, company.id, ScheduleCreate(
                route_id=routes[0].id, bus_id=bus.id,
                departure_time=time(8, 0), arrival_time=time(17, 0),
                days_of_week=[0, 1, 2, 3, 4, 5, 6], price=Decimal("25000")
            ), operator_identity),
            CompanyService.add_schedule(db, company.id, ScheduleCreate(
                route_id=routes[1].id, bus_id=bus.id,
                departure_time=time(20, 0), arrival_time=time(5, 0),
                days_of_week=[1, 3, 5], price=Decimal("27000")
            ), operator_identity),
        ]

        print("Creating driver...")
        CompanyService.add_driver(db, company.id, DriverCreate(
            email=driver.email, license_number="DL-000123", assigned_bus_id=bus.id
        ), operator_identity)

        print(f"Materializing trips for the next {days} days...")
        trip_count = 0
        for schedule in schedules:
            trip_count += len(TripService.materialize_trips(db, schedule.id, date.today(), days, operator_identity))

        print("Successfully created demo data!")
        print("Created:")
        print(f"  - {len(users)} users")
        print("  - 1 bus company (approved)")
        print(f"  - {len(routes)} routes")
        print(f"  - {len(schedules)} schedules")
        print(f"  - {trip_count} trips")
        print()
        print("Login credentials:")
        for email, password, _ in DEMO_USERS:
            print(f"  - {email} / {password}")

    except Exception as e:
        print(f"Error creating seed data: {e}")
        db.rollback()
        raise
    finally:
        db.close()

if __name__ == "__main__":
    if verify_database_connection():
        create_seed_data()
