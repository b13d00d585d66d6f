from sqlalchemy.orm import Session, joinedload
from sqlalchemy.exc import IntegrityError
from typing import List, Optional
import logging

from ticketa.models import BusCompany, CompanyAdmin, Bus, Route, Schedule, Driver, User
from ticketa.auth.permissions import Identity, Role, can_manage_company, is_admin
from ticketa.auth.service import UserService
from ticketa.companies.schemas import (
    CompanyCreate, BusCreate, BusStatus, RouteCreate, ScheduleCreate, DriverCreate,
    Driver as DriverView
)
from ticketa.exceptions import CompanyNotFound, NotAuthorized, TicketaError

logger = logging.getLogger(__name__)

class CompanyService:
    @staticmethod
    def get_company(db: Session, company_id: int) -> Optional[BusCompany]:
        return db.query(BusCompany).filter(BusCompany.id == company_id).first()

    @staticmethod
    def _managed_company(db: Session, company_id: int, identity: Identity) -> BusCompany:
        company = CompanyService.get_company(db, company_id)
        if not company:
            raise CompanyNotFound(company_id)
        if not can_manage_company(identity, company.id):
            raise NotAuthorized("You cannot manage this company")
        return company

    @staticmethod
    def register_company(db: Session, data: CompanyCreate, identity: Identity) -> BusCompany:
        """Create a company pending admin approval; the caller becomes its admin"""
        company = BusCompany(
            name=data.name,
            description=data.description,
            logo_url=data.logo_url,
            contact_email=data.contact_email,
            contact_phone=data.contact_phone,
            address=data.address,
            is_approved=False,
            is_active=True
        )
        db.add(company)
        db.flush()

        db.add(CompanyAdmin(company_id=company.id, user_id=identity.user_id))
        UserService.assign_role(db, identity.user_id, Role.COMPANY_ADMIN, commit=False)

        db.commit()
        db.refresh(company)
        logger.info("Company %s registered by user %s", company.id, identity.user_id)
        return company

    @staticmethod
    def list_companies(
        db: Session,
        approved: Optional[bool] = None,
        public_only: bool = False
    ) -> List[BusCompany]:
        query = db.query(BusCompany)
        if public_only:
            query = query.filter(BusCompany.is_approved.is_(True), BusCompany.is_active.is_(True))
        elif approved is not None:
            query = query.filter(BusCompany.is_approved.is_(approved))
        return query.order_by(BusCompany.created_at.desc(), BusCompany.id.desc()).all()

    @staticmethod
    def set_company_flags(
        db: Session,
        company_id: int,
        identity: Identity,
        is_approved: Optional[bool] = None,
        is_active: Optional[bool] = None
    ) -> BusCompany:
        """Admin approval and suspension"""
        if not is_admin(identity):
            raise NotAuthorized("Only platform admins can change company status")

        company = CompanyService.get_company(db, company_id)
        if not company:
            raise CompanyNotFound(company_id)

        if is_approved is not None:
            company.is_approved = is_approved
        if is_active is not None:
            company.is_active = is_active

        db.commit()
        db.refresh(company)
        logger.info(
            "Company %s updated by admin %s: approved=%s active=%s",
            company.id, identity.user_id, company.is_approved, company.is_active
        )
        return company

    # Fleet
    @staticmethod
    def add_bus(db: Session, company_id: int, data: BusCreate, identity: Identity) -> Bus:
        CompanyService._managed_company(db, company_id, identity)
        bus = Bus(
            company_id=company_id,
            registration_number=data.registration_number,
            model=data.model,
            seat_capacity=data.seat_capacity,
            amenities=data.amenities,
            status=BusStatus.AVAILABLE.value
        )
        try:
            db.add(bus)
            db.commit()
        except IntegrityError:
            db.rollback()
            raise TicketaError(f"Bus {data.registration_number} is already registered")
        db.refresh(bus)
        return bus

    @staticmethod
    def list_buses(db: Session, company_id: int) -> List[Bus]:
        return db.query(Bus).filter(Bus.company_id == company_id).order_by(Bus.registration_number).all()

    @staticmethod
    def update_bus_status(db: Session, company_id: int, bus_id: int, new_status: BusStatus, identity: Identity) -> Bus:
        CompanyService._managed_company(db, company_id, identity)
        bus = db.query(Bus).filter(Bus.id == bus_id, Bus.company_id == company_id).first()
        if not bus:
            raise TicketaError(f"Bus {bus_id} not found")
        bus.status = BusStatus(new_status).value
        db.commit()
        db.refresh(bus)
        return bus

    # Routes
    @staticmethod
    def add_route(db: Session, company_id: int, data: RouteCreate, identity: Identity) -> Route:
        CompanyService._managed_company(db, company_id, identity)
        route = Route(
            company_id=company_id,
            origin=data.origin.strip(),
            destination=data.destination.strip(),
            stops=data.stops,
            distance_km=data.distance_km,
            estimated_duration_minutes=data.estimated_duration_minutes,
            is_active=True
        )
        db.add(route)
        db.commit()
        db.refresh(route)
        return route

    @staticmethod
    def list_routes(db: Session, company_id: int) -> List[Route]:
        return db.query(Route).filter(Route.company_id == company_id).order_by(Route.origin, Route.destination).all()

    # Schedules
    @staticmethod
    def add_schedule(db: Session, company_id: int, data: ScheduleCreate, identity: Identity) -> Schedule:
        CompanyService._managed_company(db, company_id, identity)

        route = db.query(Route).filter(Route.id == data.route_id, Route.company_id == company_id).first()
        if not route:
            raise TicketaError(f"Route {data.route_id} does not belong to this company")

        bus = db.query(Bus).filter(Bus.id == data.bus_id, Bus.company_id == company_id).first()
        if not bus:
            raise TicketaError(f"Bus {data.bus_id} does not belong to this company")

        if data.arrival_time is not None and data.arrival_time == data.departure_time:
            raise TicketaError("Arrival time must differ from departure time")

        schedule = Schedule(
            route_id=route.id,
            bus_id=bus.id,
            departure_time=data.departure_time,
            arrival_time=data.arrival_time,
            days_of_week=data.days_of_week,
            price=data.price,
            is_active=True
        )
        db.add(schedule)
        db.commit()
        db.refresh(schedule)
        return schedule

    @staticmethod
    def list_schedules(db: Session, company_id: int) -> List[Schedule]:
        return db.query(Schedule).join(Schedule.route).filter(
            Route.company_id == company_id
        ).order_by(Schedule.departure_time).all()

    # Drivers
    @staticmethod
    def add_driver(db: Session, company_id: int, data: DriverCreate, identity: Identity) -> Driver:
        """Attach an existing user to the company as a driver and grant the driver role"""
        CompanyService._managed_company(db, company_id, identity)

        user = UserService.get_user_by_email(db, data.email)
        if not user:
            raise TicketaError(f"No account registered for {data.email}")

        if data.assigned_bus_id is not None:
            bus = db.query(Bus).filter(Bus.id == data.assigned_bus_id, Bus.company_id == company_id).first()
            if not bus:
                raise TicketaError(f"Bus {data.assigned_bus_id} does not belong to this company")

        driver = Driver(
            user_id=user.id,
            company_id=company_id,
            license_number=data.license_number,
            assigned_bus_id=data.assigned_bus_id,
            is_active=True
        )
        try:
            db.add(driver)
            db.flush()
            UserService.assign_role(db, user.id, Role.DRIVER, commit=False)
            db.commit()
        except IntegrityError:
            db.rollback()
            raise TicketaError(f"{data.email} is already registered as a driver")

        db.refresh(driver)
        logger.info("User %s added as driver of company %s", user.id, company_id)
        return driver

    @staticmethod
    def list_drivers(db: Session, company_id: int) -> List[Driver]:
        return db.query(Driver).options(
            joinedload(Driver.user).joinedload(User.profile)
        ).filter(Driver.company_id == company_id).order_by(Driver.id).all()

    @staticmethod
    def set_driver_active(db: Session, company_id: int, driver_id: int, is_active: bool, identity: Identity) -> Driver:
        CompanyService._managed_company(db, company_id, identity)
        driver = db.query(Driver).filter(Driver.id == driver_id, Driver.company_id == company_id).first()
        if not driver:
            raise TicketaError(f"Driver {driver_id} not found")
        driver.is_active = is_active
        db.commit()
        db.refresh(driver)
        return driver

    @staticmethod
    def to_driver_view(driver: Driver) -> DriverView:
        user = driver.user
        return DriverView(
            id=driver.id,
            user_id=driver.user_id,
            company_id=driver.company_id,
            email=user.email if user else None,
            full_name=user.profile.full_name if user and user.profile else None,
            license_number=driver.license_number,
            assigned_bus_id=driver.assigned_bus_id,
            is_active=driver.is_active
        )
