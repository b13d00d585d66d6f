from sqlalchemy.orm import Session, joinedload
from sqlalchemy import func
from typing import Dict, FrozenSet, List, Optional, Tuple
from datetime import date, datetime, timedelta, timezone
import logging

from ticketa.models import Trip, Schedule, Route, BusCompany, Ticket, Driver
from ticketa.auth.permissions import Identity, can_manage_company, can_view_trip_operations
from ticketa.auth.service import UserService
from ticketa.auth.utils import decode_access_token
from ticketa.bookings.schemas import TicketStatus
from ticketa.bookings.lifecycle import expire_active_tickets, cancel_active_tickets
from ticketa.trips.websocket import ticket_updates
from ticketa.trips.schemas import (
    TripStatus, TripSummary, TripCompany, SeatMap, BoardingProgress,
    PassengerBoarding, DriverTrip, TripStatusChange
)
from ticketa.exceptions import (
    TripNotFound, NotAuthorized, InvalidTripTransition, TicketaError
)

logger = logging.getLogger(__name__)

TRIP_TRANSITIONS: Dict[TripStatus, FrozenSet[TripStatus]] = {
    TripStatus.SCHEDULED: frozenset({TripStatus.BOARDING, TripStatus.DEPARTED, TripStatus.CANCELLED}),
    TripStatus.BOARDING: frozenset({TripStatus.DEPARTED, TripStatus.CANCELLED}),
    TripStatus.DEPARTED: frozenset({TripStatus.COMPLETED}),
    TripStatus.COMPLETED: frozenset(),
    TripStatus.CANCELLED: frozenset(),
}

def schedule_runs_on(schedule: Schedule, day: date) -> bool:
    """``days_of_week`` uses 0 = Sunday ... 6 = Saturday"""
    return (day.isoweekday() % 7) in (schedule.days_of_week or [])

class TripService:
    @staticmethod
    def _trip_query(db: Session):
        return db.query(Trip).options(
            joinedload(Trip.schedule).joinedload(Schedule.bus),
            joinedload(Trip.schedule).joinedload(Schedule.route).joinedload(Route.company)
        )

    @staticmethod
    def get_trip(db: Session, trip_id: int) -> Optional[Trip]:
        """Get trip with schedule, bus, route and company"""
        return TripService._trip_query(db).filter(Trip.id == trip_id).first()

    @staticmethod
    def trip_company_id(trip: Trip) -> int:
        return trip.schedule.route.company_id

    @staticmethod
    def to_summary(trip: Trip) -> TripSummary:
        schedule = trip.schedule
        route = schedule.route
        company = route.company
        return TripSummary(
            id=trip.id,
            trip_date=trip.trip_date,
            status=trip.status,
            available_seats=trip.available_seats,
            seat_capacity=schedule.bus.seat_capacity,
            departure_time=schedule.departure_time,
            arrival_time=schedule.arrival_time,
            price=schedule.price,
            origin=route.origin,
            destination=route.destination,
            estimated_duration_minutes=route.estimated_duration_minutes,
            bus_model=schedule.bus.model,
            bus_registration=schedule.bus.registration_number,
            amenities=schedule.bus.amenities or [],
            company=TripCompany(
                id=company.id,
                name=company.name,
                logo_url=company.logo_url,
                average_rating=company.average_rating
            )
        )

    @staticmethod
    def search_trips(
        db: Session,
        trip_date: date,
        origin: Optional[str] = None,
        destination: Optional[str] = None,
        skip: int = 0,
        limit: int = 50
    ) -> Tuple[List[Trip], int]:
        """Bookable trips on a date from approved, active companies"""
        query = TripService._trip_query(db).join(Trip.schedule).join(Schedule.route).join(Route.company).filter(
            Trip.trip_date == trip_date,
            Trip.status == TripStatus.SCHEDULED.value,
            Trip.available_seats > 0,
            BusCompany.is_approved.is_(True),
            BusCompany.is_active.is_(True)
        )

        if origin:
            query = query.filter(Route.origin.ilike(f"%{origin.strip()}%"))

        if destination:
            query = query.filter(Route.destination.ilike(f"%{destination.strip()}%"))

        total = query.count()
        trips = query.order_by(Schedule.departure_time).offset(skip).limit(limit).all()
        return trips, total

    @staticmethod
    def get_seat_map(db: Session, trip_id: int) -> SeatMap:
        from ticketa.bookings.booking_service import BookingService

        trip = TripService.get_trip(db, trip_id)
        if not trip:
            raise TripNotFound(trip_id)

        return SeatMap(
            trip_id=trip.id,
            seat_capacity=trip.schedule.bus.seat_capacity,
            available_seats=trip.available_seats,
            booked_seats=BookingService(db).get_booked_seats(trip.id)
        )

    @staticmethod
    def get_boarding_progress(db: Session, trip_id: int, include_tickets: bool = True) -> BoardingProgress:
        """Scanned/sold counts for a trip, ignoring cancelled tickets"""
        trip = db.query(Trip).filter(Trip.id == trip_id).first()
        if not trip:
            raise TripNotFound(trip_id)

        tickets = db.query(Ticket).filter(
            Ticket.trip_id == trip_id,
            Ticket.status != TicketStatus.CANCELLED.value
        ).order_by(Ticket.seat_number).all()

        scanned = [t for t in tickets if t.status == TicketStatus.USED.value]
        progress = (len(scanned) / len(tickets)) * 100 if tickets else 0.0

        return BoardingProgress(
            trip_id=trip.id,
            status=trip.status,
            ticket_count=len(tickets),
            scanned_count=len(scanned),
            progress_percent=round(progress, 1),
            tickets=[
                PassengerBoarding(
                    ticket_id=t.id,
                    passenger_name=t.passenger_name,
                    seat_number=t.seat_number,
                    status=t.status,
                    scanned_at=t.scanned_at
                )
                for t in tickets
            ] if include_tickets else []
        )

    @staticmethod
    def get_driver_today_trips(db: Session, identity: Identity, today: Optional[date] = None) -> List[DriverTrip]:
        """Today's trips of the driver's company with boarding counts"""
        driver = db.query(Driver).filter(
            Driver.user_id == identity.user_id,
            Driver.is_active.is_(True)
        ).first()
        if not driver:
            return []

        today = today or date.today()
        trips = TripService._trip_query(db).join(Trip.schedule).join(Schedule.route).filter(
            Trip.trip_date == today,
            Route.company_id == driver.company_id
        ).order_by(Schedule.departure_time).all()

        if not trips:
            return []

        counts = dict(
            db.query(Ticket.trip_id, func.count(Ticket.id)).filter(
                Ticket.trip_id.in_([t.id for t in trips]),
                Ticket.status != TicketStatus.CANCELLED.value
            ).group_by(Ticket.trip_id).all()
        )
        scanned = dict(
            db.query(Ticket.trip_id, func.count(Ticket.id)).filter(
                Ticket.trip_id.in_([t.id for t in trips]),
                Ticket.status == TicketStatus.USED.value
            ).group_by(Ticket.trip_id).all()
        )

        return [
            DriverTrip(
                trip=TripService.to_summary(trip),
                ticket_count=counts.get(trip.id, 0),
                scanned_count=scanned.get(trip.id, 0)
            )
            for trip in trips
        ]

    @staticmethod
    def update_trip_status(db: Session, trip_id: int, new_status: TripStatus, identity: Identity) -> TripStatusChange:
        """
        Move a trip along its lifecycle.

        Completing a trip expires tickets that were never scanned; cancelling
        it cancels and refunds every active ticket.
        """
        trip = TripService.get_trip(db, trip_id)
        if not trip:
            raise TripNotFound(trip_id)

        if not can_manage_company(identity, TripService.trip_company_id(trip)):
            raise NotAuthorized("You cannot manage this trip")

        previous = TripStatus(trip.status)
        new_status = TripStatus(new_status)
        if new_status not in TRIP_TRANSITIONS[previous]:
            raise InvalidTripTransition(previous.value, new_status.value)

        change = TripStatusChange(trip_id=trip.id, previous_status=previous, status=new_status)

        closed_ids: List[int] = []
        try:
            trip.status = new_status.value
            if new_status == TripStatus.COMPLETED:
                closed_ids = expire_active_tickets(db, trip.id)
                change.tickets_expired = len(closed_ids)
            elif new_status == TripStatus.CANCELLED:
                closed_ids = cancel_active_tickets(db, trip.id, datetime.now(timezone.utc))
                change.tickets_cancelled = len(closed_ids)
            db.commit()
        except TicketaError:
            db.rollback()
            raise

        if closed_ids:
            for ticket in db.query(Ticket).filter(Ticket.id.in_(closed_ids)).order_by(Ticket.seat_number):
                ticket_updates.publish_ticket_update(ticket)

        logger.info(
            "Trip %s moved %s -> %s (expired=%s, cancelled=%s)",
            trip.id, previous.value, new_status.value, change.tickets_expired, change.tickets_cancelled
        )
        return change

    @staticmethod
    def materialize_trips(
        db: Session,
        schedule_id: int,
        start_date: date,
        days: int,
        identity: Identity
    ) -> List[Trip]:
        """Create one trip per operating day of a schedule, skipping existing ones"""
        schedule = db.query(Schedule).options(
            joinedload(Schedule.bus), joinedload(Schedule.route)
        ).filter(Schedule.id == schedule_id).first()
        if not schedule:
            raise TicketaError(f"Schedule {schedule_id} not found")

        if not can_manage_company(identity, schedule.route.company_id):
            raise NotAuthorized("You cannot manage this schedule")

        if not schedule.is_active or not schedule.route.is_active:
            raise TicketaError("Schedule or route is not active")

        if schedule.bus.status in ("maintenance", "inactive"):
            raise TicketaError(f"Bus {schedule.bus.registration_number} is {schedule.bus.status}")

        existing = {
            row.trip_date for row in db.query(Trip.trip_date).filter(
                Trip.schedule_id == schedule.id,
                Trip.trip_date >= start_date,
                Trip.trip_date < start_date + timedelta(days=days)
            ).all()
        }

        created = []
        for offset in range(days):
            day = start_date + timedelta(days=offset)
            if day in existing or not schedule_runs_on(schedule, day):
                continue
            trip = Trip(
                schedule_id=schedule.id,
                trip_date=day,
                available_seats=schedule.bus.seat_capacity,
                status=TripStatus.SCHEDULED.value
            )
            db.add(trip)
            created.append(trip)

        db.commit()
        for trip in created:
            db.refresh(trip)

        logger.info("Materialized %s trips for schedule %s", len(created), schedule.id)
        return created

    @staticmethod
    def identity_from_token(db: Session, token: Optional[str]) -> Optional[Identity]:
        """Resolve a bearer token passed as a websocket query parameter"""
        if not token:
            return None
        token_data = decode_access_token(token)
        if token_data is None:
            return None
        user = UserService.get_user_by_id(db, token_data["user_id"])
        if user is None:
            return None
        return UserService.build_identity(db, user)

    @staticmethod
    def can_view_operations(db: Session, identity: Identity, trip_id: int) -> bool:
        trip = TripService.get_trip(db, trip_id)
        if not trip:
            return False
        driver = db.query(Driver).filter(
            Driver.user_id == identity.user_id,
            Driver.is_active.is_(True)
        ).first()
        return can_view_trip_operations(
            identity,
            TripService.trip_company_id(trip),
            driver.company_id if driver else None
        )
