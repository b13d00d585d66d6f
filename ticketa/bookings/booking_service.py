from typing import List, Optional, Tuple
from datetime import datetime, timezone
from decimal import Decimal
import logging
import secrets
import string
import time

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session, joinedload

from ticketa.config import settings
from ticketa.models import Ticket, Trip, Schedule
from ticketa.auth.permissions import Identity, can_cancel_ticket
from ticketa.bookings.schemas import SeatAllocationRequest, TicketStatus, PaymentStatus
from ticketa.bookings.lifecycle import (
    INITIAL_STATUS, SEAT_HOLDING_STATUSES, assert_transition, transition_ticket
)
from ticketa.trips.schemas import TripStatus
from ticketa.trips.websocket import ticket_updates
from ticketa.exceptions import (
    TicketaError, TripNotFound, TripNotBookable, TripFull, InvalidSeatNumber,
    SeatTaken, TicketNotFound, NotAuthorized, InvalidTicketTransition, StoreUnavailable
)

logger = logging.getLogger(__name__)

TICKET_CODE_ALPHABET = string.ascii_uppercase + string.digits
MAX_CODE_ATTEMPTS = 5

def _violates_ticket_code(error: IntegrityError) -> bool:
    """True when the unique ticket_code column, not the seat index, rejected the insert"""
    return "ticket_code" in str(error.orig)

class BookingService:
    """Seat allocation and ticket cancellation for bus trips"""

    def __init__(self, db: Session):
        self.db = db

    def is_seat_available(self, trip_id: int, seat_number: int) -> bool:
        """True iff no active or used ticket holds the seat"""
        holder = self.db.query(Ticket.id).filter(
            Ticket.trip_id == trip_id,
            Ticket.seat_number == seat_number,
            Ticket.status.in_(SEAT_HOLDING_STATUSES)
        ).first()
        return holder is None

    def get_booked_seats(self, trip_id: int) -> List[int]:
        """Seat numbers held by non-cancelled tickets, ascending"""
        rows = self.db.query(Ticket.seat_number).filter(
            Ticket.trip_id == trip_id,
            Ticket.status != TicketStatus.CANCELLED.value
        ).order_by(Ticket.seat_number).all()
        return [row.seat_number for row in rows]

    def allocate_seat(
        self,
        request: SeatAllocationRequest,
        identity: Optional[Identity] = None,
        price: Optional[Decimal] = None
    ) -> Ticket:
        """
        Sell one seat on a trip.

        The ticket insert and the seat counter decrement commit together. The
        partial unique index on (trip_id, seat_number) turns a concurrent sale
        of the same seat into ``SeatTaken`` instead of a second live ticket.
        """
        try:
            return self._allocate_seat(request, identity, price)
        except TicketaError:
            self.db.rollback()
            raise
        except OperationalError as e:
            self.db.rollback()
            logger.error("Store unavailable while allocating seat: %s", e)
            raise StoreUnavailable("Booking service is temporarily unavailable") from e

    def _allocate_seat(
        self,
        request: SeatAllocationRequest,
        identity: Optional[Identity],
        price: Optional[Decimal]
    ) -> Ticket:
        trip = self._get_trip(request.trip_id)
        if not trip:
            raise TripNotFound(request.trip_id)

        if trip.status != TripStatus.SCHEDULED.value:
            raise TripNotBookable(trip.id, trip.status)

        seat_capacity = trip.schedule.bus.seat_capacity
        if not 1 <= request.seat_number <= seat_capacity:
            raise InvalidSeatNumber(request.seat_number, seat_capacity)

        if trip.available_seats <= 0:
            raise TripFull(trip.id)

        if not self.is_seat_available(trip.id, request.seat_number):
            raise SeatTaken(trip.id, request.seat_number)

        ticket = Ticket(
            trip_id=trip.id,
            passenger_id=identity.user_id if identity else None,
            passenger_name=request.passenger_name,
            passenger_phone=request.passenger_phone,
            seat_number=request.seat_number,
            ticket_code=self._generate_ticket_code(),
            status=INITIAL_STATUS.value,
            price_paid=price if price is not None else trip.schedule.price,
            # Payment is simulated: every sale settles immediately
            payment_status=PaymentStatus.COMPLETED.value,
            payment_reference=self._generate_payment_reference()
        )
        self.db.add(ticket)

        try:
            self.db.flush()
        except IntegrityError as e:
            self.db.rollback()
            if _violates_ticket_code(e):
                logger.warning("Ticket code collided on insert for trip %s", request.trip_id)
                raise StoreUnavailable("Could not issue a ticket code. Please try again.") from e
            logger.info("Seat %s on trip %s lost to a concurrent booking", request.seat_number, trip.id)
            raise SeatTaken(trip.id, request.seat_number)

        decremented = self.db.execute(
            update(Trip)
            .where(
                Trip.id == trip.id,
                Trip.available_seats > 0,
                Trip.status == TripStatus.SCHEDULED.value
            )
            .values(available_seats=Trip.available_seats - 1)
            .execution_options(synchronize_session=False)
        ).rowcount
        if decremented != 1:
            self.db.rollback()
            raise TripFull(trip.id)

        self.db.commit()
        self.db.refresh(ticket)

        logger.info(
            "Sold seat %s on trip %s as ticket %s", ticket.seat_number, ticket.trip_id, ticket.ticket_code
        )
        return ticket

    def cancel_ticket(self, ticket_id: int, identity: Identity) -> Tuple[Ticket, bool]:
        """Cancel an active ticket and release its seat; returns (ticket, seat_released)"""
        try:
            ticket = self.db.query(Ticket).options(
                joinedload(Ticket.trip).joinedload(Trip.schedule).joinedload(Schedule.route)
            ).filter(Ticket.id == ticket_id).first()
            if not ticket:
                raise TicketNotFound(ticket_id)

            company_id = ticket.trip.schedule.route.company_id
            if not can_cancel_ticket(identity, ticket.passenger_id, company_id):
                raise NotAuthorized("You cannot cancel this ticket")

            assert_transition(ticket.status, TicketStatus.CANCELLED)

            moved = transition_ticket(
                self.db,
                ticket.id,
                TicketStatus.ACTIVE,
                TicketStatus.CANCELLED,
                cancelled_at=datetime.now(timezone.utc),
                payment_status=PaymentStatus.REFUNDED.value
            )
            if not moved:
                # Scanned or cancelled between our read and write
                self.db.rollback()
                self.db.refresh(ticket)
                raise InvalidTicketTransition(ticket.status, TicketStatus.CANCELLED.value)

            released = ticket.trip.status in (TripStatus.SCHEDULED.value, TripStatus.BOARDING.value)
            if released:
                self.db.execute(
                    update(Trip)
                    .where(Trip.id == ticket.trip_id)
                    .values(available_seats=Trip.available_seats + 1)
                    .execution_options(synchronize_session=False)
                )

            self.db.commit()
            self.db.refresh(ticket)
        except TicketaError:
            self.db.rollback()
            raise
        except OperationalError as e:
            self.db.rollback()
            raise StoreUnavailable("Booking service is temporarily unavailable") from e

        logger.info("Cancelled ticket %s (seat released: %s)", ticket.ticket_code, released)
        ticket_updates.publish_ticket_update(ticket)
        return ticket, released

    def _get_trip(self, trip_id: int) -> Optional[Trip]:
        return self.db.query(Trip).options(
            joinedload(Trip.schedule).joinedload(Schedule.bus)
        ).filter(Trip.id == trip_id).first()

    def _generate_ticket_code(self) -> str:
        """Uppercase alphanumeric code, typeable by hand at the bus door"""
        for _ in range(MAX_CODE_ATTEMPTS):
            suffix = "".join(
                secrets.choice(TICKET_CODE_ALPHABET) for _ in range(settings.TICKET_CODE_LENGTH)
            )
            code = f"{settings.TICKET_CODE_PREFIX}{suffix}"
            exists = self.db.query(Ticket.id).filter(Ticket.ticket_code == code).first()
            if not exists:
                return code
        raise TicketaError("Could not generate a unique ticket code")

    def _generate_payment_reference(self) -> str:
        return f"OM{int(time.time() * 1000)}{secrets.token_hex(2).upper()}"
