from fastapi import APIRouter, Depends, HTTPException, status, Query
from fastapi.responses import Response
from sqlalchemy.orm import Session
from typing import List

from ticketa.database import get_db
from ticketa.auth.dependencies import get_identity
from ticketa.auth.permissions import Identity
from ticketa.bookings.schemas import (
    SeatAllocationRequest, TicketDetail, SeatAvailability, TicketCancellation, Ticket
)
from ticketa.bookings.booking_service import BookingService
from ticketa.bookings.ticket_service import TicketService
from ticketa.exceptions import (
    TripNotFound, TicketNotFound, SeatTaken, InvalidTicketTransition,
    NotAuthorized, StoreUnavailable
)

router = APIRouter()

# Booking Endpoints
@router.post("/", response_model=TicketDetail, status_code=status.HTTP_201_CREATED)
def book_seat(
    request: SeatAllocationRequest,
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db)
):
    """Buy a seat on a trip"""

    booking_service = BookingService(db)

    try:
        ticket = booking_service.allocate_seat(request, identity)
    except TripNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except SeatTaken as e:
        # Client must re-prompt seat selection
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except StoreUnavailable as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    return TicketService.to_detail(TicketService(db).get_ticket(ticket.id))

@router.get("/seat-available", response_model=SeatAvailability)
def check_seat_available(
    trip_id: int = Query(..., description="Trip ID"),
    seat_number: int = Query(..., ge=1, description="Seat number"),
    db: Session = Depends(get_db)
):
    """Check whether a seat can still be sold"""
    return SeatAvailability(
        trip_id=trip_id,
        seat_number=seat_number,
        is_available=BookingService(db).is_seat_available(trip_id, seat_number)
    )

@router.get("/my-tickets", response_model=List[TicketDetail])
def get_my_tickets(
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db)
):
    """Tickets bought by the current user"""
    ticket_service = TicketService(db)
    return [TicketService.to_detail(t) for t in ticket_service.get_user_tickets(identity)]

@router.get("/tickets/{ticket_id}", response_model=TicketDetail)
def get_ticket(
    ticket_id: int,
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db)
):
    """Get ticket details"""
    ticket_service = TicketService(db)
    ticket = ticket_service.get_ticket(ticket_id)

    if not ticket:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Ticket not found"
        )

    if not ticket_service.can_view_ticket(ticket, identity):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not enough permissions"
        )

    return TicketService.to_detail(ticket)

@router.get("/tickets/{ticket_id}/qr")
def get_ticket_qr_code(
    ticket_id: int,
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db)
):
    """QR code image encoding the ticket code"""
    ticket_service = TicketService(db)
    ticket = ticket_service.get_ticket(ticket_id)

    if not ticket:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Ticket not found"
        )

    if not ticket_service.can_view_ticket(ticket, identity):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not enough permissions"
        )

    return Response(content=ticket_service.generate_qr_code_image(ticket), media_type="image/png")

@router.post("/tickets/{ticket_id}/cancel", response_model=TicketCancellation)
def cancel_ticket(
    ticket_id: int,
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db)
):
    """Cancel an active ticket and free its seat"""

    booking_service = BookingService(db)

    try:
        ticket, released = booking_service.cancel_ticket(ticket_id, identity)
    except TicketNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except NotAuthorized as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    except InvalidTicketTransition as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except StoreUnavailable as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))

    return TicketCancellation(
        ticket=Ticket.model_validate(ticket),
        seat_released=released,
        message="Ticket cancelled successfully"
    )
