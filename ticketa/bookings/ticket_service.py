from typing import List, Optional
from sqlalchemy.orm import Session, joinedload
from io import BytesIO
import qrcode
from qrcode import constants

from ticketa.models import Ticket, Trip, Schedule, Route
from ticketa.auth.permissions import Identity, can_manage_company
from ticketa.bookings.schemas import TicketDetail, TicketTripInfo

def normalize_ticket_code(code: str) -> str:
    """Codes are matched trimmed and case-insensitively"""
    return (code or "").strip().upper()

class TicketService:
    """Ticket lookups and QR rendering"""

    def __init__(self, db: Session):
        self.db = db

    def _ticket_query(self):
        return self.db.query(Ticket).options(
            joinedload(Ticket.trip).joinedload(Trip.schedule).joinedload(Schedule.bus),
            joinedload(Ticket.trip).joinedload(Trip.schedule).joinedload(Schedule.route).joinedload(Route.company)
        )

    def get_ticket(self, ticket_id: int) -> Optional[Ticket]:
        """Get ticket by ID with trip context"""
        return self._ticket_query().filter(Ticket.id == ticket_id).first()

    def get_ticket_by_code(self, code: str) -> Optional[Ticket]:
        """Get ticket by its (normalized) code"""
        return self._ticket_query().filter(Ticket.ticket_code == normalize_ticket_code(code)).first()

    def get_user_tickets(self, identity: Identity) -> List[Ticket]:
        """Tickets bought by the user, newest first"""
        return self._ticket_query().filter(
            Ticket.passenger_id == identity.user_id
        ).order_by(Ticket.purchased_at.desc(), Ticket.id.desc()).all()

    def get_company_tickets(self, company_id: int, trip_id: Optional[int] = None, limit: int = 100) -> List[Ticket]:
        """Tickets sold on a company's trips"""
        query = self._ticket_query().join(Ticket.trip).join(Trip.schedule).join(Schedule.route).filter(
            Route.company_id == company_id
        )
        if trip_id is not None:
            query = query.filter(Ticket.trip_id == trip_id)
        return query.order_by(Ticket.purchased_at.desc(), Ticket.id.desc()).limit(limit).all()

    def can_view_ticket(self, ticket: Ticket, identity: Identity) -> bool:
        if ticket.passenger_id == identity.user_id:
            return True
        return can_manage_company(identity, ticket.trip.schedule.route.company_id)

    @staticmethod
    def to_detail(ticket: Ticket) -> TicketDetail:
        schedule = ticket.trip.schedule
        return TicketDetail(
            id=ticket.id,
            trip_id=ticket.trip_id,
            passenger_id=ticket.passenger_id,
            passenger_name=ticket.passenger_name,
            passenger_phone=ticket.passenger_phone,
            seat_number=ticket.seat_number,
            ticket_code=ticket.ticket_code,
            status=ticket.status,
            price_paid=ticket.price_paid,
            payment_status=ticket.payment_status,
            payment_reference=ticket.payment_reference,
            purchased_at=ticket.purchased_at,
            scanned_at=ticket.scanned_at,
            scanned_by=ticket.scanned_by,
            cancelled_at=ticket.cancelled_at,
            trip=TicketTripInfo(
                trip_date=ticket.trip.trip_date,
                departure_time=schedule.departure_time,
                arrival_time=schedule.arrival_time,
                origin=schedule.route.origin,
                destination=schedule.route.destination,
                company_name=schedule.route.company.name,
                bus_registration=schedule.bus.registration_number
            )
        )

    def generate_qr_code_image(self, ticket: Ticket, size: int = 10, border: int = 4) -> bytes:
        """Render the ticket code as a PNG QR code"""
        qr = qrcode.QRCode(
            version=1,
            error_correction=constants.ERROR_CORRECT_M,
            box_size=size,
            border=border,
        )

        qr.add_data(ticket.ticket_code)
        qr.make(fit=True)

        qr_image = qr.make_image(fill_color="black", back_color="white")

        buffer = BytesIO()
        qr_image.save(buffer, format="PNG")
        return buffer.getvalue()
