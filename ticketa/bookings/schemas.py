from pydantic import BaseModel, Field, validator
from typing import List, Optional
from datetime import datetime, date, time
from decimal import Decimal
from enum import Enum

class TicketStatus(str, Enum):
    """Ticket status enumeration"""
    ACTIVE = "active"
    USED = "used"
    EXPIRED = "expired"
    CANCELLED = "cancelled"

class PaymentStatus(str, Enum):
    """Payment status enumeration"""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"

# Passenger Information
class PassengerInfo(BaseModel):
    """Passenger travelling on the ticket"""
    passenger_name: str = Field(..., min_length=2, max_length=100)
    passenger_phone: str = Field(..., min_length=8, max_length=20)

    @validator('passenger_name', 'passenger_phone')
    def strip_whitespace(cls, v):
        v = v.strip()
        if not v:
            raise ValueError('Value cannot be blank')
        return v

# Booking Request Models
class SeatAllocationRequest(PassengerInfo):
    """Request to buy one seat on a trip"""
    trip_id: int
    seat_number: int = Field(..., ge=1)

# Ticket Response Models
class Ticket(BaseModel):
    """Ticket row as sold"""
    id: int
    trip_id: int
    passenger_id: Optional[int] = None
    passenger_name: str
    passenger_phone: str
    seat_number: int
    ticket_code: str
    status: TicketStatus
    price_paid: Decimal
    payment_status: PaymentStatus
    payment_reference: Optional[str] = None
    purchased_at: Optional[datetime] = None
    scanned_at: Optional[datetime] = None
    scanned_by: Optional[int] = None
    cancelled_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class TicketTripInfo(BaseModel):
    """Trip context printed on a ticket"""
    trip_date: date
    departure_time: time
    arrival_time: Optional[time] = None
    origin: str
    destination: str
    company_name: str
    bus_registration: str

class TicketDetail(Ticket):
    """Ticket with trip, route, company and bus context"""
    trip: TicketTripInfo

class SeatAvailability(BaseModel):
    trip_id: int
    seat_number: int
    is_available: bool

class TicketCancellation(BaseModel):
    """Result of cancelling a ticket"""
    ticket: Ticket
    seat_released: bool
    message: str
