from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime, date, time
from decimal import Decimal
from enum import Enum

class TripStatus(str, Enum):
    """Trip status enumeration"""
    SCHEDULED = "scheduled"
    BOARDING = "boarding"
    DEPARTED = "departed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

class TripCompany(BaseModel):
    id: int
    name: str
    logo_url: Optional[str] = None
    average_rating: Optional[Decimal] = None

class TripSummary(BaseModel):
    """Trip as listed in search results"""
    id: int
    trip_date: date
    status: TripStatus
    available_seats: int
    seat_capacity: int
    departure_time: time
    arrival_time: Optional[time] = None
    price: Decimal
    origin: str
    destination: str
    estimated_duration_minutes: Optional[int] = None
    bus_model: Optional[str] = None
    bus_registration: str
    amenities: List[str] = []
    company: TripCompany

class TripSearchResult(BaseModel):
    trips: List[TripSummary]
    total: int

class SeatMap(BaseModel):
    """Which seats of a trip are still free"""
    trip_id: int
    seat_capacity: int
    available_seats: int
    booked_seats: List[int]

class PassengerBoarding(BaseModel):
    ticket_id: int
    passenger_name: str
    seat_number: int
    status: str
    scanned_at: Optional[datetime] = None

class BoardingProgress(BaseModel):
    """Scanned vs sold tickets for a trip"""
    trip_id: int
    status: TripStatus
    ticket_count: int
    scanned_count: int
    progress_percent: float
    tickets: List[PassengerBoarding] = []

class DriverTrip(BaseModel):
    """Today's trip for the driver dashboard"""
    trip: TripSummary
    ticket_count: int
    scanned_count: int

class TripStatusUpdate(BaseModel):
    status: TripStatus

class TripStatusChange(BaseModel):
    trip_id: int
    previous_status: TripStatus
    status: TripStatus
    tickets_expired: int = 0
    tickets_cancelled: int = 0

class MaterializeTripsRequest(BaseModel):
    """Create trips for a schedule over a date range"""
    start_date: date
    days: int = Field(1, ge=1, le=90)
