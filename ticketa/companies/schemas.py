from pydantic import BaseModel, EmailStr, Field, validator
from typing import List, Optional
from datetime import datetime, time
from decimal import Decimal
from enum import Enum

class BusStatus(str, Enum):
    """Bus status enumeration"""
    AVAILABLE = "available"
    FULL = "full"
    MAINTENANCE = "maintenance"
    INACTIVE = "inactive"

# Companies
class CompanyCreate(BaseModel):
    name: str = Field(..., min_length=2, max_length=255)
    description: Optional[str] = None
    logo_url: Optional[str] = None
    contact_email: Optional[EmailStr] = None
    contact_phone: Optional[str] = None
    address: Optional[str] = None

class Company(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    logo_url: Optional[str] = None
    contact_email: Optional[str] = None
    contact_phone: Optional[str] = None
    address: Optional[str] = None
    is_approved: bool
    is_active: bool
    average_rating: Optional[Decimal] = None
    total_reviews: Optional[int] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True

# Fleet
class BusCreate(BaseModel):
    registration_number: str = Field(..., min_length=2, max_length=50)
    model: Optional[str] = None
    seat_capacity: int = Field(..., ge=1, le=100)
    amenities: List[str] = []

    @validator('registration_number')
    def normalize_registration(cls, v):
        return v.strip().upper()

class BusStatusUpdate(BaseModel):
    status: BusStatus

class Bus(BaseModel):
    id: int
    company_id: int
    registration_number: str
    model: Optional[str] = None
    seat_capacity: int
    amenities: Optional[List[str]] = None
    status: BusStatus

    class Config:
        from_attributes = True

# Routes
class RouteCreate(BaseModel):
    origin: str = Field(..., min_length=2, max_length=255)
    destination: str = Field(..., min_length=2, max_length=255)
    stops: List[str] = []
    distance_km: Optional[Decimal] = Field(None, gt=0)
    estimated_duration_minutes: Optional[int] = Field(None, gt=0)

    @validator('destination')
    def validate_destination(cls, v, values):
        if 'origin' in values and v.strip().lower() == values['origin'].strip().lower():
            raise ValueError('Origin and destination must differ')
        return v

class Route(BaseModel):
    id: int
    company_id: int
    origin: str
    destination: str
    stops: Optional[List[str]] = None
    distance_km: Optional[Decimal] = None
    estimated_duration_minutes: Optional[int] = None
    is_active: bool

    class Config:
        from_attributes = True

# Schedules
class ScheduleCreate(BaseModel):
    route_id: int
    bus_id: int
    departure_time: time
    arrival_time: Optional[time] = None
    days_of_week: List[int] = Field(..., min_length=1, description="0 = Sunday ... 6 = Saturday")
    price: Decimal = Field(..., gt=0)

    @validator('days_of_week')
    def validate_days(cls, v):
        if any(day < 0 or day > 6 for day in v):
            raise ValueError('Days of week must be between 0 (Sunday) and 6 (Saturday)')
        return sorted(set(v))

class Schedule(BaseModel):
    id: int
    route_id: int
    bus_id: int
    departure_time: time
    arrival_time: Optional[time] = None
    days_of_week: List[int]
    price: Decimal
    is_active: bool

    class Config:
        from_attributes = True

# Drivers
class DriverCreate(BaseModel):
    """Register an existing user account as a driver of the company"""
    email: EmailStr
    license_number: Optional[str] = None
    assigned_bus_id: Optional[int] = None

class Driver(BaseModel):
    id: int
    user_id: int
    company_id: int
    email: Optional[str] = None
    full_name: Optional[str] = None
    license_number: Optional[str] = None
    assigned_bus_id: Optional[int] = None
    is_active: bool
