from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime, date
from enum import Enum

class ScanOutcome(str, Enum):
    """What a scan attempt did"""
    VALID = "valid"
    NOT_FOUND = "not_found"
    ALREADY_USED = "already_used"
    INVALID_STATUS = "invalid_status"
    WRONG_COMPANY = "wrong_company"

class ScanResult(str, Enum):
    """Audit value stored in ticket_scans.scan_result"""
    VALID = "valid"
    INVALID = "invalid"
    ALREADY_USED = "already_used"
    WRONG_BUS = "wrong_bus"
    EXPIRED = "expired"

class ScanRequest(BaseModel):
    """A decoded QR payload or a manually typed ticket code"""
    code: str = Field(..., min_length=1, max_length=64)
    scan_location: Optional[str] = Field(None, max_length=100)

class ScannedTicket(BaseModel):
    """Ticket details shown to the driver after a scan"""
    id: int
    ticket_code: str
    passenger_name: str
    seat_number: int
    status: str
    trip_id: int
    trip_date: date
    origin: str
    destination: str
    bus_registration: str
    scanned_at: Optional[datetime] = None

class TicketScanResult(BaseModel):
    """Outcome of validating one code"""
    code: str
    outcome: ScanOutcome
    is_valid: bool
    message: str
    scan_id: Optional[int] = None
    ticket: Optional[ScannedTicket] = None
    validation_timestamp: datetime

class ScanRecord(BaseModel):
    """One row of the scan audit trail"""
    id: int
    ticket_id: Optional[int] = None
    scanned_code: str
    scanned_by: int
    scan_result: ScanResult
    scan_location: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class ScanHistory(BaseModel):
    scans: List[ScanRecord]
    total: int
