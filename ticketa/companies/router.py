from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.orm import Session
from typing import List, Optional

from ticketa.database import get_db
from ticketa.auth.dependencies import get_identity
from ticketa.auth.permissions import Identity, can_manage_company
from ticketa.companies.schemas import (
    CompanyCreate, Company, BusCreate, BusStatusUpdate, Bus, RouteCreate, Route,
    ScheduleCreate, Schedule, DriverCreate, Driver
)
from ticketa.companies.service import CompanyService
from ticketa.bookings.schemas import TicketDetail
from ticketa.bookings.ticket_service import TicketService
from ticketa.trips.schemas import MaterializeTripsRequest, TripSummary
from ticketa.trips.service import TripService
from ticketa.exceptions import CompanyNotFound, NotAuthorized

router = APIRouter()

def _raise_http(e: Exception):
    if isinstance(e, CompanyNotFound):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    if isinstance(e, NotAuthorized):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

def _require_member(db: Session, company_id: int, identity: Identity):
    if not CompanyService.get_company(db, company_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Company not found")
    if not can_manage_company(identity, company_id):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not enough permissions")

# Companies
@router.post("/", response_model=Company, status_code=status.HTTP_201_CREATED)
def register_company(
    data: CompanyCreate,
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db)
):
    """Register a bus company; it stays hidden until an admin approves it"""
    return CompanyService.register_company(db, data, identity)

@router.get("/", response_model=List[Company])
def list_companies(db: Session = Depends(get_db)):
    """Approved, active companies"""
    return CompanyService.list_companies(db, public_only=True)

@router.get("/{company_id}", response_model=Company)
def get_company(company_id: int, db: Session = Depends(get_db)):
    company = CompanyService.get_company(db, company_id)
    if not company:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Company not found")
    return company

# Fleet
@router.get("/{company_id}/buses", response_model=List[Bus])
def list_buses(
    company_id: int,
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db)
):
    _require_member(db, company_id, identity)
    return CompanyService.list_buses(db, company_id)

@router.post("/{company_id}/buses", response_model=Bus, status_code=status.HTTP_201_CREATED)
def add_bus(
    company_id: int,
    data: BusCreate,
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db)
):
    try:
        return CompanyService.add_bus(db, company_id, data, identity)
    except ValueError as e:
        _raise_http(e)

@router.put("/{company_id}/buses/{bus_id}/status", response_model=Bus)
def update_bus_status(
    company_id: int,
    bus_id: int,
    update: BusStatusUpdate,
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db)
):
    try:
        return CompanyService.update_bus_status(db, company_id, bus_id, update.status, identity)
    except ValueError as e:
        _raise_http(e)

# Routes
@router.get("/{company_id}/routes", response_model=List[Route])
def list_routes(company_id: int, db: Session = Depends(get_db)):
    if not CompanyService.get_company(db, company_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Company not found")
    return CompanyService.list_routes(db, company_id)

@router.post("/{company_id}/routes", response_model=Route, status_code=status.HTTP_201_CREATED)
def add_route(
    company_id: int,
    data: RouteCreate,
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db)
):
    try:
        return CompanyService.add_route(db, company_id, data, identity)
    except ValueError as e:
        _raise_http(e)

# Schedules
@router.get("/{company_id}/schedules", response_model=List[Schedule])
def list_schedules(company_id: int, db: Session = Depends(get_db)):
    if not CompanyService.get_company(db, company_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Company not found")
    return CompanyService.list_schedules(db, company_id)

@router.post("/{company_id}/schedules", response_model=Schedule, status_code=status.HTTP_201_CREATED)
def add_schedule(
    company_id: int,
    data: ScheduleCreate,
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db)
):
    try:
        return CompanyService.add_schedule(db, company_id, data, identity)
    except ValueError as e:
        _raise_http(e)

@router.post(
    "/{company_id}/schedules/{schedule_id}/trips",
    response_model=List[TripSummary],
    status_code=status.HTTP_201_CREATED
)
def materialize_trips(
    company_id: int,
    schedule_id: int,
    request: MaterializeTripsRequest,
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db)
):
    """Create dated trips from a schedule's weekly pattern"""
    _require_member(db, company_id, identity)
    schedule_ids = {s.id for s in CompanyService.list_schedules(db, company_id)}
    if schedule_id not in schedule_ids:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Schedule not found")

    try:
        trips = TripService.materialize_trips(db, schedule_id, request.start_date, request.days, identity)
    except ValueError as e:
        _raise_http(e)

    return [TripService.to_summary(TripService.get_trip(db, trip.id)) for trip in trips]

# Drivers
@router.get("/{company_id}/drivers", response_model=List[Driver])
def list_drivers(
    company_id: int,
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db)
):
    _require_member(db, company_id, identity)
    return [CompanyService.to_driver_view(d) for d in CompanyService.list_drivers(db, company_id)]

@router.post("/{company_id}/drivers", response_model=Driver, status_code=status.HTTP_201_CREATED)
def add_driver(
    company_id: int,
    data: DriverCreate,
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db)
):
    try:
        driver = CompanyService.add_driver(db, company_id, data, identity)
    except ValueError as e:
        _raise_http(e)
    return CompanyService.to_driver_view(driver)

@router.delete("/{company_id}/drivers/{driver_id}", response_model=Driver)
def deactivate_driver(
    company_id: int,
    driver_id: int,
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db)
):
    """Stop a driver from scanning for the company"""
    try:
        driver = CompanyService.set_driver_active(db, company_id, driver_id, False, identity)
    except ValueError as e:
        _raise_http(e)
    return CompanyService.to_driver_view(driver)

# Bookings
@router.get("/{company_id}/bookings", response_model=List[TicketDetail])
def list_company_bookings(
    company_id: int,
    trip_id: Optional[int] = Query(None, description="Only tickets of this trip"),
    limit: int = Query(100, ge=1, le=500),
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db)
):
    """Tickets sold on the company's trips, newest first"""
    _require_member(db, company_id, identity)
    tickets = TicketService(db).get_company_tickets(company_id, trip_id=trip_id, limit=limit)
    return [TicketService.to_detail(t) for t in tickets]
