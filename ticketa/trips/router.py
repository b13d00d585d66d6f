from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.orm import Session
from typing import List, Optional
from datetime import date

from ticketa.database import get_db
from ticketa.auth.dependencies import get_identity
from ticketa.auth.permissions import Identity
from ticketa.trips.schemas import (
    TripSummary, TripSearchResult, SeatMap, BoardingProgress, DriverTrip,
    TripStatusUpdate, TripStatusChange
)
from ticketa.trips.service import TripService
from ticketa.trips.websocket import trip_tickets_websocket
from ticketa.exceptions import TripNotFound, NotAuthorized, InvalidTripTransition

router = APIRouter()

@router.get("/search", response_model=TripSearchResult)
def search_trips(
    trip_date: date = Query(..., alias="date", description="Travel date"),
    origin: Optional[str] = Query(None, description="Origin contains"),
    destination: Optional[str] = Query(None, description="Destination contains"),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=100),
    db: Session = Depends(get_db)
):
    """Search bookable trips for a date"""
    trips, total = TripService.search_trips(
        db, trip_date, origin=origin, destination=destination, skip=skip, limit=limit
    )
    return TripSearchResult(
        trips=[TripService.to_summary(trip) for trip in trips],
        total=total
    )

@router.get("/driver/today", response_model=List[DriverTrip])
def get_driver_today_trips(
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db)
):
    """Today's trips for the calling driver's company"""
    return TripService.get_driver_today_trips(db, identity)

@router.get("/{trip_id}", response_model=TripSummary)
def get_trip(trip_id: int, db: Session = Depends(get_db)):
    """Get trip details"""
    trip = TripService.get_trip(db, trip_id)
    if not trip:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Trip not found"
        )
    return TripService.to_summary(trip)

@router.get("/{trip_id}/seats", response_model=SeatMap)
def get_trip_seats(trip_id: int, db: Session = Depends(get_db)):
    """Seat map of a trip for seat selection"""
    try:
        return TripService.get_seat_map(db, trip_id)
    except TripNotFound as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(e)
        )

@router.get("/{trip_id}/progress", response_model=BoardingProgress)
def get_boarding_progress(
    trip_id: int,
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db)
):
    """Boarding progress for company staff and drivers"""
    if not TripService.can_view_operations(db, identity, trip_id):
        trip = TripService.get_trip(db, trip_id)
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND if trip is None else status.HTTP_403_FORBIDDEN,
            detail="Trip not found" if trip is None else "Not enough permissions"
        )
    return TripService.get_boarding_progress(db, trip_id)

@router.put("/{trip_id}/status", response_model=TripStatusChange)
def update_trip_status(
    trip_id: int,
    update: TripStatusUpdate,
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db)
):
    """Move a trip to a new status"""
    try:
        return TripService.update_trip_status(db, trip_id, update.status, identity)
    except TripNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except NotAuthorized as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    except InvalidTripTransition as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

router.add_api_websocket_route("/{trip_id}/ws", trip_tickets_websocket)
