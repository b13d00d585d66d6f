"""
Booking & Ticketing Module

Seat sales and the ticket lifecycle for scheduled bus trips:

- Seat availability checks against tickets already sold
- Seat allocation: ticket insert and seat counter decrement in one transaction,
  backed by a partial unique index on (trip_id, seat_number)
- Ticket lifecycle state machine (active -> used / cancelled / expired)
- Ticket cancellation that frees the seat
- QR code rendering of ticket codes

Key Components:
- lifecycle.py: ticket status graph and guarded status updates
- booking_service.py: seat allocation and cancellation
- ticket_service.py: ticket lookups, detail views and QR images
- router.py: FastAPI endpoints for booking and tickets
- schemas.py: Pydantic models for requests and ticket views
"""
