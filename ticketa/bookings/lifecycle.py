"""
Ticket lifecycle state machine.

    active --scan--------> used
    active --cancel------> cancelled
    active --trip closes-> expired

``used``, ``expired`` and ``cancelled`` are terminal. Nothing ever moves a
ticket back to ``active``.

Status changes are written with ``transition_ticket``, which guards the
UPDATE on the expected current status. Two writers racing on the same ticket
therefore cannot both succeed: the loser matches zero rows.
"""

from typing import Dict, FrozenSet, List
from sqlalchemy import update
from sqlalchemy.orm import Session

from ticketa.models import Ticket
from ticketa.bookings.schemas import TicketStatus, PaymentStatus
from ticketa.exceptions import InvalidTicketTransition

TICKET_TRANSITIONS: Dict[TicketStatus, FrozenSet[TicketStatus]] = {
    TicketStatus.ACTIVE: frozenset({TicketStatus.USED, TicketStatus.CANCELLED, TicketStatus.EXPIRED}),
    TicketStatus.USED: frozenset(),
    TicketStatus.EXPIRED: frozenset(),
    TicketStatus.CANCELLED: frozenset(),
}

INITIAL_STATUS = TicketStatus.ACTIVE

# Statuses that keep a seat occupied for availability checks
SEAT_HOLDING_STATUSES = (TicketStatus.ACTIVE.value, TicketStatus.USED.value)

def can_transition(from_status: TicketStatus, to_status: TicketStatus) -> bool:
    return TicketStatus(to_status) in TICKET_TRANSITIONS[TicketStatus(from_status)]

def is_terminal(status: TicketStatus) -> bool:
    return not TICKET_TRANSITIONS[TicketStatus(status)]

def assert_transition(from_status: TicketStatus, to_status: TicketStatus) -> None:
    if not can_transition(from_status, to_status):
        raise InvalidTicketTransition(TicketStatus(from_status).value, TicketStatus(to_status).value)

def transition_ticket(
    db: Session,
    ticket_id: int,
    from_status: TicketStatus,
    to_status: TicketStatus,
    **values
) -> bool:
    """
    Move one ticket along an edge of the state machine.

    Issues ``UPDATE tickets SET status=:to ... WHERE id=:id AND status=:from``
    inside the caller's transaction and returns whether a row changed. The
    caller owns commit/rollback.
    """
    assert_transition(from_status, to_status)

    result = db.execute(
        update(Ticket)
        .where(Ticket.id == ticket_id, Ticket.status == TicketStatus(from_status).value)
        .values(status=TicketStatus(to_status).value, **values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1

def _close_active_tickets(db: Session, trip_id: int, **values) -> List[int]:
    ids = [
        row.id for row in
        db.query(Ticket.id).filter(Ticket.trip_id == trip_id, Ticket.status == TicketStatus.ACTIVE.value)
    ]
    if not ids:
        return []

    result = db.execute(
        update(Ticket)
        .where(Ticket.id.in_(ids), Ticket.status == TicketStatus.ACTIVE.value)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != len(ids):
        # Some tickets were scanned or cancelled between the select and the update
        ids = [
            row.id for row in
            db.query(Ticket.id).filter(Ticket.id.in_(ids), Ticket.status == values["status"])
        ]
    return ids

def expire_active_tickets(db: Session, trip_id: int) -> List[int]:
    """Bulk ``active -> expired`` for a trip that closed without boarding them; returns the ticket ids"""
    return _close_active_tickets(db, trip_id, status=TicketStatus.EXPIRED.value)

def cancel_active_tickets(db: Session, trip_id: int, cancelled_at) -> List[int]:
    """Bulk ``active -> cancelled`` when the operator cancels a trip; returns the ticket ids"""
    return _close_active_tickets(
        db,
        trip_id,
        status=TicketStatus.CANCELLED.value,
        cancelled_at=cancelled_at,
        payment_status=PaymentStatus.REFUNDED.value
    )
