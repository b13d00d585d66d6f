from datetime import datetime, timezone

import pytest

from ticketa.bookings.booking_service import BookingService
from ticketa.bookings.lifecycle import (
    TICKET_TRANSITIONS, can_transition, is_terminal, assert_transition,
    transition_ticket, expire_active_tickets, cancel_active_tickets
)
from ticketa.bookings.schemas import TicketStatus
from ticketa.exceptions import InvalidTicketTransition
from ticketa.models import Ticket

from conftest import seat_request


def test_active_moves_to_every_terminal_state():
    for target in (TicketStatus.USED, TicketStatus.CANCELLED, TicketStatus.EXPIRED):
        assert can_transition(TicketStatus.ACTIVE, target)


@pytest.mark.parametrize("terminal", [TicketStatus.USED, TicketStatus.EXPIRED, TicketStatus.CANCELLED])
def test_terminal_states_have_no_exits(terminal):
    assert is_terminal(terminal)
    for target in TicketStatus:
        assert not can_transition(terminal, target)


def test_nothing_returns_to_active():
    assert all(TicketStatus.ACTIVE not in targets for targets in TICKET_TRANSITIONS.values())


def test_assert_transition_accepts_plain_strings():
    assert_transition("active", "used")
    with pytest.raises(InvalidTicketTransition):
        assert_transition("used", "active")


def _sell(db, factory, seat=1):
    trip = factory.trip(seat_capacity=4)
    return BookingService(db).allocate_seat(seat_request(trip.id, seat))


def test_transition_ticket_only_moves_from_expected_status(db, factory):
    ticket = _sell(db, factory)

    assert transition_ticket(db, ticket.id, TicketStatus.ACTIVE, TicketStatus.USED,
                             scanned_at=datetime.now(timezone.utc))
    db.commit()

    # Second writer expecting ``active`` matches nothing
    assert not transition_ticket(db, ticket.id, TicketStatus.ACTIVE, TicketStatus.CANCELLED)
    db.commit()

    db.refresh(ticket)
    assert ticket.status == "used"
    assert ticket.scanned_at is not None


def test_transition_ticket_rejects_illegal_edge_without_writing(db, factory):
    ticket = _sell(db, factory)

    with pytest.raises(InvalidTicketTransition):
        transition_ticket(db, ticket.id, TicketStatus.EXPIRED, TicketStatus.ACTIVE)

    db.refresh(ticket)
    assert ticket.status == "active"


def test_expire_active_tickets_leaves_used_tickets_alone(db, factory):
    trip = factory.trip(seat_capacity=4)
    service = BookingService(db)
    first = service.allocate_seat(seat_request(trip.id, 1))
    second = service.allocate_seat(seat_request(trip.id, 2))

    transition_ticket(db, first.id, TicketStatus.ACTIVE, TicketStatus.USED)
    db.commit()

    assert expire_active_tickets(db, trip.id) == [second.id]
    db.commit()

    statuses = {t.id: t.status for t in db.query(Ticket).filter(Ticket.trip_id == trip.id)}
    assert statuses == {first.id: "used", second.id: "expired"}


def test_cancel_active_tickets_refunds_payment(db, factory):
    ticket = _sell(db, factory)

    assert cancel_active_tickets(db, ticket.trip_id, datetime.now(timezone.utc)) == [ticket.id]
    db.commit()

    db.refresh(ticket)
    assert ticket.status == "cancelled"
    assert ticket.payment_status == "refunded"
    assert ticket.cancelled_at is not None
