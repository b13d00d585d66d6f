import pytest

from ticketa.auth.permissions import Role, ScanCompanyPolicy
from ticketa.bookings.booking_service import BookingService
from ticketa.bookings.ticket_service import TicketService
from ticketa.exceptions import DriverNotFound, NotAuthorized
from ticketa.models import Ticket, TicketScan, Trip, User
from ticketa.scanning.schemas import ScanOutcome
from ticketa.scanning.scan_service import ScanService

from conftest import seat_request


@pytest.fixture
def boarding(db, factory):
    """A trip with one sold ticket and a driver of the operating company"""
    company = factory.company()
    trip = factory.trip(company=company, seat_capacity=40)
    driver = factory.driver(company)
    ticket = BookingService(db).allocate_seat(seat_request(trip.id, 12, name="Jane Doe"))
    return trip, ticket, factory.identity(driver)


def _reload(db, ticket):
    db.expire_all()
    return db.get(Ticket, ticket.id)


def test_first_scan_consumes_ticket_and_second_is_rejected(db, boarding):
    trip, ticket, driver = boarding
    service = ScanService(db)

    first = service.validate_ticket(ticket.ticket_code, driver)
    assert first.outcome == ScanOutcome.VALID
    assert first.is_valid
    assert first.message == "Ticket validated successfully"
    assert first.ticket.seat_number == 12
    assert first.ticket.passenger_name == "Jane Doe"

    used = _reload(db, ticket)
    assert used.status == "used"
    assert used.scanned_at is not None
    assert used.scanned_by == driver.user_id
    scanned_at = used.scanned_at

    second = service.validate_ticket(ticket.ticket_code, driver)
    assert second.outcome == ScanOutcome.ALREADY_USED
    assert not second.is_valid

    again = _reload(db, ticket)
    assert again.status == "used"
    assert again.scanned_at == scanned_at


def test_end_to_end_sale_scan_rescan(db, boarding):
    trip, ticket, driver = boarding
    assert ticket.status == "active"
    assert db.get(Trip, trip.id).available_seats == 39

    assert ScanService(db).validate_ticket(ticket.ticket_code, driver).outcome == ScanOutcome.VALID
    assert ScanService(db).validate_ticket(ticket.ticket_code, driver).outcome == ScanOutcome.ALREADY_USED
    assert _reload(db, ticket).status == "used"


def test_codes_are_matched_trimmed_and_case_insensitive(db, boarding):
    _, ticket, driver = boarding
    result = ScanService(db).validate_ticket(f"  {ticket.ticket_code.lower()} ", driver)
    assert result.outcome == ScanOutcome.VALID
    assert result.code == ticket.ticket_code


def test_unknown_code_is_not_found_and_audited(db, boarding):
    _, ticket, driver = boarding

    result = ScanService(db).validate_ticket("TKTNOSUCH1", driver)

    assert result.outcome == ScanOutcome.NOT_FOUND
    assert result.message == "Ticket not found: TKTNOSUCH1"
    assert result.ticket is None
    assert _reload(db, ticket).status == "active"

    scan = db.query(TicketScan).one()
    assert scan.ticket_id is None
    assert scan.scanned_code == "TKTNOSUCH1"
    assert scan.scan_result == "invalid"


def test_rejections_are_not_audited_when_disabled(db, boarding):
    _, _, driver = boarding
    result = ScanService(db, audit_rejected=False).validate_ticket("TKTNOSUCH1", driver)
    assert result.scan_id is None
    assert db.query(TicketScan).count() == 0


@pytest.mark.parametrize("status, audit", [("cancelled", "invalid"), ("expired", "expired")])
def test_closed_tickets_are_never_consumed(db, boarding, status, audit):
    _, ticket, driver = boarding
    db.query(Ticket).filter(Ticket.id == ticket.id).update({"status": status})
    db.commit()

    result = ScanService(db).validate_ticket(ticket.ticket_code, driver)

    assert result.outcome == ScanOutcome.INVALID_STATUS
    assert result.message == f"Ticket is {status}."
    reloaded = _reload(db, ticket)
    assert reloaded.status == status
    assert reloaded.scanned_at is None
    assert db.query(TicketScan).one().scan_result == audit


def test_lost_race_reports_already_used(db, session_factory, boarding, monkeypatch):
    _, ticket, driver = boarding
    original = TicketService.get_ticket_by_code

    def lookup_then_lose_race(self, code):
        found = original(self, code)
        # Another device consumes the ticket after our read
        other = session_factory()
        try:
            other.query(Ticket).filter(Ticket.id == found.id).update({"status": "used"})
            other.commit()
        finally:
            other.close()
        return found

    monkeypatch.setattr(TicketService, "get_ticket_by_code", lookup_then_lose_race)

    result = ScanService(db).validate_ticket(ticket.ticket_code, driver)

    assert result.outcome == ScanOutcome.ALREADY_USED
    assert not result.is_valid
    scans = db.query(TicketScan).all()
    assert [s.scan_result for s in scans] == ["already_used"]


def test_open_policy_lets_any_driver_scan(db, factory, boarding):
    _, ticket, _ = boarding
    outsider = factory.identity(factory.driver(factory.company()))

    result = ScanService(db, policy=ScanCompanyPolicy.OPEN).validate_ticket(ticket.ticket_code, outsider)
    assert result.outcome == ScanOutcome.VALID


def test_same_company_policy_rejects_other_companies(db, factory, boarding):
    _, ticket, _ = boarding
    outsider = factory.identity(factory.driver(factory.company()))

    result = ScanService(db, policy=ScanCompanyPolicy.SAME_COMPANY).validate_ticket(
        ticket.ticket_code, outsider
    )

    assert result.outcome == ScanOutcome.WRONG_COMPANY
    assert _reload(db, ticket).status == "active"
    assert db.query(TicketScan).one().scan_result == "wrong_bus"


def test_only_drivers_can_scan(db, factory, boarding):
    _, ticket, _ = boarding
    passenger = factory.identity(factory.user())

    with pytest.raises(NotAuthorized):
        ScanService(db).validate_ticket(ticket.ticket_code, passenger)
    assert _reload(db, ticket).status == "active"


def test_driver_role_without_profile(db, factory, boarding):
    _, ticket, _ = boarding
    no_profile = factory.identity(factory.user(roles=(Role.DRIVER,)))

    with pytest.raises(DriverNotFound):
        ScanService(db).validate_ticket(ticket.ticket_code, no_profile)


def test_inactive_driver_cannot_scan(db, factory, boarding):
    trip, ticket, _ = boarding
    retired = factory.identity(factory.driver(factory.company_of(trip), active=False))

    with pytest.raises(DriverNotFound):
        ScanService(db).validate_ticket(ticket.ticket_code, retired)


def test_scan_history_lists_own_scans_newest_first(db, factory, boarding):
    trip, ticket, driver = boarding
    service = ScanService(db)
    service.validate_ticket(ticket.ticket_code, driver)
    service.validate_ticket("TKTMISSING", driver)

    scans, total = service.get_scan_history(driver, limit=10)

    assert total == 2
    assert [s.scan_result for s in scans] == ["invalid", "valid"]

    other = factory.identity(factory.driver(factory.company_of(trip)))
    assert service.get_scan_history(other)[1] == 0


def test_user_tickets_follow_passenger_not_scanner(db, factory):
    company = factory.company()
    trip = factory.trip(company=company)
    passenger = factory.user()
    driver = factory.driver(company)
    ticket = BookingService(db).allocate_seat(seat_request(trip.id, 4), factory.identity(passenger))

    ScanService(db).validate_ticket(ticket.ticket_code, factory.identity(driver))

    db.expire_all()
    assert [t.id for t in db.get(User, passenger.id).tickets] == [ticket.id]
    assert db.get(User, driver.id).tickets == []
    assert db.get(Ticket, ticket.id).scanned_by == driver.id
