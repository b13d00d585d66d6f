from typing import List, Optional, Tuple
from datetime import datetime, timezone
import logging

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from ticketa.config import settings
from ticketa.models import Ticket, TicketScan, Driver
from ticketa.auth.permissions import Identity, Role, ScanCompanyPolicy, can_scan_ticket
from ticketa.bookings.schemas import TicketStatus
from ticketa.bookings.lifecycle import is_terminal, transition_ticket
from ticketa.bookings.ticket_service import TicketService, normalize_ticket_code
from ticketa.scanning.schemas import ScanOutcome, ScanResult, ScannedTicket, TicketScanResult
from ticketa.trips.websocket import ticket_updates
from ticketa.exceptions import TicketaError, DriverNotFound, NotAuthorized, StoreUnavailable

logger = logging.getLogger(__name__)

# Audit value recorded for tickets rejected because of their status
STATUS_SCAN_RESULTS = {
    TicketStatus.USED.value: ScanResult.ALREADY_USED,
    TicketStatus.EXPIRED.value: ScanResult.EXPIRED,
    TicketStatus.CANCELLED.value: ScanResult.INVALID,
}

class ScanService:
    """
    Validates scanned ticket codes at boarding time.

    A valid scan inserts an audit row and moves the ticket ``active -> used``
    in the same transaction. The status change is conditional on the ticket
    still being active, so when two devices scan the same ticket at once only
    one of them gets ``VALID``; the other is told the ticket was already used.
    """

    def __init__(
        self,
        db: Session,
        policy: Optional[ScanCompanyPolicy] = None,
        audit_rejected: Optional[bool] = None
    ):
        self.db = db
        self.policy = ScanCompanyPolicy(policy or settings.SCAN_COMPANY_POLICY)
        self.audit_rejected = settings.AUDIT_REJECTED_SCANS if audit_rejected is None else audit_rejected
        self.ticket_service = TicketService(db)

    def validate_ticket(
        self,
        code: str,
        identity: Identity,
        scan_location: Optional[str] = None
    ) -> TicketScanResult:
        """Validate a decoded or typed code on behalf of a driver"""
        try:
            return self._validate_ticket(code, identity, scan_location or settings.DEFAULT_SCAN_LOCATION)
        except TicketaError:
            self.db.rollback()
            raise
        except OperationalError as e:
            self.db.rollback()
            logger.error("Store unavailable while scanning %r: %s", code, e)
            raise StoreUnavailable("Failed to record scan. Please try again.") from e

    def _validate_ticket(self, code: str, identity: Identity, scan_location: str) -> TicketScanResult:
        if not identity.has_role(Role.DRIVER):
            raise NotAuthorized("Only drivers can scan tickets")

        driver = self.get_driver(identity.user_id)
        if driver is None:
            raise DriverNotFound(identity.user_id)

        normalized = normalize_ticket_code(code)
        ticket = self.ticket_service.get_ticket_by_code(normalized) if normalized else None

        if ticket is None:
            scan = self._record_rejection(None, normalized, identity, ScanResult.INVALID, scan_location)
            return self._result(normalized, ScanOutcome.NOT_FOUND, f"Ticket not found: {normalized}", scan)

        trip_company_id = ticket.trip.schedule.route.company_id
        if not can_scan_ticket(identity, driver.company_id, trip_company_id, self.policy):
            scan = self._record_rejection(ticket, normalized, identity, ScanResult.WRONG_BUS, scan_location)
            return self._result(
                normalized, ScanOutcome.WRONG_COMPANY,
                "This ticket is for a trip operated by another company.", scan, ticket
            )

        if ticket.status == TicketStatus.USED.value:
            scan = self._record_rejection(ticket, normalized, identity, ScanResult.ALREADY_USED, scan_location)
            return self._result(
                normalized, ScanOutcome.ALREADY_USED, "This ticket has already been scanned.", scan, ticket
            )

        if is_terminal(ticket.status):
            scan = self._record_rejection(
                ticket, normalized, identity, STATUS_SCAN_RESULTS[ticket.status], scan_location
            )
            return self._result(
                normalized, ScanOutcome.INVALID_STATUS, f"Ticket is {ticket.status}.", scan, ticket
            )

        return self._consume(ticket, normalized, identity, scan_location)

    def _consume(self, ticket: Ticket, code: str, identity: Identity, scan_location: str) -> TicketScanResult:
        scan = TicketScan(
            ticket_id=ticket.id,
            scanned_code=code,
            scanned_by=identity.user_id,
            scan_result=ScanResult.VALID.value,
            scan_location=scan_location
        )
        self.db.add(scan)
        self.db.flush()

        moved = transition_ticket(
            self.db,
            ticket.id,
            TicketStatus.ACTIVE,
            TicketStatus.USED,
            scanned_at=datetime.now(timezone.utc),
            scanned_by=identity.user_id
        )
        if not moved:
            # Another device consumed the ticket between our read and write
            self.db.rollback()
            self.db.refresh(ticket)
            logger.info("Lost scan race for ticket %s", code)
            rejection = self._record_rejection(
                ticket, code, identity, ScanResult.ALREADY_USED, scan_location
            )
            return self._result(
                code, ScanOutcome.ALREADY_USED, "This ticket has already been scanned.", rejection, ticket
            )

        self.db.commit()
        self.db.refresh(ticket)
        self.db.refresh(scan)

        logger.info("Ticket %s validated by user %s", code, identity.user_id)
        ticket_updates.publish_ticket_update(ticket)

        return self._result(code, ScanOutcome.VALID, "Ticket validated successfully", scan, ticket)

    def _record_rejection(
        self,
        ticket: Optional[Ticket],
        code: str,
        identity: Identity,
        scan_result: ScanResult,
        scan_location: str
    ) -> Optional[TicketScan]:
        logger.info("Rejected scan of %r by user %s: %s", code, identity.user_id, scan_result.value)
        if not self.audit_rejected:
            return None

        scan = TicketScan(
            ticket_id=ticket.id if ticket else None,
            scanned_code=code or "",
            scanned_by=identity.user_id,
            scan_result=scan_result.value,
            scan_location=scan_location
        )
        self.db.add(scan)
        self.db.commit()
        self.db.refresh(scan)
        return scan

    def _result(
        self,
        code: str,
        outcome: ScanOutcome,
        message: str,
        scan: Optional[TicketScan] = None,
        ticket: Optional[Ticket] = None
    ) -> TicketScanResult:
        scanned_ticket = None
        if ticket is not None:
            schedule = ticket.trip.schedule
            scanned_ticket = ScannedTicket(
                id=ticket.id,
                ticket_code=ticket.ticket_code,
                passenger_name=ticket.passenger_name,
                seat_number=ticket.seat_number,
                status=ticket.status,
                trip_id=ticket.trip_id,
                trip_date=ticket.trip.trip_date,
                origin=schedule.route.origin,
                destination=schedule.route.destination,
                bus_registration=schedule.bus.registration_number,
                scanned_at=ticket.scanned_at
            )

        return TicketScanResult(
            code=code,
            outcome=outcome,
            is_valid=outcome == ScanOutcome.VALID,
            message=message,
            scan_id=scan.id if scan is not None else None,
            ticket=scanned_ticket,
            validation_timestamp=datetime.now(timezone.utc)
        )

    def get_driver(self, user_id: int) -> Optional[Driver]:
        return self.db.query(Driver).filter(
            Driver.user_id == user_id,
            Driver.is_active.is_(True)
        ).first()

    def get_scan_history(self, identity: Identity, limit: int = 10) -> Tuple[List[TicketScan], int]:
        """Most recent scans made by the caller"""
        query = self.db.query(TicketScan).filter(TicketScan.scanned_by == identity.user_id)
        total = query.count()
        scans = query.order_by(TicketScan.created_at.desc(), TicketScan.id.desc()).limit(limit).all()
        return scans, total
