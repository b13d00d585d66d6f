"""Domain errors raised by the ticketing services.

Every error subclasses ``ValueError`` so routers can keep translating service
failures into HTTP responses the same way: catch the specific error first,
then fall back to ``ValueError`` -> 400.
"""


class TicketaError(ValueError):
    """Base class for ticketing domain errors"""


class TripNotFound(TicketaError):
    def __init__(self, trip_id):
        super().__init__(f"Trip {trip_id} not found")
        self.trip_id = trip_id


class TicketNotFound(TicketaError):
    def __init__(self, ticket_ref):
        super().__init__(f"Ticket not found: {ticket_ref}")
        self.ticket_ref = ticket_ref


class CompanyNotFound(TicketaError):
    def __init__(self, company_id):
        super().__init__(f"Company {company_id} not found")
        self.company_id = company_id


class AllocationError(TicketaError):
    """A seat could not be sold"""


class TripNotBookable(AllocationError):
    def __init__(self, trip_id, status):
        super().__init__(f"Trip {trip_id} is {status} and cannot be booked")
        self.trip_id = trip_id
        self.status = status


class TripFull(AllocationError):
    def __init__(self, trip_id):
        super().__init__(f"Trip {trip_id} has no available seats")
        self.trip_id = trip_id


class InvalidSeatNumber(AllocationError):
    def __init__(self, seat_number, seat_capacity):
        super().__init__(f"Seat {seat_number} is outside 1..{seat_capacity}")
        self.seat_number = seat_number
        self.seat_capacity = seat_capacity


class SeatTaken(AllocationError):
    def __init__(self, trip_id, seat_number):
        super().__init__(f"Seat {seat_number} on trip {trip_id} is already taken")
        self.trip_id = trip_id
        self.seat_number = seat_number


class InvalidTicketTransition(TicketaError):
    def __init__(self, from_status, to_status):
        super().__init__(f"Ticket cannot move from {from_status} to {to_status}")
        self.from_status = from_status
        self.to_status = to_status


class InvalidTripTransition(TicketaError):
    def __init__(self, from_status, to_status):
        super().__init__(f"Trip cannot move from {from_status} to {to_status}")
        self.from_status = from_status
        self.to_status = to_status


class DriverNotFound(TicketaError):
    def __init__(self, user_id):
        super().__init__("Driver profile not found. Please contact your administrator.")
        self.user_id = user_id


class NotAuthorized(TicketaError):
    """The identity may not perform the requested action"""


class StoreUnavailable(TicketaError):
    """The database could not be reached or failed mid-operation"""
