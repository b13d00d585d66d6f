"""
Roles and authorization predicates.

Every authorization decision in the service goes through the functions in
this module. Callers pass an explicit ``Identity`` built for the current
request; nothing here reads global state.
"""

from enum import Enum
from typing import FrozenSet, Iterable, Optional

from pydantic import BaseModel


class Role(str, Enum):
    """Closed set of platform roles"""
    ADMIN = "admin"
    COMPANY_ADMIN = "company_admin"
    DRIVER = "driver"
    PASSENGER = "passenger"


class ScanCompanyPolicy(str, Enum):
    """Whether a driver may scan tickets for trips of other companies"""
    OPEN = "open"
    SAME_COMPANY = "same_company"


class Identity(BaseModel):
    """The authenticated caller, threaded through every service call"""
    user_id: int
    email: Optional[str] = None
    roles: FrozenSet[Role] = frozenset()
    company_ids: FrozenSet[int] = frozenset()  # companies this user administers

    def has_role(self, role: Role) -> bool:
        return role in self.roles


def parse_roles(names: Iterable[str]) -> FrozenSet[Role]:
    """Map stored role names to ``Role``, dropping unknown values"""
    roles = set()
    for name in names:
        try:
            roles.add(Role(name))
        except ValueError:
            continue
    return frozenset(roles)


def is_admin(identity: Identity) -> bool:
    return identity.has_role(Role.ADMIN)


def can_manage_company(identity: Identity, company_id: int) -> bool:
    """Platform admins manage every company; company admins manage their own"""
    if is_admin(identity):
        return True
    return identity.has_role(Role.COMPANY_ADMIN) and company_id in identity.company_ids


def can_scan_ticket(
    identity: Identity,
    driver_company_id: Optional[int],
    trip_company_id: Optional[int],
    policy: ScanCompanyPolicy,
) -> bool:
    """
    Decide whether a driver may consume a ticket for a trip.

    ``driver_company_id`` is None when the caller has no driver profile, in
    which case scanning is never allowed.
    """
    if not identity.has_role(Role.DRIVER) or driver_company_id is None:
        return False
    if policy == ScanCompanyPolicy.OPEN:
        return True
    return driver_company_id == trip_company_id


def can_cancel_ticket(identity: Identity, passenger_id: Optional[int], trip_company_id: int) -> bool:
    if passenger_id is not None and passenger_id == identity.user_id:
        return True
    return can_manage_company(identity, trip_company_id)


def can_view_trip_operations(identity: Identity, trip_company_id: int, driver_company_id: Optional[int]) -> bool:
    """Boarding progress and live ticket feeds for company staff"""
    if can_manage_company(identity, trip_company_id):
        return True
    return identity.has_role(Role.DRIVER) and driver_company_id == trip_company_id
