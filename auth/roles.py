"""
auth/roles.py -- The closed role set and every lookup table keyed by it.

Three tables, all total over Role:

  ROLE_TRANSITIONS  legal role -> {target active role: resulting is_role_switched}
                    An absent target means the switch is forbidden. employee
                    has no outgoing edges at all, not even to itself.

  LANDING_PAGES     role -> default landing page for browser navigations.

  ROLE_RANK         role -> rank used by hierarchical authorization
                    (root > admin > employee).

Lookups go through the helper functions below. They raise on an unknown role
string rather than falling back to a default.

Layer rule: stdlib only.
"""

from __future__ import annotations

from enum import Enum
from types import MappingProxyType
from typing import Mapping


class Role(str, Enum):
    ROOT = "root"
    ADMIN = "admin"
    EMPLOYEE = "employee"


ROLE_TRANSITIONS: Mapping[Role, Mapping[Role, bool]] = MappingProxyType(
    {
        Role.ROOT: MappingProxyType({Role.ADMIN: True, Role.EMPLOYEE: True, Role.ROOT: False}),
        Role.ADMIN: MappingProxyType({Role.EMPLOYEE: True, Role.ADMIN: False}),
        Role.EMPLOYEE: MappingProxyType({}),
    }
)

LANDING_PAGES: Mapping[Role, str] = MappingProxyType(
    {
        Role.ROOT: "/root-dashboard",
        Role.ADMIN: "/admin-dashboard",
        Role.EMPLOYEE: "/employee-dashboard",
    }
)

ROLE_RANK: Mapping[Role, int] = MappingProxyType({Role.ROOT: 3, Role.ADMIN: 2, Role.EMPLOYEE: 1})


def parse_role(value: str | Role) -> Role:
    """Coerce a role string to Role. Raises ValueError for anything outside the set."""
    return Role(value)


def transition(legal_role: str | Role, target: str | Role) -> bool | None:
    """Return is_role_switched for the edge legal_role -> target, or None if no such edge."""
    try:
        legal, wanted = parse_role(legal_role), parse_role(target)
    except ValueError:
        return None
    return ROLE_TRANSITIONS[legal].get(wanted)


def can_switch(legal_role: str | Role) -> bool:
    """True iff the legal role has at least one outgoing edge."""
    return bool(ROLE_TRANSITIONS[parse_role(legal_role)])


def landing_page(role: str | Role) -> str:
    return LANDING_PAGES[parse_role(role)]


def role_satisfies(active_role: str | Role, required: str | Role) -> bool:
    """Hierarchical check: root passes everything, admin passes admin and employee."""
    return ROLE_RANK[parse_role(active_role)] >= ROLE_RANK[parse_role(required)]
