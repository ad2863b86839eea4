"""Capability table and the pure permission resolver.

The resolver turns ``(role, company_id, is_approved)`` into an access level
and a capability set. It is shared by the API (``/api/user/permissions``,
action guards) and by the portal as the optimistic default before the
server answers.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import StrEnum

from models.enums import Role
from services.roles import parse_role


class AccessLevel(StrEnum):
    INDEPENDENT = "independent"
    LIMITED = "limited"
    APPROVED = "approved"
    PM = "pm"


class Capability(StrEnum):
    BROWSE_CATALOG = "can_browse_catalog"
    VIEW_PRICING = "can_view_pricing"
    PLACE_ORDERS = "can_place_orders"
    VIEW_COMPANY_JOBS = "can_view_company_jobs"
    SEARCH_BY_JOB_NUMBER = "can_search_by_job_number"
    ACCESS_CART = "can_access_cart"
    MANAGE_COMPANY = "can_manage_company"
    MANAGE_CATALOG = "can_manage_catalog"


BROWSE_ONLY: frozenset[Capability] = frozenset({Capability.BROWSE_CATALOG})

ORDERING: frozenset[Capability] = BROWSE_ONLY | {
    Capability.PLACE_ORDERS,
    Capability.VIEW_COMPANY_JOBS,
    Capability.SEARCH_BY_JOB_NUMBER,
    Capability.ACCESS_CART,
}

MANAGING: frozenset[Capability] = ORDERING | {Capability.VIEW_PRICING}


# (role, access level) -> capabilities. Every role appears; tradies are split by level.
CAPABILITY_TABLE: dict[tuple[Role, AccessLevel], frozenset[Capability]] = {
    (Role.PROJECT_MANAGER, AccessLevel.PM): MANAGING | {Capability.MANAGE_COMPANY},
    (Role.SUPPLIER, AccessLevel.PM): MANAGING | {Capability.MANAGE_CATALOG},
    (Role.ADMIN, AccessLevel.PM): MANAGING | {Capability.MANAGE_CATALOG},
    (Role.TRADIE, AccessLevel.APPROVED): ORDERING,
    (Role.TRADIE, AccessLevel.LIMITED): BROWSE_ONLY,
    (Role.TRADIE, AccessLevel.INDEPENDENT): BROWSE_ONLY,
}

ACCESS_MESSAGES: dict[AccessLevel, str] = {
    AccessLevel.INDEPENDENT: "Join a company to access advanced features and place orders",
    AccessLevel.LIMITED: "Your company access has been limited to browse-only",
    AccessLevel.APPROVED: "You have full access to your company features",
    AccessLevel.PM: "You have project manager access to all company features",
}

DENIAL_REASONS: dict[AccessLevel, str] = {
    AccessLevel.INDEPENDENT: "Join a company to place orders",
    AccessLevel.LIMITED: "Your company access has been limited",
}


@dataclass(frozen=True)
class PermissionSet:
    access_level: AccessLevel
    can_browse_catalog: bool = False
    can_view_pricing: bool = False
    can_place_orders: bool = False
    can_view_company_jobs: bool = False
    can_search_by_job_number: bool = False
    can_access_cart: bool = False
    can_manage_company: bool = False
    can_manage_catalog: bool = False
    company_id: int | None = None

    @classmethod
    def anonymous(cls) -> PermissionSet:
        """Unauthenticated or unknown-role default: every capability off.

        The level reads ``independent`` because the payload always carries one
        of the four levels, but nothing grants access from the label alone.
        Every check goes through the capability flags, and the route guard
        denies a missing actor before permissions are consulted.
        """
        return cls(access_level=AccessLevel.INDEPENDENT)

    @classmethod
    def from_capabilities(
        cls,
        access_level: AccessLevel,
        capabilities: frozenset[Capability],
        company_id: int | None = None,
    ) -> PermissionSet:
        flags = {cap.value: cap in capabilities for cap in Capability}
        return cls(access_level=access_level, company_id=company_id, **flags)

    @property
    def capabilities(self) -> frozenset[Capability]:
        return frozenset(cap for cap in Capability if getattr(self, cap.value))

    def allows(self, capability: Capability) -> bool:
        return bool(getattr(self, capability.value))

    def to_dict(self) -> dict:
        data = asdict(self)
        data["access_level"] = self.access_level.value
        return data


def resolve_access_level(
    role: str | Role | None,
    company_id: int | None,
    is_approved: bool | None,
) -> AccessLevel | None:
    parsed = parse_role(role)
    if parsed is None:
        return None
    if parsed is not Role.TRADIE:
        return AccessLevel.PM
    if company_id is None:
        return AccessLevel.INDEPENDENT
    if is_approved is True:
        return AccessLevel.APPROVED
    return AccessLevel.LIMITED


def resolve_permissions(
    role: str | Role | None,
    company_id: int | None,
    is_approved: bool | None,
) -> PermissionSet:
    parsed = parse_role(role)
    level = resolve_access_level(parsed, company_id, is_approved)
    if parsed is None or level is None:
        return PermissionSet.anonymous()
    capabilities = CAPABILITY_TABLE[(parsed, level)]
    # Independent tradies have no company to report.
    visible_company = company_id if level is not AccessLevel.INDEPENDENT else None
    return PermissionSet.from_capabilities(level, capabilities, company_id=visible_company)


def permissions_for_actor(actor) -> PermissionSet:
    """Resolve for any object exposing ``role``, ``company_id`` and ``is_approved``."""
    if actor is None:
        return PermissionSet.anonymous()
    return resolve_permissions(
        getattr(actor, "role", None),
        getattr(actor, "company_id", None),
        getattr(actor, "is_approved", None),
    )


def access_message(level: AccessLevel | str | None) -> str:
    try:
        return ACCESS_MESSAGES[AccessLevel(level)]
    except ValueError:
        return "Loading access level..."


def denial_reason(level: AccessLevel | str | None) -> str:
    try:
        return DENIAL_REASONS.get(AccessLevel(level), "Insufficient permissions")
    except ValueError:
        return "Insufficient permissions"


def permission_set_from_dict(data: dict) -> PermissionSet:
    """Parse the ``/api/user/permissions`` payload; unknown keys are ignored."""
    fields = {cap.value: bool(data.get(cap.value, False)) for cap in Capability}
    return PermissionSet(
        access_level=AccessLevel(data.get("access_level", AccessLevel.INDEPENDENT)),
        company_id=data.get("company_id"),
        **fields,
    )
