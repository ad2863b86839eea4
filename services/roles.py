from __future__ import annotations

from enum import StrEnum

from models.enums import ROLE_ALIASES, Role


class Surface(StrEnum):
    MOBILE = "mobile"
    SUPPLIER = "supplier"
    PM = "pm"


ROLE_SURFACE: dict[Role, Surface] = {
    Role.TRADIE: Surface.MOBILE,
    Role.SUPPLIER: Surface.SUPPLIER,
    Role.ADMIN: Surface.SUPPLIER,
    Role.PROJECT_MANAGER: Surface.PM,
}

SURFACE_HOME: dict[Surface, str] = {
    Surface.MOBILE: "/mobile",
    Surface.SUPPLIER: "/supplier/dashboard",
    Surface.PM: "/pm/dashboard",
}

SELF_REGISTER_ROLES: frozenset[Role] = frozenset({Role.TRADIE, Role.PROJECT_MANAGER})


def parse_role(value: str | Role | None) -> Role | None:
    if value is None:
        return None
    if isinstance(value, Role):
        return value
    key = value.strip().lower()
    if key in ROLE_ALIASES:
        return ROLE_ALIASES[key]
    try:
        return Role(key)
    except ValueError:
        return None


def home_path_for(role: str | Role | None) -> str:
    parsed = parse_role(role)
    if parsed is None:
        return "/login"
    return SURFACE_HOME[ROLE_SURFACE[parsed]]
