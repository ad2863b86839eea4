"""Route guard shared by the API and the portal.

``evaluate_route`` is a pure function: it never raises and never performs
I/O. It is safe to re-run on mount, navigation, window refocus and on a
timer; the same inputs always give the same decision.
"""

from __future__ import annotations

import posixpath
import re
from dataclasses import dataclass
from enum import StrEnum

from models.enums import Role
from services.permission_registry import AccessLevel, PermissionSet, permissions_for_actor
from services.roles import ROLE_SURFACE, SURFACE_HOME, Surface, parse_role

LOGIN_PATH = "/login"
PENDING_APPROVAL_PATH = "/pending-approval"

PUBLIC_PATHS: tuple[str, ...] = (
    LOGIN_PATH,
    "/register",
    "/auth",
    "/tradie-register",
    "/tradie-registration-success",
    "/verify-email",
    "/invitations/verify",
)

SURFACE_PREFIXES: dict[str, Surface] = {
    "/supplier": Surface.SUPPLIER,
    "/pm": Surface.PM,
}

# (path, match_prefix) pairs an unapproved tradie may still open.
UNAPPROVED_ALLOWED: tuple[tuple[str, bool], ...] = (
    ("/", False),
    ("/mobile", False),
    ("/account", True),
    ("/parts", True),
    ("/search", True),
    ("/notifications", True),
    (PENDING_APPROVAL_PATH, True),
)

_SLASHES = re.compile(r"/{2,}")


class GuardStatus(StrEnum):
    PENDING = "pending"
    ALLOWED = "allowed"
    DENIED = "denied"


class NoticeSeverity(StrEnum):
    INFO = "info"
    WARNING = "warning"
    DESTRUCTIVE = "destructive"


@dataclass(frozen=True)
class Notice:
    title: str
    message: str
    severity: NoticeSeverity = NoticeSeverity.DESTRUCTIVE
    kind: str | None = None


@dataclass(frozen=True)
class GuardDecision:
    status: GuardStatus
    path: str
    redirect_to: str | None = None
    notice: Notice | None = None
    reason: str | None = None

    @property
    def allowed(self) -> bool:
        return self.status is GuardStatus.ALLOWED

    @property
    def denied(self) -> bool:
        return self.status is GuardStatus.DENIED

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "path": self.path,
            "redirect_to": self.redirect_to,
            "reason": self.reason,
            "notice": (
                {
                    "title": self.notice.title,
                    "message": self.notice.message,
                    "severity": self.notice.severity.value,
                    "kind": self.notice.kind,
                }
                if self.notice
                else None
            ),
        }


AUTH_REQUIRED_NOTICE = Notice(
    title="Authentication Required",
    message="Your session has expired or you're not logged in. Please login to continue.",
    kind="Unauthenticated",
)
SESSION_ENDED_NOTICE = Notice(
    title="Session Ended",
    message="Your session has ended. Please log in again to continue.",
    kind="Unauthenticated",
)
ACCESS_DENIED_NOTICE = Notice(
    title="Access Denied",
    message="You don't have permission to access this page.",
    kind="RoleMismatch",
)
LIMITED_ACCESS_NOTICE = Notice(
    title="Limited Access",
    message="You need to accept a Project Manager invitation to access this feature.",
    kind="ApprovalRequired",
)
LIMITED_MEMBERSHIP_NOTICE = Notice(
    title="Approval Pending",
    message="Your company access is pending approval from your Project Manager.",
    kind="ApprovalRequired",
)


def normalize_path(path: str | None) -> str:
    if not path:
        return "/"
    path = path.split("#", 1)[0].split("?", 1)[0].strip()
    if not path.startswith("/"):
        path = "/" + path
    path = _SLASHES.sub("/", path)
    # Resolve dot segments so "/parts/../cart" is judged as "/cart".
    return posixpath.normpath(path)


def _matches(path: str, base: str, prefix: bool) -> bool:
    if path == base:
        return True
    return prefix and path.startswith(base + "/")


def surface_for_path(path: str) -> Surface | None:
    """Surface owning ``path``; ``None`` for public pages."""
    path = normalize_path(path)
    if any(_matches(path, public, True) for public in PUBLIC_PATHS):
        return None
    for prefix, surface in SURFACE_PREFIXES.items():
        if _matches(path, prefix, True):
            return surface
    return Surface.MOBILE


def is_unapproved_allowed(path: str) -> bool:
    path = normalize_path(path)
    return any(_matches(path, base, prefix) for base, prefix in UNAPPROVED_ALLOWED)


def _deny(path: str, redirect_to: str, notice: Notice) -> GuardDecision:
    return GuardDecision(
        status=GuardStatus.DENIED,
        path=path,
        redirect_to=redirect_to,
        notice=notice,
        reason=notice.kind,
    )


def evaluate_route(
    actor,
    path: str,
    *,
    resolved: bool = True,
    permissions: PermissionSet | None = None,
    just_logged_out: bool = False,
) -> GuardDecision:
    """Decide allow / deny / pending for ``actor`` opening ``path``.

    ``actor`` is anything with ``role``, ``company_id`` and ``is_approved``
    (ORM user, ``UserOut``) or ``None`` when unauthenticated. ``resolved``
    must stay False until the first actor fetch finished, so protected
    content is never rendered optimistically. When the server's
    ``permissions`` are known they win over the local resolver.
    """
    path = normalize_path(path)
    if not resolved:
        return GuardDecision(status=GuardStatus.PENDING, path=path)

    surface = surface_for_path(path)
    if surface is None:
        return GuardDecision(status=GuardStatus.ALLOWED, path=path)

    if actor is None:
        notice = SESSION_ENDED_NOTICE if just_logged_out else AUTH_REQUIRED_NOTICE
        return _deny(path, LOGIN_PATH, notice)

    role = parse_role(getattr(actor, "role", None))
    if role is None:
        return _deny(path, LOGIN_PATH, ACCESS_DENIED_NOTICE)

    role_surface = ROLE_SURFACE[role]
    if role_surface is not surface:
        return _deny(path, SURFACE_HOME[role_surface], ACCESS_DENIED_NOTICE)

    if role is Role.TRADIE:
        perms = permissions or permissions_for_actor(actor)
        if perms.access_level in (AccessLevel.LIMITED, AccessLevel.INDEPENDENT):
            if not is_unapproved_allowed(path):
                notice = (
                    LIMITED_MEMBERSHIP_NOTICE
                    if perms.access_level is AccessLevel.LIMITED
                    else LIMITED_ACCESS_NOTICE
                )
                return _deny(path, SURFACE_HOME[Surface.MOBILE], notice)

    return GuardDecision(status=GuardStatus.ALLOWED, path=path)
