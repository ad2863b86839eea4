"""Error taxonomy shared by the API and the portal client.

Every error is an ``HTTPException`` so services can raise it directly and
FastAPI renders it. The ``detail`` payload is always a dict with a ``kind``
and a ``message`` plus optional context, which lets the portal rebuild the
typed error from a response with :func:`error_from_payload`.
"""

from __future__ import annotations

from typing import Any

from fastapi import HTTPException


class AccessError(HTTPException):
    status_code: int = 400
    kind: str = "AccessError"
    default_message: str = "Request could not be completed"

    def __init__(self, message: str | None = None, **context: Any) -> None:
        self.message = message or self.default_message
        self.context = context
        detail: dict[str, Any] = {"kind": self.kind, "message": self.message}
        detail.update(context)
        super().__init__(status_code=type(self).status_code, detail=detail)

    def __str__(self) -> str:
        return f"{self.kind}: {self.message}"


class NotFound(AccessError):
    status_code = 404
    kind = "NotFound"
    default_message = "Not found"


class Conflict(AccessError):
    status_code = 409
    kind = "Conflict"
    default_message = "Resource already exists"


# --- Authentication ---
class AuthenticationError(AccessError):
    status_code = 401
    kind = "AuthenticationError"
    default_message = "Authentication required"


class Unauthenticated(AuthenticationError):
    kind = "Unauthenticated"
    default_message = "Authentication required"


class SessionExpired(AuthenticationError):
    kind = "SessionExpired"
    default_message = "Your session has expired. Please log in again."


# --- Authorization ---
class AuthorizationError(AccessError):
    status_code = 403
    kind = "AuthorizationError"
    default_message = "Insufficient permissions"


class RoleMismatch(AuthorizationError):
    kind = "RoleMismatch"
    default_message = "Your role cannot access this resource"


class ApprovalRequired(AuthorizationError):
    kind = "ApprovalRequired"
    default_message = "Company membership and approval required"


class CompanyAccessDenied(AuthorizationError):
    kind = "CompanyAccessDenied"
    default_message = "Company access required"


class CompanyRequired(AuthorizationError):
    kind = "CompanyRequired"
    default_message = "Project manager must be associated with a company"


class InvitationEmailMismatch(AuthorizationError):
    kind = "InvitationEmailMismatch"
    default_message = "Invitation email does not match current account"


# --- Invitation state ---
class InvitationError(AccessError):
    status_code = 400
    kind = "InvitationError"
    default_message = "Invitation could not be processed"


class TokenNotFound(InvitationError):
    status_code = 404
    kind = "TokenNotFound"
    default_message = "Invalid invitation"


class InvitationNotFound(InvitationError):
    status_code = 404
    kind = "InvitationNotFound"
    default_message = "Invitation not found"


class TokenExpired(InvitationError):
    status_code = 410
    kind = "TokenExpired"
    default_message = "Invitation has expired"


class InvalidState(InvitationError):
    status_code = 409
    kind = "InvalidState"
    default_message = "Invitation is no longer pending"


class DuplicateActiveInvitation(InvitationError):
    status_code = 409
    kind = "DuplicateActiveInvitation"
    default_message = "A pending invitation already exists for this email"


class AlreadyCompanyMember(InvitationError):
    status_code = 409
    kind = "AlreadyCompanyMember"
    default_message = "User is already an approved member of your company"


class InvitationRateLimited(InvitationError):
    status_code = 429
    kind = "InvitationRateLimited"
    default_message = "Daily invitation limit exceeded"


# --- Transient ---
class TransientError(AccessError):
    status_code = 503
    kind = "TransientError"
    default_message = "Service temporarily unavailable. Please retry."


def _collect(cls: type[AccessError]) -> dict[str, type[AccessError]]:
    kinds = {cls.kind: cls}
    for sub in cls.__subclasses__():
        kinds.update(_collect(sub))
    return kinds


ERROR_KINDS: dict[str, type[AccessError]] = _collect(AccessError)


def error_from_payload(status_code: int, detail: Any) -> AccessError:
    """Rebuild a typed error from a response status and its ``detail`` body."""
    if isinstance(detail, dict):
        kind = detail.get("kind")
        message = detail.get("message")
        context = {k: v for k, v in detail.items() if k not in ("kind", "message")}
    else:
        kind = None
        message = detail if isinstance(detail, str) else None
        context = {}

    cls = ERROR_KINDS.get(kind or "")
    if cls is None:
        if status_code == 401:
            cls = Unauthenticated
        elif status_code == 403:
            cls = AuthorizationError
        elif status_code >= 500:
            cls = TransientError
        else:
            cls = AccessError
    err = cls(message, **context)
    # keep the status the server actually sent for generic kinds
    err.status_code = status_code if cls in (AccessError, AuthorizationError) else cls.status_code
    return err
