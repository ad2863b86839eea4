from enum import StrEnum


class Role(StrEnum):
    TRADIE = "tradie"
    SUPPLIER = "supplier"
    ADMIN = "admin"
    PROJECT_MANAGER = "project_manager"


# Older registrations stored field workers as "contractor".
ROLE_ALIASES: dict[str, Role] = {
    "contractor": Role.TRADIE,
}


class PriceTier(StrEnum):
    T1 = "T1"
    T2 = "T2"
    T3 = "T3"


class InvitationStatus(StrEnum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


# Derived for pending rows past token_expiry; never written to the table.
STATUS_EXPIRED = "expired"


class NotificationType(StrEnum):
    INVITATION_RECEIVED = "invitation_received"
    INVITATION_ACCEPTED = "invitation_accepted"
    INVITATION_REJECTED = "invitation_rejected"
    INVITATION_CANCELLED = "invitation_cancelled"
    ACCESS_REMOVED = "access_removed"
    TRADIE_REMOVED_CONFIRMATION = "tradie_removed_confirmation"
    MEMBERSHIP_APPROVED = "membership_approved"
    GENERIC = "generic"


RELATED_INVITATION = "invitation"
RELATED_USER = "user"

SESSION_ACCESS = "access"
SESSION_REFRESH = "refresh"
