from datetime import datetime

from pydantic import BaseModel, Field


# --- Identity ---
class UserOut(BaseModel):
    id: int
    full_name: str
    email: str
    phone: str | None = None
    role: str
    company_id: int | None = None
    is_approved: bool
    email_verified: bool
    is_active: bool
    approval_date: datetime | None = None
    created_at: datetime | None = None

    model_config = {"from_attributes": True}


class CompanyOut(BaseModel):
    id: int
    name: str
    price_tier: str
    address: str | None = None
    phone: str | None = None
    email: str | None = None
    created_at: datetime | None = None

    model_config = {"from_attributes": True}


class CompanyPricingOut(BaseModel):
    company_id: int
    price_tier: str


class PermissionsOut(BaseModel):
    access_level: str
    can_browse_catalog: bool = False
    can_view_pricing: bool = False
    can_place_orders: bool = False
    can_view_company_jobs: bool = False
    can_search_by_job_number: bool = False
    can_access_cart: bool = False
    can_manage_company: bool = False
    can_manage_catalog: bool = False
    company_id: int | None = None
    message: str | None = None


# --- Auth ---
class AuthSessionOut(BaseModel):
    user: UserOut
    permissions: PermissionsOut
    home_path: str
    access_token: str | None = None
    access_expires_at: datetime | None = None


class AuthSignupIn(BaseModel):
    full_name: str = Field(min_length=1, max_length=255)
    email: str = Field(min_length=3, max_length=255)
    password: str
    phone: str | None = None
    role: str = "tradie"
    company_name: str | None = None
    invitation_token: str | None = None


class AuthSignupOut(BaseModel):
    user: UserOut
    verification_required: bool
    verification_link: str | None = None
    session: AuthSessionOut | None = None


class AuthLoginIn(BaseModel):
    email: str
    password: str


class EmailVerifyIn(BaseModel):
    token: str


# --- Invitations ---
class InvitationCreate(BaseModel):
    email: str = Field(min_length=3, max_length=255)
    phone: str | None = None
    personal_message: str | None = Field(default=None, max_length=2000)


class InvitationOut(BaseModel):
    id: int
    project_manager_id: int
    tradie_id: int | None = None
    email: str
    phone: str | None = None
    personal_message: str | None = None
    status: str
    effective_status: str
    is_expired: bool
    token_expiry: datetime
    response_date: datetime | None = None
    created_at: datetime | None = None
    invite_link: str | None = None


class InvitationTokenIn(BaseModel):
    token: str


class InvitationVerifyOut(BaseModel):
    id: int
    email: str
    status: str
    is_expired: bool
    token_expiry: datetime
    company_name: str | None = None
    project_manager_name: str | None = None


class InvitationAcceptOut(BaseModel):
    invitation: InvitationOut
    user: UserOut
    permissions: PermissionsOut


# --- Membership ---
class MembershipRevokeIn(BaseModel):
    reason: str | None = Field(default=None, max_length=500)


class MemberOut(BaseModel):
    user: UserOut
    access_level: str


# --- Notifications ---
class AppNotificationOut(BaseModel):
    id: int
    user_id: int
    notif_type: str
    title: str
    message: str
    related_id: int | None = None
    related_type: str | None = None
    is_read: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class NotificationPageOut(BaseModel):
    notifications: list[AppNotificationOut]
    total: int
    page: int
    total_pages: int
    has_more: bool


class UnreadCountOut(BaseModel):
    count: int


# --- Guard ---
class NoticeOut(BaseModel):
    title: str
    message: str
    severity: str
    kind: str | None = None


class GuardDecisionOut(BaseModel):
    status: str
    path: str
    redirect_to: str | None = None
    reason: str | None = None
    notice: NoticeOut | None = None
