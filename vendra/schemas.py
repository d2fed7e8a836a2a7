# Pydantic models (request/response DTOs) used by the API layer.
# Keep models minimal and serializable; business logic lives in the domain modules.
from pydantic import BaseModel, Field, ConfigDict, field_validator, EmailStr
from typing import Literal, Optional, List, Dict
from datetime import date, datetime


# Authentication and user models

# User roles within the system
Role = Literal["comprador", "vendedor", "agente", "empresa_constructora", "admin"]
# Roles a visitor may pick at signup (admins are provisioned, never self-assigned)
SignupRole = Literal["comprador", "empresa_constructora"]


# Common user fields shared by create/read
class UserBase(BaseModel):
    email: EmailStr
    role: Role

    # Normalize email input to lowercase without surrounding whitespace
    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        if isinstance(v, str):
            v = v.strip().lower()
        return v


# Request payload for user registration
class UserCreate(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=8)
    name: Optional[str] = Field(None, max_length=255)
    role: SignupRole = "comprador"

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        if isinstance(v, str):
            v = v.strip().lower()
        return v


# API response for a user record (private view)
class UserRead(UserBase):
    id: int
    name: Optional[str] = None
    phone: Optional[str] = None
    avatar_url: Optional[str] = None
    banner_url: Optional[str] = None
    bio: Optional[str] = None
    deletion_scheduled_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


# Request payload for logging in
class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=8)

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        if isinstance(v, str):
            v = v.strip().lower()
        return v


# OAuth2-style token response bundled with the current user profile
class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserRead


# Profiles
class ProfileUpdate(BaseModel):
    name: Optional[str] = Field(None, max_length=255)
    phone: Optional[str] = Field(None, max_length=50)
    bio: Optional[str] = Field(None, max_length=2000)

    @field_validator("name", "phone", "bio", mode="before")
    @classmethod
    def strip_fields(cls, v):
        if isinstance(v, str):
            v = v.strip()
        return v


# Public projection of a user: no email, no deletion state
class UserPublic(BaseModel):
    id: int
    name: Optional[str] = None
    role: Role
    avatar_url: Optional[str] = None
    banner_url: Optional[str] = None
    bio: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class ReviewCreate(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=2000)


class ReviewRead(BaseModel):
    id: int
    reviewer_id: int
    reviewed_id: int
    rating: int
    comment: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PushSubscriptionCreate(BaseModel):
    endpoint: str = Field(..., min_length=1, max_length=1024)
    p256dh: Optional[str] = Field(None, max_length=255)
    auth: Optional[str] = Field(None, max_length=255)


# Listings
PropertyStatus = Literal["active", "sold", "rented", "inactive"]
ProjectStatus = Literal["planning", "construction", "completed"]


# Base attributes for a property listing (shared by create/read)
class PropertyBase(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    price_cents: int = Field(..., ge=0)
    currency: Literal["USD", "DOP"] = "USD"
    property_type: Optional[str] = Field(None, max_length=30)
    bedrooms: Optional[int] = Field(None, ge=0)
    bathrooms: Optional[int] = Field(None, ge=0)
    area_m2: Optional[float] = Field(None, ge=0)
    address: Optional[str] = Field(None, max_length=500)
    city: Optional[str] = Field(None, max_length=120)
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    is_published: bool = True

    @field_validator("title", mode="before")
    @classmethod
    def strip_title(cls, v: str) -> str:
        # Trim surrounding whitespace before validation
        if isinstance(v, str):
            v = v.strip()
        return v


# Payload for creating a new property
class PropertyCreate(PropertyBase):
    images: List[str] = Field(default_factory=list)


class PropertyUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    price_cents: Optional[int] = Field(None, ge=0)
    status: Optional[PropertyStatus] = None
    is_published: Optional[bool] = None
    address: Optional[str] = Field(None, max_length=500)
    city: Optional[str] = Field(None, max_length=120)
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)

    @field_validator("title", mode="before")
    @classmethod
    def strip_title(cls, v):
        if isinstance(v, str):
            v = v.strip()
        return v


# Response shape when reading a property from the API
class PropertyRead(PropertyBase):
    id: int
    owner_id: int
    images: List[str] = Field(default_factory=list)
    status: PropertyStatus
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ProjectBase(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    address: Optional[str] = Field(None, max_length=500)
    city: Optional[str] = Field(None, max_length=120)
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    price_from_cents: Optional[int] = Field(None, ge=0)
    currency: Literal["USD", "DOP"] = "USD"
    delivery_date: Optional[date] = None
    status: ProjectStatus = "planning"
    is_published: bool = True

    @field_validator("title", mode="before")
    @classmethod
    def strip_title(cls, v):
        if isinstance(v, str):
            v = v.strip()
        return v


class ProjectCreate(ProjectBase):
    pass


class ProjectUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    price_from_cents: Optional[int] = Field(None, ge=0)
    delivery_date: Optional[date] = None
    status: Optional[ProjectStatus] = None
    is_published: Optional[bool] = None


class ProjectRead(ProjectBase):
    id: int
    owner_id: int
    images: List[str] = Field(default_factory=list)
    plans: List[str] = Field(default_factory=list)
    views_count: int
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ProjectViews(BaseModel):
    project_id: int
    views_count: int


class PublicProfile(BaseModel):
    user: UserPublic
    properties: List[PropertyRead]
    projects: List[ProjectRead]
    rating_average: Optional[float] = None
    rating_count: int = 0


class FavoriteRead(BaseModel):
    property_id: int
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# Seller applications
ApplicationStatus = Literal["draft", "submitted", "needs_more_info", "approved", "rejected"]
RoleChoice = Literal["vendedor_particular", "agente_inmobiliario", "empresa_constructora"]
DocumentKind = Literal["front", "back", "selfie", "ownership_proof"]


class SellerApplicationPayload(BaseModel):
    role_choice: RoleChoice = "vendedor_particular"
    full_name: Optional[str] = Field(None, max_length=255)
    id_document_type: Optional[Literal["cedula", "pasaporte"]] = None
    id_document_number: Optional[str] = Field(None, max_length=50)
    birth_date: Optional[date] = None
    nationality: Optional[str] = Field(None, max_length=100)
    phone: Optional[str] = Field(None, max_length=50)
    email: Optional[EmailStr] = None
    address: Optional[str] = Field(None, max_length=500)
    company_name: Optional[str] = Field(None, max_length=255)
    company_tax_id: Optional[str] = Field(None, max_length=50)
    license_number: Optional[str] = Field(None, max_length=100)
    job_title: Optional[str] = Field(None, max_length=100)
    owner_relation: Optional[str] = Field(None, max_length=100)
    ownership_proof_url: Optional[str] = Field(None, max_length=1024)
    doc_front_url: Optional[str] = Field(None, max_length=1024)
    doc_back_url: Optional[str] = Field(None, max_length=1024)
    selfie_url: Optional[str] = Field(None, max_length=1024)
    terms_accepted: bool = False
    confirm_truth: bool = False

    # Blank form fields arrive as "" from the client; store them as NULL
    @field_validator("*", mode="before")
    @classmethod
    def blank_to_none(cls, v):
        if isinstance(v, str):
            v = v.strip()
            if not v:
                return None
        return v


class SellerApplicationRead(SellerApplicationPayload):
    id: int
    user_id: int
    status: ApplicationStatus
    email: Optional[str] = None
    submitted_at: Optional[datetime] = None
    reviewed_at: Optional[datetime] = None
    review_notes: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class SellerApplicationSubmitResponse(BaseModel):
    application: SellerApplicationRead
    user: UserRead


class ListingEligibility(BaseModel):
    eligible: bool
    pending_review: bool = False
    reason: str
    redirect: Optional[str] = None


class ApplicationReview(BaseModel):
    status: Literal["approved", "rejected", "needs_more_info"]
    review_notes: Optional[str] = Field(None, max_length=2000)


class AdminApplicationRead(SellerApplicationRead):
    applicant: Optional[UserPublic] = None
    applicant_email: Optional[str] = None


class AdminApplicationList(BaseModel):
    applications: List[AdminApplicationRead]
    total: int


# Messages
ConversationType = Literal["user_to_user", "user_to_admin"]
CaseStatus = Literal["open", "closed"]


# API response for a chat message
class MessageRead(BaseModel):
    id: int
    conversation_id: int
    sender_id: int
    recipient_id: int
    content: str
    created_at: datetime
    read_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


# Request payload for sending a message
class MessageCreate(BaseModel):
    recipient_id: int = Field(..., ge=1)
    content: str = Field(..., min_length=1, max_length=4000)

    # Trim surrounding whitespace before validation
    @field_validator("content", mode="before")
    @classmethod
    def normalize_content(cls, v: str) -> str:
        if isinstance(v, str):
            v = v.strip()
        return v


class SupportMessageCreate(BaseModel):
    content: str = Field(..., min_length=1, max_length=4000)

    @field_validator("content", mode="before")
    @classmethod
    def normalize_content(cls, v: str) -> str:
        if isinstance(v, str):
            v = v.strip()
        return v


class ConversationSummary(BaseModel):
    id: int
    other_user: UserPublic
    conversation_type: ConversationType
    case_status: CaseStatus
    last_message: Optional[MessageRead] = None
    unread_count: int = 0


class ConversationStatus(BaseModel):
    conversation_id: Optional[int] = None
    is_closed: bool
    message: str


class MarkReadResponse(BaseModel):
    updated: int


class UnreadCount(BaseModel):
    unread: int


# Blocks
class BlockStatus(BaseModel):
    i_blocked_them: bool
    they_blocked_me: bool
    any_block: bool


class BlockedUser(BaseModel):
    blocked_id: int
    blocked_name: Optional[str] = None
    blocked_avatar: Optional[str] = None
    blocked_at: datetime


# Reports
ReportReason = Literal["harassment", "spam", "fraud", "fake_listing", "inappropriate", "impersonation", "other"]
ReportStatus = Literal["pending", "reviewing", "resolved", "dismissed"]


class ReportCreate(BaseModel):
    reported_user_id: int = Field(..., ge=1)
    reason: ReportReason
    description: Optional[str] = Field(None, max_length=2000)


class ReportRead(BaseModel):
    id: int
    reporter_id: int
    reported_user_id: int
    conversation_id: Optional[int] = None
    reason: ReportReason
    description: Optional[str] = None
    status: ReportStatus
    assigned_admin_id: Optional[int] = None
    resolution_notes: Optional[str] = None
    resolved_at: Optional[datetime] = None
    version: int
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ReportUpdate(BaseModel):
    status: Optional[ReportStatus] = None
    resolution_notes: Optional[str] = Field(None, max_length=4000)
    assign_to_me: bool = False
    expected_version: Optional[int] = Field(None, ge=1)


class ReportEscalate(BaseModel):
    user_id: int = Field(..., ge=1)
    reported_user_id: int = Field(..., ge=1)
    reason: ReportReason
    description: Optional[str] = Field(None, max_length=2000)


class UserBrief(BaseModel):
    id: int
    name: Optional[str] = None
    email: Optional[str] = None


class ReportDetail(ReportRead):
    reporter: UserBrief
    reported_user: UserBrief
    last_message_preview: Optional[str] = None


class ReportCounts(BaseModel):
    pending_count: int = 0
    reviewing_count: int = 0
    resolved_count: int = 0
    dismissed_count: int = 0
    total_count: int = 0


class ReportList(BaseModel):
    reports: List[ReportDetail]
    counts: ReportCounts


class AdminConversation(BaseModel):
    conversation_id: Optional[int] = None
    participants: List[UserBrief]
    messages: List[MessageRead]


# Support cases
class SupportThread(BaseModel):
    conversation_id: int
    user: UserBrief
    case_status: CaseStatus
    last_message: Optional[MessageRead] = None
    unread_count: int = 0


class CaseActionResponse(BaseModel):
    conversation_id: int
    case_status: CaseStatus


# Account deletion
DeletionStatus = Literal["pending", "rejected", "completed"]


class DeletionRequestCreate(BaseModel):
    reason: Optional[str] = Field(None, max_length=2000)
    confirmation: str

    # The client must type the confirmation word; anything else is a validation error
    @field_validator("confirmation")
    @classmethod
    def check_confirmation(cls, v: str) -> str:
        if v.strip().upper() != "ELIMINAR":
            raise ValueError("confirmation text must be ELIMINAR")
        return v


class DeletionRequestRead(BaseModel):
    id: int
    user_id: int
    user_email: Optional[str] = None
    status: DeletionStatus
    reason: Optional[str] = None
    requested_at: datetime
    scheduled_completion_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class DeletionCascadeResult(BaseModel):
    request: DeletionRequestRead
    deleted: Dict[str, int]


# Admin tables
class AdminUserRead(UserRead):
    created_at: datetime


class AdminUserList(BaseModel):
    users: List[AdminUserRead]
    total: int


class RoleUpdate(BaseModel):
    role: Role


class ContactCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    email: EmailStr
    subject: Optional[str] = Field(None, max_length=255)
    message: str = Field(..., min_length=1, max_length=5000)


class ContactRead(BaseModel):
    id: int
    name: str
    email: str
    subject: Optional[str] = None
    message: str
    status: Literal["new", "read", "archived"]
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ContactUpdate(BaseModel):
    status: Literal["new", "read", "archived"]


class AdminStats(BaseModel):
    users_by_role: Dict[str, int]
    properties: int
    projects: int
    pending_applications: int
    open_reports: int
    open_cases: int
    pending_deletions: int


class AdminAccessLogRead(BaseModel):
    id: int
    admin_id: int
    user_id: Optional[int] = None
    report_id: Optional[int] = None
    access_type: str
    access_reason: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
