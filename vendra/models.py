# SQLAlchemy ORM models for the marketplace tables (users, listings, seller applications,
# conversations/messages, blocks, reports, deletion requests and per-user dependent rows).
# Keep business logic out of models; state machines live in the domain helper modules.
from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import declarative_mixin

from .db import Base


@declarative_mixin
class TimestampMixin:
    """Common UTC-aware timestamps automatically managed by the database.

    - created_at: set on insert
    - updated_at: set on insert and updated on each modification
    """
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


class User(Base, TimestampMixin):
    """Marketplace account.

    Roles:
    - comprador: default buyer role
    - vendedor / agente: promoted through a seller application
    - empresa_constructora: construction company, may publish projects
    - admin: moderation and back-office access
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    email = Column(String(255), nullable=False, unique=True, index=True)
    password_hash = Column(String(255), nullable=False)
    name = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    role = Column(String(30), nullable=False, index=True, default="comprador")
    avatar_url = Column(String(1024), nullable=True)
    banner_url = Column(String(1024), nullable=True)
    bio = Column(Text, nullable=True)
    deletion_scheduled_at = Column(DateTime(timezone=True), nullable=True)


class SellerApplication(Base, TimestampMixin):
    """KYC application a buyer files to become a seller or agent.

    Status transitions:
    draft -> submitted -> approved
                     ├── rejected
                     └── needs_more_info -> submitted
    """
    __tablename__ = "seller_applications"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    role_choice = Column(String(30), nullable=False, default="vendedor_particular")
    status = Column(String(20), nullable=False, default="draft", index=True)

    full_name = Column(String(255), nullable=True)
    id_document_type = Column(String(20), nullable=True)
    id_document_number = Column(String(50), nullable=True)
    birth_date = Column(Date, nullable=True)
    nationality = Column(String(100), nullable=True)
    phone = Column(String(50), nullable=True)
    email = Column(String(255), nullable=True)
    address = Column(String(500), nullable=True)

    # agente_inmobiliario only
    company_name = Column(String(255), nullable=True)
    company_tax_id = Column(String(50), nullable=True)
    license_number = Column(String(100), nullable=True)
    job_title = Column(String(100), nullable=True)

    # vendedor_particular only
    owner_relation = Column(String(100), nullable=True)
    ownership_proof_url = Column(String(1024), nullable=True)

    doc_front_url = Column(String(1024), nullable=True)
    doc_back_url = Column(String(1024), nullable=True)
    selfie_url = Column(String(1024), nullable=True)

    terms_accepted = Column(Boolean, nullable=False, default=False)
    confirm_truth = Column(Boolean, nullable=False, default=False)

    submitted_at = Column(DateTime(timezone=True), nullable=True)
    reviewed_at = Column(DateTime(timezone=True), nullable=True)
    reviewer_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    review_notes = Column(Text, nullable=True)

    __table_args__ = (
        Index("ix_seller_applications_user_status", "user_id", "status"),
    )


class Property(Base, TimestampMixin):
    """Property listing published by a seller, agent or company."""
    __tablename__ = "properties"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    price_cents = Column(BigInteger, nullable=False)
    currency = Column(String(3), nullable=False, default="USD")
    property_type = Column(String(30), nullable=True)
    bedrooms = Column(Integer, nullable=True)
    bathrooms = Column(Integer, nullable=True)
    area_m2 = Column(Float, nullable=True)
    address = Column(String(500), nullable=True)
    city = Column(String(120), nullable=True, index=True)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    images = Column(JSON, nullable=False, default=list)
    status = Column(String(20), nullable=False, default="active")
    is_published = Column(Boolean, nullable=False, default=True, index=True)


class Project(Base, TimestampMixin):
    """Pre-construction development published by a construction company."""
    __tablename__ = "projects"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    address = Column(String(500), nullable=True)
    city = Column(String(120), nullable=True, index=True)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    price_from_cents = Column(BigInteger, nullable=True)
    currency = Column(String(3), nullable=False, default="USD")
    delivery_date = Column(Date, nullable=True)
    images = Column(JSON, nullable=False, default=list)
    plans = Column(JSON, nullable=False, default=list)
    status = Column(String(20), nullable=False, default="planning")
    is_published = Column(Boolean, nullable=False, default=True, index=True)
    views_count = Column(Integer, nullable=False, default=0)


class Conversation(Base, TimestampMixin):
    """Thread between two users, keyed by the unordered pair (user_a_id < user_b_id).

    case_status only gates user_to_admin support threads; user_to_user threads stay open.
    """
    __tablename__ = "conversations"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    user_a_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    user_b_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    conversation_type = Column(String(20), nullable=False, default="user_to_user")
    case_status = Column(String(10), nullable=False, default="open")
    closed_at = Column(DateTime(timezone=True), nullable=True)
    closed_by = Column(Integer, ForeignKey("users.id"), nullable=True)

    __table_args__ = (
        UniqueConstraint("user_a_id", "user_b_id", name="uq_conversations_pair"),
        CheckConstraint("user_a_id < user_b_id", name="ck_conversations_pair_order"),
    )


class Message(Base):
    """Chat message inside a conversation."""
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    conversation_id = Column(Integer, ForeignKey("conversations.id"), nullable=False, index=True)
    sender_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    recipient_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    content = Column(String(4000), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    read_at = Column(DateTime(timezone=True), nullable=True)

    # Timeline reads per conversation, and unread lookups per recipient
    __table_args__ = (
        Index("ix_messages_conversation_created_at", "conversation_id", "created_at"),
        Index("ix_messages_recipient_read_at", "recipient_id", "read_at"),
    )


class UserBlock(Base):
    """Directed block: blocker no longer exchanges messages with blocked (checked both ways)."""
    __tablename__ = "user_blocks"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    blocker_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    blocked_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint("blocker_id", "blocked_id", name="uq_user_blocks_pair"),
    )


class Report(Base, TimestampMixin):
    """User report against another user's conversation behaviour.

    Status transitions:
    pending -> reviewing -> resolved
           └──────────────┴─> dismissed

    'version' is bumped on each update and checked when the caller supplies expected_version.
    """
    __tablename__ = "conversation_reports"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    reporter_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    reported_user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    conversation_id = Column(Integer, ForeignKey("conversations.id"), nullable=True)
    reason = Column(String(30), nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String(20), nullable=False, default="pending", index=True)
    assigned_admin_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    resolution_notes = Column(Text, nullable=True)
    resolved_at = Column(DateTime(timezone=True), nullable=True)
    version = Column(Integer, nullable=False, default=1)


class AdminAccessLog(Base):
    """Audit trail of privileged reads and moderation actions.

    References are plain integers so the trail survives account deletion.
    """
    __tablename__ = "admin_access_logs"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    admin_id = Column(Integer, nullable=False, index=True)
    user_id = Column(Integer, nullable=True)
    report_id = Column(Integer, nullable=True)
    access_type = Column(String(50), nullable=False)
    access_reason = Column(Text, nullable=True)
    ip_address = Column(String(100), nullable=True)
    user_agent = Column(String(500), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class DeletionRequest(Base):
    """Account deletion request with a grace period.

    user_id is not a foreign key: completed requests outlive the user row.
    """
    __tablename__ = "deletion_requests"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    user_id = Column(Integer, nullable=False, index=True)
    user_email = Column(String(255), nullable=True)
    status = Column(String(20), nullable=False, default="pending", index=True)
    reason = Column(Text, nullable=True)
    requested_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    scheduled_completion_at = Column(DateTime(timezone=True), nullable=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    processed_by = Column(Integer, nullable=True)


class ContactSubmission(Base):
    """Message left through the public contact form."""
    __tablename__ = "contact_submissions"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False)
    subject = Column(String(255), nullable=True)
    message = Column(Text, nullable=False)
    status = Column(String(20), nullable=False, default="new")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class Favorite(Base):
    __tablename__ = "favorites"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    property_id = Column(Integer, ForeignKey("properties.id"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "property_id", name="uq_favorites_user_property"),
    )


class Review(Base):
    """Rating one user leaves on another user's profile."""
    __tablename__ = "reviews"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    reviewer_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    reviewed_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    rating = Column(Integer, nullable=False)
    comment = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint("reviewer_id", "reviewed_id", name="uq_reviews_pair"),
        CheckConstraint("rating >= 1 AND rating <= 5", name="ck_reviews_rating_range"),
    )


class PushSubscription(Base):
    __tablename__ = "push_subscriptions"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    endpoint = Column(String(1024), nullable=False, unique=True)
    p256dh = Column(String(255), nullable=True)
    auth = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
