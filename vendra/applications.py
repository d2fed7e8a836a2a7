# Seller application lifecycle (draft -> submitted -> approved/rejected/needs_more_info)
# and the listing-eligibility gate that depends on it.
from __future__ import annotations

import logging
import os
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Tuple

from sqlalchemy.orm import Session

from . import models

logger = logging.getLogger("vendra.applications")

# Role granted for each application role_choice
ROLE_FOR_CHOICE: Dict[str, str] = {
    "vendedor_particular": "vendedor",
    "agente_inmobiliario": "agente",
    "empresa_constructora": "empresa_constructora",
}

APPLICATION_TRANSITIONS: Dict[str, frozenset] = {
    "draft": frozenset({"submitted"}),
    "submitted": frozenset({"approved", "rejected", "needs_more_info"}),
    "needs_more_info": frozenset({"submitted"}),
    "approved": frozenset(),
    "rejected": frozenset(),
}
ACTIVE_STATUSES = ("draft", "submitted", "needs_more_info")
EDITABLE_STATUSES = ("draft", "needs_more_info")

# Fields that only apply to one role_choice; cleared for the other
AGENT_FIELDS = ("company_name", "company_tax_id", "license_number", "job_title")
OWNER_FIELDS = ("owner_relation", "ownership_proof_url")

# Applications created this recently count toward eligibility regardless of status
RECENT_MINUTES = int(os.getenv("APPLICATION_RECENT_MINUTES", "10"))


class ApplicationConflict(Exception):
    """The requested change does not fit the application's current state."""


class ApplicationIncomplete(Exception):
    """Submission is missing a required confirmation or field."""


def can_transition(current: str, target: str) -> bool:
    return target in APPLICATION_TRANSITIONS.get(current, frozenset())


def active_application(db: Session, user_id: int) -> Optional[models.SellerApplication]:
    """Most recent non-terminal application of the user."""
    return (
        db.query(models.SellerApplication)
        .filter(
            models.SellerApplication.user_id == user_id,
            models.SellerApplication.status.in_(ACTIVE_STATUSES),
        )
        .order_by(models.SellerApplication.created_at.desc(), models.SellerApplication.id.desc())
        .first()
    )


def _has_approved(db: Session, user_id: int) -> bool:
    row = (
        db.query(models.SellerApplication.id)
        .filter(models.SellerApplication.user_id == user_id, models.SellerApplication.status == "approved")
        .first()
    )
    return row is not None


def _apply_fields(app: models.SellerApplication, data: Dict[str, Any]) -> None:
    for key, value in data.items():
        setattr(app, key, value)
    # Only the data relevant to the chosen role is kept
    cleared = OWNER_FIELDS if app.role_choice == "agente_inmobiliario" else AGENT_FIELDS
    for key in cleared:
        setattr(app, key, None)


def _editable_application(db: Session, user: models.User) -> Optional[models.SellerApplication]:
    app = active_application(db, user.id)
    if app is not None and app.status not in EDITABLE_STATUSES:
        raise ApplicationConflict(f"Application is {app.status} and cannot be edited")
    if app is None and _has_approved(db, user.id):
        raise ApplicationConflict("Seller application already approved")
    return app


def save_draft(db: Session, user: models.User, data: Dict[str, Any]) -> models.SellerApplication:
    """
    Upsert the user's editable application without changing its status.

    The row is created lazily as a draft; a needs_more_info application stays
    needs_more_info until resubmitted. The caller commits.
    """
    app = _editable_application(db, user)
    if app is None:
        app = models.SellerApplication(user_id=user.id, status="draft", role_choice="vendedor_particular")
        db.add(app)
    _apply_fields(app, data)
    db.flush()
    return app


def submit(db: Session, user: models.User, data: Dict[str, Any]) -> Tuple[models.SellerApplication, bool]:
    """
    Submit the user's application and promote a buyer to the chosen seller role.

    Both writes are staged in the caller's transaction and committed together.
    Returns (application, role_promoted).
    """
    if not data.get("terms_accepted") or not data.get("confirm_truth"):
        raise ApplicationIncomplete("Terms must be accepted and the information confirmed as truthful")

    app = _editable_application(db, user)
    if app is None:
        app = models.SellerApplication(user_id=user.id, status="draft", role_choice="vendedor_particular")
        db.add(app)
    _apply_fields(app, data)

    if not can_transition(app.status, "submitted"):
        raise ApplicationConflict(f"Cannot submit an application in status {app.status}")
    app.status = "submitted"
    app.submitted_at = datetime.now(timezone.utc)

    promoted = False
    new_role = ROLE_FOR_CHOICE[app.role_choice]
    if user.role == "comprador":
        user.role = new_role
        db.add(user)
        promoted = True
    db.flush()
    logger.info(
        "application.submitted",
        extra={"application_id": app.id, "user_id": user.id, "role_promoted": promoted, "role": user.role},
    )
    return app, promoted


def review(
    db: Session,
    app: models.SellerApplication,
    reviewer: models.User,
    status: str,
    review_notes: Optional[str] = None,
) -> models.SellerApplication:
    """Admin decision on a submitted application; approval also grants the seller role."""
    if not can_transition(app.status, status):
        raise ApplicationConflict(f"Cannot move application from {app.status} to {status}")
    app.status = status
    app.reviewed_at = datetime.now(timezone.utc)
    app.reviewer_id = reviewer.id
    if review_notes is not None:
        app.review_notes = review_notes

    if status == "approved":
        applicant = db.get(models.User, app.user_id)
        if applicant is not None and applicant.role == "comprador":
            applicant.role = ROLE_FOR_CHOICE[app.role_choice]
            db.add(applicant)
    db.add(app)
    db.flush()
    logger.info(
        "application.reviewed",
        extra={"application_id": app.id, "reviewer_id": reviewer.id, "status": status},
    )
    return app


def listing_eligibility(db: Session, user: models.User) -> Dict[str, Any]:
    """
    Whether the user may publish a property listing.

    Construction companies and admins always may. Others need an approved or
    submitted application; an application created in the last RECENT_MINUTES
    also counts, flagged as pending review.
    """
    if user.role in ("empresa_constructora", "admin"):
        return {"eligible": True, "pending_review": False, "reason": "role", "redirect": None}

    app = (
        db.query(models.SellerApplication)
        .filter(
            models.SellerApplication.user_id == user.id,
            models.SellerApplication.status.in_(("approved", "submitted")),
        )
        .order_by(models.SellerApplication.created_at.desc(), models.SellerApplication.id.desc())
        .first()
    )
    if app is not None:
        pending = app.status == "submitted"
        return {
            "eligible": True,
            "pending_review": pending,
            "reason": "application_submitted" if pending else "application_approved",
            "redirect": None,
        }

    cutoff = datetime.now(timezone.utc) - timedelta(minutes=RECENT_MINUTES)
    recent = (
        db.query(models.SellerApplication.id)
        .filter(
            models.SellerApplication.user_id == user.id,
            models.SellerApplication.status != "rejected",
            models.SellerApplication.created_at >= cutoff,
        )
        .first()
    )
    if recent is not None:
        return {"eligible": True, "pending_review": True, "reason": "application_recent", "redirect": None}

    return {
        "eligible": False,
        "pending_review": False,
        "reason": "seller_application_required",
        "redirect": "/seller/apply",
    }
