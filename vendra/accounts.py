# Account deletion with a grace period: schedule, cancel, admin reject, admin approve (cascade).
# Every operation stages its writes in the caller's session and commits once, so the
# user row and the deletion request never disagree.
from __future__ import annotations

import logging
import os
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import models

logger = logging.getLogger("vendra.accounts")

GRACE_DAYS = int(os.getenv("DELETION_GRACE_DAYS", "30"))


class DeletionConflict(Exception):
    pass


def latest_pending_request(db: Session, user_id: int) -> Optional[models.DeletionRequest]:
    return (
        db.query(models.DeletionRequest)
        .filter(models.DeletionRequest.user_id == user_id, models.DeletionRequest.status == "pending")
        .order_by(models.DeletionRequest.requested_at.desc(), models.DeletionRequest.id.desc())
        .first()
    )


def schedule_deletion(db: Session, user: models.User, reason: Optional[str] = None) -> models.DeletionRequest:
    """
    Mark the account for deletion after the grace period and open a pending request.

    Idempotent: while a pending request exists it is returned unchanged.
    """
    existing = latest_pending_request(db, user.id)
    if existing is not None:
        if user.deletion_scheduled_at is None:
            user.deletion_scheduled_at = existing.scheduled_completion_at
            db.add(user)
            db.commit()
        return existing

    now = datetime.now(timezone.utc)
    scheduled = now + timedelta(days=GRACE_DAYS)
    req = models.DeletionRequest(
        user_id=user.id,
        user_email=user.email,
        status="pending",
        reason=reason,
        requested_at=now,
        scheduled_completion_at=scheduled,
    )
    user.deletion_scheduled_at = scheduled
    db.add(req)
    db.add(user)
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise
    db.refresh(req)
    logger.info("account.deletion.scheduled", extra={"user_id": user.id, "request_id": req.id})
    return req


def cancel_deletion(db: Session, user: models.User) -> Optional[models.DeletionRequest]:
    """
    Clear the schedule and reject the latest pending request.

    Idempotent: repeated calls leave deletion_scheduled_at null and return None
    once no pending request remains.
    """
    req = latest_pending_request(db, user.id)
    user.deletion_scheduled_at = None
    db.add(user)
    if req is not None:
        req.status = "rejected"
        req.processed_at = datetime.now(timezone.utc)
        req.processed_by = user.id
        db.add(req)
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise
    if req is not None:
        logger.info("account.deletion.cancelled", extra={"user_id": user.id, "request_id": req.id})
    return req


def reject_request(db: Session, req: models.DeletionRequest, admin: models.User) -> models.DeletionRequest:
    if req.status != "pending":
        raise DeletionConflict(f"Deletion request is already {req.status}")
    req.status = "rejected"
    req.processed_at = datetime.now(timezone.utc)
    req.processed_by = admin.id
    user = db.get(models.User, req.user_id)
    if user is not None:
        user.deletion_scheduled_at = None
        db.add(user)
    db.add(req)
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise
    db.refresh(req)
    logger.info("account.deletion.rejected", extra={"user_id": req.user_id, "request_id": req.id, "admin_id": admin.id})
    return req


def _delete(db: Session, model, *criteria) -> int:
    return db.query(model).filter(*criteria).delete(synchronize_session=False)


def purge_user(db: Session, user_id: int) -> Dict[str, int]:
    """
    Stage the removal of every row owned by or pointing at the user, then the user row.

    Children go before parents so foreign keys hold at each step. Nothing is committed here.
    """
    deleted: Dict[str, int] = {}

    property_ids = [pid for (pid,) in db.query(models.Property.id).filter(models.Property.owner_id == user_id)]
    conversation_ids = [
        cid
        for (cid,) in db.query(models.Conversation.id).filter(
            or_(models.Conversation.user_a_id == user_id, models.Conversation.user_b_id == user_id)
        )
    ]

    deleted["favorites"] = _delete(
        db,
        models.Favorite,
        or_(models.Favorite.user_id == user_id, models.Favorite.property_id.in_(property_ids)),
    )
    deleted["properties"] = _delete(db, models.Property, models.Property.owner_id == user_id)
    deleted["projects"] = _delete(db, models.Project, models.Project.owner_id == user_id)

    # Reports tied to the user's threads or naming the user go before the threads themselves
    deleted["reports"] = _delete(
        db,
        models.Report,
        or_(
            models.Report.reporter_id == user_id,
            models.Report.reported_user_id == user_id,
            models.Report.conversation_id.in_(conversation_ids),
        ),
    )
    db.query(models.Report).filter(models.Report.assigned_admin_id == user_id).update(
        {models.Report.assigned_admin_id: None}, synchronize_session=False
    )

    deleted["messages"] = _delete(
        db,
        models.Message,
        or_(
            models.Message.sender_id == user_id,
            models.Message.recipient_id == user_id,
            models.Message.conversation_id.in_(conversation_ids),
        ),
    )
    db.query(models.Conversation).filter(models.Conversation.closed_by == user_id).update(
        {models.Conversation.closed_by: None}, synchronize_session=False
    )
    deleted["conversations"] = _delete(db, models.Conversation, models.Conversation.id.in_(conversation_ids))

    deleted["seller_applications"] = _delete(
        db, models.SellerApplication, models.SellerApplication.user_id == user_id
    )
    db.query(models.SellerApplication).filter(models.SellerApplication.reviewer_id == user_id).update(
        {models.SellerApplication.reviewer_id: None}, synchronize_session=False
    )
    deleted["push_subscriptions"] = _delete(db, models.PushSubscription, models.PushSubscription.user_id == user_id)
    deleted["reviews"] = _delete(
        db,
        models.Review,
        or_(models.Review.reviewer_id == user_id, models.Review.reviewed_id == user_id),
    )
    deleted["user_blocks"] = _delete(
        db,
        models.UserBlock,
        or_(models.UserBlock.blocker_id == user_id, models.UserBlock.blocked_id == user_id),
    )
    deleted["users"] = _delete(db, models.User, models.User.id == user_id)
    return deleted


def approve_request(db: Session, req: models.DeletionRequest, admin: models.User) -> Dict[str, int]:
    """
    Complete a pending request: purge the user's data and mark the request completed,
    all in one transaction. Any failure rolls back and leaves everything in place.
    """
    if req.status != "pending":
        raise DeletionConflict(f"Deletion request is already {req.status}")
    if req.user_id == admin.id:
        raise DeletionConflict("Administrators cannot approve their own deletion")

    try:
        deleted = purge_user(db, req.user_id)
        req.status = "completed"
        req.processed_at = datetime.now(timezone.utc)
        req.processed_by = admin.id
        db.add(req)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("account.deletion.failed", extra={"user_id": req.user_id, "request_id": req.id})
        raise
    db.expire_all()
    db.refresh(req)
    logger.info(
        "account.deletion.completed",
        extra={"user_id": req.user_id, "request_id": req.id, "admin_id": admin.id, "deleted": deleted},
    )
    return deleted
