# Account deletion: the user schedules or cancels, an admin approves (cascade) or rejects.
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..db import get_db
from .. import accounts, models, moderation, schemas
from ..accounts import DeletionConflict
from ..rate_limit import rate_limit
from .auth import get_current_user, require_admin

router = APIRouter()


def _get_request(db: Session, request_id: int) -> models.DeletionRequest:
    req = db.get(models.DeletionRequest, request_id)
    if not req:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Deletion request not found")
    return req


@router.post(
    "/account/deletion",
    response_model=schemas.DeletionRequestRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limit("write"))],
)
def request_deletion(
    payload: schemas.DeletionRequestCreate,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
) -> models.DeletionRequest:
    """Schedule the account for deletion after the grace period; repeating returns the pending request."""
    if user.role == "admin":
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Administrator accounts cannot be self-deleted")
    try:
        return accounts.schedule_deletion(db, user, payload.reason)
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Database error") from exc


@router.get("/account/deletion", response_model=Optional[schemas.DeletionRequestRead])
def deletion_status(
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
) -> Optional[models.DeletionRequest]:
    return accounts.latest_pending_request(db, user.id)


@router.delete("/account/deletion", response_model=schemas.UserRead)
def cancel_deletion(
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
) -> models.User:
    try:
        accounts.cancel_deletion(db, user)
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Database error") from exc
    db.refresh(user)
    return user


@router.get("/admin/deletion-requests", response_model=List[schemas.DeletionRequestRead])
def list_deletion_requests(
    status_filter: Optional[schemas.DeletionStatus] = Query(None, alias="status"),
    db: Session = Depends(get_db),
    admin: models.User = Depends(require_admin),
) -> List[models.DeletionRequest]:
    q = db.query(models.DeletionRequest)
    if status_filter is not None:
        q = q.filter(models.DeletionRequest.status == status_filter)
    return q.order_by(models.DeletionRequest.requested_at.desc(), models.DeletionRequest.id.desc()).all()


@router.post("/admin/deletion-requests/{request_id}/approve", response_model=schemas.DeletionCascadeResult)
def approve_deletion(
    request_id: int,
    request: Request,
    db: Session = Depends(get_db),
    admin: models.User = Depends(require_admin),
) -> schemas.DeletionCascadeResult:
    """Delete the user and everything they own in one transaction; the request row stays as the audit record."""
    req = _get_request(db, request_id)
    moderation.log_admin_access(db, admin, "approve_deletion", request=request, user_id=req.user_id)
    try:
        deleted = accounts.approve_request(db, req, admin)
    except DeletionConflict as exc:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Account deletion failed") from exc
    return schemas.DeletionCascadeResult(request=schemas.DeletionRequestRead.model_validate(req), deleted=deleted)


@router.post("/admin/deletion-requests/{request_id}/reject", response_model=schemas.DeletionRequestRead)
def reject_deletion(
    request_id: int,
    request: Request,
    db: Session = Depends(get_db),
    admin: models.User = Depends(require_admin),
) -> models.DeletionRequest:
    req = _get_request(db, request_id)
    moderation.log_admin_access(db, admin, "reject_deletion", request=request, user_id=req.user_id)
    try:
        return accounts.reject_request(db, req, admin)
    except DeletionConflict as exc:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
