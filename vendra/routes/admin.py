# Admin tables: users and roles, all properties, dashboard counters.
from typing import List, Optional
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from ..db import get_db
from .. import models, moderation, schemas
from .auth import require_admin

router = APIRouter()
logger = logging.getLogger("vendra.admin")


@router.get("/admin/users", response_model=schemas.AdminUserList)
def list_users(
    role: Optional[schemas.Role] = None,
    search: Optional[str] = Query(None, max_length=255),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    admin: models.User = Depends(require_admin),
) -> schemas.AdminUserList:
    q = db.query(models.User)
    if role:
        q = q.filter(models.User.role == role)
    if search:
        pattern = f"%{search.strip()}%"
        q = q.filter(or_(models.User.email.ilike(pattern), models.User.name.ilike(pattern)))
    total = q.count()
    items = q.order_by(models.User.created_at.desc(), models.User.id.desc()).offset(offset).limit(limit).all()
    return schemas.AdminUserList(users=[schemas.AdminUserRead.model_validate(u) for u in items], total=total)


@router.patch("/admin/users/{user_id}/role", response_model=schemas.AdminUserRead)
def update_role(
    user_id: int,
    payload: schemas.RoleUpdate,
    request: Request,
    db: Session = Depends(get_db),
    admin: models.User = Depends(require_admin),
) -> models.User:
    target = db.get(models.User, user_id)
    if not target:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    if target.id == admin.id and payload.role != "admin":
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Administrators cannot demote themselves")
    previous = target.role
    target.role = payload.role
    db.add(target)
    moderation.log_admin_access(
        db, admin, "change_role", request=request, user_id=target.id, reason=f"{previous} -> {payload.role}"
    )
    db.commit()
    db.refresh(target)
    logger.info("admin.role.changed", extra={"user_id": target.id, "admin_id": admin.id, "role": target.role})
    return target


@router.get("/admin/properties", response_model=List[schemas.PropertyRead])
def list_all_properties(
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    admin: models.User = Depends(require_admin),
) -> List[models.Property]:
    return db.query(models.Property).order_by(models.Property.id.desc()).offset(offset).limit(limit).all()


@router.get("/admin/stats", response_model=schemas.AdminStats)
def stats(db: Session = Depends(get_db), admin: models.User = Depends(require_admin)) -> schemas.AdminStats:
    by_role = dict(db.query(models.User.role, func.count(models.User.id)).group_by(models.User.role).all())
    return schemas.AdminStats(
        users_by_role=by_role,
        properties=db.query(func.count(models.Property.id)).scalar() or 0,
        projects=db.query(func.count(models.Project.id)).scalar() or 0,
        pending_applications=db.query(func.count(models.SellerApplication.id))
        .filter(models.SellerApplication.status == "submitted")
        .scalar()
        or 0,
        open_reports=db.query(func.count(models.Report.id))
        .filter(models.Report.status.in_(moderation.OPEN_STATUSES))
        .scalar()
        or 0,
        open_cases=db.query(func.count(models.Conversation.id))
        .filter(models.Conversation.conversation_type == "user_to_admin", models.Conversation.case_status == "open")
        .scalar()
        or 0,
        pending_deletions=db.query(func.count(models.DeletionRequest.id))
        .filter(models.DeletionRequest.status == "pending")
        .scalar()
        or 0,
    )
