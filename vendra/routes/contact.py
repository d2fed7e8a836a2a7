# Public contact form and its admin inbox.
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from ..db import get_db
from .. import models, schemas
from ..rate_limit import rate_limit
from .auth import require_admin

router = APIRouter()


@router.post(
    "/contact",
    response_model=schemas.ContactRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limit("write"))],
)
def submit_contact(payload: schemas.ContactCreate, db: Session = Depends(get_db)) -> models.ContactSubmission:
    obj = models.ContactSubmission(status="new", **payload.model_dump())
    db.add(obj)
    db.commit()
    db.refresh(obj)
    return obj


@router.get("/admin/contact-forms", response_model=List[schemas.ContactRead])
def list_contact_forms(
    status_filter: Optional[str] = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    admin: models.User = Depends(require_admin),
) -> List[models.ContactSubmission]:
    q = db.query(models.ContactSubmission)
    if status_filter:
        q = q.filter(models.ContactSubmission.status == status_filter)
    return q.order_by(models.ContactSubmission.created_at.desc(), models.ContactSubmission.id.desc()).offset(offset).limit(limit).all()


@router.patch("/admin/contact-forms/{contact_id}", response_model=schemas.ContactRead)
def update_contact_form(
    contact_id: int,
    payload: schemas.ContactUpdate,
    db: Session = Depends(get_db),
    admin: models.User = Depends(require_admin),
) -> models.ContactSubmission:
    obj = db.get(models.ContactSubmission, contact_id)
    if not obj:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Contact submission not found")
    obj.status = payload.status
    db.add(obj)
    db.commit()
    db.refresh(obj)
    return obj
