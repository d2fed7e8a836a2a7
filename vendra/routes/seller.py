# Seller application endpoints: draft, submit, KYC document upload, listing
# eligibility, and the admin review queue.
from typing import Optional
import logging

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..db import get_db
from .. import applications, models, schemas, storage
from ..applications import ApplicationConflict, ApplicationIncomplete
from ..rate_limit import rate_limit
from ..redis_client import redis_try_lock
from .auth import get_current_user, require_admin

router = APIRouter()
logger = logging.getLogger("vendra.applications")

DOCUMENT_FIELDS = {
    "front": "doc_front_url",
    "back": "doc_back_url",
    "selfie": "selfie_url",
    "ownership_proof": "ownership_proof_url",
}


def _commit(db: Session, user_id: int) -> None:
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("application.commit.failed", extra={"user_id": user_id})
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Database error") from exc


@router.get("/seller/application", response_model=Optional[schemas.SellerApplicationRead])
def get_application(
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
) -> Optional[models.SellerApplication]:
    """Most recent non-terminal application, or null when there is none."""
    return applications.active_application(db, user.id)


@router.put(
    "/seller/application/draft",
    response_model=schemas.SellerApplicationRead,
    dependencies=[Depends(rate_limit("write"))],
)
def save_draft(
    payload: schemas.SellerApplicationPayload,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
) -> models.SellerApplication:
    try:
        app = applications.save_draft(db, user, payload.model_dump(exclude_unset=True))
    except ApplicationConflict as exc:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    _commit(db, user.id)
    db.refresh(app)
    return app


@router.post(
    "/seller/application/submit",
    response_model=schemas.SellerApplicationSubmitResponse,
    dependencies=[Depends(rate_limit("write"))],
)
def submit_application(
    payload: schemas.SellerApplicationPayload,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
) -> schemas.SellerApplicationSubmitResponse:
    """
    Submit the application and, for a buyer, switch the account to the chosen
    seller role. Both rows commit together; concurrent submits of one user
    are serialized by a Redis lock (429 while another submit is in flight).
    """
    with redis_try_lock(f"lock:seller_application:user:{user.id}") as locked:
        if not locked:
            raise HTTPException(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail="Submission in progress, retry")
        try:
            app, _ = applications.submit(db, user, payload.model_dump(exclude_unset=True))
        except ApplicationIncomplete as exc:
            db.rollback()
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
        except ApplicationConflict as exc:
            db.rollback()
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
        _commit(db, user.id)
    db.refresh(app)
    db.refresh(user)
    return schemas.SellerApplicationSubmitResponse(
        application=schemas.SellerApplicationRead.model_validate(app),
        user=schemas.UserRead.model_validate(user),
    )


@router.post(
    "/seller/application/documents/{kind}",
    response_model=schemas.SellerApplicationRead,
    dependencies=[Depends(rate_limit("write"))],
)
def upload_document(
    kind: schemas.DocumentKind,
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
) -> models.SellerApplication:
    """Store a KYC document and record its URL on the editable application (created as a draft if needed)."""
    try:
        app = applications.save_draft(db, user, {})
    except ApplicationConflict as exc:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    _, url = storage.upload("kyc-docs", user.id, file, allowed_types=storage.DOCUMENT_TYPES)
    setattr(app, DOCUMENT_FIELDS[kind], url)
    db.add(app)
    _commit(db, user.id)
    db.refresh(app)
    logger.info("application.document.uploaded", extra={"application_id": app.id, "kind": kind})
    return app


@router.get("/seller/eligibility", response_model=schemas.ListingEligibility)
def eligibility(
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
) -> dict:
    return applications.listing_eligibility(db, user)


def _admin_read(app: models.SellerApplication, applicant: Optional[models.User]) -> schemas.AdminApplicationRead:
    base = schemas.SellerApplicationRead.model_validate(app).model_dump()
    return schemas.AdminApplicationRead(
        **base,
        applicant=schemas.UserPublic.model_validate(applicant) if applicant else None,
        applicant_email=applicant.email if applicant else None,
    )


@router.get("/admin/applications", response_model=schemas.AdminApplicationList)
def list_applications(
    status_filter: Optional[schemas.ApplicationStatus] = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    admin: models.User = Depends(require_admin),
) -> schemas.AdminApplicationList:
    q = db.query(models.SellerApplication)
    if status_filter is not None:
        q = q.filter(models.SellerApplication.status == status_filter)
    total = q.count()
    items = (
        q.order_by(models.SellerApplication.created_at.desc(), models.SellerApplication.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return schemas.AdminApplicationList(
        applications=[_admin_read(a, db.get(models.User, a.user_id)) for a in items],
        total=total,
    )


@router.post("/admin/applications/{application_id}", response_model=schemas.AdminApplicationRead)
def review_application(
    application_id: int,
    payload: schemas.ApplicationReview,
    db: Session = Depends(get_db),
    admin: models.User = Depends(require_admin),
) -> schemas.AdminApplicationRead:
    """Approve, reject or ask for more info; only submitted applications can be reviewed."""
    app = db.get(models.SellerApplication, application_id)
    if not app:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Application not found")
    try:
        applications.review(db, app, admin, payload.status, payload.review_notes)
    except ApplicationConflict as exc:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    _commit(db, app.user_id)
    db.refresh(app)
    return _admin_read(app, db.get(models.User, app.user_id))
