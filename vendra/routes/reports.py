# Conversation reports: user submission and the admin moderation queue.
# Every admin read or update of a report leaves an admin_access_logs row.
from typing import Dict, List, Optional
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..db import get_db
from .. import blocking, conversations, models, moderation, schemas
from ..blocking import BlockNotAllowed
from ..moderation import InvalidTransition, NothingToUpdate, ReportClosed, StaleVersion
from ..rate_limit import rate_limit
from .auth import get_current_user, require_admin

router = APIRouter()
logger = logging.getLogger("vendra.moderation")


def _commit(db: Session, event: str, **fields) -> None:
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception(f"{event}.failed", extra=fields)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Database error") from exc


def _get_report(db: Session, report_id: int) -> models.Report:
    report = db.get(models.Report, report_id)
    if not report:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Report not found")
    return report


def _brief(user: Optional[models.User], user_id: int) -> schemas.UserBrief:
    if user is None:
        return schemas.UserBrief(id=user_id)
    return schemas.UserBrief(id=user.id, name=user.name, email=user.email)


def _detail(db: Session, report: models.Report, users: Dict[int, models.User]) -> schemas.ReportDetail:
    preview = None
    if report.conversation_id is not None:
        last = conversations.last_message(db, report.conversation_id)
        if last is not None:
            preview = last.content[:200]
    base = schemas.ReportRead.model_validate(report).model_dump()
    return schemas.ReportDetail(
        **base,
        reporter=_brief(users.get(report.reporter_id), report.reporter_id),
        reported_user=_brief(users.get(report.reported_user_id), report.reported_user_id),
        last_message_preview=preview,
    )


def _validate_target(db: Session, reporter_id: int, reported_user_id: int) -> models.User:
    if reporter_id == reported_user_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Cannot report yourself")
    target = db.get(models.User, reported_user_id)
    if not target:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Reported user not found")
    if target.role == "admin":
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Administrators cannot be reported")
    if moderation.open_report_for_pair(db, reporter_id, reported_user_id) is not None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="An open report for this user already exists")
    return target


@router.post(
    "/reports",
    response_model=schemas.ReportRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limit("report"))],
)
def create_report(
    payload: schemas.ReportCreate,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
) -> models.Report:
    """Report another user; the pair's thread, when one exists, is attached for review."""
    _validate_target(db, user.id, payload.reported_user_id)
    conv = conversations.get_conversation(db, user.id, payload.reported_user_id)
    report = models.Report(
        reporter_id=user.id,
        reported_user_id=payload.reported_user_id,
        conversation_id=conv.id if conv else None,
        reason=payload.reason,
        description=payload.description,
        status="pending",
        version=1,
    )
    db.add(report)
    _commit(db, "report.create", reporter_id=user.id)
    db.refresh(report)
    logger.info(
        "report.created",
        extra={"report_id": report.id, "reporter_id": user.id, "reported_user_id": report.reported_user_id},
    )
    return report


@router.get("/admin/reports", response_model=schemas.ReportList)
def list_reports(
    request: Request,
    status_filter: Optional[schemas.ReportStatus] = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    admin: models.User = Depends(require_admin),
) -> schemas.ReportList:
    q = db.query(models.Report)
    if status_filter is not None:
        q = q.filter(models.Report.status == status_filter)
    items = q.order_by(models.Report.created_at.desc(), models.Report.id.desc()).offset(offset).limit(limit).all()

    user_ids = {r.reporter_id for r in items} | {r.reported_user_id for r in items}
    users = {u.id: u for u in db.query(models.User).filter(models.User.id.in_(user_ids))} if user_ids else {}

    moderation.log_admin_access(db, admin, "view_reports", request=request, reason=status_filter)
    _commit(db, "report.list", admin_id=admin.id)
    return schemas.ReportList(
        reports=[_detail(db, r, users) for r in items],
        counts=schemas.ReportCounts(**moderation.report_counts(db)),
    )


@router.patch("/admin/reports/{report_id}", response_model=schemas.ReportRead)
def update_report(
    report_id: int,
    payload: schemas.ReportUpdate,
    request: Request,
    db: Session = Depends(get_db),
    admin: models.User = Depends(require_admin),
) -> models.Report:
    """
    Move a report through pending -> reviewing -> resolved|dismissed.

    Errors:
    - 409 when the report is already terminal or expected_version is stale
    - 400 on a transition the state machine does not allow
    """
    report = _get_report(db, report_id)
    try:
        changes = moderation.apply_report_update(
            report,
            admin.id,
            status=payload.status,
            resolution_notes=payload.resolution_notes,
            assign_to_me=payload.assign_to_me,
            expected_version=payload.expected_version,
        )
    except ReportClosed as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except StaleVersion as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"error": "stale_version", "current_version": exc.current_version},
        ) from exc
    except (InvalidTransition, NothingToUpdate) as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    db.add(report)
    moderation.log_admin_access(
        db,
        admin,
        moderation.access_type_for(changes.get("status")),
        request=request,
        user_id=report.reported_user_id,
        report_id=report.id,
        reason=payload.resolution_notes,
    )
    _commit(db, "report.update", report_id=report.id)
    db.refresh(report)
    logger.info(
        "report.updated",
        extra={"report_id": report.id, "admin_id": admin.id, "status": report.status, "version": report.version},
    )
    return report


@router.get("/admin/conversations", response_model=schemas.AdminConversation)
def read_conversation(
    request: Request,
    user_a: int = Query(..., ge=1),
    user_b: int = Query(..., ge=1),
    report_id: Optional[int] = Query(None, ge=1),
    db: Session = Depends(get_db),
    admin: models.User = Depends(require_admin),
) -> schemas.AdminConversation:
    """Privileged read of a thread between two users (audited)."""
    participants = [db.get(models.User, uid) for uid in (user_a, user_b)]
    conv = conversations.get_conversation(db, user_a, user_b)
    messages = conversations.thread_messages(db, conv.id) if conv else []

    moderation.log_admin_access(
        db, admin, "view_conversation", request=request, user_id=user_b, report_id=report_id
    )
    _commit(db, "report.conversation", admin_id=admin.id)
    return schemas.AdminConversation(
        conversation_id=conv.id if conv else None,
        participants=[_brief(u, uid) for u, uid in zip(participants, (user_a, user_b))],
        messages=[schemas.MessageRead.model_validate(m) for m in messages],
    )


@router.post("/admin/reports/{report_id}/block", response_model=schemas.BlockStatus)
def block_reported_user(
    report_id: int,
    request: Request,
    db: Session = Depends(get_db),
    admin: models.User = Depends(require_admin),
) -> Dict[str, bool]:
    """Block the reported user on behalf of the reporter, through the regular block path.

    The block row and its access log commit together; repeating the action
    on an already blocked pair writes nothing.
    """
    report = _get_report(db, report_id)
    try:
        created = blocking.block_user(db, report.reporter_id, report.reported_user_id)
    except LookupError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except BlockNotAllowed as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except IntegrityError:
        # Concurrent block of the same pair
        db.rollback()
        created = False

    if created:
        moderation.log_admin_access(
            db, admin, "block_user", request=request, user_id=report.reported_user_id, report_id=report.id
        )
        _commit(db, "report.block", report_id=report.id)
        logger.info(
            "report.block_applied",
            extra={"report_id": report.id, "admin_id": admin.id, "blocked_id": report.reported_user_id},
        )
    return blocking.block_status(db, report.reporter_id, report.reported_user_id)


@router.post(
    "/admin/reports/escalate",
    response_model=schemas.ReportRead,
    status_code=status.HTTP_201_CREATED,
)
def escalate(
    payload: schemas.ReportEscalate,
    request: Request,
    db: Session = Depends(get_db),
    admin: models.User = Depends(require_admin),
) -> models.Report:
    """Open a report from a support conversation; it starts in reviewing, owned by the admin."""
    if db.get(models.User, payload.user_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Reporter not found")
    _validate_target(db, payload.user_id, payload.reported_user_id)
    conv = conversations.get_conversation(db, payload.user_id, payload.reported_user_id)
    report = models.Report(
        reporter_id=payload.user_id,
        reported_user_id=payload.reported_user_id,
        conversation_id=conv.id if conv else None,
        reason=payload.reason,
        description=payload.description,
        status="reviewing",
        assigned_admin_id=admin.id,
        version=1,
    )
    db.add(report)
    db.flush()
    moderation.log_admin_access(
        db, admin, "escalate_report", request=request, user_id=payload.reported_user_id, report_id=report.id
    )
    _commit(db, "report.escalate", admin_id=admin.id)
    db.refresh(report)
    logger.info("report.escalated", extra={"report_id": report.id, "admin_id": admin.id})
    return report


@router.get("/admin/reports/{report_id}/access-logs", response_model=List[schemas.AdminAccessLogRead])
def report_access_logs(
    report_id: int,
    db: Session = Depends(get_db),
    admin: models.User = Depends(require_admin),
) -> List[models.AdminAccessLog]:
    _get_report(db, report_id)
    return (
        db.query(models.AdminAccessLog)
        .filter(models.AdminAccessLog.report_id == report_id)
        .order_by(models.AdminAccessLog.created_at.asc(), models.AdminAccessLog.id.asc())
        .all()
    )
