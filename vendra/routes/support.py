# Admin side of support cases: inbox, replies, and closing/reopening a case.
# A closed case rejects new messages from both participants until reopened.
from typing import List
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..db import get_db
from .. import conversations, models, moderation, realtime, schemas
from ..rate_limit import rate_limit
from .auth import require_admin

router = APIRouter()
logger = logging.getLogger("vendra.chat")


def _support_thread(db: Session, user_id: int) -> models.Conversation:
    conv = conversations.support_conversation(db, user_id)
    if conv is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No support conversation for this user")
    return conv


def _commit(db: Session, conversation_id: int) -> None:
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("support.commit.failed", extra={"conversation_id": conversation_id})
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Database error") from exc


@router.get("/admin/messages", response_model=List[schemas.SupportThread])
def support_inbox(
    db: Session = Depends(get_db),
    admin: models.User = Depends(require_admin),
) -> List[schemas.SupportThread]:
    """Every support thread, newest activity first, with the non-admin participant."""
    threads = (
        db.query(models.Conversation)
        .filter(models.Conversation.conversation_type == "user_to_admin")
        .order_by(models.Conversation.updated_at.desc(), models.Conversation.id.desc())
        .all()
    )
    out: List[schemas.SupportThread] = []
    for conv in threads:
        a = db.get(models.User, conv.user_a_id)
        b = db.get(models.User, conv.user_b_id)
        member = b if a is not None and a.role == "admin" else a
        if member is None:
            continue
        last = conversations.last_message(db, conv.id)
        out.append(
            schemas.SupportThread(
                conversation_id=conv.id,
                user=schemas.UserBrief(id=member.id, name=member.name, email=member.email),
                case_status=conv.case_status,
                last_message=schemas.MessageRead.model_validate(last) if last else None,
                unread_count=conversations.unread_from(db, conv.id, member.id),
            )
        )
    return out


@router.post(
    "/admin/messages/{user_id}",
    response_model=schemas.MessageRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limit("message"))],
)
async def reply(
    user_id: int,
    payload: schemas.SupportMessageCreate,
    db: Session = Depends(get_db),
    admin: models.User = Depends(require_admin),
) -> models.Message:
    """
    Admin reply into the user's support thread. Any admin may answer, even one
    that is not the thread's participant. Closed cases must be reopened first.
    """
    target = db.get(models.User, user_id)
    if target is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    conv = conversations.support_conversation(db, user_id)
    if conv is None:
        conv = conversations.get_or_create_conversation(db, admin.id, user_id, "user_to_admin")
    if conversations.is_closed(conv):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"error": "case_closed", "message": conversations.CLOSED_CASE_NOTICE},
        )
    msg = conversations.insert_message(db, conv, admin.id, user_id, payload.content)
    _commit(db, conv.id)
    db.refresh(msg)
    await realtime.deliver(conv.id, conversations.message_event(msg))
    logger.info("support.reply", extra={"conversation_id": conv.id, "admin_id": admin.id, "user_id": user_id})
    return msg


@router.post("/admin/cases/{user_id}/close", response_model=schemas.CaseActionResponse)
async def close_case(
    user_id: int,
    request: Request,
    db: Session = Depends(get_db),
    admin: models.User = Depends(require_admin),
) -> schemas.CaseActionResponse:
    """Close the case and post the closing notice in the same transaction."""
    conv = _support_thread(db, user_id)
    if conv.case_status == "closed":
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Case is already closed")
    # The closing notice is written before the gate takes effect
    msg = conversations.insert_message(db, conv, admin.id, user_id, conversations.CASE_CLOSING_MESSAGE)
    conversations.set_case_status(db, conv, "closed", admin.id)
    moderation.log_admin_access(db, admin, "close_case", request=request, user_id=user_id)
    _commit(db, conv.id)
    db.refresh(msg)
    await realtime.deliver(conv.id, conversations.message_event(msg))
    await realtime.deliver(conv.id, {"type": "case_status", "conversation_id": conv.id, "case_status": "closed"})
    logger.info("support.case.closed", extra={"conversation_id": conv.id, "admin_id": admin.id, "user_id": user_id})
    return schemas.CaseActionResponse(conversation_id=conv.id, case_status="closed")


@router.post("/admin/cases/{user_id}/reopen", response_model=schemas.CaseActionResponse)
async def reopen_case(
    user_id: int,
    request: Request,
    db: Session = Depends(get_db),
    admin: models.User = Depends(require_admin),
) -> schemas.CaseActionResponse:
    conv = _support_thread(db, user_id)
    if conv.case_status == "open":
        return schemas.CaseActionResponse(conversation_id=conv.id, case_status="open")
    conversations.set_case_status(db, conv, "open", admin.id)
    moderation.log_admin_access(db, admin, "reopen_case", request=request, user_id=user_id)
    _commit(db, conv.id)
    await realtime.deliver(conv.id, {"type": "case_status", "conversation_id": conv.id, "case_status": "open"})
    logger.info("support.case.reopened", extra={"conversation_id": conv.id, "admin_id": admin.id, "user_id": user_id})
    return schemas.CaseActionResponse(conversation_id=conv.id, case_status="open")
