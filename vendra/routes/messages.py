# Direct messaging endpoints: conversation list, symmetric thread history, send,
# read receipts, case status and user -> support messages.
from typing import List, Optional
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..db import get_db
from .. import conversations, models, realtime, schemas
from ..conversations import SendNotAllowed
from ..rate_limit import rate_limit
from .auth import get_current_user

router = APIRouter()
logger = logging.getLogger("vendra.chat")

# Gate rejection code -> HTTP status
SEND_ERROR_STATUS = {
    "self_message": status.HTTP_400_BAD_REQUEST,
    "recipient_not_found": status.HTTP_404_NOT_FOUND,
    "blocked": status.HTTP_403_FORBIDDEN,
    "case_closed": status.HTTP_409_CONFLICT,
}


def _raise_send_error(exc: SendNotAllowed) -> None:
    raise HTTPException(
        status_code=SEND_ERROR_STATUS.get(exc.code, status.HTTP_400_BAD_REQUEST),
        detail={"error": exc.code, "message": exc.message},
    ) from exc


def _support_admin(db: Session) -> Optional[models.User]:
    # Support threads are addressed to the first provisioned admin
    return db.query(models.User).filter(models.User.role == "admin").order_by(models.User.id.asc()).first()


async def _commit_and_deliver(db: Session, msg: models.Message, sender: models.User) -> models.Message:
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("messages.send.failed", extra={"sender_id": sender.id})
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to send message") from exc
    db.refresh(msg)
    await realtime.deliver(msg.conversation_id, conversations.message_event(msg))
    logger.info(
        "messages.sent",
        extra={
            "conversation_id": msg.conversation_id,
            "message_id": msg.id,
            "sender_id": msg.sender_id,
            "recipient_id": msg.recipient_id,
        },
    )
    return msg


@router.get("/conversations", response_model=List[schemas.ConversationSummary])
def list_conversations(
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
) -> List[schemas.ConversationSummary]:
    """Caller's threads, most recently active first."""
    out: List[schemas.ConversationSummary] = []
    for conv in conversations.conversations_for(db, user.id):
        other = db.get(models.User, conversations.other_participant(conv, user.id))
        if other is None:
            continue
        last = conversations.last_message(db, conv.id)
        if last is None:
            # Opened by a socket but never written to
            continue
        out.append(
            schemas.ConversationSummary(
                id=conv.id,
                other_user=schemas.UserPublic.model_validate(other),
                conversation_type=conv.conversation_type,
                case_status=conv.case_status,
                last_message=schemas.MessageRead.model_validate(last),
                unread_count=conversations.unread_count(db, user.id, conv.id),
            )
        )
    return out


@router.get("/conversations/status", response_model=schemas.ConversationStatus)
def conversation_status(
    with_user_id: int = Query(..., ge=1),
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
) -> schemas.ConversationStatus:
    conv = conversations.get_conversation(db, user.id, with_user_id)
    closed = conversations.is_closed(conv)
    return schemas.ConversationStatus(
        conversation_id=conv.id if conv else None,
        is_closed=closed,
        message=conversations.CLOSED_CASE_NOTICE if closed else "",
    )


@router.get("/messages", response_model=List[schemas.MessageRead])
def list_messages(
    with_user_id: int = Query(..., ge=1),
    limit: int = Query(50, ge=1, le=100),
    since_id: Optional[int] = Query(None, ge=1),
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
) -> List[models.Message]:
    """
    Thread between the caller and with_user_id.

    Ordering:
    - Ascending by created_at, then id (stable)

    Pagination:
    - since_id: return messages with id strictly greater than this value
    - each page holds the lowest ids past the cursor, so max(id) of a page
      is always a safe since_id for the next one
    """
    conv = conversations.get_conversation(db, user.id, with_user_id)
    if conv is None:
        return []
    items = conversations.thread_messages(db, conv.id, since_id=since_id, limit=limit)
    logger.info(
        "messages.history",
        extra={
            "conversation_id": conv.id,
            "since_id": since_id,
            "limit": limit,
            "count": len(items),
            "user_id": user.id,
        },
    )
    return items


@router.post(
    "/messages",
    response_model=schemas.MessageRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limit("message"))],
)
async def send_message(
    payload: schemas.MessageCreate,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
) -> models.Message:
    """
    Send a message. Rejected with 403 when either user blocked the other and
    409 when the thread is a closed support case. Delivered to the thread's
    realtime room only after commit.
    """
    try:
        msg = conversations.send_message(db, user, payload.recipient_id, payload.content)
    except SendNotAllowed as exc:
        db.rollback()
        logger.info(
            "messages.send.rejected",
            extra={"sender_id": user.id, "recipient_id": payload.recipient_id, "code": exc.code},
        )
        _raise_send_error(exc)
    return await _commit_and_deliver(db, msg, user)


@router.post("/messages/read", response_model=schemas.MarkReadResponse)
def mark_read(
    with_user_id: int = Query(..., ge=1),
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
) -> schemas.MarkReadResponse:
    conv = conversations.get_conversation(db, user.id, with_user_id)
    if conv is None:
        return schemas.MarkReadResponse(updated=0)
    return schemas.MarkReadResponse(updated=conversations.mark_thread_read(db, user.id, conv.id))


@router.get("/messages/unread_count", response_model=schemas.UnreadCount)
def unread_count(
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
) -> schemas.UnreadCount:
    return schemas.UnreadCount(unread=conversations.unread_count(db, user.id))


@router.post(
    "/support/messages",
    response_model=schemas.MessageRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limit("message"))],
)
async def send_support_message(
    payload: schemas.SupportMessageCreate,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
) -> models.Message:
    """User -> support message; reuses the caller's support thread and honours its case status."""
    if user.role == "admin":
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Administrators reply from the admin inbox")
    conv = conversations.support_conversation(db, user.id)
    if conv is not None:
        admin_id = conversations.other_participant(conv, user.id)
    else:
        admin = _support_admin(db)
        if admin is None:
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Support is not available")
        admin_id = admin.id
    try:
        msg = conversations.send_message(db, user, admin_id, payload.content)
    except SendNotAllowed as exc:
        db.rollback()
        _raise_send_error(exc)
    return await _commit_and_deliver(db, msg, user)
