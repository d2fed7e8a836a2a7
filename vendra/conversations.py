# Conversation threads and the message send gate.
# A thread is one row per unordered user pair; messages reference it by id and
# case_status lives on the thread, not on individual messages.
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from sqlalchemy import func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import models
from .blocking import block_status

logger = logging.getLogger("vendra.chat")

CLOSED_CASE_NOTICE = (
    "Esta conversación ha sido cerrada. Por favor, crea un nuevo reporte si tienes otra inquietud."
)
CASE_CLOSING_MESSAGE = (
    "Tu caso ha sido resuelto y cerrado. Si tienes otra inquietud, puedes crear un nuevo "
    "reporte en la sección de Reportes. ¡Gracias por contactarnos!"
)


class SendNotAllowed(Exception):
    """A message send rejected by the gate; code is one of
    self_message, recipient_not_found, blocked, case_closed."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


def pair_key(user_id: int, other_id: int) -> Tuple[int, int]:
    """Canonical (low, high) ordering of a user pair."""
    return (user_id, other_id) if user_id < other_id else (other_id, user_id)


def conversation_type_for(sender: models.User, recipient: models.User) -> str:
    if sender.role == "admin" or recipient.role == "admin":
        return "user_to_admin"
    return "user_to_user"


def get_conversation(db: Session, user_id: int, other_id: int) -> Optional[models.Conversation]:
    a, b = pair_key(user_id, other_id)
    return (
        db.query(models.Conversation)
        .filter(models.Conversation.user_a_id == a, models.Conversation.user_b_id == b)
        .first()
    )


def get_or_create_conversation(
    db: Session, user_id: int, other_id: int, conversation_type: str = "user_to_user"
) -> models.Conversation:
    """Fetch the pair's thread, creating it (flushed, not committed) on first contact."""
    conv = get_conversation(db, user_id, other_id)
    if conv is not None:
        return conv
    a, b = pair_key(user_id, other_id)
    conv = models.Conversation(
        user_a_id=a,
        user_b_id=b,
        conversation_type=conversation_type,
        case_status="open",
    )
    db.add(conv)
    db.flush()
    return conv


def support_conversation(db: Session, user_id: int) -> Optional[models.Conversation]:
    """The user's support thread, whichever admin it was opened with."""
    return (
        db.query(models.Conversation)
        .filter(
            models.Conversation.conversation_type == "user_to_admin",
            or_(models.Conversation.user_a_id == user_id, models.Conversation.user_b_id == user_id),
        )
        .order_by(models.Conversation.updated_at.desc(), models.Conversation.id.desc())
        .first()
    )


def other_participant(conv: models.Conversation, user_id: int) -> int:
    return conv.user_b_id if conv.user_a_id == user_id else conv.user_a_id


def is_closed(conv: Optional[models.Conversation]) -> bool:
    # Only support threads carry a case lifecycle
    return (
        conv is not None
        and conv.conversation_type == "user_to_admin"
        and conv.case_status == "closed"
    )


def thread_messages(
    db: Session,
    conversation_id: int,
    since_id: Optional[int] = None,
    limit: Optional[int] = None,
) -> List[models.Message]:
    """Messages of a thread ascending by (created_at, id).

    Pages are cut by id so that since_id=max(id of the previous page) never
    skips a row whose created_at sorts before the cursor; each page is then
    sorted for display.
    """
    q = db.query(models.Message).filter(models.Message.conversation_id == conversation_id)
    if since_id is not None:
        q = q.filter(models.Message.id > since_id)
    if limit is None:
        return q.order_by(models.Message.created_at.asc(), models.Message.id.asc()).all()
    page = q.order_by(models.Message.id.asc()).limit(limit).all()
    page.sort(key=lambda m: (m.created_at, m.id))
    return page


def last_message(db: Session, conversation_id: int) -> Optional[models.Message]:
    return (
        db.query(models.Message)
        .filter(models.Message.conversation_id == conversation_id)
        .order_by(models.Message.created_at.desc(), models.Message.id.desc())
        .first()
    )


def unread_count(db: Session, user_id: int, conversation_id: Optional[int] = None) -> int:
    q = db.query(func.count(models.Message.id)).filter(
        models.Message.recipient_id == user_id,
        models.Message.read_at.is_(None),
    )
    if conversation_id is not None:
        q = q.filter(models.Message.conversation_id == conversation_id)
    return q.scalar() or 0


def unread_from(db: Session, conversation_id: int, sender_id: int) -> int:
    """Unread messages sent by sender_id in a thread, whoever they were addressed to."""
    return (
        db.query(func.count(models.Message.id))
        .filter(
            models.Message.conversation_id == conversation_id,
            models.Message.sender_id == sender_id,
            models.Message.read_at.is_(None),
        )
        .scalar()
        or 0
    )


def conversations_for(db: Session, user_id: int) -> List[models.Conversation]:
    return (
        db.query(models.Conversation)
        .filter(or_(models.Conversation.user_a_id == user_id, models.Conversation.user_b_id == user_id))
        .order_by(models.Conversation.updated_at.desc(), models.Conversation.id.desc())
        .all()
    )


def insert_message(
    db: Session, conv: models.Conversation, sender_id: int, recipient_id: int, content: str
) -> models.Message:
    """Persist a message without running the gate (used by the gate itself and case closing)."""
    msg = models.Message(
        conversation_id=conv.id,
        sender_id=sender_id,
        recipient_id=recipient_id,
        content=content,
    )
    db.add(msg)
    # Bump the thread so conversation lists sort by latest activity
    conv.updated_at = datetime.now(timezone.utc)
    db.add(conv)
    db.flush()
    return msg


def send_message(db: Session, sender: models.User, recipient_id: int, content: str) -> models.Message:
    """
    Gate and persist a message from sender to recipient.

    Rejected when either side has blocked the other, or when the thread is a
    closed support case. The caller commits; nothing is written on rejection.
    """
    if recipient_id == sender.id:
        raise SendNotAllowed("self_message", "Cannot send a message to yourself")
    recipient = db.get(models.User, recipient_id)
    if recipient is None:
        raise SendNotAllowed("recipient_not_found", "Recipient not found")

    if block_status(db, sender.id, recipient_id)["any_block"]:
        raise SendNotAllowed("blocked", "Messaging is blocked between these users")

    conv = get_conversation(db, sender.id, recipient_id)
    if is_closed(conv):
        raise SendNotAllowed("case_closed", CLOSED_CASE_NOTICE)
    if conv is None:
        conv = get_or_create_conversation(db, sender.id, recipient_id, conversation_type_for(sender, recipient))

    return insert_message(db, conv, sender.id, recipient_id, content)


def mark_thread_read(db: Session, user_id: int, conversation_id: int) -> int:
    """
    Set read_at on inbound unread messages of a thread.

    Best-effort: failures are logged and reported as zero updates, never raised.
    """
    try:
        updated = (
            db.query(models.Message)
            .filter(
                models.Message.conversation_id == conversation_id,
                models.Message.recipient_id == user_id,
                models.Message.read_at.is_(None),
            )
            .update({models.Message.read_at: datetime.now(timezone.utc)}, synchronize_session=False)
        )
        db.commit()
        return updated
    except SQLAlchemyError as exc:
        db.rollback()
        logger.warning(
            "messages.mark_read.failed",
            extra={"conversation_id": conversation_id, "user_id": user_id, "error": str(exc)},
        )
        return 0


def set_case_status(db: Session, conv: models.Conversation, case_status: str, admin_id: int) -> None:
    conv.case_status = case_status
    if case_status == "closed":
        conv.closed_at = datetime.now(timezone.utc)
        conv.closed_by = admin_id
    else:
        conv.closed_at = None
        conv.closed_by = None
    db.add(conv)


def message_event(msg: models.Message) -> dict:
    """Realtime payload for a persisted message; clients dedupe on id."""
    return {
        "type": "message",
        "id": msg.id,
        "conversation_id": msg.conversation_id,
        "sender_id": msg.sender_id,
        "recipient_id": msg.recipient_id,
        "content": msg.content,
        "created_at": msg.created_at.isoformat() if msg.created_at else None,
    }
