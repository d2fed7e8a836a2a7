from __future__ import annotations

import json
import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, WebSocket, WebSocketDisconnect
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..db import SessionLocal
from .. import conversations, models
from ..conversations import SendNotAllowed
from ..realtime import deliver, manager
from .auth import user_from_token  # reuse JWT verification from REST

router = APIRouter()
logger = logging.getLogger("vendra.chat")

MAX_CONTENT_LENGTH = 4000


def _get_token_from_ws(websocket: WebSocket) -> Optional[str]:
    # Prefer Authorization header if present
    auth = websocket.headers.get("authorization")
    if auth:
        parts = auth.split(" ", 1)
        if len(parts) == 2 and parts[0].lower() == "bearer":
            return parts[1]
    # Fallback to query param ?token=
    return websocket.query_params.get("token") or None


def _open_thread(db: Session, token: str, other_user_id: int):
    """Authenticate and resolve (user, conversation); PermissionError means close with 1008."""
    try:
        user = user_from_token(db, token)
    except HTTPException as exc:
        raise PermissionError(exc.detail) from exc
    if other_user_id == user.id:
        raise PermissionError("Cannot chat with yourself")
    other = db.get(models.User, other_user_id)
    if other is None:
        raise PermissionError("User not found")

    conv = conversations.get_or_create_conversation(
        db, user.id, other_user_id, conversations.conversation_type_for(user, other)
    )
    db.commit()
    return user, conv


@router.websocket("/chat/{other_user_id}")
async def direct_chat(websocket: WebSocket, other_user_id: int) -> None:
    """
    WS chat for the thread between the caller and other_user_id.
    - Auth: JWT required via Authorization: Bearer or ?token=
    - Client -> Server: {"content": "..."} (1..4000 after trim)
    - Server -> Clients: message events {"type": "message", "id", "conversation_id", ...}
    - Same send gate as REST: blocks and closed cases answer with error frames
    - Rate limit: per-connection 1 msg/s, burst 5
    """
    db: Session = SessionLocal()
    user: Optional[models.User] = None
    conversation_id: Optional[int] = None
    try:
        token = _get_token_from_ws(websocket)
        if not token:
            await websocket.close(code=1008)  # Policy violation
            return

        try:
            user, conv = _open_thread(db, token, other_user_id)
        except PermissionError as exc:
            logger.info("chat.ws.rejected", extra={"other_user_id": other_user_id, "reason": str(exc)})
            await websocket.close(code=1008)
            return
        conversation_id = conv.id

        await manager.connect(conversation_id, websocket)
        logger.info(
            "chat.ws.connected",
            extra={"conversation_id": conversation_id, "user_id": user.id, "other_user_id": other_user_id},
        )

        while True:
            try:
                raw = await websocket.receive_text()
            except WebSocketDisconnect:
                break

            try:
                payload = json.loads(raw)
            except ValueError:
                await _send_ws_error(websocket, "invalid_json", "Payload must be JSON")
                continue

            content = payload.get("content") if isinstance(payload, dict) else None
            if not isinstance(content, str):
                await _send_ws_error(websocket, "invalid_payload", "Missing 'content' string")
                continue

            content = content.strip()
            if not (1 <= len(content) <= MAX_CONTENT_LENGTH):
                await _send_ws_error(websocket, "invalid_content", f"Content length must be 1..{MAX_CONTENT_LENGTH}")
                continue

            limiter = manager.get_limiter(websocket)
            if limiter is None or not limiter.consume(1.0):
                await _send_ws_error(websocket, "rate_limited", "Too many messages")
                continue

            try:
                msg = conversations.send_message(db, user, other_user_id, content)
                db.commit()
                db.refresh(msg)
            except SendNotAllowed as exc:
                db.rollback()
                await _send_ws_error(websocket, exc.code, exc.message)
                continue
            except SQLAlchemyError:
                db.rollback()
                logger.exception("chat.ws.persist_failed", extra={"conversation_id": conversation_id})
                await _send_ws_error(websocket, "server_error", "Failed to persist message")
                continue

            await deliver(conversation_id, conversations.message_event(msg))
            logger.info(
                "chat.ws.message",
                extra={"conversation_id": conversation_id, "user_id": user.id, "message_id": msg.id},
            )
    finally:
        if user is not None and conversation_id is not None:
            await manager.disconnect(conversation_id, websocket)
            logger.info("chat.ws.disconnected", extra={"conversation_id": conversation_id, "user_id": user.id})
        db.close()


async def _send_ws_error(ws: WebSocket, code: str, message: str) -> None:
    await ws.send_text(json.dumps({"type": "error", "code": code, "message": message}))
