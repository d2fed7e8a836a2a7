# Per-pair user blocking. A block row in either direction stops messaging between the pair.
from __future__ import annotations

import logging
from typing import Dict, List

from sqlalchemy.orm import Session

from . import models

logger = logging.getLogger("vendra.blocks")


class BlockNotAllowed(Exception):
    pass


def _exists(db: Session, blocker_id: int, blocked_id: int) -> bool:
    row = (
        db.query(models.UserBlock.id)
        .filter(models.UserBlock.blocker_id == blocker_id, models.UserBlock.blocked_id == blocked_id)
        .first()
    )
    return row is not None


def block_status(db: Session, user_id: int, other_id: int) -> Dict[str, bool]:
    """Tri-state block status as seen by user_id; any_block is the OR of both directions."""
    i_blocked_them = _exists(db, user_id, other_id)
    they_blocked_me = _exists(db, other_id, user_id)
    return {
        "i_blocked_them": i_blocked_them,
        "they_blocked_me": they_blocked_me,
        "any_block": i_blocked_them or they_blocked_me,
    }


def block_user(db: Session, blocker_id: int, blocked_id: int) -> bool:
    """Stage the block row; the caller commits. False when the pair was already blocked."""
    if blocker_id == blocked_id:
        raise BlockNotAllowed("Cannot block yourself")
    target = db.get(models.User, blocked_id)
    if target is None:
        raise LookupError("User not found")
    if target.role == "admin":
        raise BlockNotAllowed("Administrators cannot be blocked")
    if _exists(db, blocker_id, blocked_id):
        return False
    db.add(models.UserBlock(blocker_id=blocker_id, blocked_id=blocked_id))
    db.flush()
    logger.info("blocks.created", extra={"blocker_id": blocker_id, "blocked_id": blocked_id})
    return True


def unblock_user(db: Session, blocker_id: int, blocked_id: int) -> bool:
    """Stage removal of blocker's row for the pair; False when there was nothing to remove."""
    deleted = (
        db.query(models.UserBlock)
        .filter(models.UserBlock.blocker_id == blocker_id, models.UserBlock.blocked_id == blocked_id)
        .delete(synchronize_session=False)
    )
    if deleted:
        logger.info("blocks.removed", extra={"blocker_id": blocker_id, "blocked_id": blocked_id})
    return bool(deleted)


def blocked_users(db: Session, blocker_id: int) -> List[dict]:
    rows = (
        db.query(models.UserBlock, models.User)
        .join(models.User, models.User.id == models.UserBlock.blocked_id)
        .filter(models.UserBlock.blocker_id == blocker_id)
        .order_by(models.UserBlock.created_at.desc(), models.UserBlock.id.desc())
        .all()
    )
    return [
        {
            "blocked_id": user.id,
            "blocked_name": user.name,
            "blocked_avatar": user.avatar_url,
            "blocked_at": block.created_at,
        }
        for block, user in rows
    ]
