# User blocking endpoints. Mutations answer with the block status read back
# from the database so clients never trust their own optimistic state.
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..db import get_db
from .. import blocking, models, schemas
from ..blocking import BlockNotAllowed
from ..rate_limit import rate_limit
from .auth import get_current_user

router = APIRouter()


@router.get("/blocks", response_model=List[schemas.BlockedUser])
def list_blocked(db: Session = Depends(get_db), user: models.User = Depends(get_current_user)):
    return blocking.blocked_users(db, user.id)


@router.get("/blocks/{user_id}/status", response_model=schemas.BlockStatus)
def get_block_status(user_id: int, db: Session = Depends(get_db), user: models.User = Depends(get_current_user)):
    return blocking.block_status(db, user.id, user_id)


@router.post(
    "/blocks/{user_id}",
    response_model=schemas.BlockStatus,
    dependencies=[Depends(rate_limit("write"))],
)
def block(user_id: int, db: Session = Depends(get_db), user: models.User = Depends(get_current_user)):
    try:
        blocking.block_user(db, user.id, user_id)
        db.commit()
    except LookupError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except BlockNotAllowed as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except IntegrityError:
        # Concurrent block of the same pair; the row exists either way
        db.rollback()
    return blocking.block_status(db, user.id, user_id)


@router.delete(
    "/blocks/{user_id}",
    response_model=schemas.BlockStatus,
    dependencies=[Depends(rate_limit("write"))],
)
def unblock(user_id: int, db: Session = Depends(get_db), user: models.User = Depends(get_current_user)):
    blocking.unblock_user(db, user.id, user_id)
    db.commit()
    return blocking.block_status(db, user.id, user_id)
