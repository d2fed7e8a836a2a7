# Profile endpoints: own profile and media, public profiles, reviews,
# favorites and stored push subscriptions.
from typing import List
import logging

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile, status
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..db import get_db
from .. import models, schemas, storage
from ..rate_limit import rate_limit
from .auth import get_current_user

router = APIRouter()
logger = logging.getLogger("vendra.profiles")


@router.get("/users/me", response_model=schemas.UserRead)
def get_me(user: models.User = Depends(get_current_user)) -> models.User:
    return user


@router.patch(
    "/users/me",
    response_model=schemas.UserRead,
    dependencies=[Depends(rate_limit("write"))],
)
def update_me(
    payload: schemas.ProfileUpdate,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
) -> models.User:
    for key, value in payload.model_dump(exclude_unset=True).items():
        setattr(user, key, value or None)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def _replace_media(db: Session, user: models.User, bucket: str, attr: str, file: UploadFile) -> models.User:
    previous = getattr(user, attr)
    _, url = storage.upload(bucket, user.id, file)
    setattr(user, attr, url)
    db.add(user)
    db.commit()
    db.refresh(user)
    if previous:
        storage.remove_by_url(bucket, previous)
    logger.info("profile.media.updated", extra={"user_id": user.id, "bucket": bucket})
    return user


@router.post("/users/me/avatar", response_model=schemas.UserRead, dependencies=[Depends(rate_limit("write"))])
def upload_avatar(
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
) -> models.User:
    return _replace_media(db, user, "avatars", "avatar_url", file)


@router.post("/users/me/banner", response_model=schemas.UserRead, dependencies=[Depends(rate_limit("write"))])
def upload_banner(
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
) -> models.User:
    return _replace_media(db, user, "banners", "banner_url", file)


def _get_user(db: Session, user_id: int) -> models.User:
    target = db.get(models.User, user_id)
    if not target:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return target


@router.get("/users/{user_id}", response_model=schemas.PublicProfile)
def public_profile(user_id: int, db: Session = Depends(get_db)) -> schemas.PublicProfile:
    """Public view of a user with their published listings and rating summary."""
    target = _get_user(db, user_id)
    properties = (
        db.query(models.Property)
        .filter(models.Property.owner_id == user_id, models.Property.is_published.is_(True))
        .order_by(models.Property.id.desc())
        .all()
    )
    projects = (
        db.query(models.Project)
        .filter(models.Project.owner_id == user_id, models.Project.is_published.is_(True))
        .order_by(models.Project.id.desc())
        .all()
    )
    avg, count = (
        db.query(func.avg(models.Review.rating), func.count(models.Review.id))
        .filter(models.Review.reviewed_id == user_id)
        .one()
    )
    return schemas.PublicProfile(
        user=schemas.UserPublic.model_validate(target),
        properties=[schemas.PropertyRead.model_validate(p) for p in properties],
        projects=[schemas.ProjectRead.model_validate(p) for p in projects],
        rating_average=round(float(avg), 2) if avg is not None else None,
        rating_count=count or 0,
    )


@router.get("/users/{user_id}/reviews", response_model=List[schemas.ReviewRead])
def list_reviews(user_id: int, db: Session = Depends(get_db)) -> List[models.Review]:
    _get_user(db, user_id)
    return (
        db.query(models.Review)
        .filter(models.Review.reviewed_id == user_id)
        .order_by(models.Review.created_at.desc(), models.Review.id.desc())
        .all()
    )


@router.post(
    "/users/{user_id}/reviews",
    response_model=schemas.ReviewRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limit("write"))],
)
def create_review(
    user_id: int,
    payload: schemas.ReviewCreate,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
) -> models.Review:
    if user_id == user.id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Cannot review yourself")
    _get_user(db, user_id)
    review = models.Review(reviewer_id=user.id, reviewed_id=user_id, rating=payload.rating, comment=payload.comment)
    db.add(review)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="You already reviewed this user") from exc
    db.refresh(review)
    return review


@router.get("/favorites", response_model=List[schemas.FavoriteRead])
def list_favorites(db: Session = Depends(get_db), user: models.User = Depends(get_current_user)) -> List[models.Favorite]:
    return (
        db.query(models.Favorite)
        .filter(models.Favorite.user_id == user.id)
        .order_by(models.Favorite.created_at.desc(), models.Favorite.id.desc())
        .all()
    )


@router.post(
    "/favorites/{property_id}",
    response_model=schemas.FavoriteRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limit("write"))],
)
def add_favorite(
    property_id: int,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
) -> models.Favorite:
    if not db.get(models.Property, property_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Property not found")
    existing = (
        db.query(models.Favorite)
        .filter(models.Favorite.user_id == user.id, models.Favorite.property_id == property_id)
        .first()
    )
    if existing:
        return existing
    fav = models.Favorite(user_id=user.id, property_id=property_id)
    db.add(fav)
    db.commit()
    db.refresh(fav)
    return fav


@router.delete("/favorites/{property_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_favorite(
    property_id: int,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
) -> None:
    db.query(models.Favorite).filter(
        models.Favorite.user_id == user.id, models.Favorite.property_id == property_id
    ).delete(synchronize_session=False)
    db.commit()


@router.post("/push-subscriptions", status_code=status.HTTP_204_NO_CONTENT)
def save_push_subscription(
    payload: schemas.PushSubscriptionCreate,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
) -> None:
    """Upsert by endpoint; a browser endpoint moves to whichever user registered it last."""
    sub = db.query(models.PushSubscription).filter(models.PushSubscription.endpoint == payload.endpoint).first()
    if sub is None:
        sub = models.PushSubscription(endpoint=payload.endpoint)
    sub.user_id = user.id
    sub.p256dh = payload.p256dh
    sub.auth = payload.auth
    db.add(sub)
    db.commit()
