# Property listing endpoints.
# Anyone can browse published listings; publishing requires listing eligibility.
from typing import List, Optional
import logging

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile, status
from sqlalchemy.orm import Session

from ..db import get_db
from .. import applications, models, schemas, storage
from .auth import get_current_user, get_current_user_optional, is_admin
from ..rate_limit import rate_limit

# Router namespace for property APIs
router = APIRouter()
logger = logging.getLogger("vendra.listings")


def _get_owned(db: Session, property_id: int, user: models.User, allow_admin: bool = False) -> models.Property:
    prop = db.get(models.Property, property_id)
    if not prop:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Property not found")
    if prop.owner_id != user.id and not (allow_admin and is_admin(user)):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not owner of property")
    return prop


@router.get("/properties", response_model=List[schemas.PropertyRead])
def list_properties(
    city: Optional[str] = None,
    property_type: Optional[str] = None,
    min_price_cents: Optional[int] = Query(None, ge=0),
    max_price_cents: Optional[int] = Query(None, ge=0),
    mine: bool = False,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    user: Optional[models.User] = Depends(get_current_user_optional),
):
    """
    List properties, newest first.

    Behavior:
    - mine=true (authenticated): the caller's own listings, published or not.
    - Otherwise: published listings only, narrowed by the optional filters.
    """
    q = db.query(models.Property)
    if mine:
        if user is None:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")
        q = q.filter(models.Property.owner_id == user.id)
    else:
        q = q.filter(models.Property.is_published.is_(True))
    if city:
        q = q.filter(models.Property.city == city)
    if property_type:
        q = q.filter(models.Property.property_type == property_type)
    if min_price_cents is not None:
        q = q.filter(models.Property.price_cents >= min_price_cents)
    if max_price_cents is not None:
        q = q.filter(models.Property.price_cents <= max_price_cents)
    return q.order_by(models.Property.id.desc()).offset(offset).limit(limit).all()


@router.get("/properties/{property_id}", response_model=schemas.PropertyRead)
def get_property(
    property_id: int,
    db: Session = Depends(get_db),
    user: Optional[models.User] = Depends(get_current_user_optional),
):
    prop = db.get(models.Property, property_id)
    # Unpublished listings are visible to their owner and admins only
    if not prop or (not prop.is_published and not (user and (user.id == prop.owner_id or is_admin(user)))):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Property not found")
    return prop


@router.post(
    "/properties",
    response_model=schemas.PropertyRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limit("write"))],
)
def create_property(
    payload: schemas.PropertyCreate,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    """
    Create a listing owned by the caller.

    Buyers without an approved, submitted or just-created seller application
    get 403 with a redirect to the application form.
    """
    gate = applications.listing_eligibility(db, user)
    if not gate["eligible"]:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"error": gate["reason"], "redirect": gate["redirect"]},
        )
    obj = models.Property(owner_id=user.id, status="active", **payload.model_dump())
    db.add(obj)
    db.commit()
    db.refresh(obj)
    logger.info(
        "property.created",
        extra={"property_id": obj.id, "owner_id": user.id, "pending_review": gate["pending_review"]},
    )
    return obj


@router.patch(
    "/properties/{property_id}",
    response_model=schemas.PropertyRead,
    dependencies=[Depends(rate_limit("write"))],
)
def update_property(
    property_id: int,
    payload: schemas.PropertyUpdate,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    prop = _get_owned(db, property_id, user)
    for key, value in payload.model_dump(exclude_unset=True).items():
        setattr(prop, key, value)
    db.add(prop)
    db.commit()
    db.refresh(prop)
    return prop


@router.delete(
    "/properties/{property_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(rate_limit("write"))],
)
def delete_property(
    property_id: int,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
) -> None:
    """Remove the listing (owner or admin); image cleanup afterwards is best-effort."""
    prop = _get_owned(db, property_id, user, allow_admin=True)
    images = list(prop.images or [])
    db.query(models.Favorite).filter(models.Favorite.property_id == prop.id).delete(synchronize_session=False)
    db.delete(prop)
    db.commit()
    for url in images:
        storage.remove_by_url("property-images", url)
    logger.info("property.deleted", extra={"property_id": property_id, "user_id": user.id, "images": len(images)})


@router.post(
    "/properties/{property_id}/images",
    response_model=schemas.PropertyRead,
    dependencies=[Depends(rate_limit("write"))],
)
def upload_property_image(
    property_id: int,
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    prop = _get_owned(db, property_id, user)
    _, url = storage.upload("property-images", user.id, file)
    # Reassign so the JSON column registers the change
    prop.images = list(prop.images or []) + [url]
    db.add(prop)
    db.commit()
    db.refresh(prop)
    return prop
