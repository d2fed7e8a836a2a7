# Construction project endpoints. Only construction companies (and admins) publish projects.
from typing import List, Optional
import logging

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile, status
from sqlalchemy.orm import Session

from ..db import get_db
from .. import models, schemas, storage
from .auth import get_current_user_optional, is_admin, require_roles
from ..rate_limit import rate_limit

router = APIRouter()
logger = logging.getLogger("vendra.listings")

require_builder = require_roles("empresa_constructora")


def _get_project(db: Session, project_id: int) -> models.Project:
    project = db.get(models.Project, project_id)
    if not project:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Project not found")
    return project


def _get_owned(db: Session, project_id: int, user: models.User, allow_admin: bool = False) -> models.Project:
    project = _get_project(db, project_id)
    if project.owner_id != user.id and not (allow_admin and is_admin(user)):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not owner of project")
    return project


@router.get("/projects", response_model=List[schemas.ProjectRead])
def list_projects(
    city: Optional[str] = None,
    project_status: Optional[schemas.ProjectStatus] = Query(None, alias="status"),
    mine: bool = False,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    user: Optional[models.User] = Depends(get_current_user_optional),
):
    q = db.query(models.Project)
    if mine:
        if user is None:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")
        q = q.filter(models.Project.owner_id == user.id)
    else:
        q = q.filter(models.Project.is_published.is_(True))
    if city:
        q = q.filter(models.Project.city == city)
    if project_status:
        q = q.filter(models.Project.status == project_status)
    return q.order_by(models.Project.id.desc()).offset(offset).limit(limit).all()


@router.get("/projects/{project_id}", response_model=schemas.ProjectRead)
def get_project(
    project_id: int,
    db: Session = Depends(get_db),
    user: Optional[models.User] = Depends(get_current_user_optional),
):
    project = _get_project(db, project_id)
    if not project.is_published and not (user and (user.id == project.owner_id or is_admin(user))):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Project not found")
    return project


@router.post(
    "/projects",
    response_model=schemas.ProjectRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limit("write"))],
)
def create_project(
    payload: schemas.ProjectCreate,
    db: Session = Depends(get_db),
    user: models.User = Depends(require_builder),
):
    obj = models.Project(owner_id=user.id, views_count=0, **payload.model_dump())
    db.add(obj)
    db.commit()
    db.refresh(obj)
    logger.info("project.created", extra={"project_id": obj.id, "owner_id": user.id})
    return obj


@router.patch(
    "/projects/{project_id}",
    response_model=schemas.ProjectRead,
    dependencies=[Depends(rate_limit("write"))],
)
def update_project(
    project_id: int,
    payload: schemas.ProjectUpdate,
    db: Session = Depends(get_db),
    user: models.User = Depends(require_builder),
):
    project = _get_owned(db, project_id, user)
    for key, value in payload.model_dump(exclude_unset=True).items():
        setattr(project, key, value)
    db.add(project)
    db.commit()
    db.refresh(project)
    return project


@router.delete(
    "/projects/{project_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(rate_limit("write"))],
)
def delete_project(
    project_id: int,
    db: Session = Depends(get_db),
    user: models.User = Depends(require_builder),
) -> None:
    project = _get_owned(db, project_id, user, allow_admin=True)
    media = [("project-images", u) for u in project.images or []] + [("project-plans", u) for u in project.plans or []]
    db.delete(project)
    db.commit()
    for bucket, url in media:
        storage.remove_by_url(bucket, url)


@router.post("/projects/{project_id}/views", response_model=schemas.ProjectViews)
def increment_project_views(project_id: int, db: Session = Depends(get_db)) -> schemas.ProjectViews:
    """Count a view with a single UPDATE so concurrent views are not lost."""
    updated = (
        db.query(models.Project)
        .filter(models.Project.id == project_id)
        .update({models.Project.views_count: models.Project.views_count + 1}, synchronize_session=False)
    )
    if not updated:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Project not found")
    db.commit()
    project = _get_project(db, project_id)
    return schemas.ProjectViews(project_id=project.id, views_count=project.views_count)


def _append_media(db: Session, project_id: int, user: models.User, bucket: str, attr: str, file: UploadFile, allowed):
    project = _get_owned(db, project_id, user)
    _, url = storage.upload(bucket, user.id, file, allowed_types=allowed)
    setattr(project, attr, list(getattr(project, attr) or []) + [url])
    db.add(project)
    db.commit()
    db.refresh(project)
    return project


@router.post(
    "/projects/{project_id}/images",
    response_model=schemas.ProjectRead,
    dependencies=[Depends(rate_limit("write"))],
)
def upload_project_image(
    project_id: int,
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    user: models.User = Depends(require_builder),
):
    return _append_media(db, project_id, user, "project-images", "images", file, storage.IMAGE_TYPES)


@router.post(
    "/projects/{project_id}/plans",
    response_model=schemas.ProjectRead,
    dependencies=[Depends(rate_limit("write"))],
)
def upload_project_plan(
    project_id: int,
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    user: models.User = Depends(require_builder),
):
    return _append_media(db, project_id, user, "project-plans", "plans", file, storage.DOCUMENT_TYPES)
