"""
Project and project-image operations.

Projects are created by any authenticated user and edited by their owner or
an admin. Priority order and highlighting are admin-only. Deleting a project
releases its live allocations through the ledger in the same transaction.
"""
import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from . import auth, cache, ledger, models, ordering, schemas
from .auth import Identity
from .exceptions import NotFound, StagehouseError

logger = logging.getLogger(__name__)

# Columns an update may not clear
REQUIRED_PROJECT_FIELDS = {"name", "status", "highlighted"}


def _get_or_404(db: Session, project_id: int) -> models.Project:
    project = db.get(models.Project, project_id)
    if project is None:
        raise NotFound("Project not found")
    return project


def get_project_images(db: Session, project_id: int) -> List[models.ProjectImage]:
    return db.query(models.ProjectImage).filter(
        models.ProjectImage.project_id == project_id
    ).order_by(models.ProjectImage.display_order.asc(), models.ProjectImage.id.asc()).all()


def create_project(db: Session, identity: Identity, project: schemas.ProjectCreate) -> models.Project:
    """
    Create a project owned by the caller, appended to the end of the priority order.

    Raises:
        Unauthenticated: if there is no resolved identity
    """
    subject = auth.require_authenticated(identity)
    last = db.query(func.max(models.Project.display_order)).scalar()
    now = datetime.utcnow()
    db_project = models.Project(
        **project.model_dump(),
        owner_id=subject,
        highlighted=False,
        inventory_assigned=False,
        display_order=(last or 0) + 1,
        created_at=now,
        updated_at=now,
    )
    try:
        db.add(db_project)
        db.commit()
    except Exception as e:
        db.rollback()
        logger.error(f"Failed to create project '{project.name}' for {subject}: {e}")
        raise
    db.refresh(db_project)
    logger.info(f"Created project {db_project.id} for {subject}")
    return db_project


def get_project(db: Session, identity: Identity, project_id: int) -> schemas.ProjectDetail:
    """
    Project with its images and ledger rows.

    Highlighted projects are public; others are visible to their owner and admins.
    """
    project = _get_or_404(db, project_id)
    if not project.highlighted:
        auth.require_owner_or_admin(db, identity, project.owner_id)

    assignments = db.query(models.ProjectInventoryAssignment).filter(
        models.ProjectInventoryAssignment.project_id == project_id
    ).order_by(models.ProjectInventoryAssignment.assigned_at.asc()).all()

    return schemas.ProjectDetail(
        **schemas.Project.model_validate(project).model_dump(),
        images=[schemas.ProjectImage.model_validate(i) for i in get_project_images(db, project_id)],
        assigned_inventory=[ledger.with_item(db, a) for a in assignments],
    )


def get_user_projects(db: Session, identity: Identity) -> List[models.Project]:
    """The caller's projects, newest first."""
    subject = auth.require_authenticated(identity)
    return db.query(models.Project).filter(
        models.Project.owner_id == subject
    ).order_by(models.Project.created_at.desc(), models.Project.id.desc()).all()


def get_all_projects(db: Session, identity: Identity) -> List[models.Project]:
    """Every project in priority order (admin only)."""
    auth.require_admin(db, identity)
    return _priority_order(db)


def _priority_order(db: Session) -> List[models.Project]:
    return db.query(models.Project).order_by(
        models.Project.display_order.asc(), models.Project.id.asc()
    ).all()


def update_project(db: Session, identity: Identity, project_id: int, project: schemas.ProjectUpdate) -> models.Project:
    """
    Update an existing project (owner or admin; changing highlighted needs admin).

    Args:
        db: Database session
        identity: Caller
        project_id: ID of the project to update
        project: Updated project data (only provided fields will be updated)

    Returns:
        Updated Project object
    """
    db_project = _get_or_404(db, project_id)
    auth.require_owner_or_admin(db, identity, db_project.owner_id)

    update_data = {
        key: value for key, value in project.model_dump(exclude_unset=True).items()
        if value is not None or key not in REQUIRED_PROJECT_FIELDS
    }
    if "highlighted" in update_data:
        auth.require_admin(db, identity)
    for key, value in update_data.items():
        setattr(db_project, key, value)
    db_project.updated_at = datetime.utcnow()

    try:
        db.commit()
    except Exception as e:
        db.rollback()
        logger.error(f"Failed to update project {project_id}: {e}")
        raise
    db.refresh(db_project)
    cache.invalidate_portfolio()
    return db_project


def toggle_highlight(db: Session, identity: Identity, project_id: int) -> models.Project:
    """Flip whether a project appears on the public portfolio (admin only)."""
    auth.require_admin(db, identity)
    db_project = _get_or_404(db, project_id)
    db_project.highlighted = not db_project.highlighted
    db_project.updated_at = datetime.utcnow()
    try:
        db.commit()
    except Exception as e:
        db.rollback()
        logger.error(f"Failed to toggle highlight of project {project_id}: {e}")
        raise
    db.refresh(db_project)
    cache.invalidate_portfolio()
    return db_project


def delete_project(db: Session, identity: Identity, project_id: int) -> int:
    """
    Delete a project with its ledger rows and images (admin only).

    Units held by unreturned assignments go back to their items first. The
    whole cascade is one transaction.

    Returns:
        Number of live assignments that were released
    """
    subject = auth.require_admin(db, identity)
    db_project = _get_or_404(db, project_id)

    try:
        released = ledger.release_project_allocations(db, project_id, datetime.utcnow())
        db.query(models.ProjectImage).filter(
            models.ProjectImage.project_id == project_id
        ).delete(synchronize_session=False)
        db.flush()
        db.delete(db_project)
        db.commit()
    except StagehouseError:
        db.rollback()
        raise
    except Exception as e:
        db.rollback()
        logger.error(f"Failed to delete project {project_id}: {e}")
        raise

    cache.invalidate_portfolio()
    logger.info(f"Deleted project {project_id} by {subject}, released {released} live assignments")
    return released


# ---------------------------------------------------------------------------
# Project images
# ---------------------------------------------------------------------------

def add_project_image(db: Session, identity: Identity, project_id: int, image: schemas.ProjectImageCreate) -> models.ProjectImage:
    """Append an image at the end of the project's image order (owner or admin)."""
    db_project = _get_or_404(db, project_id)
    auth.require_owner_or_admin(db, identity, db_project.owner_id)

    position = db.query(func.count(models.ProjectImage.id)).filter(
        models.ProjectImage.project_id == project_id
    ).scalar()
    db_image = models.ProjectImage(
        **image.model_dump(),
        project_id=project_id,
        owner_id=db_project.owner_id,
        display_order=position,
        created_at=datetime.utcnow(),
    )
    try:
        db.add(db_image)
        db.commit()
    except Exception as e:
        db.rollback()
        logger.error(f"Failed to add image to project {project_id}: {e}")
        raise
    db.refresh(db_image)
    cache.invalidate_portfolio()
    return db_image


def delete_project_image(db: Session, identity: Identity, image_id: int) -> None:
    """
    Delete a project image and close the gap it leaves in the display order.
    """
    db_image = db.get(models.ProjectImage, image_id)
    if db_image is None:
        raise NotFound("Image not found")
    db_project = _get_or_404(db, db_image.project_id)
    auth.require_owner_or_admin(db, identity, db_project.owner_id)

    try:
        db.delete(db_image)
        db.flush()
        ordering.renumber(get_project_images(db, db_project.id), "display_order", start=0)
        db.commit()
    except Exception as e:
        db.rollback()
        logger.error(f"Failed to delete project image {image_id}: {e}")
        raise
    cache.invalidate_portfolio()


def reorder_project_images(db: Session, identity: Identity, project_id: int, image_ids: List[int]) -> List[models.ProjectImage]:
    """
    Replace a project's image order; image_ids[i] gets display_order i.

    Raises:
        NotFound: if the project or one of the ids does not exist in it
        InvariantViolation: if image_ids is not a permutation of the project's images
    """
    db_project = _get_or_404(db, project_id)
    auth.require_owner_or_admin(db, identity, db_project.owner_id)

    try:
        ordering.set_display_order(get_project_images(db, project_id), image_ids)
        db.commit()
    except StagehouseError:
        db.rollback()
        raise
    except Exception as e:
        db.rollback()
        logger.error(f"Failed to reorder images of project {project_id}: {e}")
        raise
    cache.invalidate_portfolio()
    return get_project_images(db, project_id)


# ---------------------------------------------------------------------------
# Priority order
# ---------------------------------------------------------------------------

def move_project(db: Session, identity: Identity, project_id: int, direction: str) -> List[models.Project]:
    """
    Move a project in the priority order (admin only).

    "up" and "down" swap display_order with the neighbor. The first project
    moved up goes to the end and the last moved down goes to the start;
    those cases, like "first" and "last", renumber every project 1..N.

    Returns:
        All projects in their new priority order
    """
    auth.require_admin(db, identity)
    projects = _priority_order(db)
    index: Optional[int] = next((i for i, p in enumerate(projects) if p.id == project_id), None)
    if index is None:
        raise NotFound("Project not found")

    try:
        if len(projects) > 1:
            if direction == ordering.UP and index == 0:
                direction = "last"
            elif direction == ordering.DOWN and index == len(projects) - 1:
                direction = "first"

            if direction in ("first", "last"):
                ordering.move_to_end(projects, project_id, direction, "display_order", start=1)
            else:
                ordering.cyclic_swap_neighbor(db, projects, project_id, direction, "display_order")
            db.commit()
    except StagehouseError:
        db.rollback()
        raise
    except Exception as e:
        db.rollback()
        logger.error(f"Failed to move project {project_id} {direction}: {e}")
        raise

    logger.info(f"Moved project {project_id} {direction}")
    return _priority_order(db)
