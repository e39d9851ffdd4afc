"""
Project, project-image and allocation endpoints.

Ledger events are announced to the configured webhooks as background tasks
once the response has been sent.
"""
import logging
from typing import List

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from sqlalchemy.orm import Session

from .. import auth, ledger, projects, queries, schemas, webhooks
from ..auth import Identity
from ..database import get_db

router = APIRouter(prefix="/projects", tags=["Projects"])
logger = logging.getLogger(__name__)


@router.get("/highlighted", response_model=List[schemas.PortfolioProject])
def get_highlighted_projects(limit: int = Query(12, ge=1, le=100), db: Session = Depends(get_db)):
    """
    Public portfolio: highlighted projects, newest first, with their images.

    Args:
        limit: Maximum number of projects, 1 to 100 (default: 12)
    """
    return queries.get_highlighted_portfolio(db, limit=limit)


@router.get("/", response_model=List[schemas.Project])
def list_projects(
    db: Session = Depends(get_db),
    identity: Identity = Depends(auth.get_identity),
):
    """All projects in priority order (admin only)."""
    return projects.get_all_projects(db, identity)


@router.get("/mine", response_model=List[schemas.Project])
def list_my_projects(
    db: Session = Depends(get_db),
    identity: Identity = Depends(auth.get_identity),
):
    return projects.get_user_projects(db, identity)


@router.post("/", response_model=schemas.Project, status_code=status.HTTP_201_CREATED)
def create_project(
    project: schemas.ProjectCreate,
    db: Session = Depends(get_db),
    identity: Identity = Depends(auth.get_identity),
):
    """Create a project owned by the caller (authenticated users)."""
    return projects.create_project(db, identity, project)


@router.post("/inventory/{assignment_id}/return", response_model=schemas.Assignment)
def return_inventory(
    assignment_id: int,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    identity: Identity = Depends(auth.get_identity),
):
    """
    Return the units held by an assignment (project owner or admin).

    Raises:
        InvariantViolation: 409 if the assignment was already returned
    """
    assignment = ledger.return_inventory_from_project(db, identity, assignment_id)
    background_tasks.add_task(webhooks.send_webhook, webhooks.RETURNED, webhooks.assignment_payload(assignment))
    return assignment


@router.delete("/images/{image_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_project_image(
    image_id: int,
    db: Session = Depends(get_db),
    identity: Identity = Depends(auth.get_identity),
):
    """Delete an image; the remaining images keep a gapless order."""
    projects.delete_project_image(db, identity, image_id)


@router.get("/{project_id}", response_model=schemas.ProjectDetail)
def get_project(
    project_id: int,
    db: Session = Depends(get_db),
    identity: Identity = Depends(auth.get_identity),
):
    """
    Project with its images and assignments.

    Highlighted projects are public; others need the owner or an admin.
    """
    return projects.get_project(db, identity, project_id)


@router.put("/{project_id}", response_model=schemas.Project)
def update_project(
    project_id: int,
    project: schemas.ProjectUpdate,
    db: Session = Depends(get_db),
    identity: Identity = Depends(auth.get_identity),
):
    return projects.update_project(db, identity, project_id, project)


@router.delete("/{project_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_project(
    project_id: int,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    identity: Identity = Depends(auth.get_identity),
):
    """
    Delete a project (admin only).

    Live allocations are returned to the catalog, then ledger rows and
    images are removed together with the project.
    """
    released = projects.delete_project(db, identity, project_id)
    background_tasks.add_task(
        webhooks.send_webhook,
        webhooks.PROJECT_DELETED,
        {"project_id": project_id, "released_assignments": released},
    )


@router.post("/{project_id}/highlight", response_model=schemas.Project)
def toggle_highlight(
    project_id: int,
    db: Session = Depends(get_db),
    identity: Identity = Depends(auth.get_identity),
):
    """Flip portfolio visibility (admin only)."""
    return projects.toggle_highlight(db, identity, project_id)


@router.post("/{project_id}/move", response_model=List[schemas.Project])
def move_project(
    project_id: int,
    move: schemas.ProjectMove,
    db: Session = Depends(get_db),
    identity: Identity = Depends(auth.get_identity),
):
    """
    Move a project in the priority order (admin only).

    Returns:
        All projects in their new order
    """
    return projects.move_project(db, identity, project_id, move.direction)


@router.post("/{project_id}/images", response_model=schemas.ProjectImage, status_code=status.HTTP_201_CREATED)
def add_project_image(
    project_id: int,
    image: schemas.ProjectImageCreate,
    db: Session = Depends(get_db),
    identity: Identity = Depends(auth.get_identity),
):
    return projects.add_project_image(db, identity, project_id, image)


@router.put("/{project_id}/images/order", response_model=List[schemas.ProjectImage])
def reorder_project_images(
    project_id: int,
    order: schemas.ProjectImageOrder,
    db: Session = Depends(get_db),
    identity: Identity = Depends(auth.get_identity),
):
    """
    Replace the image order; image_ids must list every image of the project once.
    """
    return projects.reorder_project_images(db, identity, project_id, order.image_ids)


@router.get("/{project_id}/inventory", response_model=schemas.ProjectInventory)
def get_project_inventory(
    project_id: int,
    active_only: bool = False,
    db: Session = Depends(get_db),
    identity: Identity = Depends(auth.get_identity),
):
    """Assignments of a project with their items and the current rental total."""
    return ledger.get_project_inventory(db, identity, project_id, active_only=active_only)


@router.post("/{project_id}/inventory", response_model=schemas.Assignment, status_code=status.HTTP_201_CREATED)
def assign_inventory(
    project_id: int,
    assignment: schemas.AssignmentCreate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    identity: Identity = Depends(auth.get_identity),
):
    """
    Assign units of an item to a project (project owner or admin).

    Raises:
        InsufficientAvailability: 409 with the available count
    """
    db_assignment = ledger.assign_inventory_to_project(
        db, identity, project_id, assignment.inventory_id, assignment.quantity
    )
    background_tasks.add_task(webhooks.send_webhook, webhooks.ASSIGNED, webhooks.assignment_payload(db_assignment))
    return db_assignment
