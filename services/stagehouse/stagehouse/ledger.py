"""
Allocation ledger: assignment of inventory units to projects.

assign and return are the only operations that change an item's in_use, so
`in_use == sum(quantity of unreturned assignments)` holds as long as both
keep it. Each runs as a single transaction: every check happens before the
first write, and any failure rolls the whole unit back.
"""
import logging
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import func, update
from sqlalchemy.orm import Session

from . import auth, config, models, schemas
from .auth import Identity
from .exceptions import InsufficientAvailability, InvariantViolation, NotFound, StagehouseError

logger = logging.getLogger(__name__)


def get_assignment(db: Session, assignment_id: int) -> Optional[models.ProjectInventoryAssignment]:
    """
    Retrieve a single ledger row by ID.

    Returns:
        ProjectInventoryAssignment object or None if not found
    """
    return db.query(models.ProjectInventoryAssignment).filter(
        models.ProjectInventoryAssignment.id == assignment_id
    ).first()


def _lock_item(db: Session, inventory_id: int) -> Optional[models.InventoryItem]:
    # Pending changes must reach the database before populate_existing reloads the row
    db.flush()
    return (
        db.query(models.InventoryItem)
        .filter(models.InventoryItem.id == inventory_id)
        .with_for_update()
        .populate_existing()
        .first()
    )


def _release_units(item: models.InventoryItem, quantity: int, now: datetime) -> None:
    """Give `quantity` units of a locked item back to availability."""
    if item.in_use < quantity:
        if config.STRICT_LEDGER:
            logger.error(
                f"Ledger drift on inventory {item.id} (oId {item.o_id}): "
                f"returning {quantity} units but only {item.in_use} in use"
            )
            raise InvariantViolation(
                f"Cannot return {quantity} units of '{item.name}': only {item.in_use} in use"
            )
        logger.warning(
            f"Ledger drift on inventory {item.id} (oId {item.o_id}): "
            f"clamping in_use {item.in_use} - {quantity} to 0"
        )
        item.in_use = 0
    else:
        item.in_use = item.in_use - quantity
    item.updated_at = now


def assign_inventory_to_project(
    db: Session,
    identity: Identity,
    project_id: int,
    inventory_id: int,
    quantity: int,
) -> models.ProjectInventoryAssignment:
    """
    Assign units of an inventory item to a project.

    The item row is locked, then incremented with a conditional update that
    only matches while `in_use + quantity <= count`, so concurrent requests
    can never overcommit the item.

    Args:
        db: Database session
        identity: Caller (project owner or admin)
        project_id: Project receiving the units
        inventory_id: Item being assigned
        quantity: Units to assign (> 0)

    Returns:
        The new ledger row

    Raises:
        InvariantViolation: if quantity is not positive
        NotFound: if the project or item does not exist
        Unauthenticated / Unauthorized: if the caller may not edit the project
        InsufficientAvailability: if fewer than `quantity` units are available
    """
    if quantity <= 0:
        raise InvariantViolation("Quantity must be positive")

    project = db.get(models.Project, project_id)
    if project is None:
        raise NotFound("Project not found")
    auth.require_owner_or_admin(db, identity, project.owner_id)

    item = _lock_item(db, inventory_id)
    if item is None:
        raise NotFound("Inventory not found")

    available = item.count - item.in_use
    if quantity > available:
        raise InsufficientAvailability(quantity, available)

    now = datetime.utcnow()
    try:
        result = db.execute(
            update(models.InventoryItem)
            .where(
                models.InventoryItem.id == inventory_id,
                models.InventoryItem.in_use + quantity <= models.InventoryItem.count,
            )
            .values(in_use=models.InventoryItem.in_use + quantity, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            # Another assignment committed between our read and our write
            db.rollback()
            current = _lock_item(db, inventory_id)
            raise InsufficientAvailability(quantity, max(current.count - current.in_use, 0))

        assignment = models.ProjectInventoryAssignment(
            project_id=project_id,
            inventory_id=inventory_id,
            quantity=quantity,
            price_per_item=item.price,
            assigned_at=now,
        )
        db.add(assignment)
        project.inventory_assigned = True
        project.updated_at = now
        db.commit()
    except StagehouseError:
        db.rollback()
        raise
    except Exception as e:
        db.rollback()
        logger.error(f"Failed to assign inventory {inventory_id} to project {project_id}: {e}")
        raise

    db.refresh(assignment)
    logger.info(
        f"Assigned {quantity} x inventory {inventory_id} to project {project_id} "
        f"(assignment {assignment.id}) by {identity.subject}"
    )
    return assignment


def return_inventory_from_project(db: Session, identity: Identity, assignment_id: int) -> models.ProjectInventoryAssignment:
    """
    Return the units held by an assignment.

    Stamps returned_at and decrements the item's in_use. A second return of
    the same assignment is rejected and never decrements twice.
    project.inventory_assigned is left untouched.

    Raises:
        NotFound: if the assignment, its project or its item does not exist
        Unauthenticated / Unauthorized: if the caller may not edit the project
        InvariantViolation: if already returned, or (strict ledger) if in_use
            is lower than the returned quantity
    """
    assignment = get_assignment(db, assignment_id)
    if assignment is None:
        raise NotFound("Assignment not found")

    project = db.get(models.Project, assignment.project_id)
    if project is None:
        raise NotFound("Project not found")
    auth.require_owner_or_admin(db, identity, project.owner_id)

    if assignment.returned_at is not None:
        raise InvariantViolation(f"Assignment {assignment_id} was already returned")

    now = datetime.utcnow()
    try:
        item = _lock_item(db, assignment.inventory_id)
        if item is None:
            raise NotFound("Inventory not found")

        stamped = db.execute(
            update(models.ProjectInventoryAssignment)
            .where(
                models.ProjectInventoryAssignment.id == assignment_id,
                models.ProjectInventoryAssignment.returned_at.is_(None),
            )
            .values(returned_at=now)
            .execution_options(synchronize_session=False)
        )
        if stamped.rowcount != 1:
            raise InvariantViolation(f"Assignment {assignment_id} was already returned")

        _release_units(item, assignment.quantity, now)
        project.updated_at = now
        db.commit()
    except StagehouseError:
        db.rollback()
        raise
    except Exception as e:
        db.rollback()
        logger.error(f"Failed to return assignment {assignment_id}: {e}")
        raise

    db.refresh(assignment)
    logger.info(
        f"Returned {assignment.quantity} x inventory {assignment.inventory_id} "
        f"from project {assignment.project_id} (assignment {assignment_id}) by {identity.subject}"
    )
    return assignment


def release_project_allocations(db: Session, project_id: int, now: datetime) -> int:
    """
    Release every unreturned assignment of a project and delete all its ledger rows.

    Part of the project deletion cascade: does not commit.

    Returns:
        Number of assignments whose units were released
    """
    active = db.query(models.ProjectInventoryAssignment).filter(
        models.ProjectInventoryAssignment.project_id == project_id,
        models.ProjectInventoryAssignment.returned_at.is_(None),
    ).all()

    for assignment in active:
        item = _lock_item(db, assignment.inventory_id)
        if item is None:
            raise NotFound(f"Inventory {assignment.inventory_id} not found")
        _release_units(item, assignment.quantity, now)

    db.flush()
    db.query(models.ProjectInventoryAssignment).filter(
        models.ProjectInventoryAssignment.project_id == project_id
    ).delete(synchronize_session=False)
    return len(active)


def get_project_inventory(db: Session, identity: Identity, project_id: int, active_only: bool = False) -> schemas.ProjectInventory:
    """
    List a project's ledger rows with their items, oldest first.

    rental_total covers unreturned assignments only.
    """
    project = db.get(models.Project, project_id)
    if project is None:
        raise NotFound("Project not found")
    auth.require_owner_or_admin(db, identity, project.owner_id)

    query = db.query(models.ProjectInventoryAssignment).filter(
        models.ProjectInventoryAssignment.project_id == project_id
    )
    if active_only:
        query = query.filter(models.ProjectInventoryAssignment.returned_at.is_(None))
    assignments = query.order_by(
        models.ProjectInventoryAssignment.assigned_at.asc(),
        models.ProjectInventoryAssignment.id.asc(),
    ).all()

    rows = [with_item(db, a) for a in assignments]
    rental_total = sum(
        (Decimal(a.quantity) * Decimal(a.price_per_item) for a in assignments if a.returned_at is None),
        Decimal("0"),
    )
    return schemas.ProjectInventory(assignments=rows, rental_total=rental_total)


def with_item(db: Session, assignment: models.ProjectInventoryAssignment) -> schemas.AssignmentWithItem:
    item = db.get(models.InventoryItem, assignment.inventory_id)
    return schemas.AssignmentWithItem(
        **schemas.Assignment.model_validate(assignment).model_dump(),
        inventory=schemas.InventoryItem.model_validate(item) if item else None,
    )


def audit_ledger(db: Session, identity: Identity) -> List[schemas.LedgerDrift]:
    """
    Compare every item's in_use with the sum of its unreturned assignments (admin only).

    Returns:
        Items whose counters drifted from the ledger
    """
    auth.require_admin(db, identity)

    sums = dict(
        db.query(
            models.ProjectInventoryAssignment.inventory_id,
            func.sum(models.ProjectInventoryAssignment.quantity),
        )
        .filter(models.ProjectInventoryAssignment.returned_at.is_(None))
        .group_by(models.ProjectInventoryAssignment.inventory_id)
        .all()
    )

    drifted = []
    for item in db.query(models.InventoryItem).order_by(models.InventoryItem.o_id.asc()).all():
        ledger_in_use = int(sums.get(item.id) or 0)
        if ledger_in_use != item.in_use:
            logger.warning(
                f"Ledger drift on inventory {item.id} (oId {item.o_id}): "
                f"in_use={item.in_use}, ledger={ledger_in_use}"
            )
            drifted.append(schemas.LedgerDrift(
                inventory_id=item.id,
                o_id=item.o_id,
                name=item.name,
                in_use=item.in_use,
                ledger_in_use=ledger_in_use,
            ))
    return drifted
