from decimal import Decimal

import pytest
from sqlalchemy import func, text

from stagehouse import config, ledger, models, projects
from stagehouse.auth import ANONYMOUS
from stagehouse.exceptions import (
    InsufficientAvailability,
    InvariantViolation,
    NotFound,
    Unauthenticated,
    Unauthorized,
)


def _ledger_in_use(db, item_id):
    total = db.query(func.sum(models.ProjectInventoryAssignment.quantity)).filter(
        models.ProjectInventoryAssignment.inventory_id == item_id,
        models.ProjectInventoryAssignment.returned_at.is_(None),
    ).scalar()
    return int(total or 0)


def test_assign_then_return(db, owner, make_item, make_project):
    item = make_item(count=5)
    project = make_project(owner)

    assignment = ledger.assign_inventory_to_project(db, owner, project.id, item.id, 3)
    db.refresh(item)
    assert item.in_use == 3
    assert assignment.returned_at is None
    assert assignment.quantity == 3

    returned = ledger.return_inventory_from_project(db, owner, assignment.id)
    db.refresh(item)
    assert item.in_use == 0
    assert returned.returned_at is not None


def test_assignment_snapshots_price(db, owner, make_item, make_project):
    item = make_item(price=Decimal("25.50"))
    project = make_project(owner)

    assignment = ledger.assign_inventory_to_project(db, owner, project.id, item.id, 1)
    item.price = Decimal("99.00")
    db.commit()

    db.refresh(assignment)
    assert assignment.price_per_item == Decimal("25.50")


def test_over_allocation_is_rejected(db, owner, make_item, make_project):
    item = make_item(count=2, in_use=2)
    project = make_project(owner)

    with pytest.raises(InsufficientAvailability) as exc:
        ledger.assign_inventory_to_project(db, owner, project.id, item.id, 1)

    assert exc.value.available == 0
    assert "only 0 available" in exc.value.message
    db.refresh(item)
    db.refresh(project)
    assert item.in_use == 2
    assert project.inventory_assigned is False
    assert db.query(models.ProjectInventoryAssignment).count() == 0


def test_non_positive_quantity_is_rejected(db, owner, make_item, make_project):
    item = make_item()
    project = make_project(owner)

    with pytest.raises(InvariantViolation):
        ledger.assign_inventory_to_project(db, owner, project.id, item.id, 0)


def test_missing_project_or_item(db, owner, make_item, make_project):
    item = make_item()
    project = make_project(owner)

    with pytest.raises(NotFound):
        ledger.assign_inventory_to_project(db, owner, 999, item.id, 1)
    with pytest.raises(NotFound):
        ledger.assign_inventory_to_project(db, owner, project.id, 999, 1)
    with pytest.raises(NotFound):
        ledger.return_inventory_from_project(db, owner, 999)


def test_lost_race_is_rejected(db, owner, make_item, make_project, monkeypatch):
    item = make_item(count=2)
    project = make_project(owner)
    real_lock = ledger._lock_item
    calls = []

    def racing_lock(session, inventory_id):
        locked = real_lock(session, inventory_id)
        if not calls:
            calls.append(inventory_id)
            # A competing assignment takes every unit after our availability read
            session.execute(text("UPDATE inventory SET in_use = 2 WHERE id = :id"), {"id": inventory_id})
        return locked

    monkeypatch.setattr(ledger, "_lock_item", racing_lock)

    with pytest.raises(InsufficientAvailability):
        ledger.assign_inventory_to_project(db, owner, project.id, item.id, 1)

    assert db.query(models.ProjectInventoryAssignment).count() == 0
    db.refresh(item)
    assert 0 <= item.in_use <= item.count


def test_double_return_does_not_decrement_twice(db, owner, make_item, make_project):
    item = make_item(count=5)
    project = make_project(owner)
    first = ledger.assign_inventory_to_project(db, owner, project.id, item.id, 2)
    ledger.assign_inventory_to_project(db, owner, project.id, item.id, 1)

    ledger.return_inventory_from_project(db, owner, first.id)
    with pytest.raises(InvariantViolation):
        ledger.return_inventory_from_project(db, owner, first.id)

    db.refresh(item)
    assert item.in_use == 1


def test_inventory_assigned_stays_set_after_return(db, owner, make_item, make_project):
    item = make_item()
    project = make_project(owner)
    assignment = ledger.assign_inventory_to_project(db, owner, project.id, item.id, 1)
    ledger.return_inventory_from_project(db, owner, assignment.id)

    db.refresh(project)
    assert project.inventory_assigned is True


def test_ledger_matches_in_use_after_mixed_operations(db, owner, admin, make_item, make_project):
    chair = make_item(name="Chair", count=6)
    lamp = make_item(name="Lamp", count=3)
    p1 = make_project(owner)
    p2 = make_project(owner)

    a1 = ledger.assign_inventory_to_project(db, owner, p1.id, chair.id, 2)
    ledger.assign_inventory_to_project(db, owner, p2.id, chair.id, 3)
    ledger.assign_inventory_to_project(db, owner, p1.id, lamp.id, 3)
    ledger.return_inventory_from_project(db, owner, a1.id)
    with pytest.raises(InsufficientAvailability):
        ledger.assign_inventory_to_project(db, owner, p2.id, lamp.id, 1)
    ledger.assign_inventory_to_project(db, admin, p2.id, chair.id, 3)

    for item in (chair, lamp):
        db.refresh(item)
        assert 0 <= item.in_use <= item.count
        assert item.in_use == _ledger_in_use(db, item.id)
    assert ledger.audit_ledger(db, admin) == []


def test_delete_project_releases_live_allocations(db, owner, admin, make_item, make_project):
    item = make_item(count=4)
    project = make_project(owner)
    ledger.assign_inventory_to_project(db, owner, project.id, item.id, 4)
    db.add(models.ProjectImage(project_id=project.id, owner_id=owner.subject, image_path="a.jpg", display_order=0))
    db.commit()

    released = projects.delete_project(db, admin, project.id)

    assert released == 1
    db.refresh(item)
    assert item.in_use == 0
    assert db.query(models.ProjectInventoryAssignment).count() == 0
    assert db.query(models.ProjectImage).count() == 0
    assert db.get(models.Project, project.id) is None


def test_delete_project_does_not_release_returned_assignments_twice(db, owner, admin, make_item, make_project):
    item = make_item(count=4)
    project = make_project(owner)
    other = make_project(owner)
    returned = ledger.assign_inventory_to_project(db, owner, project.id, item.id, 2)
    ledger.return_inventory_from_project(db, owner, returned.id)
    ledger.assign_inventory_to_project(db, owner, project.id, item.id, 1)
    ledger.assign_inventory_to_project(db, owner, other.id, item.id, 3)

    projects.delete_project(db, admin, project.id)

    db.refresh(item)
    assert item.in_use == 3
    assert item.in_use == _ledger_in_use(db, item.id)


def test_delete_project_requires_admin(db, owner, make_project):
    project = make_project(owner)
    with pytest.raises(Unauthorized):
        projects.delete_project(db, owner, project.id)


def test_strict_ledger_rejects_drifted_return(db, owner, make_item, make_project, monkeypatch):
    monkeypatch.setattr(config, "STRICT_LEDGER", True)
    item = make_item(count=5)
    project = make_project(owner)
    assignment = ledger.assign_inventory_to_project(db, owner, project.id, item.id, 3)
    item.in_use = 1
    db.commit()

    with pytest.raises(InvariantViolation):
        ledger.return_inventory_from_project(db, owner, assignment.id)

    db.refresh(item)
    db.refresh(assignment)
    assert item.in_use == 1
    assert assignment.returned_at is None


def test_permissive_ledger_clamps_drifted_return(db, owner, make_item, make_project, monkeypatch):
    monkeypatch.setattr(config, "STRICT_LEDGER", False)
    item = make_item(count=5)
    project = make_project(owner)
    assignment = ledger.assign_inventory_to_project(db, owner, project.id, item.id, 3)
    item.in_use = 1
    db.commit()

    ledger.return_inventory_from_project(db, owner, assignment.id)

    db.refresh(item)
    db.refresh(assignment)
    assert item.in_use == 0
    assert assignment.returned_at is not None


def test_audit_reports_drift(db, owner, admin, make_item, make_project):
    item = make_item(count=5)
    project = make_project(owner)
    ledger.assign_inventory_to_project(db, owner, project.id, item.id, 2)
    item.in_use = 4
    db.commit()

    drift = ledger.audit_ledger(db, admin)

    assert len(drift) == 1
    assert drift[0].inventory_id == item.id
    assert drift[0].in_use == 4
    assert drift[0].ledger_in_use == 2


def test_ownership_is_enforced(db, owner, stranger, admin, make_item, make_project):
    item = make_item()
    project = make_project(owner)

    with pytest.raises(Unauthenticated):
        ledger.assign_inventory_to_project(db, ANONYMOUS, project.id, item.id, 1)
    with pytest.raises(Unauthorized):
        ledger.assign_inventory_to_project(db, stranger, project.id, item.id, 1)

    assignment = ledger.assign_inventory_to_project(db, admin, project.id, item.id, 1)
    with pytest.raises(Unauthorized):
        ledger.return_inventory_from_project(db, stranger, assignment.id)
    with pytest.raises(Unauthorized):
        ledger.audit_ledger(db, owner)


def test_project_inventory_rental_total(db, owner, make_item, make_project):
    sofa = make_item(name="Sofa", price=Decimal("40.00"))
    rug = make_item(name="Rug", price=Decimal("12.50"))
    project = make_project(owner)
    ledger.assign_inventory_to_project(db, owner, project.id, sofa.id, 2)
    rug_assignment = ledger.assign_inventory_to_project(db, owner, project.id, rug.id, 1)
    ledger.assign_inventory_to_project(db, owner, project.id, rug.id, 2)
    ledger.return_inventory_from_project(db, owner, rug_assignment.id)

    listing = ledger.get_project_inventory(db, owner, project.id)
    assert len(listing.assignments) == 3
    assert listing.rental_total == Decimal("105.00")
    assert listing.assignments[0].inventory.name == "Sofa"

    active = ledger.get_project_inventory(db, owner, project.id, active_only=True)
    assert len(active.assignments) == 2
