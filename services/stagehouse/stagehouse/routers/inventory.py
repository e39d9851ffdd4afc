"""
Inventory catalog endpoints.

Public reads (listing, lookups, availability, adjacency, categories) accept
anonymous callers; every write is admin-only. Static paths are declared
before the /{item_id} routes so they are matched first.
"""
import csv
import io
import logging
from decimal import Decimal, InvalidOperation
from typing import List, Optional

from fastapi import APIRouter, Depends, File, UploadFile, status
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from .. import auth, cache, crud, ledger, models, queries, schemas
from ..auth import Identity
from ..database import get_db
from ..exceptions import InvariantViolation, NotFound

router = APIRouter(prefix="/inventory", tags=["Inventory"])
logger = logging.getLogger(__name__)

CSV_COLUMNS = ["o_id", "name", "category", "vendor", "location", "count", "price", "active"]


@router.get("/", response_model=List[schemas.InventoryItem])
def list_inventory_items(
    category: Optional[str] = None,
    active: Optional[bool] = True,
    search: Optional[str] = None,
    skip: int = 0,
    limit: int = 100,
    db: Session = Depends(get_db),
):
    """
    List catalog items, newest oId first.

    Args:
        category: Only items in this category
        active: Active (default) or archived items; omit filter with ?active=
        search: Case-insensitive match on name, vendor or description
        skip: Number of records to skip (default: 0)
        limit: Maximum number of records to return (default: 100)
    """
    return crud.get_inventory_items(db, category=category, active=active, search=search, skip=skip, limit=limit)


@router.get("/all", response_model=List[schemas.InventoryItem])
def list_all_inventory(
    db: Session = Depends(get_db),
    identity: Identity = Depends(auth.get_identity),
):
    """Every item including archived ones (admin only)."""
    return crud.get_all_inventory(db, identity)


@router.get("/categories", response_model=List[str])
def list_categories(db: Session = Depends(get_db)):
    return queries.get_categories(db)


@router.get("/analytics")
def get_analytics(
    db: Session = Depends(get_db),
    identity: Identity = Depends(auth.get_identity),
):
    """
    Catalog-wide counters (admin only).

    Returns:
        dict: total_items, total_units, units_in_use, units_available,
            fully_allocated, archived
    """
    auth.require_admin(db, identity)
    return queries.inventory_summary(db)


@router.get("/most-recent")
def get_most_recent(db: Session = Depends(get_db)):
    """Highest oId in the catalog (null when empty)."""
    return {"o_id": queries.get_most_recent_o_id(db)}


@router.get("/ledger/audit", response_model=List[schemas.LedgerDrift])
def audit_ledger(
    db: Session = Depends(get_db),
    identity: Identity = Depends(auth.get_identity),
):
    """Items whose in_use differs from their unreturned assignments (admin only)."""
    return ledger.audit_ledger(db, identity)


@router.get("/export/csv")
def export_inventory_csv(
    db: Session = Depends(get_db),
    identity: Identity = Depends(auth.get_identity),
):
    """
    Export the whole catalog to CSV (admin only).

    Returns:
        CSV file with columns: id, o_id, name, category, vendor, location,
        count, in_use, price, active, created_at
    """
    items = crud.get_all_inventory(db, identity)

    output = io.StringIO()
    writer = csv.writer(output)

    # Write header
    writer.writerow(["id"] + CSV_COLUMNS[:6] + ["in_use", "price", "active", "created_at"])

    for item in items:
        writer.writerow([
            item.id,
            item.o_id,
            item.name,
            item.category,
            item.vendor,
            item.location,
            item.count,
            item.in_use,
            item.price,
            item.active,
            item.created_at.isoformat(),
        ])

    output.seek(0)
    return StreamingResponse(
        iter([output.getvalue()]),
        media_type="text/csv",
        headers={"Content-Disposition": "attachment; filename=inventory.csv"},
    )


def _parse_bool(value: str) -> bool:
    return value.strip().lower() not in ("0", "false", "no")


@router.post("/import/csv")
def import_inventory_csv(
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    identity: Identity = Depends(auth.get_identity),
):
    """
    Import catalog items from CSV with upsert logic (admin only).

    Expected CSV columns: o_id, name, category, vendor, location, count, price, active
    - Updates existing items (matched by o_id); count may not drop below in_use
    - Creates new items; a blank o_id gets the next free one
    - in_use is never imported

    Returns:
        dict: Summary with created_count, updated_count, skipped_count, and errors list
    """
    auth.require_admin(db, identity)
    if not file.filename or not file.filename.endswith(".csv"):
        raise InvariantViolation("File must be a CSV")

    content = file.file.read().decode("utf-8")
    reader = csv.DictReader(io.StringIO(content))

    created_count = 0
    updated_count = 0
    skipped_count = 0
    errors = []
    pending_o_ids = set()

    for row_num, row in enumerate(reader, start=2):  # row 1 is the header
        name = (row.get("name") or "").strip()
        o_id_str = (row.get("o_id") or "").strip()
        count_str = (row.get("count") or "0").strip()
        price_str = (row.get("price") or "0").strip()

        if not name:
            errors.append(f"Row {row_num}: Missing name")
            skipped_count += 1
            continue
        try:
            o_id = int(o_id_str) if o_id_str else None
            count = int(count_str)
            price = Decimal(price_str)
        except (ValueError, InvalidOperation):
            errors.append(f"Row {row_num}: Invalid number in o_id, count or price")
            skipped_count += 1
            continue
        if not price.is_finite():
            errors.append(f"Row {row_num}: Price must be a finite number")
            skipped_count += 1
            continue
        if count < 0 or price < 0 or (o_id is not None and o_id < 1):
            errors.append(f"Row {row_num}: Negative or zero values are not allowed")
            skipped_count += 1
            continue

        fields = {
            "name": name,
            "category": (row.get("category") or "").strip(),
            "vendor": (row.get("vendor") or "").strip(),
            "location": (row.get("location") or "").strip(),
            "count": count,
            "price": price,
        }
        if (row.get("active") or "").strip():
            fields["active"] = _parse_bool(row["active"])

        existing = crud.get_inventory_item_by_o_id(db, o_id) if o_id is not None else None
        if existing is not None:
            if count < existing.in_use:
                errors.append(f"Row {row_num}: count {count} is below units in use ({existing.in_use})")
                skipped_count += 1
                continue
            if fields.get("active") is False and existing.in_use > 0:
                errors.append(f"Row {row_num}: cannot archive an item with units in use")
                skipped_count += 1
                continue
            for key, value in fields.items():
                setattr(existing, key, value)
            updated_count += 1
        else:
            if o_id is None:
                o_id = max([crud.next_o_id(db)] + [p + 1 for p in pending_o_ids])
            if o_id in pending_o_ids:
                errors.append(f"Row {row_num}: duplicate o_id {o_id}")
                skipped_count += 1
                continue
            pending_o_ids.add(o_id)
            db.add(models.InventoryItem(o_id=o_id, in_use=0, **fields))
            created_count += 1

    try:
        db.commit()
    except Exception as e:
        db.rollback()
        logger.error(f"CSV import failed: {e}")
        raise
    cache.invalidate_categories()
    logger.info(f"CSV import by {identity.subject}: {created_count} created, {updated_count} updated, {skipped_count} skipped")

    return {
        "created_count": created_count,
        "updated_count": updated_count,
        "skipped_count": skipped_count,
        "errors": errors,
    }


@router.post("/order/swap", response_model=List[schemas.InventoryItem])
def swap_order(
    swap: schemas.OrderKeySwap,
    db: Session = Depends(get_db),
    identity: Identity = Depends(auth.get_identity),
):
    """Write key_b onto item A and key_a onto item B (admin only)."""
    return crud.swap_inventory_order(db, identity, swap)


@router.get("/by-oid/{o_id}", response_model=schemas.InventoryItemDetail)
def get_inventory_item_by_o_id(o_id: int, db: Session = Depends(get_db)):
    db_item = crud.get_inventory_item_by_o_id(db, o_id)
    if db_item is None:
        raise NotFound("Inventory item not found")
    return crud.get_item_detail(db, db_item)


@router.get("/by-oid/{o_id}/adjacent", response_model=schemas.AdjacentItems)
def get_adjacent(o_id: int, db: Session = Depends(get_db)):
    """Previous and next item when browsing the active catalog; no wraparound."""
    return queries.bounded_adjacent(db, o_id)


@router.post("/", response_model=schemas.InventoryItem, status_code=status.HTTP_201_CREATED)
def create_inventory_item(
    item: schemas.InventoryItemCreate,
    db: Session = Depends(get_db),
    identity: Identity = Depends(auth.get_identity),
):
    """Create a new catalog item (admin only)."""
    return crud.create_inventory_item(db, identity, item)


@router.delete("/images/{image_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_extra_image(
    image_id: int,
    db: Session = Depends(get_db),
    identity: Identity = Depends(auth.get_identity),
):
    crud.delete_extra_image(db, identity, image_id)


@router.get("/{item_id}", response_model=schemas.InventoryItemDetail)
def get_inventory_item(item_id: int, db: Session = Depends(get_db)):
    """
    Get a single inventory item with its extra images.

    Raises:
        NotFound: 404 if item not found
    """
    db_item = crud.get_inventory_item(db, item_id)
    if db_item is None:
        raise NotFound("Inventory item not found")
    return crud.get_item_detail(db, db_item)


@router.get("/{item_id}/availability", response_model=Optional[schemas.Availability])
def get_availability(item_id: int, db: Session = Depends(get_db)):
    """Units owned, in use and available; null when the item does not exist."""
    return queries.get_availability(db, item_id)


@router.put("/{item_id}", response_model=schemas.InventoryItem)
def update_inventory_item(
    item_id: int,
    item: schemas.InventoryItemUpdate,
    db: Session = Depends(get_db),
    identity: Identity = Depends(auth.get_identity),
):
    """Update an item (admin only). count may not drop below in_use."""
    return crud.update_inventory_item(db, identity, item_id, item)


@router.delete("/{item_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_inventory_item(
    item_id: int,
    db: Session = Depends(get_db),
    identity: Identity = Depends(auth.get_identity),
):
    """
    Delete an item and its extra images (admin only).

    Raises:
        CannotDelete: 409 if units are in use or project assignments reference it
    """
    crud.delete_inventory_item(db, identity, item_id)


@router.post("/{item_id}/move", response_model=schemas.InventoryItem)
def move_inventory_item(
    item_id: int,
    move: schemas.MoveRequest,
    db: Session = Depends(get_db),
    identity: Identity = Depends(auth.get_identity),
):
    """Swap oId with the previous/next item, wrapping at the ends (admin only)."""
    return crud.move_inventory_item(db, identity, item_id, move.direction)


@router.post("/{item_id}/images", response_model=schemas.ExtraImage, status_code=status.HTTP_201_CREATED)
def add_extra_image(
    item_id: int,
    image: schemas.ExtraImageCreate,
    db: Session = Depends(get_db),
    identity: Identity = Depends(auth.get_identity),
):
    return crud.add_extra_image(db, identity, item_id, image)


@router.post("/{item_id}/images/swap", response_model=schemas.InventoryItemDetail)
def swap_images(
    item_id: int,
    swap: schemas.ImageSwap,
    db: Session = Depends(get_db),
    identity: Identity = Depends(auth.get_identity),
):
    """Swap two images by 1-based position; position 1 is the main image (admin only)."""
    return crud.reorder_images_by_swapping(db, identity, item_id, swap.position1, swap.position2)


@router.post("/{item_id}/images/move", response_model=schemas.InventoryItemDetail)
def move_image(
    item_id: int,
    move: schemas.ImageMove,
    db: Session = Depends(get_db),
    identity: Identity = Depends(auth.get_identity),
):
    return crud.move_image(db, identity, item_id, move.position, move.direction)
