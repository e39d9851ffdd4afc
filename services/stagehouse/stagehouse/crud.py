"""
CRUD (Create, Read, Update, Delete) operations for the Stagehouse catalog.

This module contains the database operations for inventory items, their
extra images, catalog order and the user/role table. Every mutation takes
the caller's Identity and authorizes through auth.require_admin before
touching the database.
"""
import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import auth, cache, config, models, ordering, schemas
from .auth import Identity
from .exceptions import CannotDelete, InvariantViolation, NotFound, StagehouseError

logger = logging.getLogger(__name__)

# Fields exchanged between the item's main image and an extra image
IMAGE_FIELDS = ("image_path", "width", "height", "small_image_path", "small_width", "small_height")

# Fields an update may clear by sending null
NULLABLE_ITEM_FIELDS = {"cost", "small_image_path", "small_width", "small_height"}


# ---------------------------------------------------------------------------
# Inventory items
# ---------------------------------------------------------------------------

def get_inventory_item(db: Session, item_id: int) -> Optional[models.InventoryItem]:
    """
    Retrieve a single inventory item by ID.

    Args:
        db: Database session
        item_id: ID of the inventory item to retrieve

    Returns:
        InventoryItem object or None if not found
    """
    return db.query(models.InventoryItem).filter(models.InventoryItem.id == item_id).first()


def get_inventory_item_by_o_id(db: Session, o_id: int) -> Optional[models.InventoryItem]:
    """
    Retrieve an inventory item by its public sequence number.

    Args:
        db: Database session
        o_id: Sequence number to search for

    Returns:
        InventoryItem object or None if not found
    """
    return db.query(models.InventoryItem).filter(models.InventoryItem.o_id == o_id).first()


def get_inventory_items(
    db: Session,
    category: Optional[str] = None,
    active: Optional[bool] = True,
    search: Optional[str] = None,
    skip: int = 0,
    limit: int = 100,
) -> List[models.InventoryItem]:
    """
    Retrieve catalog items, newest sequence number first.

    Args:
        db: Database session
        category: Only items in this category
        active: Only active (True) or archived (False) items; None for both
        search: Case-insensitive match on name, vendor or description
        skip: Number of records to skip (offset)
        limit: Maximum number of records to return

    Returns:
        List of InventoryItem objects
    """
    query = db.query(models.InventoryItem)
    if category:
        query = query.filter(models.InventoryItem.category == category)
    if active is not None:
        query = query.filter(models.InventoryItem.active == active)
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(
            models.InventoryItem.name.ilike(pattern),
            models.InventoryItem.vendor.ilike(pattern),
            models.InventoryItem.description.ilike(pattern),
        ))
    return query.order_by(models.InventoryItem.o_id.desc()).offset(skip).limit(limit).all()


def get_all_inventory(db: Session, identity: Identity) -> List[models.InventoryItem]:
    """Every item, active and archived, by sequence number descending (admin only)."""
    auth.require_admin(db, identity)
    return db.query(models.InventoryItem).order_by(models.InventoryItem.o_id.desc()).all()


def next_o_id(db: Session) -> int:
    return (db.query(func.max(models.InventoryItem.o_id)).scalar() or 0) + 1


def create_inventory_item(db: Session, identity: Identity, item: schemas.InventoryItemCreate) -> models.InventoryItem:
    """
    Create a new inventory item with in_use = 0 (admin only).

    Args:
        db: Database session
        identity: Caller
        item: Inventory item data to create; o_id defaults to max(o_id) + 1

    Returns:
        Created InventoryItem object

    Raises:
        InvariantViolation: if the requested o_id is already taken
    """
    auth.require_admin(db, identity)

    data = item.model_dump()
    o_id = data.pop("o_id") or next_o_id(db)
    if get_inventory_item_by_o_id(db, o_id) is not None:
        raise InvariantViolation(f"oId {o_id} is already in use")

    now = datetime.utcnow()
    db_item = models.InventoryItem(**data, o_id=o_id, in_use=0, created_at=now, updated_at=now)
    try:
        db.add(db_item)
        db.commit()
    except Exception as e:
        db.rollback()
        logger.error(f"Failed to create inventory item '{item.name}': {e}")
        raise
    db.refresh(db_item)
    cache.invalidate_categories()
    logger.info(f"Created inventory item {db_item.id} (oId {db_item.o_id}) by {identity.subject}")
    return db_item


def update_inventory_item(db: Session, identity: Identity, item_id: int, item: schemas.InventoryItemUpdate) -> models.InventoryItem:
    """
    Update an existing inventory item (admin only).

    Only provided fields are updated. in_use and o_id are not editable here.

    Raises:
        NotFound: if the item does not exist
        InvariantViolation: if count would drop below in_use, or the item
            would be archived while units are in use
    """
    auth.require_admin(db, identity)
    db_item = get_inventory_item(db, item_id)
    if db_item is None:
        raise NotFound("Inventory item not found")

    update_data = {
        key: value for key, value in item.model_dump(exclude_unset=True).items()
        if value is not None or key in NULLABLE_ITEM_FIELDS
    }
    if "count" in update_data and update_data["count"] < db_item.in_use:
        raise InvariantViolation(
            f"Count cannot be lower than units in use ({db_item.in_use})"
        )
    if update_data.get("active") is False and db_item.in_use > 0:
        raise InvariantViolation(
            f"Cannot archive '{db_item.name}' while {db_item.in_use} units are in use"
        )

    for key, value in update_data.items():
        setattr(db_item, key, value)
    db_item.updated_at = datetime.utcnow()

    try:
        db.commit()
    except Exception as e:
        db.rollback()
        logger.error(f"Failed to update inventory item {item_id}: {e}")
        raise
    db.refresh(db_item)
    if "category" in update_data:
        cache.invalidate_categories()
    return db_item


def delete_inventory_item(db: Session, identity: Identity, item_id: int) -> None:
    """
    Delete an inventory item and its extra images (admin only).

    The ledger is append-only, so an item referenced by any assignment
    (returned or not) cannot be deleted; archive it instead.

    Raises:
        NotFound: if the item does not exist
        CannotDelete: if units are in use or ledger rows reference the item
    """
    auth.require_admin(db, identity)
    db_item = get_inventory_item(db, item_id)
    if db_item is None:
        raise NotFound("Inventory item not found")

    if db_item.in_use > 0:
        raise CannotDelete(f"Cannot delete '{db_item.name}': {db_item.in_use} units are in use")
    referenced = db.query(func.count(models.ProjectInventoryAssignment.id)).filter(
        models.ProjectInventoryAssignment.inventory_id == item_id
    ).scalar()
    if referenced:
        raise CannotDelete(
            f"Cannot delete '{db_item.name}': referenced by {referenced} project assignments; archive it instead"
        )

    try:
        db.query(models.ExtraImage).filter(
            models.ExtraImage.inventory_id == item_id
        ).delete(synchronize_session=False)
        # Flush to ensure child rows are removed before deleting parent
        db.flush()
        db.delete(db_item)
        db.commit()
    except Exception as e:
        db.rollback()
        logger.error(f"Failed to delete inventory item {item_id}: {e}")
        raise
    cache.invalidate_categories()
    logger.info(f"Deleted inventory item {item_id} by {identity.subject}")


# ---------------------------------------------------------------------------
# Catalog order
# ---------------------------------------------------------------------------

def move_inventory_item(db: Session, identity: Identity, item_id: int, direction: str) -> models.InventoryItem:
    """
    Move an item one step in the catalog, wrapping at the ends (admin only).

    The catalog order is o_id ascending over every item; "up" swaps o_id with
    the predecessor, "down" with the successor. Moving the first item up
    swaps it with the last one.

    Returns:
        The moved item with its new o_id
    """
    auth.require_admin(db, identity)
    catalog = db.query(models.InventoryItem).order_by(models.InventoryItem.o_id.asc()).all()
    try:
        neighbor = ordering.cyclic_swap_neighbor(db, catalog, item_id, direction, "o_id", unique=True)
        db.commit()
    except StagehouseError:
        db.rollback()
        raise
    except Exception as e:
        db.rollback()
        logger.error(f"Failed to move inventory item {item_id} {direction}: {e}")
        raise

    db_item = get_inventory_item(db, item_id)
    if neighbor is not None:
        logger.info(f"Moved inventory item {item_id} {direction}: now oId {db_item.o_id}")
    return db_item


def swap_inventory_order(db: Session, identity: Identity, swap: schemas.OrderKeySwap) -> List[models.InventoryItem]:
    """
    Write key_b onto item A and key_a onto item B (admin only).

    Raises:
        NotFound: if either item does not exist
        InvariantViolation: if a key collides with a third item's o_id
    """
    auth.require_admin(db, identity)
    try:
        item_a, item_b = ordering.swap_order_keys(
            db, models.InventoryItem, "o_id",
            swap.id_a, swap.key_a, swap.id_b, swap.key_b,
            unique=True,
        )
        db.commit()
    except IntegrityError as e:
        db.rollback()
        logger.warning(f"Order swap {swap.id_a}<->{swap.id_b} collided: {e.orig}")
        raise InvariantViolation("oId already used by another item")
    except StagehouseError:
        db.rollback()
        raise
    except Exception as e:
        db.rollback()
        logger.error(f"Failed to swap order of {swap.id_a} and {swap.id_b}: {e}")
        raise
    db.refresh(item_a)
    db.refresh(item_b)
    return [item_a, item_b]


# ---------------------------------------------------------------------------
# Extra images
# ---------------------------------------------------------------------------

def get_extra_images(db: Session, inventory_id: int) -> List[models.ExtraImage]:
    return db.query(models.ExtraImage).filter(
        models.ExtraImage.inventory_id == inventory_id
    ).order_by(models.ExtraImage.display_order.asc(), models.ExtraImage.id.asc()).all()


def get_item_detail(db: Session, db_item: models.InventoryItem) -> schemas.InventoryItemDetail:
    """Item with its extra images in display order."""
    return schemas.InventoryItemDetail(
        **schemas.InventoryItem.model_validate(db_item).model_dump(),
        extra_images=[schemas.ExtraImage.model_validate(i) for i in get_extra_images(db, db_item.id)],
    )


def add_extra_image(db: Session, identity: Identity, inventory_id: int, image: schemas.ExtraImageCreate) -> models.ExtraImage:
    """
    Append an extra image to an item (admin only).

    Raises:
        NotFound: if the item does not exist
    """
    auth.require_admin(db, identity)
    if get_inventory_item(db, inventory_id) is None:
        raise NotFound("Inventory item not found")

    last = db.query(func.max(models.ExtraImage.display_order)).filter(
        models.ExtraImage.inventory_id == inventory_id
    ).scalar()
    db_image = models.ExtraImage(
        **image.model_dump(),
        inventory_id=inventory_id,
        display_order=(last or 0) + 1,
        created_at=datetime.utcnow(),
    )
    try:
        db.add(db_image)
        db.commit()
    except Exception as e:
        db.rollback()
        logger.error(f"Failed to add image to inventory item {inventory_id}: {e}")
        raise
    db.refresh(db_image)
    return db_image


def delete_extra_image(db: Session, identity: Identity, image_id: int) -> None:
    auth.require_admin(db, identity)
    db_image = db.get(models.ExtraImage, image_id)
    if db_image is None:
        raise NotFound("Image not found")
    try:
        db.delete(db_image)
        db.commit()
    except Exception as e:
        db.rollback()
        logger.error(f"Failed to delete extra image {image_id}: {e}")
        raise


def _swap_payload(db_item: models.InventoryItem, extra: models.ExtraImage) -> None:
    main_filename = db_item.image_path.rsplit("/", 1)[-1]
    for field in IMAGE_FIELDS:
        main_value = getattr(db_item, field)
        setattr(db_item, field, getattr(extra, field))
        setattr(extra, field, main_value)
    # The main image has no title of its own; its filename stands in
    extra.title = main_filename


def reorder_images_by_swapping(db: Session, identity: Identity, inventory_id: int, position1: int, position2: int) -> schemas.InventoryItemDetail:
    """
    Swap two images of an item by 1-based position (admin only).

    Position 1 is the item's main image; extra images follow in display
    order. Two extras swap display_order keys. Swapping with position 1
    exchanges the image itself between the main image fields and the extra;
    the extra is then titled with the old main image's filename.

    Raises:
        NotFound: if the item does not exist or a position is out of range
    """
    auth.require_admin(db, identity)
    db_item = get_inventory_item(db, inventory_id)
    if db_item is None:
        raise NotFound("Inventory item not found")

    extras = get_extra_images(db, inventory_id)
    ordering.check_positions(len(extras) + 1, position1, position2)
    if position1 == position2:
        return get_item_detail(db, db_item)

    low, high = sorted((position1, position2))
    try:
        if low == 1:
            _swap_payload(db_item, extras[high - 2])
        else:
            a, b = extras[low - 2], extras[high - 2]
            ordering.swap_order_keys(
                db, models.ExtraImage, "display_order",
                a.id, a.display_order, b.id, b.display_order,
            )
        db_item.updated_at = datetime.utcnow()
        db.commit()
    except StagehouseError:
        db.rollback()
        raise
    except Exception as e:
        db.rollback()
        logger.error(f"Failed to swap images {position1} and {position2} of inventory item {inventory_id}: {e}")
        raise

    db.refresh(db_item)
    return get_item_detail(db, db_item)


def move_image(db: Session, identity: Identity, inventory_id: int, position: int, direction: str) -> schemas.InventoryItemDetail:
    """
    Move an image one position up or down, wrapping at the ends (admin only).

    A single-image collection is left unchanged.
    """
    auth.require_admin(db, identity)
    if get_inventory_item(db, inventory_id) is None:
        raise NotFound("Inventory item not found")

    size = len(get_extra_images(db, inventory_id)) + 1
    ordering.check_positions(size, position)
    target = ordering.cyclic_neighbor_position(position, size, direction)
    return reorder_images_by_swapping(db, identity, inventory_id, position, target)


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------

def get_user_by_subject(db: Session, subject: str) -> Optional[models.User]:
    """
    Retrieve a user by identity-provider subject.

    Returns:
        User object or None if not found
    """
    return db.query(models.User).filter(models.User.subject == subject).first()


def sync_user(db: Session, identity: Identity) -> models.User:
    """
    Create or refresh the caller's user row from their token claims.

    Subjects listed in ADMIN_SUBJECTS are created as admins; an existing
    user's role is never changed here.
    """
    subject = auth.require_authenticated(identity)
    db_user = get_user_by_subject(db, subject)
    now = datetime.utcnow()
    try:
        if db_user is None:
            role = "admin" if subject in config.ADMIN_SUBJECTS else "customer"
            db_user = models.User(
                subject=subject,
                email=identity.email or "",
                name=identity.name,
                role=role,
                created_at=now,
                updated_at=now,
            )
            db.add(db_user)
            logger.info(f"Registered user {subject} as {role}")
        else:
            if identity.email:
                db_user.email = identity.email
            if identity.name:
                db_user.name = identity.name
            db_user.updated_at = now
        db.commit()
    except Exception as e:
        db.rollback()
        logger.error(f"Failed to sync user {subject}: {e}")
        raise
    db.refresh(db_user)
    return db_user


def set_user_role(db: Session, identity: Identity, subject: str, role: str) -> models.User:
    """
    Change a user's role (admin only).

    Raises:
        NotFound: if the user never synced
    """
    admin = auth.require_admin(db, identity)
    db_user = get_user_by_subject(db, subject)
    if db_user is None:
        raise NotFound("User not found")

    db_user.role = role
    db_user.updated_at = datetime.utcnow()
    try:
        db.commit()
    except Exception as e:
        db.rollback()
        logger.error(f"Failed to set role of {subject}: {e}")
        raise
    db.refresh(db_user)
    logger.info(f"Role of {subject} set to {role} by {admin}")
    return db_user
