"""
Ordering primitives shared by the catalog, item images, project images and
project priority order.

Two kinds of neighbor exist in this service. Moves (this module) wrap around:
moving the first element up targets the last one and vice versa. Browsing
(queries.bounded_adjacent) stops at the ends.

Nothing here commits; callers own the transaction.
"""
import logging
from typing import Iterable, List, Sequence

from sqlalchemy.orm import Session

from .exceptions import InvariantViolation, NotFound

logger = logging.getLogger(__name__)

UP = "up"
DOWN = "down"


def cyclic_neighbor_index(index: int, size: int, direction: str) -> int:
    """
    Index of the element an entity at `index` swaps with when moved.

    >>> cyclic_neighbor_index(0, 3, "up")
    2
    >>> cyclic_neighbor_index(2, 3, "down")
    0
    """
    if size < 1 or not 0 <= index < size:
        raise ValueError(f"index {index} out of range for size {size}")
    if direction == UP:
        return size - 1 if index == 0 else index - 1
    if direction == DOWN:
        return 0 if index == size - 1 else index + 1
    raise ValueError(f"Unknown direction: {direction}")


def cyclic_neighbor_position(position: int, size: int, direction: str) -> int:
    """1-based variant of cyclic_neighbor_index."""
    return cyclic_neighbor_index(position - 1, size, direction) + 1


def swap_order_keys(db: Session, model, key_attr: str, id_a: int, key_a: int, id_b: int, key_b: int, unique: bool = False):
    """
    Write key_b onto entity A and key_a onto entity B.

    For a unique key column, A is first parked on a negative key so the
    index never holds two equal values between flushes.

    Raises:
        NotFound: if either entity does not exist
    """
    entity_a = db.get(model, id_a)
    if entity_a is None:
        raise NotFound(f"{model.__name__} {id_a} not found")
    entity_b = db.get(model, id_b)
    if entity_b is None:
        raise NotFound(f"{model.__name__} {id_b} not found")
    if id_a == id_b:
        return entity_a, entity_b

    if unique:
        setattr(entity_a, key_attr, -entity_a.id)
        db.flush()
        setattr(entity_b, key_attr, key_a)
        db.flush()
    else:
        setattr(entity_b, key_attr, key_a)
    setattr(entity_a, key_attr, key_b)
    db.flush()

    logger.debug(f"Swapped {model.__name__}.{key_attr}: {id_a} -> {key_b}, {id_b} -> {key_a}")
    return entity_a, entity_b


def _index_of(ordered: Sequence, entity_id: int) -> int:
    for i, entity in enumerate(ordered):
        if entity.id == entity_id:
            return i
    raise NotFound(f"Entity {entity_id} not found in collection")


def cyclic_swap_neighbor(db: Session, ordered: Sequence, entity_id: int, direction: str, key_attr: str, unique: bool = False):
    """
    Swap an entity's order key with its wrapping neighbor.

    Args:
        ordered: The full collection, sorted ascending by key_attr
        entity_id: Entity being moved
        direction: "up" (towards the start) or "down" (towards the end)

    Returns:
        The neighbor that was swapped with, or None for a one-element collection
    """
    index = _index_of(ordered, entity_id)
    if len(ordered) <= 1:
        return None

    current = ordered[index]
    neighbor = ordered[cyclic_neighbor_index(index, len(ordered), direction)]
    swap_order_keys(
        db, type(current), key_attr,
        current.id, getattr(current, key_attr),
        neighbor.id, getattr(neighbor, key_attr),
        unique=unique,
    )
    return neighbor


def renumber(entities: Iterable, key_attr: str = "display_order", start: int = 0) -> None:
    """Write start, start+1, ... onto the entities in iteration order."""
    for offset, entity in enumerate(entities):
        setattr(entity, key_attr, start + offset)


def move_to_end(ordered: Sequence, entity_id: int, end: str, key_attr: str = "display_order", start: int = 1) -> None:
    """
    Move an entity to the first or last slot and renumber the whole collection.

    Args:
        ordered: The full collection in its current order
        end: "first" or "last"
    """
    index = _index_of(ordered, entity_id)
    if len(ordered) <= 1:
        return
    moving = ordered[index]
    others = [e for e in ordered if e.id != entity_id]
    if end == "first":
        reordered = [moving] + others
    elif end == "last":
        reordered = others + [moving]
    else:
        raise ValueError(f"Unknown end: {end}")
    renumber(reordered, key_attr, start)


def set_display_order(collection: Sequence, ordered_ids: List[int], key_attr: str = "display_order") -> None:
    """
    Replace the order of a collection with the given id sequence (index = position).

    The id list must be a permutation of the collection's ids, so the
    resulting keys are exactly 0..N-1.

    Raises:
        NotFound: if an id does not belong to the collection
        InvariantViolation: if ids are duplicated or some are missing
    """
    by_id = {entity.id: entity for entity in collection}
    unknown = [i for i in ordered_ids if i not in by_id]
    if unknown:
        raise NotFound(f"Images not found in this collection: {unknown}")
    if len(set(ordered_ids)) != len(ordered_ids):
        raise InvariantViolation("Image order contains duplicate ids")
    if len(ordered_ids) != len(by_id):
        missing = sorted(set(by_id) - set(ordered_ids))
        raise InvariantViolation(f"Image order is missing ids: {missing}")

    for index, entity_id in enumerate(ordered_ids):
        setattr(by_id[entity_id], key_attr, index)


def check_positions(size: int, *positions: int) -> None:
    """
    Raises:
        NotFound: if any 1-based position is outside 1..size
    """
    for position in positions:
        if position < 1 or position > size:
            raise NotFound(f"Invalid position {position}. Must be between 1 and {size}")
