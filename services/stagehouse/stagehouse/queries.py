"""
Derived read operations over the catalog and projects.

None of these write. Categories and the public portfolio are served through
the Redis cache when one is configured.
"""
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from . import cache, config, models, schemas

logger = logging.getLogger(__name__)


def get_availability(db: Session, item_id: int) -> Optional[schemas.Availability]:
    """
    Units owned, in use and available for an item.

    Returns:
        Availability, or None if the item does not exist
    """
    item = db.get(models.InventoryItem, item_id)
    if item is None:
        return None
    return schemas.Availability(
        total=item.count,
        in_use=item.in_use,
        available=item.count - item.in_use,
    )


def bounded_adjacent(db: Session, o_id: int) -> schemas.AdjacentItems:
    """
    Neighbors of an item when browsing the active catalog.

    The catalog is browsed by o_id descending: next_o_id is the neighbor with
    the higher o_id and prev_o_id the one with the lower o_id. Browsing stops
    at both ends; unlike catalog moves it never wraps.

    Returns:
        AdjacentItems with None at a boundary, or both None if the item is
        not in the active catalog
    """
    o_ids = [
        row[0] for row in db.query(models.InventoryItem.o_id)
        .filter(models.InventoryItem.active.is_(True))
        .order_by(models.InventoryItem.o_id.desc())
        .all()
    ]
    if o_id not in o_ids:
        return schemas.AdjacentItems()

    index = o_ids.index(o_id)
    return schemas.AdjacentItems(
        next_o_id=o_ids[index - 1] if index > 0 else None,
        prev_o_id=o_ids[index + 1] if index < len(o_ids) - 1 else None,
    )


def get_categories(db: Session) -> List[str]:
    """Distinct non-empty categories, sorted ascending."""
    cached = cache.get_cache(cache.CATEGORIES_KEY)
    if cached is not None:
        return cached

    categories = sorted(
        row[0] for row in db.query(models.InventoryItem.category).distinct().all()
        if row[0]
    )
    cache.set_cache(cache.CATEGORIES_KEY, categories, ttl=config.CATEGORIES_CACHE_TTL)
    return categories


def get_highlighted_portfolio(db: Session, limit: int = 12) -> List[Dict[str, Any]]:
    """
    Highlighted projects, newest first, each with its images in display order.

    Args:
        db: Database session
        limit: Maximum number of projects to return

    Returns:
        JSON-ready project dicts (the same shape is cached in Redis)
    """
    key = cache.portfolio_key(limit)
    cached = cache.get_cache(key)
    if cached is not None:
        logger.debug(f"Portfolio cache hit for {key}")
        return cached

    projects = (
        db.query(models.Project)
        .filter(models.Project.highlighted.is_(True))
        .order_by(models.Project.created_at.desc(), models.Project.id.desc())
        .limit(limit)
        .all()
    )

    portfolio = []
    for project in projects:
        images = db.query(models.ProjectImage).filter(
            models.ProjectImage.project_id == project.id
        ).order_by(models.ProjectImage.display_order.asc()).all()
        entry = schemas.PortfolioProject(
            **schemas.Project.model_validate(project).model_dump(),
            images=[schemas.ProjectImage.model_validate(i) for i in images],
        )
        portfolio.append(entry.model_dump(mode="json"))

    cache.set_cache(key, portfolio, ttl=config.PORTFOLIO_CACHE_TTL)
    return portfolio


def get_most_recent_o_id(db: Session) -> Optional[int]:
    """Highest o_id in the catalog, None when it is empty."""
    return db.query(func.max(models.InventoryItem.o_id)).scalar()


def inventory_summary(db: Session) -> Dict[str, Any]:
    """
    Catalog-wide counters.

    Returns:
        dict: total_items, total_units, units_in_use, units_available,
            fully_allocated (items with nothing available), archived
    """
    total_items = db.query(func.count(models.InventoryItem.id)).scalar()
    total_units = db.query(func.sum(models.InventoryItem.count)).scalar() or 0
    units_in_use = db.query(func.sum(models.InventoryItem.in_use)).scalar() or 0

    fully_allocated = db.query(func.count(models.InventoryItem.id)).filter(
        models.InventoryItem.count > 0,
        models.InventoryItem.in_use == models.InventoryItem.count,
    ).scalar()

    archived = db.query(func.count(models.InventoryItem.id)).filter(
        models.InventoryItem.active.is_(False)
    ).scalar()

    return {
        "total_items": total_items,
        "total_units": int(total_units),
        "units_in_use": int(units_in_use),
        "units_available": int(total_units) - int(units_in_use),
        "fully_allocated": fully_allocated,
        "archived": archived,
    }
