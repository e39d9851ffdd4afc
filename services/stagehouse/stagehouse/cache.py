"""
Redis caching utilities for the Stagehouse service.

Caches the public portfolio and the category list. Caching is disabled when
REDIS_URL is empty; every helper then behaves as a cache miss.
"""
import json
import logging
from typing import Optional, Any
import redis

from . import config

logger = logging.getLogger(__name__)

# Initialize Redis client
redis_client = redis.from_url(config.REDIS_URL, decode_responses=True) if config.REDIS_URL else None

PORTFOLIO_KEY_PREFIX = "portfolio"
CATEGORIES_KEY = "inventory:categories"


def get_cache(key: str) -> Optional[Any]:
    """
    Read a cached portfolio page or category list.

    Args:
        key: A portfolio_key(...) or CATEGORIES_KEY

    Returns:
        The decoded JSON value, or None on a miss, when caching is off,
        or when Redis is unreachable
    """
    if redis_client is None:
        return None
    try:
        value = redis_client.get(key)
        if value:
            return json.loads(value)
        return None
    except redis.RedisError as e:
        logger.warning(f"Cache get error: {e}")
        return None

def set_cache(key: str, value: Any, ttl: int = 300) -> bool:
    """
    Store a portfolio page or the category list as JSON.

    The value must already be plain dicts, lists and strings; queries
    dump the pydantic models before caching them.

    Args:
        key: A portfolio_key(...) or CATEGORIES_KEY
        value: JSON-serializable query result
        ttl: Seconds until the entry expires even without an invalidation

    Returns:
        False when caching is off or Redis refused the write
    """
    if redis_client is None:
        return False
    try:
        redis_client.setex(key, ttl, json.dumps(value))
        return True
    except redis.RedisError as e:
        logger.warning(f"Cache set error: {e}")
        return False

def delete_cache(key: str) -> bool:
    """Drop one cached entry, such as the category list after an item write."""
    if redis_client is None:
        return False
    try:
        redis_client.delete(key)
        return True
    except redis.RedisError as e:
        logger.warning(f"Cache delete error: {e}")
        return False

def delete_pattern(pattern: str) -> bool:
    """
    Drop every cached entry whose key matches pattern.

    Portfolio pages are cached per limit, so a project write clears them
    all with "portfolio:*".
    """
    if redis_client is None:
        return False
    try:
        keys = list(redis_client.scan_iter(match=pattern))
        if keys:
            redis_client.delete(*keys)
        return True
    except redis.RedisError as e:
        logger.warning(f"Cache delete pattern error: {e}")
        return False


def portfolio_key(limit: int) -> str:
    return f"{PORTFOLIO_KEY_PREFIX}:{limit}"


def invalidate_portfolio() -> None:
    """Drop every cached portfolio page. Call after committing a project or project-image write."""
    delete_pattern(f"{PORTFOLIO_KEY_PREFIX}:*")


def invalidate_categories() -> None:
    delete_cache(CATEGORIES_KEY)
