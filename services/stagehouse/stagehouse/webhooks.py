"""
Webhook system for sending ledger event notifications.

Allows external systems (bookkeeping, warehouse dashboards) to subscribe to
inventory assignment and return events.
"""
import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, Optional
import httpx

from . import config

logger = logging.getLogger(__name__)

ASSIGNED = "inventory.assigned"
RETURNED = "inventory.returned"
PROJECT_DELETED = "project.deleted"


async def send_webhook(event_type: str, data: Dict[str, Any], transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
    """
    Send webhook notifications to all registered URLs.

    Args:
        event_type: Type of event (e.g., "inventory.assigned")
        data: Event data payload
        transport: Optional httpx transport (used by tests)
    """
    urls = config.WEBHOOK_URLS
    if not urls:
        return

    payload = {
        "event": event_type,
        "data": data,
        "timestamp": datetime.utcnow().isoformat(),
    }

    async with httpx.AsyncClient(timeout=config.WEBHOOK_TIMEOUT, transport=transport) as client:
        tasks = [send_single_webhook(client, url, payload) for url in urls]
        # Send all webhooks concurrently
        results = await asyncio.gather(*tasks, return_exceptions=True)

    for url, result in zip(urls, results):
        if isinstance(result, Exception):
            logger.error(f"Webhook delivery to {url} crashed: {result!r}")


async def send_single_webhook(client: httpx.AsyncClient, url: str, payload: Dict[str, Any]) -> bool:
    """
    Send a webhook to a single URL.

    Returns:
        True if the receiver accepted the payload
    """
    try:
        response = await client.post(url, json=payload)
    except httpx.HTTPError as e:
        logger.warning(f"Webhook error for {url}: {e}")
        return False

    if response.status_code >= 400:
        logger.warning(f"Webhook failed for {url}: HTTP {response.status_code}")
        return False
    return True


def assignment_payload(assignment) -> Dict[str, Any]:
    return {
        "assignment_id": assignment.id,
        "project_id": assignment.project_id,
        "inventory_id": assignment.inventory_id,
        "quantity": assignment.quantity,
        "price_per_item": str(assignment.price_per_item),
        "assigned_at": assignment.assigned_at.isoformat() if assignment.assigned_at else None,
        "returned_at": assignment.returned_at.isoformat() if assignment.returned_at else None,
    }
