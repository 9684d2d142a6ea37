from __future__ import annotations

from vipledger.core.celery_app import celery_app
from vipledger.core.logging import get_logger

logger = get_logger(__name__)


@celery_app.task(name="events.loyalty", ignore_result=True)
def handle_loyalty_event(event_name: str, payload: dict) -> None:
    """Hand loyalty events (tier changes) to downstream adapters."""
    logger.info("Loyalty event received", extra={"event": event_name, "payload": payload})
