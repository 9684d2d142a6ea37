from __future__ import annotations

from typing import Any

from kombu.exceptions import OperationalError

from vipledger.core.celery_app import celery_app
from vipledger.core.config import settings
from vipledger.core.logging import get_logger
from vipledger.tasks import events as _events  # noqa: F401

logger = get_logger(__name__)


def emit_loyalty_event(name: str, payload: dict[str, Any]) -> None:
    """Publish loyalty events through the message broker."""
    task = celery_app.tasks.get("events.loyalty")
    if task is None:
        raise RuntimeError("Loyalty event task not registered")
    try:
        task.apply_async((name, payload), queue=settings.LOYALTY_EVENTS_QUEUE, ignore_result=True)
    except OperationalError:
        # Broker outages must not undo a committed ledger write.
        logger.warning("Loyalty event not published", extra={"event": name, "payload": payload})
