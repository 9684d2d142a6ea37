"""Celery task definitions package."""

from vipledger.tasks import events  # noqa: F401

__all__ = ["events"]
