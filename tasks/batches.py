"""Celery tasks for batch upload processing."""

from __future__ import annotations

from typing import Any

import structlog

from app.backend.src.core.config import get_settings
from app.backend.src.core.errors import BatchError
from app.backend.src.db import session_scope
from app.backend.src.services.batch_processor import process_batch
from app.backend.src.services.batch_repository import SqlAlchemyBatchRepository
from app.backend.src.services.notifications import admin_notifier
from .worker import celery

LOGGER = structlog.get_logger(__name__)


@celery.task(name="tasks.batches.process_batch_upload")
def process_batch_upload(batch_id: int) -> dict[str, Any]:
    """Run the batch orchestrator for ``batch_id`` on the worker."""

    settings = get_settings()
    try:
        with session_scope() as session:
            notifier = admin_notifier(session) if settings.batch_notifications_enabled else None
            result = process_batch(
                SqlAlchemyBatchRepository(session),
                batch_id,
                notifier=notifier,
            )
    except BatchError as exc:
        # Claim races and state errors are final; retrying cannot help.
        LOGGER.warning("celery_batch_rejected", batch_id=batch_id, error=exc.message)
        return {"batch_id": batch_id, "status": "rejected", "message": exc.message}

    LOGGER.info("celery_batch_success", batch_id=batch_id, status=result.status)
    return {
        "batch_id": result.batch_id,
        "status": result.status,
        "message": result.message,
        "successful_items": result.successful_items,
        "failed_items": result.failed_items,
    }


__all__ = ["process_batch_upload"]
