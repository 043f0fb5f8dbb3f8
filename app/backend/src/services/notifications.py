"""Administrator notifications for batch upload events."""

from __future__ import annotations

from collections.abc import Callable

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.backend.src.models import BatchUpload, Notification, User

LOGGER = structlog.get_logger(__name__)

BatchNotifier = Callable[[BatchUpload], None]


def _batch_message(batch: BatchUpload) -> tuple[str, str]:
    if batch.status == "completed":
        title = "Batch upload completed"
    else:
        title = "Batch upload finished with errors"
    message = (
        f'Batch "{batch.name}" processed {batch.processed_items} of {batch.total_items} items: '
        f"{batch.successful_items} successful, {batch.failed_items} failed."
    )
    return title, message


def notify_admins_of_batch(session: Session, batch: BatchUpload) -> int:
    """Insert one notification per active administrator.

    Called after the batch outcome is committed; a failure here rolls back
    only the notifications. Returns the number of notifications written.
    """

    admin_ids = session.execute(
        select(User.id).where(User.role == "admin", User.is_active.is_(True))
    ).scalars().all()
    if not admin_ids:
        return 0

    title, message = _batch_message(batch)
    session.add_all(
        Notification(
            type="batch_upload_finished",
            recipient_id=admin_id,
            title=title,
            message=message,
            data={
                "batch_id": batch.id,
                "status": batch.status,
                "successful_items": batch.successful_items,
                "failed_items": batch.failed_items,
            },
            read=False,
        )
        for admin_id in admin_ids
    )
    try:
        session.commit()
    except SQLAlchemyError:
        session.rollback()
        raise
    LOGGER.info("batch_notifications_sent", batch_id=batch.id, recipients=len(admin_ids))
    return len(admin_ids)


def admin_notifier(session: Session) -> BatchNotifier:
    """Bind :func:`notify_admins_of_batch` to ``session`` for the orchestrator."""

    def _notify(batch: BatchUpload) -> None:
        notify_admins_of_batch(session, batch)

    return _notify


__all__ = ["BatchNotifier", "admin_notifier", "notify_admins_of_batch"]
