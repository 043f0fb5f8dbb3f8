"""Compensating rollback for batch uploads."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

import structlog

from app.backend.src.core.errors import (
    BatchError,
    BatchNotFoundError,
    InvalidBatchStateError,
)
from app.backend.src.models import BatchUpload

from .batch_items import BatchItemTracker
from .batch_repository import BatchRepository
from .metrics import batch_rollbacks_total

LOGGER = structlog.get_logger(__name__)


@dataclass(frozen=True)
class BatchRollbackResult:
    batch_id: int
    contributions_deleted: int
    cases_deleted: int
    items_reset: int

    @property
    def message(self) -> str:
        return (
            f"Batch upload rolled back. Removed {self.cases_deleted} cases "
            f"and {self.contributions_deleted} contributions."
        )


def _load_for_write(repository: BatchRepository, batch_id: int) -> BatchUpload:
    batch = repository.get_batch(batch_id, for_update=True)
    if batch is None:
        raise BatchNotFoundError(f"Batch upload {batch_id} not found", batch_id=batch_id)
    return batch


def rollback_batch(repository: BatchRepository, batch_id: int) -> BatchRollbackResult:
    """Delete everything the batch created and return it to pending.

    Deletion goes by the ``batch_id`` provenance tag, contributions before
    cases. All steps run in one transaction and are idempotent, so a failed
    rollback can simply be invoked again.
    """

    LOGGER.info("batch_rollback_started", batch_id=batch_id)
    try:
        with repository.atomic():
            batch = _load_for_write(repository, batch_id)
            if batch.status == "processing":
                raise InvalidBatchStateError(
                    f"Batch upload {batch_id} is processing; force-reset it before rolling back",
                    batch_id=batch_id,
                )

            contributions_deleted = repository.delete_contributions_by_batch(batch_id)
            cases_deleted = repository.delete_cases_by_batch(batch_id)
            items_reset = BatchItemTracker(repository).reset_all(batch_id)

            batch = _load_for_write(repository, batch_id)
            batch.status = "pending"
            batch.processed_items = 0
            batch.successful_items = 0
            batch.failed_items = 0
            batch.error_summary = None
            batch.completed_at = None
            repository.save_batch(batch)
    except BatchError:
        batch_rollbacks_total.labels(outcome="error").inc()
        raise

    batch_rollbacks_total.labels(outcome="success").inc()
    LOGGER.info(
        "batch_rollback_finished",
        batch_id=batch_id,
        contributions_deleted=contributions_deleted,
        cases_deleted=cases_deleted,
        items_reset=items_reset,
    )
    return BatchRollbackResult(
        batch_id=batch_id,
        contributions_deleted=contributions_deleted,
        cases_deleted=cases_deleted,
        items_reset=items_reset,
    )


def force_reset_batch(repository: BatchRepository, batch_id: int) -> BatchUpload:
    """Release a batch left in processing by a crashed run.

    Items caught mid-flight are marked failed and the batch is closed as
    failed, after which an ordinary rollback can clean it up.
    """

    with repository.atomic():
        batch = _load_for_write(repository, batch_id)
        if batch.status != "processing":
            raise InvalidBatchStateError(
                f"Batch upload {batch_id} is {batch.status}; only processing batches can be force-reset",
                batch_id=batch_id,
            )

        stranded = 0
        for item in repository.list_items(batch_id):
            if item.status in {"pending", "processing"}:
                item.status = "failed"
                item.case_id = None
                item.contribution_id = None
                item.error_message = "Processing interrupted; batch was force-reset"
                repository.save_item(item)
                stranded += 1

        items = repository.list_items(batch_id)
        successful = sum(1 for item in items if item.status == "success")
        failed = sum(1 for item in items if item.status == "failed")
        batch.status = "failed"
        batch.total_items = len(items)
        batch.successful_items = successful
        batch.failed_items = failed
        batch.processed_items = successful + failed
        batch.error_summary = {"message": "Processing interrupted; batch was force-reset"}
        batch.completed_at = datetime.now(timezone.utc)
        repository.save_batch(batch)

    LOGGER.warning("batch_force_reset", batch_id=batch_id, stranded_items=stranded)
    return batch


__all__ = ["BatchRollbackResult", "force_reset_batch", "rollback_batch"]
