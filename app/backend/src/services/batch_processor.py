"""Batch orchestrator: turns pending batch items into cases and contributions."""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from time import perf_counter
from typing import Any

import structlog

from app.backend.src.core.config import get_settings
from app.backend.src.core.errors import (
    BatchConfigurationError,
    BatchConflictError,
    BatchNotFoundError,
    InvalidBatchStateError,
    PersistenceError,
    RowValidationError,
)
from app.backend.src.models import BatchUpload, BatchUploadItem, Case, Contribution

from .batch_items import BatchItemTracker
from .batch_repository import BatchRepository
from .batch_validation import (
    BatchItemIntent,
    BatchRow,
    build_resolution_table,
    parse_amount,
    validate_row,
)
from .metrics import batch_items_total, batch_processing_seconds, batch_runs_total
from .notifications import BatchNotifier

LOGGER = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ItemCounts:
    """Aggregate of item states; the source of truth for batch counters."""

    total: int
    pending: int
    processing: int
    successful: int
    failed: int

    @property
    def processed(self) -> int:
        return self.successful + self.failed


@dataclass
class BatchProcessResult:
    batch_id: int
    status: str
    processed_items: int
    successful_items: int
    failed_items: int
    errors: list[dict[str, Any]] = field(default_factory=list)

    @property
    def message(self) -> str:
        return (
            f"Processed {self.processed_items} items. "
            f"{self.successful_items} successful, {self.failed_items} failed."
        )


def count_items(items: Iterable[BatchUploadItem]) -> ItemCounts:
    """Fold item statuses into batch counters."""

    statuses = Counter(item.status for item in items)
    return ItemCounts(
        total=sum(statuses.values()),
        pending=statuses["pending"],
        processing=statuses["processing"],
        successful=statuses["success"],
        failed=statuses["failed"],
    )


def collect_errors(items: Iterable[BatchUploadItem]) -> list[dict[str, Any]]:
    return [
        {"item_id": item.id, "row_number": item.row_number, "error": item.error_message or "Unknown error"}
        for item in items
        if item.status == "failed"
    ]


def _case_targets(items: Iterable[BatchUploadItem]) -> dict[str, Decimal]:
    """Sum the positive amounts of every row sharing a case key."""

    targets: dict[str, Decimal] = {}
    for item in items:
        key = (item.case_number or "").strip()
        amount = parse_amount(item.amount)
        if key and amount is not None and amount > 0:
            targets[key] = targets.get(key, Decimal("0")) + amount
    return targets


class BatchProcessor:
    """Drives one ``process_batch`` run against a repository."""

    def __init__(
        self,
        repository: BatchRepository,
        *,
        payment_method_code: str | None = None,
        notifier: BatchNotifier | None = None,
    ) -> None:
        self.repository = repository
        self.tracker = BatchItemTracker(repository)
        self.payment_method_code = payment_method_code or get_settings().batch_default_payment_method
        self.notifier = notifier

    def run(self, batch_id: int) -> BatchProcessResult:
        started = perf_counter()
        batch = self.repository.get_batch(batch_id)
        if batch is None:
            raise BatchNotFoundError(f"Batch upload {batch_id} not found", batch_id=batch_id)
        if batch.status != "pending":
            raise InvalidBatchStateError(
                f"Batch upload {batch_id} is {batch.status}; only pending batches can be processed",
                batch_id=batch_id,
            )

        payment_method_id = self.repository.get_payment_method_id(self.payment_method_code)
        if payment_method_id is None:
            raise BatchConfigurationError(
                f"Default payment method ({self.payment_method_code}) not found",
                batch_id=batch_id,
            )

        if not self.repository.claim_batch(batch_id):
            raise BatchConflictError(
                f"Batch upload {batch_id} was claimed by another request", batch_id=batch_id
            )

        LOGGER.info("batch_processing_started", batch_id=batch_id, name=batch.name)
        resolution_table = build_resolution_table(batch.nickname_mappings)
        items = self.tracker.list_items(batch_id)
        targets = _case_targets(items)

        for item in items:
            if item.status != "pending":
                continue
            self._process_item(batch, item, resolution_table, targets, payment_method_id)

        result = self._finalize(batch_id)
        batch_processing_seconds.observe(perf_counter() - started)
        return result

    def _process_item(
        self,
        batch: BatchUpload,
        item: BatchUploadItem,
        resolution_table: Mapping[str, int],
        targets: Mapping[str, Decimal],
        payment_method_id: int,
    ) -> None:
        item_id = item.id
        self.tracker.mark_processing(item_id)
        self.repository.commit()

        try:
            intent = validate_row(BatchRow.from_item(item), resolution_table)
            case = self._find_or_create_case(batch, intent, targets, item.month)
            contribution = self.repository.add_contribution(
                Contribution(
                    batch_id=batch.id,
                    case_id=case.id,
                    donor_id=intent.donor_id,
                    payment_method_id=payment_method_id,
                    type="donation",
                    amount=intent.amount,
                    status="pending",
                    notes=f"Imported from batch upload - Month {item.month}",
                )
            )
            case.current_amount = Decimal(case.current_amount or 0) + intent.amount
            self.repository.save_case(case)
            self.tracker.mark_success(item_id, case.id, contribution.id, intent.donor_id)
            self.repository.commit()
        except (RowValidationError, PersistenceError) as exc:
            self.repository.rollback()
            self.tracker.mark_failed(item_id, str(exc))
            self.repository.commit()

    def _find_or_create_case(
        self,
        batch: BatchUpload,
        intent: BatchItemIntent,
        targets: Mapping[str, Decimal],
        month: str,
    ) -> Case:
        existing = self.repository.find_batch_case(batch.id, intent.case_key)
        if existing is not None:
            return existing

        description = f"Case imported from batch upload - Month {month}"
        return self.repository.add_case(
            Case(
                batch_id=batch.id,
                reference_number=intent.case_key,
                title=intent.title,
                description=description,
                type="one-time",
                priority="medium",
                target_amount=targets.get(intent.case_key, intent.amount),
                current_amount=Decimal("0"),
                status="draft",
                created_by=batch.created_by,
            )
        )

    def _finalize(self, batch_id: int) -> BatchProcessResult:
        items = self.tracker.list_items(batch_id)
        counts = count_items(items)
        errors = collect_errors(items)

        batch = self.repository.get_batch(batch_id)
        assert batch is not None
        batch.total_items = counts.total
        batch.processed_items = counts.processed
        batch.successful_items = counts.successful
        batch.failed_items = counts.failed
        if counts.total == 0:
            batch.status = "failed"
            batch.error_summary = {"message": "No items found"}
        else:
            batch.status = "completed" if counts.failed == 0 else "failed"
            batch.error_summary = {"errors": errors, "total_errors": len(errors)} if errors else None
        batch.completed_at = datetime.now(timezone.utc)
        self.repository.save_batch(batch)
        self.repository.commit()

        batch_runs_total.labels(status=batch.status).inc()
        batch_items_total.labels(status="success").inc(counts.successful)
        batch_items_total.labels(status="failed").inc(counts.failed)
        LOGGER.info(
            "batch_processing_finished",
            batch_id=batch_id,
            status=batch.status,
            successful_items=counts.successful,
            failed_items=counts.failed,
        )

        self._notify(batch)
        return BatchProcessResult(
            batch_id=batch_id,
            status=batch.status,
            processed_items=counts.processed,
            successful_items=counts.successful,
            failed_items=counts.failed,
            errors=errors,
        )

    def _notify(self, batch: BatchUpload) -> None:
        if self.notifier is None:
            return
        try:
            self.notifier(batch)
        except Exception as exc:
            LOGGER.warning("batch_notification_failed", batch_id=batch.id, error=str(exc))


def process_batch(
    repository: BatchRepository,
    batch_id: int,
    *,
    payment_method_code: str | None = None,
    notifier: BatchNotifier | None = None,
) -> BatchProcessResult:
    """Process every pending item of a pending batch.

    Row failures are recorded on their items and never abort the run; only a
    missing batch, a non-pending batch, missing reference data or a lost
    claim race raise.
    """

    processor = BatchProcessor(
        repository,
        payment_method_code=payment_method_code,
        notifier=notifier,
    )
    return processor.run(batch_id)


__all__ = [
    "BatchProcessResult",
    "BatchProcessor",
    "ItemCounts",
    "collect_errors",
    "count_items",
    "process_batch",
]
