"""Per-row status tracking for batch uploads."""

from __future__ import annotations

import structlog

from app.backend.src.core.errors import InvalidItemTransitionError, PersistenceError
from app.backend.src.models import BatchUploadItem

from .batch_repository import BatchRepository

LOGGER = structlog.get_logger(__name__)

# pending -> processing -> success | failed; only reset_all goes backwards.
_FORWARD_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"processing"}),
    "processing": frozenset({"success", "failed"}),
    "success": frozenset(),
    "failed": frozenset(),
}


class BatchItemTracker:
    """Applies the item state machine on top of a :class:`BatchRepository`."""

    def __init__(self, repository: BatchRepository) -> None:
        self.repository = repository

    def list_items(self, batch_id: int) -> list[BatchUploadItem]:
        return self.repository.list_items(batch_id)

    def _load(self, item_id: int) -> BatchUploadItem:
        item = self.repository.get_item(item_id)
        if item is None:
            raise PersistenceError(f"Batch item {item_id} not found")
        return item

    def _transition(self, item: BatchUploadItem, target: str) -> None:
        current = item.status or "pending"
        if target not in _FORWARD_TRANSITIONS.get(current, frozenset()):
            raise InvalidItemTransitionError(item.id, current, target)
        item.status = target

    def mark_processing(self, item_id: int) -> BatchUploadItem:
        item = self._load(item_id)
        self._transition(item, "processing")
        item.error_message = None
        self.repository.save_item(item)
        return item

    def mark_success(
        self,
        item_id: int,
        case_id: int,
        contribution_id: int,
        user_id: int | None = None,
    ) -> BatchUploadItem:
        item = self._load(item_id)
        self._transition(item, "success")
        item.case_id = case_id
        item.contribution_id = contribution_id
        if user_id is not None:
            item.user_id = user_id
        item.error_message = None
        self.repository.save_item(item)
        return item

    def mark_failed(self, item_id: int, reason: str) -> BatchUploadItem:
        item = self._load(item_id)
        self._transition(item, "failed")
        item.case_id = None
        item.contribution_id = None
        item.error_message = reason
        self.repository.save_item(item)
        LOGGER.info("batch_item_failed", item_id=item.id, batch_id=item.batch_id, reason=reason)
        return item

    def reset_all(self, batch_id: int) -> int:
        """Compensating transition: every item back to pending, links cleared."""

        return self.repository.reset_items(batch_id)


__all__ = ["BatchItemTracker"]
