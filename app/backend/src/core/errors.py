"""Exception types raised by the batch upload services."""

from __future__ import annotations

from dataclasses import dataclass


class BatchError(Exception):
    """Base class for failures surfaced to API callers."""

    status_code: int = 400

    def __init__(self, message: str, *, batch_id: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.batch_id = batch_id


class BatchNotFoundError(BatchError):
    """The referenced batch upload does not exist."""

    status_code = 404


class InvalidBatchStateError(BatchError):
    """The batch is not in a status that allows the requested operation."""

    status_code = 409


class BatchConflictError(BatchError):
    """Another writer changed the batch status first."""

    status_code = 409


class BatchConfigurationError(BatchError):
    """Reference data required for processing is missing."""

    status_code = 500


class UploadValidationError(BatchError):
    """The uploaded file cannot be turned into batch items."""

    status_code = 400


class PersistenceError(BatchError):
    """A store read or write failed; the operation may be retried."""

    status_code = 503


class InvalidItemTransitionError(BatchError):
    """An item status change outside the allowed state machine."""

    status_code = 409

    def __init__(self, item_id: int, current: str, target: str) -> None:
        super().__init__(f"Item {item_id} cannot move from {current} to {target}")
        self.item_id = item_id
        self.current = current
        self.target = target


@dataclass(frozen=True)
class ValidationIssue:
    """A single problem found on an uploaded row."""

    code: str
    field: str
    message: str


class RowValidationError(Exception):
    """Raised by the row validator; recorded on the item, never on the batch."""

    def __init__(self, issues: list[ValidationIssue]) -> None:
        self.issues = list(issues)
        super().__init__("; ".join(issue.message for issue in self.issues))

    @property
    def codes(self) -> list[str]:
        return [issue.code for issue in self.issues]


__all__ = [
    "BatchConfigurationError",
    "BatchConflictError",
    "BatchError",
    "BatchNotFoundError",
    "InvalidBatchStateError",
    "InvalidItemTransitionError",
    "PersistenceError",
    "RowValidationError",
    "UploadValidationError",
    "ValidationIssue",
]
