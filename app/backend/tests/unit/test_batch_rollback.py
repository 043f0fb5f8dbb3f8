"""Tests for batch rollback and force-reset."""

from __future__ import annotations

import os
import sys
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[4]))

os.environ.setdefault("DATABASE_URL", "sqlite:///./test_charity.db")

import pytest

from app.backend.src.core.errors import BatchNotFoundError, InvalidBatchStateError
from app.backend.src.models import Case, Contribution
from app.backend.src.services.batch_processor import process_batch
from app.backend.src.services.batch_repository import InMemoryBatchRepository
from app.backend.src.services.batch_rollback import force_reset_batch, rollback_batch

MAPPINGS = {"Abu Ali": 10, "Umm Khalid": 11}
ROWS = [
    {"case_number": "C-1", "case_title": "Roof repair", "contributor_nickname": "Abu Ali", "amount": "100", "month": "3"},
    {"case_number": "C-2", "case_title": "School fees", "contributor_nickname": "Umm Khalid", "amount": "40", "month": "4"},
    {"case_number": "C-3", "case_title": "Medical bills", "contributor_nickname": "Nobody", "amount": "25", "month": "4"},
]


def _processed_batch() -> tuple[InMemoryBatchRepository, int]:
    repository = InMemoryBatchRepository()
    batch = repository.add_batch([dict(row) for row in ROWS], mappings=MAPPINGS)
    process_batch(repository, batch.id)
    return repository, batch.id


def _snapshot(repository: InMemoryBatchRepository, batch_id: int) -> dict:
    batch = repository.get_batch(batch_id)
    return {
        "status": batch.status,
        "counters": (batch.total_items, batch.processed_items, batch.successful_items, batch.failed_items),
        "items": [(item.row_number, item.status) for item in repository.list_items(batch_id)],
        "cases": sorted((case.reference_number, case.current_amount) for case in repository.cases.values()),
        "contributions": sorted((row.donor_id, row.amount) for row in repository.contributions.values()),
    }


def test_rollback_removes_everything_the_batch_created() -> None:
    repository, batch_id = _processed_batch()
    repository.add_case(Case(batch_id=None, reference_number="MANUAL", title="Manual case"))
    assert len(repository.contributions) == 2

    result = rollback_batch(repository, batch_id)

    assert (result.contributions_deleted, result.cases_deleted, result.items_reset) == (2, 2, 3)
    assert "2 cases" in result.message
    assert repository.contributions == {}
    assert [case.reference_number for case in repository.cases.values()] == ["MANUAL"]

    batch = repository.get_batch(batch_id)
    assert batch.status == "pending"
    assert (batch.processed_items, batch.successful_items, batch.failed_items) == (0, 0, 0)
    assert batch.error_summary is None
    assert batch.completed_at is None
    for item in repository.list_items(batch_id):
        assert item.status == "pending"
        assert item.case_id is None and item.contribution_id is None
        assert item.error_message is None


def test_rollback_is_idempotent() -> None:
    repository, batch_id = _processed_batch()
    rollback_batch(repository, batch_id)
    first = _snapshot(repository, batch_id)

    result = rollback_batch(repository, batch_id)

    assert (result.contributions_deleted, result.cases_deleted) == (0, 0)
    assert _snapshot(repository, batch_id) == first


def test_process_rollback_process_is_deterministic() -> None:
    repository, batch_id = _processed_batch()
    before = _snapshot(repository, batch_id)

    rollback_batch(repository, batch_id)
    process_batch(repository, batch_id)

    assert _snapshot(repository, batch_id) == before


def test_rollback_deletes_contributions_before_cases() -> None:
    calls: list[str] = []

    class _RecordingRepository(InMemoryBatchRepository):
        def delete_contributions_by_batch(self, batch_id: int) -> int:
            calls.append("contributions")
            return super().delete_contributions_by_batch(batch_id)

        def delete_cases_by_batch(self, batch_id: int) -> int:
            calls.append("cases")
            return super().delete_cases_by_batch(batch_id)

    repository = _RecordingRepository()
    batch = repository.add_batch([dict(ROWS[0])], mappings=MAPPINGS)
    process_batch(repository, batch.id)

    rollback_batch(repository, batch.id)

    assert calls == ["contributions", "cases"]


def test_rollback_keeps_contributions_not_tagged_with_the_batch() -> None:
    repository, batch_id = _processed_batch()
    manual_case = repository.add_case(Case(batch_id=None, reference_number="MANUAL", title="Manual"))
    manual = repository.add_contribution(
        Contribution(batch_id=None, case_id=manual_case.id, donor_id=10, payment_method_id=1, amount=5)
    )

    rollback_batch(repository, batch_id)

    assert list(repository.contributions) == [manual.id]


def test_rollback_refuses_processing_batch() -> None:
    repository = InMemoryBatchRepository()
    batch = repository.add_batch([dict(ROWS[0])], mappings=MAPPINGS, status="processing")

    with pytest.raises(InvalidBatchStateError):
        rollback_batch(repository, batch.id)

    assert batch.status == "processing"


def test_rollback_missing_batch() -> None:
    with pytest.raises(BatchNotFoundError):
        rollback_batch(InMemoryBatchRepository(), 99)


def test_force_reset_releases_stuck_batch_for_rollback() -> None:
    repository = InMemoryBatchRepository()
    batch = repository.add_batch([dict(row) for row in ROWS], mappings=MAPPINGS)
    repository.claim_batch(batch.id)
    first, second, _ = repository.list_items(batch.id)
    first.status = "success"
    second.status = "processing"

    reset = force_reset_batch(repository, batch.id)

    assert reset.status == "failed"
    assert reset.completed_at is not None
    assert (reset.successful_items, reset.failed_items, reset.processed_items) == (1, 2, 3)
    assert [item.status for item in repository.list_items(batch.id)] == ["success", "failed", "failed"]

    rollback_batch(repository, batch.id)
    assert repository.get_batch(batch.id).status == "pending"


def test_force_reset_only_applies_to_processing_batches() -> None:
    repository = InMemoryBatchRepository()
    batch = repository.add_batch([dict(ROWS[0])], mappings=MAPPINGS)

    with pytest.raises(InvalidBatchStateError):
        force_reset_batch(repository, batch.id)
