"""Storage access used by the batch orchestrator and rollback compensator."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal
from itertools import count
from typing import Protocol

import structlog
from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.backend.src.core.errors import PersistenceError
from app.backend.src.models import (
    BatchUpload,
    BatchUploadItem,
    Case,
    Contribution,
    PaymentMethod,
)

LOGGER = structlog.get_logger(__name__)


class BatchRepository(Protocol):
    """Minimal protocol the batch services need from a store."""

    def get_batch(self, batch_id: int, *, for_update: bool = False) -> BatchUpload | None:
        """Return the batch or ``None``; ``for_update`` row-locks where supported."""

    def claim_batch(self, batch_id: int) -> bool:
        """Atomically move a batch from pending to processing."""

    def save_batch(self, batch: BatchUpload) -> None:
        """Persist changes made to ``batch``."""

    def list_items(self, batch_id: int) -> list[BatchUploadItem]:
        """Return the batch's items ordered by row number."""

    def get_item(self, item_id: int) -> BatchUploadItem | None:
        """Return a single item."""

    def save_item(self, item: BatchUploadItem) -> None:
        """Persist changes made to ``item``."""

    def reset_items(self, batch_id: int) -> int:
        """Return every item of the batch to pending with links cleared."""

    def get_payment_method_id(self, code: str) -> int | None:
        """Return the id of the active payment method with ``code``."""

    def find_batch_case(self, batch_id: int, case_key: str) -> Case | None:
        """Return the case this batch created for ``case_key``, if any."""

    def add_case(self, case: Case) -> Case:
        """Insert a case and return it with its id assigned."""

    def save_case(self, case: Case) -> None:
        """Persist changes made to ``case``."""

    def add_contribution(self, contribution: Contribution) -> Contribution:
        """Insert a contribution and return it with its id assigned."""

    def delete_contributions_by_batch(self, batch_id: int) -> int:
        """Delete contributions tagged with the batch; return the count."""

    def delete_cases_by_batch(self, batch_id: int) -> int:
        """Delete cases tagged with the batch; return the count."""

    def commit(self) -> None:
        """Make pending writes durable."""

    def rollback(self) -> None:
        """Discard pending writes."""

    def atomic(self):  # type: ignore[no-untyped-def]
        """Context manager committing on success and rolling back on error."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SqlAlchemyBatchRepository:
    """:class:`BatchRepository` backed by a SQLAlchemy session.

    Every database error is re-raised as :class:`PersistenceError` so callers
    never depend on SQLAlchemy exception types.
    """

    def __init__(self, session: Session) -> None:
        self.session = session

    @contextmanager
    def _translate(self, operation: str) -> Iterator[None]:
        try:
            yield
        except SQLAlchemyError as exc:
            LOGGER.warning("batch_store_error", operation=operation, error=str(exc))
            self.session.rollback()
            raise PersistenceError(f"Store failure during {operation}: {exc}") from exc

    def get_batch(self, batch_id: int, *, for_update: bool = False) -> BatchUpload | None:
        with self._translate("get_batch"):
            query = select(BatchUpload).where(BatchUpload.id == batch_id)
            if for_update:
                # Overwrite any copy already in the identity map with the locked row.
                query = query.with_for_update().execution_options(populate_existing=True)
            return self.session.execute(query).scalar_one_or_none()

    def claim_batch(self, batch_id: int) -> bool:
        with self._translate("claim_batch"):
            result = self.session.execute(
                update(BatchUpload)
                .where(BatchUpload.id == batch_id, BatchUpload.status == "pending")
                .values(status="processing", completed_at=None, updated_at=func.now())
                .execution_options(synchronize_session=False)
            )
            self.session.commit()
            claimed = result.rowcount == 1
            if claimed:
                batch = self.session.get(BatchUpload, batch_id)
                if batch is not None:
                    self.session.refresh(batch)
            return claimed

    def save_batch(self, batch: BatchUpload) -> None:
        with self._translate("save_batch"):
            self.session.add(batch)
            self.session.flush()

    def list_items(self, batch_id: int) -> list[BatchUploadItem]:
        with self._translate("list_items"):
            return list(
                self.session.execute(
                    select(BatchUploadItem)
                    .where(BatchUploadItem.batch_id == batch_id)
                    .order_by(BatchUploadItem.row_number, BatchUploadItem.id)
                ).scalars()
            )

    def get_item(self, item_id: int) -> BatchUploadItem | None:
        with self._translate("get_item"):
            return self.session.get(BatchUploadItem, item_id)

    def save_item(self, item: BatchUploadItem) -> None:
        with self._translate("save_item"):
            self.session.add(item)
            self.session.flush()

    def reset_items(self, batch_id: int) -> int:
        with self._translate("reset_items"):
            result = self.session.execute(
                update(BatchUploadItem)
                .where(BatchUploadItem.batch_id == batch_id)
                .values(
                    status="pending",
                    case_id=None,
                    contribution_id=None,
                    user_id=None,
                    error_message=None,
                    updated_at=func.now(),
                )
                .execution_options(synchronize_session=False)
            )
            self.session.expire_all()
            return result.rowcount

    def get_payment_method_id(self, code: str) -> int | None:
        with self._translate("get_payment_method_id"):
            return self.session.execute(
                select(PaymentMethod.id)
                .where(PaymentMethod.code == code, PaymentMethod.is_active.is_(True))
                .limit(1)
            ).scalar_one_or_none()

    def find_batch_case(self, batch_id: int, case_key: str) -> Case | None:
        with self._translate("find_batch_case"):
            return self.session.execute(
                select(Case)
                .where(Case.batch_id == batch_id, Case.reference_number == case_key)
                .order_by(Case.id)
                .limit(1)
            ).scalar_one_or_none()

    def add_case(self, case: Case) -> Case:
        with self._translate("add_case"):
            self.session.add(case)
            self.session.flush()
            return case

    def save_case(self, case: Case) -> None:
        with self._translate("save_case"):
            self.session.add(case)
            self.session.flush()

    def add_contribution(self, contribution: Contribution) -> Contribution:
        with self._translate("add_contribution"):
            self.session.add(contribution)
            self.session.flush()
            return contribution

    def delete_contributions_by_batch(self, batch_id: int) -> int:
        with self._translate("delete_contributions_by_batch"):
            result = self.session.execute(
                delete(Contribution)
                .where(Contribution.batch_id == batch_id)
                .execution_options(synchronize_session="fetch")
            )
            return result.rowcount

    def delete_cases_by_batch(self, batch_id: int) -> int:
        with self._translate("delete_cases_by_batch"):
            result = self.session.execute(
                delete(Case)
                .where(Case.batch_id == batch_id)
                .execution_options(synchronize_session="fetch")
            )
            return result.rowcount

    def commit(self) -> None:
        with self._translate("commit"):
            self.session.commit()

    def rollback(self) -> None:
        self.session.rollback()

    @contextmanager
    def atomic(self) -> Iterator[None]:
        try:
            yield
            self.commit()
        except Exception:
            self.rollback()
            raise


class InMemoryBatchRepository:
    """Dictionary-backed :class:`BatchRepository` for tests and local tooling.

    Writes are immediately visible; ``commit`` and ``rollback`` are no-ops,
    mirroring a store without multi-statement transactions.
    """

    def __init__(self, payment_methods: dict[str, int] | None = None) -> None:
        self.batches: dict[int, BatchUpload] = {}
        self.items: dict[int, BatchUploadItem] = {}
        self.cases: dict[int, Case] = {}
        self.contributions: dict[int, Contribution] = {}
        self.payment_methods = dict(payment_methods if payment_methods is not None else {"cash": 1})
        self._ids = {name: count(1) for name in ("batch", "item", "case", "contribution")}

    def add_batch(
        self,
        rows: list[dict],
        *,
        name: str = "Test batch",
        status: str = "pending",
        mappings: dict[str, int] | None = None,
    ) -> BatchUpload:
        """Seed a batch with one pending item per row dict."""

        batch = BatchUpload(
            id=next(self._ids["batch"]),
            name=name,
            source_file=f"{name}.csv",
            status=status,
            total_items=len(rows),
            processed_items=0,
            successful_items=0,
            failed_items=0,
            error_summary=None,
            batch_metadata={"nickname_mappings": dict(mappings or {})},
            created_at=_utcnow(),
            completed_at=_utcnow() if status in {"completed", "failed", "cancelled"} else None,
        )
        self.batches[batch.id] = batch
        for row_number, row in enumerate(rows, start=1):
            item = BatchUploadItem(
                id=next(self._ids["item"]),
                batch_id=batch.id,
                row_number=row_number,
                case_number=row.get("case_number", ""),
                case_title=row.get("case_title", ""),
                contributor_nickname=row.get("contributor_nickname", ""),
                amount=Decimal(str(row.get("amount", 0))),
                month=str(row.get("month", "")),
                status="pending",
                case_id=None,
                contribution_id=None,
                user_id=None,
                error_message=None,
            )
            self.items[item.id] = item
        return batch

    def get_batch(self, batch_id: int, *, for_update: bool = False) -> BatchUpload | None:
        return self.batches.get(batch_id)

    def claim_batch(self, batch_id: int) -> bool:
        batch = self.batches.get(batch_id)
        if batch is None or batch.status != "pending":
            return False
        batch.status = "processing"
        batch.completed_at = None
        batch.updated_at = _utcnow()
        return True

    def save_batch(self, batch: BatchUpload) -> None:
        batch.updated_at = _utcnow()
        self.batches[batch.id] = batch

    def list_items(self, batch_id: int) -> list[BatchUploadItem]:
        return sorted(
            (item for item in self.items.values() if item.batch_id == batch_id),
            key=lambda item: (item.row_number, item.id),
        )

    def get_item(self, item_id: int) -> BatchUploadItem | None:
        return self.items.get(item_id)

    def save_item(self, item: BatchUploadItem) -> None:
        item.updated_at = _utcnow()
        self.items[item.id] = item

    def reset_items(self, batch_id: int) -> int:
        reset = 0
        for item in self.list_items(batch_id):
            item.status = "pending"
            item.case_id = None
            item.contribution_id = None
            item.user_id = None
            item.error_message = None
            reset += 1
        return reset

    def get_payment_method_id(self, code: str) -> int | None:
        return self.payment_methods.get(code)

    def find_batch_case(self, batch_id: int, case_key: str) -> Case | None:
        for case in sorted(self.cases.values(), key=lambda case: case.id):
            if case.batch_id == batch_id and case.reference_number == case_key:
                return case
        return None

    def add_case(self, case: Case) -> Case:
        case.id = next(self._ids["case"])
        self.cases[case.id] = case
        return case

    def save_case(self, case: Case) -> None:
        self.cases[case.id] = case

    def add_contribution(self, contribution: Contribution) -> Contribution:
        if contribution.case_id is not None and contribution.case_id not in self.cases:
            raise PersistenceError(f"Case {contribution.case_id} does not exist")
        contribution.id = next(self._ids["contribution"])
        self.contributions[contribution.id] = contribution
        return contribution

    def delete_contributions_by_batch(self, batch_id: int) -> int:
        doomed = [key for key, row in self.contributions.items() if row.batch_id == batch_id]
        for key in doomed:
            del self.contributions[key]
        return len(doomed)

    def delete_cases_by_batch(self, batch_id: int) -> int:
        doomed = {key for key, row in self.cases.items() if row.batch_id == batch_id}
        if any(row.case_id in doomed for row in self.contributions.values()):
            raise PersistenceError("Cases are still referenced by contributions")
        for key in doomed:
            del self.cases[key]
        return len(doomed)

    def commit(self) -> None:
        return None

    def rollback(self) -> None:
        return None

    @contextmanager
    def atomic(self) -> Iterator[None]:
        yield


__all__ = [
    "BatchRepository",
    "InMemoryBatchRepository",
    "SqlAlchemyBatchRepository",
]
