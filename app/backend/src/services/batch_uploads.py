"""Service layer functions for batch upload management."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import structlog
from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from app.backend.src.core.config import get_settings
from app.backend.src.core.errors import (
    BatchNotFoundError,
    InvalidBatchStateError,
    UploadValidationError,
)
from app.backend.src.models import BatchUpload, BatchUploadItem, Case, Contribution, User

from .batch_parser import ParsedUpload, generate_summary, parse_upload
from .batch_repository import SqlAlchemyBatchRepository
from .batch_rollback import BatchRollbackResult, rollback_batch
from .batch_validation import normalize_nickname

LOGGER = structlog.get_logger(__name__)


@dataclass(frozen=True)
class NicknameMapping:
    nickname: str
    user_id: int | None


def _get_batch_or_404(session: Session, batch_id: int) -> BatchUpload:
    batch = session.get(BatchUpload, batch_id)
    if batch is None:
        raise BatchNotFoundError(f"Batch upload {batch_id} not found", batch_id=batch_id)
    return batch


def create_batch_upload(
    session: Session,
    *,
    filename: str,
    content: bytes,
    name: str | None = None,
    content_type: str | None = None,
    created_by: int | None = None,
) -> tuple[BatchUpload, ParsedUpload]:
    """Parse an uploaded spreadsheet and store it as a pending batch."""

    settings = get_settings()
    if len(content) > settings.batch_max_upload_bytes:
        raise UploadValidationError(
            f"File is larger than the {settings.batch_max_upload_bytes} byte upload limit"
        )

    parsed = parse_upload(filename, content)
    if not parsed.rows:
        raise UploadValidationError("No valid items found in file")

    uploaded_at = datetime.now(timezone.utc)
    batch = BatchUpload(
        name=(name or "").strip() or f"Batch Upload - {uploaded_at:%Y-%m-%d %H:%M}",
        source_file=filename,
        status="pending",
        total_items=len(parsed.rows),
        processed_items=0,
        successful_items=0,
        failed_items=0,
        created_by=created_by,
        batch_metadata={
            "file_size": len(content),
            "file_type": content_type,
            "uploaded_at": uploaded_at.isoformat(),
            "skipped_rows": parsed.skipped,
            "summary": generate_summary(parsed.rows),
            "nickname_mappings": {},
        },
    )
    batch.items = [
        BatchUploadItem(
            row_number=row.row_number,
            case_number=row.case_key,
            case_title=row.case_title,
            contributor_nickname=row.contributor_nickname,
            amount=row.amount,
            month=row.month,
            status="pending",
        )
        for row in parsed.rows
    ]
    session.add(batch)
    session.commit()
    session.refresh(batch)

    LOGGER.info(
        "batch_upload_created",
        batch_id=batch.id,
        items=len(parsed.rows),
        skipped=parsed.skipped,
        created_by=created_by,
    )
    return batch, parsed


def list_batch_uploads(
    session: Session,
    *,
    status: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[BatchUpload]:
    """Return batch uploads newest first, optionally filtered by status."""

    query = select(BatchUpload).order_by(BatchUpload.created_at.desc(), BatchUpload.id.desc())
    if status:
        query = query.where(BatchUpload.status == status)
    return list(session.execute(query.offset(offset).limit(limit)).scalars())


def get_batch_upload(session: Session, batch_id: int) -> BatchUpload:
    return _get_batch_or_404(session, batch_id)


def get_batch_detail(session: Session, batch_id: int) -> dict[str, Any]:
    """Return the batch with its items, distinct nicknames and status counts."""

    batch = _get_batch_or_404(session, batch_id)
    items = list(
        session.execute(
            select(BatchUploadItem)
            .where(BatchUploadItem.batch_id == batch_id)
            .order_by(BatchUploadItem.row_number, BatchUploadItem.id)
        ).scalars()
    )

    nicknames: list[str] = []
    for item in items:
        if item.contributor_nickname and item.contributor_nickname not in nicknames:
            nicknames.append(item.contributor_nickname)

    statuses = Counter(item.status for item in items)
    return {
        "batch": batch,
        "items": items,
        "unique_nicknames": nicknames,
        "summary": {
            "total": len(items),
            "pending": statuses["pending"],
            "processing": statuses["processing"],
            "success": statuses["success"],
            "failed": statuses["failed"],
            "mapped": sum(1 for item in items if item.user_id is not None),
        },
    }


def map_nicknames(
    session: Session, batch_id: int, mappings: list[NicknameMapping]
) -> tuple[int, list[str]]:
    """Record contributor nickname mappings on a pending batch.

    Mappings live in the batch metadata so they survive a rollback; matching
    items also get ``user_id`` stamped for display. A ``None`` user id clears
    the mapping. Returns the number of applied mappings and any errors.
    """

    batch = _get_batch_or_404(session, batch_id)
    if batch.status != "pending":
        raise InvalidBatchStateError(
            "Can only map nicknames for pending batches", batch_id=batch_id
        )

    stored = dict((batch.batch_metadata or {}).get("nickname_mappings") or {})
    items = list(
        session.execute(
            select(BatchUploadItem).where(BatchUploadItem.batch_id == batch_id)
        ).scalars()
    )
    updated = 0
    errors: list[str] = []

    for mapping in mappings:
        key = normalize_nickname(mapping.nickname)
        if not key:
            errors.append("Invalid mapping: nickname is required")
            continue

        if mapping.user_id is not None and session.get(User, mapping.user_id) is None:
            errors.append(f"User not found: {mapping.user_id}")
            continue

        for existing in [name for name in stored if normalize_nickname(name) == key]:
            del stored[existing]
        if mapping.user_id is not None:
            stored[mapping.nickname.strip()] = mapping.user_id

        for item in items:
            if normalize_nickname(item.contributor_nickname) == key:
                item.user_id = mapping.user_id
        updated += 1

    # JSON columns are not mutation-tracked; assign a fresh dict.
    batch.batch_metadata = {**(batch.batch_metadata or {}), "nickname_mappings": stored}
    session.add(batch)
    session.commit()

    LOGGER.info("batch_nicknames_mapped", batch_id=batch_id, updated=updated, errors=len(errors))
    return updated, errors


def delete_batch_upload(session: Session, batch_id: int) -> dict[str, Any]:
    """Roll back a batch that created records, otherwise delete it outright."""

    repository = SqlAlchemyBatchRepository(session)
    batch = repository.get_batch(batch_id, for_update=True)
    if batch is None:
        raise BatchNotFoundError(f"Batch upload {batch_id} not found", batch_id=batch_id)
    if batch.successful_items > 0:
        result: BatchRollbackResult = rollback_batch(repository, batch_id)
        return {
            "action": "rolled_back",
            "message": result.message,
            "deleted": {"cases": result.cases_deleted, "contributions": result.contributions_deleted},
        }

    if batch.status == "processing":
        raise InvalidBatchStateError(
            f"Batch upload {batch_id} is processing and cannot be deleted", batch_id=batch_id
        )

    # A failed run may still have left provenance-tagged rows behind.
    contributions = session.execute(
        delete(Contribution).where(Contribution.batch_id == batch_id)
    ).rowcount
    cases = session.execute(delete(Case).where(Case.batch_id == batch_id)).rowcount
    session.delete(batch)
    session.commit()

    LOGGER.info("batch_upload_deleted", batch_id=batch_id, cases=cases, contributions=contributions)
    return {
        "action": "deleted",
        "message": f"Batch upload deleted. Removed {cases} cases and {contributions} contributions.",
        "deleted": {"cases": cases, "contributions": contributions},
    }


__all__ = [
    "NicknameMapping",
    "create_batch_upload",
    "delete_batch_upload",
    "get_batch_detail",
    "get_batch_upload",
    "list_batch_uploads",
    "map_nicknames",
]
