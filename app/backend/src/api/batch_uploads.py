"""Batch upload endpoints: upload, inspect, process, map nicknames, roll back."""

from __future__ import annotations

from typing import Annotated, Any

import structlog
from fastapi import (
    APIRouter,
    Depends,
    File,
    Form,
    HTTPException,
    Query,
    UploadFile,
    status,
)
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from app.backend.src.core.config import get_settings
from app.backend.src.core.errors import BatchError
from app.backend.src.core.security import require_admin_user, require_batch_operator
from app.backend.src.db import get_session_dependency
from app.backend.src.models import User
from app.backend.src.schemas.batch_upload import (
    BatchActionRequest,
    BatchDeleteResponse,
    BatchProcessResponse,
    BatchUploadCreated,
    BatchUploadDetail,
    BatchUploadRead,
    NicknameMappingResponse,
)
from app.backend.src.services import batch_uploads as batch_upload_service
from app.backend.src.services.batch_processor import process_batch
from app.backend.src.services.batch_repository import SqlAlchemyBatchRepository
from app.backend.src.services.batch_rollback import force_reset_batch
from app.backend.src.services.notifications import admin_notifier
from tasks.batches import process_batch_upload

LOGGER = structlog.get_logger(__name__)

router = APIRouter(prefix="/batch-upload", tags=["batch uploads"])

SessionDep = Annotated[Session, Depends(get_session_dependency)]
OperatorDep = Annotated[User, Depends(require_batch_operator)]


def _http_error(exc: BatchError) -> HTTPException:
    LOGGER.info(
        "batch_request_rejected",
        batch_id=exc.batch_id,
        error_type=type(exc).__name__,
        status_code=exc.status_code,
    )
    return HTTPException(status_code=exc.status_code, detail=exc.message)


# --------------------------------------------------------------------------
# POST /batch-upload
# --------------------------------------------------------------------------
@router.post("", response_model=BatchUploadCreated, status_code=status.HTTP_201_CREATED)
async def upload_batch(
    session: SessionDep,
    current_user: OperatorDep,
    file: UploadFile = File(...),
    name: str | None = Form(None),
) -> dict[str, Any]:
    """Parse a CSV/Excel upload into a pending batch."""

    contents = await file.read()
    if not contents:
        raise HTTPException(status_code=400, detail="Uploaded file is empty")

    LOGGER.info(
        "batch_upload_received",
        filename=file.filename,
        size=len(contents),
        user_id=current_user.id,
    )
    try:
        batch, parsed = await run_in_threadpool(
            batch_upload_service.create_batch_upload,
            session,
            filename=file.filename or "",
            content=contents,
            name=name,
            content_type=file.content_type,
            created_by=current_user.id,
        )
    except BatchError as exc:
        raise _http_error(exc) from exc

    return {
        "batch": batch,
        "summary": (batch.batch_metadata or {}).get("summary", {}),
        "skipped_rows": parsed.skipped,
    }


# --------------------------------------------------------------------------
# GET /batch-upload
# --------------------------------------------------------------------------
@router.get("", response_model=list[BatchUploadRead])
def list_batches(
    session: SessionDep,
    _: OperatorDep,
    status_filter: str | None = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
) -> list[Any]:
    """Return batch uploads, newest first."""

    return batch_upload_service.list_batch_uploads(
        session, status=status_filter, limit=limit, offset=offset
    )


# --------------------------------------------------------------------------
# GET /batch-upload/{batch_id}
# --------------------------------------------------------------------------
@router.get("/{batch_id}", response_model=BatchUploadDetail)
def get_batch(batch_id: int, session: SessionDep, _: OperatorDep) -> dict[str, Any]:
    """Return a batch with its items and a per-status summary."""

    try:
        return batch_upload_service.get_batch_detail(session, batch_id)
    except BatchError as exc:
        raise _http_error(exc) from exc


# --------------------------------------------------------------------------
# POST /batch-upload/{batch_id}
# --------------------------------------------------------------------------
@router.post("/{batch_id}")
def batch_action(
    batch_id: int,
    payload: BatchActionRequest,
    session: SessionDep,
    current_user: OperatorDep,
) -> dict[str, Any]:
    """Dispatch ``process``, ``map-nicknames`` or ``force-reset``."""

    try:
        if payload.action == "process":
            return _process(session, batch_id).model_dump()

        if payload.action == "map-nicknames":
            if not payload.mappings:
                raise HTTPException(status_code=400, detail="Mappings array required")
            updated, errors = batch_upload_service.map_nicknames(
                session,
                batch_id,
                [
                    batch_upload_service.NicknameMapping(entry.nickname, entry.user_id)
                    for entry in payload.mappings
                ],
            )
            return NicknameMappingResponse(
                message=f"Updated {updated} nickname mappings",
                updated=updated,
                errors=errors,
            ).model_dump()

        require_admin_user(current_user)
        batch = force_reset_batch(SqlAlchemyBatchRepository(session), batch_id)
        LOGGER.warning("batch_force_reset_requested", batch_id=batch_id, user_id=current_user.id)
        return BatchProcessResponse(
            batch_id=batch.id,
            status=batch.status,
            message="Batch force-reset; roll it back to reprocess",
            processed_items=batch.processed_items,
            successful_items=batch.successful_items,
            failed_items=batch.failed_items,
        ).model_dump()
    except BatchError as exc:
        raise _http_error(exc) from exc


def _process(session: Session, batch_id: int) -> BatchProcessResponse:
    settings = get_settings()
    if settings.queue_batches:
        # Reject obviously invalid requests before enqueueing.
        batch = batch_upload_service.get_batch_upload(session, batch_id)
        if batch.status != "pending":
            raise HTTPException(
                status_code=409,
                detail=f"Batch upload {batch_id} is {batch.status}; only pending batches can be processed",
            )
        task = process_batch_upload.apply_async(args=[batch_id], queue="batches")
        LOGGER.info("batch_task_enqueued", batch_id=batch_id, task_id=task.id)
        return BatchProcessResponse(
            batch_id=batch_id,
            status="queued",
            message="Batch queued for processing",
            task_id=task.id,
        )

    notifier = admin_notifier(session) if settings.batch_notifications_enabled else None
    result = process_batch(SqlAlchemyBatchRepository(session), batch_id, notifier=notifier)
    return BatchProcessResponse(
        batch_id=result.batch_id,
        status=result.status,
        message=result.message,
        processed_items=result.processed_items,
        successful_items=result.successful_items,
        failed_items=result.failed_items,
        errors=result.errors,
    )


# --------------------------------------------------------------------------
# DELETE /batch-upload/{batch_id}
# --------------------------------------------------------------------------
@router.delete("/{batch_id}", response_model=BatchDeleteResponse)
def delete_batch(batch_id: int, session: SessionDep, current_user: OperatorDep) -> dict[str, Any]:
    """Roll back a batch that created records, or delete one that did not."""

    try:
        result = batch_upload_service.delete_batch_upload(session, batch_id)
    except BatchError as exc:
        raise _http_error(exc) from exc
    LOGGER.info("batch_delete_requested", batch_id=batch_id, action=result["action"], user_id=current_user.id)
    return result


__all__ = ["router"]
