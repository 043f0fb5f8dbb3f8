"""Batch upload API schemas."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class BatchUploadRead(BaseModel):
    """Schema for batch upload records exposed via the API."""

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: int
    name: str
    source_file: str
    status: str
    total_items: int
    processed_items: int
    successful_items: int
    failed_items: int
    error_summary: dict[str, Any] | None = None
    batch_metadata: dict[str, Any] | None = Field(default=None, serialization_alias="metadata")
    created_by: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    completed_at: datetime | None = None


class BatchUploadItemRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    batch_id: int
    row_number: int
    case_number: str
    case_title: str
    contributor_nickname: str
    amount: Decimal
    month: str
    status: str
    case_id: int | None = None
    contribution_id: int | None = None
    user_id: int | None = None
    error_message: str | None = None


class BatchItemSummary(BaseModel):
    total: int
    pending: int
    processing: int
    success: int
    failed: int
    mapped: int


class BatchUploadDetail(BaseModel):
    batch: BatchUploadRead
    items: list[BatchUploadItemRead]
    unique_nicknames: list[str]
    summary: BatchItemSummary


class BatchUploadCreated(BaseModel):
    batch: BatchUploadRead
    summary: dict[str, Any]
    skipped_rows: int


class NicknameMappingIn(BaseModel):
    nickname: str = Field(min_length=1)
    user_id: int | None = None


class BatchActionRequest(BaseModel):
    """Body of ``POST /batch-upload/{id}``."""

    action: Literal["process", "map-nicknames", "force-reset"]
    mappings: list[NicknameMappingIn] = Field(default_factory=list)


class BatchProcessResponse(BaseModel):
    batch_id: int
    status: str
    message: str
    processed_items: int | None = None
    successful_items: int | None = None
    failed_items: int | None = None
    errors: list[dict[str, Any]] = Field(default_factory=list)
    task_id: str | None = None


class NicknameMappingResponse(BaseModel):
    message: str
    updated: int
    errors: list[str] = Field(default_factory=list)


class BatchDeleteResponse(BaseModel):
    action: Literal["rolled_back", "deleted"]
    message: str
    deleted: dict[str, int]


__all__ = [
    "BatchActionRequest",
    "BatchDeleteResponse",
    "BatchItemSummary",
    "BatchProcessResponse",
    "BatchUploadCreated",
    "BatchUploadDetail",
    "BatchUploadItemRead",
    "BatchUploadRead",
    "NicknameMappingIn",
    "NicknameMappingResponse",
]
