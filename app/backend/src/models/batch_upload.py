"""Batch upload models for spreadsheet-driven case imports."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import (
    JSON,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from .user import User

BATCH_STATUSES = ("pending", "processing", "completed", "failed", "cancelled")
TERMINAL_BATCH_STATUSES = frozenset({"completed", "failed", "cancelled"})
ITEM_STATUSES = ("pending", "processing", "success", "failed")


class BatchUpload(Base):
    """One uploaded spreadsheet and the progress of turning it into cases."""

    __tablename__ = "batch_uploads"
    __table_args__ = (
        CheckConstraint(
            "status IN ('pending','processing','completed','failed','cancelled')",
            name="ck_batch_uploads_status_valid",
        ),
        CheckConstraint(
            "processed_items = successful_items + failed_items",
            name="ck_batch_uploads_processed_sum",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    source_file: Mapped[str] = mapped_column(String(512), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="pending", index=True)
    total_items: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    processed_items: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    successful_items: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failed_items: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_summary: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    # "metadata" is reserved on declarative classes, hence the attribute name.
    batch_metadata: Mapped[dict | None] = mapped_column("metadata", JSON, nullable=True)
    created_by: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    items: Mapped[list["BatchUploadItem"]] = relationship(
        "BatchUploadItem",
        back_populates="batch",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="BatchUploadItem.row_number",
    )
    creator: Mapped["User | None"] = relationship("User")

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_BATCH_STATUSES

    @property
    def nickname_mappings(self) -> dict[str, int]:
        """Return the operator-supplied nickname to user id table."""

        raw = (self.batch_metadata or {}).get("nickname_mappings") or {}
        return {str(key): int(value) for key, value in raw.items()}


class BatchUploadItem(Base):
    """One spreadsheet row; intended to become one contribution to a case."""

    __tablename__ = "batch_upload_items"
    __table_args__ = (
        CheckConstraint(
            "status IN ('pending','processing','success','failed')",
            name="ck_batch_upload_items_status_valid",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    batch_id: Mapped[int] = mapped_column(
        ForeignKey("batch_uploads.id", ondelete="CASCADE"), nullable=False, index=True
    )
    row_number: Mapped[int] = mapped_column(Integer, nullable=False)
    case_number: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    case_title: Mapped[str] = mapped_column(String(512), nullable=False, default="")
    contributor_nickname: Mapped[str] = mapped_column(String(255), nullable=False, default="", index=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    month: Mapped[str] = mapped_column(String(32), nullable=False, default="")
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="pending", index=True)
    # Weak back-references for traceability; rollback never relies on them.
    case_id: Mapped[int | None] = mapped_column(
        ForeignKey("cases.id", ondelete="SET NULL"), nullable=True
    )
    contribution_id: Mapped[int | None] = mapped_column(
        ForeignKey("contributions.id", ondelete="SET NULL"), nullable=True
    )
    user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    batch: Mapped["BatchUpload"] = relationship("BatchUpload", back_populates="items")


__all__ = [
    "BATCH_STATUSES",
    "ITEM_STATUSES",
    "TERMINAL_BATCH_STATUSES",
    "BatchUpload",
    "BatchUploadItem",
]
