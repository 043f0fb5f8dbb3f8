"""Charity case model."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, ForeignKey, Integer, Numeric, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base


class Case(Base):
    """A beneficiary case donors contribute towards."""

    __tablename__ = "cases"
    __table_args__ = ({"sqlite_autoincrement": True},)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    # Provenance tag: the batch upload that created this case, if any.
    batch_id: Mapped[int | None] = mapped_column(
        ForeignKey("batch_uploads.id"), nullable=True, index=True
    )
    reference_number: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    title: Mapped[str] = mapped_column(String(512), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    type: Mapped[str] = mapped_column(String(32), nullable=False, default="one-time")
    priority: Mapped[str] = mapped_column(String(32), nullable=False, default="medium")
    target_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    current_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="draft")
    created_by: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    contributions: Mapped[list["Contribution"]] = relationship(
        "Contribution", back_populates="case"
    )


__all__ = ["Case"]
