"""Create batch upload tables and tag cases/contributions with their batch."""

from __future__ import annotations

from sqlalchemy import inspect, text
from sqlalchemy.engine import Connection

from .. import get_engine
from ...models import BatchUpload, BatchUploadItem

PROVENANCE_TABLES = ("cases", "contributions")


def _add_batch_column(connection: Connection, table: str) -> bool:
    """Add ``batch_id`` to ``table`` when it is missing."""

    inspector = inspect(connection)
    if table not in inspector.get_table_names():
        return False
    if "batch_id" in {column["name"] for column in inspector.get_columns(table)}:
        return False

    connection.execute(
        text(
            f"ALTER TABLE {table} ADD COLUMN batch_id INTEGER "
            "REFERENCES batch_uploads(id)"
        )
    )
    connection.execute(
        text(f"CREATE INDEX IF NOT EXISTS ix_{table}_batch_id ON {table} (batch_id)")
    )
    return True


def upgrade() -> list[str]:
    """Apply the migration and return the tables that gained a ``batch_id``."""

    engine = get_engine()
    with engine.begin() as connection:
        dialect = connection.dialect.name
        if dialect not in {"sqlite", "postgresql", "postgres"}:
            raise RuntimeError(f"Unsupported database dialect: {dialect}")

        BatchUpload.__table__.create(bind=connection, checkfirst=True)
        BatchUploadItem.__table__.create(bind=connection, checkfirst=True)
        return [table for table in PROVENANCE_TABLES if _add_batch_column(connection, table)]


__all__ = ["upgrade"]
