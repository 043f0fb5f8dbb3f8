"""Tests for the batch upload schema migration."""

from __future__ import annotations

import importlib
import os
import sys
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[4]))

os.environ.setdefault("DATABASE_URL", "sqlite:///./test_charity.db")

import pytest
from sqlalchemy import inspect, text

from app.backend.src.db import get_engine
from app.backend.src.models.base import Base

migration = importlib.import_module("app.backend.src.db.migrations.20250301_add_batch_uploads")


@pytest.fixture(autouse=True)
def legacy_database() -> None:  # type: ignore[no-untyped-def]
    engine = get_engine()
    Base.metadata.drop_all(bind=engine)
    with engine.begin() as connection:
        connection.execute(text("CREATE TABLE users (id INTEGER PRIMARY KEY, email VARCHAR(255))"))
        connection.execute(text("CREATE TABLE cases (id INTEGER PRIMARY KEY, title VARCHAR(512))"))
        connection.execute(
            text(
                "CREATE TABLE contributions (id INTEGER PRIMARY KEY, "
                "case_id INTEGER REFERENCES cases(id), amount NUMERIC(12, 2))"
            )
        )
    yield
    Base.metadata.drop_all(bind=engine)


def test_upgrade_adds_batch_tables_and_provenance_columns() -> None:
    altered = migration.upgrade()

    inspector = inspect(get_engine())
    assert altered == ["cases", "contributions"]
    assert {"batch_uploads", "batch_upload_items"} <= set(inspector.get_table_names())
    assert "batch_id" in {column["name"] for column in inspector.get_columns("cases")}
    assert "batch_id" in {column["name"] for column in inspector.get_columns("contributions")}


def test_upgrade_is_repeatable() -> None:
    migration.upgrade()

    assert migration.upgrade() == []
