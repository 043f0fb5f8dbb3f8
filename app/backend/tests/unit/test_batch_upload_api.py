"""API tests for the batch upload endpoints."""

from __future__ import annotations

import os
import sys
from pathlib import Path
from types import SimpleNamespace

sys.path.append(str(Path(__file__).resolve().parents[4]))

os.environ.setdefault("DATABASE_URL", "sqlite:///./test_charity.db")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import delete, select

from app.backend.src.api import batch_uploads as batch_api
from app.backend.src.core.config import Settings
from app.backend.src.core.security import get_current_user
from app.backend.src.db import get_engine, session_scope
from app.backend.src.main import app
from app.backend.src.models import BatchUpload, Case, PaymentMethod, User
from app.backend.src.models.base import Base
from app.backend.src.services.batch_repository import SqlAlchemyBatchRepository

CSV_CONTENT = (
    "Case Number,Case Title,Contributor Nickname,Amount,Month\n"
    "C-1,Roof repair,Abu Ali,100,3\n"
    "C-2,School fees,Umm Khalid,40,4\n"
    "C-3,Bad row,Abu Ali,-1,4\n"
).encode("utf-8")


@pytest.fixture(autouse=True)
def setup_database() -> None:  # type: ignore[no-untyped-def]
    engine = get_engine()
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def users() -> dict[str, int]:
    with session_scope() as session:
        admin = User(email="admin@example.com", name="Admin", role="admin")
        moderator = User(email="mod@example.com", name="Moderator", role="moderator")
        donor = User(email="abu@example.com", name="Abu Ali", nickname="Abu Ali")
        donor_two = User(email="umm@example.com", name="Umm Khalid", nickname="Umm Khalid")
        session.add_all([admin, moderator, donor, donor_two, PaymentMethod(code="cash", name="Cash")])
        session.flush()
        return {
            "admin": admin.id,
            "moderator": moderator.id,
            "donor": donor.id,
            "donor_two": donor_two.id,
        }


def _act_as(user_id: int) -> None:
    def _override() -> User:
        with session_scope() as session:
            user = session.get(User, user_id)
            if user is None:
                raise RuntimeError("User missing for test")
            return user

    app.dependency_overrides[get_current_user] = _override


@pytest.fixture()
def client(users: dict[str, int]) -> TestClient:  # type: ignore[no-untyped-def]
    _act_as(users["admin"])
    yield TestClient(app)
    app.dependency_overrides.pop(get_current_user, None)


def _upload(client: TestClient) -> int:
    response = client.post(
        "/api/batch-upload",
        files={"file": ("donations.csv", CSV_CONTENT, "text/csv")},
        data={"name": "March donations"},
    )
    assert response.status_code == 201, response.text
    return response.json()["batch"]["id"]


def _map_all(client: TestClient, batch_id: int, users: dict[str, int]) -> None:
    response = client.post(
        f"/api/batch-upload/{batch_id}",
        json={
            "action": "map-nicknames",
            "mappings": [
                {"nickname": "Abu Ali", "user_id": users["donor"]},
                {"nickname": "Umm Khalid", "user_id": users["donor_two"]},
            ],
        },
    )
    assert response.status_code == 200, response.text
    assert response.json()["updated"] == 2


def test_health_endpoints(client: TestClient) -> None:
    assert client.get("/api/health/live").json() == {"status": "live"}

    ready = client.get("/api/health/ready")
    assert ready.status_code == 200
    assert ready.json()["payment_method_configured"] is True


def test_upload_creates_pending_batch(client: TestClient) -> None:
    response = client.post(
        "/api/batch-upload",
        files={"file": ("donations.csv", CSV_CONTENT, "text/csv")},
        data={"name": "March donations"},
    )

    assert response.status_code == 201, response.text
    payload = response.json()
    assert payload["batch"]["status"] == "pending"
    assert payload["batch"]["total_items"] == 2
    assert payload["batch"]["metadata"]["skipped_rows"] == 1
    assert payload["skipped_rows"] == 1
    assert payload["summary"]["unique_cases"] == 2


def test_upload_rejects_wrong_file_type(client: TestClient) -> None:
    response = client.post(
        "/api/batch-upload",
        files={"file": ("donations.pdf", b"%PDF", "application/pdf")},
    )

    assert response.status_code == 400
    assert "Invalid file type" in response.json()["detail"]


def test_get_batch_detail_and_list(client: TestClient) -> None:
    batch_id = _upload(client)

    detail = client.get(f"/api/batch-upload/{batch_id}")
    assert detail.status_code == 200, detail.text
    body = detail.json()
    assert [item["row_number"] for item in body["items"]] == [1, 2]
    assert body["unique_nicknames"] == ["Abu Ali", "Umm Khalid"]
    assert body["summary"]["pending"] == 2

    listing = client.get("/api/batch-upload", params={"status": "pending"})
    assert listing.status_code == 200
    assert [entry["id"] for entry in listing.json()] == [batch_id]

    assert client.get("/api/batch-upload/9999").status_code == 404


def test_process_then_delete_rolls_back(client: TestClient, users: dict[str, int]) -> None:
    batch_id = _upload(client)
    _map_all(client, batch_id, users)

    response = client.post(f"/api/batch-upload/{batch_id}", json={"action": "process"})
    assert response.status_code == 200, response.text
    result = response.json()
    assert result["status"] == "completed"
    assert result["successful_items"] == 2

    again = client.post(f"/api/batch-upload/{batch_id}", json={"action": "process"})
    assert again.status_code == 409

    deleted = client.delete(f"/api/batch-upload/{batch_id}")
    assert deleted.status_code == 200, deleted.text
    assert deleted.json()["action"] == "rolled_back"
    assert deleted.json()["deleted"] == {"cases": 2, "contributions": 2}

    with session_scope() as session:
        assert session.execute(select(Case)).first() is None
        assert session.get(BatchUpload, batch_id).status == "pending"


def test_map_nicknames_requires_mappings(client: TestClient) -> None:
    batch_id = _upload(client)

    response = client.post(f"/api/batch-upload/{batch_id}", json={"action": "map-nicknames"})

    assert response.status_code == 400


def test_process_without_payment_method_is_configuration_error(client: TestClient) -> None:
    batch_id = _upload(client)
    with session_scope() as session:
        session.execute(delete(PaymentMethod))

    response = client.post(f"/api/batch-upload/{batch_id}", json={"action": "process"})

    assert response.status_code == 500
    assert "payment method" in response.json()["detail"]


def test_process_in_celery_mode_enqueues_task(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    batch_id = _upload(client)
    enqueued: list[dict] = []

    def _apply_async(args: list, queue: str) -> SimpleNamespace:
        enqueued.append({"args": args, "queue": queue})
        return SimpleNamespace(id="task-123")

    monkeypatch.setattr(batch_api, "get_settings", lambda: Settings(BATCH_PROCESSING_MODE="celery"))
    monkeypatch.setattr(batch_api, "process_batch_upload", SimpleNamespace(apply_async=_apply_async))

    response = client.post(f"/api/batch-upload/{batch_id}", json={"action": "process"})

    assert response.status_code == 200, response.text
    assert response.json()["status"] == "queued"
    assert response.json()["task_id"] == "task-123"
    assert enqueued == [{"args": [batch_id], "queue": "batches"}]


def test_force_reset_is_admin_only(client: TestClient, users: dict[str, int]) -> None:
    batch_id = _upload(client)
    with session_scope() as session:
        SqlAlchemyBatchRepository(session).claim_batch(batch_id)

    _act_as(users["moderator"])
    denied = client.post(f"/api/batch-upload/{batch_id}", json={"action": "force-reset"})
    assert denied.status_code == 403
    assert denied.json()["detail"] == "Insufficient permissions"
    with session_scope() as session:
        assert session.get(BatchUpload, batch_id).status == "processing"

    _act_as(users["admin"])
    response = client.post(f"/api/batch-upload/{batch_id}", json={"action": "force-reset"})
    assert response.status_code == 200, response.text
    assert response.json()["status"] == "failed"
    assert response.json()["failed_items"] == 2


def test_donor_cannot_use_batch_endpoints(client: TestClient, users: dict[str, int]) -> None:
    _act_as(users["donor"])

    response = client.get("/api/batch-upload")

    assert response.status_code == 403
