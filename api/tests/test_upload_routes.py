from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import pytest
from fastapi.testclient import TestClient
from starlette.datastructures import UploadFile

from app.main import app
from app.services.blob_store import BlobStoreError, StoredBlob, get_blob_store
from app.services.notifier import get_notifier
from app.services.repository import RepositoryConflictError, get_repository


class FakeUploadRepository:
    def __init__(self, *, status: str = "emailed", expires_in: timedelta = timedelta(days=2)) -> None:
        now = datetime.now(timezone.utc)
        self.request: dict[str, Any] = {
            "id": "req-1",
            "property_id": "prop-1",
            "room_key": "kitchen",
            "room_label": "Kitchen",
            "floor": None,
            "kind": "room",
            "token_expires_at": now + expires_in,
            "status": status,
            "created_at": now,
            "updated_at": now,
        }
        self.uploads: list[dict[str, Any]] = []

    async def get_missing_room_request_by_token(self, token: str) -> dict[str, Any] | None:
        return dict(self.request) if token == "tok-1" else None

    async def list_missing_room_requests(self, *, property_id: str, only_pending: bool) -> list[dict[str, Any]]:
        if property_id != self.request["property_id"]:
            return []
        if only_pending and self.request["status"] != "pending":
            return []
        return [self.request]

    async def complete_missing_room_upload(self, **kwargs: Any) -> dict[str, Any]:
        if kwargs["expected_updated_at"] != self.request["updated_at"]:
            raise RepositoryConflictError("missing room request is no longer accepting uploads")
        self.request["status"] = kwargs["to_status"]
        self.uploads.extend(kwargs["uploads"])
        return self.request


class FakeBlobStore:
    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.paths: list[str] = []

    async def put(self, path: str, content: bytes, *, content_type: str | None = None) -> StoredBlob:
        if self.fail:
            raise BlobStoreError("failed to store object")
        self.paths.append(path)
        return StoredBlob(storage_path=f"property-images/{path}", public_url=f"https://blob.test/{path}")


class FakeNotifier:
    def __init__(self) -> None:
        self.payloads: list[dict[str, Any]] = []

    def dispatch(self, payload: dict[str, Any]) -> None:
        self.payloads.append(payload)


@pytest.fixture
def fakes() -> dict[str, Any]:
    return {"repository": FakeUploadRepository(), "blob_store": FakeBlobStore(), "notifier": FakeNotifier()}


@pytest.fixture
def client(fakes: dict[str, Any]) -> TestClient:
    app.dependency_overrides[get_repository] = lambda: fakes["repository"]
    app.dependency_overrides[get_blob_store] = lambda: fakes["blob_store"]
    app.dependency_overrides[get_notifier] = lambda: fakes["notifier"]
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _photo(name: str = "kitchen.jpg") -> tuple[str, tuple[str, bytes, str]]:
    return ("files", (name, b"\xff\xd8jpeg-bytes", "image/jpeg"))


def test_upload_accepts_files_and_dispatches_notification(client: TestClient, fakes: dict[str, Any]) -> None:
    response = client.post("/uploads", data={"token": "tok-1"}, files=[_photo(), _photo("second.png")])

    assert response.status_code == 200
    body = response.json()
    assert body["ok"] is True
    assert body["uploaded_count"] == 2
    assert body["urls"][0].startswith("https://blob.test/prop-1/kitchen/req-1/")
    assert fakes["blob_store"].paths[1].endswith(".png")
    assert fakes["repository"].request["status"] == "uploaded"
    assert len(fakes["notifier"].payloads) == 1


def test_upload_without_files_is_rejected(client: TestClient, fakes: dict[str, Any]) -> None:
    response = client.post("/uploads", data={"token": "tok-1"})
    assert response.status_code == 422
    assert fakes["blob_store"].paths == []


def test_upload_with_too_many_files_is_rejected_before_reading_parts(
    client: TestClient,
    fakes: dict[str, Any],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    reads: list[str | None] = []

    async def tracking_read(self: UploadFile, size: int = -1) -> bytes:
        reads.append(self.filename)
        return b""

    monkeypatch.setattr(UploadFile, "read", tracking_read)

    response = client.post("/uploads", data={"token": "tok-1"}, files=[_photo(f"{i}.jpg") for i in range(50)])

    assert response.status_code == 422
    assert response.json()["detail"] == "between 1 and 5 files are required"
    assert reads == []
    assert fakes["blob_store"].paths == []
    assert fakes["repository"].request["status"] == "emailed"


def test_upload_with_unknown_token_is_not_found(client: TestClient) -> None:
    response = client.post("/uploads", data={"token": "nope"}, files=[_photo()])
    assert response.status_code == 404


def test_upload_with_closed_request_is_gone(client: TestClient, fakes: dict[str, Any]) -> None:
    fakes["repository"].request["status"] = "closed"
    response = client.post("/uploads", data={"token": "tok-1"}, files=[_photo()])
    assert response.status_code == 410


def test_upload_reports_blob_store_failure(client: TestClient, fakes: dict[str, Any]) -> None:
    fakes["blob_store"].fail = True
    response = client.post("/uploads", data={"token": "tok-1"}, files=[_photo()])
    assert response.status_code == 502
    assert fakes["repository"].request["status"] == "emailed"


def test_token_preview_and_expiry(client: TestClient, fakes: dict[str, Any]) -> None:
    response = client.get("/uploads/tok-1")
    assert response.status_code == 200
    assert response.headers["cache-control"] == "no-store"
    assert response.json()["room_key"] == "kitchen"
    assert response.json()["expires_in_seconds"] > 0

    assert client.get("/uploads/unknown").status_code == 404

    fakes["repository"].request["token_expires_at"] = datetime.now(timezone.utc) - timedelta(minutes=1)
    assert client.get("/uploads/tok-1").status_code == 410


def test_missing_rooms_lists_pending_by_default(client: TestClient, fakes: dict[str, Any]) -> None:
    assert client.get("/missing-rooms").status_code == 422

    pending_only = client.get("/missing-rooms", params={"property_id": "prop-1"})
    assert pending_only.status_code == 200
    assert pending_only.json() == []

    everything = client.get("/missing-rooms", params={"property_id": "prop-1", "include_all": "true"})
    assert everything.status_code == 200
    assert [row["id"] for row in everything.json()] == ["req-1"]
