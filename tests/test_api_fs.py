from __future__ import annotations

import asyncio
import hashlib
import os
import time

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import select

from fsup.core.config import get_settings
from fsup.core.db import create_engine, create_session_factory
from fsup.core.jobs import BaseJobBackend
from fsup.db.models import TaskState, UploadTask
from fsup.ingest.transport import RequestBody
from fsup.main import create_app
from fsup.services import upload_service
from fsup.services.upload_service import UploadService
from tests.conftest import auth_headers


def _put(client, path, payload, headers, **extra):
    return client.put("/v1/fs/put", content=payload, headers={**headers, "File-Path": path, **extra})


@pytest.fixture()
def thumbnail_calls(monkeypatch):
    calls = []

    def fake_derive(source_path, principal, *, storage, settings):
        calls.append((source_path, principal))
        return asyncio.sleep(0)

    monkeypatch.setattr(upload_service, "derive_thumbnail", fake_derive)
    return calls


def _client_with(monkeypatch, **env):
    for key, value in env.items():
        monkeypatch.setenv(key, value)
    get_settings.cache_clear()
    return TestClient(create_app())


def test_health_reports_pending_derivations(client):
    resp = client.get("/v1/health")
    assert resp.status_code == 200
    assert resp.json()["pending_derivations"] == 0


def test_admin_env_check_requires_scope(client, user_headers, admin_headers):
    assert client.get("/v1/admin/env-check", headers=user_headers).status_code == 403
    resp = client.get("/v1/admin/env-check", headers=admin_headers)
    assert resp.status_code == 200
    assert resp.json() == {"ffmpeg": False, "ffprobe": False}


def test_stream_upload_writes_file(client, user_headers, storage_root):
    resp = _put(client, "/docs/hello%20world.txt", b"hello", user_headers, **{"Last-Modified": "1700000000000"})

    assert resp.status_code == 200, resp.text
    assert resp.json() == {"code": 200, "message": "success", "data": None}
    stored = storage_root / "docs" / "hello world.txt"
    assert stored.read_bytes() == b"hello"
    assert os.stat(stored).st_mtime == pytest.approx(1700000000)


def test_upload_lands_under_principal_base_path(client, storage_root):
    headers = auth_headers("user-2", base_path="/home/user-2")
    resp = _put(client, "/inbox/a.txt", b"mine", headers)
    assert resp.status_code == 200, resp.text
    assert (storage_root / "home" / "user-2" / "inbox" / "a.txt").read_bytes() == b"mine"


def test_overwrite_false_refuses_existing_file(client, user_headers, storage_root, monkeypatch):
    assert _put(client, "/docs/a.txt", b"original", user_headers).status_code == 200

    writes = []

    async def recording_put(self, path, stream):
        writes.append(path)

    monkeypatch.setattr(UploadService, "put_directly", recording_put)
    resp = _put(client, "/docs/a.txt", b"replacement", user_headers, Overwrite="false")

    assert resp.status_code == 403
    assert writes == []
    assert (storage_root / "docs" / "a.txt").read_bytes() == b"original"


def test_overwrite_false_allows_new_file(client, user_headers, storage_root):
    resp = _put(client, "/docs/new.txt", b"fresh", user_headers, Overwrite="false")
    assert resp.status_code == 200
    assert (storage_root / "docs" / "new.txt").read_bytes() == b"fresh"


def test_overwrite_defaults_to_true(client, user_headers, storage_root):
    _put(client, "/docs/a.txt", b"one", user_headers)
    assert _put(client, "/docs/a.txt", b"two", user_headers).status_code == 200
    assert (storage_root / "docs" / "a.txt").read_bytes() == b"two"


@pytest.mark.parametrize("path", ["/../escape.txt", "/docs/%2E%2E/%2E%2E/escape.txt"])
def test_escaping_paths_are_forbidden(client, user_headers, path):
    assert _put(client, path, b"x", user_headers).status_code == 403


def test_missing_file_path_is_bad_request(client, user_headers):
    resp = client.put("/v1/fs/put", content=b"x", headers=user_headers)
    assert resp.status_code == 400


def test_hash_mismatch_is_rejected(client, user_headers, storage_root):
    resp = _put(client, "/docs/a.txt", b"payload", user_headers, **{"X-File-Md5": "0" * 32})
    assert resp.status_code == 500
    assert not (storage_root / "docs" / "a.txt").exists()


def test_matching_hash_is_accepted(client, user_headers, storage_root):
    digest = hashlib.sha256(b"payload").hexdigest()
    resp = _put(client, "/docs/a.txt", b"payload", user_headers, **{"X-File-Sha256": digest})
    assert resp.status_code == 200


def test_form_upload_writes_file(client, user_headers, storage_root):
    resp = client.put(
        "/v1/fs/form",
        files={"file": ("ignored-name.txt", b"form body", "text/plain")},
        headers={**user_headers, "File-Path": "/forms/report.txt"},
    )
    assert resp.status_code == 200, resp.text
    assert (storage_root / "forms" / "report.txt").read_bytes() == b"form body"


def test_form_upload_requires_file_field(client, user_headers):
    resp = client.put(
        "/v1/fs/form",
        data={"other": "value"},
        files={"attachment": ("a.txt", b"x", "text/plain")},
        headers={**user_headers, "File-Path": "/forms/report.txt"},
    )
    assert resp.status_code == 400


def test_as_task_upload_returns_task(client, user_headers, storage_root):
    resp = _put(client, "/tasks/a.bin", b"queued", user_headers, **{"As-Task": "true"})

    assert resp.status_code == 200, resp.text
    task = resp.json()["data"]["task"]
    assert task["name"] == "upload a.bin to [/tasks]"
    assert task["state"] == "succeeded"
    assert (storage_root / "tasks" / "a.bin").read_bytes() == b"queued"

    status_resp = client.get(f"/v1/tasks/{task['id']}", headers=user_headers)
    assert status_resp.status_code == 200
    data = status_resp.json()["data"]
    assert data["state"] == "succeeded"
    assert data["progress"] == 100
    assert data["end_time"] is not None

    other = client.get(f"/v1/tasks/{task['id']}", headers=auth_headers("someone-else"))
    assert other.status_code == 404


def test_unknown_task_is_not_found(client, user_headers):
    assert client.get("/v1/tasks/does-not-exist", headers=user_headers).status_code == 404


def test_video_upload_schedules_thumbnail(client, user_headers, thumbnail_calls):
    resp = _put(client, "/videos/clip.mp4", b"\x00\x00\x00\x18ftyp", user_headers, **{"Content-Type": "video/mp4"})

    assert resp.status_code == 200, resp.text
    assert len(thumbnail_calls) == 1
    source_path, principal = thumbnail_calls[0]
    assert source_path == "/videos/clip.mp4"
    assert principal.user_id == "user-1"


def test_video_mimetype_is_guessed_from_name(client, user_headers, thumbnail_calls):
    resp = _put(client, "/videos/clip.mp4", b"\x00", user_headers)
    assert resp.status_code == 200
    assert [path for path, _ in thumbnail_calls] == ["/videos/clip.mp4"]


def test_non_video_upload_does_not_schedule_thumbnail(client, user_headers, thumbnail_calls):
    resp = _put(client, "/docs/a.txt", b"text", user_headers, **{"Content-Type": "text/plain"})
    assert resp.status_code == 200
    assert thumbnail_calls == []


def test_refused_video_upload_does_not_schedule_thumbnail(client, user_headers, thumbnail_calls):
    _put(client, "/videos/clip.mp4", b"one", user_headers, **{"Content-Type": "text/plain"})
    resp = _put(client, "/videos/clip.mp4", b"two", user_headers, **{"Content-Type": "video/mp4", "Overwrite": "false"})
    assert resp.status_code == 403
    assert thumbnail_calls == []


def test_video_form_upload_schedules_thumbnail(client, user_headers, thumbnail_calls):
    resp = client.put(
        "/v1/fs/form",
        files={"file": ("clip.mp4", b"\x00", "video/mp4")},
        headers={**user_headers, "File-Path": "/videos/clip.mp4"},
    )
    assert resp.status_code == 200, resp.text
    assert [path for path, _ in thumbnail_calls] == ["/videos/clip.mp4"]


def test_as_task_video_upload_derives_after_write(client, user_headers, thumbnail_calls):
    resp = _put(client, "/videos/clip.mp4", b"\x00", user_headers, **{"As-Task": "true", "Content-Type": "video/mp4"})
    assert resp.status_code == 200, resp.text
    assert [path for path, _ in thumbnail_calls] == ["/videos/clip.mp4"]


def test_read_only_storage_refuses_uploads(monkeypatch, user_headers, storage_root):
    with _client_with(monkeypatch, FSUP_STORAGE_READ_ONLY="true") as client:
        stream_resp = _put(client, "/docs/a.txt", b"x", user_headers)
        form_resp = client.put(
            "/v1/fs/form",
            files={"file": ("a.txt", b"x", "text/plain")},
            headers={**user_headers, "File-Path": "/docs/a.txt"},
        )
    assert stream_resp.status_code == 405
    assert form_resp.status_code == 405
    assert not (storage_root / "docs" / "a.txt").exists()


def test_declared_size_over_limit_is_rejected(monkeypatch, user_headers, storage_root):
    with _client_with(monkeypatch, FSUP_MAX_UPLOAD_SIZE_BYTES="4") as client:
        resp = _put(client, "/docs/big.bin", b"too large", user_headers)
    assert resp.status_code == 413
    assert not (storage_root / "docs" / "big.bin").exists()


def test_chunked_body_over_limit_is_rejected(monkeypatch, user_headers, storage_root):
    with _client_with(monkeypatch, FSUP_MAX_UPLOAD_SIZE_BYTES="4") as client:
        resp = client.put(
            "/v1/fs/put",
            content=iter([b"too ", b"large"]),
            headers={**user_headers, "File-Path": "/docs/big.bin"},
        )
    assert resp.status_code == 413
    assert not (storage_root / "docs" / "big.bin").exists()


def test_chunked_body_within_limit_is_accepted(monkeypatch, user_headers, storage_root):
    with _client_with(monkeypatch, FSUP_MAX_UPLOAD_SIZE_BYTES="4") as client:
        resp = client.put(
            "/v1/fs/put",
            content=iter([b"ab", b"cd"]),
            headers={**user_headers, "File-Path": "/docs/small.bin"},
        )
    assert resp.status_code == 200, resp.text
    assert (storage_root / "docs" / "small.bin").read_bytes() == b"abcd"


def test_as_task_video_upload_returns_before_derivation_finishes(client, user_headers, monkeypatch):
    scheduled = []

    async def slow_derive(source_path, principal, *, storage, settings):
        await asyncio.sleep(3)
        return True

    def recording_derive(source_path, principal, *, storage, settings):
        scheduled.append(source_path)
        return slow_derive(source_path, principal, storage=storage, settings=settings)

    monkeypatch.setattr(upload_service, "derive_thumbnail", recording_derive)

    started = time.monotonic()
    resp = _put(client, "/videos/clip.mp4", b"\x00", user_headers, **{"As-Task": "true", "Content-Type": "video/mp4"})
    elapsed = time.monotonic() - started

    assert resp.status_code == 200, resp.text
    assert resp.json()["data"]["task"]["state"] == "succeeded"
    assert elapsed < 2
    assert scheduled == ["/videos/clip.mp4"]
    assert client.get("/v1/health").json()["pending_derivations"] == 1


async def _task_rows() -> list[UploadTask]:
    engine = create_engine(get_settings())
    try:
        async with create_session_factory(engine)() as session:
            return list((await session.execute(select(UploadTask))).scalars())
    finally:
        await engine.dispose()


def test_failed_enqueue_cleans_up_staged_body(client, user_headers, monkeypatch, tmp_path, storage_root):
    class UnreachableBackend(BaseJobBackend):
        async def enqueue(self, task_id: str) -> None:
            raise ConnectionError("Error 111 connecting to localhost:6379. Connection refused.")

    monkeypatch.setattr(upload_service, "get_job_backend", lambda: UnreachableBackend())

    resp = _put(client, "/tasks/a.bin", b"queued", user_headers, **{"As-Task": "true"})

    assert resp.status_code == 500
    assert list((tmp_path / "task-staging").iterdir()) == []
    assert not (storage_root / "tasks" / "a.bin").exists()
    (task,) = asyncio.run(_task_rows())
    assert task.state == TaskState.failed
    assert "enqueue failed" in task.error


@pytest.fixture()
def drained(monkeypatch):
    results = []
    drain = RequestBody.drain

    async def recording_drain(self):
        discarded = await drain(self)
        results.append(discarded)
        return discarded

    monkeypatch.setattr(RequestBody, "drain", recording_drain)
    return results


def test_refused_upload_body_is_drained(client, user_headers, drained):
    _put(client, "/docs/a.txt", b"original", user_headers)
    resp = _put(client, "/docs/a.txt", b"replacement", user_headers, Overwrite="false")

    assert resp.status_code == 403
    assert drained == [0, len(b"replacement")]


def test_read_only_refusal_drains_body(monkeypatch, user_headers, drained):
    with _client_with(monkeypatch, FSUP_STORAGE_READ_ONLY="true") as client:
        resp = _put(client, "/docs/a.txt", b"twelve bytes", user_headers)
    assert resp.status_code == 405
    assert drained == [len(b"twelve bytes")]
