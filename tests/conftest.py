import asyncio
import os
from pathlib import Path

import cv2
import jwt
import numpy as np
import pytest
from fastapi.testclient import TestClient

from fsup.core.config import get_settings
from fsup.core.db import create_engine, create_schema
from fsup.core.jobs import get_job_backend
from fsup.main import create_app


def pytest_configure(config):
    config.addinivalue_line(
        "markers",
        "no_default_env: disable the default fsup environment bootstrap fixture for tests that manage their own .env",
    )


def _clear_fsup_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in list(os.environ.keys()):
        if key.startswith("FSUP_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture(autouse=True)
def configure_environment(request, monkeypatch, tmp_path):
    if request.node.get_closest_marker("no_default_env"):
        get_settings.cache_clear()
        get_job_backend.cache_clear()
        yield
        get_job_backend.cache_clear()
        get_settings.cache_clear()
        return
    db_path = tmp_path / "fsup_test.db"

    _clear_fsup_env(monkeypatch)
    monkeypatch.setenv("FSUP_ENVIRONMENT", "test")
    monkeypatch.setenv("FSUP_LOG_LEVEL", "debug")
    monkeypatch.setenv("FSUP_DATABASE_URL", f"sqlite+aiosqlite:///{db_path}")
    monkeypatch.setenv("FSUP_STORAGE_ROOT", str(tmp_path / "storage"))
    monkeypatch.setenv("FSUP_TASK_STAGING_DIR", str(tmp_path / "task-staging"))
    monkeypatch.setenv("FSUP_THUMBNAIL_STAGING_DIR", str(tmp_path / "thumb-staging"))
    monkeypatch.setenv("FSUP_JOB_QUEUE_BACKEND", "inline")
    monkeypatch.setenv("FSUP_REDIS_URL", "redis://localhost:6379/0")
    monkeypatch.setenv("FSUP_JWT_SECRET", "test-secret")
    monkeypatch.setenv("FSUP_FFMPEG_BIN", "fsup-test-missing-ffmpeg")
    monkeypatch.setenv("FSUP_FFPROBE_BIN", "fsup-test-missing-ffprobe")

    get_settings.cache_clear()
    get_job_backend.cache_clear()
    settings = get_settings()
    engine = create_engine(settings)

    async def _setup() -> None:
        await create_schema(engine)
        await engine.dispose()

    asyncio.run(_setup())

    yield

    get_job_backend.cache_clear()
    get_settings.cache_clear()


@pytest.fixture()
def client(configure_environment):
    app = create_app()
    with TestClient(app) as client:
        yield client


@pytest.fixture()
def storage_root(configure_environment) -> Path:
    return Path(get_settings().storage_root)


def build_token(user_id: str | None, *, base_path: str | None = None, scopes: list[str] | None = None) -> str:
    payload: dict[str, object] = {}
    if user_id:
        payload["sub"] = user_id
    if base_path:
        payload["base_path"] = base_path
    if scopes:
        payload["scopes"] = scopes
    return jwt.encode(payload, "test-secret", algorithm="HS256")


def auth_headers(user_id: str, **kwargs) -> dict[str, str]:
    return {"Authorization": f"Bearer {build_token(user_id, **kwargs)}"}


@pytest.fixture()
def user_headers() -> dict[str, str]:
    return auth_headers("user-1")


@pytest.fixture()
def admin_headers() -> dict[str, str]:
    return auth_headers("admin-1", scopes=["admin"])


@pytest.fixture(scope="session")
def webp_bytes(tmp_path_factory) -> bytes:
    """A small, valid 32x24 WebP image."""
    path = tmp_path_factory.mktemp("images") / "frame.webp"
    image = np.zeros((24, 32, 3), dtype=np.uint8)
    image[:, :16] = (0, 128, 255)
    assert cv2.imwrite(str(path), image)
    return path.read_bytes()
