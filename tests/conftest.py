import asyncio
import shutil
import subprocess
from io import BytesIO
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from PIL import Image
from redis.exceptions import ConnectionError as RedisConnectionError

from content_hub.core.config import get_settings
from content_hub.core.db import Base, create_engine, session_scope
from content_hub.core.jobs import get_queue_client
from content_hub.core.storage import LocalBlobStore
from content_hub.db.repository import AssetRepository
from content_hub.main import create_app

requires_ffmpeg = pytest.mark.skipif(
    shutil.which("ffmpeg") is None or shutil.which("ffprobe") is None,
    reason="ffmpeg/ffprobe not installed",
)


@pytest.fixture(autouse=True)
def configure_environment(monkeypatch, tmp_path, tmp_path_factory):
    db_path = tmp_path_factory.mktemp("db") / "content_hub_test.db"

    monkeypatch.setenv("CONTENT_HUB_ENV", "test")
    monkeypatch.setenv("CONTENT_HUB_LOG_LEVEL", "warning")
    monkeypatch.setenv("CONTENT_HUB_DB_URL", f"sqlite+aiosqlite:///{db_path}")
    monkeypatch.setenv("CONTENT_HUB_BLOB_ROOT", str(tmp_path / "blobs"))
    monkeypatch.setenv("CONTENT_HUB_SCRATCH_ROOT", str(tmp_path / "scratch"))
    monkeypatch.setenv("CONTENT_HUB_JOB_BACKEND", "inline")
    monkeypatch.setenv("CONTENT_HUB_JOB_RETRY_INITIAL_DELAY_S", "0")
    monkeypatch.setenv("CONTENT_HUB_REDIS_URL", "redis://127.0.0.1:1/0")

    get_settings.cache_clear()
    get_queue_client.cache_clear()
    settings = get_settings()
    engine = create_engine(settings)

    async def _setup() -> None:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    asyncio.run(_setup())

    yield settings

    async def _teardown() -> None:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
        await engine.dispose()

    asyncio.run(_teardown())
    get_queue_client.cache_clear()
    get_settings.cache_clear()


@pytest.fixture()
def settings(configure_environment):
    return configure_environment


@pytest.fixture()
def blob_store(settings):
    return LocalBlobStore(Path(settings.blob_root))


@pytest.fixture()
def client(configure_environment):
    app = create_app()
    with TestClient(app) as client:
        yield client


def png_bytes(width: int, height: int, *, mode: str = "RGB", color=(200, 60, 30), dpi=None) -> bytes:
    image = Image.new(mode, (width, height), color)
    buffer = BytesIO()
    if dpi:
        image.save(buffer, format="PNG", dpi=dpi)
    else:
        image.save(buffer, format="PNG")
    return buffer.getvalue()


def register_asset(settings, *, asset_id: str, file_key: str, mime_type: str):
    async def _create():
        async with session_scope(settings) as session:
            return await AssetRepository(session).create_asset(
                file_key=file_key, mime_type=mime_type, asset_id=asset_id
            )

    return asyncio.run(_create())


def load_asset(settings, asset_id: str):
    """Asset row, its variants and its metadata row, read in a fresh session."""

    async def _load():
        async with session_scope(settings) as session:
            repository = AssetRepository(session)
            asset = await repository.get_asset(asset_id)
            variants = list(await repository.list_variants(asset_id))
            metadata = await repository.get_metadata(asset_id)
            return asset, variants, metadata

    return asyncio.run(_load())


class FlakyRedis:
    """Redis connection double whose first ``failures`` pings are refused."""

    def __init__(self, failures: int = 1):
        self.failures = failures
        self.pings = 0

    def ping(self):
        self.pings += 1
        if self.pings <= self.failures:
            raise RedisConnectionError("Connection refused")
        return True

    def close(self):
        pass


def make_video(path: Path, seconds: float, *, size: str = "320x240", rate: int = 24) -> Path:
    command = [
        "ffmpeg",
        "-v", "error",
        "-f", "lavfi",
        "-i", f"testsrc=size={size}:rate={rate}",
        "-f", "lavfi",
        "-i", "sine=frequency=440:sample_rate=44100",
        "-t", str(seconds),
        "-c:v", "libx264",
        "-preset", "ultrafast",
        "-pix_fmt", "yuv420p",
        "-c:a", "aac",
        "-shortest",
        "-y",
        str(path),
    ]
    subprocess.run(command, check=True, capture_output=True)
    return path


@pytest.fixture(scope="session")
def generated_video_12s(tmp_path_factory) -> Path:
    """A 12 second H.264/AAC clip, shorter than the preview cap."""
    return make_video(tmp_path_factory.mktemp("media") / "clip_12s.mp4", 12)


@pytest.fixture(scope="session")
def generated_video_40s(tmp_path_factory) -> Path:
    return make_video(tmp_path_factory.mktemp("media") / "clip_40s.mp4", 40, size="160x120", rate=12)


@pytest.fixture(scope="session")
def generated_audio_file(tmp_path_factory) -> Path:
    path = tmp_path_factory.mktemp("media") / "tone.wav"
    command = ["ffmpeg", "-v", "error", "-f", "lavfi", "-i", "sine=frequency=440:duration=5", "-y", str(path)]
    subprocess.run(command, check=True, capture_output=True)
    return path
