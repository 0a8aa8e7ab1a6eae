import os
import tempfile
from datetime import timedelta
from pathlib import Path

# Settings are read once; point every writable path at a scratch directory first
_SCRATCH = Path(tempfile.mkdtemp(prefix="video-lifecycle-tests-"))
os.environ.setdefault("UPLOAD_DIRECTORY", str(_SCRATCH / "uploads"))
os.environ.setdefault("LOCAL_STORAGE_ROOT", str(_SCRATCH / "public"))
os.environ.setdefault("JOB_QUEUE_ENABLED", "false")

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import create_async_engine

import app.models  # noqa: F401
from app.config import get_settings
from app.database import Base, create_session_factory, get_db
from app.schemas.upload import StagedFile
from app.services.job_queue import JobQueue
from app.services.processors import VideoLifecycleProcessors
from app.services.storage import MediaStorages
from app.services.storage.local_storage import LocalFileStorage


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    db_path = tmp_path / "lifecycle.db"
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield create_session_factory(engine)

    await engine.dispose()


@pytest.fixture
def media_root(tmp_path) -> Path:
    return tmp_path / "public"


@pytest.fixture
def storages(media_root) -> MediaStorages:
    return MediaStorages(
        video=LocalFileStorage(root=str(media_root), base_url="/media"),
        thumbnail=LocalFileStorage(root=str(media_root), base_url="/media"),
    )


@pytest.fixture
def settings():
    return get_settings()


@pytest.fixture
def processors(session_factory, storages, settings) -> VideoLifecycleProcessors:
    return VideoLifecycleProcessors(session_factory, storages, settings)


@pytest_asyncio.fixture
async def job_queue(session_factory, processors):
    queue = JobQueue(
        session_factory,
        process_every=0.05,
        max_concurrency=5,
        default_concurrency=3,
        lock_lifetime=timedelta(minutes=10),
        retry_delay=timedelta(0),
    )
    processors.register(queue)
    yield queue
    await queue.stop()


@pytest.fixture
def stage_file(tmp_path):
    """Write bytes into the staging area and describe them as a StagedFile."""
    staging = tmp_path / "uploads"
    staging.mkdir(exist_ok=True)

    def _stage(filename: str, content: bytes, content_type: str) -> StagedFile:
        path = staging / f"{len(list(staging.iterdir()))}-{filename}"
        path.write_bytes(content)
        return StagedFile(path=str(path), filename=filename, content_type=content_type, size=len(content))

    return _stage


@pytest_asyncio.fixture
async def client(session_factory, job_queue):
    from app.main import app

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.state.job_queue = job_queue

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http_client:
        yield http_client

    app.dependency_overrides.pop(get_db, None)
    del app.state.job_queue
