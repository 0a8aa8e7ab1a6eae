from unittest.mock import AsyncMock, patch
from uuid import UUID, uuid4

import pytest

from app.models.video import UploadStatus
from app.repositories.video_repository import VideoRepository
from app.schemas.job import JobFilter, JobName

VIDEOS = "/api/v1/videos"


@pytest.fixture(autouse=True)
def fixed_duration():
    with patch("app.services.processors.probe_duration", new=AsyncMock(return_value=61.0)):
        yield


def upload_files(video=b"\x00" * 4096, thumbnail=b"\x89PNG" * 64, thumbnail_type="image/png"):
    return {
        "video_file": ("clip.mp4", video, "video/mp4"),
        "thumbnail": ("thumb.png", thumbnail, thumbnail_type),
    }


async def publish(client, job_queue, title="Launch day", run=True):
    response = await client.post(
        VIDEOS,
        data={"title": title, "description": "Recorded live"},
        files=upload_files(),
    )
    assert response.status_code == 202, response.text
    if run:
        await job_queue.run_until_idle()
    return response.json()


# Upload

@pytest.mark.asyncio
async def test_publish_returns_handle_then_completes(client, job_queue):
    response = await client.post(
        VIDEOS,
        data={"title": "Launch day", "description": "Recorded live"},
        files=upload_files(),
    )

    assert response.status_code == 202
    body = response.json()
    assert body["upload_status"] == "pending"
    assert (await job_queue.get(UUID(body["job_id"]))).name == JobName.PROCESS_VIDEO.value

    pending = await client.get(f"{VIDEOS}/status/{body['video_id']}")
    assert pending.json()["is_processing_complete"] is False

    await job_queue.run_until_idle()

    status = (await client.get(f"{VIDEOS}/status/{body['video_id']}")).json()
    assert status["upload_status"] == "completed"
    assert status["is_processing_complete"] is True
    assert status["job_id"] == body["job_id"]
    assert status["video_file"]["public_id"].startswith("videos/")
    assert status["thumbnail"]["url"].startswith("/media/thumbnails/")

    video = (await client.get(f"{VIDEOS}/{body['video_id']}")).json()
    assert video["title"] == "Launch day"
    assert video["duration"] == 61.0


@pytest.mark.asyncio
async def test_publish_rejects_wrong_video_type(client, job_queue):
    files = upload_files()
    files["video_file"] = ("notes.txt", b"hello", "text/plain")

    response = await client.post(VIDEOS, data={"title": "T", "description": "D"}, files=files)

    assert response.status_code == 400
    assert "Unsupported video type" in response.json()["detail"]
    assert await job_queue.count() == 0


@pytest.mark.asyncio
async def test_publish_rejects_oversized_thumbnail(client, job_queue):
    response = await client.post(
        VIDEOS,
        data={"title": "T", "description": "D"},
        files=upload_files(thumbnail=b"\x00" * (5 * 1024 * 1024 + 1)),
    )

    assert response.status_code == 413
    assert await job_queue.count() == 0


@pytest.mark.asyncio
async def test_publish_rejects_empty_video(client):
    response = await client.post(
        VIDEOS,
        data={"title": "T", "description": "D"},
        files=upload_files(video=b""),
    )

    assert response.status_code == 400


@pytest.mark.asyncio
async def test_publish_validates_text_fields(client):
    too_long = await client.post(VIDEOS, data={"title": "x" * 256, "description": "D"}, files=upload_files())
    missing = await client.post(VIDEOS, data={"title": "T"}, files=upload_files())

    assert too_long.status_code == 422
    assert too_long.json()["detail"] == "Request validation failed"
    assert missing.status_code == 422


# Reads

@pytest.mark.asyncio
async def test_unknown_video_is_404(client):
    video_id = uuid4()

    assert (await client.get(f"{VIDEOS}/{video_id}")).status_code == 404
    assert (await client.get(f"{VIDEOS}/status/{video_id}")).status_code == 404
    assert (await client.delete(f"{VIDEOS}/{video_id}")).status_code == 404
    assert (await client.post(f"{VIDEOS}/{video_id}/recover")).status_code == 404
    assert (await client.patch(f"{VIDEOS}/toggle/publish/{video_id}")).status_code == 404


@pytest.mark.asyncio
async def test_list_excludes_soft_deleted_videos(client, job_queue):
    kept = await publish(client, job_queue, title="Kept")
    removed = await publish(client, job_queue, title="Removed")

    await client.delete(f"{VIDEOS}/{removed['video_id']}")
    await job_queue.run_until_idle()

    response = await client.get(VIDEOS, params={"page": 1, "page_size": 10})
    body = response.json()
    assert response.status_code == 200
    assert body["total_count"] == 1
    assert [video["id"] for video in body["videos"]] == [kept["video_id"]]
    assert body["has_more"] is False


@pytest.mark.asyncio
async def test_list_searches_title(client, job_queue):
    await publish(client, job_queue, title="Cooking pasta", run=False)
    await publish(client, job_queue, title="Fixing bikes", run=False)

    body = (await client.get(VIDEOS, params={"search": "pasta"})).json()

    assert [video["title"] for video in body["videos"]] == ["Cooking pasta"]


# Update

@pytest.mark.asyncio
async def test_update_title_only(client, job_queue):
    video = await publish(client, job_queue)

    response = await client.patch(f"{VIDEOS}/{video['video_id']}", data={"title": "Renamed"})
    assert response.status_code == 202
    assert response.json()["upload_status"] == "updating"

    await job_queue.run_until_idle()
    updated = (await client.get(f"{VIDEOS}/{video['video_id']}")).json()
    assert updated["title"] == "Renamed"
    assert updated["description"] == "Recorded live"
    assert updated["upload_status"] == "completed"


@pytest.mark.asyncio
async def test_update_with_replacement_thumbnail(client, job_queue, media_root):
    video = await publish(client, job_queue)
    before = (await client.get(f"{VIDEOS}/{video['video_id']}")).json()

    response = await client.patch(
        f"{VIDEOS}/{video['video_id']}",
        files={"thumbnail": ("new.jpg", b"\xff\xd8jpeg", "image/jpeg")},
    )
    assert response.status_code == 202
    await job_queue.run_until_idle()

    after = (await client.get(f"{VIDEOS}/{video['video_id']}")).json()
    assert after["thumbnail"]["public_id"] != before["thumbnail"]["public_id"]
    assert after["video_file"] == before["video_file"]
    assert not (media_root / before["thumbnail"]["public_id"]).exists()


@pytest.mark.asyncio
async def test_update_without_changes_is_rejected(client, job_queue):
    video = await publish(client, job_queue)

    response = await client.patch(f"{VIDEOS}/{video['video_id']}", data={})

    assert response.status_code == 400
    assert "At least one field" in response.json()["detail"]
    assert await job_queue.count(JobFilter(name=JobName.UPDATE_VIDEO.value)) == 0


@pytest.mark.asyncio
async def test_update_of_missing_video(client):
    response = await client.patch(f"{VIDEOS}/{uuid4()}", data={"title": "New"})
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_update_of_pending_upload_is_rejected(client, job_queue):
    video = await publish(client, job_queue, run=False)

    response = await client.patch(f"{VIDEOS}/{video['video_id']}", data={"title": "Too soon"})

    assert response.status_code == 400
    assert "upload status is pending" in response.json()["detail"]
    assert await job_queue.count(JobFilter(name=JobName.UPDATE_VIDEO.value)) == 0


@pytest.mark.asyncio
async def test_update_of_failed_upload_is_rejected(client, job_queue, session_factory):
    video = await publish(client, job_queue, run=False)
    await job_queue.cancel(JobFilter(name=JobName.PROCESS_VIDEO.value))
    async with session_factory() as session:
        await VideoRepository(session).update_fields(
            UUID(video["video_id"]), upload_status=UploadStatus.FAILED.value
        )

    response = await client.patch(
        f"{VIDEOS}/{video['video_id']}",
        data={"title": "New"},
        files={"thumbnail": ("new.jpg", b"\xff\xd8jpeg", "image/jpeg")},
    )

    assert response.status_code == 400
    assert "upload status is failed" in response.json()["detail"]
    assert await job_queue.count(JobFilter(name=JobName.UPDATE_VIDEO.value)) == 0
    status = (await client.get(f"{VIDEOS}/status/{video['video_id']}")).json()
    assert status["upload_status"] == "failed"
    assert status["thumbnail"] is None


# Delete and recover

@pytest.mark.asyncio
async def test_delete_then_recover(client, job_queue):
    video = await publish(client, job_queue)
    video_id = video["video_id"]

    deleted = await client.delete(f"{VIDEOS}/{video_id}")
    assert deleted.status_code == 202
    assert deleted.json()["upload_status"] == "deleting"
    await job_queue.run_until_idle()

    assert (await client.get(f"{VIDEOS}/{video_id}")).status_code == 404
    assert (await client.get(f"{VIDEOS}/status/{video_id}")).json()["is_deleted"] is True
    again = await client.delete(f"{VIDEOS}/{video_id}")
    assert again.status_code == 400
    assert again.json()["detail"] == "Video is already deleted"

    recovered = await client.post(f"{VIDEOS}/{video_id}/recover")
    assert recovered.status_code == 202
    assert recovered.json()["upload_status"] == "recovering"
    await job_queue.run_until_idle()

    restored = await client.get(f"{VIDEOS}/{video_id}")
    assert restored.status_code == 200
    assert restored.json()["is_deleted"] is False
    assert await job_queue.count(JobFilter(name=JobName.HARD_DELETE_VIDEO.value)) == 0


@pytest.mark.asyncio
async def test_recover_requires_soft_deleted_video(client, job_queue):
    video = await publish(client, job_queue)

    response = await client.post(f"{VIDEOS}/{video['video_id']}/recover")

    assert response.status_code == 400
    assert response.json()["detail"] == "Video is not deleted"


@pytest.mark.asyncio
async def test_cancel_pending_delete(client, job_queue):
    video = await publish(client, job_queue)
    video_id = video["video_id"]
    await client.delete(f"{VIDEOS}/{video_id}")

    cancelled = await client.patch(f"{VIDEOS}/cancel-delete/{video_id}")
    assert cancelled.status_code == 200
    assert cancelled.json()["message"] == "Cancelled 1 pending delete job(s)"

    await job_queue.run_until_idle()
    assert (await client.get(f"{VIDEOS}/{video_id}")).status_code == 200

    nothing_pending = await client.patch(f"{VIDEOS}/cancel-delete/{video_id}")
    assert nothing_pending.status_code == 400
    assert nothing_pending.json()["detail"] == "No pending delete job for this video"


@pytest.mark.asyncio
async def test_cancel_delete_after_soft_delete_ran(client, job_queue):
    video = await publish(client, job_queue)
    await client.delete(f"{VIDEOS}/{video['video_id']}")
    await job_queue.run_until_idle()

    response = await client.patch(f"{VIDEOS}/cancel-delete/{video['video_id']}")

    assert response.status_code == 400
    assert "recover it instead" in response.json()["detail"]


# Publish flag

@pytest.mark.asyncio
async def test_toggle_publish(client, job_queue):
    video = await publish(client, job_queue)

    first = await client.patch(f"{VIDEOS}/toggle/publish/{video['video_id']}")
    second = await client.patch(f"{VIDEOS}/toggle/publish/{video['video_id']}")

    assert first.json()["is_published"] is False
    assert second.json()["is_published"] is True


@pytest.mark.asyncio
async def test_requests_fail_without_job_queue(client):
    from app.main import app

    queue = app.state.job_queue
    del app.state.job_queue
    try:
        response = await client.get(VIDEOS)
    finally:
        app.state.job_queue = queue

    assert response.status_code == 503
