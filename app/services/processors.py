"""
Lifecycle processors for video jobs.

Each handler receives its typed payload and a JobContext and returns an
Outcome; the job queue records it. Upload-style jobs retry until
job_max_attempts is reached and then hand partial blobs to a delayed cleanup
job. Soft delete retries without a cap. Hard delete, recovery and cleanup never
retry.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence, Tuple
from uuid import UUID

from sqlalchemy.ext.asyncio import async_sessionmaker

from app.config import Settings, get_settings
from app.core.exceptions import VideoNotFoundError, VideoStateError
from app.core.timeutils import as_utc, utcnow
from app.models.video import UploadStatus, VideoRecord
from app.repositories.video_repository import VideoRepository
from app.schemas.job import (
    CleanupJobData,
    HardDeleteVideoJobData,
    JobFilter,
    JobName,
    RecoverVideoJobData,
    SoftDeleteVideoJobData,
    UpdateVideoJobData,
    VideoJobData,
)
from app.schemas.upload import StagedFile
from app.services.job_queue import FatalFailure, JobContext, JobQueue, Outcome, RetryableFailure, Success
from app.services.media_probe import probe_duration
from app.services.staging import discard_staged
from app.services.storage import FileStorage, MediaStorages, StoredFile, settle_all

logger = logging.getLogger(__name__)

VIDEO_FOLDER = "videos"
THUMBNAIL_FOLDER = "thumbnails"

# (label, storage, staged file, folder)
PendingUpload = Tuple[str, FileStorage, StagedFile, str]


def recovery_expired(deleted_at: Optional[datetime], window_days: int, now: Optional[datetime] = None) -> bool:
    """Check if more than the recovery window has passed since deletion."""
    if deleted_at is None:
        return False
    now = now or utcnow()
    return now - as_utc(deleted_at) > timedelta(days=window_days)


async def recover_soft_deleted(
    repo: VideoRepository,
    queue: JobQueue,
    video_id: UUID,
    window_days: int
) -> VideoRecord:
    """
    Restore a soft deleted video and cancel its pending hard delete.

    A hard delete that a worker already holds wins: recovery is refused rather
    than racing it. Any other failure to cancel is logged and recovery goes on,
    since the hard delete re-checks the record before removing anything.

    Raises:
        VideoNotFoundError: If the video does not exist
        VideoStateError: If the video is not soft deleted, the window has
            expired or the hard delete is already running
    """
    video = await repo.get(video_id)
    if video is None:
        raise VideoNotFoundError(f"Video {video_id} not found")
    if not video.is_deleted:
        raise VideoStateError("Video is not soft deleted")
    if recovery_expired(video.deleted_at, window_days):
        raise VideoStateError("Recovery window has expired")

    hard_delete_job_id = video.hard_delete_job_id
    if hard_delete_job_id is not None:
        try:
            removed = await queue.cancel(JobFilter(job_id=hard_delete_job_id), include_locked=False)
            if not removed:
                job = await queue.get(hard_delete_job_id)
                if job is not None and job.locked_at is not None:
                    raise VideoStateError("Hard delete is already in progress")
        except VideoStateError:
            raise
        except Exception as e:
            logger.warning(f"Video {video_id}: could not cancel hard delete job {hard_delete_job_id}: {e}")

    if not await repo.restore(video_id):
        raise VideoStateError("Video is no longer soft deleted")

    logger.info(f"Video {video_id}: recovered from soft delete")
    return await repo.get(video_id)


class VideoLifecycleProcessors:
    """Job handlers moving a video record through its lifecycle."""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        storages: MediaStorages,
        settings: Optional[Settings] = None
    ):
        self._session_factory = session_factory
        self.storages = storages
        self.settings = settings or get_settings()

    def register(self, queue: JobQueue) -> None:
        """Define every lifecycle job on the queue."""
        queue.define(JobName.PROCESS_VIDEO.value, self.process_video)
        queue.define(JobName.UPDATE_VIDEO.value, self.update_video)
        queue.define(JobName.SOFT_DELETE_VIDEO.value, self.soft_delete_video)
        queue.define(JobName.HARD_DELETE_VIDEO.value, self.hard_delete_video)
        queue.define(JobName.RECOVER_VIDEO.value, self.recover_video)
        queue.define(JobName.CLEANUP_FAILED_UPLOAD.value, self.cleanup_failed_upload)

    # Upload helpers

    @staticmethod
    async def _upload_all(
        pending: Sequence[PendingUpload],
        uploaded: Dict[str, Tuple[FileStorage, StoredFile]]
    ) -> Dict[str, StoredFile]:
        """
        Upload staged files concurrently.

        Every blob that made it is recorded in `uploaded`, so the caller can
        clean up after a partial failure. The first failure is re-raised.
        """
        if not pending:
            return {}

        results = await asyncio.gather(
            *(storage.upload_file(staged, folder) for _, storage, staged, folder in pending),
            return_exceptions=True
        )

        first_error: Optional[BaseException] = None
        for (label, storage, _, _), result in zip(pending, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, BaseException):
                first_error = first_error or result
                continue
            uploaded[label] = (storage, result)

        if first_error is not None:
            raise first_error
        return {label: stored for label, (_, stored) in uploaded.items()}

    async def _upload_failed(
        self,
        repo: VideoRepository,
        context: JobContext,
        video_id: UUID,
        error: Exception,
        uploaded: Dict[str, Tuple[FileStorage, StoredFile]],
        staged: List[Optional[StagedFile]]
    ) -> Outcome:
        reason = str(error) or error.__class__.__name__
        logger.error(
            f"Video {video_id}: {context.name} failed on attempt {context.attempt}: {reason}",
            exc_info=error
        )

        try:
            await repo.db.rollback()
            await repo.update_fields(
                video_id,
                upload_status=UploadStatus.FAILED.value,
                error_message=reason,
                retry_count=context.fail_count + 1,
            )
        except Exception as e:
            logger.error(f"Video {video_id}: could not record failure: {e}")

        if context.fail_count + 1 < self.settings.job_max_attempts:
            await settle_all([
                (f"remove partial {label} {stored.public_id}", storage.delete_file(stored.public_id))
                for label, (storage, stored) in uploaded.items()
            ])
            return RetryableFailure(reason)

        cleanup = CleanupJobData(
            video_id=video_id,
            video_public_id=uploaded["video"][1].public_id if "video" in uploaded else None,
            thumbnail_public_id=uploaded["thumbnail"][1].public_id if "thumbnail" in uploaded else None,
        )
        try:
            await context.queue.schedule(
                timedelta(minutes=self.settings.cleanup_delay_minutes),
                JobName.CLEANUP_FAILED_UPLOAD.value,
                cleanup
            )
            logger.info(f"Video {video_id}: giving up after {context.attempt} attempts, cleanup scheduled")
        except Exception as e:
            logger.error(f"Video {video_id}: could not schedule cleanup: {e}", exc_info=True)

        await discard_staged(staged)
        return FatalFailure(reason)

    # Handlers

    async def process_video(self, data: VideoJobData, context: JobContext) -> Outcome:
        """Upload the staged video and thumbnail and complete the record."""
        video_id = data.video_id
        staged = [data.video_file, data.thumbnail]
        uploaded: Dict[str, Tuple[FileStorage, StoredFile]] = {}
        logger.info(f"Video {video_id}: processing upload (attempt {context.attempt})")

        async with self._session_factory() as session:
            repo = VideoRepository(session)
            try:
                found = await repo.update_fields(
                    video_id,
                    upload_status=UploadStatus.PROCESSING.value,
                    retry_count=context.fail_count,
                )
                if not found:
                    await discard_staged(staged)
                    return FatalFailure(f"Video {video_id} not found")

                stored = await self._upload_all(
                    [
                        ("video", self.storages.video, data.video_file, VIDEO_FOLDER),
                        ("thumbnail", self.storages.thumbnail, data.thumbnail, THUMBNAIL_FOLDER),
                    ],
                    uploaded
                )
                duration = await probe_duration(data.video_file)

                await repo.update_fields(
                    video_id,
                    video_file_url=stored["video"].url,
                    video_file_public_id=stored["video"].public_id,
                    thumbnail_url=stored["thumbnail"].url,
                    thumbnail_public_id=stored["thumbnail"].public_id,
                    duration=duration,
                    upload_status=UploadStatus.COMPLETED.value,
                    error_message=None,
                )
            except Exception as e:
                return await self._upload_failed(repo, context, video_id, e, uploaded, staged)

        await discard_staged(staged)
        logger.info(f"Video {video_id}: upload completed")
        return Success()

    async def update_video(self, data: UpdateVideoJobData, context: JobContext) -> Outcome:
        """Apply provided fields and files, then drop the replaced blobs."""
        video_id = data.video_id
        staged = [data.video_file, data.thumbnail]
        uploaded: Dict[str, Tuple[FileStorage, StoredFile]] = {}
        logger.info(f"Video {video_id}: processing update (attempt {context.attempt})")

        async with self._session_factory() as session:
            repo = VideoRepository(session)
            try:
                video = await repo.get(video_id)
                if video is None:
                    await discard_staged(staged)
                    return FatalFailure(f"Video {video_id} not found")
                # A finished upload, or a retry of this update, still holds both blobs
                if video.upload_status in (UploadStatus.PENDING.value, UploadStatus.PROCESSING.value) or not (
                    video.video_file_public_id and video.thumbnail_public_id
                ):
                    await discard_staged(staged)
                    return FatalFailure(
                        f"Video {video_id} cannot be updated while upload status is {video.upload_status}"
                    )

                old_video_public_id = video.video_file_public_id
                old_thumbnail_public_id = video.thumbnail_public_id

                await repo.update_fields(
                    video_id,
                    upload_status=UploadStatus.UPDATING.value,
                    retry_count=context.fail_count,
                )

                pending: List[PendingUpload] = []
                if data.video_file:
                    pending.append(("video", self.storages.video, data.video_file, VIDEO_FOLDER))
                if data.thumbnail:
                    pending.append(("thumbnail", self.storages.thumbnail, data.thumbnail, THUMBNAIL_FOLDER))
                stored = await self._upload_all(pending, uploaded)

                values = {}
                if data.title:
                    values["title"] = data.title
                if data.description:
                    values["description"] = data.description
                if "video" in stored:
                    values.update(
                        video_file_url=stored["video"].url,
                        video_file_public_id=stored["video"].public_id,
                        duration=await probe_duration(data.video_file),
                    )
                if "thumbnail" in stored:
                    values.update(
                        thumbnail_url=stored["thumbnail"].url,
                        thumbnail_public_id=stored["thumbnail"].public_id,
                    )

                await repo.update_fields(
                    video_id,
                    upload_status=UploadStatus.COMPLETED.value,
                    error_message=None,
                    **values
                )
            except Exception as e:
                return await self._upload_failed(repo, context, video_id, e, uploaded, staged)

        replaced = []
        if "video" in stored and old_video_public_id:
            replaced.append((
                f"remove replaced video {old_video_public_id}",
                self.storages.video.delete_file(old_video_public_id)
            ))
        if "thumbnail" in stored and old_thumbnail_public_id:
            replaced.append((
                f"remove replaced thumbnail {old_thumbnail_public_id}",
                self.storages.thumbnail.delete_file(old_thumbnail_public_id)
            ))
        await settle_all(replaced)

        await discard_staged(staged)
        logger.info(f"Video {video_id}: update completed")
        return Success()

    async def soft_delete_video(self, data: SoftDeleteVideoJobData, context: JobContext) -> Outcome:
        """Hide the video and schedule its hard delete after the recovery window."""
        video_id = data.video_id
        hard_delete_job_id: Optional[UUID] = None

        async with self._session_factory() as session:
            repo = VideoRepository(session)
            try:
                video = await repo.get(video_id)
                if video is None:
                    return FatalFailure(f"Video {video_id} not found")
                if video.is_deleted:
                    logger.info(f"Video {video_id}: already soft deleted")
                    return Success("Video already soft deleted")

                deleted_at = utcnow()
                hard_delete = await context.queue.schedule(
                    deleted_at + timedelta(days=self.settings.recovery_window_days),
                    JobName.HARD_DELETE_VIDEO.value,
                    HardDeleteVideoJobData(video_id=video_id)
                )
                hard_delete_job_id = hard_delete.id
                marked = await repo.mark_soft_deleted(video_id, deleted_at, hard_delete_job_id)
            except Exception as e:
                logger.error(f"Video {video_id}: soft delete failed, will retry: {e}", exc_info=True)
                await self._drop_hard_delete(context.queue, video_id, hard_delete_job_id)
                return RetryableFailure(str(e) or e.__class__.__name__)

        if not marked:
            # Another soft delete got there first and owns its own hard delete
            await self._drop_hard_delete(context.queue, video_id, hard_delete_job_id)
            return Success("Video already soft deleted")

        logger.info(f"Video {video_id}: soft deleted, hard delete job {hard_delete_job_id}")
        return Success()

    @staticmethod
    async def _drop_hard_delete(queue: JobQueue, video_id: UUID, job_id: Optional[UUID]) -> None:
        if job_id is None:
            return
        try:
            await queue.cancel(JobFilter(job_id=job_id))
        except Exception as e:
            logger.warning(f"Video {video_id}: could not cancel unused hard delete job {job_id}: {e}")

    async def hard_delete_video(self, data: HardDeleteVideoJobData, context: JobContext) -> Outcome:
        """Remove the stored blobs and the record."""
        video_id = data.video_id

        async with self._session_factory() as session:
            repo = VideoRepository(session)
            try:
                video = await repo.get(video_id)
                if video is None:
                    logger.info(f"Video {video_id}: already removed")
                    return Success("Video already removed")

                owns_record = video.is_deleted and video.hard_delete_job_id == context.job_id
                if not data.forced and not owns_record:
                    logger.info(f"Video {video_id}: recovered or rescheduled, skipping hard delete")
                    return Success("Video no longer awaits this hard delete")

                blobs = []
                if video.video_file_public_id:
                    blobs.append((
                        f"delete video {video.video_file_public_id}",
                        self.storages.video.delete_file(video.video_file_public_id)
                    ))
                if video.thumbnail_public_id:
                    blobs.append((
                        f"delete thumbnail {video.thumbnail_public_id}",
                        self.storages.thumbnail.delete_file(video.thumbnail_public_id)
                    ))
                await settle_all(blobs)

                if data.forced:
                    removed = await repo.delete(video_id)
                else:
                    removed = await repo.delete_if_soft_deleted(video_id, context.job_id)
            except Exception as e:
                logger.error(f"Video {video_id}: hard delete failed: {e}", exc_info=True)
                return FatalFailure(str(e) or e.__class__.__name__)

        if not removed:
            logger.warning(f"Video {video_id}: record changed during hard delete, left in place")
            return Success("Video changed during hard delete")

        logger.info(f"Video {video_id}: permanently deleted")
        return Success()

    async def recover_video(self, data: RecoverVideoJobData, context: JobContext) -> Outcome:
        """Undo a soft delete within the recovery window."""
        async with self._session_factory() as session:
            repo = VideoRepository(session)
            try:
                await recover_soft_deleted(
                    repo, context.queue, data.video_id, self.settings.recovery_window_days
                )
            except (VideoNotFoundError, VideoStateError) as e:
                logger.warning(f"Video {data.video_id}: recovery rejected: {e}")
                return FatalFailure(str(e))
            except Exception as e:
                logger.error(f"Video {data.video_id}: recovery failed: {e}", exc_info=True)
                return FatalFailure(str(e) or e.__class__.__name__)

        return Success()

    async def cleanup_failed_upload(self, data: CleanupJobData, context: JobContext) -> Outcome:
        """Best-effort removal of blobs left by an abandoned upload."""
        removals = []
        if data.video_public_id:
            removals.append((
                f"cleanup video {data.video_public_id}",
                self.storages.video.delete_file(data.video_public_id)
            ))
        if data.thumbnail_public_id:
            removals.append((
                f"cleanup thumbnail {data.thumbnail_public_id}",
                self.storages.thumbnail.delete_file(data.thumbnail_public_id)
            ))

        if not removals:
            logger.info(f"Video {data.video_id}: no partial uploads to clean up")
            return Success("Nothing to clean up")

        results = await settle_all(removals)
        failed = [label for label, error in results if error is not None]
        logger.info(
            f"Video {data.video_id}: cleanup removed {len(results) - len(failed)} of {len(results)} blob(s)"
        )
        return Success(f"{len(failed)} blob(s) could not be removed" if failed else None)
