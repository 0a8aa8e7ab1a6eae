"""
S3 storage backend for handling file storage operations with AWS S3
"""

import asyncio
import logging
from typing import Any, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from app.config import get_settings
from app.schemas.upload import StagedFile
from app.services.storage.base import FileStorage, StorageError, StorageNotFoundError, StoredFile

logger = logging.getLogger(__name__)


class S3Storage(FileStorage):
    """Service for S3 file storage operations."""

    name = "s3"

    def __init__(self, client: Optional[Any] = None, bucket_name: Optional[str] = None, region: Optional[str] = None):
        """Initialize S3 client with configuration."""
        settings = get_settings()
        self.bucket_name = bucket_name or settings.s3_bucket_name
        self.region = region or settings.aws_region

        if client is None:
            if not settings.s3_configured:
                raise ValueError("AWS credentials and S3 bucket name must be configured")

            # Configure boto3 with retry and timeout settings
            config = Config(
                region_name=self.region,
                retries={'max_attempts': 3, 'mode': 'adaptive'},
                max_pool_connections=50
            )
            client = boto3.client(
                's3',
                aws_access_key_id=settings.aws_access_key_id,
                aws_secret_access_key=settings.aws_secret_access_key,
                config=config
            )

        self.s3_client = client

    def object_url(self, key: str) -> str:
        return f"https://{self.bucket_name}.s3.{self.region}.amazonaws.com/{key}"

    async def upload_file(self, file: StagedFile, folder: str) -> StoredFile:
        """
        Upload a staged file to S3.

        Args:
            file: Staged upload
            folder: Key prefix (videos/thumbnails)

        Returns:
            StoredFile whose public_id is the object key

        Raises:
            StorageError: If upload fails
        """
        key = f"{folder.strip('/')}/{self.unique_name(file)}"

        def put_staged_file() -> None:
            # botocore streams the body from the open handle
            with open(file.path, "rb") as body:
                self.s3_client.put_object(
                    Bucket=self.bucket_name,
                    Key=key,
                    Body=body,
                    Metadata={'original-filename': file.filename},
                    ContentType=file.content_type or 'application/octet-stream'
                )

        try:
            # put_object is all-or-nothing on the S3 side
            await asyncio.to_thread(put_staged_file)
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"S3 upload failed: {str(e)}") from e
        except OSError as e:
            raise StorageError(f"Could not read staged file {file.path}: {str(e)}") from e

        logger.debug(f"Uploaded {file.filename} to s3://{self.bucket_name}/{key}")
        return StoredFile(url=self.object_url(key), public_id=key)

    async def delete_file(self, public_id: str) -> None:
        """
        Delete an object from S3. Deleting a missing key succeeds on S3.

        Args:
            public_id: S3 object key
        """
        try:
            await asyncio.to_thread(
                self.s3_client.delete_object,
                Bucket=self.bucket_name,
                Key=public_id
            )
        except ClientError as e:
            if e.response.get('Error', {}).get('Code') in ('NoSuchKey', '404'):
                raise StorageNotFoundError(f"S3 object not found: {public_id}") from e
            raise StorageError(f"S3 delete failed: {str(e)}") from e
        except BotoCoreError as e:
            raise StorageError(f"S3 delete failed: {str(e)}") from e
