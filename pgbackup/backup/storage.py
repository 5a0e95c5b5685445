"""
Storage handlers for backup artifacts.

Supports:
- S3Storage: S3-compatible object storage (Backblaze B2, AWS, MinIO)
- LocalStorage: the local staging directory
"""

import logging
import os
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Iterator, List, Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import ClientError, BotoCoreError

from pgbackup.config import RemoteConfig
from .artifacts import is_artifact_name


logger = logging.getLogger(__name__)

# Files above this size go through multipart upload
MULTIPART_THRESHOLD = 100 * 1024 * 1024  # 100MB
MULTIPART_CHUNK_SIZE = 10 * 1024 * 1024  # 10MB


class StorageError(Exception):
    """Raised when storage operation fails."""
    pass


class RemoteUploadError(StorageError):
    """Raised when an artifact cannot be uploaded."""
    pass


class RemoteDeleteError(StorageError):
    """Raised when a remote object cannot be deleted."""
    pass


@dataclass(frozen=True)
class RemoteObject:
    """One entry of a bucket listing."""

    key: str
    last_modified: datetime
    size: int = 0


@dataclass(frozen=True)
class StagedArtifact:
    """A backup file in the staging directory."""

    name: str
    path: str
    modified: datetime
    size: int = 0


def _error_code(e: ClientError) -> str:
    return e.response.get('Error', {}).get('Code', 'Unknown')


class S3Storage:
    """
    Handler for S3-compatible object storage.

    Objects are stored flat: the key is the artifact's file name.
    """

    def __init__(self, config: RemoteConfig, client=None):
        """
        Initialize S3 storage handler.

        Args:
            config: Bucket, endpoint, region and credentials
            client: Pre-built boto3 S3 client (optional)

        Raises:
            StorageError: If the client cannot be created
        """
        self.bucket_name = config.bucket
        self.endpoint_url = config.endpoint_url
        self.region = config.region

        if client is not None:
            self.s3_client = client
            return

        try:
            self.s3_client = boto3.client(
                's3',
                endpoint_url=config.endpoint_url,
                aws_access_key_id=config.access_key,
                aws_secret_access_key=config.secret_key,
                region_name=config.region,
                config=BotoConfig(s3={'addressing_style': 'path'})
            )
        except (BotoCoreError, ValueError) as e:
            raise StorageError(f"Failed to initialize S3 client: {e}")

    def upload(self, local_path: str, key: Optional[str] = None) -> str:
        """
        Upload a file to the bucket.

        Args:
            local_path: Path to local artifact
            key: Object key (default: the file's base name)

        Returns:
            Key of uploaded object

        Raises:
            RemoteUploadError: If upload fails
        """
        if not os.path.exists(local_path):
            raise RemoteUploadError(f"Local file not found: {local_path}")

        s3_key = key or os.path.basename(local_path)

        try:
            file_size = os.path.getsize(local_path)

            if file_size > MULTIPART_THRESHOLD:
                self._multipart_upload(local_path, s3_key)
            else:
                self._simple_upload(local_path, s3_key)

            return s3_key

        except ClientError as e:
            raise RemoteUploadError(f"S3 upload failed ({_error_code(e)}): {e}")
        except BotoCoreError as e:
            raise RemoteUploadError(f"S3 upload failed: {e}")
        except OSError as e:
            raise RemoteUploadError(f"Failed to read {local_path}: {e}")

    def _simple_upload(self, local_path: str, s3_key: str):
        """
        Upload file using simple put_object.

        Args:
            local_path: Path to local file
            s3_key: S3 object key
        """
        with open(local_path, 'rb') as f:
            self.s3_client.put_object(
                Bucket=self.bucket_name,
                Key=s3_key,
                Body=f
            )

    def _multipart_upload(self, local_path: str, s3_key: str):
        """
        Upload large file in parts; the upload is aborted if any part fails.

        Args:
            local_path: Path to local file
            s3_key: S3 object key
        """
        response = self.s3_client.create_multipart_upload(
            Bucket=self.bucket_name,
            Key=s3_key
        )
        upload_id = response['UploadId']

        parts = []

        try:
            with open(local_path, 'rb') as f:
                part_number = 1

                while True:
                    data = f.read(MULTIPART_CHUNK_SIZE)
                    if not data:
                        break

                    response = self.s3_client.upload_part(
                        Bucket=self.bucket_name,
                        Key=s3_key,
                        PartNumber=part_number,
                        UploadId=upload_id,
                        Body=data
                    )

                    parts.append({
                        'PartNumber': part_number,
                        'ETag': response['ETag']
                    })

                    part_number += 1

            self.s3_client.complete_multipart_upload(
                Bucket=self.bucket_name,
                Key=s3_key,
                UploadId=upload_id,
                MultipartUpload={'Parts': parts}
            )

        except Exception:
            try:
                self.s3_client.abort_multipart_upload(
                    Bucket=self.bucket_name,
                    Key=s3_key,
                    UploadId=upload_id
                )
            except (ClientError, BotoCoreError) as abort_error:
                logger.warning(f"Failed to abort multipart upload of {s3_key}: {abort_error}")
            raise

    def delete(self, s3_key: str):
        """
        Delete an object from the bucket.

        Args:
            s3_key: S3 object key to delete

        Raises:
            RemoteDeleteError: If deletion fails
        """
        try:
            self.s3_client.delete_object(
                Bucket=self.bucket_name,
                Key=s3_key
            )
        except ClientError as e:
            raise RemoteDeleteError(f"S3 delete of {s3_key} failed ({_error_code(e)}): {e}")
        except BotoCoreError as e:
            raise RemoteDeleteError(f"S3 delete of {s3_key} failed: {e}")

    def list_objects(self) -> List[RemoteObject]:
        """
        List every object in the bucket, in the order the provider returns them.

        Returns:
            List of RemoteObject

        Raises:
            StorageError: If listing fails
        """
        try:
            objects = []
            paginator = self.s3_client.get_paginator('list_objects_v2')

            for page in paginator.paginate(Bucket=self.bucket_name):
                for obj in page.get('Contents', []):
                    objects.append(RemoteObject(
                        key=obj['Key'],
                        last_modified=obj['LastModified'],
                        size=obj.get('Size', 0)
                    ))

            return objects

        except ClientError as e:
            raise StorageError(f"S3 list failed ({_error_code(e)}): {e}")
        except BotoCoreError as e:
            raise StorageError(f"S3 list failed: {e}")


class LocalStorage:
    """
    Handler for the local staging directory.

    Artifacts live directly in base_path; only files whose names end in
    .sql, .dump, .sql.gz or .dump.gz count as backups.
    """

    def __init__(self, base_path: str):
        """
        Initialize local storage handler.

        Args:
            base_path: Staging directory
        """
        self.base_path = Path(base_path)

    def ensure_directory(self) -> Path:
        """
        Create the staging directory (and parents) if it doesn't exist.

        Returns:
            The staging directory path

        Raises:
            StorageError: If the directory cannot be created
        """
        try:
            self.base_path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Failed to create staging directory {self.base_path}: {e}")
        return self.base_path

    def list_artifacts(self) -> Iterator[StagedArtifact]:
        """
        Iterate over staged artifacts, newest first.

        The directory is read and sorted up front; files removed while it is
        being read are skipped.

        Returns:
            Iterator of StagedArtifact; empty if the directory is missing or
            holds no backups

        Raises:
            StorageError: If the directory cannot be read
        """
        if not self.base_path.is_dir():
            return iter(())

        try:
            artifacts = []
            for entry in os.scandir(self.base_path):
                if not entry.is_file() or not is_artifact_name(entry.name):
                    continue
                try:
                    stat = entry.stat()
                except FileNotFoundError:
                    # Removed since the directory was scanned
                    continue
                artifacts.append(StagedArtifact(
                    name=entry.name,
                    path=str(self.base_path / entry.name),
                    modified=datetime.fromtimestamp(stat.st_mtime),
                    size=stat.st_size
                ))
        except OSError as e:
            raise StorageError(f"Failed to list staging directory {self.base_path}: {e}")

        artifacts.sort(key=lambda artifact: artifact.modified, reverse=True)
        return iter(artifacts)

    def latest(self) -> Optional[str]:
        """
        Get the most recent staged artifact.

        Returns:
            Path of the newest artifact, or None if there are none
        """
        newest = next(self.list_artifacts(), None)
        return newest.path if newest else None

    def delete(self, path: str):
        """
        Delete a staged file. A file that is already gone is not an error.

        Args:
            path: Path of the file to delete

        Raises:
            StorageError: If deletion fails
        """
        try:
            os.remove(path)
        except FileNotFoundError:
            pass
        except PermissionError as e:
            raise StorageError(f"Permission denied deleting {path}: {e}")
        except OSError as e:
            raise StorageError(f"Failed to delete local file {path}: {e}")
