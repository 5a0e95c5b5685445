"""
Remote retention for backups.

Uploads finished artifacts to object storage, removes the local copy once
the upload has succeeded, and keeps only the newest N objects in the
bucket. Failures here are logged and never abort the run: the local
artifact stays behind as a fallback.
"""

import logging
from typing import List, Optional

from pgbackup.config import Settings
from .storage import S3Storage, LocalStorage, RemoteObject, StorageError


logger = logging.getLogger(__name__)


class RetentionManager:
    """
    Manages upload and count-based retention against the bucket.

    The policy is global: every object in the bucket counts towards
    keep_last, whichever database or mode produced it.
    """

    def __init__(self, remote: Optional[S3Storage], local: LocalStorage,
                 keep_last: int = 7):
        """
        Initialize retention manager.

        Args:
            remote: Object storage handler, or None when remote storage is disabled
            local: Staging directory handler (used to remove uploaded files)
            keep_last: Number of objects to keep in the bucket
        """
        self.remote = remote
        self.local = local
        self.keep_last = keep_last

    @classmethod
    def from_settings(cls, settings: Settings, local: Optional[LocalStorage] = None) -> 'RetentionManager':
        """
        Build a retention manager from settings.

        Remote storage is disabled only when no bucket is configured.

        Raises:
            StorageError: If a bucket is configured but the client cannot be created
        """
        local = local or LocalStorage(settings.backup_dir)
        remote = S3Storage(settings.remote) if settings.remote is not None else None
        return cls(remote, local, settings.keep_last)

    @property
    def enabled(self) -> bool:
        return self.remote is not None

    def upload(self, local_path: str) -> bool:
        """
        Upload an artifact and delete the local copy afterwards.

        Does nothing (and reports success) when remote storage is disabled.

        Args:
            local_path: Path to the artifact

        Returns:
            True if the artifact is safely stored (or remote is disabled),
            False if the upload failed and the local file was kept
        """
        if not self.enabled:
            logger.debug("Remote storage not configured, keeping backup locally")
            return True

        try:
            key = self.remote.upload(local_path)
        except StorageError as e:
            logger.error(f"Upload of {local_path} failed, local file kept: {e}")
            return False

        logger.info(f"Uploaded {key} to bucket {self.remote.bucket_name}")

        try:
            self.local.delete(local_path)
            logger.info(f"Local file deleted: {local_path}")
        except StorageError as e:
            logger.warning(f"Uploaded but could not delete local file: {e}")

        return True

    def prune(self, keep_count: Optional[int] = None) -> int:
        """
        Delete every object beyond the newest keep_count in the bucket.

        Objects are ordered by last-modified, newest first; equal timestamps
        keep the provider's listing order. A failed delete is logged and
        the remaining deletes still run.

        Args:
            keep_count: Objects to keep (default: configured keep_last)

        Returns:
            Number of objects deleted
        """
        if not self.enabled:
            return 0

        keep = self.keep_last if keep_count is None else keep_count

        try:
            objects = self.remote.list_objects()
        except StorageError as e:
            logger.error(f"Retention skipped, could not list bucket: {e}")
            return 0

        if len(objects) <= keep:
            logger.debug(f"Bucket holds {len(objects)} objects, nothing to prune (keep {keep})")
            return 0

        ordered = sorted(objects, key=lambda obj: obj.last_modified, reverse=True)

        deleted_count = 0
        for obj in ordered[keep:]:
            try:
                self.remote.delete(obj.key)
                deleted_count += 1
                logger.info(f"Deleted old backup: {obj.key}")
            except StorageError as e:
                logger.error(f"Failed to delete old backup {obj.key}: {e}")

        logger.info(f"Retention: kept {keep}, deleted {deleted_count} of {len(ordered) - keep}")
        return deleted_count

    def upload_and_prune(self, local_path: str) -> bool:
        """
        Upload an artifact, then apply retention if the upload succeeded.

        Returns:
            Result of upload()
        """
        uploaded = self.upload(local_path)
        if uploaded and self.enabled:
            self.prune()
        return uploaded

    def list_remote(self) -> List[RemoteObject]:
        """
        List remote backups, newest first.

        Returns:
            List of RemoteObject (empty when remote storage is disabled)

        Raises:
            StorageError: If listing fails
        """
        if not self.enabled:
            return []
        objects = self.remote.list_objects()
        return sorted(objects, key=lambda obj: obj.last_modified, reverse=True)
