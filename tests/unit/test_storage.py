"""
Unit tests for storage handlers (pgbackup/backup/storage.py).

Tests S3Storage against moto and LocalStorage against a temp directory.
"""

import os
import time
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError
from moto import mock_aws

from pgbackup.backup import storage as storage_module
from pgbackup.backup.storage import (
    S3Storage,
    LocalStorage,
    StorageError,
    RemoteUploadError,
    RemoteDeleteError,
)
from pgbackup.config import RemoteConfig


def _set_mtime(path, seconds_ago):
    stamp = time.time() - seconds_ago
    os.utime(path, (stamp, stamp))


class TestS3Storage:
    """Test S3Storage for bucket operations."""

    def test_upload_uses_file_name_as_key(self, mock_s3, remote_config, tmp_path):
        """Test objects are stored flat under the artifact's base name."""
        artifact = tmp_path / 'shop-full-2024-01-15T12-00-00-000Z.dump'
        artifact.write_bytes(b'PGDMP' * 100)

        storage = S3Storage(remote_config)
        key = storage.upload(str(artifact))

        assert key == 'shop-full-2024-01-15T12-00-00-000Z.dump'
        obj = mock_s3.Object('test-bucket', key)
        assert obj.content_length == 500

    def test_upload_missing_file(self, mock_s3, remote_config):
        storage = S3Storage(remote_config)

        with pytest.raises(RemoteUploadError):
            storage.upload('/nonexistent/shop.dump')

    @mock_aws
    def test_upload_to_missing_bucket(self, tmp_path):
        """Test upload errors surface as RemoteUploadError."""
        artifact = tmp_path / 'shop.dump'
        artifact.write_bytes(b'data')

        storage = S3Storage(RemoteConfig(bucket='no-such-bucket', region='us-east-1', access_key='testing', secret_key='testing'))

        with pytest.raises(RemoteUploadError) as exc_info:
            storage.upload(str(artifact))

        assert 'NoSuchBucket' in str(exc_info.value)

    def test_multipart_upload(self, mock_s3, remote_config, tmp_path, monkeypatch):
        """Test large files go through multipart upload."""
        monkeypatch.setattr(storage_module, 'MULTIPART_THRESHOLD', 10)
        artifact = tmp_path / 'big.dump'
        artifact.write_bytes(b'x' * 1000)

        storage = S3Storage(remote_config)
        key = storage.upload(str(artifact))

        body = mock_s3.Object('test-bucket', key).get()['Body'].read()
        assert body == b'x' * 1000

    def test_multipart_upload_aborts_on_failure(self, remote_config, tmp_path, monkeypatch):
        monkeypatch.setattr(storage_module, 'MULTIPART_THRESHOLD', 10)
        artifact = tmp_path / 'big.dump'
        artifact.write_bytes(b'x' * 1000)

        client = MagicMock()
        client.create_multipart_upload.return_value = {'UploadId': 'upload-1'}
        client.upload_part.side_effect = ClientError(
            {'Error': {'Code': 'InternalError', 'Message': 'boom'}}, 'UploadPart'
        )

        storage = S3Storage(remote_config, client=client)

        with pytest.raises(RemoteUploadError):
            storage.upload(str(artifact))

        client.abort_multipart_upload.assert_called_once_with(
            Bucket='test-bucket', Key='big.dump', UploadId='upload-1'
        )
        client.complete_multipart_upload.assert_not_called()

    def test_list_objects_whole_bucket(self, mock_s3, remote_config):
        """Test listing is flat across every kind of artifact."""
        bucket = mock_s3.Bucket('test-bucket')
        bucket.put_object(Key='shop-full-a.dump', Body=b'1')
        bucket.put_object(Key='shop-data-only-b.sql.gz', Body=b'22')
        bucket.put_object(Key='crm-full-c.dump', Body=b'333')

        objects = S3Storage(remote_config).list_objects()

        assert sorted(obj.key for obj in objects) == [
            'crm-full-c.dump', 'shop-data-only-b.sql.gz', 'shop-full-a.dump'
        ]
        assert all(obj.last_modified is not None for obj in objects)
        assert {obj.key: obj.size for obj in objects}['crm-full-c.dump'] == 3

    def test_list_objects_empty_bucket(self, mock_s3, remote_config):
        assert S3Storage(remote_config).list_objects() == []

    def test_list_objects_paginates(self, remote_config):
        client = MagicMock()
        paginator = MagicMock()
        client.get_paginator.return_value = paginator
        paginator.paginate.return_value = [
            {'Contents': [{'Key': 'a.dump', 'LastModified': 1, 'Size': 1}]},
            {'Contents': [{'Key': 'b.dump', 'LastModified': 2, 'Size': 2}]},
            {},
        ]

        objects = S3Storage(remote_config, client=client).list_objects()

        assert [obj.key for obj in objects] == ['a.dump', 'b.dump']
        paginator.paginate.assert_called_once_with(Bucket='test-bucket')

    def test_delete(self, mock_s3, remote_config):
        bucket = mock_s3.Bucket('test-bucket')
        bucket.put_object(Key='old.dump', Body=b'1')

        storage = S3Storage(remote_config)
        storage.delete('old.dump')

        assert storage.list_objects() == []

    def test_delete_error(self, remote_config):
        client = MagicMock()
        client.delete_object.side_effect = ClientError(
            {'Error': {'Code': 'AccessDenied', 'Message': 'no'}}, 'DeleteObject'
        )

        with pytest.raises(RemoteDeleteError) as exc_info:
            S3Storage(remote_config, client=client).delete('old.dump')

        assert 'AccessDenied' in str(exc_info.value)

    def test_list_error(self, remote_config):
        client = MagicMock()
        client.get_paginator.return_value.paginate.side_effect = ClientError(
            {'Error': {'Code': 'AccessDenied', 'Message': 'no'}}, 'ListObjectsV2'
        )

        with pytest.raises(StorageError):
            S3Storage(remote_config, client=client).list_objects()

    def test_invalid_endpoint(self):
        with pytest.raises(StorageError) as exc_info:
            S3Storage(RemoteConfig(bucket='test-bucket', endpoint_url='not a url'))

        assert 'not a url' in str(exc_info.value)

    def test_remote_errors_are_storage_errors(self):
        assert issubclass(RemoteUploadError, StorageError)
        assert issubclass(RemoteDeleteError, StorageError)


class TestLocalStorage:
    """Test LocalStorage for the staging directory."""

    def test_ensure_directory_creates_parents(self, tmp_path):
        target = tmp_path / 'a' / 'b' / 'backups'

        LocalStorage(str(target)).ensure_directory()

        assert target.is_dir()

    def test_ensure_directory_is_idempotent(self, tmp_path):
        storage = LocalStorage(str(tmp_path / 'backups'))

        storage.ensure_directory()
        storage.ensure_directory()

        assert (tmp_path / 'backups').is_dir()

    def test_ensure_directory_failure(self, tmp_path):
        blocker = tmp_path / 'file'
        blocker.write_text('not a directory')

        with pytest.raises(StorageError):
            LocalStorage(str(blocker / 'backups')).ensure_directory()

    def test_latest_empty_directory(self, backup_dir):
        """Test an empty staging directory yields None, not an error."""
        assert LocalStorage(str(backup_dir)).latest() is None

    def test_latest_missing_directory(self, tmp_path):
        storage = LocalStorage(str(tmp_path / 'never-created'))

        assert storage.latest() is None
        assert list(storage.list_artifacts()) == []

    def test_latest_picks_newest(self, backup_dir):
        """Test file b (newer) wins over file a (older)."""
        older = backup_dir / 'a.sql'
        newer = backup_dir / 'b.dump'
        older.write_text('a')
        newer.write_text('b')
        _set_mtime(older, 3600)
        _set_mtime(newer, 60)

        assert LocalStorage(str(backup_dir)).latest() == str(newer)

    def test_list_artifacts_filters_and_orders(self, backup_dir):
        names_and_ages = {
            'shop-full-1.dump': 300,
            'shop-data-only-2.sql.gz': 100,
            'manual.sql': 200,
            'old.dump.gz': 400,
            'README.txt': 10,
            'archive.tar.gz': 5,
        }
        for name, age in names_and_ages.items():
            path = backup_dir / name
            path.write_bytes(b'x' * age)
            _set_mtime(path, age)
        (backup_dir / 'subdir.sql').mkdir()

        artifacts = list(LocalStorage(str(backup_dir)).list_artifacts())

        assert [a.name for a in artifacts] == [
            'shop-data-only-2.sql.gz',
            'manual.sql',
            'shop-full-1.dump',
            'old.dump.gz',
        ]
        assert artifacts[0].size == 100
        assert artifacts[0].path == str(backup_dir / 'shop-data-only-2.sql.gz')

    def test_list_artifacts_is_single_pass(self, backup_dir):
        (backup_dir / 'a.sql').write_text('a')
        artifacts = LocalStorage(str(backup_dir)).list_artifacts()

        assert len(list(artifacts)) == 1
        assert list(artifacts) == []

    def test_list_artifacts_skips_files_removed_during_scan(self, backup_dir, monkeypatch):
        """Test a file deleted between the directory read and stat() is skipped."""
        kept = backup_dir / 'shop-full-1.dump'
        kept.write_bytes(b'PGDMP')
        real_scandir = os.scandir

        class VanishedEntry:
            name = 'shop-full-0.dump'

            def is_file(self):
                return True

            def stat(self):
                raise FileNotFoundError(2, 'No such file or directory', self.name)

        def scandir_with_vanished_file(path):
            return [VanishedEntry()] + list(real_scandir(path))

        monkeypatch.setattr(storage_module.os, 'scandir', scandir_with_vanished_file)

        artifacts = list(LocalStorage(str(backup_dir)).list_artifacts())

        assert [a.name for a in artifacts] == ['shop-full-1.dump']

    def test_delete(self, backup_dir):
        target = backup_dir / 'a.sql'
        target.write_text('a')
        storage = LocalStorage(str(backup_dir))

        storage.delete(str(target))
        storage.delete(str(target))

        assert not target.exists()

    def test_delete_directory_fails(self, backup_dir):
        target = backup_dir / 'dir.sql'
        target.mkdir()

        with pytest.raises(StorageError):
            LocalStorage(str(backup_dir)).delete(str(target))
