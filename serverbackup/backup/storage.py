"""
Storage backends for backup archives.

Supports:
- S3Storage: Amazon S3 bucket
- LocalStorage: Local (or mounted) directory

Both lay archives out as ``{prefix}/{YYYY-MM-DD}/{archive}`` and expose the
same operations. Keys passed to and returned from a backend are relative to
its prefix; folder entries returned by ``list_entries`` end with ``/``.
"""

import os
import shutil
import logging
from pathlib import Path
from typing import List, Optional

import boto3
from botocore.exceptions import ClientError, BotoCoreError

from .errors import BackupError


logger = logging.getLogger(__name__)

# S3 DeleteObjects accepts at most 1000 keys per request
DELETE_BATCH_SIZE = 1000


class StorageError(BackupError):
    """Raised when storage operation fails."""
    pass


def _join(*parts: str) -> str:
    return '/'.join(part.strip('/') for part in parts if part and part.strip('/'))


class S3Storage:
    """
    Handler for backups stored in an AWS S3 bucket.
    """

    def __init__(
        self,
        bucket_name: str,
        prefix: str = '',
        region: Optional[str] = None,
        access_key: Optional[str] = None,
        secret_key: Optional[str] = None
    ):
        """
        Initialize S3 storage handler.

        Credentials fall back to boto3's default chain (environment,
        shared config, instance profile) when not given explicitly.

        Args:
            bucket_name: S3 bucket name
            prefix: Key prefix under which dated folders live
            region: AWS region (optional)
            access_key: AWS access key ID (optional)
            secret_key: AWS secret access key (optional)
        """
        self.bucket_name = bucket_name
        self.prefix = prefix.strip('/')
        self.region = region

        try:
            self.s3_client = boto3.client(
                's3',
                aws_access_key_id=access_key,
                aws_secret_access_key=secret_key,
                region_name=region
            )
        except Exception as e:
            raise StorageError(f"Failed to initialize S3 client: {e}")

    def __repr__(self):
        return f"s3://{_join(self.bucket_name, self.prefix)}/"

    def key_for(self, date_tag: str, filename: str) -> str:
        return _join(date_tag, filename)

    def _full_key(self, key: str) -> str:
        return _join(self.prefix, key)

    def list_entries(self, path: str = '') -> List[str]:
        """
        List entries directly under ``path``.

        Returns:
            Sorted names; sub-folders carry a trailing ``/``

        Raises:
            StorageError: If listing fails
        """
        list_prefix = self._full_key(path)
        if list_prefix:
            list_prefix += '/'

        try:
            entries = []
            paginator = self.s3_client.get_paginator('list_objects_v2')

            for page in paginator.paginate(Bucket=self.bucket_name, Prefix=list_prefix, Delimiter='/'):
                for common in page.get('CommonPrefixes', []):
                    entries.append(common['Prefix'][len(list_prefix):])
                for obj in page.get('Contents', []):
                    name = obj['Key'][len(list_prefix):]
                    if name:
                        entries.append(name)

            return sorted(entries)

        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            raise StorageError(f"S3 list failed ({error_code}): {e}")
        except BotoCoreError as e:
            raise StorageError(f"S3 list failed: {e}")

    def put(self, local_path: str, key: str) -> str:
        """
        Upload a local file.

        Returns:
            Full S3 key of the uploaded object

        Raises:
            StorageError: If upload fails
        """
        if not os.path.exists(local_path):
            raise StorageError(f"Local file not found: {local_path}")

        full_key = self._full_key(key)
        try:
            # upload_file switches to multipart transfers for large archives
            self.s3_client.upload_file(local_path, self.bucket_name, full_key)
            return full_key
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            raise StorageError(f"S3 upload failed ({error_code}): {e}")
        except BotoCoreError as e:
            raise StorageError(f"S3 upload failed: {e}")
        except Exception as e:
            raise StorageError(f"Failed to upload to S3: {e}")

    def delete(self, key: str, recursive: bool = False):
        """
        Delete an object, or every object under a folder when recursive.

        Raises:
            StorageError: If deletion fails
        """
        full_key = self._full_key(key)
        try:
            if not recursive:
                self.s3_client.delete_object(Bucket=self.bucket_name, Key=full_key)
                return

            folder = full_key.rstrip('/') + '/'
            paginator = self.s3_client.get_paginator('list_objects_v2')
            batch = []
            for page in paginator.paginate(Bucket=self.bucket_name, Prefix=folder):
                for obj in page.get('Contents', []):
                    batch.append({'Key': obj['Key']})
                    if len(batch) == DELETE_BATCH_SIZE:
                        self._delete_batch(batch)
                        batch = []
            if batch:
                self._delete_batch(batch)

        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            raise StorageError(f"S3 delete failed ({error_code}): {e}")
        except BotoCoreError as e:
            raise StorageError(f"S3 delete failed: {e}")

    def _delete_batch(self, objects: List[dict]):
        response = self.s3_client.delete_objects(
            Bucket=self.bucket_name,
            Delete={'Objects': objects, 'Quiet': True}
        )
        errors = response.get('Errors', [])
        if errors:
            first = errors[0]
            raise StorageError(
                f"S3 delete failed for {len(errors)} object(s), "
                f"first: {first.get('Key')} ({first.get('Code')})"
            )

    def test_connection(self) -> bool:
        """
        Test S3 connection and bucket access.

        Returns:
            True if connection is successful

        Raises:
            StorageError: If connection test fails
        """
        try:
            self.s3_client.head_bucket(Bucket=self.bucket_name)
            return True
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            if error_code in ('404', 'NoSuchBucket'):
                raise StorageError(f"Bucket does not exist: {self.bucket_name}")
            elif error_code == '403':
                raise StorageError(f"Access denied to bucket: {self.bucket_name}")
            else:
                raise StorageError(f"S3 connection test failed ({error_code}): {e}")
        except Exception as e:
            raise StorageError(f"Failed to connect to S3: {e}")


class LocalStorage:
    """
    Handler for backups stored in a local directory.

    Uses the same dated layout as S3:
    {base_path}/{prefix}/{YYYY-MM-DD}/{filename}
    """

    def __init__(self, base_path: str, prefix: str = ''):
        self.base_path = Path(base_path)
        self.prefix = prefix.strip('/')
        self.root = self.base_path / self.prefix if self.prefix else self.base_path

    def __repr__(self):
        return f"{self.root}/"

    def key_for(self, date_tag: str, filename: str) -> str:
        return _join(date_tag, filename)

    def list_entries(self, path: str = '') -> List[str]:
        directory = self.root / path if path else self.root
        if not directory.exists():
            return []

        try:
            return sorted(
                f"{item.name}/" if item.is_dir() else item.name
                for item in directory.iterdir()
            )
        except OSError as e:
            raise StorageError(f"Failed to list local files: {e}")

    def put(self, local_path: str, key: str) -> str:
        if not os.path.exists(local_path):
            raise StorageError(f"Local file not found: {local_path}")

        dest_path = self.root / key
        try:
            dest_path.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(local_path, dest_path)
            return _join(self.prefix, key)
        except PermissionError as e:
            raise StorageError(f"Permission denied writing to {dest_path}: {e}")
        except OSError as e:
            raise StorageError(f"Failed to store locally: {e}")

    def delete(self, key: str, recursive: bool = False):
        full_path = self.root / key.rstrip('/')

        try:
            if full_path.is_dir():
                if not recursive:
                    raise StorageError(f"{full_path} is a directory; use recursive delete")
                shutil.rmtree(full_path)
            elif full_path.exists():
                full_path.unlink()
        except PermissionError as e:
            raise StorageError(f"Permission denied deleting {full_path}: {e}")
        except OSError as e:
            raise StorageError(f"Failed to delete local path: {e}")

    def test_connection(self) -> bool:
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Failed to create local storage directory: {e}")
        if not os.access(self.root, os.W_OK):
            raise StorageError(f"Local storage directory is not writable: {self.root}")
        return True


def create_storage(settings):
    """
    Factory function to create the configured storage backend.

    Args:
        settings: Settings instance

    Returns:
        S3Storage or LocalStorage instance

    Raises:
        ValueError: If the backend is unknown
    """
    if settings.storage_backend == 's3':
        return S3Storage(
            bucket_name=settings.bucket_name,
            prefix=settings.prefix,
            region=settings.region
        )
    elif settings.storage_backend == 'local':
        return LocalStorage(settings.local_storage_dir, prefix=settings.prefix)
    else:
        raise ValueError(f"Invalid storage backend: {settings.storage_backend}")
