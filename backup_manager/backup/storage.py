"""
Storage handlers for backup archives.

Supports:
- LocalStorage: Move archives into the local backup directory
- RcloneStorage: Remote storage through an rclone remote ("remote-name:path")
- S3Storage: Remote storage in an S3 bucket ("bucket/prefix")

Remote layout is one directory per target under the configured root.
"""

import os
import shutil
import logging
import subprocess
from pathlib import Path
from typing import Optional, List, Tuple

import boto3
from botocore.exceptions import ClientError, BotoCoreError


logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Raised when storage operation fails."""
    pass


class LocalStorage:
    """
    Handler for storing backups in the local backup directory.

    Archives are stored flat: {base_path}/{filename}
    """

    def __init__(self, base_path: str):
        """
        Initialize local storage handler.

        Args:
            base_path: Base directory for local backups
        """
        self.base_path = Path(base_path)

        # Create base directory if it doesn't exist
        try:
            self.base_path.mkdir(parents=True, exist_ok=True)
        except Exception as e:
            raise StorageError(f"Failed to create local storage directory: {e}")

    def store(self, source_path: str) -> str:
        """
        Move archive into local storage.

        Args:
            source_path: Path to source archive file

        Returns:
            Full path of the stored file

        Raises:
            StorageError: If the move fails
        """
        if not os.path.exists(source_path):
            raise StorageError(f"Source file not found: {source_path}")

        dest_path = self.base_path / os.path.basename(source_path)

        try:
            shutil.move(source_path, dest_path)
            return str(dest_path)
        except PermissionError as e:
            raise StorageError(f"Permission denied writing to {dest_path}: {e}")
        except Exception as e:
            raise StorageError(f"Failed to move {source_path} to {self.base_path}: {e}")


class RcloneStorage:
    """
    Handler for remote storage through the rclone CLI.

    Uploads land in {root}/{target}/{filename}.
    """

    def __init__(self, root: str, rclone_bin: str = 'rclone', verbose: bool = False):
        """
        Initialize rclone storage handler.

        Args:
            root: Remote root in rclone syntax ("remote-name:path")
            rclone_bin: rclone executable
            verbose: Pass -vv to uploads
        """
        self.root = root.rstrip('/')
        self.rclone_bin = rclone_bin
        self.verbose = verbose

    @property
    def remote_name(self) -> str:
        if ':' not in self.root:
            return ''
        return self.root.split(':', 1)[0]

    def _path(self, *parts: str) -> str:
        return '/'.join([self.root, *parts])

    def _run(self, args: List[str], description: str) -> str:
        cmd = [self.rclone_bin] + args
        try:
            result = subprocess.run(cmd, capture_output=True, text=True)
        except FileNotFoundError:
            raise StorageError(f"rclone executable not found: {self.rclone_bin}")
        except OSError as e:
            raise StorageError(f"Failed to run rclone for {description}: {e}")

        if result.returncode != 0:
            stderr = (result.stderr or '').strip()
            raise StorageError(f"rclone {description} failed (exit {result.returncode}): {stderr}")
        return result.stdout

    def test_connection(self) -> bool:
        """
        Check that the configured remote exists in the rclone configuration.

        Raises:
            StorageError: If the root is malformed or the remote is unknown
        """
        remote = self.remote_name
        if not remote:
            raise StorageError(
                f"Invalid remote backup path: {self.root}. "
                "Expected format: 'remote-name:path' (e.g., 'b2:/backups')"
            )

        output = self._run(['listremotes'], 'listremotes')
        remotes = [line.strip() for line in output.splitlines() if line.strip()]
        if f"{remote}:" not in remotes:
            available = ', '.join(remotes) or 'none'
            raise StorageError(
                f"Rclone remote '{remote}' not found in rclone configuration "
                f"(available remotes: {available})"
            )
        return True

    def upload(self, local_path: str, target: str) -> str:
        """
        Copy an archive to {root}/{target}/.

        Returns:
            Remote path of the uploaded file

        Raises:
            StorageError: If upload fails
        """
        if not os.path.exists(local_path):
            raise StorageError(f"Local file not found: {local_path}")

        destination = self._path(target) + '/'
        args = ['copy']
        if self.verbose:
            args.append('-vv')
        args += [local_path, destination]
        self._run(args, f"upload to {destination}")
        return destination + os.path.basename(local_path)

    def list_targets(self) -> List[str]:
        """List target directories directly under the root."""
        output = self._run(['lsd', self.root], f"lsd {self.root}")
        targets = []
        for line in output.splitlines():
            # "          -1 2024-01-01 10:00:00        -1 name with spaces"
            parts = line.split(None, 4)
            if len(parts) == 5 and parts[4].strip():
                targets.append(parts[4].strip())
        return targets

    def list_archives(self, target: str) -> List[Tuple[str, int]]:
        """
        List (filename, size) pairs stored for a target.

        Entries in nested directories are returned with their relative path and
        are therefore never mistaken for archives of this target.
        """
        path = self._path(target) + '/'
        output = self._run(['ls', path], f"ls {path}")
        entries = []
        for line in output.splitlines():
            parts = line.strip().split(None, 1)
            if len(parts) != 2:
                continue
            size, filename = parts
            try:
                entries.append((filename.strip(), int(size)))
            except ValueError:
                continue
        return entries

    def delete(self, target: str, filename: str):
        """
        Delete one archive of a target.

        Raises:
            StorageError: If deletion fails
        """
        path = self._path(target, filename)
        self._run(['deletefile', path], f"delete {path}")


class S3Storage:
    """
    Handler for storing backups in AWS S3 (or an S3-compatible service).

    Uploads archives with the key format: {prefix}/{target}/{filename}
    """

    def __init__(self, root: str, region: str = 'us-east-1', access_key: Optional[str] = None,
                 secret_key: Optional[str] = None, endpoint_url: Optional[str] = None):
        """
        Initialize S3 storage handler.

        Args:
            root: "bucket" or "bucket/prefix" (an "s3://" scheme is accepted)
            region: AWS region (default: us-east-1)
            access_key: AWS access key ID (default credential chain if omitted)
            secret_key: AWS secret access key
            endpoint_url: Custom endpoint for S3-compatible services
        """
        if root.startswith('s3://'):
            root = root[len('s3://'):]
        bucket, _, prefix = root.strip('/').partition('/')
        if not bucket:
            raise StorageError(f"Invalid S3 remote backup path: {root!r}")

        self.bucket_name = bucket
        self.prefix = prefix.strip('/')
        self.region = region

        try:
            self.s3_client = boto3.client(
                's3',
                aws_access_key_id=access_key,
                aws_secret_access_key=secret_key,
                region_name=region,
                endpoint_url=endpoint_url
            )
        except Exception as e:
            raise StorageError(f"Failed to initialize S3 client: {e}")

    def _key(self, *parts: str) -> str:
        return '/'.join(p for p in (self.prefix, *parts) if p)

    def upload(self, local_path: str, target: str) -> str:
        """
        Upload archive to S3.

        Args:
            local_path: Path to local archive file
            target: Target name (used as key directory)

        Returns:
            S3 key of uploaded file

        Raises:
            StorageError: If upload fails
        """
        if not os.path.exists(local_path):
            raise StorageError(f"Local file not found: {local_path}")

        s3_key = self._key(target, os.path.basename(local_path))

        try:
            file_size = os.path.getsize(local_path)

            # Use multipart upload for files larger than 100MB
            if file_size > 100 * 1024 * 1024:  # 100MB
                self._multipart_upload(local_path, s3_key)
            else:
                self._simple_upload(local_path, s3_key)

            return s3_key

        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            raise StorageError(f"S3 upload failed ({error_code}): {e}")
        except BotoCoreError as e:
            raise StorageError(f"S3 upload failed: {e}")
        except Exception as e:
            raise StorageError(f"Failed to upload to S3: {e}")

    def _simple_upload(self, local_path: str, s3_key: str):
        with open(local_path, 'rb') as f:
            self.s3_client.put_object(
                Bucket=self.bucket_name,
                Key=s3_key,
                Body=f
            )

    def _multipart_upload(self, local_path: str, s3_key: str):
        """
        Upload large file using multipart upload in 10MB parts.

        The upload is aborted if any part fails.
        """
        chunk_size = 10 * 1024 * 1024

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
                    data = f.read(chunk_size)
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
                logger.warning(f"Failed to abort multipart upload {upload_id}: {abort_error}")
            raise

    def _paginate(self, prefix: str):
        paginator = self.s3_client.get_paginator('list_objects_v2')
        return paginator.paginate(Bucket=self.bucket_name, Prefix=prefix, Delimiter='/')

    def list_targets(self) -> List[str]:
        """List target "directories" directly under the prefix."""
        base = self._key() + '/' if self.prefix else ''
        try:
            targets = []
            for page in self._paginate(base):
                for common in page.get('CommonPrefixes', []):
                    name = common['Prefix'][len(base):].strip('/')
                    if name:
                        targets.append(name)
            return targets
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            raise StorageError(f"S3 list failed ({error_code}): {e}")
        except Exception as e:
            raise StorageError(f"Failed to list S3 objects: {e}")

    def list_archives(self, target: str) -> List[Tuple[str, int]]:
        """List (filename, size) pairs stored directly under a target."""
        base = self._key(target) + '/'
        try:
            entries = []
            for page in self._paginate(base):
                for obj in page.get('Contents', []):
                    filename = obj['Key'][len(base):]
                    if filename:
                        entries.append((filename, obj['Size']))
            return entries
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            raise StorageError(f"S3 list failed ({error_code}): {e}")
        except Exception as e:
            raise StorageError(f"Failed to list S3 objects: {e}")

    def delete(self, target: str, filename: str):
        """
        Delete an archive from S3.

        Raises:
            StorageError: If deletion fails
        """
        try:
            self.s3_client.delete_object(
                Bucket=self.bucket_name,
                Key=self._key(target, filename)
            )
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            raise StorageError(f"S3 delete failed ({error_code}): {e}")
        except Exception as e:
            raise StorageError(f"Failed to delete from S3: {e}")

    def test_connection(self) -> bool:
        """
        Test S3 connection and bucket access.

        Raises:
            StorageError: If connection test fails
        """
        try:
            self.s3_client.head_bucket(Bucket=self.bucket_name)
            return True
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            if error_code == '404':
                raise StorageError(f"Bucket does not exist: {self.bucket_name}")
            elif error_code == '403':
                raise StorageError(f"Access denied to bucket: {self.bucket_name}")
            else:
                raise StorageError(f"S3 connection test failed ({error_code}): {e}")
        except Exception as e:
            raise StorageError(f"Failed to connect to S3: {e}")


def create_remote_storage(config):
    """
    Create the remote storage handler selected by configuration.

    Args:
        config: Config instance

    Raises:
        StorageError: If the backend is unknown or cannot be initialized
    """
    backend = (config.REMOTE_BACKEND or 'rclone').lower()
    if backend == 'rclone':
        return RcloneStorage(config.REMOTE_BACKUP_DIR, rclone_bin=config.RCLONE_BIN, verbose=True)
    if backend == 's3':
        s3 = config.S3 or {}
        return S3Storage(
            config.REMOTE_BACKUP_DIR,
            region=s3.get('region') or 'us-east-1',
            access_key=s3.get('access_key') or None,
            secret_key=s3.get('secret_key') or None,
            endpoint_url=s3.get('endpoint_url') or None
        )
    raise StorageError(f"Unknown remote backend: {config.REMOTE_BACKEND}")
