"""Object storage for original photos and derived previews.

Two logical buckets are used: originals (private, full resolution) and
previews (derived thumbnails). Each bucket is one ObjectStore instance.

Backends:
- LocalObjectStore: a directory per bucket on the local filesystem
  (development, tests, single-host installs)
- S3ObjectStore: any S3-compatible service through boto3

Listings are folder-style: `list(prefix)` returns the direct children of a
folder. Folder entries carry no content metadata, which is how recursive
walkers know to descend into them.
"""

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Sequence, Tuple
import logging
import mimetypes
import os
import secrets
import tempfile

from botocore.exceptions import BotoCoreError, ClientError

from ..aws import make_client, translate_error
from ..errors import InvalidInput, ObjectNotFound, RemoteError

logger = logging.getLogger(__name__)

# Placeholder objects some consoles create for empty folders
PLACEHOLDER_NAMES = {'.emptyFolderPlaceholder', '.keep'}

S3_DELETE_CEILING = 1000


@dataclass
class StoredObject:
    """An entry returned by a folder listing.

    Attributes:
        name: Last path component
        path: Full object path inside the bucket
        size: Content length in bytes (None for folders)
        content_type: MIME type if known
        updated_at: Last modification time if known
        is_folder: True for sub-folders (no content metadata)
    """
    name: str
    path: str
    size: Optional[int] = None
    content_type: Optional[str] = None
    updated_at: Optional[datetime] = None
    is_folder: bool = False

    @property
    def metadata(self) -> Optional[Dict[str, object]]:
        """Content metadata, None for folders."""
        if self.is_folder:
            return None
        return {'size': self.size, 'content_type': self.content_type}


def _clean_prefix(prefix: str) -> str:
    return prefix.strip("/")


def _join(prefix: str, name: str) -> str:
    prefix = _clean_prefix(prefix)
    return f"{prefix}/{name}" if prefix else name


class ObjectStore:
    """Base class for a single logical bucket."""

    backend = "object_store"

    def __init__(self, bucket: str):
        self.bucket = bucket

    def list(self, prefix: str) -> Iterator[StoredObject]:
        """Yield the direct children of a folder, paginating internally."""
        raise NotImplementedError

    def download(self, path: str) -> bytes:
        """Download an object.

        Raises:
            ObjectNotFound: If the object does not exist
            RemoteError: On backend failure
        """
        raise NotImplementedError

    def upload(
        self,
        path: str,
        data: bytes,
        content_type: Optional[str] = None,
        overwrite: bool = True,
        cache_control: Optional[str] = None
    ) -> str:
        """Upload an object and return its path."""
        raise NotImplementedError

    def delete(self, paths: Sequence[str]) -> int:
        """Delete objects; absent paths are not an error.

        Returns:
            Number of objects deleted
        """
        raise NotImplementedError

    def exists(self, path: str) -> bool:
        """Check if an object exists."""
        raise NotImplementedError

    def create_signed_upload_url(self, path: str, expires: int = 3600) -> Dict[str, str]:
        """Create a URL a client can upload one object to without credentials."""
        raise NotImplementedError

    def download_first(self, paths: Sequence[str]) -> Tuple[str, bytes]:
        """Download the first of several candidate paths that exists.

        Args:
            paths: Candidate paths in priority order

        Returns:
            (path, data) of the first existing object

        Raises:
            ObjectNotFound: If none of the candidates exist
        """
        for path in paths:
            try:
                return path, self.download(path)
            except ObjectNotFound:
                logger.debug(f"{self.bucket}: {path} not found, trying next candidate")
                continue
        raise ObjectNotFound(f"none of {list(paths)} exist in {self.bucket}", path=paths[0] if paths else None)

    def walk(self, prefix: str) -> Iterator[StoredObject]:
        """Yield every object under a folder, descending into sub-folders."""
        for entry in self.list(prefix):
            if entry.is_folder:
                yield from self.walk(entry.path)
            else:
                yield entry

    def __repr__(self) -> str:
        """String representation."""
        return f"{self.__class__.__name__}(bucket='{self.bucket}')"


class LocalObjectStore(ObjectStore):
    """Object store backed by a local directory.

    Directory structure:
        root/
            └── <bucket>/
                └── <object path>
    """

    backend = "local"

    def __init__(self, root: Path, bucket: str):
        super().__init__(bucket)
        self.root = Path(root).expanduser()
        self.bucket_path = self.root / bucket
        self.bucket_path.mkdir(parents=True, exist_ok=True)

    def _resolve(self, path: str) -> Path:
        """Map an object path to a file, refusing paths outside the bucket."""
        target = (self.bucket_path / _clean_prefix(path)).resolve()
        root = self.bucket_path.resolve()
        if target != root and root not in target.parents:
            raise InvalidInput(f"path escapes bucket: {path}")
        return target

    def list(self, prefix: str) -> Iterator[StoredObject]:
        folder = self._resolve(prefix)
        if not folder.is_dir():
            return
        for child in sorted(folder.iterdir(), key=lambda p: p.name):
            if child.name in PLACEHOLDER_NAMES or child.name.endswith(".part"):
                continue
            path = _join(prefix, child.name)
            if child.is_dir():
                yield StoredObject(name=child.name, path=path, is_folder=True)
            else:
                stat = child.stat()
                yield StoredObject(
                    name=child.name,
                    path=path,
                    size=stat.st_size,
                    content_type=mimetypes.guess_type(child.name)[0],
                    updated_at=datetime.fromtimestamp(stat.st_mtime),
                )

    def download(self, path: str) -> bytes:
        target = self._resolve(path)
        try:
            return target.read_bytes()
        except (FileNotFoundError, IsADirectoryError, NotADirectoryError):
            raise ObjectNotFound(f"{self.bucket}/{path} not found", path=path)
        except OSError as e:
            raise RemoteError(f"read {path}: {e}", backend=self.backend, transient=True) from e

    def upload(
        self,
        path: str,
        data: bytes,
        content_type: Optional[str] = None,
        overwrite: bool = True,
        cache_control: Optional[str] = None
    ) -> str:
        target = self._resolve(path)
        if not overwrite and target.exists():
            raise RemoteError(f"{self.bucket}/{path} already exists", backend=self.backend)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            # Write to a temp file then rename so readers never see partial objects
            fd, tmp_name = tempfile.mkstemp(dir=target.parent, suffix=".part")
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(tmp_name, target)
        except OSError as e:
            raise RemoteError(f"write {path}: {e}", backend=self.backend, transient=True) from e
        logger.debug(f"Stored {len(data)} bytes at {self.bucket}/{path}")
        return _clean_prefix(path)

    def delete(self, paths: Sequence[str]) -> int:
        deleted = 0
        for path in paths:
            target = self._resolve(path)
            try:
                target.unlink()
                deleted += 1
            except FileNotFoundError:
                continue
            except OSError as e:
                raise RemoteError(f"delete {path}: {e}", backend=self.backend, transient=True) from e
            self._prune_empty_dirs(target.parent)
        return deleted

    def _prune_empty_dirs(self, folder: Path):
        root = self.bucket_path.resolve()
        while folder != root and root in folder.parents:
            try:
                folder.rmdir()
            except OSError:
                break
            folder = folder.parent

    def exists(self, path: str) -> bool:
        return self._resolve(path).is_file()

    def create_signed_upload_url(self, path: str, expires: int = 3600) -> Dict[str, str]:
        target = self._resolve(path)
        return {
            'path': _clean_prefix(path),
            'signed_url': target.as_uri(),
            'token': secrets.token_urlsafe(16),
        }


class S3ObjectStore(ObjectStore):
    """Object store backed by an S3 bucket (or an S3-compatible service)."""

    backend = "s3"

    def __init__(
        self,
        bucket: str,
        client=None,
        region: str = "us-east-1",
        endpoint_url: Optional[str] = None,
        timeout: float = 30.0,
        page_size: int = 1000
    ):
        """Initialize S3 object store.

        Args:
            bucket: Bucket name
            client: Pre-built boto3 S3 client (default: built from region/endpoint)
            region: AWS region
            endpoint_url: Custom endpoint for S3-compatible storage
            timeout: Connect/read timeout in seconds
            page_size: Listing page size
        """
        super().__init__(bucket)
        self.client = client or make_client("s3", region=region, timeout=timeout, endpoint_url=endpoint_url)
        self.page_size = page_size

    def _error(self, exc: Exception, operation: str, path: Optional[str] = None) -> RemoteError:
        return translate_error(
            exc,
            backend=self.backend,
            operation=f"{operation} {self.bucket}/{path or ''}",
            not_found_codes=('NoSuchKey', '404', 'NotFound'),
            path=path,
        )

    def list(self, prefix: str) -> Iterator[StoredObject]:
        folder = _clean_prefix(prefix)
        s3_prefix = f"{folder}/" if folder else ""
        paginator = self.client.get_paginator('list_objects_v2')
        try:
            for page in paginator.paginate(
                Bucket=self.bucket,
                Prefix=s3_prefix,
                Delimiter='/',
                PaginationConfig={'PageSize': self.page_size}
            ):
                for common in page.get('CommonPrefixes', []) or []:
                    sub = common['Prefix'].rstrip('/')
                    yield StoredObject(name=sub.rsplit('/', 1)[-1], path=sub, is_folder=True)
                for obj in page.get('Contents', []) or []:
                    key = obj['Key']
                    name = key[len(s3_prefix):]
                    if not name or name in PLACEHOLDER_NAMES:
                        continue
                    yield StoredObject(
                        name=name,
                        path=key,
                        size=obj.get('Size'),
                        updated_at=obj.get('LastModified'),
                    )
        except (ClientError, BotoCoreError) as e:
            raise self._error(e, "list", folder) from e

    def download(self, path: str) -> bytes:
        try:
            response = self.client.get_object(Bucket=self.bucket, Key=path)
            return response['Body'].read()
        except (ClientError, BotoCoreError) as e:
            raise self._error(e, "download", path) from e

    def upload(
        self,
        path: str,
        data: bytes,
        content_type: Optional[str] = None,
        overwrite: bool = True,
        cache_control: Optional[str] = None
    ) -> str:
        params = {
            'Bucket': self.bucket,
            'Key': path,
            'Body': data,
            'ContentType': content_type or mimetypes.guess_type(path)[0] or 'application/octet-stream',
        }
        if cache_control:
            params['CacheControl'] = f"max-age={cache_control}" if cache_control.isdigit() else cache_control
        if not overwrite:
            params['IfNoneMatch'] = '*'
        try:
            self.client.put_object(**params)
        except (ClientError, BotoCoreError) as e:
            raise self._error(e, "upload", path) from e
        logger.debug(f"Uploaded {len(data)} bytes to s3://{self.bucket}/{path}")
        return path

    def delete(self, paths: Sequence[str]) -> int:
        deleted = 0
        failures: List[str] = []
        paths = list(paths)
        for i in range(0, len(paths), S3_DELETE_CEILING):
            batch = paths[i:i + S3_DELETE_CEILING]
            try:
                response = self.client.delete_objects(
                    Bucket=self.bucket,
                    Delete={'Objects': [{'Key': key} for key in batch], 'Quiet': False}
                )
            except (ClientError, BotoCoreError) as e:
                raise self._error(e, "delete", batch[0]) from e
            deleted += len(response.get('Deleted', []) or [])
            for err in response.get('Errors', []) or []:
                failures.append(f"{err.get('Key')}: {err.get('Code')}")

        if failures:
            logger.error(f"s3://{self.bucket}: {len(failures)} objects not deleted: {failures[:5]}")
            raise RemoteError(
                f"delete {self.bucket}: {len(failures)} objects not deleted",
                backend=self.backend,
                transient=True
            )
        return deleted

    def exists(self, path: str) -> bool:
        try:
            self.client.head_object(Bucket=self.bucket, Key=path)
            return True
        except (ClientError, BotoCoreError) as e:
            err = self._error(e, "head", path)
            if isinstance(err, ObjectNotFound):
                return False
            raise err from e

    def create_signed_upload_url(self, path: str, expires: int = 3600) -> Dict[str, str]:
        try:
            url = self.client.generate_presigned_url(
                'put_object',
                Params={'Bucket': self.bucket, 'Key': path},
                ExpiresIn=expires
            )
        except (ClientError, BotoCoreError) as e:
            raise self._error(e, "sign", path) from e
        return {'path': path, 'signed_url': url}


def make_object_store(config: Dict, kind: str) -> ObjectStore:
    """Build the object store for one logical bucket from config.

    Args:
        config: Loaded configuration
        kind: 'originals' or 'previews'
    """
    storage = config["storage"]
    bucket = storage[f"{kind}_bucket"]
    if storage.get("backend", "local") == "s3":
        return S3ObjectStore(
            bucket=bucket,
            region=storage.get("region", "us-east-1"),
            endpoint_url=storage.get("endpoint_url") or None,
            timeout=float(config["remote"]["timeout"]),
            page_size=int(storage.get("list_page_size", 1000)),
        )
    return LocalObjectStore(root=Path(config["paths"]["storage_root"]), bucket=bucket)
