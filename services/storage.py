# services/storage.py - object storage buckets for cover images
import asyncio
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

from google.api_core.exceptions import GoogleAPIError, NotFound
from google.cloud import storage

from errors import StorageError

logger = logging.getLogger(__name__)


class Bucket(Protocol):
    async def put(self, key: str, content: bytes) -> None:
        ...

    async def get(self, key: str) -> Optional[bytes]:
        ...

    async def delete(self, key: str) -> None:
        ...

    async def exists(self, key: str) -> bool:
        ...

    async def keys(self, prefix: str = "") -> List[str]:
        ...

    def public_url(self, key: str) -> str:
        ...


def _join_url(base: str, key: str) -> str:
    return f"{base.rstrip('/')}/{key.lstrip('/')}"


class InMemoryBucket:
    """Dict-backed bucket keyed by object name."""

    def __init__(self, public_base_url: str = "http://localhost:8000/bucket") -> None:
        self.public_base_url = public_base_url
        self._objects: Dict[str, bytes] = {}

    async def put(self, key: str, content: bytes) -> None:
        self._objects[key] = bytes(content)

    async def get(self, key: str) -> Optional[bytes]:
        return self._objects.get(key)

    async def delete(self, key: str) -> None:
        self._objects.pop(key, None)

    async def exists(self, key: str) -> bool:
        return key in self._objects

    async def keys(self, prefix: str = "") -> List[str]:
        return sorted(k for k in self._objects if k.startswith(prefix))

    def public_url(self, key: str) -> str:
        return _join_url(self.public_base_url, key)


class LocalBucket:
    """Bucket stored as plain files under ``root``.

    Object keys map to relative paths, so ``cover_images/1/test.txt`` is
    written to ``<root>/cover_images/1/test.txt``. File I/O runs in a worker
    thread and every ``OSError`` is reported as ``StorageError``.
    """

    def __init__(self, root, public_base_url: str = "http://localhost:8000/bucket") -> None:
        self.root = Path(root).resolve()
        self.public_base_url = public_base_url

    def _path(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if path == self.root or self.root not in path.parents:
            raise StorageError(key, "key escapes bucket root")
        return path

    def _write(self, path: Path, content: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(path.name + ".part")
        tmp.write_bytes(content)
        tmp.replace(path)

    def _remove(self, path: Path) -> None:
        path.unlink(missing_ok=True)
        # prune empty cover_images/<id>/ directories
        parent = path.parent
        while parent != self.root and parent.exists() and not any(parent.iterdir()):
            parent.rmdir()
            parent = parent.parent

    async def put(self, key: str, content: bytes) -> None:
        path = self._path(key)
        try:
            await asyncio.to_thread(self._write, path, content)
        except OSError as e:
            raise StorageError(key, str(e)) from e
        logger.debug("Stored %s (%d bytes)", key, len(content))

    async def get(self, key: str) -> Optional[bytes]:
        path = self._path(key)
        try:
            return await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageError(key, str(e)) from e

    async def delete(self, key: str) -> None:
        path = self._path(key)
        try:
            await asyncio.to_thread(self._remove, path)
        except OSError as e:
            raise StorageError(key, str(e)) from e
        logger.debug("Deleted %s", key)

    async def exists(self, key: str) -> bool:
        return await asyncio.to_thread(self._path(key).is_file)

    async def keys(self, prefix: str = "") -> List[str]:
        def _scan():
            if not self.root.exists():
                return []
            found = (p.relative_to(self.root).as_posix() for p in self.root.rglob("*") if p.is_file())
            return sorted(k for k in found if k.startswith(prefix) and not k.endswith(".part"))
        return await asyncio.to_thread(_scan)

    def public_url(self, key: str) -> str:
        return _join_url(self.public_base_url, key)


GCS_PUBLIC_URL = "https://storage.googleapis.com"


class GcsBucket:
    """Google Cloud Storage bucket.

    The client library is blocking, so every call runs in a worker thread.
    API failures surface as ``StorageError``; a missing object is not one.
    """

    def __init__(self, bucket_name: str, client: Any = None, project: Optional[str] = None) -> None:
        if not bucket_name:
            raise ValueError("GCS bucket name is required")
        self.bucket_name = bucket_name
        self._client = client or storage.Client(project=project)
        self._bucket = self._client.bucket(bucket_name)

    def _delete(self, key: str) -> None:
        try:
            self._bucket.blob(key).delete()
        except NotFound:
            pass

    def _get(self, key: str) -> Optional[bytes]:
        try:
            return self._bucket.blob(key).download_as_bytes()
        except NotFound:
            return None

    def _keys(self, prefix: str) -> List[str]:
        return sorted(b.name for b in self._client.list_blobs(self.bucket_name, prefix=prefix or None))

    async def put(self, key: str, content: bytes) -> None:
        try:
            await asyncio.to_thread(self._bucket.blob(key).upload_from_string, content)
        except GoogleAPIError as e:
            raise StorageError(key, str(e)) from e
        logger.debug("Stored gs://%s/%s (%d bytes)", self.bucket_name, key, len(content))

    async def get(self, key: str) -> Optional[bytes]:
        try:
            return await asyncio.to_thread(self._get, key)
        except GoogleAPIError as e:
            raise StorageError(key, str(e)) from e

    async def delete(self, key: str) -> None:
        try:
            await asyncio.to_thread(self._delete, key)
        except GoogleAPIError as e:
            raise StorageError(key, str(e)) from e
        logger.debug("Deleted gs://%s/%s", self.bucket_name, key)

    async def exists(self, key: str) -> bool:
        try:
            return await asyncio.to_thread(self._bucket.blob(key).exists)
        except GoogleAPIError as e:
            raise StorageError(key, str(e)) from e

    async def keys(self, prefix: str = "") -> List[str]:
        try:
            return await asyncio.to_thread(self._keys, prefix)
        except GoogleAPIError as e:
            raise StorageError(prefix, str(e)) from e

    def public_url(self, key: str) -> str:
        return _join_url(f"{GCS_PUBLIC_URL}/{self.bucket_name}", key)


def bucket_from_settings(settings) -> Bucket:
    if settings.storage_backend == "memory":
        return InMemoryBucket(settings.bucket_public_url)
    if settings.storage_backend == "gcs":
        return GcsBucket(settings.bucket_name, project=settings.gcp_project)
    return LocalBucket(settings.bucket_dir, settings.bucket_public_url)
