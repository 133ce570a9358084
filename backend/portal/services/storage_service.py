from typing import Callable, Optional
from datetime import timedelta
from urllib.parse import quote
from minio import Minio
from minio.error import S3Error
import io
import logging
import time

from portal.core.config import settings
from portal.core.errors import NetworkError

logger = logging.getLogger(__name__)


class StorageService:
    def __init__(self):
        self.client = Minio(
            settings.MINIO_ENDPOINT,
            access_key=settings.MINIO_ACCESS_KEY,
            secret_key=settings.MINIO_SECRET_KEY,
            secure=settings.MINIO_SECURE,
        )
        self.bucket = settings.MINIO_BUCKET

    async def ensure_bucket(self):
        try:
            if not self.client.bucket_exists(self.bucket):
                self.client.make_bucket(self.bucket)
        except S3Error as e:
            raise RuntimeError(f"Failed to ensure bucket: {e}")

    def get_presigned_download_url(
        self,
        storage_path: str,
        expires: timedelta = timedelta(seconds=settings.SIGNED_URL_EXPIRE_SECONDS),
        download_name: Optional[str] = None,
    ) -> str:
        response_headers = None
        if download_name:
            response_headers = {
                "response-content-disposition": f"attachment; filename*=UTF-8''{quote(download_name)}",
            }
        try:
            return self.client.presigned_get_object(
                self.bucket,
                storage_path,
                expires=expires,
                response_headers=response_headers,
            )
        except S3Error as e:
            raise NetworkError(f"Failed to sign URL for {storage_path}: {e}", retryable=False)

    def upload_file(
        self,
        storage_path: str,
        data: bytes,
        content_type: str = "application/octet-stream",
    ) -> None:
        try:
            self.client.put_object(
                self.bucket,
                storage_path,
                io.BytesIO(data),
                length=len(data),
                content_type=content_type,
            )
        except S3Error as e:
            raise NetworkError(f"Failed to store {storage_path}: {e}")

    def delete_file(self, storage_path: str) -> None:
        try:
            self.client.remove_object(self.bucket, storage_path)
        except S3Error as e:
            raise NetworkError(f"Failed to delete {storage_path}: {e}")


class SignedUrlCache:
    """Signed URLs keyed by storage path and disposition.

    Entries live for ``ttl_seconds``, which is shorter than the URL lifetime so
    a cached URL is never handed out after it stops working.
    """

    def __init__(self, ttl_seconds: float = settings.SIGNED_URL_CACHE_SECONDS, clock: Callable[[], float] = time.time):
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._entries: dict[tuple[str, bool], tuple[str, float]] = {}

    def get(self, storage_path: str, download: bool = False) -> Optional[str]:
        entry = self._entries.get((storage_path, download))
        if entry is None:
            return None
        url, cached_at = entry
        if self.clock() - cached_at >= self.ttl_seconds:
            del self._entries[(storage_path, download)]
            return None
        return url

    def put(self, storage_path: str, url: str, download: bool = False) -> None:
        self._entries[(storage_path, download)] = (url, self.clock())

    def get_or_create(self, storage_path: str, factory: Callable[[], str], download: bool = False) -> str:
        url = self.get(storage_path, download)
        if url is None:
            url = factory()
            self.put(storage_path, url, download)
        return url

    def invalidate(self, storage_path: str) -> None:
        for key in [k for k in self._entries if k[0] == storage_path]:
            del self._entries[key]

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


storage_service = StorageService()
signed_url_cache = SignedUrlCache()
