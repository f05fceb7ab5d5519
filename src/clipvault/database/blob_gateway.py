"""
Blob gateway interface for clipvault.

The blob store is the only durable record of uploaded payloads. Every
implementation raises UpstreamError for store failures and NotFoundError
for a missing path on get.
"""

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional

from clipvault.errors import NotFoundError, UpstreamError
from clipvault.models import BlobInfo, PutResult


class BlobGateway(ABC):

    @abstractmethod
    def put(self, path: str, data: bytes, content_type: str) -> PutResult:
        pass

    @abstractmethod
    def get(self, path: str) -> bytes:
        pass

    @abstractmethod
    def delete(self, path: str) -> None:
        pass

    @abstractmethod
    def list(self, prefix: Optional[str] = None) -> List[BlobInfo]:
        pass

    def health_check(self) -> dict:
        return {"status": "healthy"}

    def close(self) -> None:
        pass


@dataclass
class _StoredBlob:
    data: bytes
    content_type: str
    uploaded_at: datetime


class InMemoryBlobGateway(BlobGateway):
    """
    Process-local blob store.

    Upload times are strictly increasing so that listing order is stable
    even when several blobs are written within the same clock tick.
    Failure hooks let tests simulate an unhealthy store.
    """

    def __init__(self, base_url: str = "memory://clipvault",
                 clock: Optional[Callable[[], datetime]] = None):
        self.base_url = base_url.rstrip("/")
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._blobs: Dict[str, _StoredBlob] = {}
        self._lock = threading.Lock()
        self._last_uploaded: Optional[datetime] = None
        self.fail_put: Optional[Callable[[str], bool]] = None
        self.fail_get: Optional[Callable[[str], bool]] = None
        self.fail_delete: Optional[Callable[[str], bool]] = None
        self.deleted: List[str] = []

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path}"

    def _next_upload_time(self) -> datetime:
        now = self._clock()
        if self._last_uploaded is not None and now <= self._last_uploaded:
            now = self._last_uploaded + timedelta(microseconds=1)
        self._last_uploaded = now
        return now

    def put(self, path: str, data: bytes, content_type: str) -> PutResult:
        if self.fail_put and self.fail_put(path):
            raise UpstreamError(f"put failed for {path}")
        with self._lock:
            uploaded_at = self._next_upload_time()
            self._blobs[path] = _StoredBlob(bytes(data), content_type, uploaded_at)
        return PutResult(url=self._url(path), uploaded_at=uploaded_at)

    def get(self, path: str) -> bytes:
        if self.fail_get and self.fail_get(path):
            raise UpstreamError(f"get failed for {path}")
        with self._lock:
            blob = self._blobs.get(path)
        if blob is None:
            raise NotFoundError(f"blob not found: {path}")
        return blob.data

    def delete(self, path: str) -> None:
        if self.fail_delete and self.fail_delete(path):
            raise UpstreamError(f"delete failed for {path}")
        with self._lock:
            self._blobs.pop(path, None)
            self.deleted.append(path)

    def list(self, prefix: Optional[str] = None) -> List[BlobInfo]:
        with self._lock:
            items = [
                BlobInfo(path=path, url=self._url(path), size=len(blob.data),
                         uploaded_at=blob.uploaded_at)
                for path, blob in self._blobs.items()
                if prefix is None or path.startswith(prefix)
            ]
        items.sort(key=lambda b: b.path)
        return items

    def health_check(self) -> dict:
        return {"status": "healthy", "total_blobs": len(self)}

    def exists(self, path: str) -> bool:
        with self._lock:
            return path in self._blobs

    def __len__(self) -> int:
        with self._lock:
            return len(self._blobs)
