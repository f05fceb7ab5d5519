"""
Redis-backed blob gateway for clipvault.

Data Structure:
- blob:<path> -> Blob bytes and metadata (hash: data, contentType, size, uploadedAt)
- blobs -> Every stored path scored by upload time (sorted set)
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional

import redis

from clipvault.config import RedisConfig
from clipvault.database.blob_gateway import BlobGateway
from clipvault.errors import NotFoundError, UpstreamError
from clipvault.models import BlobInfo, PutResult

logger = logging.getLogger(__name__)

BLOB_KEY_PREFIX = "blob:"
BLOB_INDEX_KEY = "blobs"


class RedisBlobGateway(BlobGateway):
    """
    Stores blobs in Redis.

    Responses are kept as bytes (decode_responses=False) since payloads
    are binary images as well as text.
    """

    def __init__(self, config: Optional[RedisConfig] = None,
                 base_url: str = "redis://clipvault",
                 client: Optional[redis.Redis] = None):
        """
        Initialize the gateway.

        Args:
            config: Redis connection settings
            base_url: Prefix used to build public blob URLs
            client: Pre-built Redis client (used instead of config)
        """
        self.config = config or RedisConfig()
        self.base_url = base_url.rstrip("/")
        self.client = client or redis.Redis(
            host=self.config.host,
            port=self.config.port,
            db=self.config.db,
            password=self.config.password,
            socket_timeout=self.config.socket_timeout,
            socket_connect_timeout=self.config.socket_timeout,
            decode_responses=False,
        )

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path}"

    @staticmethod
    def _key(path: str) -> str:
        return f"{BLOB_KEY_PREFIX}{path}"

    # ==================== BLOB OPERATIONS ====================

    def put(self, path: str, data: bytes, content_type: str) -> PutResult:
        """
        Store a blob, replacing any existing blob at the same path.

        Args:
            path: Storage path ({kind}/{userId}/{id}.{ext})
            data: Payload bytes
            content_type: MIME type of the payload

        Returns:
            PutResult: Public URL and upload time
        """
        uploaded_at = datetime.now(timezone.utc)
        mapping = {
            "data": bytes(data),
            "contentType": content_type,
            "size": len(data),
            "uploadedAt": uploaded_at.isoformat(),
        }
        try:
            pipe = self.client.pipeline()
            pipe.hset(self._key(path), mapping=mapping)
            pipe.zadd(BLOB_INDEX_KEY, {path: uploaded_at.timestamp()})
            pipe.execute()
        except redis.RedisError as e:
            raise UpstreamError(f"put failed for {path}: {e}")
        return PutResult(url=self._url(path), uploaded_at=uploaded_at)

    def get(self, path: str) -> bytes:
        """
        Fetch a blob's bytes.

        Args:
            path: Storage path

        Returns:
            bytes: Stored payload
        """
        try:
            data = self.client.hget(self._key(path), "data")
        except redis.RedisError as e:
            raise UpstreamError(f"get failed for {path}: {e}")
        if data is None:
            raise NotFoundError(f"blob not found: {path}")
        return data

    def delete(self, path: str) -> None:
        """Delete a blob. Deleting a missing path is not an error."""
        try:
            pipe = self.client.pipeline()
            pipe.delete(self._key(path))
            pipe.zrem(BLOB_INDEX_KEY, path)
            pipe.execute()
        except redis.RedisError as e:
            raise UpstreamError(f"delete failed for {path}: {e}")

    def list(self, prefix: Optional[str] = None) -> List[BlobInfo]:
        """
        List stored blobs.

        Args:
            prefix: Only return paths starting with this prefix

        Returns:
            List of BlobInfo ordered by path
        """
        try:
            paths = [
                p.decode("utf-8") if isinstance(p, bytes) else p
                for p in self.client.zrange(BLOB_INDEX_KEY, 0, -1)
            ]
            if prefix:
                paths = [p for p in paths if p.startswith(prefix)]

            pipe = self.client.pipeline()
            for path in paths:
                pipe.hmget(self._key(path), ["size", "uploadedAt"])
            rows = pipe.execute() if paths else []
        except redis.RedisError as e:
            raise UpstreamError(f"list failed: {e}")

        items = []
        for path, (size, uploaded_at) in zip(paths, rows):
            if uploaded_at is None:
                # index entry without a hash; the blob was removed mid-listing
                logger.debug(f"Skipping dangling blob index entry {path}")
                continue
            if isinstance(uploaded_at, bytes):
                uploaded_at = uploaded_at.decode("utf-8")
            items.append(BlobInfo(
                path=path,
                url=self._url(path),
                size=int(size or 0),
                uploaded_at=datetime.fromisoformat(uploaded_at),
            ))
        items.sort(key=lambda b: b.path)
        return items

    # ==================== UTILITY OPERATIONS ====================

    def health_check(self) -> dict:
        """Get Redis health status."""
        try:
            info = self.client.info()
            total = self.client.zcard(BLOB_INDEX_KEY)
        except redis.RedisError as e:
            raise UpstreamError(f"Redis unavailable: {e}")
        return {
            "status": "healthy",
            "connected_clients": info.get('connected_clients', 0),
            "used_memory": info.get('used_memory_human', 'unknown'),
            "total_blobs": total,
        }

    def close(self):
        """Close Redis connection."""
        self.client.close()
