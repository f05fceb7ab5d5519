"""
Blob storage package for clipvault.

Provides the blob gateway interface and its storage backends.
"""

from clipvault.database.blob_gateway import BlobGateway, InMemoryBlobGateway
from clipvault.database.redis_gateway import RedisBlobGateway

__all__ = [
    'BlobGateway',
    'InMemoryBlobGateway',
    'RedisBlobGateway',
]
