"""Defines the BlobStorageResource for awaitable blob store operations."""

import asyncio
from pathlib import Path

from ..functions import blob_storage


class BlobStorageResource:
    """
    Blob store operations bound to one root and namespace.

    It wraps the functional implementation in `linkstore.functions.blob_storage`
    and runs the file I/O in a worker thread so it can be awaited alongside
    database calls.
    """

    def __init__(self, storage_path: Path | str, storage_prefix: str):
        """Bind the resource to a blob store root and a namespace inside it."""
        self.storage_path = Path(storage_path)
        self.storage_prefix = storage_prefix

    async def put(self, full_hash: str, content: bytes) -> bool:
        """Store `content` under `full_hash` unless already present."""
        return await asyncio.to_thread(
            blob_storage.put_blob, content, full_hash, self.storage_path, self.storage_prefix
        )

    async def get(self, full_hash: str) -> bytes | None:
        """Return the blob for `full_hash`, or None on a miss."""
        return await asyncio.to_thread(blob_storage.get_blob, full_hash, self.storage_path, self.storage_prefix)

    async def has(self, full_hash: str) -> bool:
        """Check whether a blob exists for `full_hash`."""
        return await asyncio.to_thread(blob_storage.has_blob, full_hash, self.storage_path, self.storage_prefix)

    async def delete(self, full_hash: str) -> bool:
        """Delete the blob for `full_hash`."""
        return await asyncio.to_thread(blob_storage.delete_blob, full_hash, self.storage_path, self.storage_prefix)
