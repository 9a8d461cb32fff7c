"""
Persistence of short links across the metadata index and the blob store.

A stored link lives in two places: a small record in the metadata index
(short id -> full hash, provenance, click counter) and the content blob,
keyed by its full hash. The two writes are issued together with no two-phase
commit between them, so a failed store can leave one half behind. A record
whose blob is missing is reported as `ContentMissingError`; a blob with no
record is unreachable and harmless.
"""

import asyncio
import logging
from datetime import UTC, datetime
from typing import Any

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from linkstore.core.database import DatabaseManager
from linkstore.core.exceptions import (
    ContentMissingError,
    LinkNotFoundError,
    StorageError,
    StoreFailedError,
)
from linkstore.functions import link_functions
from linkstore.functions.hashing_functions import content_hash
from linkstore.models.short_link import DEFAULT_MIN_STORED_ID_LENGTH, PREFIX_LENGTH
from linkstore.resources.blob_storage_resource import BlobStorageResource
from linkstore.services.subhash_resolver import resolve_subhash
from linkstore.types import ExpandedLink, StoredObject, SubhashResolution
from linkstore.utils.ip_utils import client_ip

logger = logging.getLogger(__name__)


class _AllocationConflict(Exception):
    """The chosen short id was claimed by a concurrent store."""


class LinkStorage:
    """Allocates, stores and expands short links."""

    def __init__(
        self,
        db_manager: DatabaseManager,
        blob_storage: BlobStorageResource,
        *,
        prefix_length: int = PREFIX_LENGTH,
        min_stored_id_length: int = DEFAULT_MIN_STORED_ID_LENGTH,
        max_store_attempts: int = 3,
        counter_timeout: float | None = 5.0,
    ):
        if min_stored_id_length < prefix_length:
            raise ValueError("min_stored_id_length must be at least prefix_length")
        if max_store_attempts < 1:
            raise ValueError("max_store_attempts must be at least 1")

        self.db_manager = db_manager
        self.blob_storage = blob_storage
        self.prefix_length = prefix_length
        self.min_stored_id_length = min_stored_id_length
        self.max_store_attempts = max_store_attempts
        self.counter_timeout = counter_timeout
        self._pending_increments: set[asyncio.Task[None]] = set()
        logger.info(
            "Using link storage on %s, blob store %s, prefix %s",
            db_manager.database_url,
            blob_storage.storage_path,
            blob_storage.storage_prefix,
        )

    # --- Allocation ---

    async def find_unique_subhash(self, full_hash: str) -> SubhashResolution:
        """
        Resolve `full_hash` to its short id against the current index.

        Raises:
            ResolutionExhaustedError: If no unique id can be derived.
            StorageError: If the partition scan fails.

        """
        try:
            async with self.db_manager.get_db_session() as session:
                return await resolve_subhash(
                    session,
                    full_hash,
                    prefix_length=self.prefix_length,
                    min_length=self.min_stored_id_length,
                )
        except SQLAlchemyError as e:
            logger.exception("Unable to scan partition for hash %s", full_hash)
            raise StorageError(f"Unable to scan partition for hash {full_hash}", original_exception=e) from e

    # --- Writes ---

    async def store(
        self,
        content: bytes | str,
        remote_addr: str | None,
        forwarded_for: str | None = None,
        named_metadata: dict[str, Any] | None = None,
    ) -> StoredObject:
        """
        Store `content` and return its short id.

        Content that is already stored is not written again; its existing
        short id is returned, and its blob is put back if it went missing. If
        the chosen id is claimed by a concurrent store before the record
        lands, resolution is rerun against the new state of the index.

        Raises:
            ResolutionExhaustedError: If no unique id can be derived.
            StoreFailedError: If a write fails, or every attempt lost the race.

        """
        if isinstance(content, str):
            content = content.encode("utf-8")
        full_hash = content_hash(content)
        creation_ip = client_ip(remote_addr, forwarded_for)

        last_conflict: BaseException | None = None
        for attempt in range(1, self.max_store_attempts + 1):
            try:
                resolution = await self.find_unique_subhash(full_hash)
            except StorageError as e:
                raise StoreFailedError("Unable to store item", item=full_hash, original_exception=e) from e

            item = StoredObject(
                prefix=resolution.prefix,
                unique_subhash=resolution.unique_subhash,
                full_hash=full_hash,
                config=content,
            )
            if resolution.already_present:
                logger.debug("Content %s already stored as %s", full_hash, item.unique_subhash)
                await self._ensure_blob(item)
                return item

            try:
                return await self._store_item(item, creation_ip, named_metadata)
            except _AllocationConflict as e:
                last_conflict = e.__cause__
                logger.warning(
                    "Short id %s was claimed concurrently (attempt %d of %d), resolving again",
                    item.unique_subhash,
                    attempt,
                    self.max_store_attempts,
                )

        raise StoreFailedError(
            f"Could not claim a short id for hash {full_hash} after {self.max_store_attempts} attempts",
            item=full_hash,
            original_exception=last_conflict,
        )

    async def store_item(
        self,
        item: StoredObject,
        creation_ip: str,
        named_metadata: dict[str, Any] | None = None,
    ) -> StoredObject:
        """
        Write the metadata record and the blob of an already resolved item.

        Both writes are issued concurrently and must both succeed. Nothing
        is rolled back when only one of them does.

        Raises:
            StoreFailedError: If either write fails, including when the short
                id is already claimed.

        """
        try:
            return await self._store_item(item, creation_ip, named_metadata)
        except _AllocationConflict as e:
            raise StoreFailedError(
                f"Short id {item.unique_subhash} is already claimed",
                item=item,
                original_exception=e.__cause__,
            ) from e.__cause__

    async def _store_item(
        self,
        item: StoredObject,
        creation_ip: str,
        named_metadata: dict[str, Any] | None,
    ) -> StoredObject:
        logger.info("Storing item %s", item.unique_subhash)
        metadata_result, blob_result = await asyncio.gather(
            self._insert_record(item, creation_ip, named_metadata),
            self.blob_storage.put(item.full_hash, item.config),
            return_exceptions=True,
        )

        if isinstance(metadata_result, IntegrityError):
            raise _AllocationConflict(item.unique_subhash) from metadata_result

        for result in (metadata_result, blob_result):
            if isinstance(result, BaseException):
                logger.error(
                    "Unable to store item %s (metadata: %s, blob: %s)",
                    item.unique_subhash,
                    "failed" if isinstance(metadata_result, BaseException) else "ok",
                    "failed" if isinstance(blob_result, BaseException) else "ok",
                    exc_info=result,
                )
                if not isinstance(result, Exception):
                    raise result
                raise StoreFailedError("Unable to store item", item=item, original_exception=result) from result
        return item

    async def _ensure_blob(self, item: StoredObject) -> None:
        # Existing blobs are left untouched; a missing one (from an earlier
        # partial store) is written back.
        try:
            if await self.blob_storage.put(item.full_hash, item.config):
                logger.warning("Restored missing blob %s for %s", item.full_hash, item.unique_subhash)
        except Exception as e:
            logger.exception("Unable to store item %s", item.unique_subhash)
            raise StoreFailedError("Unable to store item", item=item, original_exception=e) from e

    async def _insert_record(
        self,
        item: StoredObject,
        creation_ip: str,
        named_metadata: dict[str, Any] | None,
    ) -> None:
        async with self.db_manager.get_db_session() as session:
            await link_functions.insert_link(
                session,
                prefix=item.prefix,
                unique_subhash=item.unique_subhash,
                full_hash=item.full_hash,
                creation_ip=creation_ip,
                named_metadata=named_metadata,
                flush=False,
            )
            await session.commit()

    # --- Reads ---

    async def expand(self, short_id: str) -> ExpandedLink:
        """
        Return the content stored under `short_id`.

        Raises:
            LinkNotFoundError: If no record exists for the id.
            ContentMissingError: If the record exists but its blob does not.
            StorageError: If either store cannot be read.

        """
        try:
            async with self.db_manager.get_db_session() as session:
                record = await link_functions.get_link(session, short_id, self.prefix_length)
        except SQLAlchemyError as e:
            logger.exception("Unable to read record for %s", short_id)
            raise StorageError(f"Unable to read record for {short_id}", original_exception=e) from e

        if record is None:
            raise LinkNotFoundError(short_id)

        try:
            data = await self.blob_storage.get(record.full_hash)
        except OSError as e:
            logger.exception("Unable to read blob %s for %s", record.full_hash, short_id)
            raise StorageError(f"Unable to read blob for {short_id}", original_exception=e) from e

        if data is None:
            logger.error(
                "Data integrity fault: record %s references missing blob %s in namespace %s",
                short_id,
                record.full_hash,
                self.blob_storage.storage_prefix,
            )
            raise ContentMissingError(short_id, record.full_hash)

        # surrogateescape keeps non UTF-8 blobs byte-exact.
        link = ExpandedLink(config=data.decode("utf-8", errors="surrogateescape"))
        if record.named_metadata is not None:
            link.special_metadata = record.named_metadata
        if record.creation_date:
            link.created = _parse_creation_date(record.creation_date)
        return link

    async def open_link(self, short_id: str) -> ExpandedLink:
        """Expand `short_id` and count a view without waiting for the count to land."""
        link = await self.expand(short_id)
        self.schedule_view_count_increment(short_id)
        return link

    async def get_view_count(self, short_id: str) -> int | None:
        """
        Return the click counter of `short_id`, or None if it does not exist.

        Raises:
            StorageError: If the index cannot be read.

        """
        try:
            async with self.db_manager.get_db_session() as session:
                record = await link_functions.get_link(session, short_id, self.prefix_length)
        except SQLAlchemyError as e:
            logger.exception("Unable to read view count for %s", short_id)
            raise StorageError(f"Unable to read view count for {short_id}", original_exception=e) from e
        return None if record is None else record.clicks

    # --- Usage counter ---

    async def increment_view_count(self, short_id: str) -> None:
        """Add one to the click counter of `short_id`. Never raises."""
        try:
            async with asyncio.timeout(self.counter_timeout):
                async with self.db_manager.get_db_session() as session:
                    updated = await link_functions.increment_clicks(session, short_id, self.prefix_length)
                    await session.commit()
            if not updated:
                logger.warning("Not incrementing view count for unknown id %s", short_id)
        except Exception:
            logger.exception("Error when incrementing view count for %s", short_id)

    def schedule_view_count_increment(self, short_id: str) -> "asyncio.Task[None]":
        """Start a view count increment in the background and return its task."""
        task = asyncio.create_task(self.increment_view_count(short_id))
        self._pending_increments.add(task)
        task.add_done_callback(self._pending_increments.discard)
        return task

    async def wait_for_pending_increments(self) -> None:
        """Wait for every scheduled view count increment to finish."""
        if self._pending_increments:
            await asyncio.gather(*self._pending_increments, return_exceptions=True)


def _parse_creation_date(value: str) -> datetime | None:
    try:
        created = datetime.fromisoformat(value)
    except ValueError:
        logger.warning("Ignoring malformed creation date %r", value)
        return None
    if created.tzinfo is None:
        created = created.replace(tzinfo=UTC)
    return created
