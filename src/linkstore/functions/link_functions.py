"""Queries and writes against the short-link metadata index."""

import logging
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from linkstore.models.short_link import PREFIX_LENGTH, ShortLinkRecord, get_key_struct

logger = logging.getLogger(__name__)


def creation_timestamp(now: datetime | None = None) -> str:
    """Return the provenance timestamp for a new record: UTC, truncated to the minute."""
    now = now or datetime.now(UTC)
    return now.astimezone(UTC).replace(second=0, microsecond=0).isoformat()


async def get_partition(session: AsyncSession, prefix: str) -> dict[str, str]:
    """
    Scan one partition of the index.

    Returns:
        A mapping of every short id in the partition to its full hash.

    """
    stmt = select(ShortLinkRecord.unique_subhash, ShortLinkRecord.full_hash).where(
        ShortLinkRecord.prefix == prefix
    )
    result = await session.execute(stmt)
    return {row.unique_subhash: row.full_hash for row in result}


async def get_link(session: AsyncSession, short_id: str, prefix_length: int = PREFIX_LENGTH) -> ShortLinkRecord | None:
    """Fetch the record for `short_id` by its exact key."""
    key = get_key_struct(short_id, prefix_length)
    return await session.get(ShortLinkRecord, (key["prefix"], key["unique_subhash"]))


async def insert_link(
    session: AsyncSession,
    prefix: str,
    unique_subhash: str,
    full_hash: str,
    creation_ip: str,
    named_metadata: dict[str, Any] | None = None,
    flush: bool = True,
) -> ShortLinkRecord:
    """
    Add a new record with a zeroed click counter.

    The insert is a plain INSERT, so a row already holding the same key makes
    the flush (or commit) fail with an IntegrityError instead of overwriting it.
    """
    record = ShortLinkRecord(
        prefix=prefix,
        unique_subhash=unique_subhash,
        full_hash=full_hash,
        creation_ip=creation_ip,
        creation_date=creation_timestamp(),
        clicks=0,
        named_metadata=named_metadata,
    )
    session.add(record)
    if flush:
        await session.flush()
    return record


async def increment_clicks(session: AsyncSession, short_id: str, prefix_length: int = PREFIX_LENGTH) -> bool:
    """
    Atomically add one to the click counter of `short_id`.

    Returns:
        True if a record was updated, False if none exists.

    """
    key = get_key_struct(short_id, prefix_length)
    stmt = (
        update(ShortLinkRecord)
        .where(ShortLinkRecord.prefix == key["prefix"], ShortLinkRecord.unique_subhash == key["unique_subhash"])
        .values(clicks=ShortLinkRecord.clicks + 1)
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    return result.rowcount > 0
