"""
Short id allocation.

A short id is the shortest prefix of a content hash that is either unclaimed
in its partition or already claimed by that same hash. Ids only grow past the
minimum length on an actual collision, and a match is always confirmed
against the stored full hash rather than the prefix alone.
"""

import logging
from collections.abc import Mapping

from sqlalchemy.ext.asyncio import AsyncSession

from linkstore.core.exceptions import ResolutionExhaustedError
from linkstore.functions import link_functions
from linkstore.models.short_link import DEFAULT_MIN_STORED_ID_LENGTH, PREFIX_LENGTH
from linkstore.types import SubhashResolution

logger = logging.getLogger(__name__)


def find_unique_subhash(
    full_hash: str,
    known: Mapping[str, str],
    *,
    prefix_length: int = PREFIX_LENGTH,
    min_length: int = DEFAULT_MIN_STORED_ID_LENGTH,
) -> SubhashResolution:
    """
    Pick the short id for `full_hash` given the ids already in its partition.

    Args:
        full_hash: The full content hash.
        known: Every short id of the partition mapped to its full hash.
        prefix_length: Length of the partition key.
        min_length: Minimum short id length.

    Returns:
        The partition prefix, the short id, and whether this exact hash
        already owns that id.

    Raises:
        ResolutionExhaustedError: If every candidate shorter than the hash
            minus its last character is taken by other content.

    """
    prefix = full_hash[:prefix_length]
    # The whole hash, and the hash minus its last character, are never handed out.
    for length in range(min_length, len(full_hash) - 1):
        candidate = full_hash[:length]
        stored_hash = known.get(candidate)
        if stored_hash is None:
            return SubhashResolution(prefix=prefix, unique_subhash=candidate, already_present=False)
        if stored_hash == full_hash:
            return SubhashResolution(prefix=prefix, unique_subhash=candidate, already_present=True)
        logger.debug("Short id %s is taken by other content, growing it", candidate)

    logger.error("Exhausted every candidate short id for hash %s (partition %s)", full_hash, prefix)
    raise ResolutionExhaustedError(full_hash)


async def resolve_subhash(
    session: AsyncSession,
    full_hash: str,
    *,
    prefix_length: int = PREFIX_LENGTH,
    min_length: int = DEFAULT_MIN_STORED_ID_LENGTH,
) -> SubhashResolution:
    """Scan the partition of `full_hash` once and pick its short id."""
    prefix = full_hash[:prefix_length]
    known = await link_functions.get_partition(session, prefix)
    return find_unique_subhash(full_hash, known, prefix_length=prefix_length, min_length=min_length)
