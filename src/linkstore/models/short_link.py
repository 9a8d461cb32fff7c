"""Data model for the short-link metadata index."""

from typing import Any

from sqlalchemy import JSON, BigInteger, String
from sqlalchemy.orm import Mapped, mapped_column

from .base_class import Base

# NEVER CHANGE THIS VALUE.
#
# It does not control the length of generated short ids. It is the length of
# the partition key of the metadata index, and changing it makes every
# existing link unreachable.
PREFIX_LENGTH = 6

# Minimum generated short id length. Changing it has no impact on existing links.
DEFAULT_MIN_STORED_ID_LENGTH = 9

assert DEFAULT_MIN_STORED_ID_LENGTH >= PREFIX_LENGTH, "DEFAULT_MIN_STORED_ID_LENGTH must be at least PREFIX_LENGTH"


class ShortLinkRecord(Base):
    """
    Maps a short id to the full content hash it stands for.

    Rows are partitioned by `prefix` (the first `PREFIX_LENGTH` characters of
    the full hash) and ordered by `unique_subhash`, the short id itself.
    """

    __tablename__ = "short_links"

    prefix: Mapped[str] = mapped_column(String(PREFIX_LENGTH), primary_key=True)
    unique_subhash: Mapped[str] = mapped_column(String, primary_key=True)
    full_hash: Mapped[str] = mapped_column(String, nullable=False)
    creation_ip: Mapped[str] = mapped_column(String, nullable=False)
    # ISO-8601 UTC, truncated to the minute.
    creation_date: Mapped[str | None] = mapped_column(String, nullable=True)
    clicks: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    named_metadata: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True, default=None)

    def __repr__(self) -> str:
        return (
            f"ShortLinkRecord(unique_subhash='{self.unique_subhash}', "
            f"full_hash='{self.full_hash[:10]}...', clicks={self.clicks})"
        )


def get_key_struct(short_id: str, prefix_length: int = PREFIX_LENGTH) -> dict[str, str]:
    """Return the primary key of the record for `short_id`."""
    return {
        "prefix": short_id[:prefix_length],
        "unique_subhash": short_id,
    }
