"""Value types passed between the resolver, the storage manager and callers."""

from dataclasses import dataclass
from datetime import datetime
from typing import Any


@dataclass(frozen=True)
class SubhashResolution:
    """Outcome of resolving a full hash to a short id."""

    prefix: str
    unique_subhash: str
    already_present: bool


@dataclass(frozen=True)
class StoredObject:
    """A stored (or already present) item: its identifiers plus an echo of the content."""

    prefix: str
    unique_subhash: str
    full_hash: str
    config: bytes


@dataclass
class ExpandedLink:
    """The content behind a short id, with whatever provenance was recorded."""

    config: str
    special_metadata: dict[str, Any] | None = None
    created: datetime | None = None
