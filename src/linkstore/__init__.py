"""Content-addressed short-link store."""

from linkstore.core.config import LinkStoreSettings, load_settings
from linkstore.core.exceptions import (
    ContentMissingError,
    LinkNotFoundError,
    LinkStoreError,
    ResolutionExhaustedError,
    StorageError,
    StoreFailedError,
)
from linkstore.core.setup import create_link_storage
from linkstore.services.link_storage import LinkStorage
from linkstore.types import ExpandedLink, StoredObject, SubhashResolution

__all__ = [
    "ContentMissingError",
    "ExpandedLink",
    "LinkNotFoundError",
    "LinkStorage",
    "LinkStoreError",
    "LinkStoreSettings",
    "ResolutionExhaustedError",
    "StorageError",
    "StoreFailedError",
    "StoredObject",
    "SubhashResolution",
    "create_link_storage",
    "load_settings",
]
