"""Builds a LinkStorage from settings."""

import logging

from linkstore.core.config import LinkStoreSettings
from linkstore.core.database import DatabaseManager
from linkstore.resources.blob_storage_resource import BlobStorageResource
from linkstore.services.link_storage import LinkStorage

logger = logging.getLogger(__name__)


def create_link_storage(settings: LinkStoreSettings) -> LinkStorage:
    """Create the database manager, the blob store and the LinkStorage on top of them."""
    db_manager = DatabaseManager(database_url=settings.database_url)
    blob_storage = BlobStorageResource(settings.storage_path, settings.storage_prefix)
    return LinkStorage(
        db_manager,
        blob_storage,
        prefix_length=settings.prefix_length,
        min_stored_id_length=settings.min_stored_id_length,
        max_store_attempts=settings.max_store_attempts,
    )
