"""Fixtures for link store tests."""

from collections.abc import AsyncGenerator, Callable
from pathlib import Path

import pytest
import pytest_asyncio

from linkstore.core.database import DatabaseManager
from linkstore.resources.blob_storage_resource import BlobStorageResource
from linkstore.services import link_storage as link_storage_module
from linkstore.services.link_storage import LinkStorage

TEST_STORAGE_PREFIX = "test-links"


@pytest_asyncio.fixture
async def db_manager(tmp_path: Path) -> AsyncGenerator[DatabaseManager, None]:
    """Provide a metadata index backed by a temporary SQLite database."""
    manager = DatabaseManager(f"sqlite+aiosqlite:///{tmp_path / 'links.db'}")
    await manager.create_db_and_tables()
    yield manager
    await manager.dispose()


@pytest.fixture
def blob_storage(tmp_path: Path) -> BlobStorageResource:
    """Provide a blob store rooted in a temporary directory."""
    return BlobStorageResource(tmp_path / "blobs", TEST_STORAGE_PREFIX)


@pytest_asyncio.fixture
async def link_storage(
    db_manager: DatabaseManager, blob_storage: BlobStorageResource
) -> AsyncGenerator[LinkStorage, None]:
    """Provide a LinkStorage with the default id lengths."""
    storage = LinkStorage(db_manager, blob_storage)
    yield storage
    await storage.wait_for_pending_increments()


@pytest.fixture
def fixed_hashes(monkeypatch: pytest.MonkeyPatch) -> Callable[[dict[bytes, str]], None]:
    """Make LinkStorage hash chosen contents to chosen full hashes."""

    def _install(mapping: dict[bytes, str]) -> None:
        def _fake_hash(content: bytes | str) -> str:
            if isinstance(content, str):
                content = content.encode("utf-8")
            return mapping[content]

        monkeypatch.setattr(link_storage_module, "content_hash", _fake_hash)

    return _install
