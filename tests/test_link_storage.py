"""Tests for storing, expanding and counting short links."""

import asyncio
import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

import pytest
from pytest_mock import MockerFixture
from sqlalchemy.exc import SQLAlchemyError

from linkstore.core.exceptions import ContentMissingError, LinkNotFoundError, StorageError, StoreFailedError
from linkstore.functions import link_functions
from linkstore.functions.hashing_functions import content_hash
from linkstore.resources.blob_storage_resource import BlobStorageResource
from linkstore.services.link_storage import LinkStorage
from linkstore.types import StoredObject, SubhashResolution

CONFIG_A = b'{"sessions": [{"source": "int main() { return 0; }"}]}'
CONFIG_B = b'{"sessions": [{"source": "int main() { return 1; }"}]}'


@pytest.mark.asyncio
async def test_store_then_expand_round_trips(link_storage: LinkStorage) -> None:
    item = await link_storage.store(CONFIG_A, remote_addr="203.0.113.42")

    link = await link_storage.expand(item.unique_subhash)

    assert link.config.encode("utf-8") == CONFIG_A
    assert item.full_hash == content_hash(CONFIG_A)
    assert item.config == CONFIG_A
    assert item.prefix == item.full_hash[:6]
    assert 9 <= len(item.unique_subhash) < len(item.full_hash)


@pytest.mark.asyncio
async def test_round_trip_keeps_non_utf8_bytes(link_storage: LinkStorage) -> None:
    content = b"\xff\xfe binary \x00 tail"
    item = await link_storage.store(content, remote_addr="203.0.113.42")

    link = await link_storage.expand(item.unique_subhash)

    assert link.config.encode("utf-8", "surrogateescape") == content


@pytest.mark.asyncio
async def test_different_contents_get_different_ids(link_storage: LinkStorage) -> None:
    first = await link_storage.store(CONFIG_A, remote_addr="203.0.113.42")
    second = await link_storage.store(CONFIG_B, remote_addr="203.0.113.42")

    assert first.unique_subhash != second.unique_subhash
    assert (await link_storage.expand(first.unique_subhash)).config.encode() == CONFIG_A
    assert (await link_storage.expand(second.unique_subhash)).config.encode() == CONFIG_B


@pytest.mark.asyncio
async def test_storing_the_same_content_twice_dedupes(
    link_storage: LinkStorage, blob_storage: BlobStorageResource, mocker: MockerFixture
) -> None:
    first = await link_storage.store(CONFIG_A, remote_addr="203.0.113.42")
    put_spy = mocker.spy(blob_storage, "put")
    blob_path = blob_storage.storage_path / blob_storage.storage_prefix / first.full_hash[:2] / first.full_hash[2:4]
    mtime = (blob_path / first.full_hash).stat().st_mtime_ns

    second = await link_storage.store(CONFIG_A, remote_addr="198.51.100.7")
    resolution = await link_storage.find_unique_subhash(first.full_hash)

    assert second.unique_subhash == first.unique_subhash
    assert resolution.already_present is True
    assert put_spy.call_count == 1
    assert (blob_path / first.full_hash).stat().st_mtime_ns == mtime

    async with link_storage.db_manager.get_db_session() as session:
        record = await link_functions.get_link(session, first.unique_subhash)
    assert record is not None
    assert record.creation_ip == "203.0.113.0"


@pytest.mark.asyncio
async def test_record_provenance(link_storage: LinkStorage) -> None:
    item = await link_storage.store(
        CONFIG_A,
        remote_addr="10.0.0.1",
        forwarded_for="203.0.113.42, 10.1.1.1",
        named_metadata={"title": "hello"},
    )

    async with link_storage.db_manager.get_db_session() as session:
        record = await link_functions.get_link(session, item.unique_subhash)

    assert record is not None
    assert record.full_hash == item.full_hash
    assert record.clicks == 0
    assert record.creation_ip == "203.0.113.0, 10.1.1.1"
    created = datetime.fromisoformat(record.creation_date)
    assert created.second == 0
    assert created.microsecond == 0
    assert created.utcoffset() is not None

    link = await link_storage.expand(item.unique_subhash)
    assert link.special_metadata == {"title": "hello"}
    assert link.created == created
    assert abs((datetime.now(UTC) - link.created).total_seconds()) < 120


@pytest.mark.asyncio
async def test_expand_without_metadata_leaves_optional_fields_empty(link_storage: LinkStorage) -> None:
    item = await link_storage.store(CONFIG_A, remote_addr="203.0.113.42")

    link = await link_storage.expand(item.unique_subhash)

    assert link.special_metadata is None


@pytest.mark.asyncio
async def test_expand_keeps_empty_metadata(link_storage: LinkStorage) -> None:
    item = await link_storage.store(CONFIG_A, remote_addr="203.0.113.42", named_metadata={})

    link = await link_storage.expand(item.unique_subhash)

    assert link.special_metadata == {}


@pytest.mark.asyncio
async def test_expand_unknown_id_raises_not_found(link_storage: LinkStorage) -> None:
    with pytest.raises(LinkNotFoundError) as excinfo:
        await link_storage.expand("neverstored")

    assert excinfo.value.short_id == "neverstored"


@pytest.mark.asyncio
async def test_expand_with_missing_blob_raises_content_missing(
    link_storage: LinkStorage, blob_storage: BlobStorageResource, caplog: pytest.LogCaptureFixture
) -> None:
    item = await link_storage.store(CONFIG_A, remote_addr="203.0.113.42")
    assert await blob_storage.delete(item.full_hash)

    with caplog.at_level(logging.ERROR, logger="linkstore"):
        with pytest.raises(ContentMissingError) as excinfo:
            await link_storage.expand(item.unique_subhash)

    assert not isinstance(excinfo.value, LinkNotFoundError)
    assert excinfo.value.full_hash == item.full_hash
    assert "Data integrity fault" in caplog.text


@pytest.mark.asyncio
async def test_expand_surfaces_database_errors(link_storage: LinkStorage, mocker: MockerFixture) -> None:
    mocker.patch.object(link_functions, "get_link", side_effect=SQLAlchemyError("connection lost"))

    with pytest.raises(StorageError):
        await link_storage.expand("abcdef123")


@pytest.mark.asyncio
async def test_view_count_surfaces_database_errors(link_storage: LinkStorage, mocker: MockerFixture) -> None:
    mocker.patch.object(link_functions, "get_link", side_effect=SQLAlchemyError("connection lost"))

    with pytest.raises(StorageError):
        await link_storage.get_view_count("abcdef123")


@pytest.mark.asyncio
async def test_find_unique_subhash_surfaces_database_errors(link_storage: LinkStorage, mocker: MockerFixture) -> None:
    mocker.patch.object(link_functions, "get_partition", side_effect=SQLAlchemyError("timeout"))

    with pytest.raises(StorageError):
        await link_storage.find_unique_subhash(content_hash(CONFIG_A))


@pytest.mark.asyncio
async def test_partition_scan_failure_raises_store_failed(
    link_storage: LinkStorage, blob_storage: BlobStorageResource, mocker: MockerFixture
) -> None:
    timeout = SQLAlchemyError("timeout")
    mocker.patch.object(link_functions, "get_partition", side_effect=timeout)

    with pytest.raises(StoreFailedError) as excinfo:
        await link_storage.store(CONFIG_A, remote_addr="203.0.113.42")

    assert isinstance(excinfo.value.original_exception, StorageError)
    assert excinfo.value.original_exception.original_exception is timeout
    assert not await blob_storage.has(content_hash(CONFIG_A))


@pytest.mark.asyncio
async def test_concrete_collision_scenario(link_storage: LinkStorage, fixed_hashes: Callable[..., None]) -> None:
    fixed_hashes({b"first": "abcdef1234567890", b"second": "abcdef123ZZZZZZZ"})

    first = await link_storage.store(b"first", remote_addr="203.0.113.42")
    again = await link_storage.store(b"first", remote_addr="203.0.113.42")
    second = await link_storage.store(b"second", remote_addr="203.0.113.42")

    assert first.unique_subhash == "abcdef123"
    assert again.unique_subhash == "abcdef123"
    assert second.unique_subhash == "abcdef123Z"
    assert (await link_storage.expand("abcdef123")).config == "first"
    assert (await link_storage.expand("abcdef123Z")).config == "second"


@pytest.mark.asyncio
async def test_lost_allocation_race_is_retried(
    link_storage: LinkStorage, fixed_hashes: Callable[..., None], monkeypatch: pytest.MonkeyPatch
) -> None:
    fixed_hashes({b"first": "abcdef123AAAAAAA", b"second": "abcdef123BBBBBBB"})
    first = await link_storage.store(b"first", remote_addr="203.0.113.42")

    real_find = link_storage.find_unique_subhash
    calls: list[str] = []

    async def stale_then_real(full_hash: str) -> SubhashResolution:
        calls.append(full_hash)
        if len(calls) == 1:
            # As if the partition had been scanned before "first" was written.
            return SubhashResolution(prefix="abcdef", unique_subhash=first.unique_subhash, already_present=False)
        return await real_find(full_hash)

    monkeypatch.setattr(link_storage, "find_unique_subhash", stale_then_real)

    second = await link_storage.store(b"second", remote_addr="203.0.113.42")

    assert len(calls) == 2
    assert second.unique_subhash == "abcdef123B"
    assert (await link_storage.expand(first.unique_subhash)).config == "first"
    assert (await link_storage.expand(second.unique_subhash)).config == "second"


@pytest.mark.asyncio
async def test_store_fails_after_every_attempt_loses_the_race(
    link_storage: LinkStorage, fixed_hashes: Callable[..., None], monkeypatch: pytest.MonkeyPatch
) -> None:
    fixed_hashes({b"first": "abcdef123AAAAAAA", b"second": "abcdef123BBBBBBB"})
    first = await link_storage.store(b"first", remote_addr="203.0.113.42")

    async def always_stale(full_hash: str) -> SubhashResolution:
        return SubhashResolution(prefix="abcdef", unique_subhash=first.unique_subhash, already_present=False)

    monkeypatch.setattr(link_storage, "find_unique_subhash", always_stale)

    with pytest.raises(StoreFailedError) as excinfo:
        await link_storage.store(b"second", remote_addr="203.0.113.42")

    assert excinfo.value.original_exception is not None
    assert (await link_storage.expand(first.unique_subhash)).config == "first"


@pytest.mark.asyncio
async def test_store_item_refuses_to_overwrite_a_claimed_id(
    link_storage: LinkStorage, fixed_hashes: Callable[..., None]
) -> None:
    fixed_hashes({b"first": "abcdef123AAAAAAA"})
    first = await link_storage.store(b"first", remote_addr="203.0.113.42")

    impostor = StoredObject(
        prefix=first.prefix, unique_subhash=first.unique_subhash, full_hash="abcdef123BBBBBBB", config=b"second"
    )
    with pytest.raises(StoreFailedError):
        await link_storage.store_item(impostor, creation_ip="203.0.113.0")

    assert (await link_storage.expand(first.unique_subhash)).config == "first"


@pytest.mark.asyncio
async def test_concurrent_stores_of_the_same_content_agree(link_storage: LinkStorage) -> None:
    results = await asyncio.gather(*(link_storage.store(CONFIG_A, remote_addr="203.0.113.42") for _ in range(4)))

    assert len({item.unique_subhash for item in results}) == 1


@pytest.mark.asyncio
async def test_blob_failure_raises_store_failed_and_keeps_the_record(
    link_storage: LinkStorage, blob_storage: BlobStorageResource, mocker: MockerFixture
) -> None:
    disk_full = OSError("No space left on device")
    mocker.patch.object(blob_storage, "put", side_effect=disk_full)

    with pytest.raises(StoreFailedError) as excinfo:
        await link_storage.store(CONFIG_A, remote_addr="203.0.113.42")

    assert excinfo.value.original_exception is disk_full
    # No rollback: the metadata half of the write stays behind.
    resolution = await link_storage.find_unique_subhash(content_hash(CONFIG_A))
    assert resolution.already_present is True
    with pytest.raises(ContentMissingError):
        await link_storage.expand(resolution.unique_subhash)


@pytest.mark.asyncio
async def test_metadata_failure_raises_store_failed(
    link_storage: LinkStorage, blob_storage: BlobStorageResource, mocker: MockerFixture
) -> None:
    mocker.patch.object(link_functions, "insert_link", side_effect=SQLAlchemyError("database unavailable"))

    with pytest.raises(StoreFailedError) as excinfo:
        await link_storage.store(CONFIG_A, remote_addr="203.0.113.42")

    assert isinstance(excinfo.value.original_exception, SQLAlchemyError)
    # The blob half is content-keyed and harmless to leave behind.
    assert await blob_storage.has(content_hash(CONFIG_A))


@pytest.mark.asyncio
async def test_increment_view_count(link_storage: LinkStorage) -> None:
    item = await link_storage.store(CONFIG_A, remote_addr="203.0.113.42")

    await link_storage.increment_view_count(item.unique_subhash)
    await link_storage.increment_view_count(item.unique_subhash)

    assert await link_storage.get_view_count(item.unique_subhash) == 2


@pytest.mark.asyncio
async def test_concurrent_increments_are_not_lost(link_storage: LinkStorage) -> None:
    item = await link_storage.store(CONFIG_A, remote_addr="203.0.113.42")

    for _ in range(5):
        link_storage.schedule_view_count_increment(item.unique_subhash)
    await link_storage.wait_for_pending_increments()

    assert await link_storage.get_view_count(item.unique_subhash) == 5


@pytest.mark.asyncio
async def test_increment_unknown_id_does_not_raise(
    link_storage: LinkStorage, caplog: pytest.LogCaptureFixture
) -> None:
    with caplog.at_level(logging.WARNING, logger="linkstore"):
        await link_storage.increment_view_count("neverstored")

    assert await link_storage.get_view_count("neverstored") is None
    assert "unknown id neverstored" in caplog.text


@pytest.mark.asyncio
async def test_increment_swallows_database_errors(
    link_storage: LinkStorage, mocker: MockerFixture, caplog: pytest.LogCaptureFixture
) -> None:
    mocker.patch.object(link_functions, "increment_clicks", side_effect=SQLAlchemyError("throttled"))

    with caplog.at_level(logging.ERROR, logger="linkstore"):
        await link_storage.increment_view_count("abcdef123")

    assert "Error when incrementing view count for abcdef123" in caplog.text


@pytest.mark.asyncio
async def test_increment_swallows_timeouts(link_storage: LinkStorage, monkeypatch: pytest.MonkeyPatch) -> None:
    async def hang(*_args: Any, **_kwargs: Any) -> bool:
        await asyncio.sleep(10)
        return True

    monkeypatch.setattr(link_functions, "increment_clicks", hang)
    link_storage.counter_timeout = 0.05

    await link_storage.increment_view_count("abcdef123")


@pytest.mark.asyncio
async def test_open_link_counts_a_view_in_the_background(link_storage: LinkStorage) -> None:
    item = await link_storage.store(CONFIG_A, remote_addr="203.0.113.42")

    link = await link_storage.open_link(item.unique_subhash)
    await link_storage.wait_for_pending_increments()

    assert link.config.encode() == CONFIG_A
    assert await link_storage.get_view_count(item.unique_subhash) == 1


@pytest.mark.asyncio
async def test_open_unknown_link_counts_nothing(link_storage: LinkStorage) -> None:
    with pytest.raises(LinkNotFoundError):
        await link_storage.open_link("neverstored")

    assert not link_storage._pending_increments


def test_min_length_must_cover_the_partition_key(blob_storage: BlobStorageResource, mocker: MockerFixture) -> None:
    with pytest.raises(ValueError):
        LinkStorage(mocker.MagicMock(), blob_storage, prefix_length=6, min_stored_id_length=5)


@pytest.mark.asyncio
async def test_storing_again_restores_a_missing_blob(
    link_storage: LinkStorage, blob_storage: BlobStorageResource
) -> None:
    item = await link_storage.store(CONFIG_A, remote_addr="203.0.113.42")
    await blob_storage.delete(item.full_hash)

    again = await link_storage.store(CONFIG_A, remote_addr="203.0.113.42")

    assert again.unique_subhash == item.unique_subhash
    assert (await link_storage.expand(item.unique_subhash)).config.encode() == CONFIG_A
