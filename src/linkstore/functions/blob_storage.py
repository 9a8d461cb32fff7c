"""Provides content-addressable storage (CAS) functions for link content blobs."""

import logging
import os
import tempfile
from pathlib import Path

logger = logging.getLogger(__name__)

MIN_HASH_LENGTH = 4


def _get_blob_path(storage_path: Path, storage_prefix: str, full_hash: str) -> Path:
    """
    Construct the path of a blob inside a namespace of the blob store.

    Example: <storage_path>/<storage_prefix>/ab/cd/abcdef123456...
    """
    if not full_hash or len(full_hash) < MIN_HASH_LENGTH:
        raise ValueError(f"Blob hash must be at least {MIN_HASH_LENGTH} characters long for storage path generation.")
    if not storage_prefix or storage_prefix in {".", ".."} or Path(storage_prefix).name != storage_prefix:
        raise ValueError(f"Invalid storage prefix: '{storage_prefix}'")

    return storage_path / storage_prefix / full_hash[:2] / full_hash[2:4] / full_hash


def put_blob(content: bytes, full_hash: str, storage_path: Path, storage_prefix: str) -> bool:
    """
    Store a blob under its full hash unless it is already present.

    Blobs are immutable: an existing blob is never rewritten. New blobs are
    written to a temporary file first and renamed into place.

    Args:
        content: The raw content.
        full_hash: The full content hash the blob is keyed by.
        storage_path: The root of the blob store.
        storage_prefix: The namespace of this deployment.

    Returns:
        True if the blob was written, False if it already existed.

    """
    target_path = _get_blob_path(storage_path, storage_prefix, full_hash)
    if target_path.exists():
        logger.debug("Blob %s already exists at %s", full_hash, target_path)
        return False

    target_path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=target_path.parent, prefix=".tmp-")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(content)
        os.replace(tmp_name, target_path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
    logger.info("Stored blob %s to %s", full_hash, target_path)
    return True


def get_blob(full_hash: str, storage_path: Path, storage_prefix: str) -> bytes | None:
    """Return the blob stored under `full_hash`, or None if there is none."""
    try:
        target_path = _get_blob_path(storage_path, storage_prefix, full_hash)
    except ValueError:
        logger.warning("Invalid blob identifier format: %s", full_hash)
        return None

    try:
        return target_path.read_bytes()
    except FileNotFoundError:
        return None


def has_blob(full_hash: str, storage_path: Path, storage_prefix: str) -> bool:
    """Check if a blob with the given hash exists in the namespace."""
    try:
        return _get_blob_path(storage_path, storage_prefix, full_hash).is_file()
    except ValueError:
        return False


def delete_blob(full_hash: str, storage_path: Path, storage_prefix: str) -> bool:
    """
    Delete the blob stored under `full_hash`.

    The link store itself never deletes blobs; this is for operators.

    Returns:
        True if the blob was deleted, False if it was not present.

    """
    try:
        target_path = _get_blob_path(storage_path, storage_prefix, full_hash)
    except ValueError:
        logger.warning("Invalid blob identifier format: %s", full_hash)
        return False

    try:
        target_path.unlink()
    except FileNotFoundError:
        logger.warning("Blob %s not found for deletion.", full_hash)
        return False
    logger.info("Deleted blob %s", target_path)
    return True
