"""Content hashing for the link store."""

import base64
import hashlib

HASH_LENGTH = 43


def content_hash(content: bytes | str) -> str:
    """
    Calculate the full hash of some content.

    The SHA256 digest is encoded as URL-safe base64 with the padding removed,
    so every hash is 43 characters drawn from `A-Z a-z 0-9 - _`.

    Args:
        content: The raw content. Strings are UTF-8 encoded first.

    Returns:
        The full content hash.

    """
    if isinstance(content, str):
        content = content.encode("utf-8")
    digest = hashlib.sha256(content).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")
