"""Custom exceptions for the link store."""

from typing import Any


class LinkStoreError(Exception):
    """Base class for exceptions raised by the link store."""

    pass


class ConfigurationError(LinkStoreError):
    """Raised when the configuration file cannot be loaded or validated."""

    pass


class ResolutionExhaustedError(LinkStoreError):
    """Raised when no unique short id can be derived before the hash is consumed."""

    def __init__(self, full_hash: str) -> None:
        super().__init__(f'Could not find unique subhash for hash "{full_hash}"')
        self.full_hash = full_hash


class StoreFailedError(LinkStoreError):
    """Raised when a write to the metadata index or the blob store fails."""

    def __init__(
        self,
        message: str,
        item: Any | None = None,
        original_exception: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.item = item
        self.original_exception = original_exception

    def __str__(self) -> str:
        base_str = super().__str__()
        if self.original_exception:
            return (
                f"{base_str} (Original Error: {type(self.original_exception).__name__}: {self.original_exception})"
            )
        return base_str


class StorageError(LinkStoreError):
    """Raised when a backing store cannot be read."""

    def __init__(self, message: str, original_exception: BaseException | None = None) -> None:
        super().__init__(message)
        self.original_exception = original_exception


class LinkNotFoundError(LinkStoreError, LookupError):
    """Raised when no metadata record exists for a short id."""

    def __init__(self, short_id: str) -> None:
        super().__init__(f"ID {short_id} not present in links table")
        self.short_id = short_id


class ContentMissingError(LinkStoreError, LookupError):
    """
    Raised when a metadata record exists but its blob does not.

    This is a data-integrity fault: the two stores have diverged.
    """

    def __init__(self, short_id: str, full_hash: str) -> None:
        super().__init__(f"ID {short_id} not present in storage")
        self.short_id = short_id
        self.full_hash = full_hash
