from .base_class import Base
from .short_link import DEFAULT_MIN_STORED_ID_LENGTH, PREFIX_LENGTH, ShortLinkRecord, get_key_struct

__all__ = [
    "Base",
    "DEFAULT_MIN_STORED_ID_LENGTH",
    "PREFIX_LENGTH",
    "ShortLinkRecord",
    "get_key_struct",
]
