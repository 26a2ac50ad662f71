"""CoIoT payload decoding package."""

from .description import decode_description, is_description
from .normalize import fix_description
from .status import decode_status, is_duplicate, is_status

__all__ = [
    "decode_description",
    "decode_status",
    "fix_description",
    "is_description",
    "is_duplicate",
    "is_status",
]
