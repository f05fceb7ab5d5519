import secrets
import threading
import time
from enum import Enum
from typing import Optional, Tuple

from clipvault.errors import ValidationError

_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyz"
_SUFFIX_LENGTH = 5

_clock_lock = threading.Lock()
_last_millis = 0


class Kind(str, Enum):
    SCREENSHOTS = "screenshots"
    OCR = "ocr"
    TEXT = "text"

    @property
    def extension(self) -> str:
        return _EXTENSIONS[self]

    @property
    def content_type(self) -> str:
        return _CONTENT_TYPES[self]


_EXTENSIONS = {Kind.SCREENSHOTS: "png", Kind.OCR: "json", Kind.TEXT: "txt"}
_CONTENT_TYPES = {
    Kind.SCREENSHOTS: "image/png",
    Kind.OCR: "application/json",
    Kind.TEXT: "text/plain",
}


def to_base36(value: int) -> str:
    if value < 0:
        raise ValueError("base36 encoding requires a non-negative integer")
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_ALPHABET[rem])
    return "".join(reversed(digits))


def _next_millis() -> int:
    global _last_millis
    with _clock_lock:
        now = int(time.time() * 1000)
        # wall clock may step backwards; never hand out an older time component
        _last_millis = max(_last_millis, now)
        return _last_millis


def generate_id() -> str:
    suffix = "".join(secrets.choice(_ALPHABET) for _ in range(_SUFFIX_LENGTH))
    return to_base36(_next_millis()) + suffix


def validate_user_id(user_id: str) -> str:
    if not user_id or not user_id.strip():
        raise ValidationError("userId is required")
    if "/" in user_id:
        raise ValidationError("userId must not contain '/'")
    return user_id


def blob_path(kind: Kind, user_id: str, entry_id: str) -> str:
    kind = Kind(kind)
    return f"{kind.value}/{user_id}/{entry_id}.{kind.extension}"


def text_path(user_id: str, entry_id: str) -> str:
    return blob_path(Kind.TEXT, user_id, entry_id)


def parse_blob_path(path: str) -> Optional[Tuple[Kind, str, str]]:
    """Recover (kind, userId, id) from a storage path, or None if it is not ours."""
    parts = path.split("/")
    if len(parts) != 3:
        return None
    kind_raw, user_id, file_name = parts
    try:
        kind = Kind(kind_raw)
    except ValueError:
        return None
    suffix = f".{kind.extension}"
    if not user_id or not file_name.endswith(suffix):
        return None
    entry_id = file_name[: -len(suffix)]
    if not entry_id:
        return None
    return kind, user_id, entry_id
