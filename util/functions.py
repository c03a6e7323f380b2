# util/functions.py
import hashlib
import math
from urllib.parse import quote
from typing import Iterator, Sequence, TypeVar

T = TypeVar("T")


def batched(items: Sequence[T], size: int) -> Iterator[list[T]]:
    """
    - Split `items` into consecutive lists of at most `size` elements.
    - Order is preserved; the last batch may be shorter.
    """
    if size < 1:
        raise ValueError("batch size must be >= 1")
    for start in range(0, len(items), size):
        yield list(items[start : start + size])


def token_fingerprint(access_token: str, length: int = 16) -> str:
    digest = hashlib.sha256(access_token.encode("utf-8")).hexdigest()
    return f"token_{digest[:length]}"


def format_bytes(n: int) -> str:
    if n <= 0:
        return "0 Bytes"
    units = ["Bytes", "KB", "MB", "GB", "TB"]
    i = min(int(math.floor(math.log(n, 1024))), len(units) - 1)
    value = round(n / (1024**i), 2)
    return f"{value:g} {units[i]}"


def percentage(done: int, total: int) -> int:
    """Whole percent, halves rounded up (1 of 8 -> 13)."""
    if total <= 0:
        return 0
    return math.floor(100 * done / total + 0.5)


def safe_filename(name: str, max_len: int = 120) -> str:
    # Keep staging names readable but never let a display name escape the dir.
    cleaned = "".join(c if c.isalnum() or c in "._- " else "_" for c in name).strip()
    return (cleaned or "file")[:max_len]


def content_disposition(name: str) -> str:
    ascii_name = name.encode("ascii", "ignore").decode("ascii").replace('"', "") or "download"
    return f"attachment; filename=\"{ascii_name}\"; filename*=UTF-8''{quote(name)}"
