# kutyus/core/encoding.py
import base64
import binascii

from kutyus.core.errors import FormatError


def b64url_encode(data: bytes) -> str:
    """Encode bytes to base64url (no padding, URL-safe)."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def b64url_decode(s: str) -> bytes:
    """Decode base64url string back to bytes. Raises FormatError on garbage."""
    s = s.strip()
    # Restore padding
    padding = len(s) % 4
    if padding:
        s += "=" * (4 - padding)
    try:
        return base64.b64decode(s, altchars=b"-_", validate=True)
    except (binascii.Error, ValueError) as e:
        raise FormatError(f"Invalid base64url text: {e}") from e


def hex_decode(s: str) -> bytes:
    try:
        return bytes.fromhex(s.strip())
    except ValueError as e:
        raise FormatError(f"Invalid hex text: {e}") from e


def short_hex(data: bytes, length: int = 8) -> str:
    """First `length` bytes as hex followed by an ellipsis, for log lines."""
    if len(data) <= length:
        return data.hex()
    return data[:length].hex() + "…"
