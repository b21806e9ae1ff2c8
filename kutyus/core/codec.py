# kutyus/core/codec.py
"""
Thin length-prefixed binary layer on top of MessagePack.

Only the shapes the wire format needs are exposed: array headers, unsigned
integers, byte strings (fixed or variable length) and the zero-or-one element
array used for optional values. Writers take any object with a ``write(bytes)``
method; readers pull from a :class:`Reader`.

Every decode problem surfaces as :class:`FormatError`, never as a msgpack
exception, so callers only have one thing to catch when rejecting input.
"""
import io
from contextlib import contextmanager
from typing import Any, BinaryIO, Callable, Iterator, Optional, TypeVar

import msgpack

from kutyus.core.errors import FormatError

T = TypeVar("T")

# Largest byte string either side accepts. Readers also need room for the
# framing around such a string, hence the buffer headroom.
MAX_BYTES = 100 * 1024 * 1024
BUFFER_HEADROOM = 1024


def _packer() -> msgpack.Packer:
    # bin type keeps byte strings out of the (utf-8) str family
    return msgpack.Packer(use_bin_type=True)


@contextmanager
def _decoding(what: str) -> Iterator[None]:
    try:
        yield
    except msgpack.OutOfData as e:
        raise FormatError(f"Truncated input while reading {what}") from e
    except (msgpack.UnpackException, ValueError) as e:
        raise FormatError(f"Malformed {what}: {str(e) or type(e).__name__}") from e


class Reader:
    """Synchronous pull decoder over a binary stream.

    The underlying unpacker buffers ahead, so one Reader must be used for all
    reads from a given stream.
    """

    def __init__(self, stream: BinaryIO, size: Optional[int] = None):
        self._unpacker = msgpack.Unpacker(
            stream,
            raw=False,
            strict_map_key=True,
            max_buffer_size=MAX_BYTES + BUFFER_HEADROOM,
            max_bin_len=MAX_BYTES,
        )
        self._size = size

    @classmethod
    def from_bytes(cls, data: bytes) -> "Reader":
        data = bytes(data)
        return cls(io.BytesIO(data), size=len(data))

    @property
    def offset(self) -> int:
        """Number of bytes consumed so far."""
        return self._unpacker.tell()

    def at_end(self) -> bool:
        if self._size is None:
            raise RuntimeError("at_end() needs a reader created with from_bytes()")
        return self.offset >= self._size

    def read_array_header(self, what: str = "array") -> int:
        with _decoding(what):
            return self._unpacker.read_array_header()

    def read_value(self, what: str = "value") -> Any:
        with _decoding(what):
            return self._unpacker.unpack()


# ── writers ─────────────────────────────────────────────────────────────

def write_fixed_array(buf: BinaryIO, n: int) -> None:
    buf.write(_packer().pack_array_header(n))


def write_uint(buf: BinaryIO, value: int) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise FormatError(f"Expected unsigned integer, got {value!r}")
    buf.write(_packer().pack(value))


def check_size(data: bytes, what: str = "bytes") -> None:
    if len(data) > MAX_BYTES:
        raise FormatError(f"{what}: {len(data)} bytes exceeds the {MAX_BYTES} byte limit")


def write_var_bytes(buf: BinaryIO, data: bytes, what: str = "bytes") -> None:
    check_size(data, what)
    buf.write(_packer().pack(bytes(data)))


def write_fixed_bytes(buf: BinaryIO, data: bytes, size: int) -> None:
    if len(data) != size:
        raise FormatError(f"Expected {size} bytes, got {len(data)}")
    write_var_bytes(buf, data)


def write_optional(buf: BinaryIO, value: Optional[T], encode_fn: Callable[[BinaryIO, T], None]) -> None:
    """None -> Array[0]; value -> Array[1]{value}."""
    if value is None:
        write_fixed_array(buf, 0)
    else:
        write_fixed_array(buf, 1)
        encode_fn(buf, value)


def encode_with(write_fn: Callable[[BinaryIO], None]) -> bytes:
    """Run `write_fn` against a fresh buffer and return what it wrote."""
    buf = io.BytesIO()
    write_fn(buf)
    return buf.getvalue()


# ── readers ─────────────────────────────────────────────────────────────

def read_array(src: Reader, what: str = "array") -> int:
    return src.read_array_header(what)


def read_fixed_array(src: Reader, expected: int, what: str = "array") -> int:
    count = src.read_array_header(what)
    if count != expected:
        raise FormatError(f"{what}: expected array of {expected} items, got {count}")
    return count


def read_uint(src: Reader, what: str = "integer") -> int:
    value = src.read_value(what)
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise FormatError(f"{what}: expected unsigned integer, got {type(value).__name__}")
    return value


def read_var_bytes(src: Reader, what: str = "bytes") -> bytes:
    value = src.read_value(what)
    if not isinstance(value, bytes):
        raise FormatError(f"{what}: expected binary, got {type(value).__name__}")
    return value


def read_fixed_bytes(src: Reader, size: int, what: str = "bytes") -> bytes:
    value = read_var_bytes(src, what)
    if len(value) != size:
        raise FormatError(f"{what}: expected {size} bytes, got {len(value)}")
    return value


def read_optional(src: Reader, decode_fn: Callable[[Reader], T], what: str = "optional") -> Optional[T]:
    """Array[0] -> None; Array[1] -> one decoded value; anything else is an error."""
    count = src.read_array_header(what)
    if count == 0:
        return None
    if count == 1:
        return decode_fn(src)
    raise FormatError(f"{what}: optional marker must hold 0 or 1 items, got {count}")
