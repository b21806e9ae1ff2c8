# kutyus/core/types.py
import hmac
from dataclasses import dataclass
from typing import ClassVar, Type

from kutyus.core.encoding import b64url_decode, b64url_encode, hex_decode
from kutyus.core.errors import FormatError, KeyMaterialError, KutyusError

PUBLIC_KEY_SIZE = 32
SIGNATURE_SIZE = 64
DIGEST_SIZE = 64   # SHA-512


@dataclass(frozen=True)
class _FixedBytes:
    """Immutable byte string of one exact width."""
    raw: bytes

    SIZE: ClassVar[int] = 0
    ERROR: ClassVar[Type[KutyusError]] = FormatError

    def __post_init__(self):
        if not isinstance(self.raw, (bytes, bytearray, memoryview)):
            raise TypeError(f"{type(self).__name__} expects bytes, got {type(self.raw).__name__}")
        raw = bytes(self.raw)
        if len(raw) != self.SIZE:
            raise self.ERROR(f"{type(self).__name__} must be {self.SIZE} bytes, got {len(raw)}")
        object.__setattr__(self, "raw", raw)

    @classmethod
    def from_hex(cls, text: str):
        return cls(hex_decode(text))

    def hex(self) -> str:
        return self.raw.hex()

    def __bytes__(self) -> bytes:
        return self.raw

    def __len__(self) -> int:
        return self.SIZE

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.raw.hex()})"


@dataclass(frozen=True, repr=False)
class PublicKey(_FixedBytes):
    """Ed25519 public key, also the author identity of a Message."""
    SIZE: ClassVar[int] = PUBLIC_KEY_SIZE
    ERROR: ClassVar[Type[KutyusError]] = KeyMaterialError

    @classmethod
    def from_b64url(cls, text: str) -> "PublicKey":
        try:
            return cls(b64url_decode(text))
        except FormatError as e:
            raise KeyMaterialError(f"Invalid public key text: {e}") from e

    def b64url(self) -> str:
        return b64url_encode(self.raw)


@dataclass(frozen=True, repr=False, eq=False)
class Signature(_FixedBytes):
    """Ed25519 signature (twice the size of the public key)."""
    SIZE: ClassVar[int] = SIGNATURE_SIZE

    def __eq__(self, other):
        if not isinstance(other, Signature):
            return NotImplemented
        return hmac.compare_digest(self.raw, other.raw)

    def __hash__(self):
        return hash(self.raw)


@dataclass(frozen=True, repr=False)
class ParentHash(_FixedBytes):
    """SHA-512 digest of the parent Message's exact serialized bytes."""
    SIZE: ClassVar[int] = DIGEST_SIZE
