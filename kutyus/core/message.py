# kutyus/core/message.py
from dataclasses import dataclass
from typing import BinaryIO, Optional

from kutyus.core import codec
from kutyus.core.codec import Reader
from kutyus.core.errors import FormatError
from kutyus.core.types import DIGEST_SIZE, PUBLIC_KEY_SIZE, ParentHash, PublicKey
from kutyus.crypto.hashing import message_hash

MESSAGE_ARITY = 4
BLOB_TAG = b"\x00"


@dataclass(frozen=True)
class ContentType:
    """
    Application-specific type identifier; decides how `content` is read.

    `ContentType.BLOB` (opaque bytes) goes on the wire as the single byte 0x00,
    any other tag as its raw bytes. A custom tag of exactly b"\\x00" therefore
    *is* BLOB: the two cannot be told apart after decoding, so they are the
    same value here too.
    """
    tag: bytes = BLOB_TAG

    def __post_init__(self):
        if not isinstance(self.tag, (bytes, bytearray, memoryview)):
            raise TypeError(f"ContentType tag must be bytes, got {type(self.tag).__name__}")
        object.__setattr__(self, "tag", bytes(self.tag))

    @classmethod
    def custom(cls, tag: bytes) -> "ContentType":
        return cls(tag)

    @property
    def is_blob(self) -> bool:
        return self.tag == BLOB_TAG

    def write(self, buf: BinaryIO) -> None:
        codec.write_var_bytes(buf, self.tag, "content type")

    @classmethod
    def read(cls, src: Reader) -> "ContentType":
        return cls(codec.read_var_bytes(src, "content type"))

    def __repr__(self) -> str:
        if self.is_blob:
            return "ContentType.BLOB"
        return f"ContentType.custom({self.tag!r})"


ContentType.BLOB = ContentType(BLOB_TAG)


def _write_parent(buf: BinaryIO, parent: ParentHash) -> None:
    codec.write_fixed_bytes(buf, parent.raw, DIGEST_SIZE)


def _read_parent(src: Reader) -> ParentHash:
    return ParentHash(codec.read_fixed_bytes(src, DIGEST_SIZE, "parent hash"))


@dataclass(frozen=True)
class Message:
    """
    The content-bearing, hash-linkable record of a feed.

    A Message has no identity apart from its serialized bytes: its hash (and
    so every descendant's `parent`) is SHA-512 over `encode()`.
    """
    author: PublicKey               # Ed25519 public key of the feed owner
    content: bytes
    content_type: ContentType = ContentType.BLOB
    parent: Optional[ParentHash] = None   # None only for the root of a feed

    def __post_init__(self):
        if not isinstance(self.author, PublicKey):
            raise TypeError(f"author must be a PublicKey, got {type(self.author).__name__}")
        if self.parent is not None and not isinstance(self.parent, ParentHash):
            raise TypeError(f"parent must be a ParentHash or None, got {type(self.parent).__name__}")
        if not isinstance(self.content_type, ContentType):
            raise TypeError(f"content_type must be a ContentType, got {type(self.content_type).__name__}")
        if not isinstance(self.content, (bytes, bytearray, memoryview)):
            raise TypeError(f"content must be bytes, got {type(self.content).__name__}")
        object.__setattr__(self, "content", bytes(self.content))

    @property
    def is_root(self) -> bool:
        return self.parent is None

    def write(self, buf: BinaryIO) -> None:
        """
        Encode as a 4-item array:

        1. author public key (32 bytes)
        2. parent hash: empty array for the root, else a 1-item array of 64 bytes
        3. content type (bytes)
        4. content (bytes)
        """
        codec.write_fixed_array(buf, MESSAGE_ARITY)
        codec.write_fixed_bytes(buf, self.author.raw, PUBLIC_KEY_SIZE)
        codec.write_optional(buf, self.parent, _write_parent)
        self.content_type.write(buf)
        codec.write_var_bytes(buf, self.content, "content")

    def encode(self) -> bytes:
        return codec.encode_with(self.write)

    @classmethod
    def read(cls, src: Reader) -> "Message":
        codec.read_fixed_array(src, MESSAGE_ARITY, "message")
        author = PublicKey(codec.read_fixed_bytes(src, PUBLIC_KEY_SIZE, "author"))
        parent = codec.read_optional(src, _read_parent, "parent")
        content_type = ContentType.read(src)
        content = codec.read_var_bytes(src, "content")
        return cls(author=author, content=content, content_type=content_type, parent=parent)

    @classmethod
    def decode(cls, data: bytes) -> "Message":
        """Decode one complete serialized Message; trailing bytes are rejected."""
        src = Reader.from_bytes(data)
        message = cls.read(src)
        if not src.at_end():
            raise FormatError(f"message: {len(data) - src.offset} trailing bytes")
        return message

    def digest(self) -> ParentHash:
        return message_hash(self.encode())
