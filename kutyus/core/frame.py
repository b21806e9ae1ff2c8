# kutyus/core/frame.py
from dataclasses import dataclass
from typing import BinaryIO, Iterator, Union

from kutyus.core import codec
from kutyus.core.codec import Reader
from kutyus.core.errors import FormatError
from kutyus.core.message import Message
from kutyus.core.types import SIGNATURE_SIZE, ParentHash, PublicKey, Signature
from kutyus.crypto.hashing import message_hash, sha512
from kutyus.crypto.keys import FeedKeyPair, verify_digest

FRAME_VERSION = 1
FRAME_ARITY = 3


@dataclass(frozen=True)
class Frame:
    """
    Signed envelope around one serialized Message.

    `message` keeps the exact bytes that were signed, so verification never
    depends on re-encoding a decoded Message. Changing `version` means
    changing the format of the Frame.
    """
    message: bytes
    signature: Signature
    version: int = FRAME_VERSION

    def __post_init__(self):
        if type(self.version) is not int or self.version != FRAME_VERSION:
            raise FormatError(f"Unsupported frame version {self.version!r}")
        if not isinstance(self.message, (bytes, bytearray, memoryview)):
            raise TypeError(f"message must be bytes, got {type(self.message).__name__}")
        if not isinstance(self.signature, Signature):
            raise TypeError(f"signature must be a Signature, got {type(self.signature).__name__}")
        object.__setattr__(self, "message", bytes(self.message))
        codec.check_size(self.message, "frame message")

    @classmethod
    def sign(cls, message: Message, signer: FeedKeyPair) -> "Frame":
        """Serialize → SHA-512 → Ed25519 sign the digest → wrap."""
        serialized = message.encode()
        signature = signer.sign(sha512(serialized))
        return cls(message=serialized, signature=signature)

    def verify(self, public_key: Union[PublicKey, bytes]) -> bool:
        """True iff `signature` is valid for the stored message bytes under `public_key`."""
        if not isinstance(public_key, PublicKey):
            public_key = PublicKey(public_key)
        return verify_digest(public_key, sha512(self.message), self.signature)

    def decode_message(self) -> Message:
        return Message.decode(self.message)

    def digest(self) -> ParentHash:
        """The value a successor Message must carry as its `parent`."""
        return message_hash(self.message)

    def write(self, buf: BinaryIO) -> None:
        codec.write_fixed_array(buf, FRAME_ARITY)
        codec.write_uint(buf, self.version)
        codec.write_var_bytes(buf, self.message, "frame message")
        codec.write_fixed_bytes(buf, self.signature.raw, SIGNATURE_SIZE)

    def encode(self) -> bytes:
        return codec.encode_with(self.write)

    @classmethod
    def read(cls, src: Reader) -> "Frame":
        codec.read_fixed_array(src, FRAME_ARITY, "frame")
        version = codec.read_uint(src, "frame version")
        if version != FRAME_VERSION:
            raise FormatError(f"Unsupported frame version {version}")
        message = codec.read_var_bytes(src, "frame message")
        signature = Signature(codec.read_fixed_bytes(src, SIGNATURE_SIZE, "signature"))
        return cls(message=message, signature=signature, version=version)

    @classmethod
    def decode(cls, data: bytes) -> "Frame":
        """Decode one complete encoded Frame. Does not verify the signature."""
        src = Reader.from_bytes(data)
        frame = cls.read(src)
        if not src.at_end():
            raise FormatError(f"frame: {len(data) - src.offset} trailing bytes")
        return frame


def iter_frames(data: bytes) -> Iterator[Frame]:
    """Decode back-to-back encoded frames (the export file format)."""
    src = Reader.from_bytes(data)
    while not src.at_end():
        yield Frame.read(src)
