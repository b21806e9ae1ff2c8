# kutyus/crypto/hashing.py
import hashlib

from kutyus.core.types import ParentHash


def sha512(data: bytes) -> bytes:
    """SHA-512 of raw bytes; the signing input and the chain link digest."""
    return hashlib.sha512(data).digest()


def message_hash(serialized: bytes) -> ParentHash:
    """
    Hash of a Message as used for `parent` links.

    Always computed over the exact serialized bytes (as stored in a Frame),
    never over a re-encoding of a decoded Message.
    """
    return ParentHash(sha512(bytes(serialized)))
