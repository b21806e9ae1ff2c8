# kutyus/__init__.py
"""
kutyus: signed, hash-linked personal feeds.
Every message is bound to its author's Ed25519 key and to the SHA-512 digest
of its predecessor, then wrapped in a frame signed over its exact bytes.
"""

__version__ = "0.1.0-dev"

from kutyus.core.errors import FormatError, KeyMaterialError, KutyusError
from kutyus.core.frame import Frame
from kutyus.core.message import ContentType, Message
from kutyus.core.types import ParentHash, PublicKey, Signature
from kutyus.crypto.keys import FeedKeyPair
from kutyus.chain.feed import Feed
from kutyus.verify.verifier import ChainVerifier, VerificationResult

__all__ = [
    "ChainVerifier",
    "ContentType",
    "Feed",
    "FeedKeyPair",
    "FormatError",
    "Frame",
    "KeyMaterialError",
    "KutyusError",
    "Message",
    "ParentHash",
    "PublicKey",
    "Signature",
    "VerificationResult",
]
