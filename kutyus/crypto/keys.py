# kutyus/crypto/keys.py
import os
from pathlib import Path
from typing import Optional, Union

from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey, Ed25519PublicKey

from kutyus.core.errors import KeyMaterialError
from kutyus.core.types import PublicKey, Signature

PRIVATE_SEED_SIZE = 32


class FeedKeyPair:
    """
    Ed25519 identity of a feed author.

    May hold only the public half, in which case it can verify but not sign.
    Generation and file handling live here; the frame format only ever sees
    a `PublicKey` and a `sign(digest)` call.
    """

    def __init__(
        self,
        private_key: Optional[Ed25519PrivateKey] = None,
        public_key: Optional[Ed25519PublicKey] = None,
    ):
        if private_key is None and public_key is None:
            raise KeyMaterialError("A keypair needs at least a public key")
        self._private = private_key
        self._public = public_key if public_key is not None else private_key.public_key()

    @classmethod
    def generate(cls) -> "FeedKeyPair":
        return cls(Ed25519PrivateKey.generate())

    @classmethod
    def from_private_bytes(cls, data: bytes) -> "FeedKeyPair":
        """Load a 32-byte raw seed, or a PKCS#8 private key in DER or PEM."""
        data = bytes(data)
        try:
            if len(data) == PRIVATE_SEED_SIZE:
                key = Ed25519PrivateKey.from_private_bytes(data)
            elif data.lstrip().startswith(b"-----BEGIN"):
                key = serialization.load_pem_private_key(data, password=None)
            else:
                key = serialization.load_der_private_key(data, password=None)
        except (ValueError, TypeError, UnsupportedAlgorithm) as e:
            raise KeyMaterialError(f"Could not load private key: {e}") from e

        if not isinstance(key, Ed25519PrivateKey):
            raise KeyMaterialError(f"Not an Ed25519 private key: {type(key).__name__}")
        return cls(key)

    @classmethod
    def from_public_bytes(cls, data: bytes) -> "FeedKeyPair":
        public = PublicKey(data)
        try:
            key = Ed25519PublicKey.from_public_bytes(public.raw)
        except ValueError as e:
            raise KeyMaterialError(f"Could not load public key: {e}") from e
        return cls(public_key=key)

    @classmethod
    def from_public_b64url(cls, text: str) -> "FeedKeyPair":
        return cls.from_public_bytes(PublicKey.from_b64url(text).raw)

    @property
    def has_private_key(self) -> bool:
        return self._private is not None

    @property
    def public_key(self) -> PublicKey:
        return PublicKey(self._public.public_bytes(
            serialization.Encoding.Raw, serialization.PublicFormat.Raw
        ))

    def public_key_b64url(self) -> str:
        return self.public_key.b64url()

    def private_bytes(self) -> bytes:
        """Raw 32-byte seed."""
        return self._require_private().private_bytes(
            serialization.Encoding.Raw,
            serialization.PrivateFormat.Raw,
            serialization.NoEncryption(),
        )

    def sign(self, digest: bytes) -> Signature:
        """Sign a (SHA-512) digest. Frames never sign the raw message bytes."""
        return Signature(self._require_private().sign(bytes(digest)))

    def verify_bytes(self, signature: Union[Signature, bytes], data: bytes) -> bool:
        try:
            self._public.verify(bytes(signature), bytes(data))
        except InvalidSignature:
            return False
        return True

    def save(self, path: Union[str, Path]) -> Path:
        """
        Write the private key (PKCS#8 PEM, mode 0600) to `path` and the
        base64url public key to `path.pub`. Returns the public key path.
        """
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        pem = self._require_private().private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        )
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "wb") as f:
            f.write(pem)

        pub_path = public_key_path(path)
        pub_path.write_text(self.public_key_b64url() + "\n", encoding="ascii")
        return pub_path

    @classmethod
    def load(cls, path: Union[str, Path]) -> "FeedKeyPair":
        return cls.from_private_bytes(Path(path).read_bytes())

    def _require_private(self) -> Ed25519PrivateKey:
        if self._private is None:
            raise KeyMaterialError("Verify-only keypair has no private key")
        return self._private

    def __repr__(self) -> str:
        kind = "signing" if self.has_private_key else "verify-only"
        return f"FeedKeyPair({self.public_key_b64url()}, {kind})"


def public_key_path(path: Union[str, Path]) -> Path:
    path = Path(path)
    return path.with_name(path.name + ".pub")


def load_public_key(path: Union[str, Path]) -> PublicKey:
    return PublicKey.from_b64url(Path(path).read_text(encoding="ascii"))


def verify_digest(public_key: PublicKey, digest: bytes, signature: Signature) -> bool:
    """Ed25519 check of `signature` over `digest`. Never raises for bad input."""
    try:
        Ed25519PublicKey.from_public_bytes(public_key.raw).verify(signature.raw, digest)
    except (InvalidSignature, ValueError):
        return False
    return True
