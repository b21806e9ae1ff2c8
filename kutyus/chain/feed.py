# kutyus/chain/feed.py
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Union

from kutyus.core.frame import Frame
from kutyus.core.message import ContentType, Message
from kutyus.core.types import ParentHash, PublicKey
from kutyus.crypto.keys import FeedKeyPair
from kutyus.storage import FeedStore, create_storage
from kutyus.verify.verifier import ChainVerifier, VerificationResult

logger = logging.getLogger(__name__)


@dataclass
class Feed:
    """
    One author's append-only feed.
    Keeps the ordered list of signed frames and links each new message to
    the hash of the previous one. Optionally backed by a persistent store.
    """
    author: PublicKey
    frames: List[Frame] = field(default_factory=list)
    storage: Optional[Union[FeedStore, str]] = None

    def __post_init__(self):
        if isinstance(self.storage, str):
            stripped = self.storage.strip()
            if stripped.startswith("sqlite://"):
                self.storage = create_storage(stripped)
            elif stripped:
                # Plain file path → SQLite database at that path
                self.storage = create_storage(f"sqlite://{stripped}")
            else:
                self.storage = None

        if self.storage is not None and not self.frames:
            self.frames = self.storage.load_frames(self.author)
            logger.info("Loaded %d frames from storage for feed %s", len(self.frames), self.author.b64url())

    @classmethod
    def for_signer(cls, signer: FeedKeyPair, storage: Optional[Union[FeedStore, str]] = None) -> "Feed":
        return cls(author=signer.public_key, storage=storage)

    @property
    def length(self) -> int:
        return len(self.frames)

    def append(
        self,
        content: bytes,
        signer: FeedKeyPair,
        content_type: ContentType = ContentType.BLOB,
    ) -> Frame:
        """
        Append a new message: parent = hash of head → build message → sign →
        persist if storage is active → append.
        Returns the newly signed frame.
        """
        if signer.public_key != self.author:
            raise ValueError("Signer key does not belong to the feed author")

        message = Message(
            author=self.author,
            parent=self.get_last_hash(),
            content_type=content_type,
            content=content,
        )
        frame = Frame.sign(message, signer)

        # Persist first so memory never runs ahead of the store
        if self.storage is not None:
            sequence = self.storage.append(frame)
            logger.debug("Persisted frame %d for feed %s", sequence, self.author.b64url())

        self.frames.append(frame)
        return frame

    def get_chain(self) -> List[Frame]:
        """Returns copy of the full signed chain"""
        return self.frames.copy()

    def messages(self) -> List[Message]:
        return [frame.decode_message() for frame in self.frames]

    def get_last_hash(self) -> Optional[ParentHash]:
        """Hash of the head message, i.e. the next message's parent"""
        if not self.frames:
            return None
        return self.frames[-1].digest()

    def verify(self) -> VerificationResult:
        return ChainVerifier(self.author).verify(self.frames)

    def close(self) -> None:
        """Release any storage resources (e.g. database connection)."""
        if self.storage is not None:
            self.storage.close()
            logger.debug("Storage closed for feed %s", self.author.b64url())
            self.storage = None
