"""
Storage backends for persisted feeds.

A store keeps each author's frames in append order, keyed by author and
sequence number, and hands back the head frame so the next Message's parent
can be computed. Stores link-check what they are given; signature checks
belong to `kutyus.verify`.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional, Union

from kutyus.core.frame import Frame
from kutyus.core.types import PublicKey

AuthorRef = Union[PublicKey, str]   # key or its base64url text


class FeedStore(ABC):
    """Abstract base for all persistent feed storage implementations."""

    @abstractmethod
    def append(self, frame: Frame) -> int:
        """Persist `frame` at the head of its author's feed; returns its sequence number."""

    @abstractmethod
    def load_frames(self, author: AuthorRef) -> List[Frame]:
        pass

    @abstractmethod
    def latest_frame(self, author: AuthorRef) -> Optional[Frame]:
        pass

    @abstractmethod
    def close(self) -> None:
        pass


def author_id(author: AuthorRef) -> str:
    if isinstance(author, PublicKey):
        return author.b64url()
    return PublicKey.from_b64url(author).b64url()


def create_storage(uri: str) -> FeedStore:
    if uri.startswith("sqlite://"):
        from .sqlite import SQLiteStorage
        # Everything after sqlite:// is a filesystem path
        raw_path = uri[len("sqlite://"):]
        if not raw_path:
            raise ValueError("sqlite:// URI needs a database path")
        return SQLiteStorage(Path(raw_path).expanduser().resolve())
    else:
        raise ValueError(f"Unsupported storage URI: {uri}")


from .sqlite import SQLiteStorage

__all__ = ["FeedStore", "AuthorRef", "author_id", "create_storage", "SQLiteStorage"]
