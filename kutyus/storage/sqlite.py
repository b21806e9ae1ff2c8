import logging
import os
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Tuple

from kutyus.core.encoding import short_hex
from kutyus.core.frame import Frame
from kutyus.core.types import PublicKey
from . import AuthorRef, FeedStore, author_id

logger = logging.getLogger(__name__)


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds")


class SQLiteStorage(FeedStore):
    """SQLite persistent storage for single-author feeds."""

    def __init__(self, db_path: str | Path | None = None):
        if db_path is None:
            env_path = os.environ.get("KUTYUS_DB_PATH")
            db_path = env_path if env_path else Path.cwd() / "feeds.db"

        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.db_path = self.db_path.resolve()

        self._conn: Optional[sqlite3.Connection] = None
        self._connect()

    def _connect(self):
        self._conn = sqlite3.connect(str(self.db_path), isolation_level=None)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._create_schema()

    def _create_schema(self):
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS frames (
                author          TEXT    NOT NULL,
                sequence        INTEGER NOT NULL,
                message_hash    TEXT    NOT NULL,
                parent_hash     TEXT,
                content_type    BLOB    NOT NULL,
                stored_at       TEXT    NOT NULL,
                frame           BLOB    NOT NULL,
                PRIMARY KEY (author, sequence)
            )
        """)
        self.conn.execute("CREATE INDEX IF NOT EXISTS idx_stored_at ON frames(author, stored_at)")
        self.conn.execute("CREATE INDEX IF NOT EXISTS idx_message_hash ON frames(message_hash)")

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError("Storage connection is closed")
        return self._conn

    def _head(self, author: str) -> Optional[Tuple[int, str]]:
        cursor = self.conn.execute(
            "SELECT sequence, message_hash FROM frames WHERE author = ? ORDER BY sequence DESC LIMIT 1",
            (author,)
        )
        return cursor.fetchone()

    def append(self, frame: Frame) -> int:
        message = frame.decode_message()
        author = message.author.b64url()

        head = self._head(author)
        if head is None:
            if message.parent is not None:
                raise ValueError(f"First frame of feed {author} must be a root message (no parent)")
            sequence = 0
        else:
            head_sequence, head_hash = head
            if message.parent is None or message.parent.hex() != head_hash:
                raise ValueError(f"Frame does not extend feed {author} at sequence {head_sequence}")
            sequence = head_sequence + 1

        msg_hash = frame.digest().hex()
        self.conn.execute("""
            INSERT INTO frames
            (author, sequence, message_hash, parent_hash, content_type, stored_at, frame)
            VALUES (?, ?, ?, ?, ?, ?, ?)
        """, (
            author, sequence, msg_hash,
            message.parent.hex() if message.parent else None,
            message.content_type.tag, utc_now(), frame.encode()
        ))
        logger.debug("Stored frame %d of feed %s (%s)", sequence, author, short_hex(frame.digest().raw))
        return sequence

    def load_frames(self, author: AuthorRef) -> List[Frame]:
        cursor = self.conn.execute(
            "SELECT frame FROM frames WHERE author = ? ORDER BY sequence ASC",
            (author_id(author),)
        )
        return [Frame.decode(row[0]) for row in cursor]

    def latest_frame(self, author: AuthorRef) -> Optional[Frame]:
        cursor = self.conn.execute(
            "SELECT frame FROM frames WHERE author = ? ORDER BY sequence DESC LIMIT 1",
            (author_id(author),)
        )
        row = cursor.fetchone()
        return Frame.decode(row[0]) if row else None

    @contextmanager
    def transaction(self):
        """Group several appends so they commit together or not at all.

        BEGIN IMMEDIATE takes the write lock up front, so no other writer can
        move a feed head between the reads and writes made inside the block.
        """
        self.conn.execute("BEGIN IMMEDIATE")
        try:
            yield self
        except BaseException:
            self.conn.execute("ROLLBACK")
            raise
        self.conn.execute("COMMIT")

    def close(self) -> None:
        if self._conn:
            self._conn.close()
            self._conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def list_feeds(self) -> List[PublicKey]:
        """All authors with at least one frame, most recently written first."""
        cursor = self.conn.execute("""
            SELECT author
            FROM frames
            GROUP BY author
            ORDER BY MAX(stored_at) DESC
        """)
        return [PublicKey.from_b64url(row[0]) for row in cursor.fetchall()]

    def get_frame_count(self, author: AuthorRef) -> int:
        cursor = self.conn.execute(
            "SELECT COUNT(*) FROM frames WHERE author = ?",
            (author_id(author),)
        )
        return cursor.fetchone()[0]

    def get_latest_timestamp(self, author: AuthorRef) -> Optional[str]:
        cursor = self.conn.execute(
            "SELECT MAX(stored_at) FROM frames WHERE author = ?",
            (author_id(author),)
        )
        row = cursor.fetchone()
        return row[0] if row and row[0] else None

    def query_frames(self, author: AuthorRef, limit: int = 50) -> List[Tuple[int, str, Frame]]:
        """Most recent `limit` frames as (sequence, stored_at, frame), oldest first."""
        cursor = self.conn.execute("""
            SELECT sequence, stored_at, frame
            FROM frames
            WHERE author = ?
            ORDER BY sequence DESC
            LIMIT ?
        """, (author_id(author), limit))

        loaded = [(seq, ts, Frame.decode(blob)) for seq, ts, blob in cursor]
        loaded.reverse()  # latest last
        return loaded
