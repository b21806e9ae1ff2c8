import sqlite3
from pathlib import Path

import pytest

from kutyus.chain.feed import Feed
from kutyus.core.errors import FormatError
from kutyus.core.frame import Frame
from kutyus.core.message import Message
from kutyus.core.types import ParentHash
from kutyus.crypto.keys import FeedKeyPair
from kutyus.storage import FeedStore, SQLiteStorage, create_storage
from kutyus.verify.verifier import ChainVerifier


@pytest.fixture
def temp_db_path(tmp_path: Path) -> Path:
    return tmp_path / "test.db"


@pytest.fixture
def storage(temp_db_path: Path) -> SQLiteStorage:
    with SQLiteStorage(db_path=temp_db_path) as store:
        yield store


@pytest.fixture
def keys() -> FeedKeyPair:
    return FeedKeyPair.generate()


def root_frame(keys: FeedKeyPair, content: bytes = b"root") -> Frame:
    return Frame.sign(Message(author=keys.public_key, content=content), keys)


def test_create_storage_dynamic_routing(temp_db_path: Path):
    store = create_storage(f"sqlite://{temp_db_path}")
    assert isinstance(store, SQLiteStorage)
    assert isinstance(store, FeedStore)
    assert str(store.db_path) == str(temp_db_path.resolve())
    store.close()


def test_create_storage_rejects_unknown_scheme():
    with pytest.raises(ValueError, match="Unsupported"):
        create_storage("jsonl:feeds.jsonl")


def test_sqlite_init_default_and_env(tmp_path: Path, monkeypatch):
    monkeypatch.delenv("KUTYUS_DB_PATH", raising=False)
    monkeypatch.chdir(tmp_path)
    default_storage = SQLiteStorage()
    assert default_storage.db_path.name == "feeds.db"
    default_storage.close()

    env_db = tmp_path / "env" / "env-test.db"
    monkeypatch.setenv("KUTYUS_DB_PATH", str(env_db))
    env_storage = SQLiteStorage()
    assert env_storage.db_path == env_db.resolve()
    env_storage.close()


def test_sqlite_schema_creation(storage: SQLiteStorage):
    cursor = storage.conn.cursor()
    cursor.execute("PRAGMA table_info(frames)")
    columns = {row[1] for row in cursor.fetchall()}
    assert columns == {
        "author", "sequence", "message_hash", "parent_hash",
        "content_type", "stored_at", "frame",
    }


def test_append_and_load_basic(storage: SQLiteStorage, keys: FeedKeyPair):
    frame = root_frame(keys, b"Test content")
    assert storage.append(frame) == 0

    loaded = storage.load_frames(keys.public_key)
    assert loaded == [frame]
    assert loaded[0].decode_message().content == b"Test content"
    assert storage.latest_frame(keys.public_key) == frame
    assert storage.latest_frame(keys.public_key_b64url()) == frame


def test_append_extends_head(storage: SQLiteStorage, keys: FeedKeyPair):
    first = root_frame(keys)
    second = Frame.sign(Message(author=keys.public_key, parent=first.digest(), content=b"2"), keys)
    storage.append(first)
    assert storage.append(second) == 1
    assert storage.get_frame_count(keys.public_key) == 2
    assert storage.latest_frame(keys.public_key) == second


def test_root_with_parent_refused(storage: SQLiteStorage, keys: FeedKeyPair):
    orphan = Frame.sign(Message(author=keys.public_key, parent=ParentHash(bytes(64)), content=b"x"), keys)
    with pytest.raises(ValueError, match="root"):
        storage.append(orphan)


def test_fork_refused(storage: SQLiteStorage, keys: FeedKeyPair):
    storage.append(root_frame(keys, b"a"))
    with pytest.raises(ValueError, match="does not extend"):
        storage.append(root_frame(keys, b"b"))
    assert storage.get_frame_count(keys.public_key) == 1


def test_transaction_rolls_back_every_append_on_failure(storage: SQLiteStorage, keys: FeedKeyPair):
    root = root_frame(keys)
    storage.append(root)
    child = Frame.sign(Message(author=keys.public_key, parent=root.digest(), content=b"child"), keys)
    fork = Frame.sign(Message(author=keys.public_key, parent=root.digest(), content=b"fork"), keys)

    with pytest.raises(ValueError, match="does not extend"):
        with storage.transaction():
            storage.append(child)
            storage.append(fork)
    assert storage.load_frames(keys.public_key) == [root]

    with storage.transaction():
        storage.append(child)
    assert storage.get_frame_count(keys.public_key) == 2


def test_undecodable_frame_refused(storage: SQLiteStorage, keys: FeedKeyPair):
    junk = Frame(message=b"\x90", signature=keys.sign(bytes(64)))
    with pytest.raises(FormatError):
        storage.append(junk)


def test_load_empty_feed(storage: SQLiteStorage, keys: FeedKeyPair):
    assert storage.load_frames(keys.public_key) == []
    assert storage.latest_frame(keys.public_key) is None
    assert storage.get_latest_timestamp(keys.public_key) is None


def test_list_feeds_and_query(storage: SQLiteStorage, keys: FeedKeyPair):
    other = FeedKeyPair.generate()
    feed = Feed.for_signer(keys, storage=storage)
    for i in range(5):
        feed.append(f"msg {i}".encode(), keys)
    storage.append(root_frame(other))

    assert set(storage.list_feeds()) == {keys.public_key, other.public_key}
    assert storage.get_frame_count(keys.public_key) == 5
    assert storage.get_latest_timestamp(keys.public_key) is not None

    recent = storage.query_frames(keys.public_key, limit=2)
    assert [seq for seq, _, _ in recent] == [3, 4]
    assert recent[-1][2].decode_message().content == b"msg 4"


def test_feed_integration_with_storage(temp_db_path: Path, keys: FeedKeyPair):
    feed = Feed.for_signer(keys, storage=f"sqlite://{temp_db_path}")
    feed.append(b"First msg", keys)
    feed.append(b"Second msg", keys)
    feed.close()

    feed2 = Feed.for_signer(keys, storage=str(temp_db_path))
    assert feed2.length == 2
    assert feed2.messages()[0].content == b"First msg"
    third = feed2.append(b"Third msg", keys)
    assert third.decode_message().parent == feed2.frames[1].digest()
    assert feed2.verify().is_valid
    feed2.close()


def test_failed_persist_leaves_feed_unchanged(temp_db_path: Path, keys: FeedKeyPair):
    feed = Feed.for_signer(keys, storage=str(temp_db_path))
    feed.append(b"one", keys)
    feed.storage.close()
    with pytest.raises(RuntimeError, match="closed"):
        feed.append(b"two", keys)
    assert feed.length == 1


def test_close_releases_resources(temp_db_path: Path, keys: FeedKeyPair):
    store = SQLiteStorage(temp_db_path)
    assert store._conn is not None
    store.append(root_frame(keys))
    store.close()

    with pytest.raises(RuntimeError, match="closed"):
        store.append(root_frame(keys))


def test_context_manager(temp_db_path: Path, keys: FeedKeyPair):
    with SQLiteStorage(temp_db_path) as store:
        assert store._conn is not None
    with pytest.raises(RuntimeError, match="closed"):
        store.load_frames(keys.public_key)


def test_verifier_with_storage(temp_db_path: Path, keys: FeedKeyPair):
    """
    End-to-end: write signed frames to persistent storage, reload them,
    verify, then tamper with the stored bytes and verify again.
    """
    feed = Feed.for_signer(keys, storage=f"sqlite://{temp_db_path}")
    feed.append(b"Hello from me", keys)
    feed.append(b"Reply to myself", keys)
    feed.close()

    verifier = ChainVerifier(keys.public_key)
    with SQLiteStorage(temp_db_path) as store:
        result = verifier.verify_from_storage(store)
    assert result.is_valid, f"Verification failed: {result}"

    conn = sqlite3.connect(temp_db_path)
    (blob,) = conn.execute("SELECT frame FROM frames WHERE sequence = 1").fetchone()
    tampered = blob.replace(b"Reply to myself", b"Reply to mYself")
    assert tampered != blob
    conn.execute("UPDATE frames SET frame = ? WHERE sequence = 1", (tampered,))
    conn.commit()
    conn.close()

    with SQLiteStorage(temp_db_path) as store:
        result_tampered = verifier.verify_from_storage(store)
    assert not result_tampered.is_valid, "Tampered chain should fail verification"
    assert result_tampered.first_failure.index == 1
    assert any(f.category == "signature" for f in result_tampered.failures)


def test_verifier_reports_storage_failure(temp_db_path: Path, keys: FeedKeyPair):
    store = SQLiteStorage(temp_db_path)
    store.close()
    result = ChainVerifier(keys.public_key).verify_from_storage(store)
    assert not result.is_valid
    assert result.first_failure.category == "storage"
