import pytest

from kutyus.chain.feed import Feed
from kutyus.core.message import ContentType
from kutyus.crypto.hashing import message_hash
from kutyus.crypto.keys import FeedKeyPair


@pytest.fixture
def signer() -> FeedKeyPair:
    return FeedKeyPair.generate()


@pytest.fixture
def empty_feed(signer):
    return Feed.for_signer(signer)


def test_feed_starts_empty(empty_feed):
    assert empty_feed.length == 0
    assert empty_feed.get_last_hash() is None
    assert empty_feed.verify().is_valid


def test_append_one_message(empty_feed, signer):
    frame = empty_feed.append(b"first post", signer)

    chain = empty_feed.get_chain()
    assert len(chain) == 1
    assert chain[0] == frame
    message = frame.decode_message()
    assert message.parent is None
    assert message.author == signer.public_key
    assert message.content_type == ContentType.BLOB
    assert frame.verify(signer.public_key)


def test_chain_links_hashes(empty_feed, signer):
    empty_feed.append(b"one", signer)
    empty_feed.append(b"two", signer, content_type=ContentType.custom(b"text/plain"))
    empty_feed.append(b"three", signer)

    chain = empty_feed.get_chain()
    messages = empty_feed.messages()
    assert len(chain) == 3
    assert messages[0].parent is None
    assert messages[1].parent == message_hash(chain[0].message)
    assert messages[2].parent == message_hash(chain[1].message)
    assert messages[1].content_type == ContentType.custom(b"text/plain")
    assert empty_feed.get_last_hash() == chain[2].digest()
    assert empty_feed.verify().is_valid


def test_get_chain_is_a_copy(empty_feed, signer):
    empty_feed.append(b"one", signer)
    chain = empty_feed.get_chain()
    chain.clear()
    assert empty_feed.length == 1


def test_foreign_signer_rejected(empty_feed):
    with pytest.raises(ValueError, match="feed author"):
        empty_feed.append(b"not mine", FeedKeyPair.generate())
    assert empty_feed.length == 0


def test_empty_storage_string_means_memory_only(signer):
    feed = Feed.for_signer(signer, storage="  ")
    assert feed.storage is None
