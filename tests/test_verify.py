import pytest

from kutyus.chain.feed import Feed
from kutyus.core.frame import Frame
from kutyus.core.message import Message
from kutyus.core.types import ParentHash, Signature
from kutyus.crypto.keys import FeedKeyPair
from kutyus.verify.verifier import ChainVerifier, VerificationResult


def create_test_chain(n_messages=3):
    keys = FeedKeyPair.generate()
    feed = Feed.for_signer(keys)
    for i in range(n_messages):
        feed.append(f"Message #{i}".encode(), keys)
    return feed.get_chain(), keys


def test_valid_chain():
    chain, keys = create_test_chain(3)
    result = ChainVerifier(keys.public_key).verify(chain)
    assert result.is_valid is True
    assert len(result.failures) == 0
    assert result.valid_length == 3
    assert "valid" in str(result).lower()


def test_empty_chain_is_valid():
    keys = FeedKeyPair.generate()
    result = ChainVerifier(keys.public_key).verify([])
    assert result
    assert result.valid_length == 0


def test_resigned_mutation_breaks_chain_at_next_message():
    chain, keys = create_test_chain(3)
    original = chain[1].decode_message()
    mutated = Message(
        author=original.author,
        parent=original.parent,
        content_type=original.content_type,
        content=b"rewritten history",
    )
    tampered = chain.copy()
    tampered[1] = Frame.sign(mutated, keys)

    result = ChainVerifier(keys.public_key).verify(tampered)
    assert result.is_valid is False
    assert result.first_failure.index == 2
    assert result.first_failure.category == "hash_chain"
    assert result.valid_length == 2


def test_tamper_content_without_resigning():
    chain, keys = create_test_chain(3)
    original = chain[1].decode_message()
    forged = Message(author=original.author, parent=original.parent, content=b"HACKED CONTENT")
    tampered = chain.copy()
    tampered[1] = Frame(message=forged.encode(), signature=chain[1].signature)

    result = ChainVerifier(keys.public_key).verify(tampered)
    assert not result
    assert result.first_failure.index == 1
    assert any(f.category == "signature" for f in result.failures)
    # nothing after the broken frame is accepted
    assert all(f.index == 1 for f in result.failures)


def test_wrong_key_rejects_first_frame():
    chain, _ = create_test_chain(2)
    result = ChainVerifier(FeedKeyPair.generate().public_key).verify(chain)
    assert not result.is_valid
    assert result.valid_length == 0
    categories = {f.category for f in result.failures}
    assert categories == {"author", "signature"}


def test_root_with_parent_rejected():
    keys = FeedKeyPair.generate()
    orphan = Message(author=keys.public_key, parent=ParentHash(bytes(64)), content=b"where is my parent")
    result = ChainVerifier(keys.public_key).verify([Frame.sign(orphan, keys)])
    assert not result.is_valid
    assert result.first_failure.category == "hash_chain"


def test_missing_parent_after_root_rejected():
    keys = FeedKeyPair.generate()
    root = Frame.sign(Message(author=keys.public_key, content=b"root"), keys)
    second_root = Frame.sign(Message(author=keys.public_key, content=b"another root"), keys)
    result = ChainVerifier(keys.public_key).verify([root, second_root])
    assert result.first_failure.index == 1
    assert "no parent" in result.first_failure.message


def test_reordered_frames_rejected():
    chain, keys = create_test_chain(3)
    result = ChainVerifier(keys.public_key).verify([chain[0], chain[2], chain[1]])
    assert result.first_failure.index == 1
    assert result.first_failure.category == "hash_chain"


def test_anchor_allows_verifying_a_tail_segment():
    chain, keys = create_test_chain(4)
    result = ChainVerifier(keys.public_key, anchor=chain[1].digest()).verify(chain[2:])
    assert result.is_valid
    assert result.valid_length == 2

    unanchored = ChainVerifier(keys.public_key).verify(chain[2:])
    assert not unanchored.is_valid


def test_undecodable_message_is_format_failure():
    keys = FeedKeyPair.generate()
    junk = Frame(message=b"\x93\x01", signature=Signature(bytes(64)))
    result = ChainVerifier(keys.public_key).verify([junk])
    assert result.first_failure.category == "format"


def test_verifier_needs_key():
    with pytest.raises(ValueError):
        ChainVerifier(None)


def test_result_str_lists_failures():
    result = VerificationResult(False, "broken")
    assert "FAILED" in str(result)
