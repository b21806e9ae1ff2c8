# kutyus/verify/verifier.py
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Union

from kutyus.core.errors import FormatError
from kutyus.core.frame import Frame
from kutyus.core.types import ParentHash, PublicKey
from kutyus.storage import FeedStore

logger = logging.getLogger(__name__)


@dataclass
class VerificationFailure:
    index: int
    message: str
    category: str = "general"  # "format", "author", "hash_chain", "signature", "storage"


@dataclass
class VerificationResult:
    is_valid: bool
    message: str = ""
    failures: List[VerificationFailure] = field(default_factory=list)
    valid_length: int = 0   # leading frames accepted before the first failure

    @property
    def first_failure(self) -> Optional[VerificationFailure]:
        return self.failures[0] if self.failures else None

    def __bool__(self):
        return self.is_valid

    def __str__(self):
        if self.is_valid:
            return f"Chain is valid ✓ ({self.valid_length} frames)"
        lines = [f"Verification FAILED ({len(self.failures)} issues):"]
        for f in self.failures:
            lines.append(f"  • [{f.index}] {f.category}: {f.message}")
        return "\n".join(lines)


class ChainVerifier:
    """
    Offline verifier for one author's feed.

    Walks the frames in order and stops at the first frame that fails any
    check; everything from that frame on is rejected.
    """

    def __init__(self, public_key: Union[PublicKey, bytes], anchor: Optional[ParentHash] = None):
        """
        public_key: the feed owner's key, the trust anchor for every signature
        anchor: expected parent of the first frame; None means it must be the root
        """
        if public_key is None:
            raise ValueError("public_key is required")
        self.public_key = public_key if isinstance(public_key, PublicKey) else PublicKey(public_key)
        self.anchor = anchor

    def check_frame(self, frame: Frame, index: int, expected_parent: Optional[ParentHash]) -> List[VerificationFailure]:
        """All problems with a single frame, cheapest checks first."""
        try:
            message = frame.decode_message()
        except FormatError as e:
            return [VerificationFailure(index, f"Undecodable message: {e}", "format")]

        failures = []
        if message.author != self.public_key:
            failures.append(VerificationFailure(index, "Author is not the feed owner", "author"))

        if expected_parent is None and message.parent is not None:
            failures.append(VerificationFailure(index, "Root message must not have a parent", "hash_chain"))
        elif expected_parent is not None and message.parent is None:
            failures.append(VerificationFailure(index, "Message has no parent hash", "hash_chain"))
        elif message.parent != expected_parent:
            failures.append(VerificationFailure(index, "parent does not match previous message hash", "hash_chain"))

        if not frame.verify(self.public_key):
            failures.append(VerificationFailure(index, "Invalid signature", "signature"))
        return failures

    def verify(self, chain: Sequence[Frame]) -> VerificationResult:
        """Core verification logic over a loaded chain."""
        if not chain:
            return VerificationResult(True, "Empty chain is valid")

        expected_parent = self.anchor
        for i, frame in enumerate(chain):
            failures = self.check_frame(frame, i, expected_parent)
            if failures:
                logger.debug("Chain of %s rejected at frame %d", self.public_key.b64url(), i)
                return VerificationResult(
                    False,
                    f"Failed at frame {i} with {len(failures)} issues",
                    failures,
                    valid_length=i,
                )
            expected_parent = frame.digest()

        return VerificationResult(True, "Valid chain", valid_length=len(chain))

    def verify_from_storage(self, storage: FeedStore) -> VerificationResult:
        """
        Load the owner's frames from persistent storage and verify the chain.
        Returns a failed result instead of raising if loading fails.
        """
        try:
            chain = storage.load_frames(self.public_key)
        except Exception as e:
            logger.warning("Could not load feed %s: %s", self.public_key.b64url(), e)
            return VerificationResult(
                False,
                f"Failed to load feed '{self.public_key.b64url()}' from storage: {str(e)}",
                [VerificationFailure(-1, str(e), "storage")]
            )

        return self.verify(chain)
