"""
Merkle Batching for SlowDrip Receipts

Combines a batch of signed receipts into one deterministic anchor hash.

Construction:
- leaf = SHA256(b"leaf" || digest(receipt))
- node = SHA256(left || right)
- Odd levels duplicate their last node before pairing
- Empty batches have an all-zero root

The tree is built iteratively, level by level, so batch size is bounded
by memory rather than by recursion depth.
"""

import hashlib
from typing import Iterable, List, Optional, Sequence

from .digest import DIGEST_SIZE, digest
from .receipt import Receipt, ReceiptError

# Leaf domain tag, keeps leaf hashes distinct from internal nodes and raw digests
LEAF_TAG = b"leaf"

# Root of an empty batch
EMPTY_ROOT = bytes(DIGEST_SIZE)


def leaf_hash(receipt: Receipt) -> bytes:
    """
    Compute the Merkle leaf hash of a receipt.

    Args:
        receipt: Receipt to hash

    Returns:
        32-byte leaf hash
    """
    return hashlib.sha256(LEAF_TAG + digest(receipt)).digest()


def node_hash(left: bytes, right: bytes) -> bytes:
    """Hash two child nodes into their parent"""
    return hashlib.sha256(left + right).digest()


def merkle_root_from_leaves(leaves: Sequence[bytes]) -> bytes:
    """
    Build a Merkle root from precomputed leaf hashes.

    Leaf order is significant; callers establish a canonical order first.
    """
    if not leaves:
        return EMPTY_ROOT

    level = list(leaves)
    while len(level) > 1:
        if len(level) % 2 == 1:
            level.append(level[-1])
        level = [node_hash(level[i], level[i + 1]) for i in range(0, len(level), 2)]
    return level[0]


def merkle_root(receipts: Sequence[Receipt]) -> bytes:
    """
    Compute the Merkle root of receipts in the order given.

    Args:
        receipts: Receipts, already in canonical order

    Returns:
        32-byte root (all zeros for an empty sequence)
    """
    return merkle_root_from_leaves([leaf_hash(r) for r in receipts])


def sort_receipts(receipts: Iterable[Receipt]) -> List[Receipt]:
    """Return receipts in canonical (path, seq) order. Stable for ties."""
    return sorted(receipts, key=Receipt.sort_key)


def aggregate_anchor(receipts: Iterable[Receipt]) -> str:
    """
    Create a deterministic anchor over a set of receipts.

    Sorts by (path, seq) so the anchor does not depend on collection order,
    then returns the hex-encoded Merkle root. The input is not modified.

    Args:
        receipts: Receipts in any order

    Returns:
        64-character hex root ("0" * 64 for an empty batch)
    """
    return merkle_root(sort_receipts(receipts)).hex()


class ReceiptBatch:
    """
    Accumulates signed receipts for a later anchor.

    The batch is recomputed on each anchor() call; nothing about the tree
    is cached between calls.
    """

    def __init__(self, receipts: Optional[Iterable[Receipt]] = None):
        self._receipts: List[Receipt] = []
        for receipt in receipts or []:
            self.add(receipt)

    def add(self, receipt: Receipt) -> None:
        """Add a signed receipt to the batch"""
        if not receipt.is_signed:
            raise ReceiptError(
                f"cannot batch unsigned receipt {receipt.path}#{receipt.seq}"
            )
        self._receipts.append(receipt)

    def extend(self, receipts: Iterable[Receipt]) -> None:
        for receipt in receipts:
            self.add(receipt)

    @property
    def receipts(self) -> List[Receipt]:
        """Receipts in canonical order"""
        return sort_receipts(self._receipts)

    def root(self) -> bytes:
        return merkle_root(self.receipts)

    def anchor(self) -> str:
        return aggregate_anchor(self._receipts)

    def clear(self) -> List[Receipt]:
        """Empty the batch, returning what it held"""
        drained, self._receipts = self._receipts, []
        return drained

    def __len__(self) -> int:
        return len(self._receipts)

    def __iter__(self):
        return iter(self._receipts)
