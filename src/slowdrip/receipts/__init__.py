"""
Proof-of-Service Receipt Components

Components:
- Observation: Raw segment delivery records from the media transport
- Digest: Canonical, domain-separated receipt hashing
- Receipt: Immutable attestation of one on-time delivery
- Signer: Ephemeral per-session Ed25519 signing and verification
- Merkle: Deterministic batch anchors over signed receipts
- Pipeline: Observation-to-signed-receipt composition and pump
"""

from .observation import SegmentObservation, ObservationError, to_unix_nanos, from_unix_nanos
from .digest import DOMAIN_TAG, RECEIPT_VERSION, canonical_bytes, digest, digest_hex
from .receipt import Receipt, ReceiptError
from .signer import (
    SessionSigner,
    SignerError,
    KeyGenerationError,
    SignerNotInitializedError,
    SignerClosedError,
    VerificationError,
    MalformedReceiptError,
    InvalidSignatureError,
    verify_receipt,
    is_valid,
)
from .merkle import (
    EMPTY_ROOT,
    LEAF_TAG,
    ReceiptBatch,
    aggregate_anchor,
    leaf_hash,
    merkle_root,
    merkle_root_from_leaves,
    sort_receipts,
)
from .pipeline import PumpResult, build_and_sign, pump

__all__ = [
    # Observation
    "SegmentObservation",
    "ObservationError",
    "to_unix_nanos",
    "from_unix_nanos",
    # Digest
    "DOMAIN_TAG",
    "RECEIPT_VERSION",
    "canonical_bytes",
    "digest",
    "digest_hex",
    # Receipt
    "Receipt",
    "ReceiptError",
    # Signer
    "SessionSigner",
    "SignerError",
    "KeyGenerationError",
    "SignerNotInitializedError",
    "SignerClosedError",
    "VerificationError",
    "MalformedReceiptError",
    "InvalidSignatureError",
    "verify_receipt",
    "is_valid",
    # Merkle
    "EMPTY_ROOT",
    "LEAF_TAG",
    "ReceiptBatch",
    "aggregate_anchor",
    "leaf_hash",
    "merkle_root",
    "merkle_root_from_leaves",
    "sort_receipts",
    # Pipeline
    "PumpResult",
    "build_and_sign",
    "pump",
]
