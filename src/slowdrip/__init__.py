"""
SlowDrip: Proof-of-Service Receipts for Media Delivery

Observes segment delivery on streaming sessions and produces signed,
batchable receipts of on-time, integrity-committed delivery.
"""

__version__ = "0.1.0"
__author__ = "SlowDrip Contributors"

from .receipts import (
    SegmentObservation,
    Receipt,
    ReceiptError,
    SessionSigner,
    SignerError,
    KeyGenerationError,
    SignerNotInitializedError,
    SignerClosedError,
    VerificationError,
    MalformedReceiptError,
    InvalidSignatureError,
    ReceiptBatch,
    PumpResult,
    aggregate_anchor,
    build_and_sign,
    digest,
    leaf_hash,
    merkle_root,
    pump,
    verify_receipt,
)
from .qos import QoSAggregator, QoSSnapshot, PathSnapshot, StreamStats
from .config import MinerConfig, ServiceSettings, ConfigError, load_config

__all__ = [
    "SegmentObservation",
    "Receipt",
    "ReceiptError",
    "SessionSigner",
    "SignerError",
    "KeyGenerationError",
    "SignerNotInitializedError",
    "SignerClosedError",
    "VerificationError",
    "MalformedReceiptError",
    "InvalidSignatureError",
    "ReceiptBatch",
    "PumpResult",
    "aggregate_anchor",
    "build_and_sign",
    "digest",
    "leaf_hash",
    "merkle_root",
    "pump",
    "verify_receipt",
    "QoSAggregator",
    "QoSSnapshot",
    "PathSnapshot",
    "StreamStats",
    "MinerConfig",
    "ServiceSettings",
    "ConfigError",
    "load_config",
    "__version__",
]
