"""
Canonical Receipt Digest

The byte layout hashed here is a compatibility contract: any implementation
that verifies receipts or recomputes anchors must reproduce it exactly.

    SHA256( DOMAIN_TAG
         || version                       (1 byte)
         || len(path_utf8)                (uint16, big-endian)
         || path_utf8
         || seq                           (uint64, big-endian)
         || size                          (int64, big-endian)
         || deadline                      (int64 ns, big-endian)
         || recv                          (int64 ns, big-endian)
         || commit                        (32 bytes)
         || nonce )                       (uint64, big-endian)
"""

import hashlib
import struct
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .receipt import Receipt


# Bump together with DOMAIN_TAG when the layout changes
RECEIPT_VERSION = 1

# Domain separation tag, prevents cross-protocol and cross-version reuse
DOMAIN_TAG = b"SlowDrip:PoS-Receipt:v1"

DIGEST_SIZE = 32
MAX_PATH_BYTES = 0xFFFF

_U16 = struct.Struct(">H")
_U64 = struct.Struct(">Q")
_I64 = struct.Struct(">q")


def encode_u64(value: int) -> bytes:
    return _U64.pack(value)


def encode_i64(value: int) -> bytes:
    return _I64.pack(value)


def canonical_bytes(receipt: "Receipt") -> bytes:
    """
    Return the exact byte string that digest() hashes.

    Exposed for cross-implementation debugging; signers should use digest().
    """
    path_bytes = receipt.path.encode("utf-8")
    return b"".join((
        DOMAIN_TAG,
        bytes((receipt.version,)),
        _U16.pack(len(path_bytes)),
        path_bytes,
        _U64.pack(receipt.seq),
        _I64.pack(receipt.size),
        _I64.pack(receipt.deadline),
        _I64.pack(receipt.recv),
        bytes(receipt.commit),
        _U64.pack(receipt.nonce),
    ))


def digest(receipt: "Receipt") -> bytes:
    """
    Compute the canonical domain-separated hash of a receipt.

    The public key and signature are not part of the digest.

    Args:
        receipt: Receipt to hash

    Returns:
        32-byte SHA-256 digest
    """
    return hashlib.sha256(canonical_bytes(receipt)).digest()


def digest_hex(receipt: "Receipt") -> str:
    """Hex form of digest(), for logs and the CLI"""
    return digest(receipt).hex()
