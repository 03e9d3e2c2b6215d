"""
Receipt Construction

A Receipt is the unit of attestation: a miner-side statement that a specific
segment was delivered on time with a stated integrity commitment. Receipts
are created unsigned from an observation, signed exactly once by the owning
SessionSigner, and treated as values from then on.

Receipts are frozen. Signing returns a new Receipt with the public key and
signature populated together.
"""

import base64
from dataclasses import dataclass, replace
from typing import Any, Dict

from .digest import RECEIPT_VERSION, digest
from .observation import (
    SegmentObservation,
    check_commit,
    check_int64,
    check_path,
    check_uint64,
)


class ReceiptError(ValueError):
    """Error during receipt construction or decoding"""
    pass


@dataclass(frozen=True)
class Receipt:
    """
    Signed (or signable) proof-of-service receipt.

    All times are UnixNano so the canonical digest never depends on
    timezone or clock representation.
    """
    version: int
    path: str
    seq: int
    size: int
    deadline: int           # Deadline, ns since epoch
    recv: int               # Delivery time, ns since epoch
    commit: bytes           # 32-byte integrity commit for the segment/payload
    nonce: int              # Anti-replay nonce within a session
    pubkey: bytes = b""     # Ed25519 public key (ephemeral session key)
    sig: bytes = b""        # Ed25519 signature over digest()

    def __post_init__(self):
        if isinstance(self.version, bool) or not isinstance(self.version, int) \
                or not 0 <= self.version <= 0xFF:
            raise ReceiptError(f"version must fit in one byte: {self.version!r}")
        check_path(self.path, ReceiptError)
        check_uint64("seq", self.seq, ReceiptError)
        check_int64("size", self.size, ReceiptError)
        check_int64("deadline", self.deadline, ReceiptError)
        check_int64("recv", self.recv, ReceiptError)
        check_uint64("nonce", self.nonce, ReceiptError)
        check_commit(self.commit, ReceiptError)
        for name in ("commit", "pubkey", "sig"):
            value = getattr(self, name)
            if not isinstance(value, (bytes, bytearray)):
                raise ReceiptError(f"{name} must be bytes")
            if isinstance(value, bytearray):
                object.__setattr__(self, name, bytes(value))

    @classmethod
    def from_observation(cls, observation: SegmentObservation, nonce: int) -> "Receipt":
        """
        Convert a delivery observation into an unsigned Receipt.

        The nonce disambiguates receipts that share a sequence number after a
        replay or a transport restart.
        """
        return cls(
            version=RECEIPT_VERSION,
            path=observation.path,
            seq=observation.seq,
            size=observation.size,
            deadline=observation.deadline_ns,
            recv=observation.recv_ns,
            commit=observation.commit,
            nonce=nonce,
        )

    @property
    def is_signed(self) -> bool:
        return bool(self.pubkey) and bool(self.sig)

    @property
    def on_time(self) -> bool:
        return self.recv <= self.deadline

    def digest(self) -> bytes:
        """Canonical 32-byte digest (what the signature covers)"""
        return digest(self)

    def with_signature(self, pubkey: bytes, sig: bytes) -> "Receipt":
        """Return a copy carrying both the public key and the signature"""
        if not pubkey or not sig:
            raise ReceiptError("public key and signature must be set together")
        return replace(self, pubkey=bytes(pubkey), sig=bytes(sig))

    def unsigned(self) -> "Receipt":
        """Return a copy with the signature material stripped"""
        return replace(self, pubkey=b"", sig=b"")

    def sort_key(self):
        return (self.path, self.seq)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize receipt using the miner's wire field names"""
        return {
            "v": self.version,
            "path": self.path,
            "seq": self.seq,
            "size": self.size,
            "deadline_unixnano": self.deadline,
            "recv_unixnano": self.recv,
            "commit": self.commit.hex(),
            "nonce": self.nonce,
            "pubkey": base64.b64encode(self.pubkey).decode("ascii"),
            "sig": base64.b64encode(self.sig).decode("ascii"),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Receipt":
        """Deserialize receipt from dictionary"""
        if not isinstance(data, dict):
            raise ReceiptError(f"receipt must be a JSON object, got {type(data).__name__}")
        try:
            return cls(
                version=data.get("v", RECEIPT_VERSION),
                path=data["path"],
                seq=data["seq"],
                size=data["size"],
                deadline=data["deadline_unixnano"],
                recv=data["recv_unixnano"],
                commit=bytes.fromhex(data["commit"]),
                nonce=data["nonce"],
                pubkey=base64.b64decode(data.get("pubkey") or "", validate=True),
                sig=base64.b64decode(data.get("sig") or "", validate=True),
            )
        except ReceiptError:
            raise
        except KeyError as e:
            raise ReceiptError(f"receipt missing field: {e.args[0]}")
        except (TypeError, ValueError) as e:
            raise ReceiptError(f"invalid receipt: {e}")
