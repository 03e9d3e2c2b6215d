"""
Session Signing for SlowDrip Receipts

Provides Ed25519 signatures over canonical receipt digests using an
ephemeral keypair that lives for exactly one streaming session.

Features:
- Ephemeral Ed25519 key generation per session
- Receipt signing (public key and signature populated together)
- Stand-alone verification that needs no signer instance
- Best-effort zeroing of private key material on close

Key zeroing limitation: the private seed is held in one fixed-size
bytearray that close() overwrites in place. The cryptography library builds
its own key object from that seed for each signature; those transient copies
are released back to the library (OpenSSL cleanses key memory on free) and
cannot be wiped from Python. Treat close() as best effort, not a guarantee.
"""

import os
import time
from typing import Optional

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)

from ..logging import get_logger, log_context
from .digest import digest
from .receipt import Receipt

PUBLIC_KEY_SIZE = 32
SIGNATURE_SIZE = 64
SEED_SIZE = 32

logger = get_logger("slowdrip.receipts.signer")


class SignerError(Exception):
    """Base exception for signing and verification errors"""
    pass


class KeyGenerationError(SignerError):
    """Raised when a session keypair cannot be created (entropy exhaustion)"""
    pass


class SignerNotInitializedError(SignerError):
    """Raised when signing with a signer that holds no key material"""
    pass


class SignerClosedError(SignerNotInitializedError):
    """Raised when signing after close()"""
    pass


class VerificationError(SignerError):
    """Base for receipt verification failures"""
    pass


class MalformedReceiptError(VerificationError):
    """Raised when a receipt's public key or signature has the wrong length"""
    pass


class InvalidSignatureError(VerificationError):
    """Raised when the signature does not match the receipt digest"""
    pass


def _raw_public_bytes(public_key: Ed25519PublicKey) -> bytes:
    return public_key.public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )


class SessionSigner:
    """
    Holds one ephemeral Ed25519 keypair for one streaming session.

    Usage:
        with SessionSigner.create("sess-42") as signer:
            signed = signer.sign(receipt)

    The session ID is advisory. It is used for logging only and never
    enters the signed digest.
    """

    def __init__(self, session_id: str = "", seed: Optional[bytearray] = None):
        self.session_id = session_id
        self.started_at = time.time()
        self._seed: Optional[bytearray] = None
        self._public: Optional[bytes] = None
        self._closed = False
        if seed is not None:
            if len(seed) != SEED_SIZE:
                raise KeyGenerationError(f"seed must be {SEED_SIZE} bytes")
            self._seed = bytearray(seed)
            private_key = Ed25519PrivateKey.from_private_bytes(bytes(self._seed))
            self._public = _raw_public_bytes(private_key.public_key())

    @classmethod
    def create(cls, session_id: str = "") -> "SessionSigner":
        """
        Create a signer with a fresh keypair.

        Raises:
            KeyGenerationError: If the OS entropy source is unavailable
        """
        try:
            seed = bytearray(os.urandom(SEED_SIZE))
        except (OSError, NotImplementedError) as e:
            raise KeyGenerationError(f"entropy source unavailable: {e}") from e

        try:
            signer = cls(session_id=session_id, seed=seed)
        finally:
            seed[:] = bytes(SEED_SIZE)

        with log_context(session_id=session_id or None):
            logger.debug("session signer created", pubkey=signer.public_key.hex()[:16])
        return signer

    @property
    def public_key(self) -> bytes:
        """Raw 32-byte public key (an immutable copy)"""
        if self._public is None:
            raise SignerNotInitializedError("signer not initialized")
        return bytes(self._public)

    @property
    def closed(self) -> bool:
        return self._closed

    def _private_key(self) -> Ed25519PrivateKey:
        if self._closed:
            raise SignerClosedError("signer closed")
        if self._seed is None or self._public is None:
            raise SignerNotInitializedError("signer not initialized")
        return Ed25519PrivateKey.from_private_bytes(bytes(self._seed))

    def sign(self, receipt: Receipt) -> Receipt:
        """
        Sign a receipt with the session key.

        This is a miner-side attestation of accepted, on-time delivery, not a
        client-side authorization.

        Args:
            receipt: Receipt to sign (any existing signature is replaced)

        Returns:
            New Receipt with pubkey and sig both populated

        Raises:
            SignerNotInitializedError: If the signer holds no key
            SignerClosedError: If close() has been called
        """
        private_key = self._private_key()
        sig = private_key.sign(digest(receipt))
        return receipt.with_signature(self._public, sig)

    def close(self) -> None:
        """Wipe private key material (best-effort). Safe to call twice."""
        if self._seed is not None:
            for i in range(len(self._seed)):
                self._seed[i] = 0
            self._seed = None
        if not self._closed:
            self._closed = True
            with log_context(session_id=self.session_id or None):
                logger.debug(
                    "session signer closed",
                    lifetime_s=round(time.time() - self.started_at, 3),
                )

    def __enter__(self) -> "SessionSigner":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def __repr__(self) -> str:
        state = "closed" if self._closed else ("ready" if self._seed else "uninitialized")
        return f"SessionSigner(session_id={self.session_id!r}, state={state})"


def verify_receipt(receipt: Receipt) -> bool:
    """
    Verify a receipt's signature against its own fields and public key.

    Args:
        receipt: Signed receipt

    Returns:
        True if the signature is valid

    Raises:
        MalformedReceiptError: If pubkey or sig have the wrong length
        InvalidSignatureError: If the signature does not match
    """
    if len(receipt.pubkey) != PUBLIC_KEY_SIZE:
        raise MalformedReceiptError("invalid pubkey length")
    if len(receipt.sig) != SIGNATURE_SIZE:
        raise MalformedReceiptError("invalid signature length")

    try:
        public_key = Ed25519PublicKey.from_public_bytes(receipt.pubkey)
    except ValueError as e:
        raise MalformedReceiptError(f"invalid pubkey: {e}") from e

    try:
        public_key.verify(receipt.sig, digest(receipt))
    except InvalidSignature:
        raise InvalidSignatureError("bad signature")
    return True


def is_valid(receipt: Receipt) -> bool:
    """Boolean form of verify_receipt() for callers that only need a yes/no"""
    try:
        return verify_receipt(receipt)
    except VerificationError:
        return False
