"""
Tests for receipt construction, canonical digests and session signing
"""

import hashlib
import struct
from dataclasses import FrozenInstanceError, replace
from datetime import datetime, timedelta, timezone

import pytest

from slowdrip.receipts import (
    DOMAIN_TAG,
    RECEIPT_VERSION,
    InvalidSignatureError,
    KeyGenerationError,
    MalformedReceiptError,
    ObservationError,
    Receipt,
    ReceiptError,
    SegmentObservation,
    SessionSigner,
    SignerClosedError,
    SignerNotInitializedError,
    canonical_bytes,
    digest,
    is_valid,
    to_unix_nanos,
    verify_receipt,
)
from slowdrip.receipts.signer import PUBLIC_KEY_SIZE, SIGNATURE_SIZE

from helpers import T0, make_commit, make_observation


def make_receipt(**overrides) -> Receipt:
    fields = dict(
        version=RECEIPT_VERSION,
        path="live/stream",
        seq=1,
        size=1000,
        deadline=T0,
        recv=T0,
        commit=make_commit("payload"),
        nonce=42,
    )
    fields.update(overrides)
    return Receipt(**fields)


def flip_bit(data: bytes, index: int) -> bytes:
    buf = bytearray(data)
    buf[index // 8] ^= 1 << (index % 8)
    return bytes(buf)


class TestObservation:
    """Tests for SegmentObservation"""

    def test_on_time_boundary(self):
        """recv == deadline is on time, one nanosecond later is late"""
        assert make_observation(recv_ns=T0, deadline_ns=T0).on_time
        assert not make_observation(recv_ns=T0 + 1, deadline_ns=T0).on_time
        assert make_observation(recv_ns=T0 - 1, deadline_ns=T0).on_time

    def test_commit_must_be_32_bytes(self):
        with pytest.raises(ObservationError):
            make_observation(commit=b"short")

    def test_seq_must_be_unsigned(self):
        with pytest.raises(ObservationError):
            make_observation(seq=-1)
        with pytest.raises(ObservationError):
            make_observation(seq=1 << 64)

    def test_from_datetimes(self):
        deadline = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
        obs = SegmentObservation.from_datetimes(
            path="live/stream",
            seq=7,
            size=10,
            deadline=deadline,
            recv=deadline - timedelta(milliseconds=5),
            commit=make_commit("x"),
        )
        assert obs.deadline_ns == 1_704_110_400 * 1_000_000_000
        assert obs.margin_ns == 5_000_000
        assert obs.on_time

    def test_naive_datetime_rejected(self):
        with pytest.raises(ObservationError):
            to_unix_nanos(datetime(2024, 1, 1))

    def test_dict_round_trip(self):
        obs = make_observation(seq=9)
        assert SegmentObservation.from_dict(obs.to_dict()) == obs

    def test_from_dict_missing_field(self):
        data = make_observation().to_dict()
        del data["commit"]
        with pytest.raises(ObservationError, match="commit"):
            SegmentObservation.from_dict(data)

    def test_path_must_encode_as_utf8(self):
        with pytest.raises(ObservationError, match="UTF-8"):
            make_observation(path="live/\ud800", commit=make_commit("x"))

    def test_path_length_limit(self):
        make_observation(path="a" * 0xFFFF)
        with pytest.raises(ObservationError, match="longer than"):
            make_observation(path="a" * 0x10000)

    @pytest.mark.parametrize("data", [[], "live/a", 7, None])
    def test_from_dict_requires_object(self, data):
        with pytest.raises(ObservationError, match="JSON object"):
            SegmentObservation.from_dict(data)


class TestReceipt:
    """Tests for the Receipt value type"""

    def test_from_observation(self):
        obs = make_observation(seq=5, size=2048)
        receipt = Receipt.from_observation(obs, nonce=99)

        assert receipt.version == RECEIPT_VERSION
        assert receipt.path == obs.path
        assert receipt.seq == 5
        assert receipt.size == 2048
        assert receipt.deadline == obs.deadline_ns
        assert receipt.recv == obs.recv_ns
        assert receipt.commit == obs.commit
        assert receipt.nonce == 99
        assert receipt.pubkey == b""
        assert receipt.sig == b""
        assert not receipt.is_signed

    def test_receipt_is_frozen(self):
        receipt = make_receipt()
        with pytest.raises(FrozenInstanceError):
            receipt.seq = 2

    def test_path_length_limit(self):
        make_receipt(path="a" * 0xFFFF)
        with pytest.raises(ReceiptError):
            make_receipt(path="a" * 0x10000)

    def test_path_must_encode_as_utf8(self):
        with pytest.raises(ReceiptError, match="UTF-8"):
            make_receipt(path="live/\udfff")

    def test_version_must_fit_in_a_byte(self):
        with pytest.raises(ReceiptError):
            make_receipt(version=256)

    def test_with_signature_requires_both(self):
        with pytest.raises(ReceiptError):
            make_receipt().with_signature(b"\x01" * 32, b"")

    def test_dict_wire_names(self):
        data = make_receipt().to_dict()
        assert set(data) == {
            "v", "path", "seq", "size", "deadline_unixnano",
            "recv_unixnano", "commit", "nonce", "pubkey", "sig",
        }
        assert data["commit"] == make_commit("payload").hex()

    def test_dict_round_trip_signed(self, signer):
        signed = signer.sign(make_receipt())
        restored = Receipt.from_dict(signed.to_dict())
        assert restored == signed
        assert verify_receipt(restored)

    def test_from_dict_bad_base64(self):
        data = make_receipt().to_dict()
        data["sig"] = "not base64!"
        with pytest.raises(ReceiptError):
            Receipt.from_dict(data)

    @pytest.mark.parametrize("data", [[], "receipt", 1, None])
    def test_from_dict_requires_object(self, data):
        with pytest.raises(ReceiptError, match="JSON object"):
            Receipt.from_dict(data)


class TestDigest:
    """Tests for the canonical digest byte layout"""

    def test_digest_is_32_bytes_and_deterministic(self):
        receipt = make_receipt()
        assert len(digest(receipt)) == 32
        assert digest(receipt) == digest(make_receipt())

    def test_layout_matches_independent_encoding(self):
        """Rebuild the documented layout by hand and compare"""
        receipt = make_receipt(path="live/ström", seq=3, size=-5, deadline=-1, recv=T0, nonce=7)
        path = "live/ström".encode("utf-8")
        expected = (
            b"SlowDrip:PoS-Receipt:v1"
            + bytes([1])
            + struct.pack(">H", len(path))
            + path
            + struct.pack(">Q", 3)
            + struct.pack(">q", -5)
            + struct.pack(">q", -1)
            + struct.pack(">q", T0)
            + make_commit("payload")
            + struct.pack(">Q", 7)
        )
        assert canonical_bytes(receipt) == expected
        assert digest(receipt) == hashlib.sha256(expected).digest()

    def test_negative_size_uses_twos_complement(self):
        raw = canonical_bytes(make_receipt(size=-1))
        offset = len(DOMAIN_TAG) + 1 + 2 + len(b"live/stream") + 8
        assert raw[offset:offset + 8] == b"\xff" * 8

    def test_signature_fields_not_digested(self, signer):
        receipt = make_receipt()
        assert digest(signer.sign(receipt)) == digest(receipt)

    def test_length_prefix_prevents_ambiguity(self):
        """Moving bytes between path and seq must change the digest"""
        a = make_receipt(path="ab", seq=0)
        b = make_receipt(path="a", seq=0)
        assert digest(a) != digest(b)

    @pytest.mark.parametrize("field,value", [
        ("version", 2),
        ("path", "live/other"),
        ("seq", 2),
        ("size", 1001),
        ("deadline", T0 + 1),
        ("recv", T0 + 1),
        ("commit", make_commit("other")),
        ("nonce", 43),
    ])
    def test_every_field_is_digested(self, field, value):
        assert digest(make_receipt(**{field: value})) != digest(make_receipt())


class TestSessionSigner:
    """Tests for SessionSigner"""

    def test_create_and_sign(self, signer):
        signed = signer.sign(make_receipt())

        assert signed.is_signed
        assert signed.pubkey == signer.public_key
        assert len(signed.pubkey) == PUBLIC_KEY_SIZE
        assert len(signed.sig) == SIGNATURE_SIZE
        assert verify_receipt(signed) is True

    def test_sign_does_not_mutate_input(self, signer):
        receipt = make_receipt()
        signer.sign(receipt)
        assert not receipt.is_signed

    def test_public_key_is_a_copy(self, signer):
        key = signer.public_key
        assert isinstance(key, bytes)
        assert key == signer.public_key

    def test_sessions_have_distinct_keys(self):
        with SessionSigner.create("a") as a, SessionSigner.create("b") as b:
            assert a.public_key != b.public_key

    def test_session_id_not_signed(self):
        seed = bytearray(range(32))
        a = SessionSigner("session-a", seed=seed)
        b = SessionSigner("session-b", seed=seed)
        receipt = make_receipt()
        assert a.sign(receipt).sig == b.sign(receipt).sig

    def test_sign_after_close_fails(self):
        signer = SessionSigner.create("closing")
        signer.close()
        assert signer.closed
        with pytest.raises(SignerClosedError):
            signer.sign(make_receipt())

    def test_closed_is_a_not_initialized_error(self):
        signer = SessionSigner.create()
        signer.close()
        with pytest.raises(SignerNotInitializedError):
            signer.sign(make_receipt())

    def test_close_zeroes_seed(self):
        signer = SessionSigner.create()
        seed = signer._seed
        signer.close()
        assert seed == bytearray(32)
        assert signer._seed is None

    def test_close_is_idempotent(self):
        signer = SessionSigner.create()
        signer.close()
        signer.close()

    def test_context_manager_closes(self):
        with SessionSigner.create() as signer:
            signer.sign(make_receipt())
        assert signer.closed

    def test_uninitialized_signer(self):
        signer = SessionSigner()
        with pytest.raises(SignerNotInitializedError):
            signer.sign(make_receipt())
        with pytest.raises(SignerNotInitializedError):
            signer.public_key

    def test_entropy_exhaustion(self, monkeypatch):
        def no_entropy(n):
            raise OSError("no entropy")

        monkeypatch.setattr("slowdrip.receipts.signer.os.urandom", no_entropy)
        with pytest.raises(KeyGenerationError):
            SessionSigner.create()


class TestVerify:
    """Tests for stand-alone verification"""

    def test_unsigned_receipt_is_malformed(self):
        with pytest.raises(MalformedReceiptError):
            verify_receipt(make_receipt())

    def test_wrong_pubkey_length(self, signer):
        signed = signer.sign(make_receipt())
        with pytest.raises(MalformedReceiptError, match="pubkey"):
            verify_receipt(replace(signed, pubkey=signed.pubkey[:31]))

    def test_wrong_signature_length(self, signer):
        signed = signer.sign(make_receipt())
        with pytest.raises(MalformedReceiptError, match="signature"):
            verify_receipt(replace(signed, sig=signed.sig + b"\x00"))

    def test_other_key_fails(self, signer):
        signed = signer.sign(make_receipt())
        with SessionSigner.create() as other:
            forged = replace(signed, pubkey=other.public_key)
        with pytest.raises(InvalidSignatureError):
            verify_receipt(forged)

    def test_every_signature_bit_matters(self, signer):
        signed = signer.sign(make_receipt())
        for bit in range(0, SIGNATURE_SIZE * 8, 37):
            tampered = replace(signed, sig=flip_bit(signed.sig, bit))
            assert not is_valid(tampered)

    @pytest.mark.parametrize("field", ["path", "seq", "size", "deadline", "recv", "commit", "nonce", "version"])
    def test_tampered_field_fails(self, signer, field):
        signed = signer.sign(make_receipt())
        value = getattr(signed, field)
        if isinstance(value, bytes):
            tampered_value = flip_bit(value, 0)
        elif isinstance(value, str):
            tampered_value = chr(ord(value[0]) ^ 1) + value[1:]
        else:
            tampered_value = value ^ 1
        with pytest.raises(InvalidSignatureError):
            verify_receipt(replace(signed, **{field: tampered_value}))

    def test_is_valid(self, signer):
        signed = signer.sign(make_receipt())
        assert is_valid(signed)
        assert not is_valid(make_receipt())

    def test_verify_after_signer_closed(self):
        with SessionSigner.create() as s:
            signed = s.sign(make_receipt())
        assert verify_receipt(signed)
