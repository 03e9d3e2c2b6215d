"""
Segment Delivery Observations

A SegmentObservation is the raw input to the receipt lifecycle: one media
segment on one stream path, with the deadline it had to meet and the time it
was actually delivered. Observations are produced by the media transport and
are not retained once they have been classified and signed.

All timestamps are integer nanoseconds since the Unix epoch so that the
on-time boundary can be resolved at nanosecond precision.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from .digest import MAX_PATH_BYTES

UINT64_MAX = (1 << 64) - 1
INT64_MIN = -(1 << 63)
INT64_MAX = (1 << 63) - 1

COMMIT_SIZE = 32

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class ObservationError(ValueError):
    """Raised when an observation carries out-of-range or malformed fields"""
    pass


def to_unix_nanos(moment: datetime) -> int:
    """
    Convert an aware datetime to integer nanoseconds since the Unix epoch.

    Naive datetimes are rejected rather than guessed at.
    """
    if moment.tzinfo is None:
        raise ObservationError("timestamp must be timezone-aware")
    delta = moment - _EPOCH
    return (delta.days * 86_400 + delta.seconds) * 1_000_000_000 + delta.microseconds * 1_000


def from_unix_nanos(nanos: int) -> datetime:
    """Convert nanoseconds since the epoch to a UTC datetime (microsecond precision)"""
    return _EPOCH + timedelta(microseconds=nanos // 1_000)


def check_uint64(name: str, value: int, error=ObservationError) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise error(f"{name} must be an integer, got {type(value).__name__}")
    if not 0 <= value <= UINT64_MAX:
        raise error(f"{name} out of unsigned 64-bit range: {value}")


def check_int64(name: str, value: int, error=ObservationError) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise error(f"{name} must be an integer, got {type(value).__name__}")
    if not INT64_MIN <= value <= INT64_MAX:
        raise error(f"{name} out of signed 64-bit range: {value}")


def check_commit(value: bytes, error=ObservationError) -> None:
    if not isinstance(value, (bytes, bytearray)) or len(value) != COMMIT_SIZE:
        raise error(f"commit must be exactly {COMMIT_SIZE} bytes")


def check_path(value: str, error=ObservationError) -> None:
    """Path must be a string whose UTF-8 encoding fits the u16 length prefix"""
    if not isinstance(value, str):
        raise error("path must be a string")
    try:
        encoded = value.encode("utf-8")
    except UnicodeEncodeError as e:
        raise error(f"path is not valid UTF-8: {e.reason}")
    if len(encoded) > MAX_PATH_BYTES:
        raise error(f"path longer than {MAX_PATH_BYTES} bytes")


@dataclass(frozen=True)
class SegmentObservation:
    """One observed segment delivery on a stream path"""
    path: str                         # Stream path, e.g. "live/stream"
    seq: int                          # Caller-assigned segment index (uint64)
    size: int                         # Bytes delivered (int64)
    deadline_ns: int                  # Delivery deadline, ns since epoch
    recv_ns: int                      # Actual delivery time, ns since epoch
    commit: bytes                     # 32-byte integrity commitment (e.g. H(payload/FEC))
    meta: Optional[timedelta] = None  # Observed jitter or render margin

    def __post_init__(self):
        check_path(self.path)
        check_uint64("seq", self.seq)
        check_int64("size", self.size)
        check_int64("deadline_ns", self.deadline_ns)
        check_int64("recv_ns", self.recv_ns)
        check_commit(self.commit)
        if isinstance(self.commit, bytearray):
            object.__setattr__(self, "commit", bytes(self.commit))

    @property
    def on_time(self) -> bool:
        """Delivered no later than the deadline (equality counts as on time)"""
        return self.recv_ns <= self.deadline_ns

    @property
    def margin_ns(self) -> int:
        """Nanoseconds to spare before the deadline (negative when late)"""
        return self.deadline_ns - self.recv_ns

    @classmethod
    def from_datetimes(
        cls,
        path: str,
        seq: int,
        size: int,
        deadline: datetime,
        recv: datetime,
        commit: bytes,
        meta: Optional[timedelta] = None,
    ) -> "SegmentObservation":
        """Build an observation from timezone-aware datetimes"""
        return cls(
            path=path,
            seq=seq,
            size=size,
            deadline_ns=to_unix_nanos(deadline),
            recv_ns=to_unix_nanos(recv),
            commit=commit,
            meta=meta,
        )

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "path": self.path,
            "seq": self.seq,
            "size": self.size,
            "deadline_unixnano": self.deadline_ns,
            "recv_unixnano": self.recv_ns,
            "commit": self.commit.hex(),
        }
        if self.meta is not None:
            data["meta_ns"] = (
                (self.meta.days * 86_400 + self.meta.seconds) * 1_000_000_000
                + self.meta.microseconds * 1_000
            )
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SegmentObservation":
        if not isinstance(data, dict):
            raise ObservationError(f"observation must be a JSON object, got {type(data).__name__}")
        try:
            commit = bytes.fromhex(data["commit"])
            meta_ns = data.get("meta_ns")
            return cls(
                path=data["path"],
                seq=data["seq"],
                size=data["size"],
                deadline_ns=data["deadline_unixnano"],
                recv_ns=data["recv_unixnano"],
                commit=commit,
                meta=timedelta(microseconds=meta_ns / 1_000) if meta_ns is not None else None,
            )
        except ObservationError:
            raise
        except KeyError as e:
            raise ObservationError(f"observation missing field: {e.args[0]}")
        except (TypeError, ValueError) as e:
            raise ObservationError(f"invalid observation: {e}")
