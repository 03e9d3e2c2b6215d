"""
QoS Aggregation for SlowDrip

Classifies segment deliveries as on-time or late and keeps per-stream
counters plus a rolling anchor: a cheap, order-dependent running hash of
accepted deliveries, kept for operational visibility. The rolling anchor is
not a substitute for a Merkle batch anchor.

Policy (do not change without product sign-off):
- recv == deadline counts as on time
- sequence gaps, duplicates and reordering are accepted; only the
  highest sequence number seen is tracked
"""

import asyncio
import hashlib
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Dict, List, Optional, Tuple

from .logging import get_logger, log_context
from .receipts.digest import DIGEST_SIZE, encode_i64, encode_u64
from .receipts.observation import SegmentObservation

DEFAULT_MAX_RECENT = 64
DEFAULT_FLUSH_INTERVAL = 10.0  # seconds

logger = get_logger("slowdrip.qos")


@dataclass
class StreamStats:
    """QoS state for one stream path"""
    accepted: int = 0                 # On-time segments
    late: int = 0                     # Late segments
    accepted_bytes: int = 0           # Accepted bytes (on-time only)
    last_seq: int = 0                 # Highest seq seen
    rolling: bytes = bytes(DIGEST_SIZE)
    recent_commits: Deque[bytes] = field(default_factory=deque)

    def copy(self) -> "StreamStats":
        return StreamStats(
            accepted=self.accepted,
            late=self.late,
            accepted_bytes=self.accepted_bytes,
            last_seq=self.last_seq,
            rolling=self.rolling,
            recent_commits=deque(self.recent_commits, maxlen=self.recent_commits.maxlen),
        )


def advance_rolling(rolling: bytes, observation: SegmentObservation) -> bytes:
    """
    rolling' = SHA256(rolling || commit || seq || size || deadline || recv)

    All integers are 8-byte big-endian; signed values use their
    two's-complement bit pattern.
    """
    h = hashlib.sha256()
    h.update(rolling)
    h.update(observation.commit)
    h.update(encode_u64(observation.seq))
    h.update(encode_i64(observation.size))
    h.update(encode_i64(observation.deadline_ns))
    h.update(encode_i64(observation.recv_ns))
    return h.digest()


@dataclass(frozen=True)
class PathSnapshot:
    """One row of a QoS snapshot"""
    path: str
    last_seq: int
    accepted: int
    late: int
    accepted_bytes: int
    anchor: str                       # Hex rolling anchor

    def to_dict(self):
        return {
            "path": self.path,
            "last_seq": self.last_seq,
            "accepted": self.accepted,
            "late": self.late,
            "bytes": self.accepted_bytes,
            "anchor": self.anchor,
        }


@dataclass(frozen=True)
class QoSSnapshot:
    """Point-in-time view over all known paths, in lexicographic path order"""
    paths: Tuple[PathSnapshot, ...]
    global_anchor: str
    taken_at: float

    def to_dict(self):
        return {
            "paths": [p.to_dict() for p in self.paths],
            "global_anchor": self.global_anchor,
            "taken_at": self.taken_at,
        }


class QoSAggregator:
    """
    Per-path QoS state behind a single exclusive lock.

    Construct one per process or session and pass it to whatever feeds it;
    there is no module-level instance.
    """

    def __init__(
        self,
        max_recent: int = DEFAULT_MAX_RECENT,
        flush_interval: float = DEFAULT_FLUSH_INTERVAL,
    ):
        if max_recent < 1:
            raise ValueError("max_recent must be at least 1")
        self.max_recent = max_recent
        self.flush_interval = flush_interval
        self.last_flush: Optional[float] = None
        self._per_path: Dict[str, StreamStats] = {}
        self._lock = threading.Lock()

    def record(self, observation: SegmentObservation) -> bool:
        """
        Record one delivery observation.

        Returns:
            True if the observation was on time
        """
        on_time = observation.on_time

        with self._lock:
            st = self._per_path.get(observation.path)
            if st is None:
                st = StreamStats(recent_commits=deque(maxlen=self.max_recent))
                self._per_path[observation.path] = st

            if observation.seq > st.last_seq:
                st.last_seq = observation.seq

            if on_time:
                st.accepted += 1
                st.accepted_bytes += observation.size
                st.rolling = advance_rolling(st.rolling, observation)
                # deque(maxlen) evicts the oldest
                st.recent_commits.append(observation.commit)
            else:
                st.late += 1

        return on_time

    def paths(self) -> List[str]:
        with self._lock:
            return sorted(self._per_path)

    def stats_for(self, path: str) -> Optional[StreamStats]:
        """Copy of the stats for a path, or None if never observed"""
        with self._lock:
            st = self._per_path.get(path)
            return st.copy() if st is not None else None

    def recent_commits(self, path: str) -> List[bytes]:
        """Most recent accepted commitments for a path, oldest first"""
        with self._lock:
            st = self._per_path.get(path)
            return list(st.recent_commits) if st is not None else []

    def snapshot(self) -> QoSSnapshot:
        """
        Read every path's counters and the global anchor.

        The global anchor hashes path name || rolling anchor for each path in
        sorted order.
        """
        with self._lock:
            rows = []
            global_hash = hashlib.sha256()
            for path in sorted(self._per_path):
                st = self._per_path[path]
                rows.append(PathSnapshot(
                    path=path,
                    last_seq=st.last_seq,
                    accepted=st.accepted,
                    late=st.late,
                    accepted_bytes=st.accepted_bytes,
                    anchor=st.rolling.hex(),
                ))
                global_hash.update(path.encode("utf-8"))
                global_hash.update(st.rolling)

        return QoSSnapshot(
            paths=tuple(rows),
            global_anchor=global_hash.hexdigest(),
            taken_at=time.time(),
        )

    def flush(self) -> QoSSnapshot:
        """Log a compact snapshot of per-path stats and the global anchor"""
        snap = self.snapshot()
        self.last_flush = snap.taken_at

        if not snap.paths:
            logger.debug("no paths yet")
            return snap

        for row in snap.paths:
            logger.info(
                "qos window",
                path=row.path,
                last_seq=row.last_seq,
                accepted=row.accepted,
                late=row.late,
                bytes=row.accepted_bytes,
                anchor=row.anchor,
            )
        logger.info("aggregate anchor", global_anchor=snap.global_anchor, paths=len(snap.paths))
        return snap

    async def run(self, stop: asyncio.Event) -> None:
        """Flush every flush_interval seconds until stop is set"""
        with log_context(module="service"):
            logger.info("qos aggregator started", flush_interval=self.flush_interval)
            self.last_flush = time.time()
            while not stop.is_set():
                try:
                    await asyncio.wait_for(stop.wait(), timeout=self.flush_interval)
                except asyncio.TimeoutError:
                    self.flush()
            logger.info("qos aggregator stopping")
