"""
Test helpers shared across SlowDrip test modules
"""

import hashlib

from slowdrip.receipts import SegmentObservation


# 2023-11-14T22:13:20Z in nanoseconds
T0 = 1_700_000_000_000_000_000


def make_commit(label: str) -> bytes:
    return hashlib.sha256(label.encode()).digest()


def make_observation(
    path: str = "live/stream",
    seq: int = 1,
    size: int = 1000,
    deadline_ns: int = T0,
    recv_ns: int = T0,
    commit: bytes = None,
) -> SegmentObservation:
    return SegmentObservation(
        path=path,
        seq=seq,
        size=size,
        deadline_ns=deadline_ns,
        recv_ns=recv_ns,
        commit=commit if commit is not None else make_commit(f"{path}#{seq}"),
    )
