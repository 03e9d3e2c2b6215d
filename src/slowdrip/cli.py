"""
SlowDrip Command Line Interface

Commands:
- sign: Sign observations with a fresh session key
- verify: Verify signed receipts
- anchor: Compute the Merkle anchor of a receipt batch
- digest: Print canonical receipt digests
- qos: Aggregate observations and print the QoS snapshot
"""

import argparse
import json
import sys
import time
import uuid
from pathlib import Path
from typing import Iterator, List, TextIO

from . import __version__
from .config import ConfigError, load_config
from .logging import configure_logging, get_logger
from .qos import QoSAggregator
from .receipts import (
    InvalidSignatureError,
    MalformedReceiptError,
    ObservationError,
    Receipt,
    ReceiptBatch,
    ReceiptError,
    SegmentObservation,
    SessionSigner,
    aggregate_anchor,
    build_and_sign,
    digest_hex,
    verify_receipt,
)

logger = get_logger("slowdrip.cli")


def _read_json_lines(path: str) -> Iterator[dict]:
    """Yield one JSON object per non-blank line ("-" reads stdin)"""
    stream = sys.stdin if path == "-" else open(path, "r")
    try:
        for lineno, line in enumerate(stream, 1):
            line = line.strip()
            if not line:
                continue
            try:
                yield json.loads(line)
            except json.JSONDecodeError as e:
                print(f"Error: {path}:{lineno}: {e}")
                sys.exit(1)
    finally:
        if stream is not sys.stdin:
            stream.close()


def _load_receipts(path: str) -> List[Receipt]:
    receipts = []
    for data in _read_json_lines(path):
        try:
            receipts.append(Receipt.from_dict(data))
        except ReceiptError as e:
            print(f"Error: {e}")
            sys.exit(1)
    return receipts


def _load_observations(path: str) -> List[SegmentObservation]:
    observations = []
    for data in _read_json_lines(path):
        try:
            observations.append(SegmentObservation.from_dict(data))
        except ObservationError as e:
            print(f"Error: {e}")
            sys.exit(1)
    return observations


def _write_json_lines(stream: TextIO, items) -> None:
    for item in items:
        stream.write(json.dumps(item, separators=(",", ":")) + "\n")


def cmd_sign(args):
    """Sign observations with an ephemeral session key"""
    observations = _load_observations(args.observations)
    session_id = args.session or uuid.uuid4().hex[:12]

    batch = ReceiptBatch()
    with SessionSigner.create(session_id) as signer:
        for observation in observations:
            batch.add(build_and_sign(signer, observation, time.time_ns()))

    logger.info("batch signed", receipts=len(batch), session=session_id)

    lines = [r.to_dict() for r in batch]
    if args.output:
        with open(args.output, "w") as f:
            _write_json_lines(f, lines)
        print(f"Signed {len(batch)} receipts to: {args.output}")
        print(f"Anchor: {batch.anchor()}")
    else:
        # stdout carries only receipts so it can be piped into verify
        _write_json_lines(sys.stdout, lines)
        print(f"Anchor: {batch.anchor()}", file=sys.stderr)


def cmd_verify(args):
    """Verify every receipt in a file"""
    receipts = _load_receipts(args.receipts)

    failures = 0
    for i, receipt in enumerate(receipts, 1):
        label = f"{receipt.path}#{receipt.seq}"
        try:
            verify_receipt(receipt)
        except MalformedReceiptError as e:
            failures += 1
            print(f"  x [{i}] {label}: malformed: {e}")
        except InvalidSignatureError as e:
            failures += 1
            print(f"  x [{i}] {label}: {e}")
        else:
            if args.verbose:
                print(f"  ok [{i}] {label}")

    if failures:
        print(f"Verification: FAILED ({failures} of {len(receipts)} receipts)")
        sys.exit(1)
    print(f"Verification: PASSED ({len(receipts)} receipts)")


def cmd_anchor(args):
    """Print the aggregate Merkle anchor of a receipt file"""
    receipts = _load_receipts(args.receipts)
    print(aggregate_anchor(receipts))


def cmd_digest(args):
    """Print the canonical digest of each receipt"""
    for receipt in _load_receipts(args.receipts):
        print(f"{digest_hex(receipt)}  {receipt.path}#{receipt.seq}")


def cmd_qos(args):
    """Aggregate observations and print the QoS snapshot"""
    aggregator = QoSAggregator(
        max_recent=args.miner_config.service.max_recent,
        flush_interval=args.miner_config.service.flush_interval,
    )
    for observation in _load_observations(args.observations):
        aggregator.record(observation)
    print(json.dumps(aggregator.flush().to_dict(), indent=2))


def create_parser():
    """Create and configure the argument parser with all commands."""
    parser = argparse.ArgumentParser(
        prog="slowdrip",
        description="SlowDrip: proof-of-service receipts for media delivery",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--config", help="Path to miner config (JSON)")
    parser.add_argument("--log-level", choices=["debug", "info", "warning", "error", "critical"])
    parser.add_argument("--log-format", choices=["console", "json", "pretty"])
    parser.add_argument("--log-file", help="Also write JSON logs to this file")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    sign_parser = subparsers.add_parser("sign", help="Sign observations (JSON lines)")
    sign_parser.add_argument("observations", help="Observation file, or - for stdin")
    sign_parser.add_argument("--session", help="Advisory session ID for logs")
    sign_parser.add_argument("--output", "-o", help="Write receipts here instead of stdout")
    sign_parser.set_defaults(func=cmd_sign)

    verify_parser = subparsers.add_parser("verify", help="Verify signed receipts")
    verify_parser.add_argument("receipts", help="Receipt file, or - for stdin")
    verify_parser.add_argument("--verbose", "-v", action="store_true", help="List valid receipts too")
    verify_parser.set_defaults(func=cmd_verify)

    anchor_parser = subparsers.add_parser("anchor", help="Compute batch anchor")
    anchor_parser.add_argument("receipts", help="Receipt file, or - for stdin")
    anchor_parser.set_defaults(func=cmd_anchor)

    digest_parser = subparsers.add_parser("digest", help="Print receipt digests")
    digest_parser.add_argument("receipts", help="Receipt file, or - for stdin")
    digest_parser.set_defaults(func=cmd_digest)

    qos_parser = subparsers.add_parser("qos", help="Aggregate observations")
    qos_parser.add_argument("observations", help="Observation file, or - for stdin")
    qos_parser.set_defaults(func=cmd_qos)

    return parser


def main(argv=None):
    """Main CLI entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(0)

    try:
        config = load_config(args.config)
    except ConfigError as e:
        print(f"Error: {e}")
        sys.exit(1)

    log_file = args.log_file or config.log_file
    try:
        configure_logging(
            level=args.log_level or config.log_level,
            format=args.log_format or config.log_format,
            log_file=Path(log_file) if log_file else None,
        )
    except OSError as e:
        print(f"Error: cannot open log file: {e}")
        sys.exit(1)
    args.miner_config = config

    args.func(args)


if __name__ == "__main__":
    main()
