"""
Receipt Pipeline

observation -> Receipt -> digest -> signature -> emission.

build_and_sign() is the pure composition. pump() is the continuous form
driven by an asyncio queue of observations; it runs until a stop event is
set and reports that as a normal outcome rather than an error.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Optional

from ..logging import get_logger, log_context
from .observation import SegmentObservation
from .receipt import Receipt
from .signer import SessionSigner, SignerError

if TYPE_CHECKING:
    from ..qos import QoSAggregator

logger = get_logger("slowdrip.receipts.pipeline")


def build_and_sign(signer: SessionSigner, observation: SegmentObservation, nonce: int) -> Receipt:
    """
    Build a Receipt from an observation and sign it.

    Raises:
        SignerNotInitializedError: If the signer cannot sign
    """
    return signer.sign(Receipt.from_observation(observation, nonce))


@dataclass(frozen=True)
class PumpResult:
    """Outcome of a pump run that ended because the stop event was set"""
    emitted: int                      # Signed receipts put on the outbox
    dropped: int = 0                  # Dequeued or signed but not emitted when stop landed


async def pump(
    signer: SessionSigner,
    inbox: "asyncio.Queue[SegmentObservation]",
    outbox: "asyncio.Queue[Receipt]",
    stop: asyncio.Event,
    *,
    nonce_source: Callable[[], int] = time.time_ns,
    aggregator: Optional["QoSAggregator"] = None,
) -> PumpResult:
    """
    Continuously sign observations from inbox onto outbox until stop is set.

    The stop event is checked before every dequeue. While idle the pump
    waits for whichever comes first, the next observation or the stop
    event. An observation that was dequeued in the same instant the stop
    landed is dropped, not signed. Handing a receipt to a full outbox also
    races the stop event; a receipt still waiting when stop lands is dropped.
    Signing itself never suspends, so once started it runs to completion.

    Args:
        signer: Session signer for this stream session
        inbox: Queue of incoming observations
        outbox: Queue receiving signed receipts
        stop: Event that ends the run
        nonce_source: Nonce per receipt; wall-clock nanoseconds by default
        aggregator: Optional QoS aggregator that sees every observation

    Returns:
        PumpResult describing the stopped run

    Raises:
        SignerError: If signing fails (the run ends, no retry)
    """
    emitted = 0
    dropped = 0

    with log_context(session_id=signer.session_id or None, operation="pump"):
        logger.debug("receipt pump started")

        stop_wait = asyncio.ensure_future(stop.wait())
        get = put = None
        try:
            while not stop.is_set():
                get = asyncio.ensure_future(inbox.get())
                done, _ = await asyncio.wait(
                    {get, stop_wait}, return_when=asyncio.FIRST_COMPLETED
                )
                if get not in done:
                    break

                observation = get.result()
                get = None
                try:
                    if stop.is_set():
                        # Dequeued in the same step the stop landed
                        dropped += 1
                        break
                    if aggregator is not None:
                        aggregator.record(observation)
                    receipt = build_and_sign(signer, observation, nonce_source())
                except SignerError as e:
                    logger.error(
                        "signing failed", path=observation.path, seq=observation.seq, error=str(e)
                    )
                    raise
                finally:
                    inbox.task_done()

                # A bounded outbox may be full; stop must still win
                put = asyncio.ensure_future(outbox.put(receipt))
                done, _ = await asyncio.wait(
                    {put, stop_wait}, return_when=asyncio.FIRST_COMPLETED
                )
                if put not in done:
                    dropped += 1
                    break
                put = None
                emitted += 1
        finally:
            if get is not None and get.done() and not get.cancelled():
                # Cancelled from outside after the dequeue completed
                inbox.task_done()
                logger.warning("observation discarded on cancellation", seq=get.result().seq)
            for pending in (get, put, stop_wait):
                if pending is not None and not pending.done():
                    pending.cancel()

        logger.debug("receipt pump stopped", emitted=emitted, dropped=dropped)

    return PumpResult(emitted=emitted, dropped=dropped)
