from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, List, Optional, Sequence

from aavetrace.adapters.chain.rate_limiter import backoff_delay
from aavetrace.config.settings import (
    SCAN_BACKOFF_BASE_SEC,
    SCAN_CHUNK_SIZE,
    SCAN_MAX_RETRIES,
    SCAN_MAX_WORKERS,
    TRANSFER_TOPIC,
)
from aavetrace.core.dto import UINT256_MAX, BlockRange, RawLog, TransferEvent, address_topic
from aavetrace.core.errors import NetworkError, RangeTooLargeError, ScanCancelledError
from aavetrace.ports.chain_data_port import ChainDataPort

logger = logging.getLogger(__name__)

# on_progress(completed_sub_ranges, total_sub_ranges)
ScanProgress = Callable[[int, int], None]


def decode_transfer(log: RawLog) -> Optional[TransferEvent]:
    """ERC20 Transfer(address indexed, address indexed, uint256). Anything else -> None."""
    if len(log.topics) != 3 or log.topics[0] != TRANSFER_TOPIC:
        return None
    raw = log.data[2:] if log.data.startswith("0x") else log.data
    value = int(raw, 16) if raw else 0
    if value > UINT256_MAX:
        return None
    return TransferEvent(
        from_address="0x" + log.topics[1][-40:],
        to_address="0x" + log.topics[2][-40:],
        value=value,
        block_number=log.block_number,
        log_index=log.log_index,
        tx_hash=log.tx_hash,
    )


class ChunkedLogScanner:
    """
    Pulls Transfer logs for one token over a block range.

    The range is cut into fixed-size sub-ranges fetched by a bounded thread
    pool. A sub-range that hits a network error is retried with exponential
    backoff; one the provider refuses as too large is halved. Any sub-range
    that still fails aborts the whole scan and no partial result is returned.
    """

    def __init__(
        self,
        chain: ChainDataPort,
        chunk_size: int = SCAN_CHUNK_SIZE,
        max_workers: int = SCAN_MAX_WORKERS,
        max_retries: int = SCAN_MAX_RETRIES,
        backoff_base: float = SCAN_BACKOFF_BASE_SEC,
    ) -> None:
        if chunk_size <= 0:
            raise ValueError("chunk_size must be > 0")
        if max_workers <= 0:
            raise ValueError("max_workers must be > 0")
        self.chain = chain
        self.chunk_size = chunk_size
        self.max_workers = max_workers
        self.max_retries = max_retries
        self.backoff_base = backoff_base

    def scan(
        self,
        token_address: str,
        block_range: BlockRange,
        from_address: Optional[str] = None,
        on_progress: Optional[ScanProgress] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[TransferEvent]:
        topics: List[Optional[str]] = [TRANSFER_TOPIC]
        if from_address:
            topics.append(address_topic(from_address))

        chunks = block_range.split(self.chunk_size)
        total = len(chunks)
        abort = threading.Event()
        events: List[TransferEvent] = []

        logger.info(
            "Scanning %s blocks %d..%d in %d sub-range(s)%s",
            token_address, block_range.start, block_range.end, total,
            f" from {from_address}" if from_address else "",
        )

        with ThreadPoolExecutor(max_workers=min(self.max_workers, total)) as pool:
            futures = [
                pool.submit(self._fetch_range, token_address, topics, c, abort, cancel_event)
                for c in chunks
            ]
            completed = 0
            try:
                for fut in as_completed(futures):
                    events.extend(fut.result())
                    completed += 1
                    if on_progress is not None:
                        on_progress(completed, total)
            except BaseException:
                abort.set()
                for f in futures:
                    f.cancel()
                raise

        events.sort(key=lambda e: (e.block_number, e.log_index))
        logger.info("Scanned %d transfer(s) for %s", len(events), token_address)
        return events

    # -------------------------
    # Sub-range fetching
    # -------------------------

    def _fetch_range(
        self,
        token_address: str,
        topics: Sequence[Optional[str]],
        rng: BlockRange,
        abort: threading.Event,
        cancel_event: Optional[threading.Event],
    ) -> List[TransferEvent]:
        attempt = 0
        while True:
            self._check_stop(abort, cancel_event)
            try:
                logs = self.chain.get_logs(token_address, topics, rng.start, rng.end)
                break
            except RangeTooLargeError:
                if rng.size < 2:
                    raise
                lower, upper = rng.halves()
                logger.debug("range %d..%d too large, halving", rng.start, rng.end)
                return (
                    self._fetch_range(token_address, topics, lower, abort, cancel_event)
                    + self._fetch_range(token_address, topics, upper, abort, cancel_event)
                )
            except NetworkError as e:
                if attempt >= self.max_retries:
                    raise
                delay = backoff_delay(attempt, base=self.backoff_base)
                attempt += 1
                logger.warning(
                    "getLogs %d..%d failed (%s), retry %d/%d in %.1fs",
                    rng.start, rng.end, e, attempt, self.max_retries, delay,
                )
                if abort.wait(delay):
                    raise ScanCancelledError("scan aborted")

        out: List[TransferEvent] = []
        for log in logs:
            ev = decode_transfer(log)
            if ev is None:
                logger.debug("skipping non-Transfer log in block %d", log.block_number)
                continue
            out.append(ev)
        return out

    @staticmethod
    def _check_stop(abort: threading.Event, cancel_event: Optional[threading.Event]) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise ScanCancelledError("scan cancelled by caller")
        if abort.is_set():
            raise ScanCancelledError("scan aborted")
