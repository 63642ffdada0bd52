import threading
from collections import Counter
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from aavetrace.config.settings import TRANSFER_TOPIC
from aavetrace.core.dto import CallResult, ContractCall, RawLog, TransferEvent, address_topic
from aavetrace.core.errors import RangeTooLargeError
from aavetrace.ports.chain_data_port import ChainDataPort


def transfer_log(token: str, event: TransferEvent) -> RawLog:
    return RawLog(
        address=token.lower(),
        topics=(TRANSFER_TOPIC, address_topic(event.from_address), address_topic(event.to_address)),
        data="0x" + format(event.value, "064x"),
        block_number=event.block_number,
        log_index=event.log_index,
        tx_hash=event.tx_hash,
    )


class StaticChainAdapter(ChainDataPort):
    def __init__(self,
                 height: int = 0,
                 deployments: Optional[Dict[str, int]] = None,
                 transfers: Optional[Dict[str, List[TransferEvent]]] = None,
                 call_results: Optional[Dict[Tuple[str, str, Tuple[Any, ...]], Any]] = None,
                 max_range: Optional[int] = None,
                 on_get_logs: Optional[Callable[[str, int, int], None]] = None,
                 ):
        self._height = height
        self._deployments = {k.lower(): v for k, v in (deployments or {}).items()}
        self._logs: List[RawLog] = [
            transfer_log(token, e)
            for token, events in (transfers or {}).items()
            for e in events
        ]
        self._call_results = {(c.lower(), s, a): v for (c, s, a), v in (call_results or {}).items()}
        self._max_range = max_range
        self._on_get_logs = on_get_logs

        self._lock = threading.Lock()
        self.calls: Counter = Counter()
        self.log_requests: List[Tuple[int, int]] = []

    def add_log(self, log: RawLog) -> None:
        self._logs.append(log)

    def current_height(self):
        self.calls["current_height"] += 1
        return self._height

    def code_exists_at(self, address, block=None):
        with self._lock:
            self.calls["code_exists_at"] += 1
        deployed = self._deployments.get(address.lower())
        if deployed is None:
            return False
        return (self._height if block is None else block) >= deployed

    def get_logs(self, address, topics, start_block, end_block):
        with self._lock:
            self.calls["get_logs"] += 1
            self.log_requests.append((start_block, end_block))
        if self._on_get_logs is not None:
            self._on_get_logs(address, start_block, end_block)
        if self._max_range is not None and end_block - start_block + 1 > self._max_range:
            raise RangeTooLargeError(
                f"block range too large: {end_block - start_block + 1} > {self._max_range}",
                start_block=start_block,
                end_block=end_block,
            )

        ad = address.lower()
        items = [
            log for log in self._logs
            if log.address == ad
            and start_block <= log.block_number <= end_block
            and self._topics_match(topics, log.topics)
        ]
        items.sort(key=lambda x: (x.block_number, x.log_index))
        return items

    def batch_call(self, calls: Sequence[ContractCall], block=None):
        self.calls["batch_call"] += 1
        out: List[CallResult] = []
        for c in calls:
            key = (c.contract.lower(), c.signature, tuple(c.args))
            if key in self._call_results:
                out.append(CallResult(success=True, result=self._call_results[key]))
            else:
                out.append(CallResult(success=False, error="execution reverted"))
        return out

    @staticmethod
    def _topics_match(wanted: Sequence[Optional[str]], actual: Tuple[str, ...]) -> bool:
        for i, t in enumerate(wanted):
            if t is None:
                continue
            if i >= len(actual) or actual[i] != t.lower():
                return False
        return True
