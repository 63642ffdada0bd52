from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from decimal import Decimal
from fractions import Fraction
from typing import Callable, Dict, List, Optional

from aavetrace.config.settings import TRACE_DEFAULT_THRESHOLD, TRACE_MAX_WORKERS
from aavetrace.core.dto import ZERO_ADDRESS, BlockRange
from aavetrace.core.models import FlowNode, FlowTree, PrunedSummary
from aavetrace.services.balance_ledger import aggregate_by_recipient
from aavetrace.services.log_scanner import ChunkedLogScanner

logger = logging.getLogger(__name__)

# on_progress(level, completed, total)
TraceProgress = Callable[[int, int, int], None]


class OutflowTracer:
    """
    Builds a two-level outflow tree of one token from a root address.

    - Level 1: everything the root sent, aggregated by recipient.
    - Level 2: the same for each kept level-1 recipient that is not a sink.
    - Pruning: a recipient is kept only if it is in the top N of its parent
      AND its amount is at least threshold * root total. The root total is
      the basis at both levels. The rest is folded into a PrunedSummary so
      children + pruned always add up to the parent's outflow total.
    """

    def __init__(
        self,
        scanner: ChunkedLogScanner,
        is_sink: Optional[Callable[[str], bool]] = None,
        max_workers: int = TRACE_MAX_WORKERS,
    ) -> None:
        if max_workers <= 0:
            raise ValueError("max_workers must be > 0")
        self.scanner = scanner
        self.is_sink = is_sink
        self.max_workers = max_workers

    def trace(
        self,
        source: str,
        token_address: str,
        block_range: BlockRange,
        top_n: int = 10,
        threshold: Decimal = TRACE_DEFAULT_THRESHOLD,
        on_progress: Optional[TraceProgress] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> FlowTree:
        if top_n < 0:
            raise ValueError("top_n must be >= 0")
        theta = Fraction(str(threshold))
        if theta < 0 or theta > 1:
            raise ValueError(f"threshold must be within [0, 1], got {threshold}")

        root_addr = source.lower()
        totals = self.recipient_totals(
            root_addr,
            token_address,
            block_range,
            on_progress=(lambda done, total: on_progress(1, done, total)) if on_progress else None,
            cancel_event=cancel_event,
        )
        root_total = sum(totals.values())

        root = FlowNode(
            address=root_addr,
            amount=root_total,
            share=Fraction(1) if root_total else Fraction(0),
        )
        self._expand(root, totals, root_addr, root_total, top_n, theta)

        # level 2 depends on the level-1 cut, so it only starts here
        pending = [c for c in root.children if not c.is_sink]
        if pending:
            self._expand_level_two(
                pending, root_addr, token_address, block_range,
                root_total, top_n, theta, on_progress, cancel_event,
            )

        logger.info(
            "Traced %s: total %d, %d recipient(s) kept, %d pruned",
            root_addr, root_total, len(root.children), root.pruned.count if root.pruned else 0,
        )
        return FlowTree(
            root=root,
            token_address=token_address.lower(),
            block_range=block_range,
            root_total=root_total,
            threshold=Decimal(str(threshold)),
            top_n=top_n,
        )

    def recipient_totals(
        self,
        source: str,
        token_address: str,
        block_range: BlockRange,
        on_progress: Optional[Callable[[int, int], None]] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> Dict[str, int]:
        events = self.scanner.scan(
            token_address,
            block_range,
            from_address=source,
            on_progress=on_progress,
            cancel_event=cancel_event,
        )
        return aggregate_by_recipient(events, source)

    # -------------------------
    # Expansion
    # -------------------------

    def _expand_level_two(
        self,
        nodes: List[FlowNode],
        root_addr: str,
        token_address: str,
        block_range: BlockRange,
        root_total: int,
        top_n: int,
        theta: Fraction,
        on_progress: Optional[TraceProgress],
        cancel_event: Optional[threading.Event],
    ) -> None:
        total = len(nodes)
        with ThreadPoolExecutor(max_workers=min(self.max_workers, total)) as pool:
            futures = {
                pool.submit(
                    self.recipient_totals, n.address, token_address, block_range,
                    None, cancel_event,
                ): n
                for n in nodes
            }
            completed = 0
            try:
                for fut in as_completed(futures):
                    node = futures[fut]
                    self._expand(node, fut.result(), root_addr, root_total, top_n, theta)
                    completed += 1
                    if on_progress is not None:
                        on_progress(2, completed, total)
            except BaseException:
                for f in futures:
                    f.cancel()
                raise

    def _expand(
        self,
        node: FlowNode,
        totals: Dict[str, int],
        root_addr: str,
        root_total: int,
        top_n: int,
        theta: Fraction,
    ) -> None:
        ranked = sorted(totals.items(), key=lambda x: (-x[1], x[0]))
        kept: List[FlowNode] = []
        pruned = PrunedSummary()

        for addr, amount in ranked:
            if len(kept) < top_n and self._significant(amount, root_total, theta):
                kept.append(
                    FlowNode(
                        address=addr,
                        amount=amount,
                        share=Fraction(amount, root_total),
                        is_sink=self._is_sink(addr, root_addr),
                    )
                )
            else:
                pruned.count += 1
                pruned.amount += amount

        node.outflow_total = sum(totals.values())
        node.children = kept
        node.pruned = pruned

    # -------------------------
    # Helpers
    # -------------------------

    @staticmethod
    def _significant(amount: int, root_total: int, theta: Fraction) -> bool:
        # exact: amount >= theta * root_total
        return amount > 0 and amount * theta.denominator >= theta.numerator * root_total

    def _is_sink(self, address: str, root_addr: str) -> bool:
        if address in (ZERO_ADDRESS, root_addr):
            return True
        return bool(self.is_sink(address)) if self.is_sink is not None else False
