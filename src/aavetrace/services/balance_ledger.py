from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional

from aavetrace.core.dto import ZERO_ADDRESS, BlockRange, Token, TransferEvent
from aavetrace.core.errors import ConfigError, InconsistentLedgerWarning
from aavetrace.core.models import BalanceMap
from aavetrace.ports.chain_data_port import ChainDataPort
from aavetrace.services.log_scanner import ChunkedLogScanner, ScanProgress

logger = logging.getLogger(__name__)


class BalanceLedger:
    """
    Folds Transfer events into per-address balances.

    Each call to fold() starts from an empty map. The zero address is never
    tracked. A debit larger than the current balance means the event stream
    is missing earlier history: the balance is clamped to zero and an
    InconsistentLedgerWarning is recorded on the result.
    """

    def fold(self, events: Iterable[TransferEvent]) -> BalanceMap:
        balances: Dict[str, int] = {}
        warnings: List[InconsistentLedgerWarning] = []

        # (block, log_index) order keeps the clamp deterministic
        for ev in sorted(events, key=lambda e: (e.block_number, e.log_index)):
            if ev.from_address != ZERO_ADDRESS:
                current = balances.get(ev.from_address, 0)
                if ev.value > current:
                    w = InconsistentLedgerWarning(ev.from_address, ev.block_number, ev.value - current)
                    warnings.append(w)
                    logger.debug("%s", w)
                    balances[ev.from_address] = 0
                else:
                    balances[ev.from_address] = current - ev.value

            if ev.to_address != ZERO_ADDRESS:
                balances[ev.to_address] = balances.get(ev.to_address, 0) + ev.value

        return BalanceMap(balances=balances, warnings=warnings)


def aggregate_by_recipient(events: Iterable[TransferEvent], source: str) -> Dict[str, int]:
    """One-directional fold: total sent from `source` to each recipient."""
    src = source.lower()
    totals: Dict[str, int] = {}
    for ev in events:
        if ev.from_address != src:
            continue
        totals[ev.to_address] = totals.get(ev.to_address, 0) + ev.value
    return totals


class HolderService:
    """Point-in-time holder set of a token, rebuilt from its full Transfer history."""

    def __init__(
        self,
        chain: ChainDataPort,
        scanner: Optional[ChunkedLogScanner] = None,
        ledger: Optional[BalanceLedger] = None,
    ) -> None:
        self.chain = chain
        self.scanner = scanner or ChunkedLogScanner(chain)
        self.ledger = ledger or BalanceLedger()

    def get_token_holders(
        self,
        token: Token,
        end_block: Optional[int] = None,
        on_progress: Optional[ScanProgress] = None,
    ) -> BalanceMap:
        end = self.chain.current_height() if end_block is None else int(end_block)
        if end < token.deployment_block:
            raise ConfigError(
                f"Block {end} is before the deployment block {token.deployment_block} of {token.name}"
            )
        events = self.scanner.scan(
            token.address,
            BlockRange(token.deployment_block, end),
            on_progress=on_progress,
        )
        result = self.ledger.fold(events)
        logger.info(
            "%s: %d holder(s) at block %d from %d transfer(s)",
            token.name, len(result), end, len(events),
        )
        if result.warnings:
            logger.warning(
                "%s: %d balance underflow(s) clamped; history before block %d may be missing",
                token.name, len(result.warnings), token.deployment_block,
            )
        return result
