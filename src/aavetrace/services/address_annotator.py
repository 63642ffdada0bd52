from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Optional, Tuple

from aavetrace.adapters.naming.ens_adapter import EnsNameAdapter
from aavetrace.config.markets import MARKETS, Market, get_a_token_label, markets_on_chain
from aavetrace.config.settings import ANNOTATE_MAX_WORKERS
from aavetrace.core.dto import ContractCall
from aavetrace.core.models import AavePosition, AddressTag
from aavetrace.ports.chain_data_port import ChainDataPort

logger = logging.getLogger(__name__)

BALANCE_OF = "balanceOf(address)"


class AddressAnnotator:
    """
    Display-only facts about an address. Never raises: anything that fails
    is left unknown.
    """

    def __init__(
        self,
        chain: ChainDataPort,
        chain_id: int,
        ens: Optional[EnsNameAdapter] = None,
        markets: Optional[List[Market]] = None,
    ) -> None:
        self.chain = chain
        self.chain_id = chain_id
        self.ens = ens
        self.markets = markets if markets is not None else MARKETS

    def annotate(self, address: str) -> AddressTag:
        label = get_a_token_label(address, self.chain_id, self.markets)
        if label:
            return AddressTag(is_contract=True, a_token_label=label)

        with ThreadPoolExecutor(max_workers=ANNOTATE_MAX_WORKERS) as pool:
            f_code = pool.submit(self._is_contract, address)
            f_ens = pool.submit(self._ens_name, address)
            f_pos = pool.submit(self._positions, address)
            supplying, borrowing = f_pos.result()
            return AddressTag(
                is_contract=f_code.result(),
                ens=f_ens.result(),
                supplying=supplying,
                borrowing=borrowing,
            )

    def annotate_many(self, addresses: List[str]) -> Dict[str, AddressTag]:
        return {a: self.annotate(a) for a in dict.fromkeys(addresses)}

    # -------------------------
    # Lookups
    # -------------------------

    def _is_contract(self, address: str) -> Optional[bool]:
        try:
            return self.chain.code_exists_at(address)
        except Exception as e:
            logger.debug("contract check failed for %s: %s", address, e)
            return None

    def _ens_name(self, address: str) -> Optional[str]:
        if self.ens is None:
            return None
        return self.ens.reverse_name(address)

    def _positions(self, address: str) -> Tuple[List[AavePosition], List[AavePosition]]:
        """One batch of balanceOf over every aToken/vToken on the chain, summed per symbol."""
        checks = [
            (symbol, asset)
            for m in markets_on_chain(self.chain_id, self.markets)
            for symbol, asset in m.assets.items()
        ]
        if not checks:
            return [], []

        calls: List[ContractCall] = []
        for _, asset in checks:
            calls.append(ContractCall(asset.a_token, BALANCE_OF, (address.lower(),)))
            calls.append(ContractCall(asset.v_token, BALANCE_OF, (address.lower(),)))

        try:
            results = self.chain.batch_call(calls)
        except Exception as e:
            logger.debug("position batch failed for %s: %s", address, e)
            return [], []
        if len(results) != len(calls):
            logger.debug("position batch for %s returned %d of %d results", address, len(results), len(calls))
            return [], []

        supply: Dict[str, AavePosition] = {}
        borrow: Dict[str, AavePosition] = {}
        for i, (symbol, asset) in enumerate(checks):
            pairs = ((results[2 * i], supply), (results[2 * i + 1], borrow))
            for res, bucket in pairs:
                if not res.success or not isinstance(res.result, int) or res.result <= 0:
                    continue
                pos = bucket.get(symbol)
                if pos is None:
                    bucket[symbol] = AavePosition(symbol, res.result, asset.decimals)
                else:
                    pos.balance += res.result

        return list(supply.values()), list(borrow.values())


def mask_positions(tag: AddressTag, asset_symbol: Optional[str]) -> AddressTag:
    """Keep only positions in the traced asset."""
    if not asset_symbol or tag.a_token_label:
        return tag
    return AddressTag(
        is_contract=tag.is_contract,
        ens=tag.ens,
        supplying=[p for p in tag.supplying if p.symbol == asset_symbol],
        borrowing=[p for p in tag.borrowing if p.symbol == asset_symbol],
    )
