from __future__ import annotations

import dataclasses
import logging
from typing import Dict, List, Optional, Sequence

from aavetrace.config.markets import MARKETS, AaveAsset, Market, markets_on_chain, pool_address_for
from aavetrace.core.dto import ZERO_ADDRESS, CallResult, ContractCall
from aavetrace.core.errors import ConfigError, DataSourceError
from aavetrace.ports.chain_data_port import ChainDataPort

logger = logging.getLogger(__name__)

GET_RESERVES_LIST = "getReservesList()"
GET_RESERVE_DATA = "getReserveData(address)"
SYMBOL = "symbol()"
DECIMALS = "decimals()"

# getReserveData return layout per Pool version: (types, aToken index, variable debt token index)
RESERVE_DATA_LAYOUT = {
    3: (("uint256",) + ("uint128",) * 5 + ("uint40", "uint16") + ("address",) * 4 + ("uint128",) * 3, 8, 10),
    2: (("uint256",) + ("uint128",) * 5 + ("uint40",) + ("address",) * 4 + ("uint8",), 7, 9),
}


def _symbol_text(value) -> Optional[str]:
    if isinstance(value, bytes):
        value = value.rstrip(b"\0").decode("utf-8", "replace")
    if not isinstance(value, str) or not value.strip():
        return None
    return value.strip()


def _free_key(assets: Dict[str, AaveAsset], symbol: str, underlying: str) -> str:
    if symbol not in assets:
        return symbol
    return f"{symbol}_{underlying[2:8]}"


class ReserveCatalog:
    """
    Reads a market's reserve list straight from its Pool so every listed
    asset has its aToken and variable debt token, not only the ones pinned
    in the market table.
    """

    def __init__(self, chain: ChainDataPort) -> None:
        self.chain = chain

    def discover(self, market: Market) -> Dict[str, AaveAsset]:
        layout = RESERVE_DATA_LAYOUT.get(market.version)
        if layout is None:
            raise ConfigError(f"Unsupported Aave version {market.version} for {market.name}")
        types, a_idx, v_idx = layout
        pool = pool_address_for(market)

        [listing] = self.chain.batch_call([ContractCall(pool, GET_RESERVES_LIST, (), ("address[]",))])
        if not listing.success:
            raise DataSourceError(f"getReservesList failed for {market.name} at {pool}: {listing.error}")
        underlyings = [u.lower() for u in listing.result if u.lower() != ZERO_ADDRESS]
        if not underlyings:
            return {}

        calls: List[ContractCall] = []
        for u in underlyings:
            calls.append(ContractCall(pool, GET_RESERVE_DATA, (u,), types))
            calls.append(ContractCall(u, SYMBOL, (), ("string",)))
            calls.append(ContractCall(u, DECIMALS, (), ("uint8",)))
        results = self.chain.batch_call(calls)
        if len(results) != len(calls):
            raise DataSourceError(
                f"reserve batch for {market.name} returned {len(results)} of {len(calls)} results"
            )

        symbols = self._symbols(underlyings, [results[3 * i + 1] for i in range(len(underlyings))])

        assets: Dict[str, AaveAsset] = {}
        for i, u in enumerate(underlyings):
            data, dec = results[3 * i], results[3 * i + 2]
            if not data.success:
                logger.debug("%s: getReserveData(%s) failed: %s", market.name, u, data.error)
                continue
            a_token, v_token = data.result[a_idx].lower(), data.result[v_idx].lower()
            if a_token == ZERO_ADDRESS:
                continue
            symbol = symbols[i]
            assets[_free_key(assets, symbol, u)] = AaveAsset(
                symbol=symbol,
                decimals=dec.result if dec.success else 18,
                underlying=u,
                a_token=a_token,
                v_token=v_token,
            )

        logger.info("%s: %d reserve(s) read from pool %s", market.name, len(assets), pool)
        return assets

    def _symbols(self, underlyings: Sequence[str], results: Sequence[CallResult]) -> List[str]:
        """symbol() as string, then as bytes32 for tokens like MKR."""
        out = [_symbol_text(r.result) if r.success else None for r in results]
        missing = [i for i, s in enumerate(out) if s is None]
        if missing:
            retry = self.chain.batch_call(
                [ContractCall(underlyings[i], SYMBOL, (), ("bytes32",)) for i in missing]
            )
            for i, r in zip(missing, retry):
                if r.success:
                    out[i] = _symbol_text(r.result)
        return [s or f"UNKNOWN_{u[2:8]}" for s, u in zip(out, underlyings)]

    def hydrate(self, market: Market, required: bool = True) -> Market:
        """
        Market with its pinned assets plus every reserve the Pool reports.
        Falls back to the pinned assets when discovery fails, unless the
        market has none and `required` is set.
        """
        try:
            found = self.discover(market)
        except (ConfigError, DataSourceError) as e:
            if required and not market.assets:
                raise
            logger.warning(
                "%s: reserve discovery failed (%s); using %d listed asset(s)",
                market.name, e, len(market.assets),
            )
            return market

        assets = dict(market.assets)
        known = {a.a_token for a in assets.values()}
        for asset in found.values():
            if asset.a_token in known:
                continue
            assets[_free_key(assets, asset.symbol, asset.underlying)] = asset
        return dataclasses.replace(market, assets=assets)

    def hydrate_chain(self, market: Market, markets: Optional[List[Market]] = None) -> List[Market]:
        """Every market on `market`'s chain, hydrated. Only `market` itself is required to resolve."""
        return [
            self.hydrate(m, required=m.name == market.name)
            for m in markets_on_chain(market.chain_id, markets if markets is not None else MARKETS)
        ]
