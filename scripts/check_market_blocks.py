from __future__ import annotations

import argparse
from typing import Iterator

from aavetrace.adapters.chain.jsonrpc_chain_adapter import JsonRpcChainAdapter
from aavetrace.config.markets import MARKETS, Market, rpc_url_for
from aavetrace.core.errors import TracerError
from aavetrace.services.deployment_locator import DeploymentLocator
from aavetrace.services.reserve_catalog import ReserveCatalog


def check_market(locator: DeploymentLocator, market: Market) -> Iterator[str]:
    """One line per aToken/vToken; a token that cannot be located is reported and skipped."""
    for symbol, asset in market.assets.items():
        for kind, address in (("aToken", asset.a_token), ("vToken", asset.v_token)):
            try:
                block = locator.find(address)
            except TracerError as e:
                yield f"{market.name} {symbol} {kind}: error ({e})"
                continue
            status = "ok" if block >= market.deployment_block else "EARLIER THAN MARKET BLOCK"
            yield f"{market.name} {symbol} {kind}: {block} {status}"


def main() -> None:
    """Every aToken/vToken must postdate its market's deployment block, or holder scans miss history."""
    parser = argparse.ArgumentParser()
    parser.add_argument("--market", help="Only check this market")
    args = parser.parse_args()

    for market in MARKETS:
        if args.market and market.name != args.market:
            continue
        try:
            chain = JsonRpcChainAdapter(rpc_url_for(market))
            market = ReserveCatalog(chain).hydrate(market)
        except TracerError as e:
            print(f"{market.name}: skipped ({e})")
            continue
        for line in check_market(DeploymentLocator(chain), market):
            print(line)


if __name__ == "__main__":
    main()
