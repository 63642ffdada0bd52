from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from aavetrace.config.markets import MARKETS, AaveAsset, Market, get_market
from aavetrace.core.errors import ConfigError
from aavetrace.core.models import BORROW, SUPPLY, TOKEN_TYPES

# select(message, [(title, value), ...]) -> chosen value, or None if aborted
Selector = Callable[[str, Sequence[Tuple[str, Any]]], Any]


def _select(select: Optional[Selector], field_name: str, message: str, choices: Sequence[Tuple[str, Any]]) -> Any:
    if select is None:
        raise ConfigError(f"Missing required argument: {field_name}")
    value = select(message, choices)
    if value is None:
        raise ConfigError(f"No {field_name} selected")
    return value


def resolve_market(
    name: Optional[str],
    interactive: bool = True,
    select: Optional[Selector] = None,
    markets: Optional[List[Market]] = None,
) -> Market:
    table = markets if markets is not None else MARKETS
    available = ", ".join(m.name for m in table)

    if name:
        found = get_market(name, table)
        if found is None:
            raise ConfigError(f'Unknown market "{name}". Available: {available}')
        return found

    if not interactive:
        raise ConfigError(f"Missing required argument: market. Available: {available}")

    return _select(
        select,
        "market",
        "Select an Aave market",
        [(f"{m.name} (chain: {m.chain_name})", m) for m in table],
    )


def resolve_asset(
    market: Market,
    symbol: Optional[str],
    interactive: bool = True,
    select: Optional[Selector] = None,
) -> AaveAsset:
    symbols = list(market.assets)

    if symbol:
        if symbol not in market.assets:
            raise ConfigError(
                f'Unknown asset "{symbol}" in {market.name}. Available: {", ".join(symbols)}'
            )
        return market.assets[symbol]

    if not interactive:
        raise ConfigError(
            f"Missing required argument: asset. Available in {market.name}: {', '.join(symbols)}"
        )

    chosen = _select(select, "asset", "Select an asset", [(s, s) for s in symbols])
    return market.assets[chosen]


def resolve_token_type(
    token_type: Optional[str],
    interactive: bool = True,
    select: Optional[Selector] = None,
) -> str:
    if token_type:
        if token_type not in TOKEN_TYPES:
            raise ConfigError(f'tokenType must be "{SUPPLY}" or "{BORROW}"')
        return token_type

    if not interactive:
        raise ConfigError(f'Missing required argument: tokenType ("{SUPPLY}" or "{BORROW}")')

    return _select(
        select,
        "token type",
        "What do you want to explore?",
        [("Supply (aToken holders)", SUPPLY), ("Borrow (vToken holders)", BORROW)],
    )


def resolve_address(
    holders: Dict[str, int],
    address: Optional[str],
    interactive: bool = True,
    select: Optional[Selector] = None,
    describe: Optional[Callable[[int], str]] = None,
    limit: int = 50,
) -> str:
    """Pick the address to trace; it must be one of the holders."""
    if address:
        wanted = address.lower()
        for a in holders:
            if a.lower() == wanted:
                return a
        raise ConfigError(f'Address "{address}" is not in the borrower list for this asset.')

    if not interactive:
        raise ConfigError("Missing required argument: address. Must be one of the top borrowers.")

    ranked = sorted(holders.items(), key=lambda x: (-x[1], x[0]))[:limit]
    choices = [
        (f"{a}  {describe(b)}" if describe else a, a)
        for a, b in ranked
    ]
    return _select(select, "address", "Select a borrower address to trace", choices)
