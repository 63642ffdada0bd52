import os
import unittest
from unittest.mock import patch

from aavetrace.config.markets import MARKETS, get_market, rpc_url_for
from aavetrace.config.resolvers import resolve_address, resolve_asset, resolve_market, resolve_token_type
from aavetrace.core.errors import ConfigError
from aavetrace.core.models import BORROW, SUPPLY

from helpers import addr


class ScriptedSelect:
    """Stands in for the interactive menu: answers with a fixed choice index."""

    def __init__(self, index=0):
        self.index = index
        self.prompts = []

    def __call__(self, message, choices):
        self.prompts.append((message, list(choices)))
        if self.index is None:
            return None
        return choices[self.index][1]


class ResolveMarketTests(unittest.TestCase):
    def test_known_name(self) -> None:
        self.assertEqual(resolve_market("AaveV3Ethereum").name, "AaveV3Ethereum")

    def test_unknown_name_lists_available(self) -> None:
        with self.assertRaises(ConfigError) as ctx:
            resolve_market("AaveV9Moon")

        self.assertIn("AaveV3Ethereum", str(ctx.exception))

    def test_missing_without_interaction(self) -> None:
        with self.assertRaises(ConfigError) as ctx:
            resolve_market(None, interactive=False)

        self.assertIn("market", str(ctx.exception))

    def test_interactive_menu(self) -> None:
        select = ScriptedSelect(index=1)

        market = resolve_market(None, interactive=True, select=select)

        self.assertIs(market, MARKETS[1])
        self.assertEqual(len(select.prompts[0][1]), len(MARKETS))

    def test_aborted_menu(self) -> None:
        with self.assertRaises(ConfigError):
            resolve_market(None, interactive=True, select=ScriptedSelect(index=None))

    def test_no_menu_available(self) -> None:
        with self.assertRaises(ConfigError):
            resolve_market(None, interactive=True, select=None)


class ResolveAssetTests(unittest.TestCase):
    def setUp(self) -> None:
        self.market = get_market("AaveV3Ethereum")

    def test_known_symbol(self) -> None:
        self.assertEqual(resolve_asset(self.market, "USDC").decimals, 6)

    def test_unknown_symbol(self) -> None:
        with self.assertRaises(ConfigError) as ctx:
            resolve_asset(self.market, "DOGE")

        self.assertIn("USDC", str(ctx.exception))

    def test_missing_without_interaction(self) -> None:
        with self.assertRaises(ConfigError):
            resolve_asset(self.market, None, interactive=False)

    def test_interactive_menu(self) -> None:
        asset = resolve_asset(self.market, None, select=ScriptedSelect(index=0))

        self.assertEqual(asset.symbol, list(self.market.assets)[0])


class ResolveTokenTypeTests(unittest.TestCase):
    def test_valid_values(self) -> None:
        self.assertEqual(resolve_token_type(SUPPLY), SUPPLY)
        self.assertEqual(resolve_token_type(BORROW), BORROW)

    def test_invalid_value(self) -> None:
        with self.assertRaises(ConfigError):
            resolve_token_type("lend")

    def test_missing_without_interaction(self) -> None:
        with self.assertRaises(ConfigError):
            resolve_token_type(None, interactive=False)

    def test_interactive_menu(self) -> None:
        self.assertEqual(resolve_token_type(None, select=ScriptedSelect(index=1)), BORROW)


class ResolveAddressTests(unittest.TestCase):
    HOLDERS = {addr("a"): 5, addr("b"): 50, addr("c"): 20}

    def test_match_is_case_insensitive(self) -> None:
        wanted = "0x" + "B" * 40

        self.assertEqual(resolve_address(self.HOLDERS, wanted), addr("b"))

    def test_address_outside_holders(self) -> None:
        with self.assertRaises(ConfigError):
            resolve_address(self.HOLDERS, addr("d"))

    def test_missing_without_interaction(self) -> None:
        with self.assertRaises(ConfigError):
            resolve_address(self.HOLDERS, None, interactive=False)

    def test_menu_lists_largest_first(self) -> None:
        select = ScriptedSelect(index=0)

        chosen = resolve_address(self.HOLDERS, None, select=select, describe=lambda b: f"({b})", limit=2)

        self.assertEqual(chosen, addr("b"))
        titles = [t for t, _ in select.prompts[0][1]]
        self.assertEqual(titles, [f"{addr('b')}  (50)", f"{addr('c')}  (20)"])


class RpcUrlTests(unittest.TestCase):
    def test_missing_env_var_is_a_config_error(self) -> None:
        market = get_market("AaveV3Arbitrum")

        with patch.dict(os.environ, {}, clear=True):
            with self.assertRaises(ConfigError) as ctx:
                rpc_url_for(market)

        self.assertIn("RPC_ARBITRUM", str(ctx.exception))

    def test_reads_env_var(self) -> None:
        market = get_market("AaveV3Arbitrum")

        with patch.dict(os.environ, {"RPC_ARBITRUM": "http://localhost:8547"}):
            self.assertEqual(rpc_url_for(market), "http://localhost:8547")


if __name__ == "__main__":
    unittest.main()
