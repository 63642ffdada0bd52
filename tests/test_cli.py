import io
import os
import unittest
from contextlib import redirect_stderr, redirect_stdout
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import patch

from aavetrace.adapters.chain.static_chain_adapter import StaticChainAdapter
from aavetrace.cli.main import _make_context, _parse_threshold, build_arg_parser, main
from aavetrace.config.markets import get_a_token_label, get_market
from aavetrace.core.errors import ConfigError
from aavetrace.services.reserve_catalog import DECIMALS, GET_RESERVE_DATA, GET_RESERVES_LIST, SYMBOL

from helpers import TOKEN, addr


class CliTests(unittest.TestCase):
    def _run(self, argv):
        out, err = io.StringIO(), io.StringIO()
        with redirect_stdout(out), redirect_stderr(err):
            code = main(argv)
        return code, out.getvalue(), err.getvalue()

    def test_parse_threshold(self) -> None:
        self.assertEqual(_parse_threshold("0.25"), Decimal("0.25"))
        for bad in ("abc", "-0.1", "1.01", "nan", "-NaN", "sNaN"):
            with self.subTest(raw=bad):
                with self.assertRaises(ConfigError):
                    _parse_threshold(bad)

    def test_trace_options(self) -> None:
        args = build_arg_parser().parse_args([
            "trace-borrower-outflows", "AaveV3Ethereum", "USDC", "0xabc",
            "-n", "5", "-t", "0.2", "--depth", "1", "--no-interactive", "-m",
        ])

        self.assertEqual((args.market, args.asset, args.address), ("AaveV3Ethereum", "USDC", "0xabc"))
        self.assertEqual((args.top, args.threshold, args.depth), (5, "0.2", 1))
        self.assertFalse(args.interactive)
        self.assertTrue(args.mask_unrelated)

    def test_missing_market_without_interaction_exits_2(self) -> None:
        code, _, err = self._run(["explore-aave-users", "--no-interactive"])

        self.assertEqual(code, 2)
        self.assertIn("market", err)

    def test_unknown_asset_exits_2(self) -> None:
        with patch("aavetrace.cli.main._make_context", lambda market: SimpleNamespace(market=market)):
            code, _, err = self._run(["trace-all-borrowers", "AaveV3Ethereum", "DOGE", "--no-interactive"])

        self.assertEqual(code, 2)
        self.assertIn("DOGE", err)

    def test_bad_threshold_exits_2(self) -> None:
        for raw in ("2", "nan", "sNaN"):
            with self.subTest(raw=raw):
                code, _, _ = self._run(["trace-all-borrowers", "AaveV3Ethereum", "USDC", "-t", raw, "--no-interactive"])
                self.assertEqual(code, 2)

    def test_negative_top_exits_2(self) -> None:
        for argv in (
            ["trace-all-borrowers", "AaveV3Ethereum", "USDC", "-n", "-1", "--no-interactive"],
            ["get-token-holders", TOKEN, "TKN", "0", "-n", "-1", "--rpc-url", "http://node"],
        ):
            with self.subTest(command=argv[0]):
                code, _, err = self._run(argv)
                self.assertEqual(code, 2)
                self.assertIn("--top", err)

    def test_context_uses_reserves_read_from_the_pool(self) -> None:
        pool = get_market("AaveV3Ethereum").pool
        underlying, a_token, v_token = addr("1"), addr("a"), addr("b")
        chain = StaticChainAdapter(call_results={
            (pool, GET_RESERVES_LIST, ()): [underlying],
            (pool, GET_RESERVE_DATA, (underlying,)): (0, 1, 2, 3, 4, 5, 6, 7, a_token, addr("5"), v_token, addr("6"), 0, 0, 0),
            (underlying, SYMBOL, ()): "GHO",
            (underlying, DECIMALS, ()): 18,
        })

        with patch.dict(os.environ, {"RPC_MAINNET": "http://node"}), \
                patch("aavetrace.cli.main.JsonRpcChainAdapter", lambda url: chain), \
                self.assertLogs("aavetrace.services.reserve_catalog", level="WARNING"):
            ctx = _make_context(get_market("AaveV3Ethereum"))

        self.assertEqual(ctx.market.assets["GHO"].v_token, v_token)
        self.assertIn("USDC", ctx.market.assets)
        self.assertEqual({m.chain_id for m in ctx.markets}, {1})
        self.assertTrue(ctx.tracer.is_sink(a_token))
        self.assertEqual(get_a_token_label(a_token, 1, ctx.annotator.markets), "aGHO (AaveV3Ethereum)")

    def test_missing_rpc_url_exits_2(self) -> None:
        with patch.dict(os.environ, {}, clear=True):
            code, _, err = self._run(["explore-aave-users", "AaveV3Arbitrum", "USDC", "borrow", "--no-interactive"])

        self.assertEqual(code, 2)
        self.assertIn("RPC_ARBITRUM", err)


if __name__ == "__main__":
    unittest.main()
