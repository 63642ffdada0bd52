import math
import unittest

from aavetrace.adapters.chain.static_chain_adapter import StaticChainAdapter
from aavetrace.config.markets import AaveAsset, Market
from aavetrace.core.errors import NotDeployedError
from aavetrace.services.deployment_locator import DeploymentLocator

from check_market_blocks import check_market
from helpers import addr

CONTRACT = addr("c")


class DeploymentLocatorTests(unittest.TestCase):
    def _locate(self, height: int, deployed_at: int):
        chain = StaticChainAdapter(height=height, deployments={CONTRACT: deployed_at})
        block = DeploymentLocator(chain).find(CONTRACT)
        # first check is the guard at the current height
        probes = chain.calls["code_exists_at"] - 1
        return block, probes

    def test_finds_block_42_within_seven_probes(self) -> None:
        block, probes = self._locate(100, 42)

        self.assertEqual(block, 42)
        self.assertLessEqual(probes, 7)

    def test_probe_count_is_logarithmic(self) -> None:
        for height in (0, 1, 2, 3, 17, 100, 1023, 1024, 19_000_000):
            bound = math.ceil(math.log2(height + 1))
            for deployed_at in {0, 1, height // 3, height // 2, height - 1, height}:
                if deployed_at < 0 or deployed_at > height:
                    continue
                with self.subTest(height=height, deployed_at=deployed_at):
                    block, probes = self._locate(height, deployed_at)
                    self.assertEqual(block, deployed_at)
                    self.assertLessEqual(probes, bound)

    def test_missing_code_at_head_fails_fast(self) -> None:
        chain = StaticChainAdapter(height=100, deployments={})

        with self.assertRaises(NotDeployedError):
            DeploymentLocator(chain).find(CONTRACT)
        self.assertEqual(chain.calls["code_exists_at"], 1)

    def test_progress_reports_each_probe(self) -> None:
        chain = StaticChainAdapter(height=100, deployments={CONTRACT: 42})
        seen = []

        DeploymentLocator(chain).find(CONTRACT, on_progress=lambda i, b, e: seen.append((i, b, e)))

        self.assertEqual([s[0] for s in seen], list(range(1, len(seen) + 1)))
        self.assertEqual(seen[0], (1, 50, True))
        self.assertTrue(all(e == (b >= 42) for _, b, e in seen))


class CheckMarketBlocksTests(unittest.TestCase):
    def test_undeployed_token_is_reported_and_the_rest_still_checked(self) -> None:
        market = Market("V3", 1, "Ethereum", 50, "RPC_MAINNET", {
            "USDC": AaveAsset("USDC", 6, addr("1"), addr("a"), addr("b")),
            "WETH": AaveAsset("WETH", 18, addr("2"), addr("d"), addr("e")),
        })
        chain = StaticChainAdapter(height=100, deployments={addr("a"): 60, addr("d"): 40, addr("e"): 70})

        lines = list(check_market(DeploymentLocator(chain), market))

        self.assertEqual(len(lines), 4)
        self.assertEqual(lines[0], "V3 USDC aToken: 60 ok")
        self.assertTrue(lines[1].startswith("V3 USDC vToken: error ("))
        self.assertEqual(lines[2], "V3 WETH aToken: 40 EARLIER THAN MARKET BLOCK")
        self.assertEqual(lines[3], "V3 WETH vToken: 70 ok")


if __name__ == "__main__":
    unittest.main()
