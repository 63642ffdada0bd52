from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from aavetrace.core.errors import ConfigError


@dataclass(frozen=True)
class AaveAsset:
    symbol: str
    decimals: int
    underlying: str
    a_token: str
    v_token: str


@dataclass(frozen=True)
class Market:
    name: str
    chain_id: int
    chain_name: str
    deployment_block: int       # first block with code at the market's Pool
    rpc_env_var: str
    assets: Dict[str, AaveAsset] = field(default_factory=dict)
    version: int = 3
    pool: Optional[str] = None

    @property
    def pool_env_var(self) -> str:
        return f"AAVE_POOL_{self.name.upper()}"


def _assets(*items: AaveAsset) -> Dict[str, AaveAsset]:
    return {a.symbol: a for a in items}


def _market(name: str, chain_id: int, chain_name: str, block: int, rpc: str, pool: Optional[str],
            version: int = 3, assets: Optional[Dict[str, AaveAsset]] = None) -> Market:
    return Market(name, chain_id, chain_name, block, rpc, assets or {}, version, pool)


V3_POOL_L2 = "0x794a61358d6845594f94dc1db02a252b5b4814ad"


# Addresses lowercased. Deployment blocks come from find-deployment-block
# run against each market's Pool contract. Assets listed here are a seed;
# the full reserve list is read from the Pool at startup (see ReserveCatalog).
MARKETS: List[Market] = [
    # Ethereum
    Market(
        name="AaveV3Ethereum",
        chain_id=1,
        chain_name="Ethereum",
        deployment_block=16291127,
        rpc_env_var="RPC_MAINNET",
        pool="0x87870bca3f3fd6335c3f4ce8392d69350b4fa4e2",
        assets=_assets(
            AaveAsset(
                symbol="USDC",
                decimals=6,
                underlying="0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48",
                a_token="0x98c23e9d8f34fefb1b7bd6a91b7ff122f4e16f5c",
                v_token="0x72e95b8931767c79ba4eee721354d6e99a61d004",
            ),
            AaveAsset(
                symbol="USDT",
                decimals=6,
                underlying="0xdac17f958d2ee523a2206206994597c13d831ec7",
                a_token="0x23878914efe38d27c4d67ab83ed1b93a74d4086a",
                v_token="0x6df1c1e379bc5a00a7b4c6e67a203333772f45a8",
            ),
            AaveAsset(
                symbol="DAI",
                decimals=18,
                underlying="0x6b175474e89094c44da98b954eedeac495271d0f",
                a_token="0x018008bfb33d285247a21d44e50697654f754e63",
                v_token="0xcf8d0c70c850859266f5c338b38f9d663181c314",
            ),
            AaveAsset(
                symbol="WETH",
                decimals=18,
                underlying="0xc02aaa39b223fe8d0a0e5c4f27ead9083c756cc2",
                a_token="0x4d5f47fa6a74757f35c14fd3a6ef8e3c9bc514e8",
                v_token="0xea51d7853eefb32b6ee06b1c12e6dcca88be0ffe",
            ),
        ),
    ),
    Market(
        name="AaveV2Ethereum",
        chain_id=1,
        chain_name="Ethereum",
        deployment_block=11362579,
        rpc_env_var="RPC_MAINNET",
        version=2,
        pool="0x7d2768de32b0b80b7a3454c06bdac94a69ddc7a9",
        assets=_assets(
            AaveAsset(
                symbol="USDC",
                decimals=6,
                underlying="0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48",
                a_token="0xbcca60bb61934080951369a648fb03df4f96263c",
                v_token="0x619beb58998ed2278e08620f97007e1116d5d25b",
            ),
            AaveAsset(
                symbol="WETH",
                decimals=18,
                underlying="0xc02aaa39b223fe8d0a0e5c4f27ead9083c756cc2",
                a_token="0x030ba81f1c18d280636f32af80b9aad02cf0854e",
                v_token="0xf63b34710400cad3e044cffdcab00a0f32e33ecf",
            ),
        ),
    ),
    _market("AaveV3EthereumLido", 1, "Ethereum", 20275923, "RPC_MAINNET", "0x4e033931ad43597d96d6bcc25c280717730b58b1"),
    _market("AaveV3EthereumEtherFi", 1, "Ethereum", 19784479, "RPC_MAINNET", "0x0aa97c284e98396202b6a04024f5e2c65026f3c0"),
    _market("AaveV2EthereumAMM", 1, "Ethereum", 11759859, "RPC_MAINNET", "0x7937d4799803fbbe595ed57278bc4ca21f3bffcb", version=2),
    # Polygon
    _market("AaveV3Polygon", 137, "Polygon", 25826125, "RPC_POLYGON", V3_POOL_L2),
    _market("AaveV2Polygon", 137, "Polygon", 12686921, "RPC_POLYGON", "0x8dff5e27ea6b7ac08ebfdf9eb090f32ee9a30fcf", version=2),
    # L2s and other chains
    Market(
        name="AaveV3Arbitrum",
        chain_id=42161,
        chain_name="Arbitrum One",
        deployment_block=7742429,
        rpc_env_var="RPC_ARBITRUM",
        pool=V3_POOL_L2,
        assets=_assets(
            AaveAsset(
                symbol="USDC",
                decimals=6,
                underlying="0xaf88d065e77c8cc2239327c5edb3a432268e5831",
                a_token="0x724dc807b04555b71ed48a6896b6f41593b8c637",
                v_token="0xf611aeb5013fd2c0511c9cd55c7dc5c1140741a6",
            ),
            AaveAsset(
                symbol="WETH",
                decimals=18,
                underlying="0x82af49447d8a07e3bd95bd0d56f35241523fbab1",
                a_token="0xe50fa9b3c56ffb159cb0fca61f5c9d750e8128c8",
                v_token="0x0c84331e39d6658cd6e6b9ba04736cc4c4734351",
            ),
        ),
    ),
    Market(
        name="AaveV3Optimism",
        chain_id=10,
        chain_name="OP Mainnet",
        deployment_block=4188962,
        rpc_env_var="RPC_OPTIMISM",
        pool=V3_POOL_L2,
        assets=_assets(
            AaveAsset(
                symbol="USDC.e",
                decimals=6,
                underlying="0x7f5c764cbc14f9669b88837ca1490cca17c31607",
                a_token="0x625e7708f30ca75bfd92586e17077590c60eb4cd",
                v_token="0xfccf3cabbe80101232d343252614b6a3ee81c989",
            ),
            AaveAsset(
                symbol="DAI",
                decimals=18,
                underlying="0xda10009cbd5d07dd0cecc66161fc93d7c9000da1",
                a_token="0x82e64f49ed5ec1bc6e43dad4fc8af9bb3a2312ee",
                v_token="0x8619d80fb0141ba7f184cbf22fd724116d9f7ffc",
            ),
        ),
    ),
    _market("AaveV3Avalanche", 43114, "Avalanche", 11970506, "RPC_AVALANCHE", V3_POOL_L2),
    _market("AaveV2Avalanche", 43114, "Avalanche", 4607723, "RPC_AVALANCHE", "0x4f01aed16d97e3ab5ab2b501154dc9bb0f1a5a2c", version=2),
    _market("AaveV3Base", 8453, "Base", 2357129, "RPC_BASE", "0xa238dd80c259a72e81d7e4664a9801593f98d1c5"),
    _market("AaveV3BNB", 56, "BNB Smart Chain", 26971649, "RPC_BNB", "0x6807dc923806fe8fd134338eabca509979a7e0cb"),
    _market("AaveV3Gnosis", 100, "Gnosis", 27979955, "RPC_GNOSIS", "0xb50201558b00496a145fe76f7424749556e326d8"),
    _market("AaveV3Scroll", 534352, "Scroll", 1722312, "RPC_SCROLL", "0x11fcfe756c05ad438e312a7fd934381537d3cffe"),
    _market("AaveV3Metis", 1088, "Metis", 8022773, "RPC_METIS", "0x90df02551bb792286e8d4f13e0e357b4bf1d6a57"),
    _market("AaveV3Linea", 59144, "Linea", 6627897, "RPC_LINEA", "0xc47b8c00b0f69a36fa203ffeac0334874574a8ac"),
    _market("AaveV3ZkSync", 324, "ZKsync Era", 31902848, "RPC_ZKSYNC", "0x78e30497a3c7527d953c6b1e3541b021a98ac43c"),
    _market("AaveV3Celo", 42220, "Celo", 24347428, "RPC_CELO", "0x3e59a31363e2ad014dcbc521c4a0d5757d9f3402"),
    _market("AaveV3Mantle", 5000, "Mantle", 90172818, "RPC_MANTLE", "0x458f293454fe0d67ec0655f3672301301dd51422"),
    # Pool not pinned yet; set AAVE_POOL_AAVEV3MEGAETH
    _market("AaveV3MegaEth", 4326, "MegaETH", 6657953, "RPC_MEGAETH", None),
]


def get_market(name: str, markets: Optional[List[Market]] = None) -> Optional[Market]:
    for m in markets if markets is not None else MARKETS:
        if m.name == name:
            return m
    return None


def markets_on_chain(chain_id: int, markets: Optional[List[Market]] = None) -> List[Market]:
    return [m for m in (markets if markets is not None else MARKETS) if m.chain_id == chain_id]


def get_a_token_label(address: str, chain_id: int, markets: Optional[List[Market]] = None) -> Optional[str]:
    """Label like "aUSDC (AaveV3Ethereum)" when the address is a known aToken. No RPC."""
    addr = address.lower()
    for m in markets_on_chain(chain_id, markets):
        for symbol, asset in m.assets.items():
            if asset.a_token == addr:
                return f"a{symbol} ({m.name})"
    return None


def rpc_url_for(market: Market) -> str:
    url = os.environ.get(market.rpc_env_var)
    if not url:
        raise ConfigError(
            f"Missing RPC URL for {market.name}. "
            f"Set the {market.rpc_env_var} environment variable in your .env file."
        )
    return url


def pool_address_for(market: Market) -> str:
    """Pool address, overridable per market via AAVE_POOL_<MARKET NAME>."""
    pool = os.environ.get(market.pool_env_var) or market.pool
    if not pool:
        raise ConfigError(
            f"No Pool address known for {market.name}. "
            f"Set the {market.pool_env_var} environment variable in your .env file."
        )
    return pool.lower()
