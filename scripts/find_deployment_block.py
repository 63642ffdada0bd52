from __future__ import annotations

import argparse
from aavetrace.adapters.chain.jsonrpc_chain_adapter import JsonRpcChainAdapter
from aavetrace.config import settings
from aavetrace.services.deployment_locator import DeploymentLocator


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("address", help="Contract address")
    parser.add_argument("--rpc-url", default=settings.RPC_MAINNET, help="JSON-RPC endpoint")
    args = parser.parse_args()
    if not args.rpc_url:
        parser.error("--rpc-url is required when RPC_MAINNET is not set")
    block = DeploymentLocator(JsonRpcChainAdapter(args.rpc_url)).find(args.address)
    print(f"Deployment block: {block}")


if __name__ == "__main__":
    main()
