from __future__ import annotations

import logging
from typing import Optional

from web3 import Web3

from aavetrace.config import settings

logger = logging.getLogger(__name__)


class EnsNameAdapter:
    """Reverse ENS lookups against a mainnet node. Failures read as "no name"."""

    def __init__(self, rpc_url: Optional[str] = None, timeout_sec: int = settings.RPC_TIMEOUT_SEC) -> None:
        url = rpc_url or settings.RPC_MAINNET
        self._w3 = (
            Web3(Web3.HTTPProvider(url, request_kwargs={"timeout": timeout_sec}))
            if url
            else None
        )

    @property
    def available(self) -> bool:
        return self._w3 is not None

    def reverse_name(self, address: str) -> Optional[str]:
        if self._w3 is None:
            return None
        try:
            return self._w3.ens.name(Web3.to_checksum_address(address))
        except Exception as e:
            logger.debug("ENS reverse lookup failed for %s: %s", address, e)
            return None
