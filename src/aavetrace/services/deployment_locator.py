from __future__ import annotations

import logging
from typing import Callable, Optional

from aavetrace.core.errors import NotDeployedError
from aavetrace.ports.chain_data_port import ChainDataPort

logger = logging.getLogger(__name__)

# on_progress(iteration, block, exists)
ProbeCallback = Callable[[int, int, bool], None]


class DeploymentLocator:
    """
    Finds the first block at which a contract has bytecode.

    Bytecode presence is monotonic in block height for contracts that were
    never self-destructed, so a binary search over [0, current height] needs
    at most ceil(log2(H + 1)) probes after the initial height check.
    """

    def __init__(self, chain: ChainDataPort) -> None:
        self.chain = chain

    def find(self, address: str, on_progress: Optional[ProbeCallback] = None) -> int:
        height = self.chain.current_height()

        if not self.chain.code_exists_at(address, height):
            raise NotDeployedError(
                f"Contract {address} has no code at block {height}. Wrong address or chain?"
            )

        # code absent below lo, present at hi and above
        lo, hi = 0, height
        iteration = 0
        logger.info("Binary searching deployment of %s over [0, %d]", address, height)

        while lo < hi:
            mid = (lo + hi) // 2
            iteration += 1
            exists = self.chain.code_exists_at(address, mid)
            if on_progress is not None:
                on_progress(iteration, mid, exists)
            logger.debug("probe %d: block %d -> %s", iteration, mid, "deployed" if exists else "absent")

            if exists:
                hi = mid
            else:
                lo = mid + 1

        logger.info("%s deployed at block %d (%d probes)", address, lo, iteration)
        return lo
