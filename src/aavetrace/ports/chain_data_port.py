from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Optional, Sequence
from aavetrace.core.dto import CallResult, ContractCall, RawLog

class ChainDataPort(ABC):
    """
    Abstract Class for the node facts the engines need. The only network boundary.
    """

    # --- Blocks ---

    @abstractmethod
    def current_height(self) -> int:
        raise NotImplementedError

    # --- Bytecode ---

    @abstractmethod
    def code_exists_at(self, address: str, block: Optional[int] = None) -> bool:
        """True iff the address has non-empty bytecode at `block` (None = latest)."""
        raise NotImplementedError

    # --- Event logs ---

    @abstractmethod
    def get_logs(
        self,
        address: str,
        topics: Sequence[Optional[str]],
        start_block: int,
        end_block: int,
    ) -> List[RawLog]:
        """Raises NetworkError, or RangeTooLargeError when the provider refuses the range."""
        raise NotImplementedError

    # --- Read-only calls ---

    @abstractmethod
    def batch_call(self, calls: Sequence[ContractCall], block: Optional[int] = None) -> List[CallResult]:
        """One result per call, in order. Never raises for a failed entry."""
        raise NotImplementedError
