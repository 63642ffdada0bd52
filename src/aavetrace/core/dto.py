from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterator, List, Optional, Tuple

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
UINT256_MAX = 2**256 - 1


@dataclass(frozen=True)
class Token:
    address: str
    name: str
    deployment_block: int


@dataclass(frozen=True)
class BlockRange:
    start: int
    end: int          # inclusive

    def __post_init__(self) -> None:
        if self.start < 0 or self.end < 0:
            raise ValueError(f"Negative block in range [{self.start}, {self.end}]")
        if self.start > self.end:
            raise ValueError(f"Invalid block range: {self.start} > {self.end}")

    @property
    def size(self) -> int:
        return self.end - self.start + 1

    def split(self, chunk_size: int) -> List["BlockRange"]:
        if chunk_size <= 0:
            raise ValueError("chunk_size must be > 0")
        out: List[BlockRange] = []
        lo = self.start
        while lo <= self.end:
            hi = min(self.end, lo + chunk_size - 1)
            out.append(BlockRange(lo, hi))
            lo = hi + 1
        return out

    def halves(self) -> Tuple["BlockRange", "BlockRange"]:
        if self.size < 2:
            raise ValueError("A single-block range cannot be halved")
        mid = self.start + (self.end - self.start) // 2
        return BlockRange(self.start, mid), BlockRange(mid + 1, self.end)

    def __iter__(self) -> Iterator[int]:
        return iter(range(self.start, self.end + 1))


@dataclass(frozen=True)
class RawLog:
    address: str
    topics: Tuple[str, ...]
    data: str
    block_number: int
    log_index: int = 0
    tx_hash: str = ""


@dataclass(frozen=True)
class TransferEvent:
    from_address: str       # ZERO_ADDRESS for mints
    to_address: str         # ZERO_ADDRESS for burns
    value: int              # raw token units, uint256
    block_number: int
    log_index: int = 0
    tx_hash: str = ""

    @property
    def is_mint(self) -> bool:
        return self.from_address == ZERO_ADDRESS

    @property
    def is_burn(self) -> bool:
        return self.to_address == ZERO_ADDRESS


@dataclass(frozen=True)
class ContractCall:
    contract: str
    signature: str                      # e.g. "balanceOf(address)"
    args: Tuple[Any, ...] = ()
    output_types: Tuple[str, ...] = ("uint256",)


@dataclass(frozen=True)
class CallResult:
    success: bool
    result: Any = None
    error: Optional[str] = None


def address_topic(address: str) -> str:
    """Left-pad an address to a 32-byte indexed topic."""
    return "0x" + address.lower()[2:].rjust(64, "0")
