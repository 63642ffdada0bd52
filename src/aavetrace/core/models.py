from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from fractions import Fraction
from typing import Dict, List, Optional, Tuple

from aavetrace.core.dto import BlockRange
from aavetrace.core.errors import InconsistentLedgerWarning



# Configuration model

SUPPLY = "supply"
BORROW = "borrow"
TOKEN_TYPES = (SUPPLY, BORROW)


@dataclass(frozen=True)
class RunConfig:
    """
    User input / run configuration. Any field left as None is resolved
    interactively, or rejected when interactive is off.
    """

    market: Optional[str] = None
    asset: Optional[str] = None
    token_type: Optional[str] = None
    address: Optional[str] = None
    block_number: Optional[int] = None
    top: int = 10
    threshold: Decimal = Decimal("0.10")
    progress: bool = False
    mask_unrelated: bool = False
    interactive: bool = True



# Holder snapshot

@dataclass
class BalanceMap:

    balances: Dict[str, int] = field(default_factory=dict)
    warnings: List[InconsistentLedgerWarning] = field(default_factory=list)

    def holders(self) -> Dict[str, int]:
        return {a: b for a, b in self.balances.items() if b > 0}

    def top(self, n: int) -> List[Tuple[str, int]]:
        items = sorted(self.holders().items(), key=lambda x: (-x[1], x[0]))
        return items[:n] if n > 0 else items

    def __len__(self) -> int:
        return len(self.holders())



# Flow tree

@dataclass
class PrunedSummary:

    count: int = 0
    amount: int = 0


@dataclass
class FlowNode:

    address: str
    amount: int                      # received from the parent
    share: Fraction = Fraction(0)    # amount / root total
    is_sink: bool = False

    # set only when the node was expanded
    outflow_total: Optional[int] = None
    children: List["FlowNode"] = field(default_factory=list)
    pruned: Optional[PrunedSummary] = None

    @property
    def expanded(self) -> bool:
        return self.outflow_total is not None


@dataclass
class FlowTree:

    root: FlowNode
    token_address: str
    block_range: BlockRange
    root_total: int
    threshold: Decimal
    top_n: int



# Address tags (display only)

@dataclass
class AavePosition:

    symbol: str
    balance: int
    decimals: int


@dataclass
class AddressTag:

    is_contract: Optional[bool] = None      # None = unknown
    ens: Optional[str] = None
    a_token_label: Optional[str] = None
    supplying: List[AavePosition] = field(default_factory=list)
    borrowing: List[AavePosition] = field(default_factory=list)
