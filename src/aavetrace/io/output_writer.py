from __future__ import annotations

import json
from decimal import Decimal
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from aavetrace.core.models import AavePosition, AddressTag, BalanceMap, FlowNode, FlowTree
from aavetrace.io.schemas import balance_map_to_dict, flow_tree_to_dict


def _write_json(payload: dict, out_dir: str, filename: str) -> str:
    p = Path(out_dir)
    p.mkdir(parents=True, exist_ok=True)

    out_path = p / filename
    with out_path.open("w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2)

    return str(out_path)


def write_holders_json(
    bm: BalanceMap,
    out_dir: str,
    token_address: str,
    block_number: int,
    filename: str = "holders.json",
) -> str:
    return _write_json(balance_map_to_dict(bm, token_address, block_number), out_dir, filename)


def write_flow_json(
    tree: FlowTree,
    out_dir: str,
    tags: Optional[Dict[str, AddressTag]] = None,
    filename: str = "flow.json",
) -> str:
    return _write_json(flow_tree_to_dict(tree, tags), out_dir, filename)


def format_units(value: int, decimals: int) -> str:
    """Raw token units -> human string, exact (no float)."""
    if decimals <= 0:
        return str(value)
    whole, frac = divmod(int(value), 10**decimals)
    if not frac:
        return str(whole)
    return f"{whole}.{str(frac).rjust(decimals, '0').rstrip('0')}"


def format_percent(share) -> str:
    return f"{Decimal(share.numerator) / Decimal(share.denominator) * 100:.1f}%"


def _fmt_positions(prefix: str, positions: List[AavePosition]) -> str:
    return ", ".join(
        f"{prefix}{p.symbol} (current position: {p.balance // 10**p.decimals})"
        for p in positions
    )


def format_tag(tag: Optional[AddressTag]) -> str:
    if tag is None:
        return ""
    if tag.a_token_label:
        return f"  [{tag.a_token_label}]"

    parts: List[str] = []
    if tag.ens:
        parts.append(f"ENS: {tag.ens}")
    if tag.supplying or tag.borrowing:
        supply = _fmt_positions("a", tag.supplying)
        borrow = _fmt_positions("v", tag.borrowing)
        if supply and borrow:
            parts.append(f"Aave: {supply} | {borrow}")
        else:
            parts.append(f"Aave: {supply}" if supply else f"Aave: | {borrow}")
    elif tag.is_contract:
        parts.append("Contract")
    return f"  [{'] ['.join(parts)}]" if parts else ""


def render_holders_table(rows: List[Tuple[str, int]], decimals: int, value_label: str) -> str:
    head = ("Rank", "Address", value_label)
    body = [(str(i + 1), addr, format_units(bal, decimals)) for i, (addr, bal) in enumerate(rows)]
    widths = [max(len(r[c]) for r in [head] + body) for c in range(3)]

    def line(cells) -> str:
        return "  ".join(cell.ljust(w) for cell, w in zip(cells, widths)).rstrip()

    out = [line(head), line("-" * w for w in widths)]
    out.extend(line(r) for r in body)
    return "\n".join(out)


def render_flow_tree(
    tree: FlowTree,
    decimals: int,
    symbol: str,
    tags: Optional[Dict[str, AddressTag]] = None,
) -> str:
    """
    Two-level text tree. Percentages are of the root total at every level.
    """
    tags = tags or {}
    lines = [
        f"{tree.root.address}  sent {format_units(tree.root_total, decimals)} {symbol}"
        f"{format_tag(tags.get(tree.root.address))}"
    ]

    def node_line(n: FlowNode) -> str:
        sink = "  (sink)" if n.is_sink else ""
        return (
            f"{n.address}  {format_units(n.amount, decimals)} {symbol} "
            f"({format_percent(n.share)}){sink}{format_tag(tags.get(n.address))}"
        )

    def pruned_line(node: FlowNode) -> Optional[str]:
        if node.pruned is None or node.pruned.count == 0:
            return None
        return (
            f"... {node.pruned.count} other recipient(s)  "
            f"{format_units(node.pruned.amount, decimals)} {symbol}"
        )

    def walk(node: FlowNode, indent: str) -> None:
        items: List[Tuple[str, Optional[FlowNode]]] = [(node_line(c), c) for c in node.children]
        tail = pruned_line(node)
        if tail:
            items.append((tail, None))
        for i, (text, child) in enumerate(items):
            last = i == len(items) - 1
            lines.append(f"{indent}{'└── ' if last else '├── '}{text}")
            if child is not None and child.expanded and (child.children or child.pruned and child.pruned.count):
                walk(child, indent + ("    " if last else "│   "))

    walk(tree.root, "")
    if tree.root_total == 0:
        lines.append("No outgoing transfers found for this address.")
    return "\n".join(lines)
