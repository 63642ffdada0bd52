from __future__ import annotations

from fractions import Fraction
from typing import Any, Dict, Optional

from aavetrace.core.models import AddressTag, BalanceMap, FlowNode, FlowTree


def _int_to_str(x: int) -> str:
    # keep as string for JSON precision safety
    return str(int(x))


def _share_to_str(share: Fraction, places: int = 6) -> str:
    # fixed-point rendering of an exact fraction, truncated
    scaled = share.numerator * 10**places // share.denominator
    whole, frac = divmod(scaled, 10**places)
    return f"{whole}.{frac:0{places}d}"


def balance_map_to_dict(bm: BalanceMap, token_address: str, block_number: int) -> Dict[str, Any]:
    return {
        "token_address": token_address,
        "block_number": block_number,
        "holders": [
            {"address": a, "balance": _int_to_str(b)}
            for a, b in bm.top(0)
        ],
        "warnings": [
            {
                "address": w.address,
                "block_number": w.block_number,
                "shortfall": _int_to_str(w.shortfall),
            }
            for w in bm.warnings
        ],
    }


def tag_to_dict(tag: Optional[AddressTag]) -> Optional[Dict[str, Any]]:
    if tag is None:
        return None
    return {
        "is_contract": tag.is_contract,
        "ens": tag.ens,
        "a_token_label": tag.a_token_label,
        "supplying": [{"symbol": p.symbol, "balance": _int_to_str(p.balance)} for p in tag.supplying],
        "borrowing": [{"symbol": p.symbol, "balance": _int_to_str(p.balance)} for p in tag.borrowing],
    }


def flow_node_to_dict(node: FlowNode, tags: Optional[Dict[str, AddressTag]] = None) -> Dict[str, Any]:
    d: Dict[str, Any] = {
        "address": node.address,
        "amount": _int_to_str(node.amount),
        "share": _share_to_str(node.share),
        "is_sink": node.is_sink,
    }
    if tags is not None and node.address in tags:
        d["tag"] = tag_to_dict(tags[node.address])
    if node.expanded:
        d["outflow_total"] = _int_to_str(node.outflow_total or 0)
        d["children"] = [flow_node_to_dict(c, tags) for c in node.children]
        d["pruned"] = {
            "count": node.pruned.count if node.pruned else 0,
            "amount": _int_to_str(node.pruned.amount if node.pruned else 0),
        }
    return d


def flow_tree_to_dict(tree: FlowTree, tags: Optional[Dict[str, AddressTag]] = None) -> Dict[str, Any]:
    return {
        "token_address": tree.token_address,
        "from_block": tree.block_range.start,
        "to_block": tree.block_range.end,
        "root_total": _int_to_str(tree.root_total),
        "threshold": format(tree.threshold, "f"),
        "top_n": tree.top_n,
        "root": flow_node_to_dict(tree.root, tags),
    }
