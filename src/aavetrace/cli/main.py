from __future__ import annotations

import argparse
import datetime as dt
import logging
import sys
import time
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Sequence, Tuple

from aavetrace.config import settings
from aavetrace.config.markets import AaveAsset, Market, get_a_token_label, get_market, rpc_url_for
from aavetrace.config.resolvers import (
    resolve_address,
    resolve_asset,
    resolve_market,
    resolve_token_type,
)
from aavetrace.core.dto import BlockRange, Token
from aavetrace.core.errors import ConfigError, TracerError
from aavetrace.core.models import SUPPLY, AddressTag, BalanceMap, FlowNode, FlowTree, RunConfig
from aavetrace.io.output_writer import (
    format_units,
    render_flow_tree,
    render_holders_table,
    write_flow_json,
    write_holders_json,
)
from aavetrace.ports.chain_data_port import ChainDataPort
from aavetrace.services.address_annotator import AddressAnnotator, mask_positions
from aavetrace.services.balance_ledger import HolderService
from aavetrace.services.deployment_locator import DeploymentLocator
from aavetrace.services.log_scanner import ChunkedLogScanner
from aavetrace.services.outflow_tracer import OutflowTracer
from aavetrace.services.reserve_catalog import ReserveCatalog

from aavetrace.adapters.chain.jsonrpc_chain_adapter import JsonRpcChainAdapter
from aavetrace.adapters.naming.ens_adapter import EnsNameAdapter

MAINNET_CHAIN_ID = 1


def _add_common(p: argparse.ArgumentParser) -> None:
    p.add_argument("--out", help="Also write JSON results to this folder")
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging")


def _add_market_opts(p: argparse.ArgumentParser, top_help: str) -> None:
    p.add_argument("-b", "--block-number", type=int, help="The block number snapshot to use")
    p.add_argument("-n", "--top", type=int, default=settings.TRACE_DEFAULT_TOP_N, help=top_help)
    p.add_argument("-p", "--progress-bar", action="store_true", help="Display progress while fetching")
    p.add_argument(
        "--no-interactive",
        dest="interactive",
        action="store_false",
        help="Disable interactive prompts; all arguments must be provided or the command fails",
    )


def _add_trace_opts(p: argparse.ArgumentParser) -> None:
    p.add_argument(
        "-t", "--threshold", type=str, default=str(settings.TRACE_DEFAULT_THRESHOLD),
        help="Prune recipients below this fraction of the root's total outflow",
    )
    p.add_argument(
        "-m", "--mask-unrelated", action="store_true",
        help="Hide Aave positions unrelated to the traced asset in address tags",
    )
    p.add_argument("--depth", type=int, choices=(1, 2), default=2, help="Levels of outflows to trace")
    p.add_argument("--no-tags", action="store_true", help="Skip address annotation (fewer RPC calls)")


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="aavetrace", description="Aave holder snapshots and borrower outflow tracing")
    sub = p.add_subparsers(dest="command", required=True)

    c = sub.add_parser("find-deployment-block", help="Binary-search the block a contract was deployed at")
    c.add_argument("address", help="Contract address")
    c.add_argument("--rpc-url", default=settings.RPC_MAINNET, help="JSON-RPC endpoint (default: $RPC_MAINNET)")
    _add_common(c)

    c = sub.add_parser("get-token-holders", help="Holders of any ERC20 at a block")
    c.add_argument("token_address")
    c.add_argument("token_name")
    c.add_argument("token_deployment_block", type=int)
    c.add_argument("-b", "--block-number", type=int, help="The block number from which to get the balance")
    c.add_argument("-n", "--top", type=int, default=settings.TRACE_DEFAULT_TOP_N, help="Number of holders to display")
    c.add_argument("-p", "--progress-bar", action="store_true", help="Display progress while fetching")
    c.add_argument("--decimals", type=int, default=18, help="Token decimals for display")
    c.add_argument("--rpc-url", default=settings.RPC_MAINNET, help="JSON-RPC endpoint (default: $RPC_MAINNET)")
    _add_common(c)

    c = sub.add_parser("explore-aave-users", help="Top suppliers or borrowers of an Aave asset")
    c.add_argument("market", nargs="?", help="Aave market name (e.g. AaveV3Ethereum)")
    c.add_argument("asset", nargs="?", help="Asset symbol (e.g. USDC)")
    c.add_argument("token_type", nargs="?", help='Position type: "supply" or "borrow"')
    _add_market_opts(c, "Number of top holders to display")
    _add_common(c)

    c = sub.add_parser("trace-borrower-outflows", help="Trace where one borrower sent the borrowed asset")
    c.add_argument("market", nargs="?", help="Aave market name (e.g. AaveV3Ethereum)")
    c.add_argument("asset", nargs="?", help="Asset symbol (e.g. USDC)")
    c.add_argument("address", nargs="?", help="Borrower address to trace outflows from")
    _add_market_opts(c, "Number of top recipients to keep per node")
    _add_trace_opts(c)
    _add_common(c)

    c = sub.add_parser("trace-all-borrowers", help="Trace outflows of the top borrowers of an asset")
    c.add_argument("market", nargs="?", help="Aave market name (e.g. AaveV3Ethereum)")
    c.add_argument("asset", nargs="?", help="Asset symbol (e.g. USDC)")
    _add_market_opts(c, "Number of top borrowers to trace")
    _add_trace_opts(c)
    _add_common(c)

    return p


def _make_progress_reporter(enabled: bool):
    start_time = time.time()
    last_print = 0.0
    is_tty = sys.stdout.isatty()

    def _ts() -> str:
        return dt.datetime.now().strftime("%H:%M:%S")

    def _print_line(message: str) -> None:
        if is_tty:
            sys.stdout.write("\r" + message.ljust(88))
            sys.stdout.flush()
        else:
            print(message)

    def _clear_line() -> None:
        if is_tty:
            sys.stdout.write("\r" + (" " * 88) + "\r")
            sys.stdout.flush()

    def progress(event: str, data: dict) -> None:
        nonlocal last_print
        now = time.time()
        if event == "error":
            _clear_line()
            print(f"[{_ts()}] Error: {data.get('message', 'Unknown error')}", file=sys.stderr)
            return
        if not enabled:
            return
        if event == "scan":
            done, total = data["completed"], data["total"]
            if done != total and (now - last_print < 0.2 or not is_tty and done % 50 != 0):
                return
            width = 30
            filled = width * done // max(total, 1)
            label = data.get("label", "Scanning")
            _print_line(f"{label} [{'#' * filled}{'.' * (width - filled)}] {done}/{total}")
            last_print = now
            return
        if event == "probe":
            print(
                f"  [{data['iteration']:>2}] block {data['block']} -> "
                f"{'deployed' if data['exists'] else 'not yet'}"
            )
            return
        if event == "done":
            _clear_line()
            print(f"[{_ts()}] Done in {time.time() - start_time:.1f}s")

    return progress


def _stdin_select(message: str, choices: Sequence[Tuple[str, Any]]) -> Any:
    print(message)
    for i, (title, _) in enumerate(choices, 1):
        print(f"  {i:>3}) {title}")
    while True:
        raw = input("> ").strip()
        if not raw:
            return None
        if raw.isdigit() and 1 <= int(raw) <= len(choices):
            return choices[int(raw) - 1][1]
        print(f"Enter a number between 1 and {len(choices)}")


def _parse_threshold(raw: str) -> Decimal:
    try:
        value = Decimal(raw)
    except InvalidOperation as e:
        raise ConfigError(f"Invalid threshold: {raw!r}") from e
    if value.is_nan() or value < 0 or value > 1:
        raise ConfigError(f"Threshold must be between 0 and 1, got {raw}")
    return value


def _parse_top(top: int) -> int:
    if top < 0:
        raise ConfigError(f"--top must be zero or more, got {top}")
    return top


def _run_config(args: argparse.Namespace) -> RunConfig:
    return RunConfig(
        market=getattr(args, "market", None),
        asset=getattr(args, "asset", None),
        token_type=getattr(args, "token_type", None),
        address=getattr(args, "address", None),
        block_number=getattr(args, "block_number", None),
        top=_parse_top(args.top),
        threshold=_parse_threshold(getattr(args, "threshold", str(settings.TRACE_DEFAULT_THRESHOLD))),
        progress=args.progress_bar,
        mask_unrelated=getattr(args, "mask_unrelated", False),
        interactive=args.interactive,
    )


# -------------------------
# Wiring
# -------------------------

@dataclass
class _Context:
    chain: ChainDataPort
    chain_id: int
    market: Market
    markets: List[Market]
    holders: HolderService
    tracer: OutflowTracer
    annotator: AddressAnnotator


def _make_chain(rpc_url: Optional[str]) -> ChainDataPort:
    if not rpc_url:
        raise ConfigError("Missing RPC URL. Pass --rpc-url or set RPC_MAINNET in your .env file.")
    return JsonRpcChainAdapter(rpc_url)


def _make_context(market: Market) -> _Context:
    rpc_url = rpc_url_for(market)
    chain = _make_chain(rpc_url)
    scanner = ChunkedLogScanner(chain)

    # full reserve lists for every market on this chain, for sinks and tags
    markets = ReserveCatalog(chain).hydrate_chain(market)
    market = get_market(market.name, markets) or market

    ens_url = rpc_url if market.chain_id == MAINNET_CHAIN_ID else settings.RPC_MAINNET
    ens = EnsNameAdapter(ens_url) if ens_url else None

    return _Context(
        chain=chain,
        chain_id=market.chain_id,
        market=market,
        markets=markets,
        holders=HolderService(chain, scanner),
        tracer=OutflowTracer(
            scanner,
            is_sink=lambda a: get_a_token_label(a, market.chain_id, markets) is not None,
        ),
        annotator=AddressAnnotator(chain, market.chain_id, ens=ens, markets=markets),
    )


def _scan_progress(progress, label: str):
    return lambda done, total: progress("scan", {"completed": done, "total": total, "label": label})


def _end_block(ctx_chain: ChainDataPort, block_number: Optional[int]) -> int:
    return ctx_chain.current_height() if block_number is None else block_number


# -------------------------
# Commands
# -------------------------

def cmd_find_deployment_block(args: argparse.Namespace, progress) -> int:
    chain = _make_chain(args.rpc_url)
    print(f"\nFinding deployment block for {args.address}\n")
    block = DeploymentLocator(chain).find(
        args.address,
        on_progress=lambda i, b, e: progress("probe", {"iteration": i, "block": b, "exists": e}),
    )
    print(f"\nDeployment block: {block}")
    return 0


def cmd_get_token_holders(args: argparse.Namespace, progress) -> int:
    top = _parse_top(args.top)
    chain = _make_chain(args.rpc_url)
    token = Token(args.token_address.lower(), args.token_name, args.token_deployment_block)
    end_block = _end_block(chain, args.block_number)

    print(f"\nFetching holders of {token.name} at block {end_block}...\n")
    bm = HolderService(chain).get_token_holders(token, end_block, _scan_progress(progress, "Transfers"))
    progress("done", {})
    _print_holders(bm, top, args.decimals, f"Balance ({token.name})")

    if args.out:
        print(f"Wrote: {write_holders_json(bm, args.out, token.address, end_block)}")
    return 0


def cmd_explore_aave_users(args: argparse.Namespace, progress) -> int:
    cfg = _run_config(args)
    ctx = _make_context(resolve_market(cfg.market, cfg.interactive, _stdin_select))
    market = ctx.market
    asset = resolve_asset(market, cfg.asset, cfg.interactive, _stdin_select)
    token_type = resolve_token_type(cfg.token_type, cfg.interactive, _stdin_select)

    end_block = _end_block(ctx.chain, cfg.block_number)
    supply = token_type == SUPPLY
    token = Token(
        address=asset.a_token if supply else asset.v_token,
        name=f"{market.name}_{asset.symbol}_{'aToken' if supply else 'vToken'}",
        deployment_block=market.deployment_block,
    )

    print(
        f"\nFetching {'suppliers' if supply else 'borrowers'} for {asset.symbol} "
        f"on {market.name} at block {end_block}...\n"
    )
    bm = ctx.holders.get_token_holders(token, end_block, _scan_progress(progress, "Transfers"))
    progress("done", {})
    _print_holders(bm, cfg.top, asset.decimals, f"{'Supplied' if supply else 'Borrowed'} ({asset.symbol})")

    if args.out:
        print(f"Wrote: {write_holders_json(bm, args.out, token.address, end_block)}")
    return 0


def cmd_trace_borrower_outflows(args: argparse.Namespace, progress) -> int:
    cfg = _run_config(args)
    ctx = _make_context(resolve_market(cfg.market, cfg.interactive, _stdin_select))
    market = ctx.market
    asset = resolve_asset(market, cfg.asset, cfg.interactive, _stdin_select)
    end_block = _end_block(ctx.chain, cfg.block_number)

    borrowers = _fetch_borrowers(ctx, market, asset, end_block, progress)
    if not borrowers.holders():
        print("No borrowers found.")
        return 0

    address = resolve_address(
        borrowers.holders(),
        cfg.address,
        cfg.interactive,
        _stdin_select,
        describe=lambda b: f"Borrowed: {format_units(b, asset.decimals)} {asset.symbol}",
    )
    _trace_and_print(args, cfg, ctx, market, asset, address, end_block, progress)
    return 0


def cmd_trace_all_borrowers(args: argparse.Namespace, progress) -> int:
    cfg = _run_config(args)
    ctx = _make_context(resolve_market(cfg.market, cfg.interactive, _stdin_select))
    market = ctx.market
    asset = resolve_asset(market, cfg.asset, cfg.interactive, _stdin_select)
    end_block = _end_block(ctx.chain, cfg.block_number)

    borrowers = _fetch_borrowers(ctx, market, asset, end_block, progress)
    top = borrowers.top(cfg.top)
    if not top:
        print("No borrowers found.")
        return 0

    print(f"\nTracing outflows for top {len(top)} borrowers of {asset.symbol} on {market.name}...\n")
    for address, debt in top:
        print("\n" + "=" * 80)
        print(f"Borrower: {address}  [debt: {format_units(debt, asset.decimals)} {asset.symbol}]")
        _trace_and_print(args, cfg, ctx, market, asset, address, end_block, progress)
    return 0


def _fetch_borrowers(ctx: _Context, market: Market, asset: AaveAsset, end_block: int, progress) -> BalanceMap:
    v_token = Token(
        address=asset.v_token,
        name=f"{market.name}_{asset.symbol}_vToken",
        deployment_block=market.deployment_block,
    )
    print(f"\nFetching borrowers for {asset.symbol} on {market.name} at block {end_block}...\n")
    bm = ctx.holders.get_token_holders(v_token, end_block, _scan_progress(progress, "Borrowers"))
    progress("done", {})
    return bm


def _trace_and_print(
    args: argparse.Namespace,
    cfg: RunConfig,
    ctx: _Context,
    market: Market,
    asset: AaveAsset,
    address: str,
    end_block: int,
    progress,
) -> None:
    block_range = BlockRange(market.deployment_block, end_block)
    print(
        f"\nFetching {asset.symbol} outflows from {address} "
        f"(block {block_range.start} -> {block_range.end})...\n"
    )

    if args.depth == 1:
        totals = ctx.tracer.recipient_totals(
            address, asset.underlying, block_range, on_progress=_scan_progress(progress, "Outflows"),
        )
        progress("done", {})
        if not totals:
            print("No outgoing transfers found for this address.")
            return
        rows = sorted(totals.items(), key=lambda x: (-x[1], x[0]))[:cfg.top]
        print(f"\nTop {cfg.top} recipients of {asset.symbol} from {address}:\n")
        print(render_holders_table(rows, asset.decimals, f"Total Sent ({asset.symbol})"))
        return

    tree = ctx.tracer.trace(
        address,
        asset.underlying,
        block_range,
        top_n=cfg.top,
        threshold=cfg.threshold,
        on_progress=lambda level, done, total: progress(
            "scan", {"completed": done, "total": total, "label": f"Level {level}"}
        ),
    )
    progress("done", {})

    tags = None if args.no_tags else _annotate(ctx, tree, asset.symbol if cfg.mask_unrelated else None)
    print(render_flow_tree(tree, asset.decimals, asset.symbol, tags))

    if args.out:
        print(f"Wrote: {write_flow_json(tree, args.out, tags, filename=f'flow_{address}.json')}")


def _annotate(ctx: _Context, tree: FlowTree, mask_asset: Optional[str]) -> Dict[str, AddressTag]:
    addresses: List[str] = []

    def collect(n: FlowNode) -> None:
        addresses.append(n.address)
        for c in n.children:
            collect(c)

    collect(tree.root)
    tags = ctx.annotator.annotate_many(addresses)
    return {a: mask_positions(t, mask_asset) for a, t in tags.items()}


def _print_holders(bm: BalanceMap, top: int, decimals: int, label: str) -> None:
    rows = bm.top(top)
    if not rows:
        print("No holders found.")
        return
    print(render_holders_table(rows, decimals, label))
    if bm.warnings:
        print(
            f"\nWarning: {len(bm.warnings)} balance underflow(s) were clamped to zero; "
            "the scanned history may be incomplete.",
            file=sys.stderr,
        )


COMMANDS = {
    "find-deployment-block": cmd_find_deployment_block,
    "get-token-holders": cmd_get_token_holders,
    "explore-aave-users": cmd_explore_aave_users,
    "trace-borrower-outflows": cmd_trace_borrower_outflows,
    "trace-all-borrowers": cmd_trace_all_borrowers,
}


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_arg_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    progress = _make_progress_reporter(getattr(args, "progress_bar", True))

    try:
        return COMMANDS[args.command](args, progress)
    except ConfigError as exc:
        progress("error", {"message": str(exc)})
        return 2
    except TracerError as exc:
        progress("error", {"message": f"{exc.__class__.__name__}: {exc}"})
        return 1
    except KeyboardInterrupt:
        progress("error", {"message": "Interrupted"})
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
