from __future__ import annotations

import itertools
import logging
import re
from typing import Any, Dict, List, Optional, Sequence

import requests
from eth_abi import decode, encode
from web3 import Web3

from aavetrace.config.settings import (
    RPC_BATCH_SIZE,
    RPC_MAX_RETRIES,
    RPC_REQUESTS_PER_SEC,
    RPC_TIMEOUT_SEC,
)

from aavetrace.adapters.chain.rate_limiter import SimpleRateLimiter, backoff_sleep
from aavetrace.core.errors import DataSourceError, NetworkError, RangeTooLargeError, RateLimitError
from aavetrace.ports.chain_data_port import ChainDataPort
from aavetrace.core.dto import CallResult, ContractCall, RawLog

logger = logging.getLogger(__name__)

# Substrings providers use when a getLogs range or result set is over their cap
RANGE_ERROR_HINTS = (
    "query returned more than",
    "block range",
    "range is too large",
    "range too large",
    "too many results",
    "log response size exceeded",
    "query exceeds max results",
    "exceed maximum block range",
)

# Throttling and quota replies. Infura reuses -32005 for these.
RATE_LIMIT_HINTS = (
    "ratelimit",
    "rate limit",
    "too many requests",
    "capacity",
    "compute units",
    "daily request count",
    "quota",
)
RATE_LIMIT_CODES = {-32005, 429}
_RATE_WORD = re.compile(r"\brate\b")


def _is_rate_limited(lowered: str) -> bool:
    if any(h in lowered for h in RATE_LIMIT_HINTS):
        return True
    return bool(_RATE_WORD.search(lowered)) and ("limit" in lowered or "exceeded" in lowered)


def _is_range_error(lowered: str) -> bool:
    return any(h in lowered for h in RANGE_ERROR_HINTS)


def _hex_block(block: Optional[int]) -> str:
    return "latest" if block is None else hex(int(block))


def _arg_types(signature: str) -> List[str]:
    inner = signature[signature.index("(") + 1: signature.rindex(")")]
    return [t.strip() for t in inner.split(",") if t.strip()]


def encode_call(call: ContractCall) -> str:
    selector = bytes(Web3.keccak(text=call.signature))[:4]
    body = encode(_arg_types(call.signature), list(call.args))
    return "0x" + (selector + body).hex()


def decode_result(call: ContractCall, raw: str) -> Any:
    data = bytes.fromhex(raw[2:] if raw.startswith("0x") else raw)
    values = decode(list(call.output_types), data)
    return values[0] if len(values) == 1 else tuple(values)


class JsonRpcChainAdapter(ChainDataPort):

    def __init__(
        self,
        rpc_url: str,
        requests_per_sec: float = RPC_REQUESTS_PER_SEC,
        timeout_sec: int = RPC_TIMEOUT_SEC,
        max_retries: int = RPC_MAX_RETRIES,
        batch_size: int = RPC_BATCH_SIZE,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._url = rpc_url
        self._timeout = timeout_sec
        self._max_retries = max_retries
        self._batch_size = batch_size

        self._rl = SimpleRateLimiter(requests_per_sec)
        self._session = session or requests.Session()
        self._ids = itertools.count(1)

    # ---------- internal ----------

    def _post(self, payload: Any) -> Any:
        self._rl.wait()
        try:
            resp = self._session.post(self._url, json=payload, timeout=self._timeout)
        except requests.RequestException as e:
            raise NetworkError(f"RPC transport error: {e}") from e

        if resp.status_code == 429:
            raise RateLimitError("RPC provider rate limit (HTTP 429)")

        try:
            data = resp.json()
        except ValueError as e:
            raise NetworkError(f"RPC returned non-JSON (HTTP {resp.status_code})") from e

        # some providers send range errors with a 4xx status and a JSON-RPC body
        if resp.status_code >= 400 and not (isinstance(data, dict) and "error" in data):
            raise NetworkError(f"RPC HTTP {resp.status_code}")
        return data

    @staticmethod
    def _raise_for_error(error: Dict[str, Any], method: str, params: Any) -> None:
        message = str(error.get("message", "unknown error"))
        code = error.get("code")
        lowered = message.lower()

        if _is_rate_limited(lowered):
            raise RateLimitError(message)
        if method == "eth_getLogs" and _is_range_error(lowered):
            flt = params[0] if params else {}
            raise RangeTooLargeError(
                message,
                start_block=int(flt.get("fromBlock", "0x0"), 16),
                end_block=int(flt.get("toBlock", "0x0"), 16),
            )
        if code in RATE_LIMIT_CODES:
            raise RateLimitError(message)
        raise NetworkError(f"{method} failed ({code}): {message}")

    def _call_once(self, method: str, params: List[Any]) -> Any:
        data = self._post({"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params})
        if not isinstance(data, dict):
            raise NetworkError(f"Invalid RPC response: {data!r}")
        if data.get("error"):
            self._raise_for_error(data["error"], method, params)
        return data.get("result")

    def _call(self, method: str, params: List[Any]) -> Any:
        last_err: Optional[Exception] = None

        for attempt in range(self._max_retries):
            try:
                return self._call_once(method, params)
            except NetworkError as e:
                last_err = e
                logger.debug("%s attempt %d failed: %s", method, attempt + 1, e)
                backoff_sleep(attempt)

        raise NetworkError(f"{method} failed after retries: {last_err}")

    # ---------- port methods ----------

    def current_height(self) -> int:
        result = self._call("eth_blockNumber", [])
        try:
            return int(result, 16)
        except (TypeError, ValueError) as e:
            raise NetworkError(f"Invalid block number result: {result!r}") from e

    def code_exists_at(self, address: str, block: Optional[int] = None) -> bool:
        code = self._call("eth_getCode", [address.lower(), _hex_block(block)])
        return code not in (None, "", "0x", "0x0")

    def get_logs(
        self,
        address: str,
        topics: Sequence[Optional[str]],
        start_block: int,
        end_block: int,
    ) -> List[RawLog]:
        # no retry here: the scanner owns retry and range splitting
        params = [{
            "address": address.lower(),
            "topics": list(topics),
            "fromBlock": hex(start_block),
            "toBlock": hex(end_block),
        }]
        rows = self._call_once("eth_getLogs", params)
        if not isinstance(rows, list):
            raise NetworkError(f"Invalid eth_getLogs result: {rows!r}")

        return [
            RawLog(
                address=(r.get("address") or "").lower(),
                topics=tuple(t.lower() for t in (r.get("topics") or [])),
                data=r.get("data") or "0x",
                block_number=int(r.get("blockNumber", "0x0"), 16),
                log_index=int(r.get("logIndex", "0x0"), 16),
                tx_hash=r.get("transactionHash") or "",
            )
            for r in rows
            if not r.get("removed")
        ]

    def batch_call(self, calls: Sequence[ContractCall], block: Optional[int] = None) -> List[CallResult]:
        out: List[CallResult] = []
        for i in range(0, len(calls), self._batch_size):
            out.extend(self._batch_chunk(calls[i:i + self._batch_size], block))
        return out

    def _batch_chunk(self, calls: Sequence[ContractCall], block: Optional[int]) -> List[CallResult]:
        ids: List[int] = []
        payload: List[Dict[str, Any]] = []
        for c in calls:
            rid = next(self._ids)
            ids.append(rid)
            payload.append({
                "jsonrpc": "2.0",
                "id": rid,
                "method": "eth_call",
                "params": [{"to": c.contract.lower(), "data": encode_call(c)}, _hex_block(block)],
            })

        try:
            data = self._post(payload)
        except DataSourceError as e:
            logger.debug("batch of %d eth_call failed: %s", len(calls), e)
            return [CallResult(success=False, error=str(e)) for _ in calls]

        by_id = {r.get("id"): r for r in data} if isinstance(data, list) else {}

        results: List[CallResult] = []
        for rid, c in zip(ids, calls):
            r = by_id.get(rid)
            if r is None:
                results.append(CallResult(success=False, error="missing response"))
            elif r.get("error"):
                results.append(CallResult(success=False, error=str(r["error"].get("message"))))
            else:
                try:
                    results.append(CallResult(success=True, result=decode_result(c, r.get("result") or "0x")))
                except Exception as e:
                    results.append(CallResult(success=False, error=f"decode failed: {e}"))
        return results
