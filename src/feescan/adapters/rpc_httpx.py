from __future__ import annotations
import asyncio, httpx
from typing import Any, Sequence
from ..domain.errors import TransientRpcFailure
from ..domain.models import RawLog
from ..domain.value_types import FinalityTag
from ..ports.rpc import ChainLogSource

def _to_hex_block(n: int) -> str: return hex(int(n))
def _is_topic_hash(x: str) -> bool: return isinstance(x, str) and x.startswith("0x") and len(x)==66

def _build_topics_param(topic0s: Sequence[str]) -> list[list[str]]:
    t0s = [str(t).strip().lower() for t in topic0s]
    if not all(_is_topic_hash(x) for x in t0s):
        raise ValueError(f"Invalid topic0(s): {t0s}")
    return [t0s]

def _parse_quantity(method: str, value: Any) -> int:
    try:
        return int(value, 16)
    except (TypeError, ValueError) as e:
        raise TransientRpcFailure(f"{method} returned a bad block number: {value!r}") from e

def _raw_log(rl: dict[str, Any]) -> RawLog:
    return RawLog(
        address=rl["address"].lower(),
        topics=tuple(t.lower() for t in rl.get("topics", [])),
        data_hex=str(rl.get("data") or "0x"),
        block_number=int(rl["blockNumber"], 16),
        tx_hash=rl["transactionHash"].lower(),
        log_index=int(rl["logIndex"], 16),
    )

class HttpxChainLogSource(ChainLogSource):
    def __init__(
        self,
        rpc_url: str,
        timeout_s: int = 20,
        max_conn: int = 16,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.rpc_url = rpc_url
        self.client = httpx.AsyncClient(
            http2=True,
            timeout=httpx.Timeout(timeout_s),
            limits=httpx.Limits(max_connections=max_conn, max_keepalive_connections=max(1, max_conn//2)),
            transport=transport,
        )

    async def _call(self, method: str, params: list[Any]) -> Any:
        payload = {"jsonrpc":"2.0","id":1,"method":method,"params":params}
        # retry on 429 with simple backoff; other failures are left to the caller's retry policy
        for attempt in range(3):
            try:
                r = await self.client.post(self.rpc_url, json=payload)
            except httpx.HTTPError as e:
                raise TransientRpcFailure(f"{method} transport error: {type(e).__name__}: {e}") from e
            if r.status_code == 429:
                ra = r.headers.get("Retry-After")
                delay = max(1.0, float(ra)) if ra and ra.isdigit() else (1.0 * (2**attempt))
                await asyncio.sleep(delay); continue
            try:
                r.raise_for_status()
                data = r.json()
            except (httpx.HTTPStatusError, ValueError) as e:
                raise TransientRpcFailure(f"{method} bad response: {e}") from e
            if not isinstance(data, dict):
                raise TransientRpcFailure(f"{method} returned a non-object JSON body: {data!r:.200}")
            if "error" in data:
                err = data["error"]
                msg = err.get("message") if isinstance(err, dict) else str(err)
                code = err.get("code") if isinstance(err, dict) else None
                raise TransientRpcFailure(f"{method} RPC error code={code} message={msg}")
            return data.get("result")
        raise TransientRpcFailure(f"{method}: rate limited, retries exhausted")

    async def head_block(self, finality_tag: FinalityTag) -> int:
        if finality_tag == FinalityTag.LATEST:
            res = await self._call("eth_blockNumber", [])
            return _parse_quantity("eth_blockNumber", res)
        block = await self._call("eth_getBlockByNumber", [finality_tag.value, False])
        if not isinstance(block, dict) or "number" not in block:
            # chains without the tag answer null
            raise TransientRpcFailure(f"block tag '{finality_tag.value}' not available from {self.rpc_url}")
        return _parse_quantity("eth_getBlockByNumber", block["number"])

    async def fetch_logs(self, contract_address: str, topic0s: Sequence[str], from_block: int, to_block: int) -> list[RawLog]:
        res = await self._call("eth_getLogs", [{
            "address": contract_address.lower(),
            "fromBlock": _to_hex_block(from_block),
            "toBlock": _to_hex_block(to_block),
            "topics": _build_topics_param(topic0s),
        }])
        if not isinstance(res, list):
            raise TransientRpcFailure(f"eth_getLogs returned {type(res).__name__}, expected a list")
        try:
            return [_raw_log(rl) for rl in res]
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            # pending logs carry null block numbers
            raise TransientRpcFailure(f"eth_getLogs returned an incomplete log: {e!r}") from e

    async def aclose(self) -> None:
        await self.client.aclose()
