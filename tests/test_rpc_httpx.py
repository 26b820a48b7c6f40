from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from _fakes import CONTRACT, fee_log, node_log
from feescan.adapters.rpc_httpx import HttpxChainLogSource
from feescan.domain.decoding import FEES_COLLECTED_T0
from feescan.domain.errors import TransientRpcFailure
from feescan.domain.value_types import FinalityTag


def _call(handler, fn):
    async def go():
        src = HttpxChainLogSource("http://rpc.test", transport=httpx.MockTransport(handler))
        try:
            return await fn(src)
        finally:
            await src.aclose()
    return asyncio.run(go())


def _result(value):
    return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": value})


def test_latest_head_uses_eth_block_number():
    seen = []

    def handler(request):
        seen.append(json.loads(request.content))
        return _result("0x1388")

    assert _call(handler, lambda s: s.head_block(FinalityTag.LATEST)) == 5000
    assert seen[0]["method"] == "eth_blockNumber"


def test_safe_head_reads_tagged_block():
    seen = []

    def handler(request):
        seen.append(json.loads(request.content))
        return _result({"number": "0x1387", "hash": "0xabc"})

    assert _call(handler, lambda s: s.head_block(FinalityTag.SAFE)) == 4999
    assert seen[0]["method"] == "eth_getBlockByNumber"
    assert seen[0]["params"] == ["safe", False]


def test_missing_tagged_block_is_transient():
    with pytest.raises(TransientRpcFailure):
        _call(lambda r: _result(None), lambda s: s.head_block(FinalityTag.FINALIZED))


def test_json_rpc_error_is_transient():
    def handler(request):
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1,
                                         "error": {"code": -32005, "message": "query returned more than 10000 results"}})

    with pytest.raises(TransientRpcFailure) as exc:
        _call(handler, lambda s: s.fetch_logs(CONTRACT, [FEES_COLLECTED_T0], 1, 2))
    assert "-32005" in str(exc.value)


def test_http_error_status_is_transient():
    with pytest.raises(TransientRpcFailure):
        _call(lambda r: httpx.Response(502, text="bad gateway"), lambda s: s.head_block(FinalityTag.LATEST))


def test_transport_error_is_transient():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(TransientRpcFailure):
        _call(handler, lambda s: s.head_block(FinalityTag.LATEST))


def test_rate_limit_is_retried_inside_the_adapter(monkeypatch):
    async def no_sleep(_):
        return None
    monkeypatch.setattr("feescan.adapters.rpc_httpx.asyncio.sleep", no_sleep)
    responses = [httpx.Response(429, headers={"Retry-After": "1"}), _result("0x10")]

    assert _call(lambda r: responses.pop(0), lambda s: s.head_block(FinalityTag.LATEST)) == 16
    assert responses == []


def test_get_logs_request_and_parsing():
    seen = []
    logs = [fee_log(150, 1), fee_log(151, 2, log_index=3)]

    def handler(request):
        seen.append(json.loads(request.content))
        return _result([node_log(rl) for rl in logs])

    got = _call(handler, lambda s: s.fetch_logs(CONTRACT, [FEES_COLLECTED_T0], 100, 2099))

    assert got == logs
    params = seen[0]["params"][0]
    assert seen[0]["method"] == "eth_getLogs"
    assert params["address"] == CONTRACT.lower()
    assert (params["fromBlock"], params["toBlock"]) == ("0x64", "0x833")
    assert params["topics"] == [[FEES_COLLECTED_T0]]


def test_incomplete_log_is_transient():
    pending = node_log(fee_log(150, 1))
    pending["blockNumber"] = None

    with pytest.raises(TransientRpcFailure):
        _call(lambda r: _result([pending]), lambda s: s.fetch_logs(CONTRACT, [FEES_COLLECTED_T0], 100, 200))


def test_non_list_logs_result_is_transient():
    with pytest.raises(TransientRpcFailure):
        _call(lambda r: _result(None), lambda s: s.fetch_logs(CONTRACT, [FEES_COLLECTED_T0], 100, 200))


@pytest.mark.parametrize("number", [None, "latest", 12])
def test_unparseable_head_number_is_transient(number):
    with pytest.raises(TransientRpcFailure):
        _call(lambda r: _result(number), lambda s: s.head_block(FinalityTag.LATEST))


def test_tagged_block_without_a_number_is_transient():
    with pytest.raises(TransientRpcFailure):
        _call(lambda r: _result({"number": None}), lambda s: s.head_block(FinalityTag.SAFE))


def test_non_object_json_body_is_transient():
    with pytest.raises(TransientRpcFailure):
        _call(lambda r: httpx.Response(200, json=["not", "an", "envelope"]), lambda s: s.head_block(FinalityTag.LATEST))
