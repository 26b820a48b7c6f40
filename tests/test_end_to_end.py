from __future__ import annotations

import asyncio
import json
import threading

import httpx
import pytest

from _fakes import INTEGRATOR, TOKEN, chain_config, fee_log, node_log
from feescan.adapters.checkpoint_jsonl import JSONLCheckpointStore
from feescan.adapters.parquet_store import ParquetEventStore
from feescan.adapters.rpc_httpx import HttpxChainLogSource
from feescan.application.use_cases import ScrapeSession, report_collected_fees
from feescan.config import ScrapeSettings
from feescan.domain.errors import FatalScrapeFailure
from feescan.domain.value_types import ChainKey, ScrapeStatus

WETH = "0x7ceB23fD6bC0adD59E62ac25578270cFf1b9f619"


class FakeNode:
    """Answers the JSON-RPC calls a scraping session makes."""

    def __init__(self, head: int, logs) -> None:
        self.head = head
        self.logs = list(logs)
        self.methods: list[str] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.methods.append(body["method"])
        if body["method"] == "eth_getBlockByNumber":
            result = {"number": hex(self.head)}
        else:
            p = body["params"][0]
            lo, hi = int(p["fromBlock"], 16), int(p["toBlock"], 16)
            result = [node_log(rl) for rl in self.logs if lo <= rl.block_number <= hi]
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": result})


def _session(tmp_path, node: FakeNode) -> ScrapeSession:
    return ScrapeSession(
        log_source_factory=lambda cfg: HttpxChainLogSource(cfg.rpc_endpoint, transport=httpx.MockTransport(node)),
        checkpoints=JSONLCheckpointStore(str(tmp_path / "checkpoints.jsonl")),
        events=ParquetEventStore(str(tmp_path / "events")),
        settings=ScrapeSettings(batch_size=2_000),
        defaults={ChainKey.POL: chain_config(block_start=100)},
        clock=lambda: 1,
    )


def test_scrape_resume_and_report_over_real_stores(tmp_path):
    logs = [
        fee_log(150, 1, integrator_fee=10, lifi_fee=1),
        fee_log(2500, 2, integrator_fee=5, lifi_fee=2),
        fee_log(6000, 3, token=WETH, integrator_fee=7, lifi_fee=0),
    ]

    node = FakeNode(4999, logs)
    first = asyncio.run(_session(tmp_path, node).run(ChainKey.POL))
    assert first.to_dict() == {
        "message": "scanned 4900 blocks up to 4999, 2 new events",
        "eventsNew": 2,
        "blocksScanned": 4900,
        "lastScannedBlock": 4999,
    }
    assert node.methods == ["eth_getBlockByNumber"] + ["eth_getLogs"] * 3

    node.head = 7000
    second = asyncio.run(_session(tmp_path, node).run(ChainKey.POL))
    assert (second.events_new, second.blocks_scanned, second.last_scanned_block) == (1, 2001, 7000)

    stored = asyncio.run(JSONLCheckpointStore(str(tmp_path / "checkpoints.jsonl")).get_by_chain(ChainKey.POL))
    assert stored.doc_id == "evtScrap_feecollect_pol"
    assert stored.last_scanned_block == 7000

    report = asyncio.run(report_collected_fees(ParquetEventStore(str(tmp_path / "events")), INTEGRATOR))
    assert report.to_dict()["integratorCollectedFees"] == [
        {"chainKey": "pol", "token": TOKEN, "amount": "15"},
        {"chainKey": "pol", "token": WETH, "amount": "7"},
    ]
    assert report.to_dict()["lifiCollectedFees"] == [
        {"chainKey": "pol", "token": TOKEN, "amount": "3"},
        {"chainKey": "pol", "token": WETH, "amount": "0"},
    ]


def test_rescanning_from_scratch_adds_no_duplicates(tmp_path):
    logs = [fee_log(150, 1), fee_log(2500, 2)]
    asyncio.run(_session(tmp_path, FakeNode(4999, logs)).run(ChainKey.POL))

    # lost checkpoint journal, same event shards
    (tmp_path / "checkpoints.jsonl").unlink()
    again = asyncio.run(_session(tmp_path, FakeNode(4999, logs)).run(ChainKey.POL))

    assert again.last_scanned_block == 4999
    events = asyncio.run(ParquetEventStore(str(tmp_path / "events")).events_by_integrator(INTEGRATOR))
    assert len(events) == 2


def test_disable_from_another_process_aborts_the_running_session(tmp_path):
    node = FakeNode(4999, [fee_log(150, 1)])
    session = _session(tmp_path, node)
    operator = JSONLCheckpointStore(str(tmp_path / "checkpoints.jsonl"))

    def disable_after_first_batch(br, found):
        if br.start == 100:
            t = threading.Thread(target=lambda: asyncio.run(operator.set_status(ChainKey.POL, ScrapeStatus.INACTIVE)))
            t.start()
            t.join()

    with pytest.raises(FatalScrapeFailure) as exc:
        asyncio.run(session.run(ChainKey.POL, on_batch=disable_after_first_batch))

    assert exc.value.operation == "advance_checkpoint"
    assert exc.value.block_range == (2100, 4099)
    stored = asyncio.run(JSONLCheckpointStore(str(tmp_path / "checkpoints.jsonl")).get_by_chain(ChainKey.POL))
    assert (stored.status, stored.last_scanned_block) == (ScrapeStatus.INACTIVE, 2099)
