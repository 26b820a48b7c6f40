from __future__ import annotations

import asyncio
import logging

import pytest

from feescan.application.planning import plan_batches
from feescan.application.retry import with_retry
from feescan.domain.errors import FatalScrapeFailure, MalformedEvent, TransientRpcFailure


def test_plan_batches_clips_last_batch():
    got = [b.as_tuple() for b in plan_batches(100, 4999, 2000)]
    assert got == [(100, 2099), (2100, 4099), (4100, 4999)]


def test_plan_batches_exact_multiple_and_single_block():
    assert [b.as_tuple() for b in plan_batches(1, 4, 2)] == [(1, 2), (3, 4)]
    assert [b.as_tuple() for b in plan_batches(7, 7, 2000)] == [(7, 7)]
    assert plan_batches(8, 7, 2000) == []


def test_plan_batches_cover_range_without_gaps():
    batches = plan_batches(10, 10_000, 333)
    assert batches[0].start == 10 and batches[-1].end == 10_000
    assert all(a.end + 1 == b.start for a, b in zip(batches, batches[1:]))
    assert all(b.span() <= 333 for b in batches)


def test_plan_batches_rejects_non_positive_step():
    with pytest.raises(ValueError):
        plan_batches(1, 10, 0)


class _Flaky:
    def __init__(self, failures: int, exc: Exception | None = None) -> None:
        self.failures = failures
        self.calls = 0
        self.exc = exc or TransientRpcFailure("502 Bad Gateway")

    async def __call__(self) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise self.exc
        return "ok"


def _retry(op, attempts):
    return asyncio.run(with_retry(op, max_attempts=attempts, operation="fetch_logs",
                                  chain_key="pol", block_range=(1, 2)))


def test_retry_returns_first_success():
    op = _Flaky(failures=1)
    assert _retry(op, 2) == "ok"
    assert op.calls == 2


def test_retry_exhaustion_wraps_last_error(caplog):
    op = _Flaky(failures=5)
    with caplog.at_level(logging.WARNING, logger="feescan.application.retry"):
        with pytest.raises(FatalScrapeFailure) as exc:
            _retry(op, 2)

    assert op.calls == 2
    assert exc.value.__cause__ is op.exc
    assert exc.value.block_range == (1, 2)
    assert "fetch_logs" in str(exc.value) and "pol" in str(exc.value)
    assert [r.getMessage().endswith("1 attempt(s) left") for r in caplog.records] == [True, False]


def test_retry_does_not_retry_other_errors():
    op = _Flaky(failures=1, exc=MalformedEvent("bad"))
    with pytest.raises(MalformedEvent):
        _retry(op, 3)
    assert op.calls == 1


def test_retry_single_attempt():
    op = _Flaky(failures=1)
    with pytest.raises(FatalScrapeFailure):
        _retry(op, 1)
    assert op.calls == 1


def test_retry_rejects_zero_attempts():
    with pytest.raises(ValueError):
        _retry(_Flaky(failures=0), 0)
