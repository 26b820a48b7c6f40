from __future__ import annotations
import asyncio
import logging
import time
from typing import Callable, Mapping

from ..config import DEFAULT_CHAIN_CONFIGS, ScrapeSettings
from ..domain.aggregation import aggregate_collected_fees
from ..domain.decoding import FEES_COLLECTED_T0, decode_fee_collected_logs
from ..domain.errors import (
    CheckpointInconsistency,
    FatalScrapeFailure,
    MalformedEvent,
    UnknownChain,
)
from ..domain.models import BlockRange, ChainScrapeConfig, CollectedFeesReport, SessionResult
from ..domain.value_types import ChainKey, ScrapeStatus
from ..ports.rpc import ChainLogSource
from ..ports.storage import CheckpointStore, EventStore
from .planning import plan_batches
from .retry import with_retry
from .utils import now_ms

logger = logging.getLogger(__name__)

LogSourceFactory = Callable[[ChainScrapeConfig], ChainLogSource]
PlanCallback = Callable[[list[BlockRange]], None]
BatchCallback = Callable[[BlockRange, int], None]


class ScrapeSession:
    """
    One forward scan of the FeeCollector contract on one chain.

    Each batch is fetched, fully decoded, persisted, and only then committed to
    the checkpoint, so an aborted session leaves every finished batch in place
    and the next run resumes right after the last committed block.
    """

    def __init__(
        self,
        *,
        log_source_factory: LogSourceFactory,
        checkpoints: CheckpointStore,
        events: EventStore,
        settings: ScrapeSettings = ScrapeSettings(),
        defaults: Mapping[ChainKey, ChainScrapeConfig] = DEFAULT_CHAIN_CONFIGS,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.log_source_factory = log_source_factory
        self.checkpoints = checkpoints
        self.events = events
        self.settings = settings
        self.defaults = defaults
        self.clock = clock

    async def resolve_config(self, chain_key: ChainKey) -> ChainScrapeConfig:
        stored = await self.checkpoints.get_by_chain(chain_key)
        if stored is not None:
            return stored
        default = self.defaults.get(chain_key)
        if default is None:
            raise UnknownChain(chain_key.value)
        logger.info("[%s] persisting default FeeCollector scraping config", chain_key.value)
        return await self.checkpoints.create(chain_key, default)

    async def run(
        self,
        chain_key: ChainKey,
        *,
        stop: asyncio.Event | None = None,
        deadline: float | None = None,   # time.monotonic() value
        on_plan: PlanCallback | None = None,
        on_batch: BatchCallback | None = None,
    ) -> SessionResult:
        config = await self.resolve_config(chain_key)
        ck = chain_key.value
        if config.status == ScrapeStatus.INACTIVE:
            logger.info("[%s] scraping is inactive, nothing to do", ck)
            return SessionResult("halted", 0, 0, config.last_scanned_block)

        rpc = self.log_source_factory(config)
        try:
            head = await with_retry(
                lambda: rpc.head_block(config.finality_tag),
                max_attempts=self.settings.max_attempts,
                operation=f"head_block({config.finality_tag.value})",
                chain_key=ck,
            )
            start = config.next_block()
            if start > head:
                logger.info("[%s] up to date at block %d (head %d)", ck, start - 1, head)
                return SessionResult("up to date", 0, 0, config.last_scanned_block)

            batches = plan_batches(start, head, self.settings.batch_size)
            logger.info("[%s] scanning blocks %d..%d in %d batch(es)", ck, start, head, len(batches))
            if on_plan is not None:
                on_plan(batches)

            events_new = 0
            committed = 0
            for br in batches:
                if _should_stop(stop, deadline):
                    logger.warning("[%s] interrupted before block %d", ck, br.start)
                    return SessionResult("interrupted", events_new, committed, config.last_scanned_block)
                config, found = await self._scan_batch(rpc, config, br)
                events_new += found
                committed += br.span()
                if on_batch is not None:
                    on_batch(br, found)
        finally:
            await rpc.aclose()

        blocks = head - start + 1
        logger.info("[%s] scanned %d block(s), %d new event(s)", ck, blocks, events_new)
        return SessionResult(
            f"scanned {blocks} blocks up to {head}, {events_new} new events",
            events_new, blocks, config.last_scanned_block,
        )

    async def _scan_batch(
        self, rpc: ChainLogSource, config: ChainScrapeConfig, br: BlockRange,
    ) -> tuple[ChainScrapeConfig, int]:
        ck = config.chain_key.value
        logs = await with_retry(
            lambda: rpc.fetch_logs(config.contract_address, [FEES_COLLECTED_T0], br.start, br.end),
            max_attempts=self.settings.max_attempts,
            operation="fetch_logs",
            chain_key=ck,
            block_range=br.as_tuple(),
        )
        try:
            parsed = decode_fee_collected_logs(config.chain_key, logs)
        except MalformedEvent as e:
            raise FatalScrapeFailure(str(e), chain_key=ck, operation="decode",
                                     block_range=br.as_tuple()) from e

        if parsed:
            inserted = await self.events.append_many(parsed)
            logger.debug("[%s] batch %d..%d: %d event(s), %d inserted", ck, br.start, br.end, len(parsed), inserted)

        try:
            config = await self.checkpoints.advance(config, br.end, self.clock())
        except CheckpointInconsistency as e:
            raise FatalScrapeFailure(str(e), chain_key=ck, operation="advance_checkpoint",
                                     block_range=br.as_tuple()) from e
        return config, len(parsed)


def _should_stop(stop: asyncio.Event | None, deadline: float | None) -> bool:
    if stop is not None and stop.is_set():
        return True
    return deadline is not None and time.monotonic() >= deadline


async def report_collected_fees(events: EventStore, integrator: str) -> CollectedFeesReport:
    """Aggregate every stored FeesCollected event of `integrator`."""
    found = await events.events_by_integrator(integrator)
    logger.debug("integrator %s: %d stored event(s)", integrator, len(found))
    return aggregate_collected_fees(found, integrator)
