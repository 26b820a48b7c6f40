# feescan/ports/storage.py
from __future__ import annotations

from typing import Iterable, Protocol
from ..domain.models import ChainScrapeConfig, FeeCollectedEvent
from ..domain.value_types import ChainKey, ScrapeStatus


class CheckpointStore(Protocol):
    """Port owning each chain's ChainScrapeConfig and its scan checkpoint."""

    async def get_by_chain(self, chain_key: ChainKey) -> ChainScrapeConfig | None:
        """Return the stored config, or None if the chain was never scraped."""

    async def create(self, chain_key: ChainKey, default: ChainScrapeConfig) -> ChainScrapeConfig:
        """Persist `default` as the initial config of `chain_key`."""

    async def advance(
        self,
        config: ChainScrapeConfig,
        last_scanned_block: int,
        scan_time: int,
    ) -> ChainScrapeConfig:
        """
        Move the checkpoint forward, only if the stored config still is `config`.
        Raises CheckpointNotFound / CheckpointInconsistency otherwise.
        """

    async def set_status(self, chain_key: ChainKey, status: ScrapeStatus) -> ChainScrapeConfig:
        """Enable or halt scraping on a stored chain."""

    async def all(self) -> list[ChainScrapeConfig]:
        """Every stored config."""


class EventStore(Protocol):
    """Port for durably appending parsed FeesCollected events."""

    async def append_many(self, events: Iterable[FeeCollectedEvent]) -> int:
        """
        Persist events; ones whose natural key (chain, tx hash) is already stored
        are skipped. Returns how many were actually inserted.
        """

    async def events_by_integrator(self, integrator: str) -> list[FeeCollectedEvent]:
        """Every stored event of `integrator`, on any chain."""
