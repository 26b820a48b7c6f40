"""
Runtime settings and the static table of FeeCollector deployments.

The default table seeds a chain's stored scraping config the first time the
chain is scraped; after that the stored copy is authoritative.
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping

from .domain.models import ChainScrapeConfig
from .domain.value_types import ChainKey, FinalityTag, ScrapeStatus

DEFAULT_BATCH_SIZE = 2_000
DEFAULT_MAX_ATTEMPTS = 2
DEFAULT_RPC_TIMEOUT_S = 20


@dataclass(slots=True, frozen=True)
class ScrapeSettings:
    batch_size: int = DEFAULT_BATCH_SIZE        # blocks per eth_getLogs request
    max_attempts: int = DEFAULT_MAX_ATTEMPTS    # total tries per RPC operation
    rpc_timeout_s: int = DEFAULT_RPC_TIMEOUT_S

    def __post_init__(self) -> None:
        for name in ("batch_size", "max_attempts", "rpc_timeout_s"):
            if getattr(self, name) < 1:
                raise ValueError(f"{name} must be >= 1, got {getattr(self, name)}")

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> "ScrapeSettings":
        env = os.environ if env is None else env
        return cls(
            batch_size=int(env.get("SCRAPER_BLOCKS_BATCH_SIZE", DEFAULT_BATCH_SIZE)),
            max_attempts=int(env.get("SCRAPER_MAX_ATTEMPTS", DEFAULT_MAX_ATTEMPTS)),
            rpc_timeout_s=int(env.get("SCRAPER_RPC_TIMEOUT", DEFAULT_RPC_TIMEOUT_S)),
        )


DEFAULT_CHAIN_CONFIGS: Mapping[ChainKey, ChainScrapeConfig] = MappingProxyType({
    ChainKey.POL: ChainScrapeConfig(
        chain_key=ChainKey.POL,
        chain_id=137,
        status=ScrapeStatus.ACTIVE,
        rpc_endpoint="https://polygon-rpc.com",
        finality_tag=FinalityTag.SAFE,
        contract_address="0xbD6C7B0d2f68c2b7805d88388319cfB6EcB50eA9",
        block_start=47961368,
        version=0,
    ),
})
