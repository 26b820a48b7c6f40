from __future__ import annotations
import os, json, asyncio, logging
from dataclasses import replace
from typing import Callable

from filelock import FileLock

from ..domain.errors import CheckpointInconsistency, CheckpointNotFound
from ..domain.models import ChainScrapeConfig
from ..domain.value_types import ChainKey, ScrapeStatus
from ..ports.storage import CheckpointStore

logger = logging.getLogger(__name__)


def compute_doc_id(chain_key: ChainKey) -> str:
    return f"evtScrap_feecollect_{chain_key.value}"


class JSONLCheckpointStore(CheckpointStore):
    """
    Append-only journal of ChainScrapeConfig snapshots, one JSON object per line.
    The last snapshot of a chain is its current state.

    Every mutation takes `<path>.lock`, replays lines other processes appended
    since the last read, compares against that state, then appends and fsyncs.
    Several feescan processes can therefore share one journal.
    """
    def __init__(self, path: str, lock_timeout_s: float = 30.0) -> None:
        self.path = path
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        self._lock = asyncio.Lock()
        self._flock = FileLock(path + ".lock", timeout=lock_timeout_s)
        self._current: dict[ChainKey, ChainScrapeConfig] = {}
        self._offset = 0          # bytes of the journal already replayed
        self._torn_tail = False   # journal ends without a newline
        self._sync()

    # ---- journal I/O (file lock held) --------------------------------------

    def _refresh(self) -> None:
        if not os.path.exists(self.path):
            return
        with open(self.path, "rb") as f:
            f.seek(self._offset)
            chunk = f.read()
        if not chunk:
            return
        *lines, tail = chunk.split(b"\n")
        for raw in lines:
            self._apply(raw)
        if tail:
            # a torn write from a crash; earlier snapshots still stand
            logger.warning("%s: skipping unterminated checkpoint line at byte %d",
                           self.path, self._offset + len(chunk) - len(tail))
        self._torn_tail = bool(tail)
        self._offset += len(chunk)

    def _apply(self, raw: bytes) -> None:
        line = raw.strip()
        if not line:
            return
        try:
            cfg = ChainScrapeConfig.from_record(json.loads(line))
        except (ValueError, KeyError) as e:
            logger.warning("%s: skipping unreadable checkpoint line (%s)", self.path, e)
            return
        self._current[cfg.chain_key] = cfg

    def _write(self, cfg: ChainScrapeConfig) -> None:
        line = json.dumps(cfg.to_record(), separators=(",", ":")) + "\n"
        if self._torn_tail:
            line = "\n" + line
        with open(self.path, "ab") as f:
            f.write(line.encode()); f.flush(); os.fsync(f.fileno())
            self._offset = f.tell()
        self._torn_tail = False
        self._current[cfg.chain_key] = cfg

    def _sync(self) -> None:
        with self._flock:
            self._refresh()

    def _transact(self, step: Callable[[], ChainScrapeConfig]) -> ChainScrapeConfig:
        with self._flock:
            self._refresh()
            cfg = step()
            self._write(cfg)
            return cfg

    async def _mutate(self, step: Callable[[], ChainScrapeConfig]) -> ChainScrapeConfig:
        async with self._lock:
            return await asyncio.to_thread(self._transact, step)

    # ---- CheckpointStore ---------------------------------------------------

    async def get_by_chain(self, chain_key: ChainKey) -> ChainScrapeConfig | None:
        async with self._lock:
            await asyncio.to_thread(self._sync)
            return self._current.get(chain_key)

    async def all(self) -> list[ChainScrapeConfig]:
        async with self._lock:
            await asyncio.to_thread(self._sync)
            return sorted(self._current.values(), key=lambda c: c.chain_key.value)

    async def create(self, chain_key: ChainKey, default: ChainScrapeConfig) -> ChainScrapeConfig:
        def step() -> ChainScrapeConfig:
            if chain_key in self._current:
                raise CheckpointInconsistency(f"scraping config for chain '{chain_key.value}' already exists")
            return replace(default, chain_key=chain_key, doc_id=compute_doc_id(chain_key), version=0)
        return await self._mutate(step)

    async def advance(self, config: ChainScrapeConfig, last_scanned_block: int, scan_time: int) -> ChainScrapeConfig:
        def step() -> ChainScrapeConfig:
            stored = self._current.get(config.chain_key)
            if stored is None:
                raise CheckpointNotFound(config.chain_key.value)
            if stored.version != config.version or stored.last_scanned_block != config.last_scanned_block:
                raise CheckpointInconsistency(
                    f"chain '{config.chain_key.value}': checkpoint moved to "
                    f"{stored.last_scanned_block} (v{stored.version}), expected "
                    f"{config.last_scanned_block} (v{config.version})"
                )
            if last_scanned_block < stored.next_block() - 1:
                raise CheckpointInconsistency(
                    f"chain '{config.chain_key.value}': refusing to move checkpoint back "
                    f"from {stored.next_block() - 1} to {last_scanned_block}"
                )
            return stored.advanced(last_scanned_block, scan_time)
        return await self._mutate(step)

    async def set_status(self, chain_key: ChainKey, status: ScrapeStatus) -> ChainScrapeConfig:
        def step() -> ChainScrapeConfig:
            stored = self._current.get(chain_key)
            if stored is None:
                raise CheckpointNotFound(chain_key.value)
            return replace(stored, status=status, version=stored.version + 1)
        return await self._mutate(step)
