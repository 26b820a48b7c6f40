from __future__ import annotations
import os, glob, asyncio, logging
import pyarrow as pa
import pyarrow.compute as pc
import pyarrow.parquet as pq
from filelock import FileLock
from typing import Iterable

from ..domain.models import FeeCollectedEvent
from ..domain.value_types import Address, ChainKey, TxHash
from ..ports.storage import EventStore

logger = logging.getLogger(__name__)

EVENTS_SCHEMA = pa.schema([
    pa.field("chain_key",      pa.string()),
    pa.field("tx_hash",        pa.string()),
    pa.field("block_number",   pa.int64()),
    pa.field("token",          pa.string()),
    pa.field("integrator",     pa.string()),
    pa.field("integrator_fee", pa.large_string()),   # big ints as base-10 strings
    pa.field("lifi_fee",       pa.large_string()),
])

def _events_to_table(evs: list[FeeCollectedEvent]) -> pa.Table:
    return pa.Table.from_arrays(
        arrays=[
            pa.array([e.chain_key.value for e in evs], pa.string()),
            pa.array([e.tx_hash for e in evs], pa.string()),
            pa.array([e.block_number for e in evs], pa.int64()),
            pa.array([e.token for e in evs], pa.string()),
            pa.array([e.integrator for e in evs], pa.string()),
            pa.array([str(e.integrator_fee) for e in evs], pa.large_string()),
            pa.array([str(e.lifi_fee) for e in evs], pa.large_string()),
        ],
        schema=EVENTS_SCHEMA,
    )

def _table_to_events(table: pa.Table) -> list[FeeCollectedEvent]:
    return [
        FeeCollectedEvent(
            chain_key=ChainKey(row["chain_key"]),
            tx_hash=TxHash(row["tx_hash"]),
            block_number=row["block_number"],
            token=Address(row["token"]),
            integrator=Address(row["integrator"]),
            integrator_fee=int(row["integrator_fee"]),
            lifi_fee=int(row["lifi_fee"]),
        )
        for row in table.to_pylist()
    ]


def _fsync_dir(path: str) -> None:
    fd = os.open(path, os.O_RDONLY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


class ParquetEventStore(EventStore):
    """
    Append-only Parquet shards under `root_dir`. Each append_many call with at
    least one new event writes one shard atomically (fsync'ed tmp file +
    os.replace). Writers serialize on `root_dir/.lock`; inside it the natural-key
    index (chain, tx hash) catches up with shards other processes wrote, and the
    next shard number is chosen.
    """
    def __init__(self, root_dir: str, codec: str = "zstd", lock_timeout_s: float = 30.0) -> None:
        self.root = root_dir
        self.codec = codec
        os.makedirs(self.root, exist_ok=True)
        self._lock = asyncio.Lock()
        self._flock = FileLock(os.path.join(self.root, ".lock"), timeout=lock_timeout_s)
        self._keys: set[tuple[str, str]] = set()
        self._indexed: set[str] = set()

    def _shard_paths(self) -> list[str]:
        return sorted(glob.glob(os.path.join(self.root, "events_*.parquet")))

    def next_shard_index(self) -> int:
        existing = self._shard_paths()
        return 1 if not existing else int(os.path.basename(existing[-1]).split("_")[1].split(".")[0]) + 1

    def _refresh_keys(self) -> None:
        for path in self._shard_paths():
            if path in self._indexed:
                continue
            t = pq.read_table(path, columns=["chain_key", "tx_hash"])
            self._keys.update(zip(t["chain_key"].to_pylist(), t["tx_hash"].to_pylist()))
            self._indexed.add(path)

    def _write_shard(self, table: pa.Table, shard_idx: int) -> str:
        out_path = os.path.join(self.root, f"events_{shard_idx:05d}.parquet")
        tmp = out_path + ".tmp"
        pq.write_table(table, tmp, compression=self.codec)
        with open(tmp, "rb+") as f:
            os.fsync(f.fileno())
        os.replace(tmp, out_path)
        _fsync_dir(self.root)
        return out_path

    def _append_locked(self, events: list[FeeCollectedEvent]) -> int:
        with self._flock:
            self._refresh_keys()
            fresh: list[FeeCollectedEvent] = []
            seen: set[tuple[str, str]] = set()
            skipped = 0
            for ev in events:
                k = ev.natural_key
                if k in self._keys or k in seen:
                    skipped += 1
                    continue
                seen.add(k)
                fresh.append(ev)
            if skipped:
                logger.warning("Attempted to insert %d already stored event(s), skipped", skipped)
            if not fresh:
                return 0
            table = _events_to_table(fresh).sort_by([("block_number", "ascending"),
                                                     ("tx_hash", "ascending")])
            path = self._write_shard(table, self.next_shard_index())
            self._indexed.add(path)
            self._keys.update(seen)
            logger.debug("wrote %d event(s) to %s", len(fresh), path)
            return len(fresh)

    async def append_many(self, events: Iterable[FeeCollectedEvent]) -> int:
        batch = list(events)
        async with self._lock:
            return await asyncio.to_thread(self._append_locked, batch)

    def _read_integrator(self, integrator: str) -> list[FeeCollectedEvent]:
        out: list[FeeCollectedEvent] = []
        wanted = integrator.lower()
        for path in self._shard_paths():
            t = pq.read_table(path)
            t = t.filter(pc.equal(pc.utf8_lower(t["integrator"]), wanted))
            out.extend(_table_to_events(t))
        return out

    async def events_by_integrator(self, integrator: str) -> list[FeeCollectedEvent]:
        return await asyncio.to_thread(self._read_integrator, integrator)
