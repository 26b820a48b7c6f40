from __future__ import annotations
from dataclasses import dataclass, field, replace
from typing import Any

from .value_types import Address, ChainKey, FinalityTag, ScrapeStatus, TxHash


@dataclass(slots=True, frozen=True)
class BlockRange:
    start: int
    end: int
    def span(self) -> int: return self.end - self.start + 1
    def as_tuple(self) -> tuple[int, int]: return (self.start, self.end)


@dataclass(slots=True, frozen=True)
class RawLog:
    address: str                       # lowercased hex with 0x
    topics: tuple[str, ...]            # all topics, lowercased with 0x
    data_hex: str                      # hex with 0x (or "0x")
    block_number: int
    tx_hash: str                       # lowercased hex with 0x
    log_index: int


@dataclass(slots=True, frozen=True)
class ChainScrapeConfig:
    """Scraping state of the FeeCollector contract on one chain."""
    chain_key: ChainKey
    status: ScrapeStatus
    rpc_endpoint: str
    contract_address: str
    block_start: int
    finality_tag: FinalityTag = FinalityTag.SAFE
    chain_id: int | None = None
    last_scanned_block: int | None = None
    last_scan_time: int | None = None  # epoch ms
    # storage identity, opaque to the engine
    doc_id: str | None = None
    version: int = 0

    def next_block(self) -> int:
        """First block not yet covered by the checkpoint."""
        last = self.last_scanned_block if self.last_scanned_block is not None else self.block_start - 1
        return last + 1

    def advanced(self, last_scanned_block: int, scan_time: int) -> "ChainScrapeConfig":
        return replace(self, last_scanned_block=last_scanned_block,
                       last_scan_time=scan_time, version=self.version + 1)

    def to_record(self) -> dict[str, Any]:
        return {
            "doc_id": self.doc_id,
            "version": self.version,
            "chain_key": self.chain_key.value,
            "chain_id": self.chain_id,
            "status": self.status.value,
            "rpc_endpoint": self.rpc_endpoint,
            "finality_tag": self.finality_tag.value,
            "contract_address": self.contract_address,
            "block_start": self.block_start,
            "last_scanned_block": self.last_scanned_block,
            "last_scan_time": self.last_scan_time,
        }

    @classmethod
    def from_record(cls, rec: dict[str, Any]) -> "ChainScrapeConfig":
        return cls(
            chain_key=ChainKey(rec["chain_key"]),
            status=ScrapeStatus(rec["status"]),
            rpc_endpoint=rec["rpc_endpoint"],
            contract_address=rec["contract_address"],
            block_start=int(rec["block_start"]),
            finality_tag=FinalityTag(rec.get("finality_tag") or FinalityTag.SAFE.value),
            chain_id=rec.get("chain_id"),
            last_scanned_block=rec.get("last_scanned_block"),
            last_scan_time=rec.get("last_scan_time"),
            doc_id=rec.get("doc_id"),
            version=int(rec.get("version", 0)),
        )


@dataclass(slots=True, frozen=True)
class FeeCollectedEvent:
    chain_key: ChainKey
    tx_hash: TxHash
    block_number: int
    token: Address
    integrator: Address
    integrator_fee: int      # arbitrary precision, never float
    lifi_fee: int

    @property
    def natural_key(self) -> tuple[str, str]:
        return (self.chain_key.value, self.tx_hash)


@dataclass(slots=True, frozen=True)
class SessionResult:
    message: str
    events_new: int = 0
    blocks_scanned: int = 0
    last_scanned_block: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "message": self.message,
            "eventsNew": self.events_new,
            "blocksScanned": self.blocks_scanned,
            "lastScannedBlock": self.last_scanned_block,
        }


@dataclass(slots=True, frozen=True)
class ChainTokenAmount:
    chain_key: str
    token: str
    amount: str              # base-10 string of the summed amount

    def to_dict(self) -> dict[str, str]:
        return {"chainKey": self.chain_key, "token": self.token, "amount": self.amount}


@dataclass(slots=True, frozen=True)
class CollectedFeesReport:
    """Fees collected by one integrator, and LI.FI's share, per chain and token."""
    integrator: str
    integrator_collected_fees: list[ChainTokenAmount] = field(default_factory=list)
    lifi_collected_fees: list[ChainTokenAmount] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "integrator": self.integrator,
            "integratorCollectedFees": [a.to_dict() for a in self.integrator_collected_fees],
            "lifiCollectedFees": [a.to_dict() for a in self.lifi_collected_fees],
        }
