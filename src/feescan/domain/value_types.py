from __future__ import annotations
from enum import Enum
from typing import NewType

from .errors import UnknownChain

Address = NewType("Address", str)   # 0x-prefixed; checksum once decoded
TxHash  = NewType("TxHash", str)    # 66-char 0x-hash, lowercase


class ChainKey(str, Enum):
    """LI.FI chain keys the scraper knows about."""
    ETH = "eth"
    POL = "pol"
    BSC = "bsc"
    ARB = "arb"
    OPT = "opt"
    AVA = "ava"
    BAS = "bas"

    @classmethod
    def parse(cls, raw: str) -> "ChainKey":
        try:
            return cls(raw.strip().lower())
        except ValueError:
            raise UnknownChain(raw) from None


class FinalityTag(str, Enum):
    """Block tag used to ask a chain for its usable head."""
    LATEST = "latest"
    SAFE = "safe"
    FINALIZED = "finalized"


class ScrapeStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
