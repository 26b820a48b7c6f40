from __future__ import annotations

from typing import Iterable

from eth_utils import keccak, to_checksum_address

from .errors import MalformedEvent
from .models import FeeCollectedEvent, RawLog
from .value_types import Address, ChainKey, TxHash


# event FeesCollected(address indexed _token, address indexed _integrator,
#                     uint256 _integratorFee, uint256 _lifiFee)
FEES_COLLECTED_SIGNATURE = "FeesCollected(address,address,uint256,uint256)"
FEES_COLLECTED_T0 = "0x" + keccak(text=FEES_COLLECTED_SIGNATURE).hex()

# --------- 32B word slicing (no eth_abi) --------------------------------------

def _word(b: bytes, i: int) -> bytes:
    return b[i*32:(i+1)*32]

def _u256(w: bytes) -> int:
    return int.from_bytes(w, "big")

def _hex_to_bytes(s: str) -> bytes:
    h = s[2:] if s[:2].lower() == "0x" else s
    if len(h) % 2:
        raise ValueError(f"odd-length hex: {s!r}")
    return bytes.fromhex(h)

def _addr_from_word(w: bytes) -> Address:
    if len(w) != 32 or any(w[:12]):
        raise ValueError(f"not an address word: 0x{w.hex()}")
    return Address(to_checksum_address("0x" + w[-20:].hex()))

# ---------------------------- public API --------------------------------------

def decode_fee_collected(chain_key: ChainKey, log: RawLog) -> FeeCollectedEvent:
    """
    Decode one FeesCollected log. token and integrator are indexed (topics 1-2),
    both fee amounts sit in the data words. Anything else raises MalformedEvent.
    """
    topics = [t.lower() for t in log.topics]
    if len(topics) != 3 or topics[0] != FEES_COLLECTED_T0:
        raise MalformedEvent(
            f"tx {log.tx_hash} log #{log.log_index}: unexpected topics {list(log.topics)}"
        )
    try:
        data = _hex_to_bytes(log.data_hex)
        if len(data) != 32 * 2:
            raise ValueError(f"expected 64 data bytes, got {len(data)}")
        token = _addr_from_word(_hex_to_bytes(topics[1]))
        integrator = _addr_from_word(_hex_to_bytes(topics[2]))
    except ValueError as e:
        raise MalformedEvent(f"tx {log.tx_hash} log #{log.log_index}: {e}") from e

    return FeeCollectedEvent(
        chain_key      = chain_key,
        tx_hash        = TxHash(log.tx_hash.lower()),
        block_number   = log.block_number,
        token          = token,
        integrator     = integrator,
        integrator_fee = _u256(_word(data, 0)),
        lifi_fee       = _u256(_word(data, 1)),
    )


def decode_fee_collected_logs(chain_key: ChainKey, logs: Iterable[RawLog]) -> list[FeeCollectedEvent]:
    """All-or-nothing: the first undecodable log aborts the whole batch."""
    return [decode_fee_collected(chain_key, rl) for rl in logs]
