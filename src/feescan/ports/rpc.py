# feescan/ports/rpc.py
from __future__ import annotations

from typing import Protocol, Sequence
from ..domain.models import RawLog
from ..domain.value_types import FinalityTag


class ChainLogSource(Protocol):
    """Port defining the contract for a chain's head + logs JSON-RPC client."""

    async def head_block(self, finality_tag: FinalityTag) -> int:
        """Return the number of the newest block selected by `finality_tag`."""

    async def fetch_logs(
        self,
        contract_address: str,
        topic0s: Sequence[str],
        from_block: int,
        to_block: int,
    ) -> list[RawLog]:
        """Return raw logs for [from_block, to_block] inclusive."""

    async def aclose(self) -> None:
        """Release network resources."""
