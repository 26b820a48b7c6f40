from __future__ import annotations


class FeeScanError(Exception):
    """Base class for every error raised by feescan."""


class UnknownChain(FeeScanError):
    def __init__(self, chain_key: str) -> None:
        super().__init__(f"No FeeCollector configuration for chain '{chain_key}'")
        self.chain_key = chain_key


class TransientRpcFailure(FeeScanError):
    """An RPC call failed in a way worth retrying (transport, HTTP, JSON-RPC error)."""


class MalformedEvent(FeeScanError):
    """A fetched log does not match the FeesCollected schema."""


class CheckpointInconsistency(FeeScanError):
    """The stored checkpoint differs from the one the caller advanced from."""


class CheckpointNotFound(CheckpointInconsistency):
    def __init__(self, chain_key: str) -> None:
        super().__init__(f"No stored scraping config for chain '{chain_key}'")
        self.chain_key = chain_key


class FatalScrapeFailure(FeeScanError):
    """
    Aborts a scraping session. Carries the session context; the underlying
    error is chained as ``__cause__``.
    """
    def __init__(
        self,
        message: str,
        *,
        chain_key: str,
        operation: str,
        block_range: tuple[int, int] | None = None,
    ) -> None:
        where = f" blocks [{block_range[0]}, {block_range[1]}]" if block_range else ""
        super().__init__(f"{operation} failed on chain '{chain_key}'{where}: {message}")
        self.chain_key = chain_key
        self.operation = operation
        self.block_range = block_range
