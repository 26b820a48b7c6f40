from __future__ import annotations
from ..domain.models import BlockRange

def plan_batches(start_block: int, end_block: int, step: int) -> list[BlockRange]:
    """Consecutive inclusive ranges of at most `step` blocks; last one clipped to end_block."""
    if step <= 0:
        raise ValueError(f"batch size must be positive, got {step}")
    out: list[BlockRange] = []
    b = start_block
    while b <= end_block:
        fb, tb = b, min(end_block, b + step - 1)
        out.append(BlockRange(start=fb, end=tb))
        b = tb + 1
    return out
