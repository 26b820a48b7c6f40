import time


def now_ms() -> int:
    """Epoch time in milliseconds, the unit checkpoints are stamped with."""
    return int(time.time() * 1000)
