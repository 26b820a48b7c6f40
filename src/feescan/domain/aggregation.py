from __future__ import annotations
from typing import Iterable

from .models import ChainTokenAmount, CollectedFeesReport, FeeCollectedEvent


def aggregate_collected_fees(events: Iterable[FeeCollectedEvent], integrator: str) -> CollectedFeesReport:
    """
    Sum the integrator's and LI.FI's shares per (chain, token).

    Groups keep first-seen order, so the same input always yields the same
    report. Amounts stay Python ints until they are rendered as decimal strings.
    """
    wanted = integrator.lower()
    sums: dict[tuple[str, str], list[int]] = {}
    for ev in events:
        if ev.integrator.lower() != wanted:
            continue
        key = (ev.chain_key.value, ev.token)
        acc = sums.get(key)
        if acc is None:
            sums[key] = [ev.integrator_fee, ev.lifi_fee]
        else:
            acc[0] += ev.integrator_fee
            acc[1] += ev.lifi_fee

    return CollectedFeesReport(
        integrator=integrator,
        integrator_collected_fees=[ChainTokenAmount(c, t, str(a[0])) for (c, t), a in sums.items()],
        lifi_collected_fees=[ChainTokenAmount(c, t, str(a[1])) for (c, t), a in sums.items()],
    )
