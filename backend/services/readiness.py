# services/readiness.py
from __future__ import annotations

from typing import Iterable, Mapping, Optional

from models.bin_models import BinComponentRecord, BinReleaseReadiness, QuantityCheckStatus
from services.reconciliation import is_positive_number


# ───────── per-bin (scan / save) ─────────
def component_ready(record: Optional[BinComponentRecord], requires_scale: bool) -> bool:
    """Reconciled; scale components also carry a positive weight, count and unit weight."""
    if record is None or record.discrepancyType is None:
        return False
    if not requires_scale:
        return True
    return all(
        is_positive_number(v)
        for v in (record.actualWeight, record.actualQuantity, record.unitWeightGrams)
    )


def quantity_check_status(
    records: Mapping[str, BinComponentRecord], failed: Iterable[str] = ()
) -> QuantityCheckStatus:
    """Bin-level check status: Pending > Shortage > Excess > Ready."""
    if list(failed):
        return "Pending"
    kinds = [r.discrepancyType for r in records.values()]
    if not kinds or any(k is None for k in kinds):
        return "Pending"
    if "Shortage" in kinds:
        return "Shortage"
    if "Excess" in kinds:
        return "Excess"
    return "Ready"


# ───────── release-time (cross-bin) ─────────
def release_readiness(
    bin_id: str,
    records: Mapping[str, BinComponentRecord],
    cumulative: Mapping[str, int],
    bom_totals: Mapping[str, int],
) -> BinReleaseReadiness:
    """
    A bin is release-ready when every one of its components that the BOM
    lists is covered by the cumulative quantity of the session bins plus the
    bins already released for the same JTC.
    """
    short = [
        cid for cid in records
        if cid in bom_totals and cumulative.get(cid, 0) < bom_totals[cid]
    ]
    return BinReleaseReadiness(binId=bin_id, releaseReady=not short, shortComponents=short)
