# services/aggregator.py
"""Cross-bin BOM aggregation: a projection with no state of its own."""
from __future__ import annotations

from collections import defaultdict
from typing import Dict, Iterable, List, Mapping

from models.bin_models import BinComponentRecord, BomLine, ChecklistItem, ChecklistState


def aggregate(bins: Iterable[Mapping[str, BinComponentRecord]]) -> Dict[str, int]:
    """Sum ``actualQuantity`` per component over the given bins' record maps."""
    totals: Dict[str, int] = defaultdict(int)
    for records in bins:
        for cid, rec in records.items():
            totals[cid] += rec.actualQuantity or 0
    return dict(totals)


def item_state(scanned: int, total: int) -> ChecklistState:
    if scanned >= total:
        return "complete"
    if scanned > 0:
        return "partial"
    return "missing"


def checklist_items(lines: List[BomLine], totals: Mapping[str, int]) -> List[ChecklistItem]:
    out = []
    for line in lines:
        scanned = totals.get(line.componentId, 0)
        out.append(ChecklistItem(
            componentId=line.componentId,
            quantityPerItem=line.quantityPerItem,
            totalQuantity=line.totalQuantity,
            scannedQuantity=scanned,
            state=item_state(scanned, line.totalQuantity),
        ))
    return out
