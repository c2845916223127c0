"""
services/reconciliation.py ── per-component scan reconciliation

``reconcile_component`` is the single place a Bin Component Record is
computed. Stored ``discrepancy_type`` / ``difference`` columns are a cache of
its output and are never read back to decide anything.

Pure: no database access. The caller supplies the master record, the prior
saved record (if any) and the timestamp.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional

from models.bin_models import (
    BinComponentRecord,
    ComponentMaster,
    ComponentScanIn,
    DiscrepancyType,
)
from services.errors import InvalidScaleReading


@dataclass(frozen=True)
class Reconciliation:
    record: BinComponentRecord
    # unit weight taken from a fresh, validated scale reading (calibration input)
    fresh_unit_weight: Optional[float] = None


def classify(difference: int) -> DiscrepancyType:
    if difference == 0:
        return "OK"
    return "Shortage" if difference < 0 else "Excess"


def is_positive_number(value) -> bool:
    if value is None or isinstance(value, bool):
        return False
    try:
        v = float(value)
    except (TypeError, ValueError):
        return False
    return math.isfinite(v) and v > 0


def derive_weight_kg(quantity: int, unit_weight_g: Optional[float]) -> Optional[float]:
    if unit_weight_g is None:
        return None
    return round(quantity * unit_weight_g / 1000, 3)


def reconcile_component(
    bin_id: str,
    master: ComponentMaster,
    scan: ComponentScanIn,
    prior: Optional[BinComponentRecord],
    use_prior: bool,
    recorded_at: str,
) -> Reconciliation:
    """
    Compute the record for one scanned component.

    ``use_prior`` is true while the bin holds checked values (its quantity
    check status is not ``unchecked``); only then do saved quantity / weight
    stand in for missing inputs. The last saved unit weight is always a
    fallback for the scale path.
    """
    cid = master.componentId
    merge = prior if (use_prior and prior is not None) else None
    fresh_unit: Optional[float] = None

    if not master.requiresScale:
        if scan.manualQuantity is not None:
            quantity = scan.manualQuantity
        elif merge is not None and merge.actualQuantity is not None:
            quantity = merge.actualQuantity
        else:
            quantity = master.expectedQuantityPerBin
        unit = master.unitWeightGrams
        if unit is None and prior is not None:
            unit = prior.unitWeightGrams
        weight = derive_weight_kg(quantity, unit)
    else:
        reading = scan.scale
        if reading is None and merge is None:
            raise InvalidScaleReading(cid, "no scale reading supplied")

        net = reading.netKg if reading and reading.netKg is not None else (
            merge.actualWeight if merge else None)
        pcs = reading.pieceCount if reading and reading.pieceCount is not None else (
            merge.actualQuantity if merge else None)
        if reading and reading.unitWeightGrams is not None:
            unit = reading.unitWeightGrams
        elif prior is not None and prior.unitWeightGrams is not None:
            unit = prior.unitWeightGrams
        else:
            unit = master.unitWeightGrams

        for name, value in (("netKg", net), ("pieceCount", pcs), ("unitWeightGrams", unit)):
            if not is_positive_number(value):
                raise InvalidScaleReading(cid, f"{name} must be a positive number (got {value!r})")

        quantity = int(round(float(pcs)))
        if scan.manualQuantity is not None:
            quantity = scan.manualQuantity
        weight = round(float(net), 3)
        unit = float(unit)
        if reading and reading.unitWeightGrams is not None:
            fresh_unit = unit

    expected = master.expectedQuantityPerBin
    difference = quantity - expected
    record = BinComponentRecord(
        binId=bin_id,
        componentId=cid,
        actualQuantity=quantity,
        actualWeight=weight,
        unitWeightGrams=unit,
        expectedQuantity=expected,
        discrepancyType=classify(difference),
        difference=difference,
        recordedAt=recorded_at,
    )
    return Reconciliation(record=record, fresh_unit_weight=fresh_unit)
