"""
services/calibration.py ── self-correcting component master unit weight

Calibration update: a unit weight measured by the scale is written back to
the component master when it differs from the stored value. It only ever
runs on a fresh, validated measurement, and applying the same measurement
twice changes nothing the second time.
"""
from __future__ import annotations

import logging
import sqlite3

from core import db as store
from core.db import transaction
from models.bin_models import ComponentMaster, ComponentWeightResult
from services.catalog import get_component_master
from services.errors import InvalidScaleReading
from services.reconciliation import is_positive_number

logger = logging.getLogger(__name__)

# grams; differences below this are measurement noise
TOLERANCE = 1e-4


def needs_calibration(master: ComponentMaster, unit_weight_g: float) -> bool:
    stored = master.unitWeightGrams
    return stored is None or abs(stored - unit_weight_g) > TOLERANCE


def calibrate(db: sqlite3.Connection, master: ComponentMaster, unit_weight_g: float) -> bool:
    """Apply a calibration update; returns True when the master changed."""
    if not is_positive_number(unit_weight_g):
        raise InvalidScaleReading(master.componentId,
                                  f"unit weight must be a positive number (got {unit_weight_g!r})")
    if not needs_calibration(master, unit_weight_g):
        return False
    with transaction(db):
        store.set_master_unit_weight(db, master.componentId, unit_weight_g)
    logger.info("calibration update: %s unit weight %s g -> %s g",
                master.componentId, master.unitWeightGrams, unit_weight_g)
    return True


def record_component_weight(
    db: sqlite3.Connection, component_id: str, weight_kg: float, quantity: int
) -> ComponentWeightResult:
    """Calibration station: weigh ``quantity`` pieces and log the unit weight."""
    master = get_component_master(db, component_id)
    if not is_positive_number(weight_kg):
        raise InvalidScaleReading(master.componentId, f"weightKg must be positive (got {weight_kg!r})")
    if not is_positive_number(quantity):
        raise InvalidScaleReading(master.componentId, f"quantity must be positive (got {quantity!r})")

    unit = round(weight_kg * 1000 / quantity, 4)
    now = store.now_utc_iso()
    with transaction(db):
        store.insert_component_weight_log(db, master.componentId, weight_kg, quantity, unit, now)
        changed = calibrate(db, master, unit)
    return ComponentWeightResult(
        componentId=master.componentId,
        weightKg=weight_kg,
        quantity=quantity,
        unitWeightGrams=unit,
        calibrated=changed,
        recordedAt=now,
    )
