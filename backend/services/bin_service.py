"""
services/bin_service.py ── bin registry + scan save orchestration

``save_scan_data`` is the read-then-write path for one bin: it loads the
bin's keyed record map (componentId -> BinComponentRecord), reconciles the
scanned components, applies calibration updates, re-derives the bin's check
status and lifecycle state and writes it all in one transaction.
"""
from __future__ import annotations

import logging
import sqlite3
from typing import Dict, List, Optional, Set

from core import db as store
from core.db import transaction
from models.bin_models import (
    Bin,
    BinComponentRecord,
    BinInfo,
    BinRegister,
    ComponentOutcome,
    SaveScanIn,
    SaveScanResult,
    normalize_id,
    normalize_jtc_id,
)
from services import lifecycle, readiness
from services.calibration import calibrate
from services.catalog import get_component_master, get_work_order
from services.errors import ComponentNotFound, IllegalTransition, InvalidScaleReading
from services.labels import emit_label
from services.policy import EnginePolicy
from services.reconciliation import reconcile_component

logger = logging.getLogger(__name__)

PARTIAL_UPDATE_CHECKS = frozenset({"Shortage", "Excess", "Pending"})


# ========== Registry / lookups ==========
def register_bin(db: sqlite3.Connection, data: BinRegister) -> Bin:
    """Create a bin in Pending JTC; on an existing id only descriptive fields change."""
    desc = data.model_dump(exclude={"binId"}, exclude_none=True)
    with transaction(db):
        b = store.get_bin(db, data.binId)
        if b is None:
            return lifecycle.create_bin(db, data.binId, "registered", **desc)
        if desc:
            store.update_bin(db, b.binId, lastUpdated=store.now_utc_iso(), **desc)
        return store.get_bin(db, b.binId)


def get_bin_info(db: sqlite3.Connection, bin_id: str) -> BinInfo:
    b = lifecycle.load_bin(db, bin_id)
    return BinInfo(bin=b, components=store.get_bin_components(db, b.binId))


def list_bins(db: sqlite3.Connection, status: Optional[str] = None, jtc: Optional[str] = None) -> List[Bin]:
    return store.list_bins(db, status=status, jtc=normalize_jtc_id(jtc) if jtc else None)


def bin_status_summary(db: sqlite3.Connection) -> Dict[str, int]:
    counts = store.count_bins_by_status(db)
    out = {s: 0 for s in lifecycle.STATES}
    out.update(counts)
    return out


# ========== Scan save ==========
def save_scan_data(
    db: sqlite3.Connection, payload: SaveScanIn, policy: Optional[EnginePolicy] = None
) -> SaveScanResult:
    policy = policy or EnginePolicy.from_settings()
    bin_id = normalize_id(payload.binId)

    with transaction(db):
        wo = get_work_order(db, payload.jtc) if payload.jtc else None

        b = store.get_bin(db, bin_id)
        if b is None:
            b = lifecycle.create_bin(db, bin_id, "created by scan")
        if b.status in lifecycle.NOT_SCANNABLE:
            raise IllegalTransition(b.binId, b.status, f"a {b.status} bin cannot be scanned")
        if wo is not None:
            lifecycle.check_reassignment(b, wo.jtcId, payload.confirmReassign)

        records: Dict[str, BinComponentRecord] = store.get_bin_components(db, bin_id)
        use_prior = b.quantityCheckStatus != "unchecked"
        partial = b.quantityCheckStatus in PARTIAL_UPDATE_CHECKS
        now = store.now_utc_iso()

        outcomes: List[ComponentOutcome] = []
        failed: Set[str] = set()
        for scan in payload.components:
            cid = scan.componentId
            try:
                master = get_component_master(db, cid)
                result = reconcile_component(bin_id, master, scan, records.get(cid), use_prior, now)
            except (ComponentNotFound, InvalidScaleReading) as e:
                logger.warning("bin %s component %s not reconciled: %s", bin_id, cid, e.message)
                failed.add(cid)
                outcomes.append(ComponentOutcome(
                    componentId=cid, ready=False, record=records.get(cid),
                    errorCode=e.code, error=e.message,
                ))
                continue

            store.upsert_bin_component(db, result.record)
            records[cid] = result.record
            calibrated = False
            if result.fresh_unit_weight is not None:
                calibrated = calibrate(db, master, result.fresh_unit_weight)
            outcomes.append(ComponentOutcome(
                componentId=cid,
                ready=readiness.component_ready(result.record, master.requiresScale),
                record=result.record,
                calibrated=calibrated,
            ))

        if not partial:
            scanned = [s.componentId for s in payload.components]
            store.delete_bin_components_except(db, bin_id, scanned)
            records = {cid: r for cid, r in records.items() if cid in scanned}

        check = readiness.quantity_check_status(records, failed)
        target_jtc = wo.jtcId if wo else b.jtc
        status, jtc = lifecycle.status_after_check(b, check, target_jtc, policy)

        b = b.model_copy(update={"quantityCheckStatus": check})
        store.update_bin(db, bin_id, quantityCheckStatus=check, lastUpdated=now)
        reason = f"quantity check {check}"
        if wo is not None and jtc == wo.jtcId and wo.jtcId != b.jtc:
            reason = f"reassigned from {b.jtc}" if b.jtc else "assigned"
        b = lifecycle.change_status(db, b, status, reason, jtc=jtc)

        blocked = None
        label = None
        if wo is not None:
            if check == "Ready":
                label = emit_label(db, "assign", b, wo)
            else:
                blocked = f"quantity check is {check}; bin must be Ready before assignment to JTC {wo.jtcId}"

    logger.info("bin %s saved: check=%s status=%s jtc=%s", bin_id, check, b.status, b.jtc)
    return SaveScanResult(
        binId=bin_id,
        status=b.status,
        quantityCheckStatus=check,
        jtc=b.jtc,
        ready=not failed and all(o.ready for o in outcomes),
        components=outcomes,
        assignmentBlocked=blocked,
        label=label,
    )
