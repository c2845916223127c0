"""
services/catalog.py ── reference data the engine reads but does not own

Component master, work orders and BOM lines are loaded by the deployment
(or by tests) through the upsert helpers below; engine paths only read them.
"""
from __future__ import annotations

import logging
import sqlite3
from typing import List, Optional

from core import db as store
from core.db import transaction
from models.bin_models import (
    BomLineIn,
    ComponentForBin,
    ComponentMaster,
    ComponentMasterUpsert,
    WorkOrder,
    WorkOrderUpsert,
    normalize_id,
    normalize_jtc_id,
)
from services.errors import ComponentNotFound, WorkOrderNotFound

logger = logging.getLogger(__name__)


# ───────── lookups ─────────
def get_component_master(db: sqlite3.Connection, component_id: str) -> ComponentMaster:
    cid = normalize_id(component_id)
    master = store.get_component_master(db, cid)
    if master is None:
        raise ComponentNotFound(cid)
    return master


def get_component_for_bin(
    db: sqlite3.Connection, component_id: str, bin_id: Optional[str] = None
) -> ComponentForBin:
    """Master data plus the last saved values of this component in ``bin_id``."""
    master = get_component_master(db, component_id)
    out = ComponentForBin(**master.model_dump())
    if bin_id:
        bid = normalize_id(bin_id)
        out.binId = bid
        prior = store.get_bin_components(db, bid).get(master.componentId)
        if prior is not None:
            out.lastActualQuantity = prior.actualQuantity
            out.lastActualWeight = prior.actualWeight
            out.lastUnitWeightGrams = prior.unitWeightGrams
    return out


def get_work_order(db: sqlite3.Connection, jtc_id: str) -> WorkOrder:
    jid = normalize_jtc_id(jtc_id)
    wo = store.get_work_order(db, jid) if jid else None
    if wo is None:
        raise WorkOrderNotFound(jid or jtc_id)
    return wo


# ───────── loading ─────────
def upsert_component_master(
    db: sqlite3.Connection, component_id: str, data: ComponentMasterUpsert
) -> ComponentMaster:
    master = ComponentMaster(componentId=component_id, **data.model_dump())
    with transaction(db):
        store.upsert_component_master(db, master)
    logger.info("component master %s upserted", master.componentId)
    return master


def upsert_work_order(db: sqlite3.Connection, jtc_id: str, data: WorkOrderUpsert) -> WorkOrder:
    jid = normalize_jtc_id(jtc_id)
    if not jid:
        raise ValueError("jtc id must not be blank")
    with transaction(db):
        existing = store.get_work_order(db, jid)
        wo = WorkOrder(
            jtcId=jid,
            createdAt=existing.createdAt if existing else store.now_utc_iso(),
            **data.model_dump(),
        )
        store.upsert_work_order(db, wo)
    logger.info("work order %s upserted (rev %s, qty %d)", jid, wo.revisionId, wo.quantityNeeded)
    return wo


def replace_bom(db: sqlite3.Connection, revision_id: str, lines: List[BomLineIn]) -> int:
    rev = (revision_id or "").strip()
    if not rev:
        raise ValueError("revision id must not be blank")
    seen = set()
    for line in lines:
        if line.componentId in seen:
            raise ValueError(f"duplicate component {line.componentId} in BOM")
        seen.add(line.componentId)
    with transaction(db):
        store.replace_bom_lines(db, rev, [(l.componentId, l.quantityPerItem) for l in lines])
    logger.info("BOM for revision %s replaced (%d lines)", rev, len(lines))
    return len(lines)
