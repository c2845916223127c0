# api/jtc.py
from __future__ import annotations

import logging
import sqlite3
from typing import List

from fastapi import APIRouter, Depends

from api.ws_router import publish_release_update
from core.db import get_db
from models.bin_models import (
    AssignBinsIn,
    AssignResult,
    Bin,
    BomLine,
    BomLineIn,
    WorkOrder,
    WorkOrderUpsert,
)
from services import bin_service, catalog, lifecycle
from services.bom_resolver import resolve_for_work_order
from services.policy import EnginePolicy, get_policy

logger = logging.getLogger("api.jtc")

router = APIRouter(tags=["Work orders"])


# ---------- work orders ----------
@router.get("/jtc/{jtc_id}", response_model=WorkOrder)
async def get_work_order(jtc_id: str, db: sqlite3.Connection = Depends(get_db)):
    return catalog.get_work_order(db, jtc_id)


@router.put("/jtc/{jtc_id}", response_model=WorkOrder)
async def upsert_work_order(jtc_id: str, data: WorkOrderUpsert, db: sqlite3.Connection = Depends(get_db)):
    return catalog.upsert_work_order(db, jtc_id, data)


@router.get("/jtc/{jtc_id}/bom", response_model=List[BomLine])
async def get_bom(
    jtc_id: str,
    db: sqlite3.Connection = Depends(get_db),
    policy: EnginePolicy = Depends(get_policy),
):
    wo = catalog.get_work_order(db, jtc_id)
    return resolve_for_work_order(db, wo, policy)


@router.get("/jtc/{jtc_id}/bins", response_model=List[Bin])
async def get_bins_for_jtc(jtc_id: str, db: sqlite3.Connection = Depends(get_db)):
    return bin_service.list_bins(db, jtc=jtc_id)


@router.get("/jtc/{jtc_id}/assigned-bins-count")
async def get_assigned_bins_count(jtc_id: str, db: sqlite3.Connection = Depends(get_db)):
    return {"jtc": catalog.get_work_order(db, jtc_id).jtcId, "count": lifecycle.assigned_bins_count(db, jtc_id)}


@router.post("/jtc/{jtc_id}/assign", response_model=AssignResult)
async def assign_bins(
    jtc_id: str,
    data: AssignBinsIn,
    db: sqlite3.Connection = Depends(get_db),
    policy: EnginePolicy = Depends(get_policy),
):
    result = lifecycle.assign_bins_to_jtc(db, jtc_id, data.bins, data.confirmReassign, policy)
    await publish_release_update(db, result.jtc, "assign", result.assigned + result.reassigned)
    return result


# ---------- BOM (reference data) ----------
@router.put("/bom/{revision_id}")
async def replace_bom(revision_id: str, lines: List[BomLineIn], db: sqlite3.Connection = Depends(get_db)):
    count = catalog.replace_bom(db, revision_id, lines)
    return {"revisionId": revision_id.strip(), "lines": count}
