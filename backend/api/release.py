# api/release.py
from __future__ import annotations

import logging
import sqlite3

from fastapi import APIRouter, Depends

from api.ws_router import publish_release_update
from core.db import get_db
from models.bin_models import BinIdsIn, Checklist, ChecklistIn, ReleaseResult, ReturnResult
from services import lifecycle, release
from services.policy import EnginePolicy, get_policy

logger = logging.getLogger("api.release")

router = APIRouter(tags=["Release"])


@router.post("/release/{jtc_id}/checklist", response_model=Checklist)
async def checklist(
    jtc_id: str,
    data: ChecklistIn,
    db: sqlite3.Connection = Depends(get_db),
    policy: EnginePolicy = Depends(get_policy),
):
    return release.build_checklist(db, jtc_id, data.bins, policy)


@router.post("/release", response_model=ReleaseResult)
async def release_bins(
    data: BinIdsIn,
    db: sqlite3.Connection = Depends(get_db),
    policy: EnginePolicy = Depends(get_policy),
):
    result = release.release_bins(db, data.bins, policy)
    await publish_release_update(db, result.jtc, "release", result.released)
    return result


@router.post("/return", response_model=ReturnResult)
async def return_bins(
    data: BinIdsIn,
    db: sqlite3.Connection = Depends(get_db),
    policy: EnginePolicy = Depends(get_policy),
):
    jtcs = {lifecycle.load_bin(db, b).jtc for b in data.bins}
    result = lifecycle.return_bins_to_warehouse(db, data.bins, policy)
    for jtc in sorted(j for j in jtcs if j):
        await publish_release_update(db, jtc, "return", result.returned)
    return result
