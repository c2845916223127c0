# api/bins.py
from __future__ import annotations

import logging
import sqlite3
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, Query, status

from api.ws_router import publish_release_update
from core.db import get_db
from models.bin_models import Bin, BinInfo, BinRegister, BinStatusUpdate, SaveScanIn, SaveScanResult
from services import bin_service, lifecycle
from services.policy import EnginePolicy, get_policy

logger = logging.getLogger("api.bins")

# 最終路徑 /api/bins/...
router = APIRouter(prefix="/bins", tags=["Bins"])


@router.get("", response_model=List[Bin])
async def list_bins(
    status_: Optional[str] = Query(None, alias="status"),
    jtc: Optional[str] = Query(None, max_length=100),
    db: sqlite3.Connection = Depends(get_db),
):
    return bin_service.list_bins(db, status=status_, jtc=jtc)


@router.get("/summary", response_model=Dict[str, int])
async def bin_summary(db: sqlite3.Connection = Depends(get_db)):
    return bin_service.bin_status_summary(db)


@router.post("", response_model=Bin, status_code=status.HTTP_201_CREATED)
async def register_bin(data: BinRegister, db: sqlite3.Connection = Depends(get_db)):
    return bin_service.register_bin(db, data)


@router.post("/scan", response_model=SaveScanResult)
async def save_scan(
    payload: SaveScanIn,
    db: sqlite3.Connection = Depends(get_db),
    policy: EnginePolicy = Depends(get_policy),
):
    result = bin_service.save_scan_data(db, payload, policy)
    await publish_release_update(db, result.jtc, "scan", [result.binId])
    return result


@router.get("/{bin_id}", response_model=BinInfo)
async def get_bin(bin_id: str, db: sqlite3.Connection = Depends(get_db)):
    return bin_service.get_bin_info(db, bin_id)


@router.post("/{bin_id}/status", response_model=Bin)
async def override_status(
    bin_id: str,
    data: BinStatusUpdate,
    db: sqlite3.Connection = Depends(get_db),
    policy: EnginePolicy = Depends(get_policy),
):
    previous_jtc = lifecycle.load_bin(db, bin_id).jtc
    b = lifecycle.set_bin_status(db, bin_id, data.status, data.remark, policy)
    await publish_release_update(db, previous_jtc, "status", [b.binId])
    return b
