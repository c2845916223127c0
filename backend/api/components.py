# api/components.py
from __future__ import annotations

import logging
import sqlite3
from typing import Optional

from fastapi import APIRouter, Depends, Query

from core.db import get_db
from models.bin_models import (
    ComponentForBin,
    ComponentMaster,
    ComponentMasterUpsert,
    ComponentWeightIn,
    ComponentWeightResult,
    ScaleReading,
)
from services import calibration, catalog
from services.scale_client import ScaleClient, get_scale_client

logger = logging.getLogger("api.components")

router = APIRouter(tags=["Components"])


@router.get("/component-master/{component_id}", response_model=ComponentForBin)
async def get_component(
    component_id: str,
    bin_id: Optional[str] = Query(None, alias="binId", max_length=100),
    db: sqlite3.Connection = Depends(get_db),
):
    return catalog.get_component_for_bin(db, component_id, bin_id)


@router.put("/component-master/{component_id}", response_model=ComponentMaster)
async def upsert_component(
    component_id: str, data: ComponentMasterUpsert, db: sqlite3.Connection = Depends(get_db)
):
    return catalog.upsert_component_master(db, component_id, data)


@router.post("/component-master/{component_id}/weight", response_model=ComponentWeightResult)
async def record_weight(
    component_id: str, data: ComponentWeightIn, db: sqlite3.Connection = Depends(get_db)
):
    return calibration.record_component_weight(db, component_id, data.weightKg, data.quantity)


@router.get("/scale/reading", response_model=ScaleReading)
def scale_reading(client: ScaleClient = Depends(get_scale_client)):
    # sync: requests blocks, FastAPI runs this in the threadpool
    return client.get_current_reading()
