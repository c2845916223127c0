# tests/conftest.py
import os
import tempfile

# the module-level db_manager is created at import time; keep it off the working dir
os.environ.setdefault("DB_PATH", os.path.join(tempfile.mkdtemp(prefix="bins-test-"), "bins.db"))

import pytest
from fastapi.testclient import TestClient

from core.db import DatabaseManager, get_db
from models.bin_models import (
    BomLineIn,
    ComponentMasterUpsert,
    ComponentScanIn,
    ScaleReading,
    WorkOrderUpsert,
)
from services import catalog
from services.policy import EnginePolicy

# componentId -> (expected per bin, unit weight g, requires scale)
COMPONENTS = {
    "C1": (10, 2.5, True),
    "C2": (4, 100.0, False),
    "C6": (6, 2.0, True),
    "X": (5, 1.0, True),
}

# jtcId -> (revision, quantity needed, [(componentId, qty per item)])
WORK_ORDERS = {
    "J1": ("R1", 3, [("C6", 4)]),
    "J2": ("R2", 2, [("X", 5)]),
    "J3": ("R3", 1, [("C1", 10), ("C2", 4)]),
    "J4": ("R4", 2, [("C6", 3), ("C1", 10)]),
    "J5": ("NOBOM", 1, []),
}


def scale_scan(component_id: str, pcs: float, unit: float = None, **kw) -> ComponentScanIn:
    """Scan input as the counting scale would report it."""
    if unit is None:
        unit = COMPONENTS[component_id][1]
    return ComponentScanIn(
        componentId=component_id,
        scale=ScaleReading(netKg=round(pcs * unit / 1000, 3) or None, pieceCount=pcs, unitWeightGrams=unit),
        **kw,
    )


def seed(db):
    for cid, (expected, unit, requires_scale) in COMPONENTS.items():
        catalog.upsert_component_master(db, cid, ComponentMasterUpsert(
            componentName=f"Part {cid}", expectedQuantityPerBin=expected,
            unitWeightGrams=unit, requiresScale=requires_scale,
        ))
    for jid, (rev, qty, lines) in WORK_ORDERS.items():
        catalog.upsert_work_order(db, jid, WorkOrderUpsert(
            orderNumber=f"ORD-{jid}", revisionId=rev, quantityNeeded=qty,
            partNumber=f"PN-{jid}", coNumber=f"CO-{jid}", barcodeId=f"*J{jid}",
        ))
        if lines:
            catalog.replace_bom(db, rev, [BomLineIn(componentId=c, quantityPerItem=q) for c, q in lines])


@pytest.fixture
def manager(tmp_path):
    return DatabaseManager(str(tmp_path / "bins.db"))


@pytest.fixture
def db(manager):
    with manager.get_connection() as conn:
        seed(conn)
        yield conn


@pytest.fixture
def policy():
    return EnginePolicy()


@pytest.fixture
def client(manager, db):
    from main import app

    def _override_db():
        with manager.get_connection() as conn:
            yield conn

    app.dependency_overrides[get_db] = _override_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
