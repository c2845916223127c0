# services/bom_resolver.py
from __future__ import annotations

import logging
import sqlite3
from typing import List, Optional

from core import db as store
from models.bin_models import BomLine, WorkOrder
from services.errors import BomNotFound
from services.policy import EnginePolicy

logger = logging.getLogger(__name__)


def resolve(db: sqlite3.Connection, revision_id: Optional[str], quantity_needed: int) -> List[BomLine]:
    """Ordered BOM lines of a revision with ``totalQuantity`` for the whole order."""
    rows = store.get_bom_lines(db, revision_id) if revision_id else []
    if not rows:
        raise BomNotFound(revision_id or "")
    return [
        BomLine(componentId=cid, quantityPerItem=qty, totalQuantity=qty * quantity_needed)
        for cid, qty in rows
    ]


def resolve_for_work_order(
    db: sqlite3.Connection, wo: WorkOrder, policy: EnginePolicy
) -> List[BomLine]:
    try:
        return resolve(db, wo.revisionId, wo.quantityNeeded)
    except BomNotFound:
        if policy.empty_bom_policy == "allow":
            logger.warning("JTC %s: revision %s has no BOM lines, treating as empty",
                           wo.jtcId, wo.revisionId)
            return []
        raise
