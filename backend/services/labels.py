# services/labels.py
from __future__ import annotations

import logging
import sqlite3

from core import db as store
from models.bin_models import Bin, LabelPayload, WorkOrder

logger = logging.getLogger(__name__)


def build_label(event: str, b: Bin, wo: WorkOrder) -> LabelPayload:
    return LabelPayload(
        event=event,
        binId=b.binId,
        woNumber=wo.jtcId,
        coNumber=wo.coNumber,
        partName=wo.partNumber or "",
        dateIssue=wo.createdAt or "",
        qty=wo.quantityNeeded,
        remarks=wo.orderNumber or "",
        barcodeId=wo.barcodeId,
    )


def emit_label(db: sqlite3.Connection, event: str, b: Bin, wo: WorkOrder) -> LabelPayload:
    """Append a label payload to the print outbox (caller holds the transaction)."""
    label = build_label(event, b, wo)
    store.insert_print_job(db, label, wo.jtcId, store.now_utc_iso())
    logger.info("🏷️  %s label queued for bin %s (JTC %s)", event, b.binId, wo.jtcId)
    return label
