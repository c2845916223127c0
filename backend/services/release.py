"""
services/release.py ── release session: live checklist + release gate

Checklist and release readiness are computed from one snapshot of the
session bins plus the bins already released for the JTC, read inside the
same transaction as the release writes.
"""
from __future__ import annotations

import logging
import sqlite3
from typing import Dict, Iterable, List, Optional, Tuple

from core import db as store
from core.db import transaction
from models.bin_models import (
    Bin,
    BinComponentRecord,
    BinReleaseReadiness,
    BomLine,
    Checklist,
    ReleasedBinSummary,
    ReleaseResult,
    WorkOrder,
    normalize_id,
)
from services import aggregator, readiness
from services.bom_resolver import resolve_for_work_order
from services.catalog import get_work_order
from services.errors import IllegalTransition
from services.labels import emit_label
from services.lifecycle import READY_FOR_RELEASE, RELEASED, change_status, load_bin
from services.policy import EnginePolicy

logger = logging.getLogger(__name__)


def _snapshot(
    db: sqlite3.Connection, wo: WorkOrder, session_ids: Iterable[str]
) -> Tuple[List[str], List[Bin], Dict[str, Dict[str, BinComponentRecord]]]:
    """
    Session bin ids (deduped, minus released ones), released bins, and all their records.

    Only Ready for Release bins linked to this JTC may join a session.
    """
    released = store.list_bins(db, status=RELEASED, jtc=wo.jtcId)
    released_ids = {b.binId for b in released}
    session: List[str] = []
    for bid in session_ids:
        b = load_bin(db, bid)
        if b.binId in released_ids or b.binId in session:
            continue
        if b.status != READY_FOR_RELEASE or b.jtc != wo.jtcId:
            raise IllegalTransition(
                b.binId, b.status,
                f"only {READY_FOR_RELEASE} bins of JTC {wo.jtcId} can join its release session "
                f"(bin JTC: {b.jtc})",
            )
        session.append(b.binId)
    records = store.get_components_for_bins(db, session + [b.binId for b in released])
    return session, released, records


def _checklist(
    wo: WorkOrder,
    lines: List[BomLine],
    session: List[str],
    released: List[Bin],
    records: Dict[str, Dict[str, BinComponentRecord]],
) -> Checklist:
    totals = aggregator.aggregate(records.values())
    items = aggregator.checklist_items(lines, totals)
    bom_totals = {l.componentId: l.totalQuantity for l in lines}
    return Checklist(
        jtc=wo.jtcId,
        quantityNeeded=wo.quantityNeeded,
        items=items,
        complete=all(i.state == "complete" for i in items),
        sessionBins=[
            readiness.release_readiness(bid, records.get(bid, {}), totals, bom_totals)
            for bid in session
        ],
        releasedBins=[
            ReleasedBinSummary(
                binId=b.binId,
                releaseDateTime=b.lastUsed,
                workcellId=b.workcellId,
                stationId=b.stationId,
                remark=b.remark,
                components={cid: r.actualQuantity or 0 for cid, r in records.get(b.binId, {}).items()},
            )
            for b in released
        ],
    )


def build_checklist(
    db: sqlite3.Connection,
    jtc_id: str,
    session_bin_ids: Iterable[str] = (),
    policy: Optional[EnginePolicy] = None,
) -> Checklist:
    policy = policy or EnginePolicy.from_settings()
    with transaction(db):
        wo = get_work_order(db, jtc_id)
        lines = resolve_for_work_order(db, wo, policy)
        session, released, records = _snapshot(db, wo, session_bin_ids)
    return _checklist(wo, lines, session, released, records)


def release_bins(
    db: sqlite3.Connection, bin_ids: Iterable[str], policy: Optional[EnginePolicy] = None
) -> ReleaseResult:
    """
    Release the bins that pass the cross-bin BOM check.

    All bins must be Ready for Release and linked to one JTC. Bins that are
    short are left in place and reported; if none pass, nothing is released.
    """
    policy = policy or EnginePolicy.from_settings()
    ids = [normalize_id(b) for b in bin_ids]
    with transaction(db):
        bins = [load_bin(db, bid) for bid in ids]
        if not bins:
            raise ValueError("no bins to release")
        for b in bins:
            if b.status != READY_FOR_RELEASE:
                raise IllegalTransition(b.binId, b.status,
                                        f"bin not in {READY_FOR_RELEASE} status, cannot release")
        jtc = bins[0].jtc
        for b in bins[1:]:
            if b.jtc != jtc:
                raise IllegalTransition(
                    b.binId, b.status,
                    f"bin belongs to JTC {b.jtc}, not {jtc}; one release covers one JTC",
                )

        wo = get_work_order(db, jtc)
        lines = resolve_for_work_order(db, wo, policy)
        session, released, records = _snapshot(db, wo, ids)
        gate = _checklist(wo, lines, session, released, records).sessionBins

        ready = [r.binId for r in gate if r.releaseReady]
        not_ready: List[BinReleaseReadiness] = [r for r in gate if not r.releaseReady]
        if not ready:
            short = sorted({c for r in not_ready for c in r.shortComponents})
            raise IllegalTransition(
                ",".join(ids), READY_FOR_RELEASE,
                f"release-time BOM check failed for JTC {wo.jtcId}; short on {', '.join(short)}",
            )

        by_id = {b.binId: b for b in bins}
        labels = []
        now = store.now_utc_iso()
        for bid in ready:
            b = by_id[bid]
            new = change_status(
                db, b, RELEASED, "released",
                location=b.workcellId or b.location, lastUsed=now, lastUpdated=now,
            )
            labels.append(emit_label(db, "release", new, wo))

        session, released, records = _snapshot(db, wo, [r.binId for r in not_ready])
        checklist = _checklist(wo, lines, session, released, records)

    logger.info("🚚 JTC %s released %s (not ready: %s)", wo.jtcId, ready, [r.binId for r in not_ready])
    return ReleaseResult(jtc=wo.jtcId, released=ready, notReady=not_ready,
                         labels=labels, checklist=checklist)
