# tests/test_release.py
import pytest

from conftest import scale_scan
from core import db as store
from models.bin_models import BinComponentRecord, BinRegister, BomLine, ComponentMasterUpsert, SaveScanIn
from services import aggregator, bin_service, catalog, readiness
from services.bom_resolver import resolve
from services.errors import BomNotFound, IllegalTransition
from services.lifecycle import PENDING_REFILL, READY_FOR_RELEASE, RELEASED
from services.policy import EnginePolicy
from services.release import build_checklist, release_bins


def scan(db, bin_id, component_id, pcs, jtc=None):
    payload = SaveScanIn(binId=bin_id, components=[scale_scan(component_id, pcs)], jtc=jtc)
    return bin_service.save_scan_data(db, payload, EnginePolicy())


def rec(bin_id, component_id, qty):
    return BinComponentRecord(binId=bin_id, componentId=component_id, actualQuantity=qty)


# ───── pure projection ─────
def test_item_states():
    assert aggregator.item_state(12, 12) == "complete"
    assert aggregator.item_state(13, 12) == "complete"
    assert aggregator.item_state(5, 12) == "partial"
    assert aggregator.item_state(0, 12) == "missing"


def test_cross_bin_sum_covers_both_bins():
    bins = {"B1": {"X": rec("B1", "X", 6)}, "B2": {"X": rec("B2", "X", 4)}}
    totals = aggregator.aggregate(bins.values())
    assert totals == {"X": 10}

    lines = [BomLine(componentId="X", quantityPerItem=5, totalQuantity=10)]
    [item] = aggregator.checklist_items(lines, totals)
    assert (item.scannedQuantity, item.state) == (10, "complete")

    for bid, records in bins.items():
        assert readiness.release_readiness(bid, records, totals, {"X": 10}).releaseReady


def test_components_outside_bom_are_ignored():
    records = {"X": rec("B1", "X", 10), "EXTRA": rec("B1", "EXTRA", 1)}
    r = readiness.release_readiness("B1", records, {"X": 10, "EXTRA": 1}, {"X": 10})
    assert r.releaseReady
    assert r.shortComponents == []


def test_bom_resolver_totals(db):
    lines = resolve(db, "R4", 2)
    assert [(l.componentId, l.quantityPerItem, l.totalQuantity) for l in lines] == [
        ("C6", 3, 6), ("C1", 10, 20),
    ]
    with pytest.raises(BomNotFound):
        resolve(db, "NOBOM", 1)


# ───── checklist ─────
def test_checklist_cross_bin(db):
    # J2: quantity 2 x 5 of X = 10, split 6 + 4 across two bins filled to different masters
    def fill(bin_id, pcs):
        catalog.upsert_component_master(db, "X", ComponentMasterUpsert(
            expectedQuantityPerBin=pcs, unitWeightGrams=1.0, requiresScale=True,
        ))
        scan(db, bin_id, "X", pcs, jtc="J2")

    fill("B1", 6)
    fill("B2", 4)
    cl = build_checklist(db, "J2", ["B1", "B2"], EnginePolicy())
    [item] = cl.items
    assert (item.totalQuantity, item.scannedQuantity, item.state) == (10, 10, "complete")
    assert cl.complete
    assert all(b.releaseReady for b in cl.sessionBins)


def test_checklist_partial_and_missing(db):
    scan(db, "B1", "C6", 6, jtc="J4")
    cl = build_checklist(db, "J4", ["B1"], EnginePolicy())
    states = {i.componentId: i.state for i in cl.items}
    assert states == {"C6": "complete", "C1": "missing"}
    assert not cl.complete

    scan(db, "B2", "C1", 10, jtc="J4")
    cl = build_checklist(db, "J4", ["B1", "B2", "b2"], EnginePolicy())
    states = {i.componentId: (i.scannedQuantity, i.state) for i in cl.items}
    assert states == {"C6": (6, "complete"), "C1": (10, "partial")}
    assert [b.binId for b in cl.sessionBins] == ["B1", "B2"]
    short = {b.binId: b.shortComponents for b in cl.sessionBins}
    assert short == {"B1": [], "B2": ["C1"]}


def test_checklist_only_takes_ready_bins_of_its_jtc(db):
    scan(db, "B1", "C6", 6, jtc="J1")
    scan(db, "B2", "C6", 6, jtc="J4")
    scan(db, "B3", "C6", 5)
    assert store.get_bin(db, "B3").status == PENDING_REFILL

    with pytest.raises(IllegalTransition) as exc:
        build_checklist(db, "J1", ["B1", "B2"], EnginePolicy())
    assert exc.value.subject == "B2"
    assert "J1" in exc.value.condition

    with pytest.raises(IllegalTransition) as exc:
        build_checklist(db, "J1", ["B1", "B3"], EnginePolicy())
    assert exc.value.subject == "B3"
    assert exc.value.current_status == PENDING_REFILL

    cl = build_checklist(db, "J1", ["B1"], EnginePolicy())
    [item] = cl.items
    assert (item.scannedQuantity, item.totalQuantity, item.state) == (6, 12, "partial")


def test_checklist_empty_bom_policy(db):
    with pytest.raises(BomNotFound):
        build_checklist(db, "J5", [], EnginePolicy())
    cl = build_checklist(db, "J5", [], EnginePolicy(empty_bom_policy="allow"))
    assert cl.items == []
    assert cl.complete


# ───── release ─────
def test_release_two_bins_each_half(db):
    # J1: quantity 3 x 4 of C6 = 12; two bins of 6
    bin_service.register_bin(db, BinRegister(binId="B1", workcellId="WC-1", stationId="ST-1"))
    scan(db, "B1", "C6", 6, jtc="J1")
    scan(db, "B2", "C6", 6, jtc="J1")

    cl = build_checklist(db, "J1", ["B1", "B2"], EnginePolicy())
    assert (cl.items[0].scannedQuantity, cl.items[0].totalQuantity) == (12, 12)
    assert all(b.releaseReady for b in cl.sessionBins)

    res = release_bins(db, ["B1", "B2"], EnginePolicy())
    assert res.released == ["B1", "B2"]
    assert res.notReady == []
    assert [l.event for l in res.labels] == ["release", "release"]

    b1 = store.get_bin(db, "B1")
    assert b1.status == RELEASED
    assert b1.location == "WC-1"
    assert b1.lastUsed is not None
    assert res.checklist.complete
    assert {b.binId for b in res.checklist.releasedBins} == {"B1", "B2"}
    released = {b.binId: b for b in res.checklist.releasedBins}
    assert released["B1"].workcellId == "WC-1"
    assert released["B1"].components == {"C6": 6}


def test_release_single_short_bin_fails(db):
    scan(db, "B1", "C6", 6, jtc="J1")
    with pytest.raises(IllegalTransition) as exc:
        release_bins(db, ["B1"], EnginePolicy())
    assert "C6" in exc.value.condition
    assert store.get_bin(db, "B1").status == READY_FOR_RELEASE


def test_release_reports_not_ready_bins(db):
    scan(db, "P", "C6", 6, jtc="J4")
    scan(db, "Q", "C1", 10, jtc="J4")
    res = release_bins(db, ["P", "Q"], EnginePolicy())
    assert res.released == ["P"]
    assert [(r.binId, r.shortComponents) for r in res.notReady] == [("Q", ["C1"])]
    assert store.get_bin(db, "Q").status == READY_FOR_RELEASE


def test_released_bins_count_towards_later_sessions(db):
    scan(db, "P", "C6", 6, jtc="J4")
    scan(db, "Q", "C1", 10, jtc="J4")
    release_bins(db, ["P", "Q"], EnginePolicy())

    scan(db, "R", "C1", 10, jtc="J4")
    cl = build_checklist(db, "J4", ["Q", "R"], EnginePolicy())
    assert cl.complete
    assert [b.binId for b in cl.releasedBins] == ["P"]

    res = release_bins(db, ["Q", "R"], EnginePolicy())
    assert res.released == ["Q", "R"]
    assert res.checklist.complete


def test_release_requires_ready_for_release(db):
    scan(db, "B1", "C6", 6)
    with pytest.raises(IllegalTransition) as exc:
        release_bins(db, ["B1"], EnginePolicy())
    assert exc.value.current_status == "Pending JTC"
    assert "cannot release" in exc.value.condition


def test_release_requires_one_jtc(db):
    scan(db, "B1", "C6", 6, jtc="J1")
    scan(db, "B2", "C1", 10, jtc="J3")
    with pytest.raises(IllegalTransition) as exc:
        release_bins(db, ["B1", "B2"], EnginePolicy())
    assert exc.value.subject == "B2"
    assert store.get_bin(db, "B1").status == READY_FOR_RELEASE
