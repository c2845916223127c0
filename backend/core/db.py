"""
core/db.py ── SQLite thread-safe layer for bins / component records / reference data

CRUD helpers never commit on their own: every write runs inside
``transaction(conn)`` so a read-then-write on a bin (or on all bins of one JTC)
is serialised against other writers.
"""
from __future__ import annotations

import json
import logging
import sqlite3
import threading
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Generator, Iterable, List, Optional, Tuple

from core.config import settings
from models.bin_models import (
    Bin,
    BinComponentRecord,
    ComponentMaster,
    LabelPayload,
    WorkOrder,
)

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS component_master(
    component_id              TEXT PRIMARY KEY,
    component_name            TEXT,
    expected_quantity_per_bin INTEGER NOT NULL DEFAULT 0,
    unit_weight_g             REAL,
    require_scale             INTEGER NOT NULL DEFAULT 1,
    updated_at                TEXT
);

CREATE TABLE IF NOT EXISTS jtc(
    jtc_id          TEXT PRIMARY KEY,
    order_number    TEXT,
    rev_id          TEXT,
    quantity_needed INTEGER NOT NULL DEFAULT 1,
    part_number     TEXT,
    co_number       TEXT,
    barcode_id      TEXT,
    created_at      TEXT
);

CREATE TABLE IF NOT EXISTS jtc_bom(
    id                INTEGER PRIMARY KEY AUTOINCREMENT,
    rev_id            TEXT NOT NULL,
    component_id      TEXT NOT NULL,
    quantity_per_item INTEGER NOT NULL DEFAULT 0,
    line_no           INTEGER NOT NULL DEFAULT 0,
    UNIQUE(rev_id, component_id)
);

CREATE TABLE IF NOT EXISTS bins(
    bin_id                TEXT PRIMARY KEY,
    status                TEXT NOT NULL,
    jtc                   TEXT,
    quantity_check_status TEXT NOT NULL DEFAULT 'unchecked',
    location              TEXT,
    wc_id                 TEXT,
    station_id            TEXT,
    remark                TEXT,
    last_used             TEXT,
    last_updated          TEXT,
    created_at            TEXT
);

CREATE TABLE IF NOT EXISTS bin_components(
    bin_id            TEXT NOT NULL,
    component_id      TEXT NOT NULL,
    actual_quantity   INTEGER,
    actual_weight     REAL,
    unit_weight_g     REAL,
    expected_quantity INTEGER,
    discrepancy_type  TEXT CHECK(discrepancy_type IN ('OK','Shortage','Excess')),
    difference        INTEGER,
    recorded_at       TEXT,
    PRIMARY KEY (bin_id, component_id),
    FOREIGN KEY (bin_id) REFERENCES bins(bin_id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS bin_history(
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    bin_id      TEXT NOT NULL,
    from_status TEXT,
    to_status   TEXT NOT NULL,
    jtc         TEXT,
    reason      TEXT,
    at          TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS component_weight_log(
    id            INTEGER PRIMARY KEY AUTOINCREMENT,
    component_id  TEXT NOT NULL,
    weight_kg     REAL NOT NULL,
    quantity      INTEGER NOT NULL,
    unit_weight_g REAL NOT NULL,
    recorded_at   TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS print_jobs(
    id         INTEGER PRIMARY KEY AUTOINCREMENT,
    event      TEXT NOT NULL,
    bin_id     TEXT NOT NULL,
    jtc        TEXT,
    payload    TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_bins_jtc          ON bins(jtc);
CREATE INDEX IF NOT EXISTS idx_bins_status       ON bins(status);
CREATE INDEX IF NOT EXISTS idx_bin_components    ON bin_components(bin_id);
CREATE INDEX IF NOT EXISTS idx_jtc_bom_rev       ON jtc_bom(rev_id, line_no);
CREATE INDEX IF NOT EXISTS idx_bin_history_bin   ON bin_history(bin_id, at DESC);
"""


# ══════════════════════════════════════════════
# ① Database manager
# ══════════════════════════════════════════════
class DatabaseManager:
    def __init__(self, db_path: str):
        self.db_path = db_path
        self._lock = threading.Lock()
        self._initialized = False
        self._init_db()

    # ───────── schema ─────────
    def _init_db(self):
        with self._lock:
            if self._initialized:
                return
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
            try:
                with self.get_connection() as conn:
                    conn.executescript(SCHEMA)
                    self._initialized = True
                    logger.info("🗄️  bin DB schema ready at %s", self.db_path)
            except Exception as e:
                logger.error(f"DB init failed: {e}")
                raise

    # ───────── connection ─────────
    def _connect(self) -> sqlite3.Connection:
        for attempt in range(3):
            try:
                conn = sqlite3.connect(
                    self.db_path,
                    timeout=30.0,
                    check_same_thread=False,
                    isolation_level=None,  # autocommit; explicit BEGIN in transaction()
                )
                conn.row_factory = sqlite3.Row
                conn.execute("PRAGMA journal_mode=WAL")
                conn.execute("PRAGMA foreign_keys=ON")
                return conn
            except sqlite3.OperationalError as e:
                if "locked" in str(e).lower() and attempt < 2:
                    logger.warning(f"DB locked, retrying ({attempt+1}/3)…")
                    time.sleep(0.1 * (attempt + 1))
                    continue
                raise
        raise sqlite3.OperationalError("database is locked")

    @contextmanager
    def get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        conn = self._connect()
        try:
            yield conn
        finally:
            conn.close()


@contextmanager
def transaction(conn: sqlite3.Connection) -> Generator[sqlite3.Connection, None, None]:
    """BEGIN IMMEDIATE … COMMIT; joins an already open transaction."""
    if conn.in_transaction:
        yield conn
        return
    conn.execute("BEGIN IMMEDIATE")
    try:
        yield conn
    except BaseException:
        conn.execute("ROLLBACK")
        raise
    else:
        conn.execute("COMMIT")


# 全域 DB 管理器
db_manager = DatabaseManager(settings.DB_PATH)


def get_db() -> Generator[sqlite3.Connection, None, None]:
    """FastAPI dependency"""
    with db_manager.get_connection() as conn:
        yield conn


def now_utc_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


# ══════════════════════════════════════════════
# ② Component master (reference data)
# ══════════════════════════════════════════════
def _row_to_master(row: sqlite3.Row) -> ComponentMaster:
    return ComponentMaster(
        componentId=row["component_id"],
        componentName=row["component_name"],
        expectedQuantityPerBin=int(row["expected_quantity_per_bin"] or 0),
        unitWeightGrams=row["unit_weight_g"],
        requiresScale=bool(row["require_scale"]),
    )


def get_component_master(db: sqlite3.Connection, component_id: str) -> Optional[ComponentMaster]:
    row = db.execute(
        "SELECT * FROM component_master WHERE component_id = ?", (component_id,)
    ).fetchone()
    return _row_to_master(row) if row else None


def upsert_component_master(db: sqlite3.Connection, master: ComponentMaster) -> None:
    db.execute(
        """
        INSERT INTO component_master
            (component_id, component_name, expected_quantity_per_bin, unit_weight_g, require_scale, updated_at)
        VALUES (?,?,?,?,?,?)
        ON CONFLICT(component_id) DO UPDATE SET
            component_name = excluded.component_name,
            expected_quantity_per_bin = excluded.expected_quantity_per_bin,
            unit_weight_g = excluded.unit_weight_g,
            require_scale = excluded.require_scale,
            updated_at = excluded.updated_at
        """,
        (
            master.componentId, master.componentName, master.expectedQuantityPerBin,
            master.unitWeightGrams, int(master.requiresScale), now_utc_iso(),
        ),
    )


def set_master_unit_weight(db: sqlite3.Connection, component_id: str, grams: float) -> None:
    db.execute(
        "UPDATE component_master SET unit_weight_g = ?, updated_at = ? WHERE component_id = ?",
        (grams, now_utc_iso(), component_id),
    )


def insert_component_weight_log(
    db: sqlite3.Connection, component_id: str, weight_kg: float, quantity: int,
    unit_weight_g: float, recorded_at: str,
) -> None:
    db.execute(
        "INSERT INTO component_weight_log(component_id, weight_kg, quantity, unit_weight_g, recorded_at) "
        "VALUES (?,?,?,?,?)",
        (component_id, weight_kg, quantity, unit_weight_g, recorded_at),
    )


# ══════════════════════════════════════════════
# ③ Work orders / BOM (reference data)
# ══════════════════════════════════════════════
def get_work_order(db: sqlite3.Connection, jtc_id: str) -> Optional[WorkOrder]:
    row = db.execute("SELECT * FROM jtc WHERE jtc_id = ?", (jtc_id,)).fetchone()
    if not row:
        return None
    return WorkOrder(
        jtcId=row["jtc_id"],
        orderNumber=row["order_number"],
        revisionId=row["rev_id"],
        quantityNeeded=int(row["quantity_needed"] or 0),
        partNumber=row["part_number"],
        coNumber=row["co_number"],
        barcodeId=row["barcode_id"],
        createdAt=row["created_at"],
    )


def upsert_work_order(db: sqlite3.Connection, wo: WorkOrder) -> None:
    db.execute(
        """
        INSERT INTO jtc(jtc_id, order_number, rev_id, quantity_needed, part_number, co_number, barcode_id, created_at)
        VALUES (?,?,?,?,?,?,?,?)
        ON CONFLICT(jtc_id) DO UPDATE SET
            order_number = excluded.order_number,
            rev_id = excluded.rev_id,
            quantity_needed = excluded.quantity_needed,
            part_number = excluded.part_number,
            co_number = excluded.co_number,
            barcode_id = excluded.barcode_id
        """,
        (
            wo.jtcId, wo.orderNumber, wo.revisionId, wo.quantityNeeded, wo.partNumber,
            wo.coNumber, wo.barcodeId, wo.createdAt or now_utc_iso(),
        ),
    )


def get_bom_lines(db: sqlite3.Connection, revision_id: str) -> List[Tuple[str, int]]:
    rows = db.execute(
        "SELECT component_id, quantity_per_item FROM jtc_bom WHERE rev_id = ? ORDER BY line_no, id",
        (revision_id,),
    ).fetchall()
    return [(r["component_id"], int(r["quantity_per_item"] or 0)) for r in rows]


def replace_bom_lines(db: sqlite3.Connection, revision_id: str, lines: Iterable[Tuple[str, int]]) -> None:
    db.execute("DELETE FROM jtc_bom WHERE rev_id = ?", (revision_id,))
    db.executemany(
        "INSERT INTO jtc_bom(rev_id, component_id, quantity_per_item, line_no) VALUES (?,?,?,?)",
        [(revision_id, cid, qty, i) for i, (cid, qty) in enumerate(lines)],
    )


# ══════════════════════════════════════════════
# ④ Bins
# ══════════════════════════════════════════════
_BIN_COLUMNS = {
    "status": "status",
    "jtc": "jtc",
    "quantityCheckStatus": "quantity_check_status",
    "location": "location",
    "workcellId": "wc_id",
    "stationId": "station_id",
    "remark": "remark",
    "lastUsed": "last_used",
    "lastUpdated": "last_updated",
}


def _row_to_bin(row: sqlite3.Row) -> Bin:
    return Bin(
        binId=row["bin_id"],
        status=row["status"],
        jtc=row["jtc"],
        quantityCheckStatus=row["quantity_check_status"] or "unchecked",
        location=row["location"],
        workcellId=row["wc_id"],
        stationId=row["station_id"],
        remark=row["remark"],
        lastUsed=row["last_used"],
        lastUpdated=row["last_updated"],
        createdAt=row["created_at"],
    )


def get_bin(db: sqlite3.Connection, bin_id: str) -> Optional[Bin]:
    row = db.execute("SELECT * FROM bins WHERE bin_id = ?", (bin_id,)).fetchone()
    return _row_to_bin(row) if row else None


def insert_bin(db: sqlite3.Connection, b: Bin) -> None:
    db.execute(
        """
        INSERT INTO bins(bin_id, status, jtc, quantity_check_status, location, wc_id, station_id,
                         remark, last_used, last_updated, created_at)
        VALUES (?,?,?,?,?,?,?,?,?,?,?)
        """,
        (
            b.binId, b.status, b.jtc, b.quantityCheckStatus, b.location, b.workcellId,
            b.stationId, b.remark, b.lastUsed, b.lastUpdated, b.createdAt,
        ),
    )


def update_bin(db: sqlite3.Connection, bin_id: str, **fields: Any) -> None:
    sets, params = [], []
    for key, value in fields.items():
        sets.append(f"{_BIN_COLUMNS[key]} = ?")
        params.append(value)
    if not sets:
        return
    params.append(bin_id)
    db.execute(f"UPDATE bins SET {', '.join(sets)} WHERE bin_id = ?", params)


def list_bins(
    db: sqlite3.Connection, status: Optional[str] = None, jtc: Optional[str] = None
) -> List[Bin]:
    q = "SELECT * FROM bins WHERE 1=1"
    params: List[Any] = []
    if status:
        q += " AND status = ?"; params.append(status)
    if jtc:
        q += " AND jtc = ?"; params.append(jtc)
    q += " ORDER BY bin_id"
    return [_row_to_bin(r) for r in db.execute(q, params).fetchall()]


def count_bins_by_status(db: sqlite3.Connection) -> Dict[str, int]:
    rows = db.execute("SELECT status, COUNT(*) AS c FROM bins GROUP BY status").fetchall()
    return {r["status"]: int(r["c"] or 0) for r in rows}


def insert_history(
    db: sqlite3.Connection, bin_id: str, from_status: Optional[str], to_status: str,
    jtc: Optional[str], reason: str, at: str,
) -> None:
    db.execute(
        "INSERT INTO bin_history(bin_id, from_status, to_status, jtc, reason, at) VALUES (?,?,?,?,?,?)",
        (bin_id, from_status, to_status, jtc, reason, at),
    )


def get_history(db: sqlite3.Connection, bin_id: str) -> List[Dict[str, Any]]:
    rows = db.execute(
        "SELECT from_status, to_status, jtc, reason, at FROM bin_history WHERE bin_id = ? ORDER BY id",
        (bin_id,),
    ).fetchall()
    return [dict(r) for r in rows]


# ══════════════════════════════════════════════
# ⑤ Bin component records
# ══════════════════════════════════════════════
def _row_to_record(row: sqlite3.Row) -> BinComponentRecord:
    return BinComponentRecord(
        binId=row["bin_id"],
        componentId=row["component_id"],
        actualQuantity=row["actual_quantity"],
        actualWeight=row["actual_weight"],
        unitWeightGrams=row["unit_weight_g"],
        expectedQuantity=row["expected_quantity"],
        discrepancyType=row["discrepancy_type"],
        difference=row["difference"],
        recordedAt=row["recorded_at"],
    )


def get_bin_components(db: sqlite3.Connection, bin_id: str) -> Dict[str, BinComponentRecord]:
    rows = db.execute(
        "SELECT * FROM bin_components WHERE bin_id = ? ORDER BY rowid", (bin_id,)
    ).fetchall()
    return {r["component_id"]: _row_to_record(r) for r in rows}


def get_components_for_bins(
    db: sqlite3.Connection, bin_ids: Iterable[str]
) -> Dict[str, Dict[str, BinComponentRecord]]:
    ids = list(bin_ids)
    out: Dict[str, Dict[str, BinComponentRecord]] = {b: {} for b in ids}
    if not ids:
        return out
    placeholders = ",".join("?" * len(ids))
    rows = db.execute(
        f"SELECT * FROM bin_components WHERE bin_id IN ({placeholders}) ORDER BY rowid", ids
    ).fetchall()
    for r in rows:
        out[r["bin_id"]][r["component_id"]] = _row_to_record(r)
    return out


def upsert_bin_component(db: sqlite3.Connection, rec: BinComponentRecord) -> None:
    db.execute(
        """
        INSERT INTO bin_components(bin_id, component_id, actual_quantity, actual_weight, unit_weight_g,
                                   expected_quantity, discrepancy_type, difference, recorded_at)
        VALUES (?,?,?,?,?,?,?,?,?)
        ON CONFLICT(bin_id, component_id) DO UPDATE SET
            actual_quantity = excluded.actual_quantity,
            actual_weight = excluded.actual_weight,
            unit_weight_g = excluded.unit_weight_g,
            expected_quantity = excluded.expected_quantity,
            discrepancy_type = excluded.discrepancy_type,
            difference = excluded.difference,
            recorded_at = excluded.recorded_at
        """,
        (
            rec.binId, rec.componentId, rec.actualQuantity, rec.actualWeight, rec.unitWeightGrams,
            rec.expectedQuantity, rec.discrepancyType, rec.difference, rec.recordedAt,
        ),
    )


def delete_bin_components_except(db: sqlite3.Connection, bin_id: str, keep: Iterable[str]) -> int:
    keep = list(keep)
    if keep:
        placeholders = ",".join("?" * len(keep))
        cur = db.execute(
            f"DELETE FROM bin_components WHERE bin_id = ? AND component_id NOT IN ({placeholders})",
            [bin_id, *keep],
        )
    else:
        cur = db.execute("DELETE FROM bin_components WHERE bin_id = ?", (bin_id,))
    return cur.rowcount


def reset_bin_components(db: sqlite3.Connection, bin_id: str, at: str) -> None:
    db.execute(
        """
        UPDATE bin_components
        SET actual_quantity = 0, actual_weight = NULL, discrepancy_type = NULL,
            difference = NULL, recorded_at = ?
        WHERE bin_id = ?
        """,
        (at, bin_id),
    )


# ══════════════════════════════════════════════
# ⑥ Label / print outbox
# ══════════════════════════════════════════════
def insert_print_job(db: sqlite3.Connection, label: LabelPayload, jtc: Optional[str], at: str) -> int:
    cur = db.execute(
        "INSERT INTO print_jobs(event, bin_id, jtc, payload, created_at) VALUES (?,?,?,?,?)",
        (label.event, label.binId, jtc, json.dumps(label.model_dump()), at),
    )
    return cur.lastrowid


def list_print_jobs(db: sqlite3.Connection, jtc: Optional[str] = None) -> List[LabelPayload]:
    if jtc:
        rows = db.execute("SELECT payload FROM print_jobs WHERE jtc = ? ORDER BY id", (jtc,)).fetchall()
    else:
        rows = db.execute("SELECT payload FROM print_jobs ORDER BY id").fetchall()
    return [LabelPayload.model_validate(json.loads(r["payload"])) for r in rows]


# ══════════════════════════════════════════════
# ⑦ Utilities / maintenance
# ══════════════════════════════════════════════
def check_database_health() -> bool:
    try:
        with db_manager.get_connection() as db:
            db.execute("SELECT 1").fetchone()
        return True
    except Exception as e:
        logger.error(f"DB health check failed: {e}")
        return False
