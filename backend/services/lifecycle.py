"""
services/lifecycle.py ── bin lifecycle state machine

Every status change goes through ``change_status``: it checks the transition
table, writes the bin row and appends a ``bin_history`` row. A rejected
transition raises ``IllegalTransition`` carrying the current status and the
unmet condition; callers run inside ``transaction`` so nothing is written.
"""
from __future__ import annotations

import logging
import sqlite3
from typing import Dict, FrozenSet, Iterable, List, Optional, Tuple

from core import db as store
from core.db import transaction
from models.bin_models import AssignResult, Bin, QuantityCheckStatus, ReturnResult, normalize_id
from services.catalog import get_work_order
from services.errors import BinNotFound, IllegalTransition
from services.labels import emit_label
from services.policy import EnginePolicy

logger = logging.getLogger(__name__)

# ========== States ==========
PENDING_JTC = "Pending JTC"
READY_FOR_RELEASE = "Ready for Release"
RELEASED = "Released"
PENDING_REFILL = "Pending Refill"
RETURNED = "Returned to Warehouse"
DAMAGED = "Damaged"
MISSING = "Missing"

STATES: Tuple[str, ...] = (
    PENDING_JTC, READY_FOR_RELEASE, RELEASED, PENDING_REFILL, RETURNED, DAMAGED, MISSING,
)
OVERRIDE_TARGETS: FrozenSet[str] = frozenset({DAMAGED, MISSING, RETURNED})
# a scan (save) is refused while the bin is in one of these
NOT_SCANNABLE: FrozenSet[str] = frozenset({RELEASED, DAMAGED, MISSING})

_IN_WAREHOUSE = frozenset({PENDING_JTC, READY_FOR_RELEASE, PENDING_REFILL, RETURNED})

TRANSITIONS: Dict[Optional[str], FrozenSet[str]] = {
    None: frozenset({PENDING_JTC}),
    PENDING_JTC: _IN_WAREHOUSE | {DAMAGED, MISSING},
    PENDING_REFILL: _IN_WAREHOUSE | {DAMAGED, MISSING},
    READY_FOR_RELEASE: _IN_WAREHOUSE | {RELEASED, DAMAGED, MISSING},
    RETURNED: _IN_WAREHOUSE | {DAMAGED, MISSING},
    RELEASED: frozenset({RETURNED, DAMAGED, MISSING}),
    DAMAGED: frozenset({RETURNED, DAMAGED, MISSING}),
    MISSING: frozenset({RETURNED, DAMAGED, MISSING}),
}


def can_transition(current: Optional[str], target: str) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


# ───── helpers ─────
def load_bin(db: sqlite3.Connection, bin_id: str) -> Bin:
    bid = normalize_id(bin_id)
    b = store.get_bin(db, bid)
    if b is None:
        raise BinNotFound(bid)
    return b


def create_bin(db: sqlite3.Connection, bin_id: str, reason: str = "created", **fields) -> Bin:
    now = store.now_utc_iso()
    b = Bin(binId=bin_id, status=PENDING_JTC, quantityCheckStatus="unchecked",
            createdAt=now, lastUpdated=now, **fields)
    store.insert_bin(db, b)
    store.insert_history(db, b.binId, None, PENDING_JTC, None, reason, now)
    logger.info("📦 bin %s created (%s)", b.binId, PENDING_JTC)
    return b


def change_status(db: sqlite3.Connection, b: Bin, target: str, reason: str, **fields) -> Bin:
    """Move ``b`` to ``target`` and update ``fields``; returns the new bin state."""
    if not can_transition(b.status, target):
        logger.warning("bin %s: illegal transition %s -> %s", b.binId, b.status, target)
        raise IllegalTransition(b.binId, b.status, f"cannot move from {b.status} to {target}")
    now = store.now_utc_iso()
    fields.setdefault("lastUpdated", now)
    new = b.model_copy(update={"status": target, **fields})
    if target == READY_FOR_RELEASE and (not new.jtc or new.quantityCheckStatus != "Ready"):
        raise IllegalTransition(
            b.binId, b.status,
            f"{READY_FOR_RELEASE} needs a JTC and a Ready quantity check "
            f"(jtc={new.jtc}, check={new.quantityCheckStatus})",
        )
    store.update_bin(db, b.binId, status=target, **fields)
    if target != b.status or new.jtc != b.jtc:
        store.insert_history(db, b.binId, b.status, target, new.jtc, reason, now)
        logger.info("bin %s: %s -> %s (%s)", b.binId, b.status, target, reason)
    return new


def status_after_check(
    b: Bin, check: QuantityCheckStatus, jtc: Optional[str], policy: EnginePolicy
) -> Tuple[str, Optional[str]]:
    """
    Status and JTC a bin should hold after a quantity check.

    ``jtc`` is the work order the bin is (or is being) linked to. Only a
    Ready check links a new JTC; otherwise the bin keeps its current one,
    and a linked bin that is not Ready waits in Pending Refill.
    """
    if check == "Ready":
        if jtc:
            return READY_FOR_RELEASE, jtc
        return PENDING_JTC, None
    if check in ("Shortage", "Excess"):
        if policy.allow_discrepancy_without_jtc and not b.jtc and not jtc:
            return PENDING_JTC, b.jtc
        return PENDING_REFILL, b.jtc
    if b.jtc:
        return PENDING_REFILL, b.jtc
    return PENDING_JTC, None


def check_reassignment(b: Bin, jtc: str, confirmed: bool) -> bool:
    """True when linking ``jtc`` overwrites another JTC on a Ready for Release bin."""
    if b.status != READY_FOR_RELEASE or not b.jtc or b.jtc == jtc:
        return False
    if not confirmed:
        raise IllegalTransition(
            b.binId, b.status,
            f"already assigned to JTC {b.jtc}; reassignment to {jtc} requires confirmation",
        )
    return True


# ========== Assignment ==========
def assign_bins_to_jtc(
    db: sqlite3.Connection,
    jtc_id: str,
    bin_ids: Iterable[str],
    confirm_reassign: Iterable[str] = (),
    policy: Optional[EnginePolicy] = None,
) -> AssignResult:
    """Link every bin to the JTC, or none of them."""
    policy = policy or EnginePolicy.from_settings()
    confirmed = {normalize_id(x) for x in confirm_reassign}
    with transaction(db):
        wo = get_work_order(db, jtc_id)
        bins = [load_bin(db, bid) for bid in bin_ids]

        plan: List[Tuple[Bin, bool]] = []
        for b in bins:
            if b.quantityCheckStatus != "Ready":
                raise IllegalTransition(
                    b.binId, b.status,
                    f"quantity check is {b.quantityCheckStatus}; it must be Ready before assignment",
                )
            if b.status == READY_FOR_RELEASE:
                if b.jtc == wo.jtcId:
                    continue
                plan.append((b, check_reassignment(b, wo.jtcId, b.binId in confirmed)))
            elif b.status == PENDING_JTC:
                plan.append((b, False))
            else:
                raise IllegalTransition(
                    b.binId, b.status, "bin must be Pending JTC to be assigned",
                )

        assigned, reassigned, labels = [], [], []
        for b, is_reassign in plan:
            reason = f"reassigned from {b.jtc}" if is_reassign else "assigned"
            new = change_status(db, b, READY_FOR_RELEASE, reason, jtc=wo.jtcId)
            labels.append(emit_label(db, "assign", new, wo))
            (reassigned if is_reassign else assigned).append(new.binId)

    logger.info("JTC %s: assigned %s, reassigned %s", wo.jtcId, assigned, reassigned)
    return AssignResult(jtc=wo.jtcId, assigned=assigned, reassigned=reassigned, labels=labels)


def assigned_bins_count(db: sqlite3.Connection, jtc_id: str) -> int:
    wo = get_work_order(db, jtc_id)
    return len(store.list_bins(db, jtc=wo.jtcId))


# ========== Return / override ==========
def _reset_to_warehouse(db: sqlite3.Connection, b: Bin, reason: str, policy: EnginePolicy,
                        remark: Optional[str] = None) -> Bin:
    store.reset_bin_components(db, b.binId, store.now_utc_iso())
    fields = dict(jtc=None, quantityCheckStatus="unchecked", location=policy.warehouse_location)
    if remark is not None:
        fields["remark"] = remark
    return change_status(db, b, RETURNED, reason, **fields)


def return_bins_to_warehouse(
    db: sqlite3.Connection, bin_ids: Iterable[str], policy: Optional[EnginePolicy] = None
) -> ReturnResult:
    policy = policy or EnginePolicy.from_settings()
    with transaction(db):
        bins = [load_bin(db, bid) for bid in bin_ids]
        for b in bins:
            if b.status != RELEASED:
                raise IllegalTransition(b.binId, b.status, "only Released bins can be returned")
        returned = [_reset_to_warehouse(db, b, "returned", policy).binId for b in bins]
    logger.info("↩️  returned to warehouse: %s", returned)
    return ReturnResult(returned=returned)


def set_bin_status(
    db: sqlite3.Connection,
    bin_id: str,
    status: str,
    remark: Optional[str] = None,
    policy: Optional[EnginePolicy] = None,
) -> Bin:
    """Manual override to Damaged, Missing or Returned to Warehouse."""
    policy = policy or EnginePolicy.from_settings()
    with transaction(db):
        b = load_bin(db, bin_id)
        if status not in OVERRIDE_TARGETS:
            raise IllegalTransition(
                b.binId, b.status,
                f"manual override must be one of {sorted(OVERRIDE_TARGETS)}, not {status!r}",
            )
        if status == RETURNED:
            return _reset_to_warehouse(db, b, "manual override", policy, remark)
        if b.status == RELEASED and not policy.allow_override_while_released:
            raise IllegalTransition(
                b.binId, b.status, f"bin is in production; cannot mark it {status}",
            )
        fields = {"remark": remark} if remark is not None else {}
        return change_status(db, b, status, "manual override", **fields)
