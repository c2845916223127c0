# models/bin_models.py
from __future__ import annotations

import re
from typing import Annotated, Dict, List, Literal, Optional

from pydantic import AfterValidator, BaseModel, Field, field_validator, model_validator

# ========== Vocabulary ==========
DiscrepancyType = Literal["OK", "Shortage", "Excess"]
QuantityCheckStatus = Literal["unchecked", "Ready", "Shortage", "Excess", "Pending"]
ChecklistState = Literal["complete", "partial", "missing"]

_JTC_PREFIX = re.compile(r"^\*j", re.IGNORECASE)


def normalize_id(raw: Optional[str]) -> str:
    """Bin / component barcodes: trim, upper-case."""
    return (raw or "").strip().upper()


def normalize_jtc_id(raw: Optional[str]) -> str:
    """JTC barcodes carry a '*J' prefix on the printed traveller."""
    return _JTC_PREFIX.sub("", (raw or "").strip()).upper()


def _required_id(raw: str) -> str:
    v = normalize_id(raw)
    if not v:
        raise ValueError("id must not be blank")
    return v


# Scanned barcode, normalised on the way in
BarcodeId = Annotated[str, AfterValidator(_required_id)]


def _ids(values: List[str]) -> List[str]:
    out = [normalize_id(v) for v in values if normalize_id(v)]
    if len(set(out)) != len(out):
        raise ValueError("duplicate ids in request")
    return out


# ========== Reference data ==========
class ComponentMaster(BaseModel):
    componentId: BarcodeId
    componentName: Optional[str] = None
    expectedQuantityPerBin: int = Field(0, ge=0)
    unitWeightGrams: Optional[float] = None
    requiresScale: bool = True


class ComponentMasterUpsert(BaseModel):
    componentName: Optional[str] = None
    expectedQuantityPerBin: int = Field(..., ge=0)
    unitWeightGrams: Optional[float] = Field(None, gt=0)
    requiresScale: bool = True


class ComponentForBin(ComponentMaster):
    """Master data plus the last values saved for one bin."""
    binId: Optional[str] = None
    lastActualQuantity: Optional[int] = None
    lastActualWeight: Optional[float] = None
    lastUnitWeightGrams: Optional[float] = None


class WorkOrder(BaseModel):
    jtcId: str
    orderNumber: Optional[str] = None
    revisionId: Optional[str] = None
    quantityNeeded: int = Field(1, ge=0)
    partNumber: Optional[str] = None
    coNumber: Optional[str] = None
    barcodeId: Optional[str] = None
    createdAt: Optional[str] = None


class WorkOrderUpsert(BaseModel):
    orderNumber: Optional[str] = None
    revisionId: str = Field(..., min_length=1)
    quantityNeeded: int = Field(..., ge=0)
    partNumber: Optional[str] = None
    coNumber: Optional[str] = None
    barcodeId: Optional[str] = None


class BomLineIn(BaseModel):
    componentId: BarcodeId
    quantityPerItem: int = Field(..., ge=0)


class BomLine(BomLineIn):
    totalQuantity: int = 0


# ========== Scale ==========
class ScaleReading(BaseModel):
    """Raw counting-scale output. Values are not trusted until validated."""
    netKg: Optional[float] = None
    pieceCount: Optional[float] = None
    unitWeightGrams: Optional[float] = None
    timestamp: Optional[str] = None
    serialNo: Optional[str] = None


# ========== Bins ==========
class Bin(BaseModel):
    binId: str
    status: str
    jtc: Optional[str] = None
    quantityCheckStatus: QuantityCheckStatus = "unchecked"
    location: Optional[str] = None
    workcellId: Optional[str] = None
    stationId: Optional[str] = None
    remark: Optional[str] = None
    lastUsed: Optional[str] = None
    lastUpdated: Optional[str] = None
    createdAt: Optional[str] = None


class BinRegister(BaseModel):
    binId: BarcodeId = Field(..., max_length=100)
    location: Optional[str] = None
    workcellId: Optional[str] = None
    stationId: Optional[str] = None
    remark: Optional[str] = None


class BinComponentRecord(BaseModel):
    binId: str
    componentId: str
    actualQuantity: Optional[int] = None
    actualWeight: Optional[float] = None
    unitWeightGrams: Optional[float] = None
    expectedQuantity: Optional[int] = None
    discrepancyType: Optional[DiscrepancyType] = None
    difference: Optional[int] = None
    recordedAt: Optional[str] = None


class BinInfo(BaseModel):
    bin: Bin
    components: Dict[str, BinComponentRecord] = Field(default_factory=dict)


class BinStatusUpdate(BaseModel):
    status: str
    remark: Optional[str] = None


# ========== Scan / save ==========
class ComponentScanIn(BaseModel):
    componentId: BarcodeId
    scale: Optional[ScaleReading] = None
    manualQuantity: Optional[int] = Field(None, ge=0)


class SaveScanIn(BaseModel):
    binId: BarcodeId
    components: List[ComponentScanIn] = Field(..., min_length=1)
    jtc: Optional[str] = None
    confirmReassign: bool = False

    @field_validator("jtc")
    @classmethod
    def _norm_jtc(cls, v: Optional[str]) -> Optional[str]:
        return normalize_jtc_id(v) or None

    @model_validator(mode="after")
    def _no_duplicates(self) -> "SaveScanIn":
        _ids([c.componentId for c in self.components])
        return self


class ComponentOutcome(BaseModel):
    componentId: str
    ready: bool
    record: Optional[BinComponentRecord] = None
    calibrated: bool = False
    errorCode: Optional[str] = None
    error: Optional[str] = None


class LabelPayload(BaseModel):
    event: Literal["assign", "release"]
    binId: str
    woNumber: str
    coNumber: Optional[str] = None
    partName: str = ""
    dateIssue: str = ""
    qty: Optional[int] = None
    remarks: str = ""
    barcodeId: Optional[str] = None


class SaveScanResult(BaseModel):
    binId: str
    status: str
    quantityCheckStatus: QuantityCheckStatus
    jtc: Optional[str] = None
    ready: bool
    components: List[ComponentOutcome]
    assignmentBlocked: Optional[str] = None
    label: Optional[LabelPayload] = None


class ComponentWeightIn(BaseModel):
    weightKg: float
    quantity: int


class ComponentWeightResult(BaseModel):
    componentId: str
    weightKg: float
    quantity: int
    unitWeightGrams: float
    calibrated: bool
    recordedAt: str


# ========== Assignment / release / return ==========
class BinIdsIn(BaseModel):
    bins: List[str] = Field(..., min_length=1)

    @field_validator("bins")
    @classmethod
    def _norm_bins(cls, v: List[str]) -> List[str]:
        return _ids(v)


class AssignBinsIn(BinIdsIn):
    confirmReassign: List[str] = Field(default_factory=list)

    @field_validator("confirmReassign")
    @classmethod
    def _norm_confirm(cls, v: List[str]) -> List[str]:
        return [normalize_id(x) for x in v]


class AssignResult(BaseModel):
    jtc: str
    assigned: List[str]
    reassigned: List[str] = Field(default_factory=list)
    labels: List[LabelPayload] = Field(default_factory=list)


class ChecklistItem(BaseModel):
    componentId: str
    quantityPerItem: int
    totalQuantity: int
    scannedQuantity: int
    state: ChecklistState


class ReleasedBinSummary(BaseModel):
    binId: str
    releaseDateTime: Optional[str] = None
    workcellId: Optional[str] = None
    stationId: Optional[str] = None
    remark: Optional[str] = None
    components: Dict[str, int] = Field(default_factory=dict)


class BinReleaseReadiness(BaseModel):
    binId: str
    releaseReady: bool
    shortComponents: List[str] = Field(default_factory=list)


class Checklist(BaseModel):
    jtc: str
    quantityNeeded: int
    items: List[ChecklistItem]
    complete: bool
    sessionBins: List[BinReleaseReadiness] = Field(default_factory=list)
    releasedBins: List[ReleasedBinSummary] = Field(default_factory=list)


class ChecklistIn(BaseModel):
    bins: List[str] = Field(default_factory=list)

    @field_validator("bins")
    @classmethod
    def _norm_bins(cls, v: List[str]) -> List[str]:
        return _ids(v)


class ReleaseResult(BaseModel):
    jtc: str
    released: List[str]
    notReady: List[BinReleaseReadiness] = Field(default_factory=list)
    labels: List[LabelPayload] = Field(default_factory=list)
    checklist: Checklist


class ReturnResult(BaseModel):
    returned: List[str]


__all__ = [
    "DiscrepancyType", "QuantityCheckStatus", "ChecklistState",
    "normalize_id", "normalize_jtc_id",
    "ComponentMaster", "ComponentMasterUpsert", "ComponentForBin",
    "WorkOrder", "WorkOrderUpsert", "BomLineIn", "BomLine",
    "ScaleReading", "Bin", "BinRegister", "BinComponentRecord", "BinInfo", "BinStatusUpdate",
    "ComponentScanIn", "SaveScanIn", "ComponentOutcome", "LabelPayload", "SaveScanResult",
    "ComponentWeightIn", "ComponentWeightResult",
    "BinIdsIn", "AssignBinsIn", "AssignResult",
    "ChecklistItem", "ReleasedBinSummary", "BinReleaseReadiness", "Checklist", "ChecklistIn",
    "ReleaseResult", "ReturnResult",
]
