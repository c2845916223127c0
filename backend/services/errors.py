"""
services/errors.py ── engine error taxonomy

Every error names the bin / component / JTC it is about (``subject``) and the
condition that was not met, so the operator never sees a bare "error".
"""
from __future__ import annotations

from typing import Any, Dict, Optional


class EngineError(Exception):
    code = "engine_error"
    http_status = 400

    def __init__(self, subject: str, condition: str, message: Optional[str] = None):
        self.subject = subject
        self.condition = condition
        self.message = message or f"{subject}: {condition}"
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "subject": self.subject,
            "condition": self.condition,
        }


# ── reference data ──────────────────────────────
class ComponentNotFound(EngineError):
    code = "component_not_found"
    http_status = 404

    def __init__(self, component_id: str):
        super().__init__(component_id, "component is not in the master catalog",
                         f"Component {component_id} not found in master data")


class WorkOrderNotFound(EngineError):
    code = "work_order_not_found"
    http_status = 404

    def __init__(self, jtc_id: str):
        super().__init__(jtc_id, "work order does not exist", f"JTC {jtc_id} not found")


class BomNotFound(EngineError):
    code = "bom_not_found"
    http_status = 404

    def __init__(self, revision_id: str):
        super().__init__(revision_id, "revision has no BOM lines",
                         f"No BOM lines for revision {revision_id}")


class BinNotFound(EngineError):
    code = "bin_not_found"
    http_status = 404

    def __init__(self, bin_id: str):
        super().__init__(bin_id, "bin is not registered", f"Bin {bin_id} not found")


# ── scale ───────────────────────────────────────
class InvalidScaleReading(EngineError):
    code = "invalid_scale_reading"
    http_status = 422


class NoScaleDataAvailable(EngineError):
    """Transient: the operator just presses the scan action again."""
    code = "no_scale_data"
    http_status = 503

    def __init__(self, source: str, condition: str = "scale returned no data"):
        super().__init__(source, condition, "No scale data available")


# ── lifecycle ───────────────────────────────────
class IllegalTransition(EngineError):
    code = "illegal_transition"
    http_status = 409

    def __init__(self, bin_id: str, current_status: Optional[str], condition: str):
        self.current_status = current_status
        super().__init__(
            bin_id, condition,
            f"Bin {bin_id} (status: \"{current_status}\"): {condition}",
        )

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d["currentStatus"] = self.current_status
        return d
