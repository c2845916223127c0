# services/policy.py
from __future__ import annotations

from dataclasses import dataclass

from core.config import settings


@dataclass(frozen=True)
class EnginePolicy:
    """Switches the engine consults; built from settings, overridable in tests."""
    allow_discrepancy_without_jtc: bool = False
    allow_override_while_released: bool = False
    empty_bom_policy: str = "error"          # "error" | "allow"
    warehouse_location: str = "Warehouse"

    @classmethod
    def from_settings(cls) -> "EnginePolicy":
        return cls(
            allow_discrepancy_without_jtc=settings.ALLOW_DISCREPANCY_WITHOUT_JTC,
            allow_override_while_released=settings.ALLOW_OVERRIDE_WHILE_RELEASED,
            empty_bom_policy=settings.EMPTY_BOM_POLICY,
            warehouse_location=settings.WAREHOUSE_LOCATION,
        )


def get_policy() -> EnginePolicy:
    """FastAPI dependency"""
    return EnginePolicy.from_settings()
