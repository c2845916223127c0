from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Read from environment variables / .env
    DB_PATH: str = Field("./bins.db", validation_alias="DB_PATH")
    LOG_LEVEL: str = "INFO"

    # Counting scale bridge (GET returns the current reading, 204 when idle)
    SCALE_URL: str = "http://localhost:8000/get_weight"
    SCALE_TIMEOUT_SECONDS: float = 3.0

    # Location written onto a bin when it comes back from production
    WAREHOUSE_LOCATION: str = "Warehouse"

    # Policy switches
    ALLOW_DISCREPANCY_WITHOUT_JTC: bool = False   # Shortage/Excess bin w/o JTC stays Pending JTC
    ALLOW_OVERRIDE_WHILE_RELEASED: bool = False   # Damaged/Missing accepted on a Released bin
    EMPTY_BOM_POLICY: Literal["error", "allow"] = "error"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


settings = Settings()
